"""Watch the session log directory and push fresh overviews on change."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from cctrack.api import build_overview
from cctrack.broadcast import Broadcaster
from cctrack.models import AppState, to_jsonable
from cctrack.parser import scan_all_records

_log = logging.getLogger(__name__)

_DEBOUNCE_SECONDS = 0.3
_WATCHED_EVENTS = frozenset({EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED})


class JsonlChangeHandler(FileSystemEventHandler):
    """Forward paths of created or modified ``.jsonl`` files to an asyncio queue."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[Path]) -> None:
        super().__init__()
        self._loop = loop
        self._queue = queue

    def on_any_event(self, event) -> None:
        if event.event_type not in _WATCHED_EVENTS:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            path = Path(os.fsdecode(raw))
            if path.suffix != ".jsonl":
                continue
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, path)
            except RuntimeError:
                return


async def rescan(
    state: AppState, broadcaster: Broadcaster, home: str | os.PathLike | None = None
) -> int:
    """Reload all records into ``state``, broadcast the new overview, return the record count."""
    try:
        records = await asyncio.to_thread(scan_all_records, home)
    except Exception:
        _log.exception("Rescanning logs failed")
        records = []

    state.records = records
    _log.info("Loaded %d records", len(records))

    overview = to_jsonable(build_overview(state))
    broadcaster.send(json.dumps(overview, separators=(",", ":")))
    return len(records)


async def start_watcher(
    state: AppState, broadcaster: Broadcaster, home: str | os.PathLike | None = None
) -> None:
    """Rescan logs whenever a file under ``<home>/.claude/projects`` changes; runs until cancelled."""
    if home is None:
        home = os.environ.get("HOME")
        if home is None:
            raise RuntimeError("HOME not set")
    watch_path = Path(home) / ".claude" / "projects"
    if not watch_path.is_dir():
        raise FileNotFoundError(f"Failed to watch {watch_path}")

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Path] = asyncio.Queue()
    observer = Observer()
    observer.schedule(JsonlChangeHandler(loop, queue), str(watch_path), recursive=True)
    observer.start()
    _log.info("Watching %s", watch_path)

    try:
        while True:
            await queue.get()
            await asyncio.sleep(_DEBOUNCE_SECONDS)
            while not queue.empty():
                queue.get_nowait()
            _log.info("File change detected — rescanning logs...")
            await rescan(state, broadcaster, home)
    finally:
        observer.stop()
        observer.join()