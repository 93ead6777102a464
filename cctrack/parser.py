"""Read session logs into deduplicated usage records and attribute them to repositories."""

from __future__ import annotations

import json
import logging
import os
import re
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Iterator

from cctrack.cost import calculate_cost, normalize_model
from cctrack.models import RawEvent, UsageRecord

_log = logging.getLogger(__name__)

_PATH_KEYS = frozenset({"file_path", "filepath", "path", "paths", "files"})
_PATCH_PREFIXES = ("*** Update File:", "*** Add File:", "*** Delete File:")
_SKIPPED_DIRS = frozenset({".git", "node_modules", ".next", "target", "dist", "build"})
_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)
_WORKSPACE_FALLBACK = "(workspace)"

_TIMESTAMP_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"([Zz]|[+-]\d{2}:?\d{2})"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class RepoLayout:
    """Git repositories found below a workspace root."""

    nested_repos: list[Path] = field(default_factory=list)
    has_multiple_repos: bool = False


@dataclass
class _RequestAggregate:
    event: RawEvent | None = None
    touched_paths: set[str] = field(default_factory=set)


# ── Reading log files ─────────────────────────────────────────────────────────


def _read_events(handle: BinaryIO) -> Iterator[RawEvent]:
    try:
        for raw in handle:
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                continue
            line = line.removesuffix("\n").removesuffix("\r")
            if not line.strip():
                continue
            try:
                yield RawEvent.from_dict(json.loads(line))
            except (ValueError, RecursionError):
                continue
    except OSError as exc:
        _log.warning("Error while reading log: %s", exc)


def _request_key(event: RawEvent) -> str:
    if event.request_id is not None:
        return event.request_id
    if event.message is not None and event.message.id is not None:
        return event.message.id
    if event.timestamp is not None:
        return event.timestamp
    return f"anon-{time.time_ns()}"


def _is_priced_assistant_event(event: RawEvent) -> bool:
    if event.event_type != "assistant":
        return False
    message = event.message
    if message is None or message.usage is None:
        return False
    model = message.model or ""
    return model not in ("", "<synthetic>")


def parse_jsonl_file(path: str | os.PathLike, seen: dict[str, RawEvent]) -> list[UsageRecord]:
    """Parse one log file into usage records, keeping the last event per request.

    ``seen`` is shared across files so a request logged in several files is
    only counted once; it is updated in place.
    """
    path = Path(path)
    try:
        handle = path.open("rb")
    except OSError as exc:
        _log.warning("Cannot open %s: %s", path, exc)
        return []

    by_request: dict[str, _RequestAggregate] = {}
    with handle:
        for event in _read_events(handle):
            aggregate = by_request.setdefault(_request_key(event), _RequestAggregate())
            aggregate.touched_paths.update(extract_paths_from_event(event))
            if _is_priced_assistant_event(event):
                aggregate.event = event

    records = []
    for request_id, aggregate in by_request.items():
        if aggregate.event is None or request_id in seen:
            continue
        seen[request_id] = aggregate.event
        record = _event_to_record(aggregate.event, sorted(aggregate.touched_paths))
        if record is not None:
            records.append(record)
    return records


def _parse_timestamp(text: str) -> datetime | None:
    match = _TIMESTAMP_RE.fullmatch(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micros = int((fraction or "").ljust(6, "0")[:6])
    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        digits = offset[1:].replace(":", "")
        delta = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
        try:
            tz = timezone(-delta if offset[0] == "-" else delta)
        except ValueError:
            return None
    try:
        value = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micros, tzinfo=tz,
        )
    except ValueError:
        return None
    return value.astimezone(timezone.utc)


def _timestamp_nanos(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(microseconds=1) * 1000


def _event_to_record(event: RawEvent, touched_paths: list[str]) -> UsageRecord | None:
    message = event.message
    if message is None or message.usage is None:
        return None
    usage = message.usage

    model = normalize_model(message.model if message.model is not None else "unknown")
    input_tokens = usage.input_tokens or 0
    output_tokens = usage.output_tokens or 0
    cache_write_tokens = usage.cache_creation_input_tokens or 0
    cache_read_tokens = usage.cache_read_input_tokens or 0

    cost_input, cost_output, cost_cache_write, cost_cache_read = calculate_cost(
        input_tokens, output_tokens, cache_write_tokens, cache_read_tokens, model
    )

    timestamp = None
    if event.timestamp is not None:
        timestamp = _parse_timestamp(event.timestamp)
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)

    workspace_root = event.cwd or ""
    project = extract_project_name(workspace_root) if workspace_root else "unknown"

    if event.request_id is not None:
        request_id = event.request_id
    elif message.id is not None:
        request_id = message.id
    else:
        request_id = f"anon-{_timestamp_nanos(timestamp)}"

    return UsageRecord(
        request_id=request_id,
        session_id=event.session_id or "",
        project=project,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_write_tokens=cache_write_tokens,
        cache_read_tokens=cache_read_tokens,
        cost_input=cost_input,
        cost_output=cost_output,
        cost_cache_write=cost_cache_write,
        cost_cache_read=cost_cache_read,
        total_cost=cost_input + cost_output + cost_cache_write + cost_cache_read,
        timestamp=timestamp,
        workspace_root=workspace_root,
        touched_paths=touched_paths,
    )


# ── Path extraction ───────────────────────────────────────────────────────────


def extract_paths_from_event(event: RawEvent) -> set[str]:
    """Collect absolute file paths mentioned in an event's content and tool result."""
    paths: set[str] = set()
    if event.message is not None and event.message.content is not None:
        for item in event.message.content:
            _collect_paths(item, paths)
    if event.tool_use_result is not None:
        _collect_paths(event.tool_use_result, paths)
    return paths


def _collect_paths(value: Any, paths: set[str]) -> None:
    if isinstance(value, list):
        for item in value:
            _collect_paths(item, paths)
    elif isinstance(value, dict):
        for key, nested in value.items():
            if str(key).translate(_ASCII_LOWER) in _PATH_KEYS:
                _collect_path_value(nested, paths)
            else:
                _collect_paths(nested, paths)
    elif isinstance(value, str):
        paths.update(extract_patch_paths(value))


def _collect_path_value(value: Any, paths: set[str]) -> None:
    if isinstance(value, str):
        if value.startswith("/"):
            paths.add(value)
        paths.update(extract_patch_paths(value))
    elif isinstance(value, list):
        for item in value:
            _collect_path_value(item, paths)
    elif isinstance(value, dict):
        for nested in value.values():
            _collect_path_value(nested, paths)


def extract_patch_paths(text: str) -> list[str]:
    """Return absolute paths named by file headers of a patch."""
    paths = []
    for line in text.split("\n"):
        trimmed = line.strip()
        for prefix in _PATCH_PREFIXES:
            if trimmed.startswith(prefix):
                rest = trimmed[len(prefix):].strip()
                path = rest.split(" -> ", 1)[0].strip()
                if path.startswith("/"):
                    paths.append(path)
    return paths


def extract_project_name(cwd: str, home: str | None = None) -> str:
    """Name a project by the last two components of its directory.

    "/Users/alice/Development/org/project" -> "org/project"
    """
    if home is None:
        home = os.environ.get("HOME", "")
    if home and cwd.startswith(home):
        rel = cwd[len(home):].lstrip("/")
    else:
        rel = cwd.lstrip("/")

    parts = [part for part in rel.split("/") if part]
    if not parts:
        return "unknown"
    if len(parts) == 1:
        return parts[0]
    return f"{parts[-2]}/{parts[-1]}"


# ── Scanning ──────────────────────────────────────────────────────────────────


def _sorted_entries(directory: Path) -> list[Path]:
    return sorted(directory.iterdir(), key=lambda p: p.name)


def _is_jsonl(path: Path) -> bool:
    return path.suffix == ".jsonl"


def scan_all_records(home: str | os.PathLike | None = None) -> list[UsageRecord]:
    """Load every session log under ``<home>/.claude/projects``, subagent logs included."""
    if home is None:
        home = os.environ.get("HOME")
        if home is None:
            return []
    projects_dir = Path(home) / ".claude" / "projects"

    try:
        project_dirs = _sorted_entries(projects_dir)
    except OSError as exc:
        _log.warning("Cannot read %s: %s", projects_dir, exc)
        return []

    records: list[UsageRecord] = []
    seen: dict[str, RawEvent] = {}

    for project_dir in project_dirs:
        if not project_dir.is_dir():
            continue
        try:
            entries = _sorted_entries(project_dir)
        except OSError:
            continue
        for entry in entries:
            if _is_jsonl(entry):
                records.extend(parse_jsonl_file(entry, seen))
            elif entry.is_dir():
                records.extend(_scan_subagents(entry / "subagents", seen))

    apply_subproject_attribution(records)
    return records


def _scan_subagents(directory: Path, seen: dict[str, RawEvent]) -> Iterator[UsageRecord]:
    if not directory.is_dir():
        return
    try:
        entries = _sorted_entries(directory)
    except OSError:
        return
    for entry in entries:
        if _is_jsonl(entry):
            yield from parse_jsonl_file(entry, seen)


# ── Subproject attribution ────────────────────────────────────────────────────


def apply_subproject_attribution(records: list[UsageRecord]) -> None:
    """Assign nested repository names to records of multi-repository workspaces, in place."""
    grouped: dict[tuple[str, str, str], list[int]] = {}
    for idx, record in enumerate(records):
        if not record.workspace_root:
            continue
        key = (record.project, record.workspace_root, record.session_id)
        grouped.setdefault(key, []).append(idx)

    layouts: dict[str, RepoLayout] = {}

    for (_, workspace_root, _), indexes in grouped.items():
        layout = layouts.get(workspace_root)
        if layout is None:
            layout = discover_repo_layout(workspace_root)
            layouts[workspace_root] = layout
        if not layout.has_multiple_repos:
            continue

        workspace_path = Path(workspace_root)
        ordered = sorted(indexes, key=lambda i: records[i].timestamp)
        explicit = [
            resolve_subprojects(workspace_path, layout.nested_repos, records[i].touched_paths)
            for i in ordered
        ]
        session_subprojects = sorted({name for names in explicit for name in names})

        last_known: list[str] = []
        for idx, names in zip(ordered, explicit):
            assigned = names or last_known or session_subprojects or [_WORKSPACE_FALLBACK]
            records[idx].subprojects = list(assigned)
            last_known = assigned


def resolve_subprojects(
    workspace_root: str | os.PathLike,
    nested_repos: Iterable[str | os.PathLike],
    touched_paths: Iterable[str],
) -> list[str]:
    """Names, relative to the workspace, of the innermost repositories holding the paths."""
    root = Path(workspace_root)
    repos = [Path(repo) for repo in nested_repos]
    names: set[str] = set()

    for touched in touched_paths:
        touched_path = Path(touched)
        candidates = [repo for repo in repos if touched_path.is_relative_to(repo)]
        if not candidates:
            continue
        repo_root = max(candidates, key=lambda repo: len(repo.parts))
        try:
            relative = repo_root.relative_to(root)
        except ValueError:
            continue
        if relative.parts:
            names.add("/".join(relative.parts))

    return sorted(names)


def discover_repo_layout(workspace_root: str | os.PathLike) -> RepoLayout:
    """Find the git repositories inside a workspace."""
    root = Path(workspace_root)
    nested: list[Path] = []
    _collect_nested_repos(root, root, nested)
    return RepoLayout(
        nested_repos=nested,
        has_multiple_repos=len(nested) + int(_is_git_root(root)) > 1,
    )


def _collect_nested_repos(workspace_root: Path, current: Path, nested: list[Path]) -> None:
    try:
        entries = _sorted_entries(current)
    except OSError:
        return

    for path in entries:
        if not path.is_dir():
            continue
        try:
            path.name.encode("utf-8")
        except UnicodeEncodeError:
            continue
        if path.name in _SKIPPED_DIRS:
            continue
        if path != workspace_root and _is_git_root(path):
            nested.append(path)
            continue
        _collect_nested_repos(workspace_root, path, nested)


def _is_git_root(path: Path) -> bool:
    git_path = path / ".git"
    return git_path.is_dir() or git_path.is_file()