"""HTTP and WebSocket server for the usage dashboard."""

from __future__ import annotations

import argparse
import asyncio
import functools
import json
import logging

from aiohttp import web

from cctrack.api import build_overview, build_projects, build_sessions
from cctrack.broadcast import Broadcaster
from cctrack.cost import rate_card
from cctrack.models import AppState, to_jsonable
from cctrack.parser import scan_all_records
from cctrack.watcher import start_watcher

_log = logging.getLogger(__name__)

_BROADCAST_CAPACITY = 256
_dumps = functools.partial(json.dumps, separators=(",", ":"))

_ALLOW_ORIGIN = "Access-Control-Allow-Origin"
_PREFLIGHT_HEADERS = {
    _ALLOW_ORIGIN: "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
}


def _json(value) -> web.Response:
    return web.json_response(to_jsonable(value), dumps=_dumps)


@web.middleware
async def _cors(request: web.Request, handler):
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        return web.Response(status=200, headers=_PREFLIGHT_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers[_ALLOW_ORIGIN] = "*"
        raise
    if not response.prepared:
        response.headers[_ALLOW_ORIGIN] = "*"
    return response


async def _forward(ws: web.WebSocketResponse, queue: asyncio.Queue[str]) -> None:
    while True:
        data = await queue.get()
        try:
            await ws.send_str(data)
        except (ConnectionError, RuntimeError):
            await ws.close()
            return


def create_app(state: AppState, broadcaster: Broadcaster) -> web.Application:
    """Build the application serving the JSON API and the live-update socket."""

    async def overview(request: web.Request) -> web.Response:
        return _json(build_overview(state))

    async def sessions(request: web.Request) -> web.Response:
        return _json(build_sessions(state))

    async def projects(request: web.Request) -> web.Response:
        return _json(build_projects(state))

    async def rates(request: web.Request) -> web.Response:
        return _json(rate_card())

    async def live(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        queue = broadcaster.subscribe()
        try:
            try:
                await ws.send_str(_dumps(to_jsonable(build_overview(state))))
            except (ConnectionError, RuntimeError):
                pass
            forwarder = asyncio.create_task(_forward(ws, queue))
            try:
                async for _ in ws:
                    pass
            finally:
                forwarder.cancel()
                await asyncio.gather(forwarder, return_exceptions=True)
        finally:
            broadcaster.unsubscribe(queue)
        return ws

    app = web.Application(middlewares=[_cors])
    app.router.add_get("/api/overview", overview)
    app.router.add_get("/api/sessions", sessions)
    app.router.add_get("/api/projects", projects)
    app.router.add_get("/api/rate-card", rates)
    app.router.add_get("/ws", live)
    return app


def _report_watcher_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _log.error("File watcher stopped: %s", exc)


def main(argv=None) -> None:
    """Load the logs, start the file watcher and serve the dashboard API."""
    parser = argparse.ArgumentParser(prog="cctrack", description="Serve usage and cost data.")
    parser.add_argument("--host", default="0.0.0.0", help="address to listen on")
    parser.add_argument("--port", type=int, default=8080, help="port to listen on")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    _log.info("Scanning Claude project logs...")
    records = scan_all_records()
    _log.info("Loaded %d usage records", len(records))

    state = AppState(records=records)
    broadcaster = Broadcaster(_BROADCAST_CAPACITY)
    app = create_app(state, broadcaster)

    async def watcher_context(app: web.Application):
        task = asyncio.create_task(start_watcher(state, broadcaster))
        task.add_done_callback(_report_watcher_exit)
        yield
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    app.cleanup_ctx.append(watcher_context)

    _log.info("Backend listening on http://%s:%d", args.host, args.port)
    web.run_app(app, host=args.host, port=args.port, print=None)