"""
Tiny HTTP control surface for the ingest server.

GET  /api/ingest/status -> {"running": bool, "terminated": bool, "pid": int|null}
POST /api/ingest/stop   -> request termination and kill the current ffmpeg

The aiohttp app runs on its own event loop in a daemon thread so the blocking
supervisor loop never shares a thread with it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Optional

from aiohttp import web

from ingest.process_control import ProcessControl

PROC_CONTROL_KEY = web.AppKey("proc_control", ProcessControl)


async def status_handler(request: web.Request) -> web.Response:
    proc_control = request.app[PROC_CONTROL_KEY]
    return web.json_response(
        {
            "running": proc_control.is_running(),
            "terminated": proc_control.is_terminated(),
            "pid": proc_control.pid(),
        }
    )


async def stop_handler(request: web.Request) -> web.Response:
    proc_control = request.app[PROC_CONTROL_KEY]
    killed = proc_control.stop()
    logging.getLogger("status_server").info("stop requested via HTTP (killed=%s)", killed)
    return web.json_response({"terminated": True, "killed": killed})


def build_app(proc_control: ProcessControl) -> web.Application:
    app = web.Application()
    app[PROC_CONTROL_KEY] = proc_control
    app.router.add_get("/api/ingest/status", status_handler)
    app.router.add_post("/api/ingest/stop", stop_handler)
    return app


class StatusServerHandle:
    def __init__(self, thread: threading.Thread, loop: asyncio.AbstractEventLoop, runner: web.AppRunner):
        self.thread = thread
        self.loop = loop
        self.runner = runner

    def stop(self, timeout: float = 5.0) -> None:
        log = logging.getLogger("status_server")
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=timeout)
        log.info("status_server stopped")


def start_status_server_in_thread(
    proc_control: ProcessControl,
    host: str = "127.0.0.1",
    port: int = 8787,
) -> StatusServerHandle:
    """Launch the aiohttp status app in a dedicated thread with its own event loop."""
    log = logging.getLogger("status_server")
    loop = asyncio.new_event_loop()
    runner_box: dict[str, web.AppRunner] = {}
    error_box: dict[str, BaseException] = {}

    def _run():
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(build_app(proc_control), access_log=None)
        try:
            loop.run_until_complete(runner.setup())
            site = web.TCPSite(runner, host, port)
            loop.run_until_complete(site.start())
        except OSError as exc:
            error_box["error"] = exc
            loop.close()
            return
        runner_box["runner"] = runner
        log.info("status_server started on %s:%s", host, port)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(runner.cleanup())
            loop.close()

    t = threading.Thread(target=_run, name="status_server", daemon=True)
    t.start()

    while "runner" not in runner_box and "error" not in error_box and t.is_alive():
        time.sleep(0.05)

    error: Optional[BaseException] = error_box.get("error")
    if error is not None:
        raise error
    if "runner" not in runner_box:
        raise RuntimeError("status_server thread exited during startup")

    return StatusServerHandle(t, loop, runner_box["runner"])
