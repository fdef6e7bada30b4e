from __future__ import annotations

import asyncio
import subprocess
import sys

from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from ingest.process_control import ProcessControl
from ingest.status_server import build_app


async def _start_client(app: web.Application) -> tuple[TestClient, TestServer]:
    server = TestServer(app)
    client = TestClient(server)
    await client.start_server()
    return client, server


def test_status_reports_flags_and_pid():
    control = ProcessControl()
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    control.set_process(proc)
    control.set_running(True)

    async def runner():
        client, server = await _start_client(build_app(control))
        try:
            resp = await client.get("/api/ingest/status")
            assert resp.status == 200
            payload = await resp.json()
            assert payload == {"running": True, "terminated": False, "pid": proc.pid}
        finally:
            await client.close()
            await server.close()

    try:
        asyncio.run(runner())
    finally:
        proc.kill()
        proc.wait()


def test_stop_requests_termination_and_kills_process():
    control = ProcessControl()
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    control.set_process(proc)

    async def runner():
        client, server = await _start_client(build_app(control))
        try:
            resp = await client.post("/api/ingest/stop")
            assert resp.status == 200
            payload = await resp.json()
            assert payload == {"terminated": True, "killed": True}

            resp = await client.get("/api/ingest/status")
            payload = await resp.json()
            assert payload["terminated"] is True
        finally:
            await client.close()
            await server.close()

    asyncio.run(runner())
    assert control.wait() != 0
    assert control.is_terminated() is True


def test_status_without_process():
    control = ProcessControl()

    async def runner():
        client, server = await _start_client(build_app(control))
        try:
            resp = await client.get("/api/ingest/status")
            payload = await resp.json()
            assert payload == {"running": False, "terminated": False, "pid": None}
        finally:
            await client.close()
            await server.close()

    asyncio.run(runner())
