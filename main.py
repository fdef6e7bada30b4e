#!/usr/bin/env python3
"""
Development launcher for the ingest server.

- Runs the ingest daemon in the foreground with the status endpoint enabled
- Ctrl-C exits cleanly
- Ctrl-R kills the current ffmpeg so the supervisor relistens
"""

import logging
import os
import signal
import sys
import termios
import threading
import tty

from ingest import ingest_daemon
from ingest.config import IngestConfig, get_cfg
from ingest.process_control import ProcessControl


class KeyWatcher(threading.Thread):
    def __init__(self, proc_control: ProcessControl):
        super().__init__(daemon=True)
        self.proc_control = proc_control
        self.fd = sys.stdin.fileno()
        self.old_settings = termios.tcgetattr(self.fd)
        tty.setcbreak(self.fd)

    def run(self):
        try:
            while True:
                ch = os.read(self.fd, 1)
                if not ch:
                    continue
                if ch == b"\x03":  # Ctrl-C
                    os.kill(os.getpid(), signal.SIGINT)
                elif ch == b"\x12":  # Ctrl-R
                    print("[dev] Relisten requested via Ctrl-R", file=sys.stderr)
                    self.proc_control.kill()
        finally:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self.old_settings)


def main():
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    print("[dev] Running ingest server (Ctrl-C to exit, Ctrl-R to relisten)", file=sys.stderr)

    cfg = get_cfg()
    status_cfg = cfg.get("status_server", {})
    proc_control = ProcessControl()
    ingest_daemon.install_signal_handlers(proc_control)

    watcher = KeyWatcher(proc_control)
    watcher.start()
    try:
        return ingest_daemon.run(
            IngestConfig.from_config(cfg),
            status=True,
            status_host=str(status_cfg.get("listen_host", "127.0.0.1")),
            status_port=int(status_cfg.get("listen_port", 8787)),
            proc_control=proc_control,
        )
    finally:
        # Always restore terminal mode after services are down
        termios.tcsetattr(watcher.fd, termios.TCSADRAIN, watcher.old_settings)
        print("[dev] Exiting dev mode", file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
