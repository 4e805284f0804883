"""Serves the latest speed command to vehicle clients over TCP."""

from __future__ import annotations

import argparse
import logging
import socket
import sys
import threading
from typing import Sequence

_log = logging.getLogger(__name__)

SENDER_PORT = 10001
_BACKLOG = 20
_POLL_INTERVAL = 0.2


class VehicleSender:
    """Holds the latest twist command and hands it to every connecting client."""

    def __init__(self) -> None:
        self.linear_x = 0.0
        self.angular_z = 0.0
        self._lock = threading.Lock()

    def update_twist(self, linear_x: float, angular_z: float) -> None:
        with self._lock:
            self.linear_x = float(linear_x)
            self.angular_z = float(angular_z)

    def format_command(self) -> str:
        """The current command as ``linear_x,angular_z;``."""
        with self._lock:
            linear_x, angular_z = self.linear_x, self.angular_z
        return f"{linear_x:g},{angular_z:g};"

    def serve(
        self,
        host: str = "0.0.0.0",
        port: int = SENDER_PORT,
        stop_event: threading.Event | None = None,
    ) -> None:
        """Send one command per connection and close it, until ``stop_event`` is set."""
        stop = threading.Event() if stop_event is None else stop_event
        with socket.create_server((host, port), backlog=_BACKLOG) as server:
            server.settimeout(_POLL_INTERVAL)
            while not stop.is_set():
                try:
                    client, _ = server.accept()
                except TimeoutError:
                    continue
                except OSError as exc:
                    _log.error("accept: %s", exc)
                    continue
                command = self.format_command()
                payload = command.encode("ascii")
                with client:
                    try:
                        client.sendall(payload)
                    except OSError as exc:
                        _log.error("write: %s", exc)
                print(f"Sent: {command} ({len(payload)} bytes)", flush=True)


def _parse_command_line(line: str) -> tuple[float, float]:
    fields = line.strip().rstrip(";").split(",")
    if len(fields) != 2:
        raise ValueError(f"expected 'linear_x,angular_z', got {line!r}")
    return float(fields[0]), float(fields[1])


def main(argv: Sequence[str] | None = None) -> int:
    """Serve commands; new commands are read from stdin as ``linear_x,angular_z`` lines."""
    parser = argparse.ArgumentParser(description="Serve the latest speed command over TCP.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=SENDER_PORT)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    sender = VehicleSender()
    stop = threading.Event()

    def run() -> None:
        try:
            sender.serve(args.host, args.port, stop)
        except OSError as exc:
            _log.error("bind/listen: %s", exc)
            stop.set()

    server = threading.Thread(target=run, name="sender", daemon=True)
    server.start()
    try:
        for line in sys.stdin:
            if stop.is_set():
                break
            try:
                sender.update_twist(*_parse_command_line(line))
            except ValueError as exc:
                _log.warning("Ignoring command: %s", exc)
        while not stop.is_set():
            stop.wait(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        server.join(timeout=1.0)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())