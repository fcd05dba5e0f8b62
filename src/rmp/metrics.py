from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .constants import CLIENT, DEFAULT_POLL_MS, EV_ACK_RECV, EV_ACK_SEND, EV_RECV, EV_SEND, SERVER
from .packet import LogEvent

# (component, event) -> counter name; every other pair is ignored
COUNTED: Dict[Tuple[str, str], str] = {
    (CLIENT, EV_SEND): "sent",
    (SERVER, EV_RECV): "received",
    (SERVER, EV_ACK_SEND): "ack_sent",
    (CLIENT, EV_ACK_RECV): "ack_received",
}


@dataclass(frozen=True, slots=True)
class Metrics:
    sent: int = 0
    received: int = 0
    ack_sent: int = 0
    ack_received: int = 0

    def as_rows(self) -> list[tuple[str, int]]:
        return [
            ("Sent", self.sent),
            ("Recv", self.received),
            ("ACK Sent", self.ack_sent),
            ("ACK Recv", self.ack_received),
        ]


class MetricsAggregator:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in COUNTED.values()}

    def ingest(self, line: str) -> bool:
        """Count one JSON Lines record; False if it was not counted."""
        try:
            ev = LogEvent.from_line(line)
        except ValueError:
            return False
        name = COUNTED.get((ev.component, ev.event))
        if name is None:
            return False
        with self._lock:
            self._counts[name] += 1
        return True

    def consume(self, lines: Iterable[str]) -> int:
        return sum(1 for line in lines if self.ingest(line))

    def snapshot(self) -> Metrics:
        with self._lock:
            return Metrics(**self._counts)


class MetricsServer:
    """Accepts log producers over TCP and feeds their lines to an aggregator."""

    def __init__(self, aggregator: MetricsAggregator, host: str = "0.0.0.0", port: int = 0):
        self.aggregator = aggregator
        self.sock = socket.create_server((host, port))
        self.sock.settimeout(DEFAULT_POLL_MS / 1000.0)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def start(self) -> "MetricsServer":
        self._thread = threading.Thread(target=self._accept_loop, name="metrics-accept", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self.sock.close()

    def _accept_loop(self) -> None:
        while not self._stop.is_set():
            try:
                conn, addr = self.sock.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self.sock.fileno() == -1:
                    break
                logging.debug("metrics accept error: %s", exc)
                continue
            logging.info("log connection from %s:%d", addr[0], addr[1])
            threading.Thread(target=self._read_loop, args=(conn,), name="metrics-reader", daemon=True).start()

    def _read_loop(self, conn: socket.socket) -> None:
        conn.settimeout(None)
        with conn, conn.makefile("r", encoding="utf-8", errors="replace", newline="\n") as stream:
            try:
                self.aggregator.consume(stream)
            except OSError as exc:
                logging.debug("log connection dropped: %s", exc)
