from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import Optional

from .constants import DEFAULT_EVENT_QUEUE
from .net import Address
from .packet import LogEvent

_STOP = object()


class EventSink:
    """Best-effort emitter of lifecycle events to the metrics side channel.

    Events go through a bounded queue to a writer thread that owns the TCP
    connection. A full queue, a failed connect or a broken stream never
    reaches the caller: the event is simply lost.
    """

    def __init__(self, component: str, addr: Optional[Address] = None, maxsize: int = DEFAULT_EVENT_QUEUE):
        self.component = component
        self.addr = addr
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = addr is None
        self._thread: Optional[threading.Thread] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events queued but not yet written."""
        return self._queue.qsize()

    def start(self) -> "EventSink":
        if not self._closed and self._thread is None:
            self._thread = threading.Thread(target=self._run, name=f"{self.component}-events", daemon=True)
            self._thread.start()
        return self

    def emit(self, event: str, seq: Optional[int] = None) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(LogEvent.now(self.component, event, seq))
        except queue.Full:
            pass

    def close(self, timeout: float = 1.0) -> None:
        """Flush what is queued (within timeout) and stop the writer."""
        if self._thread is None:
            self._closed = True
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            pass
        self._closed = True
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        assert self.addr is not None
        try:
            conn = socket.create_connection(self.addr, timeout=5.0)
        except OSError as exc:
            logging.warning("event sink %s:%d unavailable (%s); events disabled", self.addr[0], self.addr[1], exc)
            self._closed = True
            return

        with conn:
            while True:
                item = self._queue.get()
                if item is _STOP:
                    break
                try:
                    conn.sendall(item.to_line().encode("utf-8"))
                except OSError as exc:
                    logging.warning("event sink closed (%s); events disabled", exc)
                    self._closed = True
                    break
