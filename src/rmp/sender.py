from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .constants import (
    CLIENT,
    DEFAULT_ACK_BUFFER,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_MS,
    EV_ACK_RECV,
    EV_RESEND,
    EV_SEND,
)
from .events import EventSink
from .net import Address, UdpEndpoint
from .packet import Ack, Message


def check_settings(timeout_ms: int, max_retries: int) -> None:
    if timeout_ms <= 0:
        raise ValueError("timeout_ms must be positive")
    if max_retries < 0:
        raise ValueError("max_retries must be non-negative")


class Status(enum.Enum):
    ACKED = "acked"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SendOutcome:
    seq: int
    status: Status
    retries: int

    @property
    def acked(self) -> bool:
        return self.status is Status.ACKED


@dataclass(slots=True)
class ReliableSender:
    """Stop-and-wait sender: one message in flight, bounded retransmission."""

    udp: UdpEndpoint
    dest: Address
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    events: EventSink = field(default_factory=lambda: EventSink(CLIENT))
    next_seq: int = 1

    def __post_init__(self) -> None:
        check_settings(self.timeout_ms, self.max_retries)

    def _wait_for_ack(self, seq: int) -> bool:
        # replies for other sequence numbers neither extend nor shorten the wait
        deadline = time.monotonic() + self.timeout_ms / 1000.0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.udp.settimeout(remaining)
            try:
                raw, _ = self.udp.recvfrom(DEFAULT_ACK_BUFFER)
            except TimeoutError:
                return False
            except OSError as exc:
                logging.debug("recv error while waiting for seq=%d: %s", seq, exc)
                continue

            try:
                ack = Ack.from_bytes(raw)
            except ValueError:
                continue
            if ack.seq == seq:
                return True
            logging.debug("ignoring stale ack seq=%d (waiting for %d)", ack.seq, seq)

    def _transmit(self, data: bytes) -> None:
        try:
            self.udp.sendto(data, self.dest)
        except OSError as exc:
            # the retry loop covers a lost send the same way as a lost packet
            logging.debug("send error: %s", exc)

    def send_and_confirm(self, payload: str) -> SendOutcome:
        seq = self.next_seq
        self.next_seq += 1
        encoded = Message(msg=payload, seq=seq).to_bytes()

        self._transmit(encoded)
        self.events.emit(EV_SEND, seq)

        retries = 0
        while True:
            if self._wait_for_ack(seq):
                self.events.emit(EV_ACK_RECV, seq)
                return SendOutcome(seq, Status.ACKED, retries)
            if retries >= self.max_retries:
                return SendOutcome(seq, Status.FAILED, retries)

            retries += 1
            logging.debug("timeout; resend seq=%d retry=%d", seq, retries)
            self._transmit(encoded)
            self.events.emit(EV_RESEND, seq)

    def run(self, lines: Iterable[str]) -> List[SendOutcome]:
        outcomes: List[SendOutcome] = []
        for line in lines:
            payload = line.rstrip("\r\n")
            if not payload.strip():
                continue
            outcome = self.send_and_confirm(payload)
            if outcome.acked:
                logging.info("ACK for seq %d (retries=%d)", outcome.seq, outcome.retries)
            else:
                logging.error("seq %d failed after %d retries", outcome.seq, outcome.retries)
            outcomes.append(outcome)
        return outcomes


def summarize(outcomes: Iterable[SendOutcome], started: Optional[float] = None) -> dict:
    items = list(outcomes)
    acked = sum(1 for o in items if o.acked)
    summary = {
        "messages": len(items),
        "acked": acked,
        "failed": len(items) - acked,
        "retransmits": sum(o.retries for o in items),
    }
    if started is not None:
        summary["seconds"] = max(0.0, time.monotonic() - started)
    return summary
