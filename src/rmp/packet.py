from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Optional

from .constants import U64_MAX


def _load_object(raw: bytes | str) -> dict[str, Any]:
    try:
        obj = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
        raise ValueError(f"not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ValueError("expected a JSON object")
    return obj


def _seq_field(obj: dict[str, Any]) -> int:
    seq = obj.get("seq")
    if seq is None:
        raise ValueError("missing seq")
    # bool is an int subclass but never a valid sequence number
    if isinstance(seq, bool) or not isinstance(seq, int):
        raise ValueError(f"seq must be an integer, got {seq!r}")
    if not 0 <= seq <= U64_MAX:
        raise ValueError(f"seq out of range: {seq}")
    return seq


def _str_field(obj: dict[str, Any], name: str) -> str:
    value = obj.get(name)
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


@dataclass(frozen=True, slots=True)
class Message:
    msg: str
    seq: int

    def to_bytes(self) -> bytes:
        return json.dumps({"msg": self.msg, "seq": self.seq}).encode("utf-8")

    @staticmethod
    def from_bytes(raw: bytes) -> "Message":
        obj = _load_object(raw)
        return Message(msg=_str_field(obj, "msg"), seq=_seq_field(obj))


@dataclass(frozen=True, slots=True)
class Ack:
    seq: int

    def to_bytes(self) -> bytes:
        return json.dumps({"seq": self.seq}).encode("utf-8")

    @staticmethod
    def from_bytes(raw: bytes) -> "Ack":
        return Ack(seq=_seq_field(_load_object(raw)))


@dataclass(frozen=True, slots=True)
class LogEvent:
    """One lifecycle record on the metrics side channel."""

    ts: float
    component: str
    event: str
    seq: Optional[int] = None

    @classmethod
    def now(cls, component: str, event: str, seq: Optional[int] = None) -> "LogEvent":
        return cls(ts=time.time(), component=component, event=event, seq=seq)

    def to_line(self) -> str:
        body = {"ts": self.ts, "component": self.component, "event": self.event, "seq": self.seq}
        return json.dumps(body) + "\n"

    @staticmethod
    def from_line(line: str) -> "LogEvent":
        obj = _load_object(line)
        ts = obj.get("ts")
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            raise ValueError("ts must be a number")
        return LogEvent(
            ts=float(ts),
            component=_str_field(obj, "component"),
            event=_str_field(obj, "event"),
            seq=None if obj.get("seq") is None else _seq_field(obj),
        )
