from __future__ import annotations

import random
import socket
import time
from dataclasses import dataclass
from typing import Optional, Tuple

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class DirectionPolicy:
    """Loss and latency settings for one direction of the relay."""

    drop: float = 0.0
    delay: float = 0.0
    delay_min_ms: int = 0
    delay_max_ms: int = 0

    def __post_init__(self) -> None:
        for name in ("drop", "delay"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} probability must be in [0, 1], got {value}")
        if self.delay_min_ms < 0 or self.delay_max_ms < 0:
            raise ValueError("delay times must be non-negative")

    @property
    def delay_window_ms(self) -> Tuple[int, int]:
        # a max below min collapses the window onto min
        return self.delay_min_ms, max(self.delay_min_ms, self.delay_max_ms)


class Impairment:
    """Drop/delay decisions for one direction, drawn from a private RNG.

    The generator is seeded once and then advances across packets, so a
    fixed seed gives a reproducible sequence of decisions.
    """

    def __init__(self, policy: DirectionPolicy, seed: Optional[int] = None):
        self.policy = policy
        self.rng = random.Random(seed)

    def decide(self) -> Optional[float]:
        """Return None to drop the packet, else the seconds to hold it."""
        if self.rng.random() < self.policy.drop:
            return None
        if self.rng.random() < self.policy.delay:
            lo, hi = self.policy.delay_window_ms
            ms = lo if lo == hi else self.rng.randint(lo, hi)
            return ms / 1000.0
        return 0.0

    @staticmethod
    def hold(seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class UdpEndpoint:
    def __init__(self, sock: socket.socket):
        self.sock = sock

    @classmethod
    def listening(cls, host: str, port: int, timeout_ms: int = 0) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock)

    @classmethod
    def sending(cls, timeout_ms: int = 0) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock)

    @property
    def address(self) -> Address:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def settimeout(self, seconds: Optional[float]) -> None:
        self.sock.settimeout(seconds)

    def sendto(self, data: bytes, addr: Address) -> None:
        self.sock.sendto(data, addr)

    def recvfrom(self, bufsize: int = 65535) -> Tuple[bytes, Address]:
        data, addr = self.sock.recvfrom(bufsize)
        return data, (addr[0], addr[1])

    def close(self) -> None:
        self.sock.close()


def resolve(host: str, port: int) -> Address:
    """Resolve host to the dotted IPv4 form recvfrom() reports."""
    return socket.gethostbyname(host), port
