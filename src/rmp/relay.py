from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .constants import DEFAULT_BUFFER_SIZE, DEFAULT_POLL_MS
from .net import Address, DirectionPolicy, Impairment, UdpEndpoint, resolve


@dataclass(frozen=True, slots=True)
class RelayConfig:
    listen: Address
    target: Address
    client: DirectionPolicy = field(default_factory=DirectionPolicy)
    server: DirectionPolicy = field(default_factory=DirectionPolicy)
    seed: Optional[int] = None
    check_upstream: bool = True
    buffer_size: int = DEFAULT_BUFFER_SIZE
    upstream_bind: Address = ("0.0.0.0", 0)

    def __post_init__(self) -> None:
        if self.buffer_size <= 0:
            raise ValueError("buffer_size must be positive")

    def seeds(self) -> tuple[Optional[int], Optional[int]]:
        if self.seed is None:
            return None, None
        return self.seed, self.seed + 1


class LastClient:
    """The single return-path slot. A new client silently takes it over."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._addr: Optional[Address] = None

    def set(self, addr: Address) -> None:
        with self._lock:
            if addr != self._addr:
                logging.info("client endpoint is now %s:%d", addr[0], addr[1])
            self._addr = addr

    def get(self) -> Optional[Address]:
        with self._lock:
            return self._addr


@dataclass(slots=True)
class DirectionStats:
    received: int = 0
    dropped: int = 0
    delayed: int = 0
    forwarded: int = 0
    discarded: int = 0  # foreign source or no route


class ForwardingDirection:
    """One sequential forwarding loop: receive, impair, forward.

    While a packet is held for its delay the loop does not read the next
    one, so delays queue up behind each other within a direction.
    """

    def __init__(
        self,
        name: str,
        inbound: UdpEndpoint,
        outbound: UdpEndpoint,
        impairment: Impairment,
        accept: Callable[[Address], bool],
        route: Callable[[], Optional[Address]],
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.name = name
        self.inbound = inbound
        self.outbound = outbound
        self.impairment = impairment
        self.accept = accept
        self.route = route
        self.buffer_size = buffer_size
        self.stats = DirectionStats()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=f"relay-{self.name}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                data, src = self.inbound.recvfrom(self.buffer_size)
            except TimeoutError:
                continue
            except OSError as exc:
                if self.inbound.sock.fileno() == -1:
                    break
                logging.debug("[%s] recv error: %s", self.name, exc)
                continue
            self.forward(data, src)

    def forward(self, data: bytes, src: Address) -> bool:
        """Apply the policy to one datagram; True if it was sent on."""
        self.stats.received += 1
        if not self.accept(src):
            self.stats.discarded += 1
            logging.debug("[%s] ignoring %d bytes from %s", self.name, len(data), src)
            return False

        hold = self.impairment.decide()
        if hold is None:
            self.stats.dropped += 1
            logging.debug("[%s] DROPPED %d bytes", self.name, len(data))
            return False
        if hold > 0:
            self.stats.delayed += 1
            logging.debug("[%s] delaying %d bytes by %.0f ms", self.name, len(data), hold * 1000)
            Impairment.hold(hold)

        # routed after the hold: the client may have moved meanwhile
        dest = self.route()
        if dest is None:
            self.stats.discarded += 1
            logging.debug("[%s] no route for %d bytes", self.name, len(data))
            return False

        try:
            self.outbound.sendto(data, dest)
        except OSError as exc:
            logging.debug("[%s] forward to %s failed: %s", self.name, dest, exc)
            return False
        self.stats.forwarded += 1
        return True


class ImpairmentRelay:
    """Forwards between one client and one upstream server, impairing both ways.

    The client-facing socket receives client traffic and carries replies
    back, so the client sees a single peer address. The server-facing socket
    is an ephemeral port talking only to the upstream server.
    """

    def __init__(self, config: RelayConfig):
        self.config = config
        self.upstream = resolve(*config.target)
        self.last_client = LastClient()

        poll_ms = DEFAULT_POLL_MS
        self.client_sock = UdpEndpoint.listening(*config.listen, timeout_ms=poll_ms)
        try:
            self.server_sock = UdpEndpoint.listening(*config.upstream_bind, timeout_ms=poll_ms)
        except OSError:
            self.client_sock.close()
            raise

        client_seed, server_seed = config.seeds()
        self.to_server = ForwardingDirection(
            "client->server",
            inbound=self.client_sock,
            outbound=self.server_sock,
            impairment=Impairment(config.client, client_seed),
            accept=self._accept_from_client,
            route=lambda: self.upstream,
            buffer_size=config.buffer_size,
        )
        self.to_client = ForwardingDirection(
            "server->client",
            inbound=self.server_sock,
            outbound=self.client_sock,
            impairment=Impairment(config.server, server_seed),
            accept=self._accept_from_server,
            route=self.last_client.get,
            buffer_size=config.buffer_size,
        )
        self._directions: List[ForwardingDirection] = [self.to_server, self.to_client]
        self._running = False

    @property
    def client_address(self) -> Address:
        return self.client_sock.address

    @property
    def server_address(self) -> Address:
        return self.server_sock.address

    def _accept_from_client(self, src: Address) -> bool:
        self.last_client.set(src)
        return True

    def _accept_from_server(self, src: Address) -> bool:
        return not self.config.check_upstream or src == self.upstream

    def start(self) -> "ImpairmentRelay":
        if not self._running:
            for direction in self._directions:
                direction.start()
            self._running = True
            host, port = self.client_address
            logging.info(
                "relay listening on %s:%d, forwarding to %s:%d", host, port, self.upstream[0], self.upstream[1]
            )
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop both directions, letting any held packet finish first."""
        for direction in self._directions:
            direction.stop()
        if self._running:
            for direction in self._directions:
                direction.join(timeout)
        self._running = False
        self.client_sock.close()
        self.server_sock.close()

    def __enter__(self) -> "ImpairmentRelay":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
