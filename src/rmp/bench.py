from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional

from .constants import CLIENT, DEFAULT_MAX_RETRIES, SERVER
from .events import EventSink
from .metrics import Metrics, MetricsAggregator, MetricsServer
from .net import DirectionPolicy, UdpEndpoint
from .receiver import ReliableReceiver
from .relay import ImpairmentRelay, RelayConfig
from .sender import ReliableSender


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    messages: int
    acked: int
    failed: int
    retransmits: int
    delivered: int
    duration_s: float
    metrics: Metrics


def run_benchmark(
    *,
    messages: int,
    client: DirectionPolicy = DirectionPolicy(),
    server: DirectionPolicy = DirectionPolicy(),
    timeout_ms: int = 100,
    max_retries: int = DEFAULT_MAX_RETRIES,
    seed: Optional[int] = None,
    settle_s: float = 0.2,
) -> BenchmarkResult:
    """Push `messages` payloads through a relay on loopback and tally the result."""
    aggregator = MetricsAggregator()
    metrics_srv = MetricsServer(aggregator, "127.0.0.1", 0).start()
    log_addr = metrics_srv.address

    recv_ep = UdpEndpoint.listening("127.0.0.1", 0, timeout_ms=50)
    delivered: list[int] = []
    recv = ReliableReceiver(
        recv_ep,
        on_message=lambda msg, addr: delivered.append(msg.seq),
        events=EventSink(SERVER, log_addr).start(),
    )
    stop = threading.Event()
    t = threading.Thread(target=recv.run, args=(stop,), daemon=True)
    t.start()

    relay = ImpairmentRelay(
        RelayConfig(listen=("127.0.0.1", 0), target=recv_ep.address, client=client, server=server, seed=seed)
    ).start()

    send_ep = UdpEndpoint.sending()
    sender = ReliableSender(
        send_ep,
        relay.client_address,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
        events=EventSink(CLIENT, log_addr).start(),
    )
    start = time.monotonic()
    try:
        outcomes = sender.run(f"bench message {i}" for i in range(messages))
    finally:
        duration_s = time.monotonic() - start
        sender.events.close()
        send_ep.close()
        relay.stop()
        stop.set()
        t.join(timeout=5.0)
        recv.events.close()
        recv_ep.close()

    # give the reader threads a moment to drain the event streams
    time.sleep(settle_s)
    snapshot = aggregator.snapshot()
    metrics_srv.stop()

    acked = sum(1 for o in outcomes if o.acked)
    return BenchmarkResult(
        messages=len(outcomes),
        acked=acked,
        failed=len(outcomes) - acked,
        retransmits=sum(o.retries for o in outcomes),
        delivered=len(delivered),
        duration_s=duration_s,
        metrics=snapshot,
    )
