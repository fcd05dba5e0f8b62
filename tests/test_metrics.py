from __future__ import annotations

import socket
import threading
import time

import pytest

from rmp.events import EventSink
from rmp.metrics import Metrics, MetricsAggregator, MetricsServer


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


LINES = [
    '{"ts": 1.0, "component": "client", "event": "send", "seq": 1}',
    '{"ts": 1.1, "component": "server", "event": "recv", "seq": 1}',
    "this is not json",
    '{"ts": 1.2, "component": "server", "event": "ack_send", "seq": 1}',
    '{"ts": 1.3, "component": "client", "event": "resend", "seq": 1}',
    '{"ts": 1.4, "component": "client", "event": "ack_recv", "seq": 1}',
    '{"ts": 1.5, "component": "client", "event": "send"',
    '{"ts": 1.6, "component": "server", "event": "send", "seq": 2}',
    '{"ts": 1.7, "component": "client", "event": "send", "seq": 2}',
    '{"component": "client", "event": "send", "seq": 3}',
    "",
    "[" * 5000,
    '{"ts": 1.8, "component": "client", "event": "send", "seq": null}',
]


def test_counts_only_recognized_pairs():
    agg = MetricsAggregator()
    assert agg.consume(LINES) == 6
    assert agg.snapshot() == Metrics(sent=3, received=1, ack_sent=1, ack_received=1)


def test_snapshot_is_immutable_and_detached():
    agg = MetricsAggregator()
    snap = agg.snapshot()
    agg.ingest('{"ts": 0, "component": "client", "event": "send"}')
    assert snap.sent == 0
    assert agg.snapshot().sent == 1
    with pytest.raises(AttributeError):
        snap.sent = 5


def test_concurrent_ingest():
    agg = MetricsAggregator()
    line = '{"ts": 0, "component": "server", "event": "recv", "seq": 1}'
    threads = [threading.Thread(target=agg.consume, args=([line] * 500,)) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert agg.snapshot().received == 2000


def test_server_reads_lines_over_tcp():
    agg = MetricsAggregator()
    srv = MetricsServer(agg, "127.0.0.1", 0).start()
    try:
        with socket.create_connection(srv.address) as conn:
            # split a record across writes to exercise line reassembly
            conn.sendall(b'{"ts": 1, "component": "client", "ev')
            conn.sendall(b'ent": "send", "seq": 1}\nnot json\n')
            conn.sendall(b"[" * 5000 + b"\n")
            conn.sendall(b'{"ts": 2, "component": "client", "event": "ack_recv", "seq": 1}\n')
        assert wait_for(lambda: agg.snapshot() == Metrics(sent=1, ack_received=1))
    finally:
        srv.stop()


def test_event_sink_feeds_server():
    agg = MetricsAggregator()
    srv = MetricsServer(agg, "127.0.0.1", 0).start()
    client = EventSink("client", srv.address).start()
    server = EventSink("server", srv.address).start()
    try:
        for seq in (1, 2, 3):
            client.emit("send", seq)
            server.emit("recv", seq)
            server.emit("ack_send", seq)
            client.emit("ack_recv", seq)
        client.emit("resend", 3)
    finally:
        client.close()
        server.close()
    try:
        assert wait_for(lambda: agg.snapshot() == Metrics(sent=3, received=3, ack_sent=3, ack_received=3))
    finally:
        srv.stop()


def test_event_sink_without_collector_is_silent():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    sink = EventSink("client", ("127.0.0.1", port)).start()
    assert wait_for(lambda: sink.closed)
    sink.emit("send", 1)
    sink.close()


def test_event_sink_drops_when_full():
    sink = EventSink("client", ("127.0.0.1", 9), maxsize=2)
    for seq in range(10):
        sink.emit("send", seq)
    assert sink.pending == 2
    sink.close()
    assert sink.closed


def test_disabled_sink():
    sink = EventSink("client").start()
    assert sink.closed
    sink.emit("send", 1)
    sink.close()
