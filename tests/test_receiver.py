from __future__ import annotations

import threading

import pytest

from rmp.net import UdpEndpoint
from rmp.packet import Ack, Message
from rmp.receiver import ReliableReceiver


class Recorder:
    def __init__(self):
        self.events = []

    def emit(self, event, seq=None):
        self.events.append((event, seq))


@pytest.fixture
def endpoints():
    server = UdpEndpoint.listening("127.0.0.1", 0, timeout_ms=50)
    client = UdpEndpoint.listening("127.0.0.1", 0, timeout_ms=500)
    yield server, client
    server.close()
    client.close()


def test_duplicate_acked_but_processed_once(endpoints):
    server, client = endpoints
    seen = []
    events = Recorder()
    recv = ReliableReceiver(server, on_message=lambda m, a: seen.append(m), events=events)

    raw = Message("hello", 5).to_bytes()
    first = recv.handle_datagram(raw, client.address)
    second = recv.handle_datagram(raw, client.address)

    assert first == Ack(5)
    assert second == Ack(5)
    assert seen == [Message("hello", 5)]
    assert recv.seen == {5}

    acks = [Ack.from_bytes(client.recvfrom()[0]) for _ in range(2)]
    assert acks == [Ack(5), Ack(5)]
    assert events.events == [("recv", 5), ("ack_send", 5), ("recv", 5), ("ack_send", 5)]


def test_undecodable_datagram_silently_dropped(endpoints):
    server, client = endpoints
    events = Recorder()
    recv = ReliableReceiver(server, on_message=lambda m, a: pytest.fail("should not be called"), events=events)

    assert recv.handle_datagram(b"{broken", client.address) is None
    assert recv.handle_datagram(b'{"seq": 3}', client.address) is None
    assert events.events == []
    client.settimeout(0.1)
    with pytest.raises(TimeoutError):
        client.recvfrom()


def test_run_loop_answers_over_udp(endpoints):
    server, client = endpoints
    seen = []
    recv = ReliableReceiver(server, on_message=lambda m, a: seen.append((m.seq, a)))
    stop = threading.Event()
    t = threading.Thread(target=recv.run, args=(stop,), daemon=True)
    t.start()
    try:
        for seq in (1, 2, 2, 3):
            client.sendto(Message(f"m{seq}", seq).to_bytes(), server.address)
            raw, src = client.recvfrom()
            assert Ack.from_bytes(raw) == Ack(seq)
            assert src == server.address
    finally:
        stop.set()
        t.join(timeout=2.0)

    assert not t.is_alive()
    assert [s for s, _ in seen] == [1, 2, 3]
    assert all(a == client.address for _, a in seen)


def test_run_loop_survives_deeply_nested_datagram(endpoints):
    server, client = endpoints
    seen = []
    recv = ReliableReceiver(server, on_message=lambda m, a: seen.append(m.seq))
    stop = threading.Event()
    t = threading.Thread(target=recv.run, args=(stop,), daemon=True)
    t.start()
    try:
        client.sendto(b"[" * 2000, server.address)
        client.sendto(Message("after", 1).to_bytes(), server.address)
        raw, _ = client.recvfrom()
        assert Ack.from_bytes(raw) == Ack(1)
        assert t.is_alive()
    finally:
        stop.set()
        t.join(timeout=2.0)
    assert seen == [1]
