from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

from .constants import DEFAULT_BUFFER_SIZE, EV_ACK_SEND, EV_RECV, SERVER
from .events import EventSink
from .net import Address, UdpEndpoint
from .packet import Ack, Message


def print_message(msg: Message, addr: Address) -> None:
    print(f"Got msg={msg.msg!r} seq={msg.seq} from {addr[0]}:{addr[1]}", flush=True)


@dataclass(slots=True)
class ReliableReceiver:
    """Acknowledges every decodable message; surfaces each seq only once.

    `seen` is append-only for the life of the receiver, so memory grows with
    the number of distinct sequence numbers received.
    """

    udp: UdpEndpoint
    on_message: Callable[[Message, Address], None] = print_message
    events: EventSink = field(default_factory=lambda: EventSink(SERVER))
    seen: Set[int] = field(default_factory=set)

    def handle_datagram(self, raw: bytes, addr: Address) -> Optional[Ack]:
        try:
            msg = Message.from_bytes(raw)
        except ValueError:
            return None

        self.events.emit(EV_RECV, msg.seq)
        if msg.seq in self.seen:
            logging.info("duplicate seq %d ignored", msg.seq)
        else:
            self.seen.add(msg.seq)
            self.on_message(msg, addr)

        ack = Ack(msg.seq)
        try:
            self.udp.sendto(ack.to_bytes(), addr)
        except OSError as exc:
            logging.debug("ack send to %s failed: %s", addr, exc)
        self.events.emit(EV_ACK_SEND, msg.seq)
        return ack

    def run(self, stop: Optional[threading.Event] = None) -> None:
        """Serve until `stop` is set (forever without one).

        The socket should carry a timeout when `stop` is used so the loop
        gets a chance to look at it.
        """
        logging.info("receiver listening on %s:%d", *self.udp.address)
        while stop is None or not stop.is_set():
            try:
                raw, addr = self.udp.recvfrom(DEFAULT_BUFFER_SIZE)
            except TimeoutError:
                continue
            except OSError as exc:
                if self.udp.sock.fileno() == -1:
                    break
                logging.debug("recv error: %s", exc)
                continue
            self.handle_datagram(raw, addr)
