from __future__ import annotations

U64_MAX = 2**64 - 1

CLIENT = "client"
SERVER = "server"

EV_SEND = "send"
EV_RESEND = "resend"
EV_ACK_RECV = "ack_recv"
EV_RECV = "recv"
EV_ACK_SEND = "ack_send"

DEFAULT_TIMEOUT_MS = 1000
DEFAULT_MAX_RETRIES = 5
DEFAULT_BUFFER_SIZE = 2048  # relay receive buffer; larger datagrams are truncated
DEFAULT_ACK_BUFFER = 256
DEFAULT_POLL_MS = 200  # how often blocking loops look at their stop flag
DEFAULT_EVENT_QUEUE = 1000

DEFAULT_CLIENT_PORT = 3000
DEFAULT_LOG_PORT = 9100
