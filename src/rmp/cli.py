from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import threading
import time
from typing import Optional

from .bench import run_benchmark
from .constants import CLIENT, DEFAULT_CLIENT_PORT, DEFAULT_LOG_PORT, DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_MS, SERVER
from .events import EventSink
from .metrics import MetricsAggregator, MetricsServer
from .net import DirectionPolicy, UdpEndpoint
from .receiver import ReliableReceiver
from .relay import ImpairmentRelay, RelayConfig
from .sender import ReliableSender, check_settings, summarize


def _log_addr(args: argparse.Namespace) -> Optional[tuple[str, int]]:
    if args.log_port is None:
        return None
    return args.log_host, args.log_port


def _policy(args: argparse.Namespace, side: str) -> DirectionPolicy:
    return DirectionPolicy(
        drop=getattr(args, f"{side}_drop"),
        delay=getattr(args, f"{side}_delay"),
        delay_min_ms=getattr(args, f"{side}_delay_time_min"),
        delay_max_ms=getattr(args, f"{side}_delay_time_max"),
    )


# configure_* turn arguments into validated settings without touching the
# network; a ValueError there is a usage error, anywhere later it is not.
def configure_send(args: argparse.Namespace) -> None:
    check_settings(args.timeout_ms, args.max_retries)


def configure_recv(args: argparse.Namespace) -> None:
    return None


def configure_relay(args: argparse.Namespace) -> RelayConfig:
    return RelayConfig(
        listen=(args.listen_ip, args.listen_port),
        target=(args.target_ip, args.target_port),
        client=_policy(args, "client"),
        server=_policy(args, "server"),
        seed=args.seed,
        check_upstream=args.check_upstream,
    )


def configure_bench(args: argparse.Namespace) -> tuple[DirectionPolicy, DirectionPolicy]:
    check_settings(args.timeout_ms, args.max_retries)
    if args.messages < 0:
        raise ValueError("messages must be non-negative")
    return _policy(args, "client"), _policy(args, "server")


def cmd_send(args: argparse.Namespace, _settings: None = None) -> int:
    udp = UdpEndpoint.listening(args.bind_ip, args.bind_port)
    events = EventSink(CLIENT, _log_addr(args))
    try:
        sender = ReliableSender(
            udp,
            (args.target_ip, args.target_port),
            timeout_ms=args.timeout_ms,
            max_retries=args.max_retries,
            events=events.start(),
        )
        print("Client ready", flush=True)
        started = time.monotonic()
        outcomes = sender.run(sys.stdin)
    finally:
        events.close()
        udp.close()

    summary = {"role": "sender", **summarize(outcomes, started)}
    print(json.dumps(summary, indent=2) if args.json else summary)
    return 0


def cmd_recv(args: argparse.Namespace, _settings: None = None) -> int:
    udp = UdpEndpoint.listening(args.listen_ip, args.listen_port)
    events = EventSink(SERVER, _log_addr(args)).start()
    try:
        ReliableReceiver(udp, events=events).run()
    except KeyboardInterrupt:
        pass
    finally:
        events.close()
        udp.close()
    return 0


def cmd_relay(args: argparse.Namespace, config: RelayConfig) -> int:
    aggregator = MetricsAggregator()
    metrics_srv = MetricsServer(aggregator, args.log_ip, args.log_port)
    try:
        relay = ImpairmentRelay(config)
    except OSError:
        metrics_srv.stop()
        raise

    metrics_srv.start()
    relay.start()
    try:
        if args.headless:
            threading.Event().wait()
        else:
            from . import dashboard

            # log lines on stderr would tear through the curses screen
            logging.getLogger().setLevel(max(logging.WARNING, logging.getLogger().level))
            dashboard.run(aggregator.snapshot)
    except KeyboardInterrupt:
        pass
    finally:
        relay.stop()
        metrics_srv.stop()
        logging.info("final metrics: %s", aggregator.snapshot())
    return 0


def cmd_bench(args: argparse.Namespace, policies: tuple[DirectionPolicy, DirectionPolicy]) -> int:
    client, server = policies
    r = run_benchmark(
        messages=args.messages,
        client=client,
        server=server,
        timeout_ms=args.timeout_ms,
        max_retries=args.max_retries,
        seed=args.seed,
    )
    payload = {"role": "bench", **dataclasses.asdict(r)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rmp", description="Reliable messages over UDP, with an impairment relay.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_log_sink(x: argparse.ArgumentParser) -> None:
        x.add_argument("--log-host", default="127.0.0.1", help="metrics collector host")
        x.add_argument("--log-port", type=int, default=None, help="metrics collector port (events off if unset)")

    def add_sender_opts(x: argparse.ArgumentParser) -> None:
        x.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
        x.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES)
        x.add_argument("--json", action="store_true")

    def add_impairment(x: argparse.ArgumentParser) -> None:
        for side in ("client", "server"):
            x.add_argument(f"--{side}-drop", type=float, default=0.0, help=f"drop chance for {side} packets")
            x.add_argument(f"--{side}-delay", type=float, default=0.0, help=f"delay chance for {side} packets")
            x.add_argument(f"--{side}-delay-time-min", type=int, default=0, help="ms")
            x.add_argument(f"--{side}-delay-time-max", type=int, default=0, help="ms")
        x.add_argument("--seed", type=int, default=None, help="seed the drop/delay generators")

    send = sub.add_parser("send", help="send stdin lines, one message per line")
    add_sender_opts(send)
    add_log_sink(send)
    send.add_argument("--target-ip", required=True)
    send.add_argument("--target-port", type=int, required=True)
    send.add_argument("--bind-ip", default="0.0.0.0")
    send.add_argument("--bind-port", type=int, default=DEFAULT_CLIENT_PORT)
    send.set_defaults(func=cmd_send, configure=configure_send)

    recv = sub.add_parser("recv", help="print and acknowledge incoming messages")
    add_log_sink(recv)
    recv.add_argument("--listen-ip", default="0.0.0.0")
    recv.add_argument("--listen-port", type=int, required=True)
    recv.set_defaults(func=cmd_recv, configure=configure_recv)

    relay = sub.add_parser("relay", help="forward between client and server with loss and delay")
    add_impairment(relay)
    relay.add_argument("--listen-ip", default="0.0.0.0")
    relay.add_argument("--listen-port", type=int, required=True)
    relay.add_argument("--target-ip", required=True)
    relay.add_argument("--target-port", type=int, required=True)
    relay.add_argument("--log-ip", default="0.0.0.0")
    relay.add_argument("--log-port", type=int, default=DEFAULT_LOG_PORT)
    relay.add_argument("--no-check-upstream", dest="check_upstream", action="store_false",
                       help="accept replies from any source on the server side")
    relay.add_argument("--headless", action="store_true", help="no dashboard; stop with Ctrl-C")
    relay.set_defaults(func=cmd_relay, configure=configure_relay)

    bench = sub.add_parser("bench", help="loopback run through a relay")
    add_sender_opts(bench)
    add_impairment(bench)
    bench.add_argument("--messages", type=int, default=100)
    bench.set_defaults(func=cmd_bench, configure=configure_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        settings = args.configure(args)
    except ValueError as exc:
        p.error(str(exc))
    try:
        return int(args.func(args, settings))
    except OSError as exc:
        logging.error("startup failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
