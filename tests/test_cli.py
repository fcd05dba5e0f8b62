from __future__ import annotations

import json
import socket

import pytest

from rmp import cli
from rmp.dashboard import bar_heights
from rmp.metrics import Metrics
from rmp.net import DirectionPolicy


def test_relay_arguments():
    args = cli.build_parser().parse_args(
        [
            "relay",
            "--listen-port", "4000",
            "--target-ip", "127.0.0.1",
            "--target-port", "5000",
            "--client-drop", "0.1",
            "--server-delay", "0.5",
            "--server-delay-time-min", "10",
            "--server-delay-time-max", "20",
            "--seed", "7",
            "--no-check-upstream",
        ]
    )
    assert args.func is cli.cmd_relay
    assert cli._policy(args, "client") == DirectionPolicy(drop=0.1)
    assert cli._policy(args, "server") == DirectionPolicy(delay=0.5, delay_min_ms=10, delay_max_ms=20)
    assert args.seed == 7
    assert args.check_upstream is False


def test_send_log_sink_optional():
    args = cli.build_parser().parse_args(["send", "--target-ip", "127.0.0.1", "--target-port", "5000"])
    assert cli._log_addr(args) is None
    args = cli.build_parser().parse_args(
        ["send", "--target-ip", "127.0.0.1", "--target-port", "5000", "--log-port", "9100"]
    )
    assert cli._log_addr(args) == ("127.0.0.1", 9100)


def test_bad_probability_is_a_usage_error():
    with pytest.raises(SystemExit) as exc:
        cli.main(["bench", "--messages", "1", "--client-drop", "1.5"])
    assert exc.value.code == 2


def test_bench_command_json(capsys):
    assert cli.main(["bench", "--messages", "2", "--timeout-ms", "500", "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["role"] == "bench"
    assert out["acked"] == 2


def test_bar_heights_scale_to_tallest():
    assert bar_heights(Metrics(), 10) == [0, 0, 0, 0]
    assert bar_heights(Metrics(sent=10, received=5, ack_sent=1, ack_received=0), 10) == [10, 5, 1, 0]
    # small but non-zero counters stay visible
    assert bar_heights(Metrics(sent=1000, received=1), 10) == [10, 1, 0, 0]


def test_bad_sender_settings_rejected_before_binding():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    with pytest.raises(SystemExit) as exc:
        cli.main(["send", "--target-ip", "127.0.0.1", "--target-port", "9", "--bind-ip", "127.0.0.1",
                  "--bind-port", str(port), "--timeout-ms", "0"])
    assert exc.value.code == 2

    # nothing was left holding the port
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as again:
        again.bind(("127.0.0.1", port))


def test_runtime_value_error_is_not_a_usage_error(monkeypatch):
    def broken(**kwargs):
        raise ValueError("boom")

    monkeypatch.setattr(cli, "run_benchmark", broken)
    with pytest.raises(ValueError, match="boom"):
        cli.main(["bench", "--messages", "1"])
