import argparse

import pytest

from fastroute import cli
from fastroute.verifier import AlgorithmMode


def test_parse_scenario():
    assert cli.parse_scenario("1:2") == (AlgorithmMode.PER_WORKER, AlgorithmMode.GLOBAL)
    assert cli.parse_scenario("global:per-worker") == (AlgorithmMode.GLOBAL, AlgorithmMode.PER_WORKER)
    for bad in ("1", "1:3", "1:2:1"):
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_scenario(bad)


def test_parse_range():
    assert cli.parse_range("1000:1020") == (1000, 1020)
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_range("1000-1020")


def test_flags_override_config():
    args = cli.parse_args([
        "--admin-port", "16032", "--log-file", "/tmp/proxysql.log", "--range", "2000:2010",
        "--per-worker-scope", "thread-local", "--settle-strategy", "backoff",
    ])
    config = cli.build_config(args)

    assert config.admin_port == 16032
    assert config.log_path == "/tmp/proxysql.log"
    assert (config.range_start, config.range_end) == (2000, 2010)
    assert config.per_worker_scope == "thread-local"
    assert config.settle_strategy == "backoff"
    assert config.proxysql_port == 6033


def test_scenarios_accumulate():
    args = cli.parse_args(["--scenario", "2:1", "--scenario", "1:1"])
    assert args.scenario == [
        (AlgorithmMode.GLOBAL, AlgorithmMode.PER_WORKER),
        (AlgorithmMode.PER_WORKER, AlgorithmMode.PER_WORKER),
    ]


def test_main_rejects_odd_range():
    assert cli.main(["--range", "1000:1001"]) == 1


def test_main_reports_unreachable_proxy(monkeypatch):
    from fastroute.errors import TargetConnectionError

    def refuse(cfg, database=None):
        raise TargetConnectionError("Cannot connect to 127.0.0.1:6033")

    monkeypatch.setattr("fastroute.connection.mysql_connect", refuse)
    assert cli.main(["--no-color"]) == 1
