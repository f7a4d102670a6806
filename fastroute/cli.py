#!/usr/bin/env python3
"""
Fast routing algorithm check for ProxySQL.

Verifies that 'mysql-query_rules_fast_routing_algorithm' controls which
'rules_fast_routing' hashmap is searched (per-worker or global), that rules
keep routing correctly across a switch, and that rule memory moves in the
expected direction once rules are reloaded.

Usage:
    fastroute-check
    fastroute-check --log-file /var/lib/proxysql/proxysql.log --verbose
    fastroute-check --scenario 1:2 --scenario 2:1 --range 1000:1020
"""

import argparse
import sys
import traceback
from typing import List, Optional, Tuple

from fastroute.config import HarnessConfig
from fastroute.connection import ProxySQLAdminClient, ProxySQLSession
from fastroute.errors import HarnessError
from fastroute.report import TapReporter, print_error, print_info
from fastroute.verifier import DEFAULT_SCENARIOS, AlgorithmMode, TransitionVerifier


def parse_scenario(value: str) -> Tuple[AlgorithmMode, AlgorithmMode]:
    parts = value.split(":")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"Invalid scenario '{value}'. Expected FROM:TO, e.g. 1:2")
    try:
        return AlgorithmMode.parse(parts[0]), AlgorithmMode.parse(parts[1])
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_range(value: str) -> Tuple[int, int]:
    parts = value.split(":")
    if len(parts) != 2 or not all(p.strip().isdigit() for p in parts):
        raise argparse.ArgumentTypeError(f"Invalid range '{value}'. Expected START:END, e.g. 1000:1020")
    return int(parts[0]), int(parts[1])


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check ProxySQL's fast routing algorithm switch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Defaults from fastroute.conf / environment
  fastroute-check

  # Explicit log file and more tolerant log settling
  fastroute-check --log-file $REGULAR_INFRA_DATADIR/proxysql.log --settle-strategy backoff

  # Real ProxySQL builds tag per-worker searches as 'thread-local'
  fastroute-check --per-worker-scope thread-local
""",
    )
    parser.add_argument("--proxysql-host", default=None, help="ProxySQL client host")
    parser.add_argument("--proxysql-port", type=int, default=None, help="ProxySQL client port (default: 6033)")
    parser.add_argument("--user", default=None, help="ProxySQL frontend user")
    parser.add_argument("--password", default=None, help="ProxySQL frontend password")
    parser.add_argument("--admin-host", default=None, help="ProxySQL admin host")
    parser.add_argument("--admin-port", type=int, default=None, help="ProxySQL admin port (default: 6032)")
    parser.add_argument("--admin-user", default=None, help="ProxySQL admin user")
    parser.add_argument("--admin-password", default=None, help="ProxySQL admin password")
    parser.add_argument("--log-file", default=None, help="ProxySQL log file to scan")
    parser.add_argument("--range", type=parse_range, default=None, metavar="START:END",
                        help="Hostgroup id range, end exclusive, even width (default: 1000:1020)")
    parser.add_argument("--scenario", type=parse_scenario, action="append", metavar="FROM:TO",
                        help="Algorithm transition to check, 1=per-worker 2=global (default: 1:2 and 2:1)")
    parser.add_argument("--per-worker-scope", default=None, help="Scope tag of per-worker search lines")
    parser.add_argument("--settle-strategy", choices=["fixed", "backoff"], default=None,
                        help="How to wait for log writes before counting (default: fixed)")
    parser.add_argument("--settle-delay", type=float, default=None, help="Settle delay in seconds (default: 0.1)")
    parser.add_argument("--no-color", action="store_true", help="Plain TAP output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print every diagnostic line")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> HarnessConfig:
    config = HarnessConfig()
    overrides = {
        "proxysql_host": args.proxysql_host,
        "proxysql_port": args.proxysql_port,
        "proxysql_user": args.user,
        "proxysql_pass": args.password,
        "admin_host": args.admin_host,
        "admin_port": args.admin_port,
        "admin_user": args.admin_user,
        "admin_pass": args.admin_password,
        "log_path": args.log_file,
        "per_worker_scope": args.per_worker_scope,
        "settle_strategy": args.settle_strategy,
        "settle_delay": args.settle_delay,
    }
    for attr, value in overrides.items():
        if value is not None:
            setattr(config, attr, value)
    if args.range:
        config.range_start, config.range_end = args.range
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
        config.test_range()
    except ValueError as e:
        print_error(str(e))
        return 1

    print_info(f"ProxySQL client: {config.proxysql_host}:{config.proxysql_port} admin: {config.admin_host}:{config.admin_port}")
    print_info(f"Log file: {config.log_path}")

    reporter = TapReporter(verbose=args.verbose, color=not args.no_color)
    admin = ProxySQLAdminClient(
        host=config.admin_host,
        port=config.admin_port,
        user=config.admin_user,
        password=config.admin_pass,
    )
    session = ProxySQLSession(config.proxysql_cfg())

    try:
        verifier = TransitionVerifier(admin, session, config, reporter)
        with session:
            results = verifier.run(args.scenario or DEFAULT_SCENARIOS)
        return verifier.exit_status(results)
    except HarnessError as e:
        print_error(f"Aborting: {e}")
        return 1
    except Exception as e:
        print(f"\n🚨 TEST FAILED: {e}")
        print(traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
