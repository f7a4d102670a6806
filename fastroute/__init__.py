"""
ProxySQL fast routing algorithm conformance harness

Checks that 'mysql-query_rules_fast_routing_algorithm' selects between the
per-worker and the global 'rules_fast_routing' hashmaps, using only what the
proxy exposes: routing results, its log, and its memory stats.

Quick Start (Shell):
    fastroute-check --log-file $REGULAR_INFRA_DATADIR/proxysql.log

Python API:
    from fastroute import HarnessConfig, TransitionVerifier
"""

__version__ = "1.0.0"

from .config import HarnessConfig
from .verifier import AlgorithmMode, ScenarioResult, TransitionVerifier

__all__ = ["AlgorithmMode", "HarnessConfig", "ScenarioResult", "TransitionVerifier"]
