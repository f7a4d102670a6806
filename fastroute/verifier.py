#!/usr/bin/env python3
"""
Transition verifier for 'mysql-query_rules_fast_routing_algorithm'.

One scenario checks a switch from one algorithm to another:

    INIT -> BASELINE -> RULE_LOAD_OLD -> VERIFY_OLD -> ALGO_SWITCH
         -> VERIFY_UNCHANGED -> RULE_LOAD_NEW -> VERIFY_NEW -> DONE

Changing the variable alone must not change which hashmap is searched or
how much memory the rules take. Only 'LOAD MYSQL QUERY RULES TO RUNTIME'
rebuilds the rules under the new algorithm, and memory must then move in the
direction given by `expected_memory_change`.

Each verify phase opens its own log window and reports:
  - one check per routed query
  - the number of search lines for the expected hashmap (one per query)
  - no search lines for the other hashmap (skipped when both modes are equal)
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from mysql.connector import Error as MySQLError

from fastroute import fixtures, settle
from fastroute.config import HarnessConfig
from fastroute.connection import ProxySQLAdminClient
from fastroute.errors import (
    EmptyResultError,
    LogAccessError,
    ParseError,
    ProvisioningError,
    TargetConnectionError,
)
from fastroute.logscan import LogCursor, open_at_end, scan_for_matches, search_pattern
from fastroute.metrics import MemorySample, sample
from fastroute.probe import ProbeResult, verify_range
from fastroute.report import TapReporter, print_error, print_header, print_step, print_success


class AlgorithmMode(enum.IntEnum):
    PER_WORKER = 1
    GLOBAL = 2

    @classmethod
    def parse(cls, value) -> 'AlgorithmMode':
        text = str(value).strip().lower().replace("_", "-")
        aliases = {
            "1": cls.PER_WORKER, "per-worker": cls.PER_WORKER, "thread-local": cls.PER_WORKER,
            "2": cls.GLOBAL, "global": cls.GLOBAL,
        }
        if text not in aliases:
            raise ValueError(f"Unknown fast routing algorithm: {value!r}")
        return aliases[text]


class MemoryChange(enum.Enum):
    DECREASE = "decrease"
    INCREASE = "increase"
    UNCHANGED = "not change"


def expected_memory_change(from_algo: AlgorithmMode, to_algo: AlgorithmMode) -> MemoryChange:
    if from_algo == AlgorithmMode.PER_WORKER and to_algo == AlgorithmMode.GLOBAL:
        return MemoryChange.DECREASE
    if from_algo == AlgorithmMode.GLOBAL and to_algo == AlgorithmMode.PER_WORKER:
        return MemoryChange.INCREASE
    return MemoryChange.UNCHANGED


def memory_change_holds(change: MemoryChange, before: int, after: int) -> bool:
    """Compare rule memory deltas (relative to the empty-rules baseline) across a rule reload."""
    if change is MemoryChange.DECREASE:
        return before > after
    if change is MemoryChange.INCREASE:
        return before < after
    return before == after


class Phase(enum.Enum):
    INIT = "INIT"
    BASELINE = "BASELINE"
    RULE_LOAD_OLD = "RULE_LOAD_OLD"
    VERIFY_OLD = "VERIFY_OLD"
    ALGO_SWITCH = "ALGO_SWITCH"
    VERIFY_UNCHANGED = "VERIFY_UNCHANGED"
    RULE_LOAD_NEW = "RULE_LOAD_NEW"
    VERIFY_NEW = "VERIFY_NEW"
    DONE = "DONE"


VERIFY_PHASES = (Phase.VERIFY_OLD, Phase.VERIFY_UNCHANGED, Phase.VERIFY_NEW)


def checks_per_scenario(from_algo: AlgorithmMode, to_algo: AlgorithmMode, n: int) -> int:
    """Routing checks + evidence counts (+ absence counts) + 2 memory checks."""
    per_phase = n + 1 + (1 if from_algo != to_algo else 0)
    return per_phase * len(VERIFY_PHASES) + 2


@dataclass
class ScenarioResult:
    from_algo: AlgorithmMode
    to_algo: AlgorithmMode
    width: int
    phase: Phase = Phase.INIT
    probes: Dict[Phase, ProbeResult] = field(default_factory=dict)
    log_matches: Dict[Phase, int] = field(default_factory=dict)
    other_matches: Dict[Phase, int] = field(default_factory=dict)
    memory: Dict[str, MemorySample] = field(default_factory=dict)
    memory_unchanged: Optional[bool] = None
    memory_transition: Optional[bool] = None
    log_cursor: Optional[LogCursor] = None
    aborted: Optional[str] = None

    @property
    def expected_change(self) -> MemoryChange:
        return expected_memory_change(self.from_algo, self.to_algo)

    def delta(self, label: str) -> int:
        return self.memory[label].delta(self.memory["init"])

    @property
    def passed(self) -> bool:
        if self.aborted or self.phase is not Phase.DONE:
            return False
        return (
            all(self.probes[p].ok for p in VERIFY_PHASES)
            and all(self.log_matches[p] == self.width for p in VERIFY_PHASES)
            and all(v == 0 for v in self.other_matches.values())
            and bool(self.memory_unchanged)
            and bool(self.memory_transition)
        )

    def outcome(self) -> Tuple:
        """Comparable summary of every check outcome, for repeatability checks."""
        return (
            self.from_algo, self.to_algo, self.phase, self.aborted,
            tuple((p, self.probes[p].passed, self.probes[p].total) for p in self.probes),
            tuple(sorted((p.value, n) for p, n in self.log_matches.items())),
            tuple(sorted((p.value, n) for p, n in self.other_matches.items())),
            self.memory_unchanged, self.memory_transition,
        )


DEFAULT_SCENARIOS = (
    (AlgorithmMode.PER_WORKER, AlgorithmMode.GLOBAL),
    (AlgorithmMode.GLOBAL, AlgorithmMode.PER_WORKER),
)


class TransitionVerifier:
    """Drive fast routing algorithm transitions against a running ProxySQL."""

    def __init__(
        self,
        admin: ProxySQLAdminClient,
        session,
        config: HarnessConfig,
        reporter: TapReporter,
        settler=None,
    ):
        self.admin = admin
        self.session = session
        self.config = config
        self.reporter = reporter
        self.settler = settler or settle.from_config(config)
        self.rng = config.test_range()
        self.width = fixtures.width(self.rng)
        self.host_port: Optional[Tuple[str, int]] = None
        self.fatal: Optional[str] = None

    def scope(self, mode: AlgorithmMode) -> str:
        if mode == AlgorithmMode.PER_WORKER:
            return self.config.per_worker_scope
        return self.config.global_scope

    # -----------------------------
    # Setup shared by all scenarios
    # -----------------------------
    def prepare(self) -> Tuple[str, int]:
        """INIT: check connectivity and the log, enable search logging, install flag rules."""
        print_step("[INIT] Admin connectivity, debug logging and flag query rules")
        self.admin.ping_or_die()
        open_at_end(self.config.log_path)

        try:
            self.admin.enable_query_processor_debug()
        except MySQLError as e:
            raise ProvisioningError(f"Failed to enable query processor debug: {e}") from e

        self.host_port = fixtures.resolve_backend(
            self.admin,
            self.config.backend_host,
            self.config.backend_port,
            self.config.backend_ifaces_var,
        )
        self.reporter.diag(f"Backend for test hostgroups: {self.host_port[0]}:{self.host_port[1]}")
        fixtures.install_flag_rules(self.admin)
        return self.host_port

    # -----------------------------
    # Scenario phases
    # -----------------------------
    def _sample(self, result: ScenarioResult, label: str) -> MemorySample:
        s = sample(self.admin, self.config.memory_gauge, label)
        result.memory[label] = s
        self.reporter.diag(f"'{self.config.memory_gauge}' {label}: {s.value}")
        return s

    def _baseline(self, result: ScenarioResult) -> None:
        result.phase = Phase.BASELINE
        print_step(f"[{result.phase.value}] algorithm={int(result.from_algo)}, empty fast routing rules")
        self.admin.set_fast_routing_algorithm(result.from_algo)
        # Rules are always cleaned up first so memory deltas start from an empty index
        fixtures.clear_rules(self.admin)
        self.admin.load_query_rules_to_runtime()
        self._sample(result, "init")

    def _rule_load_old(self, result: ScenarioResult) -> LogCursor:
        result.phase = Phase.RULE_LOAD_OLD
        print_step(f"[{result.phase.value}] Provisioning {self.width} hostgroups and rules")
        fixtures.provision_pools(self.admin, self.rng, self.host_port)
        self.admin.load_servers_to_runtime()
        fixtures.provision_rules(self.admin, self.rng, self.session.user, self.config.schema_prefix)
        self.admin.load_query_rules_to_runtime()
        return open_at_end(self.config.log_path)

    def _verify(
        self,
        result: ScenarioResult,
        phase: Phase,
        cursor: LogCursor,
        searched: AlgorithmMode,
    ) -> LogCursor:
        result.phase = phase
        scope = self.scope(searched)
        print_step(f"[{phase.value}] Routing {self.width} queries, expecting '{scope}' searches")

        result.probes[phase] = verify_range(self.session, self.rng, self.config.schema_prefix, self.reporter)

        pattern = search_pattern(scope)
        matches, after = self.settler.collect(lambda: scan_for_matches(cursor, pattern), self.width)
        result.log_matches[phase] = len(matches)
        if matches:
            self.reporter.diag(f"Last search line: {after.last_line}")
        self.reporter.ok(
            len(matches) == self.width,
            f"Number of '{scope}' searches in log should match issued queries - "
            f"Exp: {self.width}, Act: {len(matches)}",
        )

        if result.from_algo != result.to_algo:
            other = self.scope(AlgorithmMode.GLOBAL if searched == AlgorithmMode.PER_WORKER else AlgorithmMode.PER_WORKER)
            # Scanned from the window start, independently of the cursor advanced above
            stray, _ = scan_for_matches(cursor, search_pattern(other))
            result.other_matches[phase] = len(stray)
            self.reporter.ok(
                len(stray) == 0,
                f"No '{other}' searches in log while '{scope}' is active - Act: {len(stray)}",
            )
        return after

    def _algo_switch(self, result: ScenarioResult) -> None:
        result.phase = Phase.ALGO_SWITCH
        print_step(f"[{result.phase.value}] algorithm={int(result.to_algo)}, rules not reloaded")
        self.admin.set_fast_routing_algorithm(result.to_algo)

    def _rule_load_new(self, result: ScenarioResult) -> None:
        result.phase = Phase.RULE_LOAD_NEW
        print_step(f"[{result.phase.value}] LOAD MYSQL QUERY RULES TO RUNTIME")
        self.admin.load_query_rules_to_runtime()

    def run_scenario(self, from_algo: AlgorithmMode, to_algo: AlgorithmMode) -> ScenarioResult:
        """Run one transition. Errors scoped to the scenario are recorded, not raised."""
        result = ScenarioResult(from_algo=AlgorithmMode(from_algo), to_algo=AlgorithmMode(to_algo), width=self.width)
        print_header(f"Fast routing algorithm {int(from_algo)} -> {int(to_algo)}")

        if self.host_port is None:
            self.prepare()

        try:
            self._baseline(result)

            cursor = self._rule_load_old(result)
            result.log_cursor = self._verify(result, Phase.VERIFY_OLD, cursor, result.from_algo)
            self._sample(result, "old")

            self._algo_switch(result)

            self.reporter.diag("Search should still use the old hashmap. Only the variable has changed.")
            result.log_cursor = self._verify(result, Phase.VERIFY_UNCHANGED, open_at_end(self.config.log_path), result.from_algo)
            self._sample(result, "new_variable")

            old, new = result.delta("old"), result.delta("new_variable")
            result.memory_unchanged = self.reporter.ok(
                old == new,
                f"Memory stats shouldn't change just by the variable change - old: {old}, new: {new}",
            )

            self._rule_load_new(result)

            result.log_cursor = self._verify(result, Phase.VERIFY_NEW, open_at_end(self.config.log_path), result.to_algo)
            self._sample(result, "new_rules")

            change = result.expected_change
            old, new = result.delta("old"), result.delta("new_rules")
            result.memory_transition = self.reporter.ok(
                memory_change_holds(change, old, new),
                f"Memory stats should {change.value} after 'LOAD MYSQL QUERY RULES TO RUNTIME' - old: {old}, new: {new}",
            )
            result.phase = Phase.DONE
        except (ProvisioningError, ParseError, EmptyResultError, MySQLError) as e:
            result.aborted = f"{result.phase.value}: {e}"
            print_error(f"Scenario aborted in {result.aborted}")
            return result

        if result.passed:
            print_success(f"Transition {int(from_algo)} -> {int(to_algo)} verified")
        else:
            print_error(f"Transition {int(from_algo)} -> {int(to_algo)} has failed checks")
        return result

    def run(self, scenarios: Sequence[Tuple[AlgorithmMode, AlgorithmMode]] = DEFAULT_SCENARIOS) -> List[ScenarioResult]:
        """Run scenarios in order. Connection or log failures stop the whole run."""
        self.reporter.plan(sum(checks_per_scenario(f, t, self.width) for f, t in scenarios))
        results: List[ScenarioResult] = []

        try:
            self.prepare()
            for from_algo, to_algo in scenarios:
                results.append(self.run_scenario(from_algo, to_algo))
        except (TargetConnectionError, LogAccessError) as e:
            self.fatal = str(e)
            print_error(f"Aborting further testing: {e}")
        except ProvisioningError as e:
            self.fatal = str(e)
            print_error(f"Setup failed, aborting further testing: {e}")

        self.reporter.summary()
        return results

    def exit_status(self, results: Sequence[ScenarioResult]) -> int:
        if self.fatal or any(r.aborted for r in results):
            return 1
        return self.reporter.exit_status()
