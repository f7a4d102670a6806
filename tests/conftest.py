"""Shared fixtures: an in-memory ProxySQL that writes search lines to a real log file."""
import io
import re
from pathlib import Path

import pytest
from mysql.connector import errors as mysql_errors

import fastroute.config as config_module
from fastroute.config import HarnessConfig, _KEYS
from fastroute.connection import ProxySQLAdminClient
from fastroute.report import TapReporter
from fastroute.settle import FixedDelay

ALGO_VAR = "mysql-query_rules_fast_routing_algorithm"

_SET = re.compile(r"^SET (\S+)=(.*)$")
_DELETE_RULES = re.compile(
    r"^DELETE FROM mysql_query_rules_fast_routing"
    r"(?: WHERE destination_hostgroup >= (\d+) AND destination_hostgroup < (\d+))?$"
)
_RULE_VALUES = re.compile(r"\('([^']*)', '([^']*)', (\d+), (\d+), '([^']*)'\)")
_DELETE_SERVERS = re.compile(r"^DELETE FROM mysql_servers WHERE hostgroup_id >= (\d+) AND hostgroup_id < (\d+)$")
_SERVER_VALUES = re.compile(r"\((\d+), '([^']*)', (\d+)\)")
_GAUGE = re.compile(r"FROM stats_memory_metrics WHERE variable_name='([^']*)'")
_GLOBAL_VAR = re.compile(r"FROM global_variables WHERE variable_name='([^']*)'")


class FakeProxySQL:
    """Just enough of ProxySQL to exercise the harness.

    The fast routing index is rebuilt (with the live algorithm) only on
    'LOAD MYSQL QUERY RULES TO RUNTIME'. Per-worker indexes cost one copy of
    every rule per worker, the global index one copy in total.
    """

    def __init__(self, log_path: Path, workers: int = 4, rule_size: int = 64, base_memory: int = 4096):
        self.log_path = Path(log_path)
        self.log_path.write_text("2026-10-19 10:00:00 [INFO] ProxySQL started\n", encoding="utf-8")
        self.workers = workers
        self.rule_size = rule_size
        self.base_memory = base_memory

        self.variables = {ALGO_VAR: "1", "sqliteserver-mysql_ifaces": "0.0.0.0:6030"}
        self.live_algorithm = 1
        self.index_algorithm = 1
        self.rules = {}
        self.runtime_rules = {}
        self.servers = {}
        self.runtime_servers = {}
        self.statements = []
        self.pending = []

        # Fault injection
        self.fail_on = None
        self.gauge_override = None
        self.rebuild_on_variable_load = False
        self.misroute = {}
        self.broken_introspection = False

    # Memory
    def rules_memory(self) -> int:
        copies = self.workers if self.index_algorithm == 1 else 1
        return self.base_memory + len(self.runtime_rules) * self.rule_size * copies

    # Log
    def scope(self) -> str:
        return "per-worker" if self.index_algorithm == 1 else "global"

    def log(self, line: str) -> None:
        self.pending.append(line)

    def flush(self, *_):
        if self.pending:
            with open(self.log_path, "a", encoding="utf-8") as f:
                for line in self.pending:
                    f.write(line + "\n")
            self.pending = []

    # Admin statements
    def admin(self, sql: str):
        sql = " ".join(sql.split())
        self.statements.append(sql)
        if self.fail_on and self.fail_on in sql:
            raise mysql_errors.ProgrammingError(msg=f"injected failure on: {sql}")

        m = _SET.match(sql)
        if m:
            self.variables[m.group(1)] = m.group(2)
            return None
        if sql == "LOAD MYSQL VARIABLES TO RUNTIME":
            self.live_algorithm = int(self.variables[ALGO_VAR])
            if self.rebuild_on_variable_load:
                self.index_algorithm = self.live_algorithm
            return None
        if sql == "LOAD MYSQL QUERY RULES TO RUNTIME":
            self.runtime_rules = dict(self.rules)
            self.index_algorithm = self.live_algorithm
            return None
        if sql == "LOAD MYSQL SERVERS TO RUNTIME":
            self.runtime_servers = dict(self.servers)
            return None

        m = _DELETE_RULES.match(sql)
        if m:
            if m.group(1) is None:
                self.rules = {}
            else:
                lo, hi = int(m.group(1)), int(m.group(2))
                self.rules = {k: v for k, v in self.rules.items() if not lo <= v < hi}
            return None
        if sql.startswith("INSERT INTO mysql_query_rules_fast_routing"):
            for user, schema, flag, hg, _comment in _RULE_VALUES.findall(sql):
                self.rules[(user, schema, int(flag))] = int(hg)
            return None

        m = _DELETE_SERVERS.match(sql)
        if m:
            lo, hi = int(m.group(1)), int(m.group(2))
            self.servers = {k: v for k, v in self.servers.items() if not lo <= k < hi}
            return None
        if sql.startswith("INSERT INTO mysql_servers"):
            for hg, host, port in _SERVER_VALUES.findall(sql):
                self.servers[int(hg)] = (host, int(port))
            return None

        m = _GAUGE.search(sql)
        if m:
            if self.gauge_override is not None:
                return [self.gauge_override] if self.gauge_override != () else []
            if m.group(1) != "mysql_query_rules_memory":
                return []
            return [(str(self.rules_memory()),)]

        m = _GLOBAL_VAR.search(sql)
        if m:
            value = self.variables.get(m.group(1))
            return [(value,)] if value is not None else []

        if sql == "SELECT 1":
            return [("1",)]
        # debug levels, regular query rules, admin variables: accepted as-is
        return None


class FakeAdmin(ProxySQLAdminClient):
    def __init__(self, proxy: FakeProxySQL):
        super().__init__(host="127.0.0.1", port=6032, user="admin", password="admin")
        self.proxy = proxy

    def execute(self, sql):
        return self.proxy.admin(sql)

    def execute_many(self, statements):
        for stmt in statements:
            self.proxy.admin(stmt)

    def query_one(self, sql):
        rows = self.proxy.admin(sql)
        return rows[0] if rows else None


class FakeSession:
    def __init__(self, proxy: FakeProxySQL, user: str = "root"):
        self.proxy = proxy
        self.user = user
        self.schema = None
        self.last_hostgroup = None
        self.queries = []

    def use_schema(self, schema):
        self.schema = schema

    def query(self, sql):
        self.queries.append((self.schema, sql))
        flag = {"SELECT 1": 0, "SELECT 2": 1}.get(sql)
        key = (self.user, self.schema, flag)
        hg = self.proxy.runtime_rules.get(key, 0)
        self.proxy.log(
            f"2026-10-19 10:00:01 Query_Processor.cpp:1234:search_rules_fast_routing(): "
            f"[INFO] Searching {self.proxy.scope()} 'rules_fast_routing' hashmap # "
            f"user='{self.user}' schema='{self.schema}' flagIN='{flag}'"
        )
        self.proxy.log("2026-10-19 10:00:01 MySQL_Session.cpp:999:handler(): [INFO] unrelated debug line")
        self.last_hostgroup = self.proxy.misroute.get(key, hg)
        return [(1,)]

    def internal_session(self):
        if self.proxy.broken_introspection:
            return {"qpo": {}}
        return {"qpo": {"destination_hostgroup": self.last_hostgroup}}


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep the developer's fastroute.conf and environment out of the tests."""
    monkeypatch.setattr(config_module, "_CONFIG", {})
    for key in list(_KEYS) + ["REGULAR_INFRA_DATADIR", "FASTROUTE_CONFIG"]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def proxy(tmp_path):
    return FakeProxySQL(tmp_path / "proxysql.log")


@pytest.fixture
def admin(proxy):
    return FakeAdmin(proxy)


@pytest.fixture
def session(proxy):
    return FakeSession(proxy)


@pytest.fixture
def reporter():
    return TapReporter(stream=io.StringIO(), color=False)


@pytest.fixture
def config(proxy):
    cfg = HarnessConfig()
    cfg.log_path = str(proxy.log_path)
    return cfg


@pytest.fixture
def settler(proxy):
    # Sleeping is when the fake proxy gets around to writing its log
    return FixedDelay(seconds=0, sleep=proxy.flush)
