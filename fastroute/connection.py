#!/usr/bin/env python3
"""
ProxySQL admin and client handles built on mysql-connector.

The admin client opens a short-lived connection per call, which is enough
because admin state is global to the proxy. The client session keeps one
connection open: the schema switch and the session introspection that
follows a probe query must happen on the same frontend session.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import mysql.connector
from mysql.connector import Error as MySQLError

from fastroute.errors import TargetConnectionError


# -----------------------------
# mysql-connector helpers
# -----------------------------
def mysql_connect(cfg: Dict[str, Any], database: Optional[str] = None):
    """Connect to ProxySQL admin or client port.

    `cfg` may carry keys that are not valid mysql-connector arguments; they
    are filtered here. Connection failures become TargetConnectionError.
    """
    allowed_keys = {
        "host",
        "port",
        "user",
        "password",
        "database",
        "connection_timeout",
        "use_pure",
        "autocommit",
        "ssl_disabled",
        "unix_socket",
        "charset",
        "read_timeout",
        "write_timeout",
    }

    c = {k: v for k, v in dict(cfg).items() if k in allowed_keys}

    # Defaults tuned for ProxySQL admin/client
    c.setdefault("use_pure", True)
    c.setdefault("autocommit", True)
    c.setdefault("ssl_disabled", True)
    c.setdefault("connection_timeout", 5)
    c.setdefault("read_timeout", 15)
    c.setdefault("write_timeout", 15)

    if database:
        c["database"] = database

    try:
        return mysql.connector.connect(**c)
    except MySQLError as e:
        raise TargetConnectionError(
            f"Cannot connect to {c.get('host')}:{c.get('port')} as {c.get('user')}: {e}"
        ) from e


def mysql_exec(cfg: Dict[str, Any], sql: str):
    conn = mysql_connect(cfg)
    try:
        cur = conn.cursor()
        try:
            cur.execute(sql)
            return cur.fetchall() if cur.with_rows else None
        finally:
            cur.close()
    finally:
        conn.close()


def mysql_exec_many(cfg: Dict[str, Any], statements: List[str]):
    """Execute multiple SQL statements sequentially on one connection.

    Statements are sent without parameters: mysql-connector queries
    @@session.sql_mode when binding, which the ProxySQL Admin Module rejects.
    """
    conn = mysql_connect(cfg)
    try:
        cur = conn.cursor()
        try:
            for stmt in statements:
                cur.execute(stmt)
                if cur.with_rows:
                    cur.fetchall()
        finally:
            cur.close()
    finally:
        conn.close()


def mysql_query_one(cfg: Dict[str, Any], sql: str):
    conn = mysql_connect(cfg)
    try:
        cur = conn.cursor()
        try:
            cur.execute(sql)
            row = cur.fetchone()
            if cur.with_rows:
                cur.fetchall()
            return row
        finally:
            cur.close()
    finally:
        conn.close()


def quote(value: Any) -> str:
    """Render a string literal for admin SQL."""
    return "'" + str(value).replace("'", "") + "'"


def parse_host_port(ifaces: str) -> Tuple[str, int]:
    """Parse the first entry of a ProxySQL '<host>:<port>[;...]' interface list."""
    first = ifaces.split(";")[0].strip()
    host, sep, port = first.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid interface list: {ifaces!r}")
    if host == "0.0.0.0":
        host = "127.0.0.1"
    return host, int(port)


# -----------------------------
# ProxySQL admin client
# -----------------------------
@dataclass
class ProxySQLAdminClient:
    host: str
    port: int
    user: str
    password: str

    def cfg(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "user": self.user, "password": self.password}

    def execute(self, sql: str):
        return mysql_exec(self.cfg(), sql)

    def execute_many(self, statements: List[str]) -> None:
        mysql_exec_many(self.cfg(), statements)

    def query_one(self, sql: str):
        return mysql_query_one(self.cfg(), sql)

    def ping_or_die(self):
        try:
            row = self.query_one("SELECT 1")
        except MySQLError as e:
            raise TargetConnectionError(f"ProxySQL admin ping failed: {e}") from e
        # ProxySQL admin may return string '1' depending on connector/driver.
        if not (row and str(row[0]) == "1"):
            raise TargetConnectionError(f"Unexpected admin ping result: {row}")

    def load_query_rules_to_runtime(self) -> None:
        self.execute("LOAD MYSQL QUERY RULES TO RUNTIME")

    def load_servers_to_runtime(self) -> None:
        self.execute("LOAD MYSQL SERVERS TO RUNTIME")

    def set_fast_routing_algorithm(self, value: int) -> None:
        """Set the algorithm variable and make it live. Does not rebuild the rule index."""
        self.execute_many([
            f"SET mysql-query_rules_fast_routing_algorithm={int(value)}",
            "LOAD MYSQL VARIABLES TO RUNTIME",
        ])

    def enable_query_processor_debug(self, verbosity: int = 7) -> None:
        """Turn on the debug output that carries the hashmap search lines."""
        self.execute_many([
            "SET admin-debug=1",
            "LOAD ADMIN VARIABLES TO RUNTIME",
            f"UPDATE debug_levels SET verbosity={int(verbosity)} WHERE module='debug_mysql_query_processor'",
            "LOAD DEBUG TO RUNTIME",
        ])

    def global_variable(self, name: str) -> Optional[str]:
        row = self.query_one(
            f"SELECT variable_value FROM global_variables WHERE variable_name={quote(name)}"
        )
        return None if not row or row[0] is None else str(row[0])

    def module_host_port(self, ifaces_var: str) -> Tuple[str, int]:
        """Resolve the (host, port) a ProxySQL module listens on, e.g. the SQLite3 server."""
        value = self.global_variable(ifaces_var)
        if not value:
            raise ValueError(f"Admin variable '{ifaces_var}' is not set")
        return parse_host_port(value)


# -----------------------------
# ProxySQL client session
# -----------------------------
class ProxySQLSession:
    """One frontend session on the ProxySQL client port."""

    def __init__(self, cfg: Dict[str, Any]):
        self.cfg = dict(cfg)
        self._conn = None

    def __enter__(self) -> 'ProxySQLSession':
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def user(self) -> str:
        return str(self.cfg.get("user", ""))

    def open(self) -> None:
        if self._conn is None:
            self._conn = mysql_connect(self.cfg)

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def _connection(self):
        if self._conn is None:
            self.open()
        return self._conn

    def use_schema(self, schema: str) -> None:
        self._connection().cmd_init_db(schema)

    def query(self, sql: str) -> List[Tuple[Any, ...]]:
        cur = self._connection().cursor()
        try:
            cur.execute(sql)
            return cur.fetchall() if cur.with_rows else []
        finally:
            cur.close()

    def internal_session(self) -> Dict[str, Any]:
        """Return the parsed 'PROXYSQL INTERNAL SESSION' document."""
        rows = self.query("PROXYSQL INTERNAL SESSION")
        if not rows:
            raise ValueError("Empty result for 'PROXYSQL INTERNAL SESSION'")
        doc = rows[-1][0]
        if isinstance(doc, (bytes, bytearray)):
            doc = doc.decode("utf-8")
        return json.loads(doc)
