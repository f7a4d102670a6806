"""
Deterministic fixtures for the fast-routing checks.

Every id pair (i, i+1) in the range gets two hostgroups on the same backend
and two fast routing rules on schema '<prefix><i>': flagIN 0 (writer) -> i,
flagIN 1 (reader) -> i+1. Provisioning deletes the rows in range first, so
it can be repeated. Nothing is loaded to runtime here.
"""

from dataclasses import dataclass
from typing import List, Tuple

from mysql.connector import Error as MySQLError

from fastroute.connection import ProxySQLAdminClient, quote
from fastroute.errors import ProvisioningError

WRITER_FLAG = 0
READER_FLAG = 1

# Regular query rules tagging the probe queries with the flag the fast routing rules key on
FLAG_RULES = (
    (1, "^SELECT 1$", WRITER_FLAG),
    (2, "^SELECT 2$", READER_FLAG),
)
FLAG_RULES_CACHE_TTL = 600000


def id_range(start: int, end: int) -> range:
    """Validate and build the [start, end) id range, stepped by pairs."""
    start, end = int(start), int(end)
    if start < 0 or end <= start:
        raise ValueError(f"Invalid range [{start}, {end})")
    if (end - start) % 2:
        raise ValueError(f"Range [{start}, {end}) must have an even width")
    return range(start, end, 2)


def width(rng: range) -> int:
    """Number of individual ids (and of routing checks per probe) covered by the range."""
    return rng.stop - rng.start


def schema_for(prefix: str, i: int) -> str:
    return f"{prefix}{i}"


@dataclass(frozen=True)
class BackendPool:
    hostgroup_id: int
    hostname: str
    port: int


@dataclass(frozen=True)
class RoutingRule:
    username: str
    schemaname: str
    flag_in: int
    destination_hostgroup: int
    comment: str


def pools_for(rng: range, host_port: Tuple[str, int]) -> List[BackendPool]:
    host, port = host_port
    pools = []
    for i in rng:
        pools.append(BackendPool(i, host, int(port)))
        pools.append(BackendPool(i + 1, host, int(port)))
    return pools


def rules_for(rng: range, username: str, schema_prefix: str) -> List[RoutingRule]:
    rules = []
    for i in rng:
        schema = schema_for(schema_prefix, i)
        rules.append(RoutingRule(username, schema, WRITER_FLAG, i, f"writer{i}"))
        rules.append(RoutingRule(username, schema, READER_FLAG, i + 1, f"reader{i + 1}"))
    return rules


def _write(admin: ProxySQLAdminClient, what: str, statements: List[str]) -> None:
    try:
        admin.execute_many(statements)
    except MySQLError as e:
        raise ProvisioningError(f"Failed to provision {what}: {e}") from e


def provision_pools(admin: ProxySQLAdminClient, rng: range, host_port: Tuple[str, int]) -> List[BackendPool]:
    """Replace the mysql_servers rows for every hostgroup in range."""
    pools = pools_for(rng, host_port)
    stmts = [
        f"DELETE FROM mysql_servers WHERE hostgroup_id >= {rng.start} AND hostgroup_id < {rng.stop}",
    ]
    for writer, reader in zip(pools[::2], pools[1::2]):
        stmts.append(
            "INSERT INTO mysql_servers (hostgroup_id, hostname, port) VALUES "
            f"({writer.hostgroup_id}, {quote(writer.hostname)}, {writer.port}),"
            f"({reader.hostgroup_id}, {quote(reader.hostname)}, {reader.port})"
        )
    _write(admin, "backend pools", stmts)
    return pools


def provision_rules(admin: ProxySQLAdminClient, rng: range, username: str, schema_prefix: str) -> List[RoutingRule]:
    """Replace the fast routing rules whose destination falls in range."""
    rules = rules_for(rng, username, schema_prefix)
    stmts = [
        "DELETE FROM mysql_query_rules_fast_routing "
        f"WHERE destination_hostgroup >= {rng.start} AND destination_hostgroup < {rng.stop}",
    ]
    for writer, reader in zip(rules[::2], rules[1::2]):
        values = []
        for r in (writer, reader):
            values.append(
                f"({quote(r.username)}, {quote(r.schemaname)}, {r.flag_in}, "
                f"{r.destination_hostgroup}, {quote(r.comment)})"
            )
        stmts.append(
            "INSERT INTO mysql_query_rules_fast_routing "
            "(username, schemaname, flagIN, destination_hostgroup, comment) VALUES "
            + ",".join(values)
        )
    _write(admin, "fast routing rules", stmts)
    return rules


def clear_rules(admin: ProxySQLAdminClient) -> None:
    """Empty the fast routing table so the memory baseline has no rules in it."""
    _write(admin, "empty fast routing table", ["DELETE FROM mysql_query_rules_fast_routing"])


def install_flag_rules(admin: ProxySQLAdminClient) -> None:
    """Install the query rules that set flagOUT for the probe queries, and apply them."""
    stmts = ["DELETE FROM mysql_query_rules"]
    for rule_id, pattern, flag_out in FLAG_RULES:
        stmts.append(
            "INSERT INTO mysql_query_rules (rule_id, active, match_pattern, flagOUT, cache_ttl) "
            f"VALUES ({rule_id}, 1, {quote(pattern)}, {flag_out}, {FLAG_RULES_CACHE_TTL})"
        )
    stmts += [
        "DELETE FROM mysql_query_rules_fast_routing",
        "LOAD MYSQL QUERY RULES TO RUNTIME",
    ]
    _write(admin, "flag query rules", stmts)


def resolve_backend(admin: ProxySQLAdminClient, host, port, ifaces_var: str) -> Tuple[str, int]:
    """Use the configured backend, or discover the one ProxySQL exposes through `ifaces_var`."""
    if host and port:
        return str(host), int(port)
    try:
        return admin.module_host_port(ifaces_var)
    except (MySQLError, ValueError) as e:
        raise ProvisioningError(f"Cannot resolve backend from '{ifaces_var}': {e}") from e
