"""Memory gauge reads from ProxySQL's stats_memory_metrics."""

import time
from dataclasses import dataclass, field

from fastroute.connection import ProxySQLAdminClient, quote
from fastroute.errors import EmptyResultError, ParseError


@dataclass(frozen=True)
class MemorySample:
    label: str
    value: int
    taken_at: float = field(default_factory=time.monotonic)

    def delta(self, baseline: 'MemorySample') -> int:
        return self.value - baseline.value


def read_gauge(admin: ProxySQLAdminClient, name: str) -> int:
    sql = f"SELECT variable_value FROM stats_memory_metrics WHERE variable_name={quote(name)}"
    row = admin.query_one(sql)

    if not row:
        raise EmptyResultError(f"Received empty result for query `{sql}`")

    raw = row[0]
    if raw is None:
        raise ParseError(f"Failed to parse query result as 'int' - res: NULL, query: {sql}")
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ParseError(f"Failed to parse query result as 'int' - res: {raw}, query: {sql}") from None


def sample(admin: ProxySQLAdminClient, name: str, label: str) -> MemorySample:
    return MemorySample(label=label, value=read_gauge(admin, name))
