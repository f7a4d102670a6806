"""
Routing probe: drive queries through ProxySQL and check where they landed.

For each id pair (i, i+1) the probe switches to schema '<prefix><i>' and
issues 'SELECT 1' (writer rule, expect hostgroup i) and 'SELECT 2' (reader
rule, expect hostgroup i+1). The destination is read back from the session's
query processor output ('qpo.destination_hostgroup' in
'PROXYSQL INTERNAL SESSION').
"""

from dataclasses import dataclass
from typing import Optional

from mysql.connector import Error as MySQLError

from fastroute.errors import IntrospectionUnavailable
from fastroute.fixtures import schema_for, width
from fastroute.report import TapReporter

UNKNOWN_HOSTGROUP = -2

WRITER_QUERY = "SELECT 1"
READER_QUERY = "SELECT 2"


@dataclass
class ProbeResult:
    passed: int
    total: int
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.passed == self.total


def destination_hostgroup(session) -> int:
    """Last destination resolved for the session, or UNKNOWN_HOSTGROUP if it can't be read."""
    try:
        doc = session.internal_session()
        return int(doc["qpo"]["destination_hostgroup"])
    except (MySQLError, ValueError, KeyError, TypeError):
        return UNKNOWN_HOSTGROUP


def _check(session, reporter: TapReporter, schema: str, sql: str, expected: int) -> bool:
    session.query(sql)
    actual = destination_hostgroup(session)
    if actual == UNKNOWN_HOSTGROUP:
        raise IntrospectionUnavailable(
            f"Failed to extract destination hostgroup after '{sql}' on '{schema}'",
            schema=schema,
            query=sql,
        )
    return reporter.ok(
        actual == expected,
        f"Destination hostgroup matches expected - Exp: {expected}, Act: {actual}",
    )


def verify_range(session, rng: range, schema_prefix: str, reporter: TapReporter) -> ProbeResult:
    result = ProbeResult(passed=0, total=width(rng))

    try:
        for i in rng:
            schema = schema_for(schema_prefix, i)
            reporter.diag(f"Changing schema to '{schema}'")
            session.use_schema(schema)

            reporter.diag(f"Issuing simple '{WRITER_QUERY}' to trigger WRITER rule for '{schema}'")
            if _check(session, reporter, schema, WRITER_QUERY, i):
                result.passed += 1

            reporter.diag(f"Issuing simple '{READER_QUERY}' to trigger READER rule for '{schema}'")
            if _check(session, reporter, schema, READER_QUERY, i + 1):
                result.passed += 1
    except IntrospectionUnavailable as e:
        reporter.diag(str(e), always=True)
        result.error = e
    except MySQLError as e:
        reporter.diag(f"Probe query failed: {e}", always=True)
        result.error = e

    return result
