#!/usr/bin/env python3
"""
Shared configuration for the fast-routing harness.

Values come from, in increasing priority:
  1. the dataclass defaults below
  2. a bash-style KEY=VALUE file ($FASTROUTE_CONFIG or ./fastroute.conf)
  3. environment variables with the same KEY names
  4. command-line flags (applied by fastroute.cli)
"""

import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastroute.fixtures import id_range


def _parse_bash_config(config_path: str) -> Dict[str, str]:
    """
    Parse bash-style configuration file (KEY=VALUE format).
    Handles simple variable assignments and ignores functions.
    """
    config = {}

    if not os.path.exists(config_path):
        return config

    with open(config_path, 'r') as f:
        content = f.read()

    pattern = r'^([A-Z_][A-Z0-9_]*)=["\']?([^"\'#\n]*)["\']?'

    for line in content.split('\n'):
        line = line.strip()
        if not line or line.startswith('#') or line.startswith('function '):
            continue

        match = re.match(pattern, line)
        if match:
            key, value = match.groups()
            config[key] = value.strip()

    return config


def get_config_path() -> str:
    """Get the path to the harness config file."""
    explicit = os.environ.get('FASTROUTE_CONFIG')
    if explicit:
        return explicit
    return os.path.join(os.getcwd(), 'fastroute.conf')


def default_log_path() -> str:
    """ProxySQL test infra keeps the log under $REGULAR_INFRA_DATADIR."""
    datadir = os.environ.get('REGULAR_INFRA_DATADIR', '')
    return os.path.join(datadir, 'proxysql.log') if datadir else 'proxysql.log'


# Known keys, mapped to (attribute, converter)
_KEYS = {
    'PROXYSQL_HOST': ('proxysql_host', str),
    'PROXYSQL_CLIENT_PORT': ('proxysql_port', int),
    'FRONTEND_USER': ('proxysql_user', str),
    'FRONTEND_PASS': ('proxysql_pass', str),
    'PROXYSQL_ADMIN_HOST': ('admin_host', str),
    'PROXYSQL_ADMIN_PORT': ('admin_port', int),
    'PROXYSQL_ADMIN_USER': ('admin_user', str),
    'PROXYSQL_ADMIN_PASS': ('admin_pass', str),
    'PROXYSQL_LOG': ('log_path', str),
    'RANGE_START': ('range_start', int),
    'RANGE_END': ('range_end', int),
    'SCHEMA_PREFIX': ('schema_prefix', str),
    'PER_WORKER_SCOPE': ('per_worker_scope', str),
    'GLOBAL_SCOPE': ('global_scope', str),
    'MEMORY_GAUGE': ('memory_gauge', str),
    'SETTLE_STRATEGY': ('settle_strategy', str),
    'SETTLE_DELAY': ('settle_delay', float),
    'SETTLE_ATTEMPTS': ('settle_attempts', int),
    'SETTLE_BACKOFF': ('settle_backoff', float),
    'BACKEND_HOST': ('backend_host', str),
    'BACKEND_PORT': ('backend_port', int),
    'BACKEND_IFACES_VAR': ('backend_ifaces_var', str),
}


# Load configuration once at module import
_CONFIG = _parse_bash_config(get_config_path())


@dataclass
class HarnessConfig:
    """Harness configuration with defaults, overridden by config file and environment."""

    # ProxySQL client (port 6033)
    proxysql_host: str = "127.0.0.1"
    proxysql_port: int = 6033
    proxysql_user: str = "root"
    proxysql_pass: str = "root"

    # ProxySQL admin (port 6032)
    admin_host: str = "127.0.0.1"
    admin_port: int = 6032
    admin_user: str = "admin"
    admin_pass: str = "admin"

    # Log written by ProxySQL with query processor debug enabled
    log_path: str = ""

    # Fixture range [range_start, range_end), stepped in pairs
    range_start: int = 1000
    range_end: int = 1020
    schema_prefix: str = "randomschemaname"

    # Scope tags in "Searching <scope> 'rules_fast_routing' hashmap"
    per_worker_scope: str = "per-worker"
    global_scope: str = "global"

    memory_gauge: str = "mysql_query_rules_memory"

    # Wait applied before scanning the log
    settle_strategy: str = "fixed"
    settle_delay: float = 0.1
    settle_attempts: int = 5
    settle_backoff: float = 2.0

    # Shared backend for all hostgroups; discovered from the admin variable when unset
    backend_host: Optional[str] = None
    backend_port: Optional[int] = None
    backend_ifaces_var: str = "sqliteserver-mysql_ifaces"

    def __post_init__(self):
        """Override defaults with values from config file and environment."""
        self.apply(_CONFIG)
        self.apply({k: v for k, v in os.environ.items() if k in _KEYS})
        if not self.log_path:
            self.log_path = default_log_path()

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> 'HarnessConfig':
        """Build a config and apply KEY=VALUE pairs on top of the config file and environment."""
        config = cls()
        config.apply(values)
        return config

    def apply(self, values: Mapping[str, str]) -> None:
        for key, raw in values.items():
            if key not in _KEYS or raw in (None, ''):
                continue
            attr, convert = _KEYS[key]
            try:
                setattr(self, attr, convert(raw))
            except ValueError:
                raise ValueError(f"Invalid value for {key}: {raw!r}") from None

    def proxysql_cfg(self) -> Dict[str, Any]:
        """Return connection config for ProxySQL client port."""
        return {
            "host": self.proxysql_host,
            "port": self.proxysql_port,
            "user": self.proxysql_user,
            "password": self.proxysql_pass,
        }

    def admin_cfg(self) -> Dict[str, Any]:
        """Return connection config for ProxySQL admin port."""
        return {
            "host": self.admin_host,
            "port": self.admin_port,
            "user": self.admin_user,
            "password": self.admin_pass,
        }

    def test_range(self) -> range:
        return id_range(self.range_start, self.range_end)
