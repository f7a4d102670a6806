#!/usr/bin/env python3
"""
Console output and the TAP-style result sink.

Check results go to stdout as TAP (`1..N`, `ok K - ...`, `not ok K - ...`,
`# ...`). Phase markers and summaries use the colored helpers below.
"""

import sys
from typing import List, Optional, TextIO


# =============================================================================
# Console Output Formatting
# =============================================================================

class Colors:
    """ANSI color codes for terminal output."""
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    CYAN = '\033[0;36m'
    NC = '\033[0m'  # No Color


def print_header(message: str) -> None:
    """Print a header message with decorative border."""
    print()
    print(f"{Colors.BLUE}╔════════════════════════════════════════════════════════════╗{Colors.NC}")
    print(f"{Colors.BLUE}║{Colors.NC} {message:<58} {Colors.BLUE}║{Colors.NC}")
    print(f"{Colors.BLUE}╚════════════════════════════════════════════════════════════╝{Colors.NC}")
    print()


def print_step(message: str) -> None:
    print(f"{Colors.YELLOW}▶ {message}{Colors.NC}")


def print_success(message: str) -> None:
    print(f"{Colors.GREEN}✓ {message}{Colors.NC}")


def print_error(message: str) -> None:
    print(f"{Colors.RED}✗ {message}{Colors.NC}")


def print_info(message: str) -> None:
    print(f"{Colors.CYAN}ℹ {message}{Colors.NC}")


# =============================================================================
# TAP reporter
# =============================================================================

class TapReporter:
    """Numbered pass/fail checks, in the format of ProxySQL's TAP tests."""

    def __init__(self, stream: Optional[TextIO] = None, verbose: bool = False, color: bool = True):
        self.stream = stream or sys.stdout
        self.verbose = verbose
        self.color = color
        self.planned: Optional[int] = None
        self.passed = 0
        self.failed: List[str] = []

    @property
    def count(self) -> int:
        return self.passed + len(self.failed)

    def _write(self, text: str, color: str = "") -> None:
        if self.color and color:
            text = f"{color}{text}{Colors.NC}"
        self.stream.write(text + "\n")
        self.stream.flush()

    def plan(self, n: int) -> None:
        self.planned = int(n)
        self._write(f"1..{self.planned}")

    def ok(self, passed: bool, message: str) -> bool:
        n = self.count + 1
        if passed:
            self.passed += 1
            self._write(f"ok {n} - {message}", Colors.GREEN)
        else:
            self.failed.append(message)
            self._write(f"not ok {n} - {message}", Colors.RED)
        return bool(passed)

    def diag(self, message: str, always: bool = False) -> None:
        if self.verbose or always:
            for line in str(message).splitlines() or [""]:
                self._write(f"# {line}")

    def exit_status(self) -> int:
        if self.failed:
            return 1
        if self.planned is not None and self.count != self.planned:
            return 1
        return 0

    def summary(self) -> None:
        planned = self.planned if self.planned is not None else self.count
        self.diag(f"Checks run: {self.count}/{planned}, passed: {self.passed}, failed: {len(self.failed)}", always=True)
        if self.planned is not None and self.count != self.planned:
            self.diag(f"Looks like you planned {self.planned} checks but ran {self.count}.", always=True)
