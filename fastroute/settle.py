"""
Waiting for ProxySQL to flush its log before counting evidence.

The log write path is not synchronized with the query that triggers it, so
the verifier waits before scanning. FixedDelay sleeps once. RetryWithBackoff
rescans the same window until the expected count shows up or the attempts
run out. Both return the last scan result.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Tuple

from fastroute.logscan import LogCursor, LogMatch

Scan = Callable[[], Tuple[List[LogMatch], LogCursor]]


@dataclass
class FixedDelay:
    seconds: float = 0.1
    sleep: Callable[[float], None] = time.sleep

    def collect(self, scan: Scan, expected: int) -> Tuple[List[LogMatch], LogCursor]:
        self.sleep(self.seconds)
        return scan()


@dataclass
class RetryWithBackoff:
    initial: float = 0.1
    factor: float = 2.0
    attempts: int = 5
    sleep: Callable[[float], None] = time.sleep

    def collect(self, scan: Scan, expected: int) -> Tuple[List[LogMatch], LogCursor]:
        delay = self.initial
        result = scan()
        for _ in range(max(self.attempts, 1) - 1):
            if len(result[0]) >= expected:
                break
            self.sleep(delay)
            delay *= self.factor
            result = scan()
        return result


def from_config(config):
    strategy = (config.settle_strategy or "fixed").lower()
    if strategy == "fixed":
        return FixedDelay(seconds=config.settle_delay)
    if strategy == "backoff":
        return RetryWithBackoff(
            initial=config.settle_delay,
            factor=config.settle_backoff,
            attempts=config.settle_attempts,
        )
    raise ValueError(f"Unknown settle strategy: {config.settle_strategy!r}")
