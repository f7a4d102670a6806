"""
Tail ProxySQL's log for hashmap search evidence.

A LogCursor is an immutable position in the log. `scan_for_matches` reads
from the cursor to the current end of file and returns the matching lines
together with a new cursor placed right after the last match. When nothing
matches the same cursor comes back. Non-matching lines past the last match
stay visible to the next scan, so scans with different patterns must be made
in the order the events are expected.
"""

import os
import re
from dataclasses import dataclass
from typing import List, Pattern, Tuple, Union

from fastroute.errors import LogAccessError

SEARCH_LINE = "Searching {scope} 'rules_fast_routing' hashmap"


@dataclass(frozen=True)
class LogCursor:
    path: str
    offset: int
    last_line: str = ""


@dataclass(frozen=True)
class LogMatch:
    offset: int  # position right after the matching line
    line: str


def search_pattern(scope: str) -> str:
    return SEARCH_LINE.format(scope=re.escape(scope))


def open_at_end(path: str) -> LogCursor:
    """Start an observation window: only lines written after this call are visible."""
    try:
        with open(path, 'rb') as f:
            f.seek(0, os.SEEK_END)
            return LogCursor(path=path, offset=f.tell())
    except OSError as e:
        raise LogAccessError(f"Failed to open log file '{path}': {e}") from e


def scan_for_matches(cursor: LogCursor, pattern: Union[str, Pattern]) -> Tuple[List[LogMatch], LogCursor]:
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    matches = []

    try:
        with open(cursor.path, 'rb') as f:
            f.seek(cursor.offset)
            pos = cursor.offset
            for raw in f:
                # A line without its newline is still being written
                if not raw.endswith(b"\n"):
                    break
                pos += len(raw)
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if regex.search(line):
                    matches.append(LogMatch(offset=pos, line=line))
    except OSError as e:
        raise LogAccessError(f"Failed to read log file '{cursor.path}': {e}") from e

    if not matches:
        return matches, cursor

    last = matches[-1]
    return matches, LogCursor(path=cursor.path, offset=last.offset, last_line=last.line)
