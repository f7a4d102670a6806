import re

import pytest

from fastroute.errors import LogAccessError
from fastroute.logscan import LogCursor, open_at_end, scan_for_matches, search_pattern

PER_WORKER = search_pattern("per-worker")
GLOBAL = search_pattern("global")


def append(path, *lines):
    with open(path, "a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


def search_line(scope, n):
    return f"[INFO] Searching {scope} 'rules_fast_routing' hashmap #{n}"


@pytest.fixture
def log(tmp_path):
    path = tmp_path / "proxysql.log"
    path.write_text(search_line("per-worker", 0) + "\n", encoding="utf-8")
    return path


def test_open_missing_file_raises_log_access_error(tmp_path):
    with pytest.raises(LogAccessError) as exc:
        open_at_end(str(tmp_path / "missing.log"))
    assert isinstance(exc.value, IOError)


def test_open_at_end_hides_existing_lines(log):
    cursor = open_at_end(str(log))
    assert cursor.offset == log.stat().st_size

    matches, after = scan_for_matches(cursor, PER_WORKER)
    assert matches == []
    assert after is cursor


def test_scan_collects_every_match_and_stops_after_last(log):
    cursor = open_at_end(str(log))
    append(log, search_line("per-worker", 1), "noise", search_line("per-worker", 2), "trailing noise")

    matches, after = scan_for_matches(cursor, PER_WORKER)

    assert [m.line for m in matches] == [search_line("per-worker", 1), search_line("per-worker", 2)]
    assert after.last_line == search_line("per-worker", 2)
    # Positioned after the last match, not at end of file
    assert after.offset == matches[-1].offset
    assert after.offset < log.stat().st_size
    # The input cursor is a value and is left untouched
    assert cursor.last_line == ""


def test_second_pattern_sees_lines_after_last_match(log):
    cursor = open_at_end(str(log))
    append(log, search_line("per-worker", 1), search_line("global", 2))

    first, cursor = scan_for_matches(cursor, PER_WORKER)
    second, cursor = scan_for_matches(cursor, GLOBAL)

    assert len(first) == 1
    assert [m.line for m in second] == [search_line("global", 2)]


def test_consumed_matches_are_not_counted_twice(log):
    cursor = open_at_end(str(log))
    append(log, search_line("per-worker", 1))
    first, cursor = scan_for_matches(cursor, PER_WORKER)

    append(log, search_line("per-worker", 2))
    second, _ = scan_for_matches(cursor, PER_WORKER)

    assert len(first) == 1
    assert [m.line for m in second] == [search_line("per-worker", 2)]


def test_scan_order_matters(log):
    cursor = open_at_end(str(log))
    append(log, search_line("per-worker", 1), search_line("global", 2))

    # Scanning the later event first moves past the earlier one
    _, cursor = scan_for_matches(cursor, GLOBAL)
    late, _ = scan_for_matches(cursor, PER_WORKER)
    assert late == []


def test_unterminated_line_is_left_for_next_scan(log):
    cursor = open_at_end(str(log))
    with open(log, "a", encoding="utf-8") as f:
        f.write(search_line("global", 1))

    matches, after = scan_for_matches(cursor, GLOBAL)
    assert matches == []
    assert after == cursor

    with open(log, "a", encoding="utf-8") as f:
        f.write("\n")
    matches, _ = scan_for_matches(cursor, GLOBAL)
    assert len(matches) == 1


def test_invalid_utf8_is_replaced(log):
    cursor = open_at_end(str(log))
    with open(log, "ab") as f:
        f.write(b"\xff\xfe " + search_line("global", 1).encode() + b"\n")

    matches, _ = scan_for_matches(cursor, re.compile(GLOBAL))
    assert len(matches) == 1
    assert "�" in matches[0].line


def test_scan_of_removed_file_raises(tmp_path):
    cursor = LogCursor(path=str(tmp_path / "gone.log"), offset=0)
    with pytest.raises(LogAccessError):
        scan_for_matches(cursor, GLOBAL)


def test_search_pattern_only_matches_its_scope():
    assert re.search(search_pattern("per-worker"), search_line("per-worker", 1))
    assert not re.search(search_pattern("per-worker"), search_line("global", 1))
    assert re.search(search_pattern("thread-local"), search_line("thread-local", 1))
