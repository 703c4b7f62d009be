from datetime import UTC, datetime, timedelta

import allure
import pytest

from async_bash.scheduler.timeutil import elapsed_ms, format_duration, from_iso, to_iso

pytestmark = [
    allure.epic("Job lifecycle"),
    allure.feature("Time helpers"),
]


@pytest.mark.parametrize(
    ("ms", "expected"),
    [
        (0, "0s"),
        (3_400, "3s"),
        (123_000, "2m 3s"),
        (3_723_000, "1h 2m 3s"),
    ],
)
def test_format_duration(ms: int, expected: str) -> None:
    assert format_duration(ms) == expected


def test_iso_helpers_accept_z_suffix_and_naive_values() -> None:
    aware = from_iso("2026-10-18T09:00:00Z")
    naive = from_iso("2026-10-18T09:00:00")

    assert aware == naive
    assert aware.tzinfo is not None
    assert to_iso(None) is None
    assert from_iso(to_iso(aware)) == aware


def test_elapsed_ms_handles_missing_start() -> None:
    start = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    assert elapsed_ms(start, start + timedelta(seconds=2)) == 2_000
    assert elapsed_ms(None, start) == 0
