import datetime as dt

import pytest

from clinicflow.domain.models import Slot
from clinicflow.negotiation.adapters.datetime_helpers import (
    date_to_long,
    describe_slot,
    resolve_timezone,
    time_to_12h,
)


class TestDateToLong:
    @pytest.mark.parametrize(
        ("date", "expected"),
        [
            (dt.date(2025, 9, 2), "Tuesday, September 2, 2025"),
            (dt.date(2025, 12, 25), "Thursday, December 25, 2025"),
            (dt.date(2028, 2, 29), "Tuesday, February 29, 2028"),
        ],
        ids=["single-digit-day", "december", "leap-day"],
    )
    def test_formats_correctly(self, date: dt.date, expected: str) -> None:
        assert date_to_long(date) == expected


class TestTimeTo12h:
    """No leading zero on the hour (``2:30 PM`` not ``02:30 PM``)."""

    @pytest.mark.parametrize(
        ("time", "expected"),
        [
            (dt.time(14, 30), "2:30 PM"),
            (dt.time(9, 0), "9:00 AM"),
            (dt.time(12, 0), "12:00 PM"),
            (dt.time(0, 5), "12:05 AM"),
        ],
        ids=["afternoon", "morning", "noon", "after-midnight"],
    )
    def test_formats_correctly(self, time: dt.time, expected: str) -> None:
        assert time_to_12h(time) == expected


def test_describe_slot() -> None:
    slot = Slot(date=dt.date(2025, 9, 2), time=dt.time(14, 0), duration=45)

    assert describe_slot(slot) == "Tuesday, September 2, 2025 at 2:00 PM (45 min)"


class TestResolveTimezone:
    def test_known_zone(self) -> None:
        tz = resolve_timezone("Europe/Madrid")

        assert dt.datetime(2025, 8, 1, tzinfo=tz).utcoffset() == dt.timedelta(hours=2)

    def test_unknown_zone_falls_back_to_utc(self) -> None:
        assert resolve_timezone("Mars/Olympus_Mons") is dt.timezone.utc
