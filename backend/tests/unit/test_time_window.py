from datetime import date, datetime, time, timedelta

import pytest

from sessionbook.domain.time_window import TimeWindow, day_bounds


def _w(start: str, end: str) -> TimeWindow:
    return TimeWindow.on_day(
        date(2030, 1, 8), time.fromisoformat(start), time.fromisoformat(end)
    )


class TestTimeWindow:
    def test_end_must_follow_start(self):
        start = datetime(2030, 1, 8, 10, 0)
        with pytest.raises(ValueError):
            TimeWindow(start, start)

    def test_touching_windows_do_not_overlap(self):
        assert not _w("10:00", "11:00").overlaps(_w("11:00", "12:00"))
        assert _w("10:00", "11:00").overlaps(_w("10:59", "12:00"))

    def test_expanded_pads_both_sides(self):
        padded = _w("10:00", "11:00").expanded(timedelta(minutes=15))
        assert padded == _w("09:45", "11:15")

    def test_from_start_and_duration(self):
        window = TimeWindow.from_start(datetime(2030, 1, 8, 19, 45), 75)
        assert window.end == datetime(2030, 1, 8, 21, 0)
        assert window.duration_minutes == 75
        assert window.day == date(2030, 1, 8)

    def test_contains(self):
        assert _w("09:00", "21:00").contains(_w("19:45", "21:00"))
        assert not _w("09:00", "21:00").contains(_w("08:45", "10:00"))

    def test_windows_sort_by_start(self):
        assert sorted([_w("12:00", "13:00"), _w("09:00", "10:00")])[0] == _w("09:00", "10:00")

    def test_day_bounds_cover_whole_day(self):
        bounds = day_bounds(date(2030, 1, 8))
        assert bounds.start == datetime(2030, 1, 8)
        assert bounds.end == datetime(2030, 1, 9)

    def test_to_dict_uses_iso_strings(self):
        assert _w("10:00", "11:00").to_dict() == {
            "start": "2030-01-08T10:00:00",
            "end": "2030-01-08T11:00:00",
        }
