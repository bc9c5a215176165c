"""
Time window evaluation for facility availability.

Pure functions over pre-fetched availability windows: no database queries.
Windows are wall-clock periods in the local timezone, so every computation
first converts the requested interval to local time, then walks it one
calendar day at a time.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from models.availability_window import AvailabilityWindow
from services.reservation_errors import ReservationErrorCode
from utils.datetime_utils import LOCAL_TZ, ensure_local

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]

# A window ending at or after this time is open until midnight
END_OF_DAY = time(23, 59, 59)


class TimeWindowService:
    """Availability-window arithmetic used by CheckAvailability and slot listing."""

    @staticmethod
    def windows_for_date(windows: Iterable[AvailabilityWindow], day: date) -> List[AvailabilityWindow]:
        """Windows whose weekday matches ``day`` and whose effective range covers it."""
        return [window for window in windows if window.applies_on(day)]

    @staticmethod
    def window_intervals(
        windows: Iterable[AvailabilityWindow],
        day: date,
        tz: Optional[tzinfo] = None
    ) -> List[Interval]:
        """
        Union of the windows in effect on ``day`` as merged local intervals.

        Overlapping and touching windows are merged, so a segment is covered by
        the union exactly when it fits inside one returned interval.

        Args:
            windows: All windows of the facility
            day: Local calendar date
            tz: Local timezone (defaults to the application timezone)

        Returns:
            Sorted, non-overlapping list of (start, end) aware local datetimes
        """
        tz = tz or LOCAL_TZ
        next_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)

        intervals: List[Interval] = []
        for window in TimeWindowService.windows_for_date(windows, day):
            start = datetime.combine(day, window.start_time, tzinfo=tz)
            if window.end_time >= END_OF_DAY:
                end = next_midnight
            else:
                end = datetime.combine(day, window.end_time, tzinfo=tz)
            if end > start:
                intervals.append((start, end))

        intervals.sort()
        merged: List[Interval] = []
        for start, end in intervals:
            if merged and start <= merged[-1][1]:
                if end > merged[-1][1]:
                    merged[-1] = (merged[-1][0], end)
            else:
                merged.append((start, end))
        return merged

    @staticmethod
    def daily_segments(start: datetime, end: datetime, tz: Optional[tzinfo] = None) -> Iterator[Tuple[date, datetime, datetime]]:
        """
        Split [start, end) into the portions falling on each local calendar day.

        Yields:
            (local date, segment start, segment end) with aware local datetimes
        """
        tz = tz or LOCAL_TZ
        local_start = ensure_local(start, tz)
        local_end = ensure_local(end, tz)
        assert local_start is not None and local_end is not None

        day = local_start.date()
        while True:
            day_start = datetime.combine(day, time.min, tzinfo=tz)
            next_day_start = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
            segment_start = max(local_start, day_start)
            segment_end = min(local_end, next_day_start)
            if segment_start < segment_end:
                yield day, segment_start, segment_end
            if local_end <= next_day_start:
                break
            day += timedelta(days=1)

    @staticmethod
    def is_covered(intervals: Sequence[Interval], start: datetime, end: datetime) -> bool:
        """Whether [start, end) fits inside one of the merged intervals."""
        return any(window_start <= start and end <= window_end for window_start, window_end in intervals)

    @staticmethod
    def evaluate_interval(
        windows: Sequence[AvailabilityWindow],
        start: datetime,
        end: datetime,
        tz: Optional[tzinfo] = None
    ) -> Optional[ReservationErrorCode]:
        """
        Check an interval against the facility's weekly windows.

        Every local day the interval touches must have at least one window in
        effect, and that day's portion of the interval must lie inside the
        union of those windows.

        Args:
            windows: All availability windows of the facility
            start: Interval start (aware)
            end: Interval end (aware, exclusive)
            tz: Local timezone (defaults to the application timezone)

        Returns:
            None when the interval is legal, OUT_OF_WINDOW when a touched day
            has no window at all or the day's segment misses every window,
            PARTIALLY_OUT_OF_WINDOW when the segment touches a window but is
            not fully covered
        """
        if end <= start:
            return ReservationErrorCode.OUT_OF_WINDOW

        for day, segment_start, segment_end in TimeWindowService.daily_segments(start, end, tz):
            intervals = TimeWindowService.window_intervals(windows, day, tz)
            if not intervals:
                return ReservationErrorCode.OUT_OF_WINDOW
            if TimeWindowService.is_covered(intervals, segment_start, segment_end):
                continue
            touches_window = any(
                window_start < segment_end and window_end > segment_start
                for window_start, window_end in intervals
            )
            if not touches_window:
                return ReservationErrorCode.OUT_OF_WINDOW
            return ReservationErrorCode.PARTIALLY_OUT_OF_WINDOW
        return None


class SlotSequence:
    """
    Lazily enumerated bookable slots over an inclusive local date range.

    Within each day's merged windows, candidate starts step by ``step`` from
    the window opening; a slot is produced only if it ends inside the same
    window, starts strictly after ``not_before`` and no later than
    ``not_after``, and is not rejected by ``exclude``. The sequence is finite
    (bounded by the date range) and restartable: each ``iter()`` starts over
    from the first day.
    """

    def __init__(
        self,
        windows: Sequence[AvailabilityWindow],
        start_date: date,
        end_date: date,
        duration: timedelta,
        step: timedelta,
        not_before: Optional[datetime] = None,
        not_after: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
        exclude: Optional[Callable[[datetime, datetime], bool]] = None,
    ):
        if duration <= timedelta(0) or step <= timedelta(0):
            raise ValueError("Slot duration and step must be positive")
        self.windows = list(windows)
        self.start_date = start_date
        self.end_date = end_date
        self.duration = duration
        self.step = step
        self.not_before = not_before
        self.not_after = not_after
        self.tz = tz or LOCAL_TZ
        self.exclude = exclude

    def __iter__(self) -> Iterator[Interval]:
        return self._generate()

    def _generate(self) -> Iterator[Interval]:
        day = self.start_date
        while day <= self.end_date:
            for window_start, window_end in TimeWindowService.window_intervals(self.windows, day, self.tz):
                cursor = window_start
                while cursor + self.duration <= window_end:
                    if self.not_after is not None and cursor > self.not_after:
                        return
                    if self.not_before is None or cursor > self.not_before:
                        slot_start = cursor.astimezone(timezone.utc)
                        slot_end = (cursor + self.duration).astimezone(timezone.utc)
                        if self.exclude is None or not self.exclude(slot_start, slot_end):
                            yield slot_start, slot_end
                    cursor += self.step
            day += timedelta(days=1)

    def __repr__(self) -> str:
        return f"<SlotSequence({self.start_date}..{self.end_date}, duration={self.duration}, step={self.step})>"
