"""Tracks the current day's prayers and rolls over to the next day lazily."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, NamedTuple, Optional, Tuple

from prayer_times import DailySchedule, ParseError, PrayerEvent, parse_schedule
from timings_cache import TimingsCache

LOGGER = logging.getLogger(__name__)

Parser = Callable[[bytes, date], DailySchedule]


@dataclass(frozen=True)
class ClockState:
    schedule: DailySchedule
    last_computed_date: date


class NextPrayer(NamedTuple):
    event: PrayerEvent
    rolled_over: bool
    schedule: DailySchedule


class PrayerClock:
    """Answer "which prayer is next?" for a wall-clock time.

    The clock only ever advances inside :meth:`next_prayer`; there is no
    background refresh. Errors from the cache or the parser propagate to the
    caller and leave the held schedule untouched.
    """

    def __init__(self, cache: TimingsCache, parser: Parser = parse_schedule) -> None:
        self._cache = cache
        self._parser = parser
        self._state: Optional[ClockState] = None

    def snapshot(self) -> Optional[ClockState]:
        return self._state

    @property
    def schedule(self) -> Optional[DailySchedule]:
        return self._state.schedule if self._state else None

    def load(self, day: date) -> DailySchedule:
        """Fetch and parse the schedule for *day* without touching the held state."""
        raw = self._cache.get(day)
        try:
            return self._parser(raw, day)
        except ParseError:
            LOGGER.exception("Cached timings for %s are unusable; dropping the entry", day)
            self._cache.invalidate(day)
            raise

    def next_prayer(self, now: datetime) -> NextPrayer:
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")

        if self._state is None:
            schedule = self.load(self._local_date(now, None))
            self._state = ClockState(schedule=schedule, last_computed_date=schedule.date)
            LOGGER.info("Loaded prayer schedule for %s", schedule.date)

        schedule = self._state.schedule
        upcoming = schedule.next_after(now)
        if upcoming is not None:
            return NextPrayer(upcoming, False, schedule)

        schedule, upcoming = self._roll_over(now)
        self._state = ClockState(schedule=schedule, last_computed_date=schedule.date)
        LOGGER.info("Rolled over to prayer schedule for %s", schedule.date)
        return NextPrayer(upcoming, True, schedule)

    def _roll_over(self, now: datetime) -> Tuple[DailySchedule, PrayerEvent]:
        held = self._state.schedule if self._state else None
        today = self._local_date(now, held)
        if held is None or today != held.date:
            # Catch up after a suspend: today's remaining prayers come first.
            schedule = self.load(today)
            upcoming = schedule.next_after(now)
            if upcoming is not None:
                return schedule, upcoming

        tomorrow = self.load(today + timedelta(days=1))
        return tomorrow, tomorrow.first

    @staticmethod
    def _local_date(now: datetime, schedule: Optional[DailySchedule]) -> date:
        if schedule is None:
            return now.date()
        return now.astimezone(schedule.first.time.tzinfo).date()
