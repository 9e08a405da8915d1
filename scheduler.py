"""Notification scheduling and the periodic poll loop that drives it."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Set, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from prayer_clock import NextPrayer, PrayerClock
from prayer_times import DailySchedule, PrayerEvent, PrayerTimesError, format_remaining

LOGGER = logging.getLogger(__name__)

POLL_JOB_ID = "prayer-poll"


class NotificationKind(str, Enum):
    PRE_REMINDER = "pre_reminder"
    ARRIVAL = "arrival"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    event: PrayerEvent
    remaining: timedelta


def remaining_seconds(event: PrayerEvent, now: datetime) -> int:
    return int(round((event.time - now).total_seconds()))


class NotificationScheduler:
    """Compare the time left before the next prayer against the reminder thresholds.

    ``tick`` is meant to be called roughly once per second from a single
    thread. A notification fires when the remaining time *crosses* a
    threshold between two ticks, so an irregular poll cannot skip it, and the
    same (kind, event) pair never fires twice.
    """

    def __init__(
        self,
        clock: PrayerClock,
        lead_time: timedelta,
        notify: Callable[[Notification], None],
        on_schedule: Optional[Callable[[DailySchedule], None]] = None,
        on_countdown: Optional[Callable[[PrayerEvent, str], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        retry_interval: timedelta = timedelta(seconds=60),
        arrival_grace: timedelta = timedelta(seconds=60),
    ) -> None:
        self.clock = clock
        self.lead_time = lead_time
        self._notify = notify
        self._on_schedule = on_schedule
        self._on_countdown = on_countdown
        self._on_error = on_error
        self.retry_interval = retry_interval
        self.arrival_grace = arrival_grace

        self._tracked: Optional[PrayerEvent] = None
        self._last_remaining: Optional[int] = None
        self._fired: Set[Tuple[NotificationKind, PrayerEvent]] = set()
        self._retry_after: Optional[datetime] = None
        self._published = False

    def tick(self, now: datetime) -> Optional[NextPrayer]:
        if self._retry_after is not None and now < self._retry_after:
            return None

        try:
            result = self.clock.next_prayer(now)
        except PrayerTimesError as exc:
            self._check_passed_while_unavailable(now)
            self._retry_after = now + self.retry_interval
            LOGGER.warning("Prayer schedule unavailable (%s); retrying after %s", exc, self._retry_after)
            if self._on_error:
                self._on_error(exc)
            return None
        self._retry_after = None

        if result.rolled_over or not self._published:
            self._published = True
            if self._on_schedule:
                self._on_schedule(result.schedule)

        event = result.event
        if self._tracked is not None and self._tracked != event:
            self._check_departed(self._tracked, now)
            self._fired = {key for key in self._fired if key[1] == event}
            self._last_remaining = None
        self._tracked = event

        remaining = remaining_seconds(event, now)
        self._check_thresholds(event, remaining)
        self._last_remaining = remaining

        if self._on_countdown:
            self._on_countdown(event, format_remaining(event, now))
        return result

    def _check_thresholds(self, event: PrayerEvent, remaining: int) -> None:
        previous = self._last_remaining
        if previous is None:
            return
        lead = int(round(self.lead_time.total_seconds()))
        if previous > lead >= remaining > 0:
            self._fire(NotificationKind.PRE_REMINDER, event, remaining)
        if previous > 0 >= remaining:
            self._fire(NotificationKind.ARRIVAL, event, remaining)

    def _check_departed(self, event: PrayerEvent, now: datetime) -> None:
        # The tracked prayer is no longer "next": its time has come.
        if self._last_remaining is None or self._last_remaining <= 0:
            return
        if now - event.time <= self.arrival_grace:
            self._fire(NotificationKind.ARRIVAL, event, 0)
        else:
            LOGGER.info("Skipping late arrival notification for %s at %s", event.name, event.time)

    def _check_passed_while_unavailable(self, now: datetime) -> None:
        # Rollover failed, but the last tracked prayer may still have arrived.
        event = self._tracked
        if event is None or event.time > now:
            return
        self._check_departed(event, now)
        self._last_remaining = 0

    def _fire(self, kind: NotificationKind, event: PrayerEvent, remaining: int) -> None:
        key = (kind, event)
        if key in self._fired:
            return
        self._fired.add(key)
        LOGGER.info("Firing %s notification for %s at %s", kind.value, event.name, event.time)
        self._notify(Notification(kind=kind, event=event, remaining=timedelta(seconds=remaining)))


class PollLoop:
    """Wrap APScheduler to run ``NotificationScheduler.tick`` at a fixed interval."""

    def __init__(
        self,
        scheduler: NotificationScheduler,
        timezone: str,
        interval: float = 1.0,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._notifications = scheduler
        self._scheduler = BackgroundScheduler(timezone=timezone)
        self._interval = interval
        self._now = now or (lambda: datetime.now(self._scheduler.timezone))

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def timezone(self) -> str:
        tzinfo = self._scheduler.timezone
        zone = getattr(tzinfo, "zone", None)
        return str(zone or tzinfo)

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(seconds=self._interval),
            id=POLL_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        LOGGER.info("Starting poll loop every %.1fs (tz=%s)", self._interval, self.timezone)
        self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            LOGGER.info("Stopping poll loop")
            self._scheduler.shutdown(wait=False)

    def _run_tick(self) -> None:
        try:
            self._notifications.tick(self._now())
        except Exception:
            LOGGER.exception("Unexpected failure during prayer poll")
