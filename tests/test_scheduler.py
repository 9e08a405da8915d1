from datetime import date, datetime, timedelta
from typing import List, Optional

import pytest
import pytz

from prayer_clock import NextPrayer, PrayerClock
from prayer_times import PRAYER_ORDER, DailySchedule, FetchError, PrayerEvent, PrayerName
from scheduler import Notification, NotificationKind, NotificationScheduler, PollLoop, remaining_seconds

TZ = pytz.FixedOffset(180)
DAY = date(2024, 6, 1)


def schedule_for(day: date) -> DailySchedule:
    times = ["04:30", "11:45", "15:10", "18:20", "19:50"]
    events = []
    for name, hhmm in zip(PRAYER_ORDER, times):
        hour, minute = map(int, hhmm.split(":"))
        events.append(PrayerEvent(name, TZ.localize(datetime(day.year, day.month, day.day, hour, minute))))
    return DailySchedule(date=day, events=tuple(events))


class StubClock:
    """Mimics PrayerClock over two consecutive days without any I/O."""

    def __init__(self) -> None:
        self.schedule = schedule_for(DAY)
        self.error: Optional[Exception] = None
        self.calls = 0

    def next_prayer(self, now: datetime) -> NextPrayer:
        self.calls += 1
        if self.error is not None:
            raise self.error
        upcoming = self.schedule.next_after(now)
        if upcoming is not None:
            return NextPrayer(upcoming, False, self.schedule)
        self.schedule = schedule_for(self.schedule.date + timedelta(days=1))
        return NextPrayer(self.schedule.first, True, self.schedule)


class Recorder:
    def __init__(self) -> None:
        self.notifications: List[Notification] = []
        self.schedules: List[DailySchedule] = []
        self.countdowns: List[str] = []
        self.errors: List[Exception] = []


@pytest.fixture
def clock() -> StubClock:
    return StubClock()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def scheduler(clock: StubClock, recorder: Recorder) -> NotificationScheduler:
    return NotificationScheduler(
        clock,
        lead_time=timedelta(minutes=5),
        notify=recorder.notifications.append,
        on_schedule=recorder.schedules.append,
        on_countdown=lambda event, text: recorder.countdowns.append(text),
        on_error=recorder.errors.append,
        retry_interval=timedelta(seconds=30),
    )


def asr_minus(seconds: float) -> datetime:
    return TZ.localize(datetime(2024, 6, 1, 15, 10)) - timedelta(seconds=seconds)


def kinds(recorder: Recorder) -> List[NotificationKind]:
    return [item.kind for item in recorder.notifications]


def test_pre_reminder_fires_once_on_crossing(scheduler, recorder):
    scheduler.tick(asr_minus(301))
    assert recorder.notifications == []

    scheduler.tick(asr_minus(300))
    assert kinds(recorder) == [NotificationKind.PRE_REMINDER]
    assert recorder.notifications[0].event.name is PrayerName.ASR
    assert recorder.notifications[0].remaining == timedelta(minutes=5)

    scheduler.tick(asr_minus(299))
    scheduler.tick(asr_minus(120))
    assert kinds(recorder) == [NotificationKind.PRE_REMINDER]


def test_pre_reminder_survives_skipped_second(scheduler, recorder):
    scheduler.tick(asr_minus(302))
    scheduler.tick(asr_minus(298))
    assert kinds(recorder) == [NotificationKind.PRE_REMINDER]


def test_no_pre_reminder_when_first_seen_inside_lead_time(scheduler, recorder):
    scheduler.tick(asr_minus(200))
    scheduler.tick(asr_minus(199))
    assert recorder.notifications == []


def test_sub_second_remaining_is_rounded(scheduler, recorder):
    scheduler.tick(asr_minus(301.2))
    scheduler.tick(asr_minus(300.4))
    assert kinds(recorder) == [NotificationKind.PRE_REMINDER]


def test_arrival_fires_when_prayer_time_is_reached(scheduler, recorder):
    scheduler.tick(asr_minus(2))
    scheduler.tick(asr_minus(1))
    scheduler.tick(asr_minus(0))
    scheduler.tick(asr_minus(-1))

    assert kinds(recorder) == [NotificationKind.ARRIVAL]
    assert recorder.notifications[0].event.name is PrayerName.ASR


def test_arrival_fires_once_when_rounded_to_zero_first(scheduler, recorder):
    scheduler.tick(asr_minus(1))
    scheduler.tick(asr_minus(0.4))
    scheduler.tick(asr_minus(-0.6))
    assert kinds(recorder) == [NotificationKind.ARRIVAL]


def test_late_arrival_is_skipped(scheduler, recorder):
    scheduler.tick(asr_minus(10))
    scheduler.tick(asr_minus(-3600))
    assert recorder.notifications == []


def test_isha_arrival_and_rollover_refresh(scheduler, recorder, clock):
    isha = TZ.localize(datetime(2024, 6, 1, 19, 50))
    scheduler.tick(isha - timedelta(seconds=1))
    result = scheduler.tick(isha)

    assert result.rolled_over is True
    assert kinds(recorder) == [NotificationKind.ARRIVAL]
    assert recorder.notifications[0].event.name is PrayerName.ISHA
    assert [item.date for item in recorder.schedules] == [DAY, date(2024, 6, 2)]


def test_isha_arrival_fires_when_rollover_fetch_fails(scheduler, recorder, clock):
    isha = TZ.localize(datetime(2024, 6, 1, 19, 50))
    scheduler.tick(isha - timedelta(seconds=1.3))

    clock.error = FetchError("offline")
    assert scheduler.tick(isha + timedelta(seconds=0.7)) is None
    assert kinds(recorder) == [NotificationKind.ARRIVAL]
    assert recorder.notifications[0].event.name is PrayerName.ISHA
    assert len(recorder.errors) == 1

    clock.error = None
    result = scheduler.tick(isha + timedelta(seconds=30.7))
    assert result.rolled_over is True
    assert kinds(recorder) == [NotificationKind.ARRIVAL]
    assert [item.date for item in recorder.schedules] == [DAY, date(2024, 6, 2)]


def test_isha_arrival_with_real_clock_and_failing_cache(recorder):
    class OfflineTomorrowCache:
        def __init__(self) -> None:
            self.offline = True

        def get(self, day: date) -> bytes:
            if day != DAY and self.offline:
                raise FetchError("offline")
            return day.isoformat().encode()

        def invalidate(self, day: date) -> None:
            pass

    cache = OfflineTomorrowCache()
    clock = PrayerClock(cache, parser=lambda raw, day: schedule_for(day))
    scheduler = NotificationScheduler(
        clock,
        lead_time=timedelta(minutes=5),
        notify=recorder.notifications.append,
        on_schedule=recorder.schedules.append,
    )

    isha = TZ.localize(datetime(2024, 6, 1, 19, 50))
    for second in range(-3, 181):
        if second == 150:
            cache.offline = False
        scheduler.tick(isha + timedelta(seconds=second))

    assert kinds(recorder) == [NotificationKind.ARRIVAL]
    assert recorder.notifications[0].event.name is PrayerName.ISHA
    assert clock.schedule.date == date(2024, 6, 2)


def test_schedule_published_on_first_tick_only(scheduler, recorder):
    scheduler.tick(asr_minus(100))
    scheduler.tick(asr_minus(99))
    assert len(recorder.schedules) == 1


def test_countdown_text_every_tick(scheduler, recorder):
    scheduler.tick(asr_minus(3723))
    assert recorder.countdowns == ["Next prayer is Asr\nafter 01:02:03"]


def test_errors_are_reported_and_retried_later(scheduler, recorder, clock):
    clock.error = FetchError("offline")
    start = asr_minus(1000)

    assert scheduler.tick(start) is None
    assert len(recorder.errors) == 1

    assert scheduler.tick(start + timedelta(seconds=10)) is None
    assert clock.calls == 1

    clock.error = None
    result = scheduler.tick(start + timedelta(seconds=30))
    assert result is not None
    assert result.event.name is PrayerName.ASR
    assert clock.calls == 2


def test_unexpected_errors_propagate(scheduler, clock):
    clock.error = RuntimeError("bug")
    with pytest.raises(RuntimeError):
        scheduler.tick(asr_minus(10))


def test_remaining_seconds_rounds_to_nearest():
    event = schedule_for(DAY).by_name(PrayerName.ASR)
    assert remaining_seconds(event, asr_minus(300.4)) == 300
    assert remaining_seconds(event, asr_minus(300.6)) == 301


def test_poll_loop_runs_ticks():
    ticks: List[datetime] = []

    class CountingScheduler:
        def tick(self, now: datetime) -> None:
            ticks.append(now)

    fixed_now = asr_minus(500)
    loop = PollLoop(CountingScheduler(), "Asia/Riyadh", interval=1.0, now=lambda: fixed_now)
    loop._run_tick()
    assert ticks == [fixed_now]
    assert loop.running is False


def test_poll_loop_swallows_tick_crash(caplog):
    class CrashingScheduler:
        def tick(self, now: datetime) -> None:
            raise RuntimeError("boom")

    loop = PollLoop(CrashingScheduler(), "UTC", now=lambda: asr_minus(1))
    loop._run_tick()
    assert "Unexpected failure during prayer poll" in caplog.text
