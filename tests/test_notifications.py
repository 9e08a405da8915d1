import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from datetime import datetime, timedelta

import pytz

from main import PrayerApp
from prayer_times import PrayerEvent, PrayerName
from scheduler import Notification, NotificationKind


class _DummyWindow:
    def __init__(self) -> None:
        self.status_messages: list[str] = []

    def set_status(self, text: str) -> None:
        self.status_messages.append(text)


class _DummyPlayer:
    def __init__(self) -> None:
        self.handled: list[Notification] = []

    def handle(self, notification: Notification) -> bool:
        self.handled.append(notification)
        return True


class _NotificationHarness:
    def __init__(self) -> None:
        self.window = _DummyWindow()
        self.tray_icon = None
        self.adhan_player = _DummyPlayer()


def _event(name: PrayerName) -> PrayerEvent:
    return PrayerEvent(name, pytz.FixedOffset(180).localize(datetime(2024, 6, 1, 15, 10)))


def test_pre_reminder_updates_status_and_plays_audio() -> None:
    harness = _NotificationHarness()
    notification = Notification(NotificationKind.PRE_REMINDER, _event(PrayerName.ASR), timedelta(minutes=5))

    PrayerApp._on_notification(harness, notification)

    assert harness.window.status_messages[-1] == "Asr in 5 minutes"
    assert harness.adhan_player.handled == [notification]


def test_arrival_announces_prayer() -> None:
    harness = _NotificationHarness()
    notification = Notification(NotificationKind.ARRIVAL, _event(PrayerName.MAGHRIB), timedelta(0))

    PrayerApp._on_notification(harness, notification)

    assert harness.window.status_messages[-1] == "It's time for Maghrib."
    assert harness.adhan_player.handled == [notification]


def test_fetch_error_is_shown_in_status() -> None:
    harness = _NotificationHarness()
    PrayerApp._on_error(harness, RuntimeError("offline"))
    assert "will retry" in harness.window.status_messages[-1]
