"""Entry point for the prayer times tray application."""
from __future__ import annotations

import logging
import sys
from datetime import timedelta
from typing import Optional

try:  # Prefer PyQt5, fall back to Qt for Python if available
    from PyQt5 import QtCore, QtGui, QtWidgets  # type: ignore
except Exception:  # pragma: no cover - fallback only used when PyQt5 missing
    try:
        from PySide2 import QtCore, QtGui, QtWidgets  # type: ignore
    except Exception:
        from PySide6 import QtCore, QtGui, QtWidgets  # type: ignore

try:  # Compatibility alias for Qt signal and slot decorators
    Signal = QtCore.pyqtSignal  # type: ignore[attr-defined]
    Slot = QtCore.pyqtSlot  # type: ignore[attr-defined]
except AttributeError:  # pragma: no cover - PySide compatibility
    Signal = QtCore.Signal  # type: ignore[attr-defined]
    Slot = QtCore.Slot  # type: ignore[attr-defined]

from adhan_player import AdhanPlayer
from config import APP_ROOT, AppConfig, ConfigError, load_config
from prayer_clock import PrayerClock
from prayer_times import AladhanCalendarClient, DailySchedule, PrayerEvent
from scheduler import Notification, NotificationKind, NotificationScheduler, PollLoop
from timings_cache import TimingsCache
from ui import PrayerTimesWindow

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOGGER = logging.getLogger(__name__)


class _TickBridge(QtCore.QObject):
    """Carry poll-loop results from the scheduler thread to the GUI thread."""

    schedule_changed = Signal(object)
    countdown_changed = Signal(object, str)
    notification = Signal(object)
    error = Signal(object)


class PrayerApp(QtWidgets.QApplication):
    """Coordinates the window, the poll loop and audio playback."""

    def __init__(self, argv: list[str], config: Optional[AppConfig] = None) -> None:
        super().__init__(argv)
        self.setApplicationName("Prayer Times")
        self.setQuitOnLastWindowClosed(False)

        self.config = config or load_config()
        LOGGER.debug("Using config: %s", self.config.to_dict())

        client = AladhanCalendarClient(
            latitude=self.config.latitude,
            longitude=self.config.longitude,
            method=self.config.calculation_method,
            school=self.config.school,
            timeout=self.config.request_timeout,
        )
        self.cache = TimingsCache(self.config.cache_directory, client)
        self.clock = PrayerClock(self.cache)

        self.adhan_player = AdhanPlayer(self.config.reminder_sound, self.config.adhan_sound)
        self.tray_icon: Optional[QtWidgets.QSystemTrayIcon] = None

        self.window = PrayerTimesWindow(self.config.location_name)
        self.window.on_close_attempt(self._on_close_attempt)
        self.window.on_quit(self.quit)
        self.window.set_status("Loading prayer times...")
        self.window.show()
        self._setup_tray_icon()

        self._bridge = _TickBridge()
        self._bridge.schedule_changed.connect(self._on_schedule_changed)  # type: ignore
        self._bridge.countdown_changed.connect(self._on_countdown)  # type: ignore
        self._bridge.notification.connect(self._on_notification)  # type: ignore
        self._bridge.error.connect(self._on_error)  # type: ignore

        self.notifications = NotificationScheduler(
            self.clock,
            lead_time=self.config.lead_time,
            notify=self._bridge.notification.emit,
            on_schedule=self._bridge.schedule_changed.emit,
            on_countdown=self._bridge.countdown_changed.emit,
            on_error=self._bridge.error.emit,
            retry_interval=timedelta(seconds=self.config.retry_interval),
            arrival_grace=timedelta(seconds=self.config.arrival_grace),
        )
        self.poll_loop = PollLoop(self.notifications, self.config.timezone, interval=self.config.poll_interval)

        self.aboutToQuit.connect(self._cleanup)  # type: ignore
        self.poll_loop.start()

    # ------------------------------------------------------------------
    @Slot(object)
    def _on_schedule_changed(self, schedule: DailySchedule) -> None:
        LOGGER.info("Displaying prayer schedule for %s", schedule.date)
        self.window.update_prayers(schedule)
        self.window.set_status(f"Prayer times for {schedule.date.strftime('%A, %B %d, %Y')}")

    @Slot(object, str)
    def _on_countdown(self, event: PrayerEvent, text: str) -> None:
        self.window.update_next_prayer(event.name, text)
        if self.tray_icon:
            self.tray_icon.setToolTip(text.replace("\n", " "))

    @Slot(object)
    def _on_notification(self, notification: Notification) -> None:
        name = notification.event.name.value
        if notification.kind is NotificationKind.PRE_REMINDER:
            minutes = int(notification.remaining.total_seconds() // 60)
            message = f"{name} in {minutes} minutes"
        else:
            message = f"It's time for {name}."
        LOGGER.info("Notification: %s", message)
        self.window.set_status(message)
        if self.tray_icon:
            self.tray_icon.showMessage("Prayer Times", message)
        try:
            self.adhan_player.handle(notification)
        except Exception:
            LOGGER.exception("Failed to play notification audio")

    @Slot(object)
    def _on_error(self, error: Exception) -> None:
        LOGGER.error("Failed to refresh prayer times: %s", error)
        self.window.set_status(f"Unable to fetch prayer times; will retry. ({error})")

    # -- System tray -----------------------------------------------------
    def _setup_tray_icon(self) -> None:
        if not QtWidgets.QSystemTrayIcon.isSystemTrayAvailable():
            LOGGER.warning("System tray not available on this system")
            return

        icon_path = APP_ROOT / "assets" / "icon.png"
        icon = QtGui.QIcon(str(icon_path)) if icon_path.exists() else self.style().standardIcon(QtWidgets.QStyle.SP_ComputerIcon)

        tray = QtWidgets.QSystemTrayIcon(icon, self)
        tray.activated.connect(self._on_tray_activated)  # type: ignore

        menu = QtWidgets.QMenu()
        menu.addAction("Show Window").triggered.connect(self._show_main_window)  # type: ignore
        menu.addAction("Hide Window").triggered.connect(self.window.hide)  # type: ignore
        menu.addSeparator()
        menu.addAction("Quit").triggered.connect(self.quit)  # type: ignore

        tray.setContextMenu(menu)
        tray.setToolTip("Prayer Times")
        tray.show()
        self.tray_icon = tray
        self.tray_menu = menu

    def _on_tray_activated(self, reason: QtWidgets.QSystemTrayIcon.ActivationReason) -> None:
        if reason in (QtWidgets.QSystemTrayIcon.Trigger, QtWidgets.QSystemTrayIcon.DoubleClick):
            self._show_main_window()

    def _show_main_window(self) -> None:
        self.window.showNormal()
        self.window.raise_()
        self.window.activateWindow()

    def _on_close_attempt(self) -> bool:
        if self.tray_icon is None:
            QtCore.QTimer.singleShot(0, self.quit)
            return True
        self.window.hide()
        return False

    def _cleanup(self) -> None:
        self.poll_loop.shutdown()
        self.adhan_player.stop()
        if self.tray_icon:
            self.tray_icon.hide()


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def main() -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        configure_logging("INFO")
        LOGGER.error("Invalid configuration: %s", exc)
        return 2
    configure_logging(config.log_level)
    app = PrayerApp(sys.argv, config)
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
