"""Main window showing the day's prayers and the countdown to the next one."""
from __future__ import annotations

from typing import Callable, Optional

try:  # Prefer PyQt5, fall back to Qt for Python
    from PyQt5 import QtCore, QtGui, QtWidgets  # type: ignore
except Exception:  # pragma: no cover - fallback path
    try:
        from PySide2 import QtCore, QtGui, QtWidgets  # type: ignore
    except Exception:
        from PySide6 import QtCore, QtGui, QtWidgets  # type: ignore

from prayer_times import DailySchedule, PrayerName

ACCENT_COLOR_HEX = "#15803d"


class PrayerTimesWindow(QtWidgets.QMainWindow):
    """List of prayer times next to a "Next Prayer" countdown."""

    def __init__(self, location_name: str = "") -> None:
        super().__init__()
        self._active_prayer: Optional[PrayerName] = None
        self._close_handler: Optional[Callable[[], bool]] = None
        self._quit_handler: Optional[Callable[[], None]] = None

        self.setObjectName("PrayerWindow")
        self.setWindowTitle(f"Prayer times in {location_name}" if location_name else "Prayer times")
        self.setWindowFlags(self.windowFlags() | QtCore.Qt.WindowStaysOnTopHint)

        central = QtWidgets.QWidget()
        self.setCentralWidget(central)
        root_layout = QtWidgets.QVBoxLayout(central)
        root_layout.setContentsMargins(2, 2, 2, 2)

        font = QtGui.QFont("Courier", 15)

        self.prayer_list = QtWidgets.QListWidget()
        self.prayer_list.setFont(font)
        self.prayer_list.setSelectionMode(QtWidgets.QAbstractItemView.NoSelection)
        list_frame = QtWidgets.QGroupBox("Prayers times")
        list_layout = QtWidgets.QVBoxLayout(list_frame)
        list_layout.addWidget(self.prayer_list)

        self.next_prayer_label = QtWidgets.QLabel("Next Prayer")
        self.next_prayer_label.setFont(font)
        self.next_prayer_label.setAlignment(QtCore.Qt.AlignCenter)
        self.next_prayer_label.setWordWrap(True)
        next_frame = QtWidgets.QGroupBox("Next Prayer")
        next_layout = QtWidgets.QVBoxLayout(next_frame)
        next_layout.addWidget(self.next_prayer_label)

        row = QtWidgets.QHBoxLayout()
        row.addWidget(list_frame)
        row.addWidget(next_frame, stretch=1)
        root_layout.addLayout(row)

        self.status_label = QtWidgets.QLabel()
        self.status_label.setObjectName("statusLabel")
        self.status_label.setWordWrap(True)
        root_layout.addWidget(self.status_label)

        self.close_button = QtWidgets.QPushButton("Close")
        self.close_button.clicked.connect(self._emit_quit)  # type: ignore
        root_layout.addWidget(self.close_button, alignment=QtCore.Qt.AlignCenter)

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:  # type: ignore[override]
        if self._close_handler is not None:
            try:
                should_close = self._close_handler()
            except Exception:
                should_close = True
            if not should_close:
                event.ignore()
                return
        super().closeEvent(event)

    def on_close_attempt(self, handler: Callable[[], bool]) -> None:
        self._close_handler = handler

    def on_quit(self, handler: Callable[[], None]) -> None:
        self._quit_handler = handler

    def _emit_quit(self) -> None:
        if self._quit_handler:
            self._quit_handler()

    def update_prayers(self, schedule: DailySchedule) -> None:
        self.prayer_list.clear()
        for event in schedule:
            item = QtWidgets.QListWidgetItem(str(event))
            item.setData(QtCore.Qt.UserRole, event.name.value)
            self.prayer_list.addItem(item)
        self._highlight_prayer(self._active_prayer)

    def update_next_prayer(self, prayer_name: Optional[PrayerName], countdown_text: str) -> None:
        self.next_prayer_label.setText(countdown_text)
        if prayer_name != self._active_prayer:
            self._active_prayer = prayer_name
            self._highlight_prayer(prayer_name)

    def set_status(self, text: str) -> None:
        self.status_label.setText(text)

    def _highlight_prayer(self, prayer_name: Optional[PrayerName]) -> None:
        accent = QtGui.QBrush(QtGui.QColor(ACCENT_COLOR_HEX))
        plain = QtGui.QBrush()
        for row in range(self.prayer_list.count()):
            item = self.prayer_list.item(row)
            active = prayer_name is not None and item.data(QtCore.Qt.UserRole) == prayer_name.value
            item.setForeground(accent if active else plain)
            font = item.font()
            font.setBold(active)
            item.setFont(font)
