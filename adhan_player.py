"""Audio playback for prayer reminders and the Adhan."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

try:  # Prefer PyQt5 multimedia bindings, fall back to Qt for Python variants
    from PyQt5 import QtCore, QtMultimedia  # type: ignore
except Exception:  # pragma: no cover - fallback path
    try:
        from PySide2 import QtCore, QtMultimedia  # type: ignore
    except Exception:
        from PySide6 import QtCore, QtMultimedia  # type: ignore

from scheduler import Notification, NotificationKind

LOGGER = logging.getLogger(__name__)

try:  # Compatibility aliases for signals/slots
    Signal = QtCore.pyqtSignal  # type: ignore[attr-defined]
except AttributeError:  # pragma: no cover - PySide compatibility
    Signal = QtCore.Signal  # type: ignore[attr-defined]


class AdhanPlayer(QtCore.QObject):
    """Own a single audio output session; requests that overlap a running clip are dropped."""

    playback_started = Signal(str)
    playback_finished = Signal()

    def __init__(
        self,
        reminder_path: Union[str, Path],
        adhan_path: Union[str, Path],
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.reminder_path = Path(reminder_path)
        self.adhan_path = Path(adhan_path)
        self._player = QtMultimedia.QMediaPlayer(self)
        self._audio_output = None
        if hasattr(QtMultimedia, "QAudioOutput") and hasattr(self._player, "setAudioOutput"):
            self._audio_output = QtMultimedia.QAudioOutput()
            if hasattr(self._audio_output, "setParent"):
                self._audio_output.setParent(self)
            self._player.setAudioOutput(self._audio_output)
            self._audio_output.setVolume(1.0)
        elif hasattr(self._player, "setVolume"):
            # Qt5 API uses direct volume control on the player
            self._player.setVolume(100)

        self._using_new_api = hasattr(self._player, "setSource")
        self._current_path: Optional[Path] = None
        self._playing = False

        state_signal = getattr(self._player, "playbackStateChanged", None) or self._player.stateChanged
        state_signal.connect(self._on_state_changed)  # type: ignore
        if hasattr(self._player, "errorOccurred"):
            self._player.errorOccurred.connect(self._on_error)  # type: ignore
        elif hasattr(self._player, "error"):
            self._player.error.connect(self._on_error)  # type: ignore

    @property
    def is_playing(self) -> bool:
        return self._playing

    def handle(self, notification: Notification) -> bool:
        """Play the clip that belongs to *notification*."""
        if notification.kind is NotificationKind.ARRIVAL:
            return self.play(self.adhan_path)
        return self.play(self.reminder_path)

    def play(self, target: Union[str, Path]) -> bool:
        target = Path(target)
        if not target.exists():
            LOGGER.error("Audio file missing: %s", target)
            return False
        if self._playing:
            LOGGER.warning("Audio output busy with %s; dropping %s", self._current_path, target)
            return False

        url = QtCore.QUrl.fromLocalFile(str(target))
        self._current_path = target
        self._playing = True
        if self._using_new_api:
            self._player.setSource(url)
        else:
            content = QtMultimedia.QMediaContent(url)  # type: ignore[attr-defined]
            self._player.setMedia(content)

        LOGGER.debug("Playing audio via Qt multimedia: %s", target)
        self._player.play()
        return True

    def stop(self) -> None:
        if self._playing:
            LOGGER.debug("Stopping active playback of %s", self._current_path)
            self._player.stop()

    def _on_state_changed(self, state: int) -> None:
        playing_state = QtMultimedia.QMediaPlayer.PlayingState
        if state == playing_state:
            self.playback_started.emit(str(self._current_path or ""))
        elif self._playing:
            self._playing = False
            self.playback_finished.emit()

    def _on_error(self, error: object) -> None:  # pragma: no cover - backend dependent
        if hasattr(QtMultimedia.QMediaPlayer, "NoError") and error == QtMultimedia.QMediaPlayer.NoError:
            return
        LOGGER.error("Audio playback error: %s", getattr(self._player, "errorString", lambda: "unknown")())
        if self._playing:
            self._playing = False
            self.playback_finished.emit()
