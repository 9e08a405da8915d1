"""UI components for the prayer times application."""

from .window import PrayerTimesWindow

__all__ = ["PrayerTimesWindow"]
