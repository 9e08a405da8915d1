"""Prayer schedule model, AlAdhan calendar client and payload parsing."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

import pytz
import requests

LOGGER = logging.getLogger(__name__)

ALADHAN_CALENDAR_URL = "https://api.aladhan.com/v1/calendar"


class PrayerTimesError(Exception):
    """Base class for failures while acquiring a prayer schedule."""


class FetchError(PrayerTimesError):
    """The remote provider could not be reached or answered with an error."""


class StorageError(PrayerTimesError):
    """Reading or writing the on-disk timings cache failed."""


class ParseError(PrayerTimesError):
    """A provider payload is malformed or incomplete."""


class PrayerName(str, Enum):
    FAJR = "Fajr"
    DHUHR = "Dhuhr"
    ASR = "Asr"
    MAGHRIB = "Maghrib"
    ISHA = "Isha"

    def __str__(self) -> str:
        return self.value


PRAYER_ORDER = [PrayerName.FAJR, PrayerName.DHUHR, PrayerName.ASR, PrayerName.MAGHRIB, PrayerName.ISHA]
PRAYER_RANK: Dict[PrayerName, int] = {name: rank for rank, name in enumerate(PRAYER_ORDER)}


@dataclass(frozen=True)
class PrayerEvent:
    name: PrayerName
    time: datetime

    def __post_init__(self) -> None:
        if self.time.tzinfo is None or self.time.utcoffset() is None:
            raise ValueError(f"{self.name} time must be timezone-aware")

    def __str__(self) -> str:
        return f"{self.name.value:<7} {self.time.strftime('%I:%M')}"


@dataclass(frozen=True)
class DailySchedule:
    """The five prayers of one calendar date in canonical order."""

    date: date
    events: Tuple[PrayerEvent, ...]

    def __post_init__(self) -> None:
        names = [event.name for event in self.events]
        if names != PRAYER_ORDER:
            raise ValueError(f"Schedule for {self.date} must list {PRAYER_ORDER} exactly once, got {names}")

    def __iter__(self) -> Iterator[PrayerEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)

    @property
    def first(self) -> PrayerEvent:
        return self.events[0]

    def by_name(self, name: PrayerName) -> PrayerEvent:
        return self.events[PRAYER_RANK[PrayerName(name)]]

    def next_after(self, now: datetime) -> Optional[PrayerEvent]:
        """Return the first event strictly after *now*, or None when the day is exhausted."""
        for event in self.events:
            if event.time > now:
                return event
        return None


class AladhanCalendarClient:
    """Downloads a month of timings from the AlAdhan calendar endpoint."""

    def __init__(
        self,
        latitude: float,
        longitude: float,
        method: int = 4,
        school: int = 0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.method = method
        self.school = school
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch_month(self, year: int, month: int) -> bytes:
        url = f"{ALADHAN_CALENDAR_URL}/{year}/{month}"
        params = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "method": self.method,
            "school": self.school,
        }
        LOGGER.debug("Requesting calendar %s with params=%s", url, params)
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            LOGGER.debug("Calendar response status: %s", response.status_code)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"Failed to download timings for {year}-{month:02d}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(f"AlAdhan returned a non-JSON body for {year}-{month:02d}") from exc
        if not isinstance(payload, dict) or payload.get("code") != 200:
            status = payload.get("status") if isinstance(payload, dict) else None
            raise FetchError(f"Invalid response from AlAdhan API: {status}")
        return response.content

    def __call__(self, day: date) -> bytes:
        return self.fetch_month(day.year, day.month)


_TIME_PATTERN = re.compile(
    r"^\s*(?P<hour>\d{1,2}):(?P<minute>\d{2})"
    r"(?:\s*\((?P<zone>[^)]*)\))?\s*$"
)
_OFFSET_PATTERN = re.compile(r"^(?P<sign>[+-])(?P<hours>\d{1,2})(?::?(?P<minutes>\d{2}))?$")

RawPayload = Union[bytes, str, Mapping[str, Any]]


def parse_schedule(raw: RawPayload, target_date: date) -> DailySchedule:
    """Turn a month-level calendar payload into the schedule of *target_date*.

    Only the five obligatory prayers are kept; Sunrise, Sunset, Imsak and the
    rest are dropped. Events are ordered by the fixed prayer rank, never by
    timestamp.
    """
    payload = _decode(raw)
    days = payload.get("data") if isinstance(payload, Mapping) else None
    if not isinstance(days, list):
        raise ParseError("Payload has no 'data' array")
    index = target_date.day - 1
    if index >= len(days):
        raise ParseError(f"Payload has no entry for day {target_date.day} ({len(days)} days present)")

    entry = days[index]
    if not isinstance(entry, Mapping):
        raise ParseError(f"Entry for {target_date} is not an object")
    _check_entry_date(entry, target_date)

    timings = entry.get("timings")
    if not isinstance(timings, Mapping):
        raise ParseError(f"Entry for {target_date} has no timings")
    zone_name = _lookup(entry, "meta", "timezone")

    events = []
    for key, value in timings.items():
        try:
            name = PrayerName(key)
        except ValueError:
            continue
        if not isinstance(value, str):
            raise ParseError(f"Timing for {name} is not a string on {target_date}")
        events.append(PrayerEvent(name=name, time=parse_prayer_time(value, target_date, zone_name)))
    missing = set(PRAYER_ORDER) - {event.name for event in events}
    if missing:
        names = ", ".join(str(name) for name in PRAYER_ORDER if name in missing)
        raise ParseError(f"Timing for {names} missing on {target_date}")
    events.sort(key=lambda event: PRAYER_RANK[event.name])
    LOGGER.debug("Parsed schedule for %s: %s", target_date, [str(event) for event in events])
    return DailySchedule(date=target_date, events=tuple(events))


def parse_prayer_time(value: str, target_date: date, zone_name: Optional[str] = None) -> datetime:
    """Parse ``"HH:MM (+03)"`` style strings into an aware datetime on *target_date*."""
    match = _TIME_PATTERN.match(value)
    if not match:
        raise ParseError(f"Unrecognised time string {value!r}")
    hour, minute = int(match.group("hour")), int(match.group("minute"))
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ParseError(f"Time out of range: {value!r}")
    naive = datetime(target_date.year, target_date.month, target_date.day, hour, minute)

    zone = (match.group("zone") or "").strip()
    offset = _OFFSET_PATTERN.match(zone)
    if offset:
        minutes = int(offset.group("hours")) * 60 + int(offset.group("minutes") or 0)
        if offset.group("sign") == "-":
            minutes = -minutes
        return pytz.FixedOffset(minutes).localize(naive)

    if zone_name:
        try:
            tzinfo = pytz.timezone(zone_name)
        except pytz.UnknownTimeZoneError as exc:
            raise ParseError(f"Unknown timezone {zone_name!r} for {value!r}") from exc
        return tzinfo.localize(naive)
    raise ParseError(f"No usable UTC offset in {value!r}")


def split_remaining(remaining: timedelta) -> Tuple[int, int, int]:
    """Split a positive duration into whole hours, minutes and seconds."""
    total = max(0, int(round(remaining.total_seconds())))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return hours, minutes, seconds


def format_remaining(event: PrayerEvent, now: datetime) -> str:
    hours, minutes, seconds = split_remaining(event.time - now)
    return f"Next prayer is {event.name}\nafter {hours:02d}:{minutes:02d}:{seconds:02d}"


def _decode(raw: RawPayload) -> Any:
    if isinstance(raw, Mapping):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Payload is not valid JSON: {exc}") from exc


def _check_entry_date(entry: Mapping[str, Any], target_date: date) -> None:
    stamp = _lookup(entry, "date", "gregorian", "date")
    if not stamp:
        return
    try:
        entry_date = datetime.strptime(stamp, "%d-%m-%Y").date()
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Unreadable gregorian date {stamp!r}") from exc
    if entry_date != target_date:
        raise ParseError(f"Payload entry is for {entry_date}, expected {target_date}")


def _lookup(entry: Mapping[str, Any], *keys: str) -> Optional[Any]:
    value: Any = entry
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value
