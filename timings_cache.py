"""On-disk cache of raw AlAdhan calendar responses, one file per date."""
from __future__ import annotations

import logging
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Callable, Union

from prayer_times import StorageError

LOGGER = logging.getLogger(__name__)

Fetcher = Callable[[date], bytes]


class TimingsCache:
    """Return the provider payload for a date, downloading it on a cache miss.

    Entries never expire. The month payload returned by *fetcher* is stored
    verbatim under the requested date; absence of the file is the miss signal.
    """

    def __init__(self, directory: Union[str, Path], fetcher: Fetcher) -> None:
        self.directory = Path(directory)
        self._fetcher = fetcher

    def path_for(self, day: date) -> Path:
        return self.directory / f"timings-{day.isoformat()}.json"

    def contains(self, day: date) -> bool:
        return self.path_for(day).is_file()

    def get(self, day: date) -> bytes:
        path = self.path_for(day)
        if path.is_file():
            LOGGER.debug("Timings cache hit for %s (%s)", day, path)
            try:
                return path.read_bytes()
            except OSError as exc:
                raise StorageError(f"Unable to read cached timings {path}: {exc}") from exc

        LOGGER.info("Downloading timings for %s", day)
        payload = self._fetcher(day)
        self._write(path, payload)
        LOGGER.debug("Stored %d bytes of timings at %s", len(payload), path)
        return payload

    def invalidate(self, day: date) -> None:
        path = self.path_for(day)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Unable to remove cached timings {path}: {exc}") from exc
        LOGGER.warning("Discarded cached timings for %s", day)

    def _write(self, path: Path, payload: bytes) -> None:
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".timings-", suffix=".tmp", dir=self.directory)
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Unable to write cached timings {path}: {exc}") from exc
