"""Cache Store: TTL-governed persistence of fetched metric payloads (cache.json)."""

import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from whoopterm.config import Config
from whoopterm.errors import CacheCorruptError, CacheIOError
from whoopterm.models import format_datetime, parse_datetime, utc_now
from whoopterm.storage import atomic_write_json, read_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    metric_key: str
    fetched_at: datetime
    ttl: timedelta
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetched_at": format_datetime(self.fetched_at),
            "ttl": int(self.ttl.total_seconds()),
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, metric_key: str, data: dict[str, Any]) -> "CacheEntry":
        fetched_at = parse_datetime(data["fetched_at"])
        if fetched_at is None:
            raise ValueError("fetched_at is missing")
        return cls(
            metric_key=metric_key,
            fetched_at=fetched_at,
            ttl=timedelta(seconds=int(data["ttl"])),
            payload=data.get("payload"),
        )


class CacheStore:
    """Keyed cache of metric payloads.

    Stale entries are kept as a fallback for failed fetches. Every write
    re-reads the file and replaces it atomically, so concurrent processes
    never observe a partial file.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        default_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.path = Path(path) if path else Config.cache_path()
        self.default_ttl = default_ttl or timedelta(minutes=Config.CACHE_TTL_MINUTES)
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = self._read_file()
        self._dirty = False

    def _parse_file(self) -> dict[str, CacheEntry]:
        try:
            raw = read_json(self.path)
            if not isinstance(raw, dict):
                raise ValueError("expected a JSON object")
            return {key: CacheEntry.from_dict(key, value) for key, value in raw.items()}
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CacheCorruptError(str(e)) from e

    def _read_file(self) -> dict[str, CacheEntry]:
        """Load entries from disk; a corrupt file yields an empty store."""
        if not self.path.exists():
            return {}
        try:
            return self._parse_file()
        except CacheCorruptError as e:
            logger.warning(f"Cache file {self.path} is corrupt, starting empty: {e}")
            self._quarantine()
            return {}

    def _quarantine(self) -> None:
        corrupt_path = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, corrupt_path)
        except OSError as e:
            logger.warning(f"Could not move corrupt cache aside: {e}")

    def _write_locked(self) -> None:
        data = {key: entry.to_dict() for key, entry in sorted(self._entries.items())}
        try:
            atomic_write_json(self.path, data)
        except OSError as e:
            self._dirty = True
            raise CacheIOError(f"Failed to write cache {self.path}: {e}") from e
        self._dirty = False

    def get(self, metric_key: str) -> Optional[CacheEntry]:
        """Return the entry regardless of freshness."""
        with self._lock:
            return self._entries.get(metric_key)

    def entries(self) -> dict[str, CacheEntry]:
        with self._lock:
            return dict(self._entries)

    def put(
        self,
        metric_key: str,
        payload: Any,
        fetched_at: Optional[datetime] = None,
        ttl: Optional[timedelta] = None,
    ) -> CacheEntry:
        """Overwrite the entry for ``metric_key`` and commit atomically."""
        entry = CacheEntry(
            metric_key=metric_key,
            fetched_at=fetched_at or self._clock(),
            ttl=ttl or self.default_ttl,
            payload=payload,
        )
        with self._lock:
            # Pick up keys written by another process since we last read.
            merged = self._read_file() if self.path.exists() else {}
            merged.update({k: v for k, v in self._entries.items() if k not in merged})
            merged[metric_key] = entry
            self._entries = merged
            self._write_locked()
        logger.debug(f"Cached {metric_key} (fetched {format_datetime(entry.fetched_at)})")
        return entry

    def is_fresh(
        self,
        entry: Optional[CacheEntry],
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """``now - entry.fetched_at < ttl`` (the entry's own ttl when omitted)."""
        if entry is None:
            return False
        ttl = entry.ttl if ttl is None else ttl
        now = now or self._clock()
        return now - entry.fetched_at < ttl

    def invalidate(self, metric_key: Optional[str] = None) -> None:
        """Drop one entry, or every entry when ``metric_key`` is None."""
        with self._lock:
            if metric_key is None:
                self._entries = {}
            else:
                self._entries.pop(metric_key, None)
            self._write_locked()
        logger.info(f"Invalidated cache {'(all)' if metric_key is None else metric_key}")

    def flush(self) -> None:
        """Wait for in-progress writes and persist anything not yet committed."""
        with self._lock:
            if self._dirty:
                self._write_locked()
