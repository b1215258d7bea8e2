"""
Disk Cache — persistent response cache in a single SQLite file.

Schema:
    cache(cache_key TEXT PRIMARY KEY, payload TEXT, expires_at REAL,
          updated_at REAL)
    indexed on expires_at (expiry sweeps) and updated_at (LRU eviction)

Payloads are GenerateResponse JSON. Every read re-validates the payload
against the canonical model; a row that fails to parse is deleted and
the read counts as a miss, so corruption never reaches the caller.

size_limit_mb is approximate: after each write, the oldest rows by
updated_at are deleted one at a time until the file size sampled
between deletions is under the limit. The database is created with
incremental auto-vacuum so freed pages are actually returned to the OS.

Usage:
    from gateway.cache.disk import DiskCache

    cache = DiskCache({"path": ".cache/gateway.sqlite", "size_limit_mb": 64})
"""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Optional

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from gateway.cache.base import BaseCache, CacheConfig
from gateway.contracts.models import GenerateRequest, GenerateResponse
from gateway.exceptions import CacheError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache (
    cache_key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    expires_at REAL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache(expires_at);
CREATE INDEX IF NOT EXISTS idx_cache_updated ON cache(updated_at);
"""


class DiskCacheConfig(CacheConfig):
    path: str = ".cache/gateway.sqlite"
    size_limit_mb: Optional[float] = Field(None, gt=0)
    vacuum_on_start: bool = False
    ensure_directory: bool = True


class DiskCache(BaseCache):
    """SQLite-backed cache tier."""

    config_model = DiskCacheConfig
    config: DiskCacheConfig

    def __init__(self, config: Any = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self._path = self.config.path

        if self.config.ensure_directory and self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self._path)
            # auto_vacuum only takes effect before the first table exists
            self._conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
            self._conn.executescript(_SCHEMA)
            if self.config.vacuum_on_start:
                self._conn.execute("VACUUM")
            self._conn.commit()
        except sqlite3.Error as err:
            raise CacheError(
                f"Could not open disk cache at {self._path}: {err}",
                context={"path": self._path},
            ) from err

        self._update_size()
        logger.debug("disk_cache_opened", extra={"path": self._path, "entries": self.stats.size})

    # --- Core Operations ---

    async def get(
        self, key: str, *, request: Optional[GenerateRequest] = None
    ) -> Optional[GenerateResponse]:
        self._remove_expired()

        row = self._conn.execute(
            "SELECT payload, expires_at FROM cache WHERE cache_key = ?", (key,)
        ).fetchone()

        if row is None:
            self._mark_miss()
            return None

        payload, expires_at = row
        if expires_at is not None and expires_at < self._now():
            self._delete(key)
            self._mark_miss()
            return None

        try:
            response = GenerateResponse.model_validate_json(payload)
        except (PydanticValidationError, ValueError) as err:
            logger.warning(
                "disk_cache_corrupt_entry",
                extra={"key": key[:16], "error": str(err)[:200]},
            )
            self._delete(key)
            self._mark_miss()
            return None

        self._conn.execute(
            "UPDATE cache SET updated_at = ? WHERE cache_key = ?", (self._now(), key)
        )
        self._conn.commit()
        self._mark_hit()
        return response

    async def set(
        self, key: str, value: GenerateResponse, *, ttl: Optional[float] = None
    ) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO cache (cache_key, payload, expires_at, updated_at) "
            "VALUES (?, ?, ?, ?)",
            (key, value.model_dump_json(), self._compute_expiry(ttl), self._now()),
        )
        self._conn.commit()

        self._remove_expired()
        self._enforce_size_limit()
        self._update_size()

    def remaining_ttl(self, key: str) -> Optional[float]:
        """Seconds until `key` expires, or None when it has no expiry or is absent."""
        row = self._conn.execute(
            "SELECT expires_at FROM cache WHERE cache_key = ?", (key,)
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return row[0] - self._now()

    async def invalidate(self, key: str) -> None:
        self._delete(key)

    async def clear(self) -> None:
        self._conn.execute("DELETE FROM cache")
        self._conn.commit()
        self._update_size()

    def close(self) -> None:
        self._conn.close()

    # --- Maintenance ---

    def _delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM cache WHERE cache_key = ?", (key,))
        self._conn.commit()
        self._update_size()

    def _remove_expired(self) -> int:
        cursor = self._conn.execute(
            "DELETE FROM cache WHERE expires_at IS NOT NULL AND expires_at < ?",
            (self._now(),),
        )
        self._conn.commit()
        if cursor.rowcount:
            self._update_size()
        return cursor.rowcount

    def _file_size(self) -> int:
        try:
            return os.path.getsize(self._path)
        except OSError:
            return 0

    def _enforce_size_limit(self) -> None:
        if not self.config.size_limit_mb or self._path == ":memory:":
            return

        byte_limit = self.config.size_limit_mb * 1024 * 1024
        current = self._file_size()

        while current > byte_limit:
            oldest = self._conn.execute(
                "SELECT cache_key FROM cache ORDER BY updated_at ASC LIMIT 1"
            ).fetchone()
            if oldest is None:
                break

            self._conn.execute("DELETE FROM cache WHERE cache_key = ?", (oldest[0],))
            self._conn.commit()
            self._conn.execute("PRAGMA incremental_vacuum").fetchall()
            self._conn.commit()
            self._mark_eviction()
            logger.debug("cache_eviction", extra={"tier": "disk", "key": oldest[0][:16]})

            current = self._file_size()

    def _update_size(self) -> None:
        (count,) = self._conn.execute("SELECT COUNT(*) FROM cache").fetchone()
        self.stats.size = count


async def create_disk_cache(config: Any = None, **kwargs: Any) -> DiskCache:
    return DiskCache(config, **kwargs)
