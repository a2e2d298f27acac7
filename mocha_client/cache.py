"""TTL-aware on-disk response cache."""

import asyncio
import base64
import hashlib
import json
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .config import CacheConfig
from .logging_config import get_logger
from .models import Headers, Request, Response

logger = get_logger(__name__)

CACHEABLE_METHODS = frozenset({"GET"})


@dataclass
class CacheEntry:
    """A stored response record."""

    status: int
    headers: list[tuple[str, str]]
    body: bytes
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """A record is served only while ``now < stored_at + ttl``."""
        return now >= self.stored_at + self.ttl

    def to_record(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "headers": [list(pair) for pair in self.headers],
            "body": base64.b64encode(self.body).decode("ascii"),
            "stored_at": self.stored_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "CacheEntry":
        return cls(
            status=int(record["status"]),
            headers=[(str(name), str(value)) for name, value in record["headers"]],
            body=base64.b64decode(record["body"]),
            stored_at=float(record["stored_at"]),
            ttl=float(record["ttl"]),
        )


class ResponseCache:
    """
    Response cache persisted as one JSON record per key.

    Features:
    - Key is a sha256 over method, full URL (query included) and the values
      of the configured vary headers
    - Only GET requests with 2xx responses are stored
    - Expired records are deleted when read
    - Writes go to a temp file that is atomically renamed into place
    - File I/O runs in a worker thread so the event loop never blocks
    """

    def __init__(self, config: CacheConfig, clock: Optional[Callable[[], float]] = None):
        self.config = config
        self.directory = Path(config.directory)
        self.clock = clock or time.time

    def key_for(self, request: Request) -> str:
        parts = [request.method, request.full_url]
        for name in self.config.vary_headers:
            parts.append(f"{name}={','.join(request.headers.get_list(name))}")
        return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def is_cacheable(self, request: Request) -> bool:
        return request.method in CACHEABLE_METHODS

    async def get(self, request: Request) -> Optional[Response]:
        """Return the cached response for ``request``, or None on miss or expiry."""
        if not self.is_cacheable(request):
            return None
        key = self.key_for(request)
        entry = await asyncio.to_thread(self._read, key)
        if entry is None:
            logger.debug("Cache miss", key=key, reason="not_found")
            return None

        now = self.clock()
        if entry.is_expired(now):
            await asyncio.to_thread(self._delete, key)
            logger.debug("Cache miss", key=key, reason="expired", entry_age=now - entry.stored_at)
            return None

        logger.debug("Cache hit", key=key, entry_age=now - entry.stored_at)
        return Response(
            status_code=entry.status,
            headers=Headers(entry.headers),
            content=entry.body,
            request=request,
        )

    async def put(self, response: Response) -> bool:
        """Store ``response`` if cacheable. Returns whether it was stored."""
        request = response.request
        if request is None or not self.is_cacheable(request) or not response.is_success:
            return False
        key = self.key_for(request)
        entry = CacheEntry(
            status=response.status_code,
            headers=response.headers.multi_items(),
            body=response.content,
            stored_at=self.clock(),
            ttl=self.config.ttl_seconds,
        )
        try:
            await asyncio.to_thread(self._write, key, entry)
        except OSError as e:
            logger.warning("Cache write failed", key=key, error=str(e))
            return False
        logger.debug("Cache set", key=key)
        return True

    async def clear(self) -> int:
        cleared = await asyncio.to_thread(self._clear)
        logger.info("Cache cleared", cleared_count=cleared)
        return cleared

    def _read(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        try:
            with path.open("r", encoding="utf-8") as f:
                return CacheEntry.from_record(json.load(f))
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cache read failed", key=key, error=str(e))
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding corrupt cache record", key=key, error=str(e))
            self._delete(key)
            return None

    def _write(self, key: str, entry: CacheEntry) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry.to_record(), f)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cache delete failed", key=key, error=str(e))

    def _clear(self) -> int:
        if not self.directory.exists():
            return 0
        cleared = 0
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
            cleared += 1
        return cleared
