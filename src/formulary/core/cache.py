"""A file-based archive cache keyed by formula, version and digest."""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import Awaitable, Callable

from formulary.core.errors import CacheError
from formulary.core.logging import get_logger

log = get_logger(__name__)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalise_digest(digest: str) -> str:
    """Lower-case and strip a hex digest for comparison."""
    return digest.strip().lower()


class ArchiveCache:
    """Content-addressed store of fetched source archives.

    An entry is only ever returned if its bytes still hash to the digest
    in its key; anything else is treated as a miss.
    """

    def __init__(self, root: Path, namespace: str = "archives"):
        self.cache_path = root / namespace
        try:
            self.cache_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(
                path=str(self.cache_path), operation="init", context={"error": str(e)}
            ) from e
        log.debug("cache_initialized", path=str(self.cache_path))

    @staticmethod
    def key(name: str, version: str, digest: str) -> str:
        return f"{name}--{version}--{normalise_digest(digest)}"

    def _file(self, key: str) -> Path:
        """Get the file path for a given cache key.

        Args:
            key: The cache key.

        Returns:
            The Path to the cached archive.
        """
        return self.cache_path / f"{key}.tar.gz"

    def get(self, name: str, version: str, digest: str) -> bytes | None:
        """Return cached bytes if present and intact, else None."""
        key = self.key(name, version, digest)
        f = self._file(key)
        if not f.exists():
            return None

        try:
            data = f.read_bytes()
        except OSError as e:
            log.error("cache_read_error", key=key, error=str(e))
            raise CacheError(key=key, path=str(f), operation="read") from e

        if sha256_hex(data) != normalise_digest(digest):
            log.warning("cache_corrupted", key=key, path=str(f))
            f.unlink(missing_ok=True)
            return None

        log.info("cache_hit", key=key)
        return data

    def put(self, name: str, version: str, digest: str, data: bytes) -> Path:
        key = self.key(name, version, digest)
        f = self._file(key)
        tmp = f.with_suffix(".partial")
        try:
            tmp.write_bytes(data)
            tmp.replace(f)
        except OSError as e:
            log.error("cache_write_error", key=key, error=str(e))
            raise CacheError(key=key, path=str(f), operation="write") from e

        log.info("cache_set", key=key, size=len(data))
        return f

    async def get_or_fetch(
        self,
        name: str,
        version: str,
        digest: str,
        loader: Callable[[], Awaitable[bytes]],
    ) -> tuple[bytes, bool]:
        """Get cached archive bytes or load them.

        The loader's bytes are returned unverified and are only stored by
        the caller once they pass the digest check.

        Args:
            name: Formula name.
            version: Release version.
            digest: Declared sha256 digest.
            loader: Coroutine factory returning fresh bytes.

        Returns:
            (bytes, from_cache).
        """
        start = time.perf_counter()
        cached = self.get(name, version, digest)
        if cached is not None:
            return cached, True

        log.info("cache_miss", key=self.key(name, version, digest))
        data = await loader()
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.debug("archive_loaded", formula=name, version=version, duration_ms=duration_ms)
        return data, False

    def clear(self) -> int:
        """Remove every cached archive, returning how many were removed."""
        removed = 0
        for f in self.cache_path.glob("*.tar.gz"):
            f.unlink(missing_ok=True)
            removed += 1
        log.info("cache_cleared", removed=removed)
        return removed
