"""Source resolution: fetch, verify and unpack a release's source tree."""

from __future__ import annotations

import io
import re
import tarfile
import time
from pathlib import Path
from typing import Optional

import httpx

from formulary.core.cache import ArchiveCache, normalise_digest, sha256_hex
from formulary.core.config import EvaluatorENV
from formulary.core.errors import FetchUnavailable, IntegrityMismatch, SystemError
from formulary.core.logging import get_logger
from formulary.core.models import Formula, HeadRef, Release
from formulary.core.shell import CommandRunner, run_capture

log = get_logger(__name__)

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def verify_digest(data: bytes, expected: str, url: str | None = None) -> str:
    """Check bytes against a declared sha256 digest.

    Comparison is exact after normalising both sides to lower-case hex.

    Args:
        data: Fetched bytes.
        expected: Declared digest.
        url: Source URL, for error context.

    Returns:
        The normalised digest.

    Raises:
        IntegrityMismatch: If the digest is malformed or does not match.
    """
    declared = normalise_digest(expected)
    actual = sha256_hex(data)

    if not _HEX_DIGEST.match(declared):
        raise IntegrityMismatch(
            "Declared digest is not a sha256 hex string",
            expected=expected,
            actual=actual,
            url=url,
        )
    if actual != declared:
        log.error("integrity_mismatch", url=url, expected=declared, actual=actual)
        raise IntegrityMismatch(expected=declared, actual=actual, url=url)

    return declared


def extract_archive(data: bytes, dest: Path) -> Path:
    """Unpack a tar archive into dest, stripping one top-level directory.

    Members that would land outside dest are rejected.

    Returns:
        The source root directory.
    """
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()

    with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
        members = tar.getmembers()
        for m in members:
            target = (root / m.name).resolve()
            if target != root and root not in target.parents:
                raise IntegrityMismatch(
                    "Archive member escapes the extraction directory",
                    context={"member": m.name},
                )
            if m.issym() or m.islnk():
                base = target.parent if m.issym() else root
                link = (base / m.linkname).resolve()
                if root not in link.parents:
                    raise IntegrityMismatch(
                        "Archive link escapes the extraction directory",
                        context={"member": m.name},
                    )
        tar.extractall(root, members=members, filter="data")

    entries = list(root.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return root


class SourceResolver:
    """Produces a local, verified source tree for a release."""

    def __init__(
        self,
        env: EvaluatorENV,
        cache: ArchiveCache | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        runner: CommandRunner = run_capture,
    ) -> None:
        self.env = env
        self.cache = cache or ArchiveCache(env.cache_dir)
        self.transport = transport
        self.runner = runner

    async def download(self, url: str) -> bytes:
        """Fetch raw archive bytes.

        Raises:
            FetchUnavailable: On network errors or non-success status.
        """
        start = time.perf_counter()
        log.info("fetch_start", url=url)

        try:
            async with httpx.AsyncClient(
                transport=self.transport, follow_redirects=True, timeout=None
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error("fetch_failed", url=url, status=e.response.status_code)
            raise FetchUnavailable(
                url=url, status=e.response.status_code, error=str(e)
            ) from e
        except httpx.HTTPError as e:
            log.error("fetch_failed", url=url, error=str(e))
            raise FetchUnavailable(url=url, error=str(e)) from e

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info("fetch_complete", url=url, size=len(response.content), duration_ms=duration_ms)
        return response.content

    async def resolve(self, formula: Formula, release: Release, workdir: Path) -> Path:
        """Fetch, verify and extract a release archive.

        The archive is only written to the cache and extracted after the
        digest check passes. A release still carrying the placeholder digest
        fails before anything is fetched.

        Args:
            formula: The formula the release belongs to.
            release: The release to resolve.
            workdir: Scratch directory for this evaluation.

        Returns:
            Path to the extracted source tree.
        """
        if not release.pinned:
            log.error("release_unpinned", formula=formula.name, version=release.version)
            raise IntegrityMismatch(
                "Release has no recorded digest", expected=release.sha256, url=release.url
            )

        data, cached = await self.cache.get_or_fetch(
            formula.name,
            release.version,
            release.sha256,
            lambda: self.download(release.url),
        )

        digest = verify_digest(data, release.sha256, url=release.url)
        if not cached:
            self.cache.put(formula.name, release.version, digest, data)

        source = extract_archive(data, workdir / "src")
        log.info(
            "source_resolved",
            formula=formula.name,
            version=release.version,
            cached=cached,
            path=str(source),
        )
        return source

    async def clone_head(self, formula: Formula, head: HeadRef, workdir: Path) -> Path:
        """Shallow-clone a live branch; head content is unpinned so no digest applies.

        Raises:
            FetchUnavailable: If git cannot start or exits non-zero.
        """
        dest = workdir / "src"
        cmd = [self.env.git, "clone", "--depth", "1", "--branch", head.branch, head.url, str(dest)]
        try:
            out, err, code = await self.runner(cmd, cwd=workdir, env=self.env.command_env())
        except SystemError as e:
            log.error("clone_failed", url=head.url, branch=head.branch, error=e.message)
            raise FetchUnavailable(url=head.url, error=str(e)) from e
        if code != 0:
            log.error("clone_failed", url=head.url, branch=head.branch, returncode=code)
            raise FetchUnavailable(url=head.url, status=code, error=err or out)

        log.info("head_resolved", formula=formula.name, branch=head.branch, path=str(dest))
        return dest
