"""Platform selection: map the host onto exactly one release branch."""

from __future__ import annotations

import platform as _platform

from formulary.core.errors import UnsupportedPlatform
from formulary.core.logging import get_logger
from formulary.core.models import Platform, PlatformBranch, Release

log = get_logger(__name__)

_SYSTEMS = {
    "Darwin": Platform.MACOS,
    "Linux": Platform.LINUX,
}


def detect_host(system: str | None = None) -> Platform:
    """Map an operating system name onto the closed Platform enumeration."""
    system = _platform.system() if system is None else system
    return _SYSTEMS.get(system, Platform.UNSUPPORTED)


def host_macos_version() -> str | None:
    """The running macOS version, or None when not on macOS."""
    version = _platform.mac_ver()[0]
    return version or None


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for p in version.split("."):
        if not p.isdigit():
            break
        parts.append(int(p))
    return tuple(parts)


def select_branch(
    release: Release, host: Platform, macos_version: str | None = None
) -> PlatformBranch:
    """Select the release's branch for a host.

    Args:
        release: The release being evaluated.
        host: The host platform.
        macos_version: Host macOS version when known, checked against the
            release's minimum.

    Returns:
        The single matching PlatformBranch.

    Raises:
        UnsupportedPlatform: If no branch matches, or the host macOS is
            older than the release supports.
    """
    supported = [p.value for p in release.platforms]
    matches = [b for b in release.branches if b.platform is host]

    if host is Platform.UNSUPPORTED or not matches:
        log.error(
            "platform_unsupported",
            version=release.version,
            host=host.value,
            supported=supported,
        )
        raise UnsupportedPlatform(host=host.value, supported=supported)

    if len(matches) > 1:
        raise ValueError(f"release {release.version} declares {host.value} more than once")

    if host is Platform.MACOS and release.min_macos and macos_version:
        if _version_tuple(macos_version) < _version_tuple(release.min_macos):
            log.error(
                "macos_too_old",
                version=release.version,
                host_version=macos_version,
                minimum=release.min_macos,
            )
            raise UnsupportedPlatform(
                f"macOS {macos_version} is older than the required {release.min_macos}",
                host=host.value,
                supported=supported,
            )

    branch = matches[0]
    log.info("platform_selected", version=release.version, platform=host.value)
    return branch
