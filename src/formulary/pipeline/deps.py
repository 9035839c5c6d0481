"""Dependency declaration for a release on a chosen platform branch."""

from __future__ import annotations

import shutil
from typing import Callable, Iterable

from formulary.core.config import EvaluatorENV
from formulary.core.errors import DependencyMissing
from formulary.core.logging import get_logger
from formulary.core.models import Dependency, DependencyScope, PlatformBranch, Release

log = get_logger(__name__)

Which = Callable[[str], "str | None"]

GIT = Dependency("git", DependencyScope.BUILD)


def declare(release: Release, branch: PlatformBranch, head: bool = False) -> list[Dependency]:
    """List the dependencies a release needs on the given branch.

    Build-time dependencies come first, then the branch's platform
    conditional runtime dependencies (which may be empty). A head build
    clones its source, so it also needs git.

    Args:
        release: The release being evaluated.
        branch: The platform branch chosen for the host.
        head: Whether the source comes from the head branch.

    Returns:
        The declared dependencies, without duplicates.
    """
    deps: list[Dependency] = []
    declared = (*release.dependencies, *((GIT,) if head else ()), *branch.dependencies)
    for d in declared:
        if d.platform is not None and d.platform is not branch.platform:
            continue
        if d not in deps:
            deps.append(d)

    deps.sort(key=lambda d: d.scope is not DependencyScope.BUILD)
    log.debug(
        "dependencies_declared",
        version=release.version,
        platform=branch.platform.value,
        dependencies=[f"{d.name}:{d.scope.value}" for d in deps],
    )
    return deps


def check_build_dependencies(
    deps: Iterable[Dependency],
    env: EvaluatorENV,
    which: Which = shutil.which,
) -> None:
    """Ensure every build-time dependency is on PATH.

    Raises:
        DependencyMissing: For the first dependency not found.
    """
    executables = {"cmake": env.cmake, "git": env.git}
    for d in deps:
        if d.scope is not DependencyScope.BUILD:
            continue
        exe = executables.get(d.name, d.name)
        if which(exe) is None:
            log.error("dependency_missing", dependency=d.name, executable=exe)
            raise DependencyMissing(dependency=d.name)
