"""Data models for formulas, releases and evaluations."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Mapping

from formulary.core.errors import ReleaseNotFoundError

# Placeholder digest for a release whose archive digest is not yet recorded.
UNPINNED_DIGEST = "0" * 64


class Platform(Enum):
    """Closed enumeration of host platforms."""

    MACOS = "macos"
    LINUX = "linux"
    UNSUPPORTED = "unsupported"


class DependencyScope(Enum):
    """When a dependency is needed."""

    BUILD = "build"
    RUNTIME = "runtime"


class EvaluationStatus(Flag):
    """Progress of one evaluation."""

    NONE = 0
    FETCHED = auto()
    CONFIGURED = auto()
    BUILT = auto()
    INSTALLED = auto()
    VERIFIED = auto()
    HEAD = auto()


@dataclass(frozen=True)
class Dependency:
    """A named dependency.

    Runtime dependencies may be restricted to one platform.
    """

    name: str
    scope: DependencyScope = DependencyScope.BUILD
    platform: Platform | None = None


@dataclass(frozen=True)
class PlatformBranch:
    """Host-specific configuration of a release."""

    platform: Platform
    frameworks: tuple[str, ...] = ()
    system_libs: tuple[str, ...] = ()
    cmake_args: tuple[str, ...] = ()
    dependencies: tuple[Dependency, ...] = ()
    note: str | None = None

    def link_flags(self) -> list[str]:
        """Compiler/linker flags a consumer of the library needs."""
        flags: list[str] = []
        for fw in self.frameworks:
            flags += ["-framework", fw]
        flags += [f"-l{lib}" for lib in self.system_libs]
        return flags


@dataclass(frozen=True)
class BuildConfig:
    """Option matrix passed to the configure step.

    An option set to ``None`` is unset: the build tool's own default applies
    and the option is not passed at all. This is distinct from ``False``.
    """

    options: Mapping[str, bool | None] = field(default_factory=dict)
    build_type: str = "Release"
    prefix: Path | None = None

    def explicit(self) -> dict[str, bool]:
        return {k: v for k, v in self.options.items() if v is not None}

    def unset(self) -> list[str]:
        return sorted(k for k, v in self.options.items() if v is None)

    def with_options(self, **overrides: bool | None) -> BuildConfig:
        merged = dict(self.options)
        merged.update(overrides)
        return replace(self, options=merged)

    def at_prefix(self, prefix: Path) -> BuildConfig:
        return replace(self, prefix=prefix)


@dataclass(frozen=True)
class ApiTemplate:
    """Consumer program matching one generation of the library's public API."""

    key: str
    source: str


@dataclass(frozen=True)
class CliInvocation:
    args: tuple[str, ...]
    expect: str


@dataclass(frozen=True)
class CliCheck:
    """Installed command-line entry point and the output it must produce."""

    binary: str
    invocations: tuple[CliInvocation, ...]


@dataclass(frozen=True)
class HeadRef:
    url: str
    branch: str = "main"


@dataclass(frozen=True)
class Release:
    """One published version of a formula."""

    version: str
    url: str
    sha256: str
    branches: tuple[PlatformBranch, ...]
    build: BuildConfig
    api: ApiTemplate
    dependencies: tuple[Dependency, ...] = ()
    cli: CliCheck | None = None
    libraries: tuple[str, ...] = ()
    min_macos: str | None = None

    @property
    def platforms(self) -> list[Platform]:
        return [b.platform for b in self.branches]

    @property
    def pinned(self) -> bool:
        """False while the release carries the placeholder digest."""
        return self.sha256.strip().lower() != UNPINNED_DIGEST


@dataclass(frozen=True)
class Formula:
    """A named, versioned description of how to build and verify a package.

    Releases are ordered oldest first; new releases are appended.
    """

    name: str
    desc: str
    homepage: str
    license: str
    releases: tuple[Release, ...]
    head: HeadRef | None = None

    @property
    def latest(self) -> Release:
        return self.releases[-1]

    def release(self, version: str | None = None) -> Release:
        """Look up a release by version, accepting an optional leading "v".

        Args:
            version: Version string, or None for the latest release.

        Returns:
            The matching Release.

        Raises:
            ReleaseNotFoundError: If no release has that version.
        """
        if version is None:
            return self.latest

        wanted = version.lstrip("v")
        for r in self.releases:
            if r.version.lstrip("v") == wanted:
                return r

        raise ReleaseNotFoundError(formula=self.name, version=version)


@dataclass
class StepRecord:
    """Outcome of one external command."""

    step: str
    command: list[str]
    returncode: int
    duration_ms: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class VerificationCase:
    """A consumer program materialised for a single evaluation."""

    source_path: Path
    binary_path: Path
    compile_command: list[str]


@dataclass
class EvaluationResult:
    """Outcome of evaluating one release on one host."""

    formula: str
    version: str
    platform: Platform
    status: EvaluationStatus = EvaluationStatus.NONE
    prefix: Path | None = None
    steps: list[StepRecord] = field(default_factory=list)
    cli_output: dict[str, str] = field(default_factory=dict)
    unset_options: list[str] = field(default_factory=list)

    @property
    def certified(self) -> bool:
        return EvaluationStatus.VERIFIED in self.status
