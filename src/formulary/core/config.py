"""Configuration module for the formula evaluation environment."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

_DEF_HOME = Path.home() / ".formulary"


@dataclass(frozen=True)
class EvaluatorENV:
    """Configuration for one evaluation environment.

    Passed explicitly into every pipeline stage so that independent
    evaluations never share process-wide state.
    """
    cache_dir: Path
    scratch_root: Path
    cxx: str = "c++"
    cc: str = "cc"
    cmake: str = "cmake"
    git: str = "git"
    extra_env: Mapping[str, str] = field(default_factory=dict)

    def command_env(self) -> dict[str, str]:
        """Environment handed to external build commands."""
        env = dict(os.environ)
        env.update(self.extra_env)
        env["CXX"] = self.cxx
        env["CC"] = self.cc
        env["LANG"] = "C"

        return env


def discover_env(environ: Mapping[str, str] | None = None) -> EvaluatorENV:
    """Discover the evaluation environment from environment variables.

    Args:
        environ: Mapping to read from, defaults to ``os.environ``.

    Returns:
        A new EvaluatorENV.
    """
    environ = os.environ if environ is None else environ

    cache_dir = Path(environ.get("FORMULARY_CACHE", _DEF_HOME / "cache"))
    scratch_root = Path(environ.get("FORMULARY_SCRATCH", tempfile.gettempdir()))

    return EvaluatorENV(
        cache_dir=cache_dir,
        scratch_root=scratch_root,
        cxx=environ.get("CXX", "c++"),
        cc=environ.get("CC", "cc"),
        cmake=environ.get("FORMULARY_CMAKE", "cmake"),
        git=environ.get("FORMULARY_GIT", "git"),
    )
