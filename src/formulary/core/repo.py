"""Repository of known formulas, built in or loaded from TOML files."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Iterable, List

from formulary.core.errors import FormulaNotFoundError, UserError
from formulary.core.logging import get_logger
from formulary.core.models import (
    ApiTemplate,
    BuildConfig,
    CliCheck,
    CliInvocation,
    Dependency,
    DependencyScope,
    Formula,
    HeadRef,
    Platform,
    PlatformBranch,
    Release,
)
from formulary.formulas.ccap import CCAP

log = get_logger(__name__)

BUILTIN_FORMULAS = (CCAP,)


def _branch(data: dict[str, Any]) -> PlatformBranch:
    platform = Platform(data["platform"])
    runtime = tuple(
        Dependency(name, DependencyScope.RUNTIME, platform)
        for name in data.get("runtime_dependencies", [])
    )
    return PlatformBranch(
        platform=platform,
        frameworks=tuple(data.get("frameworks", [])),
        system_libs=tuple(data.get("system_libs", [])),
        cmake_args=tuple(data.get("cmake_args", [])),
        dependencies=runtime,
        note=data.get("note"),
    )


def _release(data: dict[str, Any]) -> Release:
    options: dict[str, bool | None] = dict(data.get("options", {}))
    for name in data.get("unset", []):
        options[name] = None

    cli = None
    if "cli" in data:
        cli = CliCheck(
            binary=data["cli"]["binary"],
            invocations=tuple(
                CliInvocation(tuple(c["args"]), c["expect"]) for c in data["cli"]["checks"]
            ),
        )

    return Release(
        version=data["version"],
        url=data["url"],
        sha256=data["sha256"],
        branches=tuple(_branch(b) for b in data["branches"]),
        build=BuildConfig(options=options),
        api=ApiTemplate(data["api"]["key"], data["api"]["source"]),
        dependencies=tuple(
            Dependency(name, DependencyScope.BUILD) for name in data.get("build_dependencies", [])
        ),
        cli=cli,
        libraries=tuple(data.get("libraries", [])),
        min_macos=data.get("min_macos"),
    )


def load_formula_file(path: Path) -> Formula:
    """Load a formula from a TOML file.

    TOML has no null, so options left to the build tool's default are
    listed under ``unset`` rather than given a value.

    Args:
        path: Path to the TOML file.

    Returns:
        The parsed Formula.

    Raises:
        UserError: If the file cannot be read or is missing required keys.
    """
    try:
        data = tomllib.loads(path.read_text())
    except (OSError, tomllib.TOMLDecodeError) as e:
        log.error("formula_file_unreadable", path=str(path), error=str(e))
        raise UserError(
            "Could not read formula file", context={"path": str(path), "error": str(e)}
        ) from e

    try:
        head = HeadRef(**data["head"]) if "head" in data else None
        formula = Formula(
            name=data["name"],
            desc=data.get("desc", ""),
            homepage=data.get("homepage", ""),
            license=data.get("license", ""),
            releases=tuple(_release(r) for r in data["releases"]),
            head=head,
        )
    except (KeyError, TypeError, ValueError) as e:
        log.error("formula_file_invalid", path=str(path), error=str(e))
        raise UserError(
            "Invalid formula file", context={"path": str(path), "error": repr(e)}
        ) from e

    if not formula.releases:
        raise UserError("Formula declares no releases", context={"path": str(path)})

    log.info("formula_loaded", formula=formula.name, releases=len(formula.releases))
    return formula


class FormulaRepository:
    """Lookup of formulas by name."""

    def __init__(self, formulas: Iterable[Formula] = BUILTIN_FORMULAS) -> None:
        self._formulas = {f.name: f for f in formulas}

    def add(self, formula: Formula) -> None:
        self._formulas[formula.name] = formula

    def load(self, path: Path) -> Formula:
        formula = load_formula_file(path)
        self.add(formula)
        return formula

    def all(self) -> List[Formula]:
        return sorted(self._formulas.values(), key=lambda f: f.name.lower())

    def get(self, name: str) -> Formula:
        """Get a formula by name.

        Raises:
            FormulaNotFoundError: If the name is unknown.
        """
        try:
            return self._formulas[name]
        except KeyError:
            log.error("formula_not_found", formula=name)
            raise FormulaNotFoundError(formula=name) from None
