"""CLI entry point for formulary."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import typer

from formulary.cli.renderers import console, formula_details, formula_table, result_table
from formulary.core.cache import ArchiveCache
from formulary.core.config import discover_env
from formulary.core.errors import (
    EXIT_SYSTEM_ERROR,
    EXIT_TRANSIENT_ERROR,
    EXIT_USER_ERROR,
    EXIT_VERIFICATION_FAILED,
    FormulaError,
    SystemError,
    TransientError,
    UserError,
    VerificationFailed,
    format_error_message,
)
from formulary.core.evaluator import Evaluator
from formulary.core.logging import configure_logging, get_logger
from formulary.core.models import Platform
from formulary.core.repo import FormulaRepository

app = typer.Typer(help="Formulary: build and verify native libraries from formulas.")

log = get_logger(__name__)


def handle_error(error: Exception) -> int:
    """Handle errors and return appropriate exit codes.

    Args:
        error: The exception to handle.

    Returns:
        An integer exit code.
    """
    if isinstance(error, FormulaError):
        log.error(
            "cli_error",
            error_type=type(error).__name__,
            message=error.message,
            context=error.context,
        )
        console.print(f"\n{format_error_message(error)}\n", style="bold red")

        if isinstance(error, VerificationFailed):
            return EXIT_VERIFICATION_FAILED
        elif isinstance(error, TransientError):
            return EXIT_TRANSIENT_ERROR
        elif isinstance(error, UserError):
            return EXIT_USER_ERROR
        elif isinstance(error, SystemError):
            return EXIT_SYSTEM_ERROR
        else:
            return EXIT_USER_ERROR
    else:
        log.error(
            "unexpected_error",
            error=str(error),
            exc_info=True
        )
        console.print(
            f"\n⚠️ Unexpected error occurred: {error}\n",
            style="bold red"
        )
        return EXIT_SYSTEM_ERROR


OPTION_VALUES = {"on": True, "off": False, "unset": None}


def parse_options(values: Optional[List[str]]) -> dict[str, Optional[bool]]:
    """Parse NAME=on|off|unset build option overrides.

    Raises:
        UserError: If a value is not of that form.
    """
    options: dict[str, Optional[bool]] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep or not name or value.lower() not in OPTION_VALUES:
            raise UserError(
                f"Invalid build option '{item}', expected NAME=on|off|unset",
                context={"option": item},
            )
        options[name] = OPTION_VALUES[value.lower()]
    return options


def _repository(formula_files: Optional[List[Path]]) -> FormulaRepository:
    repo = FormulaRepository()
    for path in formula_files or []:
        repo.load(path)
    return repo


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    """Configure logging for every command."""
    configure_logging(level="DEBUG" if verbose else "INFO", enable_console=verbose, force=True)


@app.command("list")
def list_formulas(
    formula_file: Optional[List[Path]] = typer.Option(
        None, "--formula-file", "-f", help="Extra TOML formula to load"
    ),
) -> None:
    """List known formulas."""
    try:
        console.print(formula_table(_repository(formula_file).all()))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def info(
    name: str,
    formula_file: Optional[List[Path]] = typer.Option(
        None, "--formula-file", "-f", help="Extra TOML formula to load"
    ),
) -> None:
    """Show every release of a formula.

    Args:
        name: Name of the formula.
    """
    try:
        formula = _repository(formula_file).get(name)
        console.print(formula_details(formula))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def evaluate(
    name: str,
    version: Optional[str] = typer.Option(None, "--version", help="Release, latest if omitted"),
    head: bool = typer.Option(False, "--head", help="Build the live branch instead"),
    host: Optional[Platform] = typer.Option(None, "--host", help="Override the detected host"),
    prefix: Optional[Path] = typer.Option(None, "--prefix", help="Persistent install prefix"),
    option: Optional[List[str]] = typer.Option(
        None, "--option", "-o", help="Build option override, NAME=on|off|unset"
    ),
    formula_file: Optional[List[Path]] = typer.Option(
        None, "--formula-file", "-f", help="Extra TOML formula to load"
    ),
) -> None:
    """Fetch, build, install and verify one release.

    Args:
        name: Name of the formula.
    """
    try:
        formula = _repository(formula_file).get(name)
        options = parse_options(option)
        evaluator = Evaluator(discover_env())
        result = asyncio.run(
            evaluator.evaluate(
                formula,
                version=version,
                host=host,
                head=head,
                prefix=prefix,
                options=options,
            )
        )
        console.print(result_table(result))
        if result.unset_options:
            console.print(
                f"Options left to the build tool's default: {', '.join(result.unset_options)}",
                style="yellow",
            )
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("cache-clear")
def cache_clear() -> None:
    """Remove every cached source archive."""
    try:
        removed = ArchiveCache(discover_env().cache_dir).clear()
        console.print(f"Removed {removed} cached archive(s)")
    except Exception as e:
        sys.exit(handle_error(e))


if __name__ == "__main__":
    app()
