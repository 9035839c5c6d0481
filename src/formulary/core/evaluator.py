"""Evaluates one release of a formula from source to verified install."""

from __future__ import annotations

import shutil
import tempfile
import time
from pathlib import Path
from typing import Mapping, Optional

import httpx

from formulary.core.cache import ArchiveCache
from formulary.core.config import EvaluatorENV
from formulary.core.errors import FormulaError, UserError
from formulary.core.logging import get_logger
from formulary.core.models import (
    EvaluationResult,
    EvaluationStatus,
    Formula,
    Platform,
)
from formulary.core.shell import CommandRunner, run_capture
from formulary.pipeline import deps as deps_stage
from formulary.pipeline.build import BuildOrchestrator
from formulary.pipeline.platform import detect_host, host_macos_version, select_branch
from formulary.pipeline.source import SourceResolver
from formulary.pipeline.verify import VerificationRunner

log = get_logger(__name__)


class Evaluator:
    """Runs the dependency, platform, source, build and verify stages in order.

    Every collaborator with side effects (command runner, HTTP transport,
    PATH lookup) is injected, and each evaluation gets its own scratch
    directory, so evaluations share no state beyond the archive cache.
    """

    def __init__(
        self,
        env: EvaluatorENV,
        runner: CommandRunner = run_capture,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        which: deps_stage.Which = shutil.which,
        cache: ArchiveCache | None = None,
    ) -> None:
        self.env = env
        self.which = which
        self.resolver = SourceResolver(env, cache=cache, transport=transport, runner=runner)
        self.builder = BuildOrchestrator(env, runner=runner)
        self.verifier = VerificationRunner(env, runner=runner)

    async def evaluate(
        self,
        formula: Formula,
        version: str | None = None,
        host: Platform | None = None,
        head: bool = False,
        prefix: Path | None = None,
        macos_version: str | None = None,
        options: Mapping[str, bool | None] | None = None,
    ) -> EvaluationResult:
        """Evaluate one release on one host.

        Args:
            formula: The formula to evaluate.
            version: Release version, latest if None.
            host: Host platform, detected if None.
            head: Build the formula's head branch instead of the archive.
            prefix: Persistent install prefix; a scratch prefix if None.
            macos_version: Host macOS version for the minimum-version check.
            options: Build option overrides; None leaves an option unset.

        Returns:
            The result of a fully verified evaluation.

        Raises:
            FormulaError: Any stage failure, with formula, version and
                platform added to its context.
        """
        release = formula.release(version)
        build = release.build.with_options(**options) if options else release.build
        if host is None:
            host = detect_host()
            if host is Platform.MACOS and macos_version is None:
                macos_version = host_macos_version()

        result = EvaluationResult(
            formula=formula.name,
            version="HEAD" if head else release.version,
            platform=host,
            unset_options=build.unset(),
        )
        start = time.perf_counter()
        log.info(
            "evaluation_start",
            formula=formula.name,
            version=result.version,
            platform=host.value,
        )

        try:
            await self._run(formula, release, build, host, head, prefix, macos_version, result)
        except FormulaError as e:
            log.error(
                "evaluation_failed",
                formula=formula.name,
                version=result.version,
                platform=host.value,
                error_type=type(e).__name__,
                status=str(result.status),
            )
            raise e.with_context(
                formula=formula.name,
                version=result.version,
                platform=host.value,
                installed=EvaluationStatus.INSTALLED in result.status,
            )

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "evaluation_complete",
            formula=formula.name,
            version=result.version,
            platform=host.value,
            duration_ms=duration_ms,
        )
        return result

    async def _run(
        self, formula, release, build, host, head, prefix, macos_version, result
    ) -> None:
        branch = select_branch(release, host, macos_version)
        if head and formula.head is None:
            raise UserError(f"Formula '{formula.name}' has no head branch")

        deps = deps_stage.declare(release, branch, head=head)
        deps_stage.check_build_dependencies(deps, self.env, self.which)

        self.env.scratch_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix=f"{formula.name}-{result.version}-", dir=self.env.scratch_root
        ) as tmp:
            workdir = Path(tmp)

            if head:
                source = await self.resolver.clone_head(formula, formula.head, workdir)
                result.status |= EvaluationStatus.HEAD
            else:
                source = await self.resolver.resolve(formula, release, workdir)
            result.status |= EvaluationStatus.FETCHED

            install_prefix = prefix or workdir / "prefix"
            result.prefix = install_prefix
            config = build.at_prefix(install_prefix)

            result.steps += await self.builder.run(source, workdir / "build", config, branch)
            result.status |= (
                EvaluationStatus.CONFIGURED | EvaluationStatus.BUILT | EvaluationStatus.INSTALLED
            )

            result.steps += await self.verifier.check_library(
                release, branch, install_prefix, workdir / "test"
            )
            if release.cli is not None:
                result.cli_output = await self.verifier.check_cli(
                    release.cli, install_prefix, workdir / "test"
                )
            result.status |= EvaluationStatus.VERIFIED
