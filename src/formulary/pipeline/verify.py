"""Post-install verification: compile a consumer and check the CLI."""

from __future__ import annotations

import time
from pathlib import Path

from formulary.core.config import EvaluatorENV
from formulary.core.errors import SystemError, VerificationFailed
from formulary.core.logging import get_logger
from formulary.core.models import (
    CliCheck,
    PlatformBranch,
    Release,
    StepRecord,
    VerificationCase,
)
from formulary.core.shell import CommandRunner, run_capture

log = get_logger(__name__)


class VerificationRunner:
    """Single pass/fail gate over a freshly installed prefix."""

    def __init__(self, env: EvaluatorENV, runner: CommandRunner = run_capture) -> None:
        self.env = env
        self.runner = runner

    def materialise(
        self, release: Release, branch: PlatformBranch, prefix: Path, workdir: Path
    ) -> VerificationCase:
        """Write the release's consumer program and build its compile command."""
        workdir.mkdir(parents=True, exist_ok=True)
        source = workdir / "test.cpp"
        source.write_text(release.api.source)
        binary = workdir / "test"

        compile_command = [
            self.env.cxx,
            str(source),
            "-std=c++17",
            f"-I{prefix / 'include'}",
            f"-L{prefix / 'lib'}",
            *(f"-l{lib}" for lib in release.libraries),
            *branch.link_flags(),
            "-o",
            str(binary),
        ]
        return VerificationCase(source, binary, compile_command)

    async def _step(self, step: str, cmd: list[str], cwd: Path) -> StepRecord:
        start = time.perf_counter()
        try:
            out, err, code = await self.runner(cmd, cwd=cwd, env=self.env.command_env())
        except SystemError as e:
            log.error("verify_step_unstartable", step=step, command=cmd[0], error=e.message)
            raise VerificationFailed(
                f"Verification '{step}' could not start {cmd[0]}",
                stage=step,
                output=str(e),
                context={"command": cmd[0]},
            ) from e
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info("verify_step_complete", step=step, returncode=code, duration_ms=duration_ms)
        return StepRecord(step, cmd, code, duration_ms, out, err)

    async def check_library(
        self, release: Release, branch: PlatformBranch, prefix: Path, workdir: Path
    ) -> list[StepRecord]:
        """Compile and run the consumer program against the installed library.

        Raises:
            VerificationFailed: If compiling or running cannot start or exits
                non-zero.
        """
        case = self.materialise(release, branch, prefix, workdir)
        log.info("verify_library_start", version=release.version, api=release.api.key)

        compiled = await self._step("compile", case.compile_command, workdir)
        if compiled.returncode != 0:
            raise VerificationFailed(
                stage="compile",
                returncode=compiled.returncode,
                output=compiled.stderr or compiled.stdout,
            )

        ran = await self._step("run", [str(case.binary_path)], workdir)
        if ran.returncode != 0:
            raise VerificationFailed(
                stage="run", returncode=ran.returncode, output=ran.stderr or ran.stdout
            )

        return [compiled, ran]

    async def check_cli(self, cli: CliCheck, prefix: Path, workdir: Path) -> dict[str, str]:
        """Invoke the installed CLI and assert on its captured stdout.

        Returns:
            Captured stdout keyed by the space-joined arguments.

        Raises:
            VerificationFailed: If the binary cannot start, exits non-zero or
                its output lacks the expected substring.
        """
        binary = prefix / "bin" / cli.binary
        captured: dict[str, str] = {}

        for inv in cli.invocations:
            record = await self._step("cli", [str(binary), *inv.args], workdir)
            if record.returncode != 0:
                raise VerificationFailed(
                    stage="cli",
                    returncode=record.returncode,
                    output=record.stderr or record.stdout,
                    context={"args": " ".join(inv.args)},
                )
            if inv.expect not in record.stdout:
                log.error("cli_output_mismatch", args=list(inv.args), expected=inv.expect)
                raise VerificationFailed(
                    stage="cli",
                    missing=inv.expect,
                    output=record.stdout,
                    context={"args": " ".join(inv.args)},
                )
            captured[" ".join(inv.args)] = record.stdout

        return captured
