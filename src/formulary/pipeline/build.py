"""Build orchestration: configure, build and install with CMake."""

from __future__ import annotations

import time
from pathlib import Path

from formulary.core.config import EvaluatorENV
from formulary.core.errors import BuildStepFailed
from formulary.core.logging import get_logger
from formulary.core.models import BuildConfig, PlatformBranch, StepRecord
from formulary.core.shell import CommandRunner, run_capture

log = get_logger(__name__)

STEPS = ("configure", "build", "install")

_OUTPUT_TAIL = 2000


def cmake_flag(name: str, value: bool) -> str:
    return f"-D{name}={'ON' if value else 'OFF'}"


class BuildOrchestrator:
    """Runs the fixed configure/build/install pipeline.

    Steps run strictly in order and none is retried. The first non-zero
    exit aborts the remaining steps.
    """

    def __init__(self, env: EvaluatorENV, runner: CommandRunner = run_capture) -> None:
        self.env = env
        self.runner = runner

    def commands(
        self,
        source: Path,
        build_dir: Path,
        config: BuildConfig,
        branch: PlatformBranch,
    ) -> list[tuple[str, list[str]]]:
        """The command line for each step, in execution order.

        Options left unset in the config are not passed, so CMake's own
        default applies.
        """
        if config.prefix is None:
            raise ValueError("BuildConfig has no install prefix")

        configure = [
            self.env.cmake,
            "-S", str(source),
            "-B", str(build_dir),
            f"-DCMAKE_BUILD_TYPE={config.build_type}",
            f"-DCMAKE_INSTALL_PREFIX={config.prefix}",
            *(cmake_flag(k, v) for k, v in sorted(config.explicit().items())),
            *branch.cmake_args,
        ]

        return [
            ("configure", configure),
            ("build", [self.env.cmake, "--build", str(build_dir)]),
            ("install", [self.env.cmake, "--install", str(build_dir)]),
        ]

    async def run(
        self,
        source: Path,
        build_dir: Path,
        config: BuildConfig,
        branch: PlatformBranch,
    ) -> list[StepRecord]:
        """Run every step, returning their records.

        Args:
            source: Extracted source tree.
            build_dir: Fresh output directory for this evaluation.
            config: Option matrix with the install prefix set.
            branch: The selected platform branch.

        Returns:
            One StepRecord per step.

        Raises:
            BuildStepFailed: If any step exits non-zero.
        """
        if config.unset():
            log.warning(
                "build_options_unset",
                options=config.unset(),
                detail="left to the build tool's default",
            )

        records: list[StepRecord] = []
        env = self.env.command_env()

        for step, cmd in self.commands(source, build_dir, config, branch):
            command = " ".join(cmd)
            start = time.perf_counter()
            log.info("build_step_start", step=step, command=command)

            out, err, code = await self.runner(cmd, cwd=source, env=env)
            duration_ms = int((time.perf_counter() - start) * 1000)
            records.append(StepRecord(step, cmd, code, duration_ms, out, err))

            if code != 0:
                log.error("build_step_failed", step=step, returncode=code, duration_ms=duration_ms)
                raise BuildStepFailed(
                    step=step,
                    returncode=code,
                    command=command,
                    output=(err or out)[-_OUTPUT_TAIL:],
                )

            log.info("build_step_complete", step=step, duration_ms=duration_ms)

        return records
