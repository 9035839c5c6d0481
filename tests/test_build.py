"""
Tests for the configure/build/install pipeline.
"""

from pathlib import Path

import pytest

from conftest import RecordingRunner, is_build, is_configure, is_install
from formulary.core.errors import BuildStepFailed
from formulary.core.models import BuildConfig, Platform, PlatformBranch
from formulary.formulas.ccap import CCAP, MACOS
from formulary.pipeline.build import BuildOrchestrator

SRC = Path("/work/src")
OUT = Path("/work/build")
PREFIX = Path("/work/prefix")


class TestCommands:
    """Test the command template."""

    def test_configure_template(self, env):
        config = CCAP.release("v1.0.0").build.at_prefix(PREFIX)
        steps = BuildOrchestrator(env).commands(SRC, OUT, config, MACOS)

        assert [name for name, _ in steps] == ["configure", "build", "install"]
        assert steps[0][1] == [
            "cmake", "-S", "/work/src", "-B", "/work/build",
            "-DCMAKE_BUILD_TYPE=Release",
            "-DCMAKE_INSTALL_PREFIX=/work/prefix",
            "-DCCAP_BUILD_EXAMPLES=OFF",
            "-DCCAP_BUILD_TESTS=OFF",
            "-DCCAP_INSTALL=ON",
        ]
        assert steps[1][1] == ["cmake", "--build", "/work/build"]
        assert steps[2][1] == ["cmake", "--install", "/work/build"]

    def test_unset_option_is_not_passed(self, env):
        config = CCAP.release("v1.2.0").build.at_prefix(PREFIX)
        configure = BuildOrchestrator(env).commands(SRC, OUT, config, MACOS)[0][1]

        assert not any("CCAP_INSTALL" in a for a in configure)
        assert "-DCCAP_BUILD_TESTS=OFF" in configure

    def test_cli_option_in_later_release(self, env):
        config = CCAP.release("v1.5.0").build.at_prefix(PREFIX)
        configure = BuildOrchestrator(env).commands(SRC, OUT, config, MACOS)[0][1]
        assert "-DCCAP_BUILD_CLI=ON" in configure

    def test_branch_cmake_args_appended(self, env):
        branch = PlatformBranch(Platform.LINUX, cmake_args=("-DCMAKE_POSITION_INDEPENDENT_CODE=ON",))
        config = BuildConfig(options={"X": True}, prefix=PREFIX)
        configure = BuildOrchestrator(env).commands(SRC, OUT, config, branch)[0][1]
        assert configure[-1] == "-DCMAKE_POSITION_INDEPENDENT_CODE=ON"

    def test_prefix_required(self, env):
        with pytest.raises(ValueError):
            BuildOrchestrator(env).commands(SRC, OUT, BuildConfig(), MACOS)


class TestRun:
    """Test step execution."""

    @pytest.mark.asyncio
    async def test_runs_steps_in_order(self, env):
        runner = RecordingRunner()
        config = CCAP.release("v1.0.0").build.at_prefix(PREFIX)
        records = await BuildOrchestrator(env, runner).run(SRC, OUT, config, MACOS)

        assert [r.step for r in records] == ["configure", "build", "install"]
        assert is_configure(runner.calls[0])
        assert is_build(runner.calls[1])
        assert is_install(runner.calls[2])

    @pytest.mark.asyncio
    async def test_compiler_comes_from_injected_env(self, env):
        runner = RecordingRunner()
        config = CCAP.release("v1.0.0").build.at_prefix(PREFIX)
        await BuildOrchestrator(env, runner).run(SRC, OUT, config, MACOS)

        assert all(e["CXX"] == "clang++" and e["CC"] == "clang" for e in runner.envs)

    @pytest.mark.parametrize(
        "predicate,step",
        [(is_configure, "configure"), (is_build, "build"), (is_install, "install")],
    )
    @pytest.mark.asyncio
    async def test_failure_aborts_pipeline(self, env, predicate, step):
        runner = RecordingRunner([(predicate, 2, "")])
        config = CCAP.release("v1.0.0").build.at_prefix(PREFIX)

        with pytest.raises(BuildStepFailed) as exc:
            await BuildOrchestrator(env, runner).run(SRC, OUT, config, MACOS)

        assert exc.value.step == step
        assert exc.value.returncode == 2
        assert predicate(runner.calls[-1])
        assert len(runner.calls) == ["configure", "build", "install"].index(step) + 1
