"""
Tests for the consumer program check and the CLI check.
"""

import pytest

from conftest import CLI_OUTPUT, RecordingRunner, is_cli, is_compile, is_run
from formulary.core.config import EvaluatorENV
from formulary.core.errors import VerificationFailed
from formulary.formulas.ccap import CCAP, CCAP_CLI, LINUX, MACOS
from formulary.pipeline.verify import VerificationRunner


class TestMaterialise:
    """Test consumer program generation."""

    def test_snippet_follows_release_api(self, env, tmp_path):
        verifier = VerificationRunner(env)
        early = verifier.materialise(CCAP.release("v1.0.0"), MACOS, tmp_path / "p", tmp_path / "a")
        mid = verifier.materialise(CCAP.release("v1.2.0"), MACOS, tmp_path / "p", tmp_path / "b")
        late = verifier.materialise(CCAP.release("v1.5.0"), MACOS, tmp_path / "p", tmp_path / "c")

        assert "setErrorCallback" not in early.source_path.read_text()
        assert "const std::string& description" in mid.source_path.read_text()
        assert "std::string_view description" in late.source_path.read_text()

    def test_macos_compile_command(self, env, tmp_path):
        prefix = tmp_path / "prefix"
        case = VerificationRunner(env).materialise(CCAP.release("v1.0.0"), MACOS, prefix, tmp_path)

        cmd = case.compile_command
        assert cmd[0] == "clang++"
        assert "-std=c++17" in cmd
        assert f"-I{prefix / 'include'}" in cmd
        assert f"-L{prefix / 'lib'}" in cmd
        assert "-lccap" in cmd
        for fw in ("Foundation", "AVFoundation", "CoreVideo", "CoreMedia", "Accelerate"):
            assert fw in cmd
        assert "-lpthread" not in cmd
        assert cmd[-2:] == ["-o", str(tmp_path / "test")]

    def test_linux_compile_command(self, env, tmp_path):
        case = VerificationRunner(env).materialise(CCAP.release("v1.5.0"), LINUX, tmp_path, tmp_path)
        assert "-lpthread" in case.compile_command
        assert "-framework" not in case.compile_command


class TestCheckLibrary:
    """Test step A."""

    @pytest.mark.asyncio
    async def test_compiles_then_runs(self, env, tmp_path):
        runner = RecordingRunner()
        records = await VerificationRunner(env, runner).check_library(
            CCAP.release("v1.0.0"), MACOS, tmp_path / "prefix", tmp_path / "test"
        )
        assert [r.step for r in records] == ["compile", "run"]
        assert is_compile(runner.calls[0])
        assert is_run(runner.calls[1])

    @pytest.mark.asyncio
    async def test_compile_failure(self, env, tmp_path):
        runner = RecordingRunner([(is_compile, 1, "")])
        with pytest.raises(VerificationFailed) as exc:
            await VerificationRunner(env, runner).check_library(
                CCAP.release("v1.0.0"), MACOS, tmp_path, tmp_path / "test"
            )
        assert exc.value.context["stage"] == "compile"
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_run_failure(self, env, tmp_path):
        runner = RecordingRunner([(is_run, 134, "")])
        with pytest.raises(VerificationFailed) as exc:
            await VerificationRunner(env, runner).check_library(
                CCAP.release("v1.0.0"), MACOS, tmp_path, tmp_path / "test"
            )
        assert exc.value.context["stage"] == "run"
        assert exc.value.context["returncode"] == 134

    @pytest.mark.asyncio
    async def test_missing_compiler(self, tmp_path):
        """A compiler that cannot be started fails verification, not the toolchain."""
        env = EvaluatorENV(
            cache_dir=tmp_path / "cache",
            scratch_root=tmp_path / "scratch",
            cxx=str(tmp_path / "missing" / "c++"),
        )
        with pytest.raises(VerificationFailed) as exc:
            await VerificationRunner(env).check_library(
                CCAP.release("v1.5.0"), LINUX, tmp_path / "prefix", tmp_path / "test"
            )
        assert exc.value.context["stage"] == "compile"
        assert exc.value.context["command"] == env.cxx
        assert "Could not start" in exc.value.context["output"]


class TestCheckCli:
    """Test step B."""

    @pytest.mark.asyncio
    async def test_markers_found(self, env, tmp_path):
        runner = RecordingRunner(list(CLI_OUTPUT))
        captured = await VerificationRunner(env, runner).check_cli(CCAP_CLI, tmp_path, tmp_path)

        assert "ccap version" in captured["--version"]
        assert "Usage" in captured["--help"]
        assert runner.calls == [
            [str(tmp_path / "bin" / "ccap"), "--version"],
            [str(tmp_path / "bin" / "ccap"), "--help"],
        ]

    @pytest.mark.asyncio
    async def test_missing_usage_marker(self, env, tmp_path):
        runner = RecordingRunner(
            [(is_cli("--version"), 0, "ccap version 1.5.0"), (is_cli("--help"), 0, "no help here")]
        )
        with pytest.raises(VerificationFailed) as exc:
            await VerificationRunner(env, runner).check_cli(CCAP_CLI, tmp_path, tmp_path)
        assert exc.value.context["missing"] == "Usage"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, env, tmp_path):
        runner = RecordingRunner([(is_cli("--version"), 1, "ccap version 1.5.0")])
        with pytest.raises(VerificationFailed) as exc:
            await VerificationRunner(env, runner).check_cli(CCAP_CLI, tmp_path, tmp_path)
        assert exc.value.context["stage"] == "cli"
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_cli_binary_not_installed(self, env, tmp_path):
        """An install without bin/ccap leaves the release uncertified."""
        prefix = tmp_path / "prefix"
        (prefix / "bin").mkdir(parents=True)

        with pytest.raises(VerificationFailed) as exc:
            await VerificationRunner(env).check_cli(CCAP_CLI, prefix, tmp_path)
        assert exc.value.context["stage"] == "cli"
        assert exc.value.context["command"] == str(prefix / "bin" / "ccap")
