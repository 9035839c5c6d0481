"""
Tests for configuration, the archive cache and command execution.
"""

import sys
from pathlib import Path

import pytest

from conftest import digest, flip_bit
from formulary.core.cache import ArchiveCache
from formulary.core.config import EvaluatorENV, discover_env
from formulary.core.errors import SystemError
from formulary.core.shell import run_capture


class TestDiscoverEnv:
    """Test environment discovery."""

    def test_defaults(self):
        env = discover_env({})
        assert env.cxx == "c++"
        assert env.cc == "cc"
        assert env.cmake == "cmake"
        assert env.cache_dir.name == "cache"

    def test_overrides(self, tmp_path):
        env = discover_env(
            {
                "CXX": "g++-14",
                "CC": "gcc-14",
                "FORMULARY_CACHE": str(tmp_path / "c"),
                "FORMULARY_SCRATCH": str(tmp_path / "s"),
            }
        )
        assert env.cxx == "g++-14"
        assert env.cache_dir == tmp_path / "c"
        assert env.scratch_root == tmp_path / "s"

    def test_command_env_pins_compiler(self, tmp_path):
        env = EvaluatorENV(tmp_path, tmp_path, cxx="clang++", extra_env={"CXX": "ignored", "X": "1"})
        cmd_env = env.command_env()
        assert cmd_env["CXX"] == "clang++"
        assert cmd_env["X"] == "1"


class TestArchiveCache:
    """Test the content-addressed cache."""

    def test_miss_then_hit(self, tmp_path, archive):
        cache = ArchiveCache(tmp_path)
        assert cache.get("ccap", "v1.0.0", digest(archive)) is None

        cache.put("ccap", "v1.0.0", digest(archive), archive)
        assert cache.get("ccap", "v1.0.0", digest(archive).upper()) == archive

    def test_corrupted_entry_dropped(self, tmp_path, archive):
        cache = ArchiveCache(tmp_path)
        path = cache.put("ccap", "v1.0.0", digest(archive), archive)
        path.write_bytes(flip_bit(archive))

        assert cache.get("ccap", "v1.0.0", digest(archive)) is None
        assert not path.exists()

    def test_clear(self, tmp_path, archive):
        cache = ArchiveCache(tmp_path)
        cache.put("ccap", "v1.0.0", digest(archive), archive)
        cache.put("ccap", "v1.0.1", digest(archive), archive)
        assert cache.clear() == 2
        assert list(cache.cache_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_get_or_fetch(self, tmp_path, archive):
        cache = ArchiveCache(tmp_path)
        calls = []

        async def loader():
            calls.append(1)
            return archive

        data, cached = await cache.get_or_fetch("ccap", "v1.0.0", digest(archive), loader)
        assert (data, cached) == (archive, False)

        cache.put("ccap", "v1.0.0", digest(archive), data)
        data, cached = await cache.get_or_fetch("ccap", "v1.0.0", digest(archive), loader)
        assert cached is True
        assert len(calls) == 1


class TestRunCapture:
    """Test real subprocess execution."""

    @pytest.mark.asyncio
    async def test_captures_output_and_code(self, tmp_path):
        out, err, code = await run_capture(
            [sys.executable, "-c", "import sys; print('hi'); sys.exit(3)"], cwd=tmp_path
        )
        assert (out, code) == ("hi", 3)

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with pytest.raises(SystemError):
            await run_capture([str(Path("/nonexistent/formulary-tool"))])

    @pytest.mark.asyncio
    async def test_caller_timeout(self):
        with pytest.raises(SystemError) as exc:
            await run_capture([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
        assert exc.value.context["timeout"] == 0.2
