"""
Shared fixtures: a recording command runner, in-memory archives and a
mock HTTP transport, so no test touches the network or a real toolchain.
"""

import hashlib
import io
import tarfile
from dataclasses import replace
from pathlib import Path
from typing import Callable

import httpx
import pytest

from formulary.core.config import EvaluatorENV
from formulary.core.evaluator import Evaluator
from formulary.core.models import Formula
from formulary.formulas.ccap import CCAP

Predicate = Callable[[list[str]], bool]


def is_configure(cmd: list[str]) -> bool:
    return "-S" in cmd


def is_build(cmd: list[str]) -> bool:
    return "--build" in cmd


def is_install(cmd: list[str]) -> bool:
    return "--install" in cmd


def is_compile(cmd: list[str]) -> bool:
    return any(a.endswith("test.cpp") for a in cmd)


def is_run(cmd: list[str]) -> bool:
    return len(cmd) == 1 and cmd[0].endswith("test")


def is_cli(flag: str) -> Predicate:
    return lambda cmd: cmd[0].endswith("/bin/ccap") and flag in cmd


def make_archive(top: str = "CameraCapture-1.0.0", files: dict[str, str] | None = None) -> bytes:
    """Build a gzipped tarball with a single top-level directory."""
    files = files or {"CMakeLists.txt": "project(ccap)\n", "include/ccap.h": "#pragma once\n"}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def flip_bit(data: bytes) -> bytes:
    corrupted = bytearray(data)
    corrupted[len(data) // 2] ^= 0x01
    return bytes(corrupted)


class RecordingRunner:
    """Command runner that records calls and answers from a rule list.

    Each rule is (predicate, returncode, stdout); the first matching rule
    wins, anything else succeeds with empty output. An exception in place
    of stdout is raised instead, as run_capture does for a missing binary.
    """

    def __init__(self, rules: list[tuple[Predicate, int, "str | Exception"]] | None = None):
        self.rules = rules or []
        self.calls: list[list[str]] = []
        self.envs: list[dict] = []

    async def __call__(self, cmd, *, cwd=None, env=None):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        self.envs.append(dict(env or {}))
        for predicate, code, out in self.rules:
            if predicate(cmd):
                if isinstance(out, Exception):
                    raise out
                return out, "" if code == 0 else f"{cmd[0]} exited {code}", code
        return "", "", 0

    def matching(self, predicate: Predicate) -> list[list[str]]:
        return [c for c in self.calls if predicate(c)]


class ArchiveServer:
    """httpx transport serving fixed bytes and counting requests."""

    def __init__(self, content: bytes, status: int = 200):
        self.content = content
        self.status = status
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        return httpx.Response(self.status, content=self.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


CLI_OUTPUT = [
    (is_cli("--version"), 0, "ccap version 1.5.0"),
    (is_cli("--help"), 0, "Usage: ccap [options]\n  --list  list devices"),
]


@pytest.fixture
def env(tmp_path: Path) -> EvaluatorENV:
    return EvaluatorENV(
        cache_dir=tmp_path / "cache",
        scratch_root=tmp_path / "scratch",
        cxx="clang++",
        cc="clang",
    )


@pytest.fixture
def archive() -> bytes:
    return make_archive()


@pytest.fixture
def server(archive: bytes) -> ArchiveServer:
    return ArchiveServer(archive)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner(list(CLI_OUTPUT))


@pytest.fixture
def which() -> Callable[[str], str]:
    return lambda name: f"/usr/bin/{name}"


@pytest.fixture
def formula(archive: bytes) -> Formula:
    """The ccap catalogue with every release pinned to the test archive."""
    return replace(
        CCAP, releases=tuple(replace(r, sha256=digest(archive)) for r in CCAP.releases)
    )


@pytest.fixture
def evaluator(env, runner, server, which) -> Evaluator:
    return Evaluator(env, runner=runner, transport=server.transport, which=which)
