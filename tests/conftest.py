"""Pytest configuration and fixtures for modflags tests.

Every test runs with a clean modflags environment: MODFLAGS_* / OUT_DIR / CC
are removed, the session directory points into tmp_path, and the output
module's global streams are reset. Nothing touches ~/.modflags.

FakeToolchain records everything ModuleBuilder applies to it, so the
aggregation logic is tested without a C compiler.
"""

from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest

from modflags import output
from modflags.builder import ModuleBuilder
from modflags.channel import MemoryChannel
from modflags.errors import CompilationError
from modflags.toolchain import Toolchain, ToolchainFamily

_ENV_VARS = (
    "MODFLAGS_OUT_DIR",
    "OUT_DIR",
    "MODFLAGS_SESSION_DIR",
    "MODFLAGS_SESSION",
    "MODFLAGS_CC",
    "CC",
    "MODFLAGS_DIRECTIVE_PREFIX",
    "MODFLAGS_COMPILE_TIMEOUT",
    "MODFLAGS_VERBOSE",
)


class FakeToolchain(Toolchain):
    """Toolchain that records calls instead of compiling."""

    def __init__(
        self,
        family: ToolchainFamily = ToolchainFamily.POSIX,
        supported_flags: Iterable[str] = (),
        out_dir: Optional[Path] = None,
        fail_compile: bool = False,
    ):
        self.family = family
        self.supported_flags = set(supported_flags)
        self.out_dir = out_dir or Path(".")
        self.fail_compile = fail_compile
        self.flags: list[str] = []
        self.defines: list[tuple[str, str]] = []
        self.includes: list[Path] = []
        self.sources: list[Path] = []
        self.shared: Optional[bool] = None
        self.supports_calls: list[str] = []
        self.compiled: list[str] = []
        self.probe_toolchains: list["FakeToolchain"] = []

    def classify(self) -> ToolchainFamily:
        return self.family

    def supports(self, flag: str) -> bool:
        self.supports_calls.append(flag)
        return flag in self.supported_flags

    def add_flag(self, flag: str) -> None:
        self.flags.append(flag)

    def add_define(self, key: str, value: str) -> None:
        self.defines.append((key, value))

    def add_include(self, path) -> None:
        self.includes.append(Path(path))

    def set_shared(self, shared: bool) -> None:
        self.shared = shared

    def add_source(self, path) -> None:
        self.sources.append(Path(path))

    def compile(self, output_name: str) -> Path:
        if self.fail_compile:
            raise CompilationError(
                f"Compile failed for {output_name}",
                command=["fakecc", "-c", "broken.c"],
                returncode=1,
                stderr="broken.c:1:1: error: expected declaration",
            )
        self.compiled.append(output_name)
        return self.out_dir / f"lib{output_name}.a"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Strip modflags configuration from the environment and reset output state."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MODFLAGS_SESSION_DIR", str(tmp_path / "session"))

    output.set_output_stream(None)
    output.set_directive_stream(None)
    output.set_verbose(None)
    yield
    output.set_output_stream(None)
    output.set_directive_stream(None)
    output.set_verbose(None)


@pytest.fixture
def memory_channel() -> MemoryChannel:
    return MemoryChannel()


@pytest.fixture
def make_builder(tmp_path, memory_channel) -> Callable[..., ModuleBuilder]:
    """Factory for ModuleBuilders wired to a FakeToolchain.

    Args (of the returned callable):
        name: Module name
        channel: Channel to use (default: the shared memory_channel fixture)
        family: Toolchain family reported by the fake
        supported_flags: Flags the fake's supports() accepts
        probe_compiles: Whether probe toolchains compile successfully
        fail_compile: Whether the main compilation fails
    """

    def _make(
        name: str,
        channel=None,
        family: ToolchainFamily = ToolchainFamily.POSIX,
        supported_flags: Iterable[str] = ("-Wgnu",),
        probe_compiles: bool = True,
        fail_compile: bool = False,
    ) -> ModuleBuilder:
        out_dir = tmp_path / "out" / name
        toolchain = FakeToolchain(family, supported_flags, out_dir=out_dir, fail_compile=fail_compile)

        def factory(scratch_dir: Path) -> Toolchain:
            probe = FakeToolchain(family, supported_flags, out_dir=scratch_dir, fail_compile=not probe_compiles)
            toolchain.probe_toolchains.append(probe)
            return probe

        return ModuleBuilder(
            name,
            out_dir=out_dir,
            channel=channel if channel is not None else memory_channel,
            toolchain=toolchain,
            toolchain_factory=factory,
        )

    return _make


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain(supported_flags=("-Wgnu",))
