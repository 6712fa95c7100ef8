"""
Toolchain driver - compiler invocation for one module build step.

This module defines:
- ToolchainFamily: MSVC-like vs POSIX-like (GCC/Clang) compiler drivers
- Toolchain: the driver contract ModuleBuilder programs against
- CompilerToolchain: subprocess-backed implementation

Compilation Process:
    1. Accumulate flags, defines, include dirs and sources
    2. Compile every source to an object file under <out_dir>/obj/<name>/
    3. Archive the objects into a static library, or link a shared library
    4. Return the artifact path (placed directly in <out_dir>)

Compiler selection (first match wins):
    - explicit `compiler` argument
    - MODFLAGS_CC environment variable
    - CC environment variable
    - cl.exe on Windows, cc elsewhere
"""

import hashlib
import logging
import os
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .errors import CompilationError
from .paths import PROBE_DIR_PREFIX, get_compile_timeout, get_out_dir
from .subprocess_utils import format_command, run_captured

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_MSVC_DRIVERS = ("cl", "clang-cl")
_EMPTY_PROGRAM = "int main(void) { return 0; }\n"


class ToolchainFamily(Enum):
    """Compiler driver family, decides flag syntax and baseline flags."""

    MSVC = "msvc"
    POSIX = "posix"

    def __str__(self) -> str:
        return self.value


def default_compiler() -> str:
    """Return the compiler executable for this build step."""
    explicit = os.environ.get("MODFLAGS_CC") or os.environ.get("CC")
    if explicit:
        return explicit
    return "cl.exe" if sys.platform == "win32" else "cc"


def classify_compiler(compiler: str) -> ToolchainFamily:
    """Classify a compiler executable by name.

    Examples:
        >>> classify_compiler("C:/VS/bin/cl.exe")
        <ToolchainFamily.MSVC: 'msvc'>
        >>> classify_compiler("/usr/bin/gcc-13")
        <ToolchainFamily.POSIX: 'posix'>
    """
    name = compiler.replace("\\", "/").rsplit("/", 1)[-1].lower()
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    return ToolchainFamily.MSVC if name in _MSVC_DRIVERS else ToolchainFamily.POSIX


class Toolchain(ABC):
    """Compiler driver contract.

    A Toolchain accumulates flags, defines, include dirs and sources, then
    compiles them into one library artifact. ModuleBuilder only talks to this
    interface, which keeps the aggregation logic testable without a compiler.
    """

    @abstractmethod
    def classify(self) -> ToolchainFamily:
        """Return the compiler family."""

    @abstractmethod
    def supports(self, flag: str) -> bool:
        """Return True if the compiler accepts flag."""

    @abstractmethod
    def add_flag(self, flag: str) -> None: ...

    @abstractmethod
    def add_define(self, key: str, value: str) -> None: ...

    @abstractmethod
    def add_include(self, path: PathLike) -> None: ...

    @abstractmethod
    def set_shared(self, shared: bool) -> None: ...

    @abstractmethod
    def add_source(self, path: PathLike) -> None: ...

    @abstractmethod
    def compile(self, output_name: str) -> Path:
        """Compile all sources into a library named output_name.

        Returns:
            Path to the produced artifact

        Raises:
            CompilationError: If the compiler, archiver or linker fails
        """


class CompilerToolchain(Toolchain):
    """Toolchain that shells out to a real C compiler.

    Attributes:
        compiler: Compiler executable (name on PATH or absolute path)
        out_dir: Directory receiving object files and the artifact
        timeout: Per-command timeout in seconds
    """

    def __init__(self, compiler: Optional[str] = None, out_dir: Optional[PathLike] = None, timeout: Optional[float] = None):
        self.compiler = compiler or default_compiler()
        self._out_dir = Path(out_dir) if out_dir is not None else None
        self.timeout = timeout if timeout is not None else get_compile_timeout()
        self.family = classify_compiler(self.compiler)
        self.flags: list[str] = []
        self.defines: list[tuple[str, str]] = []
        self.includes: list[Path] = []
        self.sources: list[Path] = []
        self.shared = False
        self._supported_cache: dict[str, bool] = {}

    @property
    def out_dir(self) -> Path:
        if self._out_dir is None:
            self._out_dir = get_out_dir()
        return self._out_dir

    def classify(self) -> ToolchainFamily:
        return self.family

    @property
    def is_msvc(self) -> bool:
        return self.family == ToolchainFamily.MSVC

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def add_flag(self, flag: str) -> None:
        self.flags.append(flag)

    def add_define(self, key: str, value: str) -> None:
        self.defines.append((key, value))

    def add_include(self, path: PathLike) -> None:
        self.includes.append(Path(path))

    def set_shared(self, shared: bool) -> None:
        self.shared = shared

    def add_source(self, path: PathLike) -> None:
        self.sources.append(Path(path))

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def define_args(self) -> list[str]:
        prefix = "/D" if self.is_msvc else "-D"
        return [f"{prefix}{key}={value}" for key, value in self.defines]

    def include_args(self) -> list[str]:
        prefix = "/I" if self.is_msvc else "-I"
        # Forward slashes keep GCC happy on Windows
        return [f"{prefix}{str(inc).replace(chr(92), '/')}" for inc in self.includes]

    def compile_command(self, source: Path, obj: Path) -> list[str]:
        """Build the command compiling one source file to one object file."""
        if self.is_msvc:
            cmd = [self.compiler, "/nologo"]
            cmd.extend(self.flags)
            cmd.extend(self.define_args())
            cmd.extend(self.include_args())
            cmd.extend(["/c", str(source), f"/Fo{obj}"])
            return cmd

        cmd = [self.compiler]
        cmd.extend(self.flags)
        cmd.extend(self.define_args())
        cmd.extend(self.include_args())
        cmd.extend(["-c", str(source), "-o", str(obj)])
        return cmd

    def artifact_path(self, output_name: str) -> Path:
        if self.is_msvc:
            return self.out_dir / (f"{output_name}.dll" if self.shared else f"{output_name}.lib")
        if not self.shared:
            return self.out_dir / f"lib{output_name}.a"
        ext = ".dylib" if sys.platform == "darwin" else ".so"
        return self.out_dir / f"lib{output_name}{ext}"

    def link_command(self, artifact: Path, objects: list[Path]) -> list[str]:
        """Build the archive (static) or link (shared) command."""
        objs = [str(obj) for obj in objects]
        if self.is_msvc:
            if self.shared:
                return [os.environ.get("LINK_EXE", "link.exe"), "/nologo", "/DLL", f"/OUT:{artifact}"] + objs
            return [os.environ.get("LIB_EXE", "lib.exe"), "/nologo", f"/OUT:{artifact}"] + objs
        if self.shared:
            return [self.compiler, "-shared", "-o", str(artifact)] + objs
        return [os.environ.get("AR", "ar"), "crs", str(artifact)] + objs

    @staticmethod
    def object_name(source: Path) -> str:
        """Object file name for a source, unique per source path."""
        digest = hashlib.sha256(str(source.absolute()).encode("utf-8")).hexdigest()[:8]
        return f"{source.stem}-{digest}.obj" if sys.platform == "win32" else f"{source.stem}-{digest}.o"

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, cmd: list[str], label: str) -> subprocess.CompletedProcess:
        """Run one command with standardized logging and error handling.

        Raises:
            CompilationError: If the command fails, times out, or is not found
        """
        logger.debug(f"[{label}] Command: {format_command(cmd)}")
        try:
            result = run_captured(cmd, timeout=self.timeout)
        except FileNotFoundError as e:
            raise CompilationError(f"{label}: executable not found: {cmd[0]}. Set MODFLAGS_CC or CC.", command=cmd) from e
        except subprocess.TimeoutExpired as e:
            raise CompilationError(f"{label}: timed out after {self.timeout:.0f}s", command=cmd) from e

        if result.stdout and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[{label}] stdout:\n{result.stdout}")
        if result.stderr and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[{label}] stderr:\n{result.stderr}")

        if result.returncode != 0:
            raise CompilationError(
                f"{label} failed with exit code {result.returncode}",
                command=cmd,
                returncode=result.returncode,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )
        return result

    def supports(self, flag: str) -> bool:
        """Check whether the compiler accepts flag by compiling an empty program with it.

        Warnings are promoted to errors so compilers that merely warn about
        unknown options (Clang) report the flag as unsupported.
        """
        if flag in self._supported_cache:
            return self._supported_cache[flag]

        scratch_root = self._out_dir if self._out_dir is not None and self._out_dir.is_dir() else None
        supported = False
        try:
            with tempfile.TemporaryDirectory(prefix=PROBE_DIR_PREFIX, dir=scratch_root) as scratch:
                source = Path(scratch) / "flag_check.c"
                source.write_text(_EMPTY_PROGRAM, encoding="utf-8")
                obj = Path(scratch) / "flag_check.o"
                if self.is_msvc:
                    cmd = [self.compiler, "/nologo", flag, "/WX", "/c", str(source), f"/Fo{obj}"]
                else:
                    cmd = [self.compiler, flag, "-Werror", "-c", str(source), "-o", str(obj)]
                self._run(cmd, "FlagCheck")
                supported = True
        except CompilationError as e:
            logger.debug(f"Flag {flag} not supported by {self.compiler}: {e}")
        except OSError as e:
            logger.debug(f"Flag check for {flag} could not run: {e}")

        self._supported_cache[flag] = supported
        return supported

    def compile(self, output_name: str) -> Path:
        """Compile all sources and archive/link them into one artifact.

        Raises:
            CompilationError: If there is nothing to compile or any step fails
        """
        if not self.sources:
            raise CompilationError(f"No source files added for {output_name}")

        obj_dir = self.out_dir / "obj" / output_name
        try:
            obj_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CompilationError(f"Cannot create object directory {obj_dir}: {e}") from e

        objects = []
        for source in self.sources:
            obj = obj_dir / self.object_name(source)
            logger.info(f"Compiling {source.name}")
            self._run(self.compile_command(source, obj), "Compile")
            objects.append(obj)

        artifact = self.artifact_path(output_name)
        label = "Link" if self.shared else "Archive"
        # ar appends to an existing archive
        if not self.shared and artifact.exists():
            artifact.unlink()
        self._run(self.link_command(artifact, objects), label)

        if not artifact.exists():
            raise CompilationError(f"{label} succeeded but artifact not found: {artifact}")

        logger.info(f"Built {artifact.name}: {artifact.stat().st_size} bytes from {len(objects)} object(s)")
        return artifact
