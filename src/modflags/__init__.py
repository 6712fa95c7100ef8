"""modflags - cross-module build configuration for native C modules.

Each module of a multi-module project is compiled by its own build step, in
its own process. modflags lets a build step pick up the public compiler
flags, defines, include dirs and link targets of the modules it depends on,
and publishes its own for the modules that depend on it.

Example:
    >>> from modflags import ModuleBuilder
    >>>
    >>> builder = ModuleBuilder("aws_crt_checksums")
    >>> builder.add_dependency("aws_crt_common")
    >>> builder.add_private_flag("-O3").add_sources(["source/crc.c", "source/crc_sw.c"])
    >>> builder.finalize_and_compile()
"""

from modflags.builder import BuildResult, ModuleBuilder, ProbeResult
from modflags.channel import FileChannel, MemoryChannel, PropagationChannel, get_default_channel
from modflags.errors import (
    ChannelError,
    CompilationError,
    ConfigSealedError,
    ModflagsError,
    ProbeFailure,
    StagingError,
    UnresolvedDependencyError,
)
from modflags.module_config import ModuleBuildConfig, PublicSettings
from modflags.paths import propagation_key
from modflags.toolchain import CompilerToolchain, Toolchain, ToolchainFamily

__version__ = "0.1.0"

__all__ = [
    "BuildResult",
    "ChannelError",
    "CompilationError",
    "CompilerToolchain",
    "ConfigSealedError",
    "FileChannel",
    "MemoryChannel",
    "ModflagsError",
    "ModuleBuildConfig",
    "ModuleBuilder",
    "ProbeFailure",
    "ProbeResult",
    "PropagationChannel",
    "PublicSettings",
    "StagingError",
    "Toolchain",
    "ToolchainFamily",
    "UnresolvedDependencyError",
    "get_default_channel",
    "propagation_key",
]
