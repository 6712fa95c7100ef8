"""Module Builder - one module's build step, from configuration to publication.

This module defines:
- ModuleBuilder: accumulates a module's configuration, pulls in the published
  configurations of its dependencies, compiles, and publishes its own
- ProbeResult: outcome of a capability probe
- BuildResult: what a finished build step produced

Build step phases (finalize_and_compile):
    1. Classify the toolchain and add the family's baseline private flags,
       probing optional GNU-extension warnings
    2. Merge own flags/defines/includes and the public settings of each
       dependency onto the toolchain
    3. Compile the library artifact
    4. Publish the sealed configuration, replacing the one an earlier run of
       this build step left in the session, then emit linker directives

Example:
    >>> builder = ModuleBuilder("checksums")
    >>> builder.add_dependency("common")
    >>> builder.add_private_flag("-O3").add_source("source/crc32.c")
    >>> result = builder.finalize_and_compile()
"""

import functools
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .channel import PropagationChannel, get_default_channel
from .errors import (
    ChannelError,
    CompilationError,
    ConfigSealedError,
    ModflagsError,
    ProbeFailure,
    StagingError,
    UnresolvedDependencyError,
)
from .module_config import ModuleBuildConfig
from .output import TimedLogger, emit_directive, log, log_detail, log_error, log_phase, log_warning
from .paths import INCLUDE_SUBDIR, PROBE_DIR_PREFIX, get_out_dir, propagation_key
from .toolchain import CompilerToolchain, Toolchain, ToolchainFamily
from .warning_profiles import (
    GNU_WARNING_FLAG,
    GNU_WARNING_FLAGS,
    HTONL_PROBE_FLAGS,
    HTONL_PROBE_SNIPPET,
    STATEMENT_EXPRESSION_SUPPRESSION,
    get_profile,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
ToolchainFactory = Callable[[Path], Toolchain]

TOTAL_PHASES = 4


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a capability probe. Truthy when the snippet compiled."""

    supported: bool
    description: str
    diagnostics: str = ""

    def __bool__(self) -> bool:
        return self.supported


@dataclass(frozen=True)
class BuildResult:
    """What a finished build step produced.

    Attributes:
        artifact: Path to the compiled library
        config: The sealed, published configuration
        directives: Orchestrator directive lines emitted, in order
        key: Propagation key the configuration was published under
    """

    artifact: Path
    config: ModuleBuildConfig
    directives: tuple[str, ...]
    key: str


def _default_toolchain(compiler: Optional[str], out_dir: Path) -> Toolchain:
    return CompilerToolchain(compiler=compiler, out_dir=out_dir)


class ModuleBuilder:
    """Drives the build step of one module.

    Accumulator methods delegate to the underlying ModuleBuildConfig and
    return the builder, so calls chain. After finalize_and_compile() the
    configuration is sealed and every further mutation raises
    ConfigSealedError.

    Args:
        module_name: Unique module identifier; the propagation key derives from it
        out_dir: Output directory of this build step (default: MODFLAGS_OUT_DIR/OUT_DIR)
        channel: Propagation channel (default: FileChannel on the session directory)
        toolchain: Toolchain used for the real compilation
        toolchain_factory: Creates ephemeral toolchains for capability probes,
            given a scratch directory. Defaults to a CompilerToolchain using the
            same compiler as `toolchain`.
    """

    def __init__(
        self,
        module_name: str,
        out_dir: Optional[PathLike] = None,
        channel: Optional[PropagationChannel] = None,
        toolchain: Optional[Toolchain] = None,
        toolchain_factory: Optional[ToolchainFactory] = None,
    ):
        self.out_dir = Path(out_dir) if out_dir is not None else get_out_dir()
        self.config = ModuleBuildConfig(module_name, link_search_path=self.out_dir)
        self.channel = channel if channel is not None else get_default_channel()

        if toolchain_factory is None:
            toolchain_factory = functools.partial(_default_toolchain, getattr(toolchain, "compiler", None))
        self._toolchain_factory = toolchain_factory
        self._toolchain = toolchain if toolchain is not None else toolchain_factory(self.out_dir)

        self.probe_failures: list[ProbeFailure] = []
        self._finalized = False

    @property
    def module_name(self) -> str:
        return self.config.module_name

    @property
    def toolchain(self) -> Toolchain:
        """The toolchain that will be used for the build."""
        return self._toolchain

    def _check_open(self) -> None:
        if self._finalized:
            raise ConfigSealedError(f"Build step of module `{self.module_name}` was already finalized")

    def _mutable_config(self) -> ModuleBuildConfig:
        self._check_open()
        return self.config

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, name: str) -> "ModuleBuilder":
        """Embed the published configuration of an upstream module.

        Its public flags, public defines and include dirs will be applied to
        this module's compilation.

        Raises:
            UnresolvedDependencyError: If nothing usable is published for name
        """
        self._check_open()
        try:
            key = propagation_key(name)
        except ValueError as e:
            raise UnresolvedDependencyError(str(name), str(e)) from e

        try:
            payload = self.channel.lookup(key)
        except ChannelError as e:
            raise UnresolvedDependencyError(name, str(e)) from e

        if payload is None:
            raise UnresolvedDependencyError(name, f"nothing published under {key}")

        try:
            dependency = ModuleBuildConfig.from_json(payload)
        except (ValueError, KeyError, TypeError) as e:
            raise UnresolvedDependencyError(name, f"payload under {key} cannot be deserialized: {e}") from e

        if dependency.module_name != name:
            raise UnresolvedDependencyError(name, f"payload under {key} belongs to module `{dependency.module_name}`")

        self.config.add_dependency_config(dependency)
        logger.info(f"Module {self.module_name}: added dependency {name} ({len(dependency.dependencies)} embedded)")
        return self

    # ------------------------------------------------------------------
    # Fluent accumulators
    # ------------------------------------------------------------------

    def add_public_flag(self, flag: str) -> "ModuleBuilder":
        self._mutable_config().add_public_flag(flag)
        return self

    def add_private_flag(self, flag: str) -> "ModuleBuilder":
        self._mutable_config().add_private_flag(flag)
        return self

    def add_public_define(self, key: str, value: str) -> "ModuleBuilder":
        self._mutable_config().add_public_define(key, value)
        return self

    def add_private_define(self, key: str, value: str) -> "ModuleBuilder":
        self._mutable_config().add_private_define(key, value)
        return self

    def add_link_target(self, target: str) -> "ModuleBuilder":
        self._mutable_config().add_link_target(target)
        return self

    def add_include_dir(self, path: PathLike) -> "ModuleBuilder":
        """Add a header search path, e.g. a third-party install's include dir."""
        self._mutable_config().add_include_dir(path)
        return self

    def set_shared(self, shared: bool = True) -> "ModuleBuilder":
        self._mutable_config().set_shared(shared)
        return self

    def set_search_path(self, path: Optional[PathLike]) -> "ModuleBuilder":
        self._mutable_config().set_search_path(path)
        return self

    def set_lib_name(self, lib_name: str) -> "ModuleBuilder":
        self._mutable_config().set_lib_name(lib_name)
        return self

    def add_source(self, path: PathLike) -> "ModuleBuilder":
        """Add a C source file to the build."""
        self._check_open()
        self._toolchain.add_source(Path(path))
        return self

    def add_sources(self, paths: Iterable[PathLike]) -> "ModuleBuilder":
        for path in paths:
            self.add_source(path)
        return self

    # ------------------------------------------------------------------
    # Output tree
    # ------------------------------------------------------------------

    def stage_third_party_headers(self, source_dir: PathLike) -> "ModuleBuilder":
        """Copy a header directory into <out_dir>/include and add that as an include dir.

        The directory itself is copied, so `vendor/aws` becomes
        `<out_dir>/include/aws` and sources keep including `<aws/...>`.
        Existing files are overwritten.

        Raises:
            StagingError: If the source is missing or the copy fails
        """
        self._check_open()
        source = Path(source_dir)
        if not source.is_dir():
            raise StagingError(f"Header directory not found: {source}")

        include_root = self.out_dir / INCLUDE_SUBDIR
        destination = include_root / source.name
        try:
            include_root.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, destination, dirs_exist_ok=True)
        except OSError as e:
            raise StagingError(f"Copying {source} to {destination} failed: {e}") from e

        if include_root not in self.config.include_dirs:
            self.config.add_include_dir(include_root)
        logger.debug(f"Staged headers {source} -> {destination}")
        return self

    def write_generated_file(self, content: str, relative_path: PathLike) -> "ModuleBuilder":
        """Write generated content (e.g. a configure-style config.h) into the output tree.

        Raises:
            ValueError: If relative_path is absolute or escapes the output directory
            StagingError: If the file cannot be written
        """
        self._check_open()
        rel = Path(relative_path)
        if rel.is_absolute():
            raise ValueError(f"Generated file path must be relative to the output directory: {rel}")

        target = self.out_dir / rel
        out_root = self.out_dir.resolve()
        if out_root != target.resolve() and out_root not in target.resolve().parents:
            raise ValueError(f"Generated file path escapes the output directory: {rel}")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise StagingError(f"Writing generated file {target} failed: {e}") from e

        logger.debug(f"Wrote generated file {target} ({len(content)} chars)")
        return self

    # ------------------------------------------------------------------
    # Capability probing
    # ------------------------------------------------------------------

    def probe_compile(self, snippet: str, flags: Iterable[str] = (), description: Optional[str] = None) -> ProbeResult:
        """Try to compile a self-contained C snippet with an ephemeral toolchain.

        The probe runs in its own scratch directory under the output
        directory, removed on every exit path. It never raises: not compiling
        is an expected answer, recorded in probe_failures.

        Args:
            snippet: Complete C translation unit
            flags: Extra flags for the probe compilation
            description: Label for logs and the failure record

        Returns:
            ProbeResult, truthy if the snippet compiled
        """
        description = description or "compile probe"
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix=PROBE_DIR_PREFIX, dir=self.out_dir) as scratch:
                scratch_dir = Path(scratch)
                source = scratch_dir / "check.c"
                source.write_text(snippet, encoding="utf-8")

                probe = self._toolchain_factory(scratch_dir)
                for flag in flags:
                    probe.add_flag(flag)
                probe.add_source(source)
                probe.compile("check")
        except (ModflagsError, OSError, ValueError) as e:
            failure = ProbeFailure(description=description, diagnostics=str(e))
            self.probe_failures.append(failure)
            logger.debug(f"Probe '{description}' failed: {e}")
            return ProbeResult(False, description, str(e))

        logger.debug(f"Probe '{description}' succeeded")
        return ProbeResult(True, description)

    def _apply_toolchain_defaults(self, family: ToolchainFamily) -> None:
        profile = get_profile(family)
        for flag in profile.baseline_flags:
            self.config.add_private_flag(flag)
        log_detail(f"Baseline ({profile.description}): {' '.join(profile.baseline_flags)}", verbose_only=True)

        if not profile.probe_gnu_extensions:
            return

        if not self._toolchain.supports(GNU_WARNING_FLAG):
            self.probe_failures.append(ProbeFailure(description=f"{GNU_WARNING_FLAG} not supported"))
            log_detail(f"{GNU_WARNING_FLAG} not supported, skipping GNU extension warnings", verbose_only=True)
            return

        for flag in GNU_WARNING_FLAGS:
            self.config.add_private_flag(flag)
        log_detail(f"{GNU_WARNING_FLAG} supported", verbose_only=True)

        result = self.probe_compile(HTONL_PROBE_SNIPPET, flags=HTONL_PROBE_FLAGS, description="htonl under -Wgnu")
        if not result:
            self.config.add_private_flag(STATEMENT_EXPRESSION_SUPPRESSION)
            log_detail(f"htonl uses statement expressions, adding {STATEMENT_EXPRESSION_SUPPRESSION}", verbose_only=True)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _load_to_toolchain(self) -> None:
        """Apply own settings, then the public settings of the dependency tree, in order.

        Each direct dependency contributes its public flags, public defines and
        include dirs. Below that, the modules it embeds contribute their public
        flags and include dirs, depth first; their defines stop at the module
        that declared them unless it re-exposes them as public.
        """
        config = self.config
        toolchain = self._toolchain

        for flag in config.private_flags:
            toolchain.add_flag(flag)
        for flag in config.public_flags:
            toolchain.add_flag(flag)
        for key, value in config.private_defines:
            toolchain.add_define(key, value)
        for key, value in config.public_defines:
            toolchain.add_define(key, value)
        for include in config.include_dirs:
            toolchain.add_include(include)

        applied = set(config.dependency_names())
        for dependency in config.dependencies:
            public = dependency.public_settings()
            for flag in public.flags:
                toolchain.add_flag(flag)
            for key, value in public.defines:
                toolchain.add_define(key, value)
            for include in public.include_dirs:
                toolchain.add_include(include)

            for upstream in dependency.transitive_dependencies():
                if upstream.module_name in applied:
                    continue
                applied.add(upstream.module_name)
                for flag in upstream.public_flags:
                    toolchain.add_flag(flag)
                for include in upstream.include_dirs:
                    toolchain.add_include(include)

        toolchain.set_shared(config.shared_lib)

    def _emit_directives(self) -> list[str]:
        directives = []
        if self.config.link_search_path is not None:
            directives.append(emit_directive("link-search", str(self.config.link_search_path)))
        for target in self.config.link_targets:
            directives.append(emit_directive("link-lib", target))
        return directives

    def finalize_and_compile(self) -> BuildResult:
        """Configure the toolchain, compile, publish the configuration, emit directives.

        Runs once per build step. Nothing is published unless compilation
        succeeds, and no directive is emitted unless publishing succeeds.

        Returns:
            BuildResult describing the artifact and the published configuration

        Raises:
            ConfigSealedError: If called a second time
            CompilationError: If the toolchain driver fails
            ChannelError: If the configuration cannot be published
        """
        self._check_open()
        self._finalized = True
        config = self.config

        log(f"Building module: {config.module_name}")

        family = self._toolchain.classify()
        log_phase(1, TOTAL_PHASES, f"Applying toolchain defaults ({family})...")
        self._apply_toolchain_defaults(family)

        log_phase(2, TOTAL_PHASES, "Merging configuration...")
        self._load_to_toolchain()
        log_detail(f"Dependencies: {', '.join(config.dependency_names()) or '(none)'}", verbose_only=True)

        kind = "shared" if config.shared_lib else "static"
        try:
            with TimedLogger(f"Compiling {config.lib_name} ({kind})", phase=(3, TOTAL_PHASES)):
                artifact = self._toolchain.compile(config.lib_name)
        except CompilationError:
            log_error(f"Compiling {config.lib_name} failed; nothing published for {config.module_name}")
            raise

        log_phase(4, TOTAL_PHASES, "Publishing configuration...")
        config.seal()
        key = propagation_key(config.module_name)
        payload = config.to_json()
        previous = self.channel.lookup(key)
        if previous is not None and previous != payload:
            log_warning(f"Replacing the configuration previously published as {key}")
        self.channel.publish(key, payload, replace=True)
        log_detail(f"Published as {key}", verbose_only=True)

        directives = self._emit_directives()

        return BuildResult(artifact=artifact, config=config, directives=tuple(directives), key=key)
