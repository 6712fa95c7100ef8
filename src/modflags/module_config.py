"""
Module build configuration - the data handed from one build step to the next.

This module defines:
- ModuleBuildConfig: one module's compilation settings plus embedded snapshots
  of the configurations of the modules it depends on
- PublicSettings: the part of a configuration visible to downstream modules

Design:
    Each build step creates a fresh ModuleBuildConfig, accumulates settings
    through fluent calls, and seals it once compilation succeeds. The sealed
    configuration is serialized to JSON and published on the propagation
    channel. A downstream step deserializes it and embeds it as a dependency.
    Embedded dependencies are sealed copies, so they never change after they
    are embedded.

    Only public flags, public defines, include dirs and link targets cross the
    module boundary. Private flags and defines are serialized too (the payload
    is the complete configuration) but the merge in ModuleBuilder never reads
    them from a dependency.
"""

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple, Optional, Union

from .errors import ConfigSealedError
from .paths import validate_module_name

FORMAT_VERSION = 1

PathLike = Union[str, Path]


class PublicSettings(NamedTuple):
    """Settings a module exposes to the modules that depend on it."""

    flags: tuple[str, ...]
    defines: tuple[tuple[str, str], ...]
    include_dirs: tuple[Path, ...]


def _require_text(value: str, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{what} must be a non-empty string")
    return value


@dataclass
class ModuleBuildConfig:
    """Compilation configuration of one module.

    Attributes:
        module_name: Unique module identifier, the source of the propagation key
        lib_name: Name of the artifact to produce (defaults to module_name)
        dependencies: Sealed snapshots of upstream module configurations
        private_flags: Compiler flags for this module only
        public_flags: Compiler flags also applied to dependent modules
        private_defines: (key, value) definitions for this module only
        public_defines: (key, value) definitions also applied to dependent modules
        link_targets: Linker library identifiers, always transitive
        include_dirs: Header search paths, visible to dependent modules
        shared_lib: Build a shared library instead of a static one
        link_search_path: Directory the orchestrator searches for the artifact
    """

    module_name: str
    lib_name: str = ""
    dependencies: list["ModuleBuildConfig"] = field(default_factory=list)
    private_flags: list[str] = field(default_factory=list)
    public_flags: list[str] = field(default_factory=list)
    private_defines: list[tuple[str, str]] = field(default_factory=list)
    public_defines: list[tuple[str, str]] = field(default_factory=list)
    link_targets: list[str] = field(default_factory=list)
    include_dirs: list[Path] = field(default_factory=list)
    shared_lib: bool = False
    link_search_path: Optional[Path] = None
    _sealed: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_module_name(self.module_name)
        if not self.lib_name:
            self.lib_name = self.module_name

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "module_name" and "module_name" in self.__dict__:
            raise AttributeError("module_name is immutable after construction")
        super().__setattr__(name, value)

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> "ModuleBuildConfig":
        """Make this configuration (and its embedded dependencies) immutable."""
        for dep in self.dependencies:
            dep.seal()
        self._sealed = True
        return self

    def _check_mutable(self) -> None:
        if self._sealed:
            raise ConfigSealedError(f"Configuration of module `{self.module_name}` is sealed and can no longer be modified")

    # ------------------------------------------------------------------
    # Fluent accumulators
    # ------------------------------------------------------------------

    def add_public_flag(self, flag: str) -> "ModuleBuildConfig":
        """Add a compiler flag that is also applied to every dependent module."""
        self._check_mutable()
        self.public_flags.append(_require_text(flag, "Flag"))
        return self

    def add_private_flag(self, flag: str) -> "ModuleBuildConfig":
        """Add a compiler flag that only applies to this module."""
        self._check_mutable()
        self.private_flags.append(_require_text(flag, "Flag"))
        return self

    def add_public_define(self, key: str, value: str) -> "ModuleBuildConfig":
        """Add `#define key value`, also applied to every dependent module."""
        self._check_mutable()
        self.public_defines.append((_require_text(key, "Define key"), str(value)))
        return self

    def add_private_define(self, key: str, value: str) -> "ModuleBuildConfig":
        """Add `#define key value` for this module only."""
        self._check_mutable()
        self.private_defines.append((_require_text(key, "Define key"), str(value)))
        return self

    def add_link_target(self, target: str) -> "ModuleBuildConfig":
        """Add a library to the linker line.

        Formatting such as framework-vs-system library is the caller's
        business, e.g. "crypto", "Kernel32", "framework=Security".
        """
        self._check_mutable()
        self.link_targets.append(_require_text(target, "Link target"))
        return self

    def add_include_dir(self, path: PathLike) -> "ModuleBuildConfig":
        self._check_mutable()
        self.include_dirs.append(Path(_require_text(str(path), "Include directory")))
        return self

    def set_shared(self, shared: bool = True) -> "ModuleBuildConfig":
        self._check_mutable()
        self.shared_lib = bool(shared)
        return self

    def set_search_path(self, path: Optional[PathLike]) -> "ModuleBuildConfig":
        """Override the directory the orchestrator searches for the artifact.

        Useful when the module links a library built outside this build, e.g.
        a manually installed libcrypto. None suppresses the directive.
        """
        self._check_mutable()
        self.link_search_path = None if path is None else Path(_require_text(str(path), "Search path"))
        return self

    def set_lib_name(self, lib_name: str) -> "ModuleBuildConfig":
        self._check_mutable()
        self.lib_name = _require_text(lib_name, "Library name")
        return self

    def add_dependency_config(self, dependency: "ModuleBuildConfig") -> "ModuleBuildConfig":
        """Embed a sealed deep copy of an upstream configuration."""
        self._check_mutable()
        self.dependencies.append(copy.deepcopy(dependency).seal())
        return self

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def public_settings(self) -> PublicSettings:
        return PublicSettings(
            flags=tuple(self.public_flags),
            defines=tuple(self.public_defines),
            include_dirs=tuple(self.include_dirs),
        )

    def dependency_names(self) -> list[str]:
        return [dep.module_name for dep in self.dependencies]

    def transitive_dependencies(self) -> list["ModuleBuildConfig"]:
        """Every embedded configuration below this one, depth first.

        Declaration order; a module reached along several paths is listed once.
        """
        seen: set[str] = set()
        result: list[ModuleBuildConfig] = []

        def visit(config: "ModuleBuildConfig") -> None:
            for dep in config.dependencies:
                if dep.module_name in seen:
                    continue
                seen.add(dep.module_name)
                result.append(dep)
                visit(dep)

        visit(self)
        return result

    def transitive_link_targets(self) -> list[str]:
        """Link targets of this module followed by those of every embedded dependency.

        Depth first, declaration order, first occurrence wins.
        """
        seen: set[str] = set()
        result: list[str] = []

        def visit(config: "ModuleBuildConfig") -> None:
            for target in config.link_targets:
                if target not in seen:
                    seen.add(target)
                    result.append(target)
            for dep in config.dependencies:
                visit(dep)

        visit(self)
        return result

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "format_version": FORMAT_VERSION,
            "module_name": self.module_name,
            "lib_name": self.lib_name,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
            "private_flags": list(self.private_flags),
            "public_flags": list(self.public_flags),
            "private_defines": [[key, value] for key, value in self.private_defines],
            "public_defines": [[key, value] for key, value in self.public_defines],
            "link_targets": list(self.link_targets),
            "include_dirs": [str(path) for path in self.include_dirs],
            "shared_lib": self.shared_lib,
            "link_search_path": str(self.link_search_path) if self.link_search_path is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModuleBuildConfig":
        """Create a sealed ModuleBuildConfig from a dictionary.

        Raises:
            ValueError: If the payload has an unknown format version or malformed entries
            KeyError: If module_name is missing
            TypeError: If data is not a mapping of the expected shape
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")

        version = data.get("format_version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported configuration format version: {version!r}")

        search_path = data.get("link_search_path")
        config = cls(
            module_name=data["module_name"],
            lib_name=data.get("lib_name", ""),
            dependencies=[cls.from_dict(dep) for dep in data.get("dependencies", [])],
            private_flags=_string_list(data.get("private_flags", []), "private_flags"),
            public_flags=_string_list(data.get("public_flags", []), "public_flags"),
            private_defines=_define_list(data.get("private_defines", []), "private_defines"),
            public_defines=_define_list(data.get("public_defines", []), "public_defines"),
            link_targets=_string_list(data.get("link_targets", []), "link_targets"),
            include_dirs=[Path(p) for p in _string_list(data.get("include_dirs", []), "include_dirs")],
            shared_lib=bool(data.get("shared_lib", False)),
            link_search_path=Path(search_path) if search_path else None,
        )
        return config.seal()

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "ModuleBuildConfig":
        """Parse a published payload.

        Raises:
            ValueError: If the text is not valid JSON (json.JSONDecodeError) or
                not a valid configuration
            KeyError: If module_name is missing
            TypeError: If the JSON has the wrong shape
        """
        return cls.from_dict(json.loads(text))


def _string_list(values: Any, name: str) -> list[str]:
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ValueError(f"'{name}' must be a list of strings")
    return list(values)


def _define_list(values: Any, name: str) -> list[tuple[str, str]]:
    if not isinstance(values, list):
        raise ValueError(f"'{name}' must be a list of [key, value] pairs")
    defines = []
    for entry in values:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not all(isinstance(v, str) for v in entry):
            raise ValueError(f"'{name}' must be a list of [key, value] pairs, got {entry!r}")
        defines.append((entry[0], entry[1]))
    return defines
