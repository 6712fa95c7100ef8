"""
Error types for modflags build steps.

Every fatal condition aborts the current build step; there is no retry logic.
Capability probe failures are expected and are recorded as ProbeFailure
entries instead of being raised.
"""

import time
from dataclasses import dataclass, field


class ModflagsError(Exception):
    """Base class for all modflags errors."""

    pass


class UnresolvedDependencyError(ModflagsError):
    """Raised when a declared dependency has no usable published configuration.

    Either the dependency name is wrong, or the upstream build step did not
    finish publishing before this step started.
    """

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(
            f"Module `{dependency}` does not appear to be a part of your dependency chain ({reason}). "
            "Alternatively, the dependency's build step did not complete finalize_and_compile()."
        )


class StagingError(ModflagsError, OSError):
    """Raised when copying headers or writing generated files into the output tree fails."""

    pass


class CompilationError(ModflagsError):
    """Raised when the toolchain driver reports a failure.

    The compiler's diagnostic output is carried verbatim.
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        lines = [message]
        if self.command:
            lines.append(f"Command: {' '.join(self.command)}")
        if stderr:
            lines.append(f"stderr: {stderr}")
        if stdout:
            lines.append(f"stdout: {stdout}")
        super().__init__("\n".join(lines))


class ChannelError(ModflagsError):
    """Raised when the propagation channel cannot accept or serve a payload."""

    pass


class ConfigSealedError(ModflagsError):
    """Raised when a finalized configuration is mutated."""

    pass


@dataclass(frozen=True)
class ProbeFailure:
    """A capability probe that did not compile. Recorded, never raised."""

    description: str
    diagnostics: str = ""
    timestamp: float = field(default_factory=time.time)
