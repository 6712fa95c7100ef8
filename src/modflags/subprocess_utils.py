"""Compiler process invocation.

Every compiler, archiver and linker call of a build step goes through
run_captured(): output is captured for diagnostics, stdin is detached from
the orchestrator that launched the build step, and no console window opens
on Windows. Compiler output is decoded leniently; a diagnostic containing
bytes from a non-UTF-8 locale must not turn into a UnicodeDecodeError.
"""

import shlex
import subprocess
import sys
from typing import Optional, Sequence


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def format_command(cmd: Sequence[str]) -> str:
    """Render a command line for logs, quoted so it can be pasted into a shell.

    Examples:
        >>> format_command(["cc", "-DNAME=a b", "-c", "x.c"])
        "cc '-DNAME=a b' -c x.c"
    """
    return shlex.join(str(arg) for arg in cmd)


def run_captured(cmd: Sequence[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run a compiler-driver command and capture its output as text.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the process is killed (None waits forever)

    Returns:
        CompletedProcess with decoded stdout/stderr; the caller checks returncode

    Raises:
        FileNotFoundError: If the executable does not exist
        subprocess.TimeoutExpired: If the command outlives timeout
    """
    kwargs = {}
    creation_flags = get_subprocess_creation_flags()
    if creation_flags:
        kwargs["creationflags"] = creation_flags

    return subprocess.run(
        list(cmd),
        stdin=subprocess.DEVNULL,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
        **kwargs,
    )
