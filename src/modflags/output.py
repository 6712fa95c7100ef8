"""
Centralized output module for modflags build steps.

A build step talks to two audiences:

- The host orchestrator reads stdout line by line and interprets
  specially-prefixed lines as linker directives. Only emit_directive() writes
  there.
- Humans read timestamped progress on stderr. All output is prefixed with
  elapsed time in MM:SS.cc format (minutes:seconds.centiseconds).

Example progress output:
    00:00.01 Building module: checksums
    00:00.02 [1/4] Applying toolchain defaults (posix)...
    00:00.35      -Wgnu supported
    00:01.20 [3/4] Compiling libchecksums.a...

Example directive output:
    cargo:rustc-link-search=/build/checksums/out
    cargo:rustc-link-lib=checksums

Usage:
    from modflags.output import log, log_phase, log_detail, emit_directive

    log("Building module: checksums")
    log_phase(1, 4, "Applying toolchain defaults...")
    log_detail("-Wgnu supported")
    emit_directive("link-lib", "checksums")
"""

import sys
import time
from types import TracebackType
from typing import Optional, TextIO

from .paths import get_directive_prefix, is_verbose

# Global state for the timer
_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_directive_stream: Optional[TextIO] = None
_verbose: Optional[bool] = None


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the build step timer.

    If not called explicitly, it will be called automatically on first log.

    Args:
        output_stream: Optional progress stream (defaults to sys.stderr)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def reset_timer() -> None:
    """Reset the timer to current time."""
    global _start_time
    _start_time = time.time()


def set_verbose(verbose: Optional[bool]) -> None:
    """
    Set verbose mode for progress output.

    Args:
        verbose: True/False to force a mode, None to follow MODFLAGS_VERBOSE
    """
    global _verbose
    _verbose = verbose


def set_output_stream(stream: Optional[TextIO]) -> None:
    """Redirect progress output. None restores sys.stderr."""
    global _output_stream
    _output_stream = stream


def set_directive_stream(stream: Optional[TextIO]) -> None:
    """Redirect orchestrator directives. None restores sys.stdout."""
    global _directive_stream
    _directive_stream = stream


def _verbose_enabled() -> bool:
    if _verbose is None:
        return is_verbose()
    return _verbose


def get_elapsed() -> float:
    """
    Get elapsed time since timer initialization.

    Returns:
        Elapsed time in seconds
    """
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str, end: str = "\n") -> None:
    stream = _output_stream if _output_stream is not None else sys.stderr
    stream.write(f"{format_timestamp()} {message}{end}")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose_enabled():
        return
    _print(message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """
    Log a build phase message.

    Format: [N/M] message
    """
    if verbose_only and not _verbose_enabled():
        return
    _print(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """
    Log a detail message (indented).

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 6)
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose_enabled():
        return
    _print(f"{' ' * indent}{message}")


def log_error(message: str) -> None:
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _print(f"WARNING: {message}")


def format_directive(kind: str, value: str) -> str:
    """
    Format one orchestrator directive line (without newline).

    Args:
        kind: Directive kind, e.g. "link-search" or "link-lib"
        value: Directive payload

    Returns:
        The directive line, e.g. "cargo:rustc-link-lib=crypto"
    """
    return f"{get_directive_prefix()}{kind}={value}"


def emit_directive(kind: str, value: str) -> str:
    """
    Write one orchestrator directive to the directive stream.

    Returns:
        The emitted line (without newline)
    """
    line = format_directive(kind, value)
    stream = _directive_stream if _directive_stream is not None else sys.stdout
    stream.write(line + "\n")
    stream.flush()
    return line


class TimedLogger:
    """
    Context manager for logging with elapsed time tracking.

    Usage:
        with TimedLogger("Compiling libchecksums.a", phase=(3, 4)) as logger:
            # Do compilation
            logger.detail("3 sources")
        # Automatically logs completion time
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], f"{self.operation}...", self.verbose_only)
        else:
            log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        elapsed = time.time() - self.start_time
        if exc_type is None:
            log_detail(f"Done ({elapsed:.2f}s)", verbose_only=self.verbose_only)
        return None

    def detail(self, message: str) -> None:
        """Log a detail message within this operation."""
        log_detail(message, verbose_only=self.verbose_only)
