"""
Build step paths configuration.

Centralized location lookup for a module build step. Everything is derived
from the environment the host orchestrator hands to each build step.

Locations:
- Output directory: MODFLAGS_OUT_DIR, falling back to OUT_DIR (required)
- Session directory (first match wins):
    MODFLAGS_SESSION_DIR
    ~/.modflags/sessions/<MODFLAGS_SESSION>
    <target>/<profile>/modflags-session, derived from a cargo OUT_DIR of the
    form <target>/<profile>/build/<package>-<hash>/out
- Staged headers: <out_dir>/include
- Probe scratch directories: <out_dir>/compiler_checks-*
"""

import os
import re
from pathlib import Path

MODFLAGS_HOME = Path.home() / ".modflags"
SESSIONS_DIR = MODFLAGS_HOME / "sessions"
CARGO_SESSION_SUBDIR = "modflags-session"

KEY_PREFIX = "MODFLAGS_MODULE_"
KEY_SUFFIX = "_BUILD_CFG"

INCLUDE_SUBDIR = "include"
PROBE_DIR_PREFIX = "compiler_checks-"

DEFAULT_DIRECTIVE_PREFIX = "cargo:rustc-"
DEFAULT_COMPILE_TIMEOUT = 600.0

_MODULE_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def validate_module_name(module_name: str) -> str:
    """Check that a module name can be used as a propagation key.

    Raises:
        ValueError: If the name is empty or contains characters that are not
            safe in a file name
    """
    if not isinstance(module_name, str) or not module_name:
        raise ValueError("Module name must be a non-empty string")
    if not _MODULE_NAME_RE.match(module_name) or module_name in (".", ".."):
        raise ValueError(f"Invalid module name: {module_name!r} (allowed: letters, digits, '_', '-', '.')")
    return module_name


def propagation_key(module_name: str) -> str:
    """Return the channel key a module publishes its configuration under."""
    return f"{KEY_PREFIX}{validate_module_name(module_name)}{KEY_SUFFIX}"


def module_name_from_key(key: str) -> str | None:
    """Invert propagation_key(). Returns None for keys that are not module keys."""
    if not key.startswith(KEY_PREFIX) or not key.endswith(KEY_SUFFIX):
        return None
    name = key[len(KEY_PREFIX) : len(key) - len(KEY_SUFFIX)]
    return name or None


def get_out_dir() -> Path:
    """Return the output directory assigned to the current build step.

    Raises:
        EnvironmentError: If neither MODFLAGS_OUT_DIR nor OUT_DIR is set
    """
    value = os.environ.get("MODFLAGS_OUT_DIR") or os.environ.get("OUT_DIR")
    if not value:
        raise EnvironmentError("Environment variable 'MODFLAGS_OUT_DIR' (or 'OUT_DIR') is not set.")
    return Path(value)


def session_dir_for_out_dir(out_dir: Path) -> Path | None:
    """Derive the session directory from a cargo build-script OUT_DIR.

    Cargo hands every build script <target>/<profile>/build/<package>-<hash>/out,
    so all build steps of one profile share <target>/<profile>. Returns None
    for output directories of any other shape.

    Examples:
        >>> session_dir_for_out_dir(Path("/ws/target/release/build/aws-crt-common-1f2e/out"))
        PosixPath('/ws/target/release/modflags-session')
    """
    if out_dir.name != "out" or out_dir.parent.parent.name != "build":
        return None
    return out_dir.parent.parent.parent / CARGO_SESSION_SUBDIR


def get_session_dir() -> Path:
    """Return the directory backing the propagation channel for this build session.

    Raises:
        EnvironmentError: If no session is configured and the output directory
            does not identify one
    """
    explicit = os.environ.get("MODFLAGS_SESSION_DIR")
    if explicit:
        return Path(explicit)
    session = os.environ.get("MODFLAGS_SESSION")
    if session:
        return SESSIONS_DIR / session

    out_dir = os.environ.get("MODFLAGS_OUT_DIR") or os.environ.get("OUT_DIR")
    derived = session_dir_for_out_dir(Path(out_dir)) if out_dir else None
    if derived is None:
        raise EnvironmentError(
            "No build session: set MODFLAGS_SESSION_DIR (or MODFLAGS_SESSION), "
            f"or run under cargo so OUT_DIR has the form <target>/<profile>/build/<package>-<hash>/out (got {out_dir!r})."
        )
    return derived


def get_directive_prefix() -> str:
    return os.environ.get("MODFLAGS_DIRECTIVE_PREFIX", DEFAULT_DIRECTIVE_PREFIX)


def get_compile_timeout() -> float:
    """Per-command compiler timeout in seconds.

    Raises:
        ValueError: If MODFLAGS_COMPILE_TIMEOUT is not a positive number
    """
    raw = os.environ.get("MODFLAGS_COMPILE_TIMEOUT")
    if not raw:
        return DEFAULT_COMPILE_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError as e:
        raise ValueError(f"MODFLAGS_COMPILE_TIMEOUT must be a number, got {raw!r}") from e
    if timeout <= 0:
        raise ValueError(f"MODFLAGS_COMPILE_TIMEOUT must be positive, got {raw!r}")
    return timeout


def is_verbose() -> bool:
    return os.environ.get("MODFLAGS_VERBOSE", "1") != "0"
