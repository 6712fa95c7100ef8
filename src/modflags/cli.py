"""
Command-line interface for modflags.

This module provides the `modflags` CLI for inspecting a build session's
propagation channel and checking compiler capabilities.

Examples:
    modflags list                          # Modules published in the current session
    modflags show aws_crt_common           # One module's published configuration
    modflags show aws_crt_common --json    # Raw payload
    modflags probe-flag --cc clang -- -Wgnu   # Does clang accept -Wgnu?
    modflags clean                         # Remove the session directory
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from modflags import __version__
from modflags.channel import FileChannel, get_default_channel
from modflags.errors import ModflagsError
from modflags.module_config import ModuleBuildConfig
from modflags.paths import module_name_from_key, propagation_key
from modflags.toolchain import CompilerToolchain


@dataclass
class SessionArgs:
    """Arguments shared by the session commands."""

    session_dir: Optional[Path] = None


@dataclass
class ShowArgs:
    """Arguments for the show command."""

    module: str
    session_dir: Optional[Path] = None
    as_json: bool = False


@dataclass
class ProbeFlagArgs:
    """Arguments for the probe-flag command."""

    flag: str
    cc: Optional[str] = None


def _channel(session_dir: Optional[Path]) -> FileChannel:
    return FileChannel(session_dir) if session_dir is not None else get_default_channel()


def _load(channel: FileChannel, module: str) -> ModuleBuildConfig:
    key = propagation_key(module)
    payload = channel.lookup(key)
    if payload is None:
        raise ModflagsError(f"Module `{module}` is not published in {channel.session_dir}")
    try:
        return ModuleBuildConfig.from_json(payload)
    except (ValueError, KeyError, TypeError) as e:
        raise ModflagsError(f"Payload for `{module}` is corrupt: {e}") from e


def list_command(args: SessionArgs, console: Console) -> int:
    """List the modules published in a session."""
    channel = _channel(args.session_dir)
    keys = channel.keys()
    if not keys:
        console.print(f"No modules published in {channel.session_dir}")
        return 0

    table = Table(title=f"Session {channel.session_dir}")
    table.add_column("Module", style="bold")
    table.add_column("Library")
    table.add_column("Dependencies")
    table.add_column("Public flags", justify="right")
    table.add_column("Public defines", justify="right")
    table.add_column("Link targets", justify="right")

    for key in keys:
        module = module_name_from_key(key)
        if module is None:
            continue
        try:
            config = _load(channel, module)
        except ModflagsError as e:
            table.add_row(module, "[red]corrupt[/red]", str(e), "", "", "")
            continue
        table.add_row(
            config.module_name,
            config.lib_name + (" (shared)" if config.shared_lib else ""),
            ", ".join(config.dependency_names()) or "-",
            str(len(config.public_flags)),
            str(len(config.public_defines)),
            str(len(config.link_targets)),
        )

    console.print(table)
    return 0


def show_command(args: ShowArgs, console: Console) -> int:
    """Show one module's published configuration."""
    channel = _channel(args.session_dir)
    config = _load(channel, args.module)

    if args.as_json:
        console.print_json(config.to_json())
        return 0

    table = Table(title=f"{config.module_name} ({propagation_key(config.module_name)})", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("lib_name", config.lib_name)
    table.add_row("shared_lib", str(config.shared_lib))
    table.add_row("link_search_path", str(config.link_search_path) if config.link_search_path else "-")
    table.add_row("dependencies", ", ".join(config.dependency_names()) or "-")
    table.add_row("public_flags", " ".join(config.public_flags) or "-")
    table.add_row("private_flags", " ".join(config.private_flags) or "-")
    table.add_row("public_defines", " ".join(f"{k}={v}" for k, v in config.public_defines) or "-")
    table.add_row("private_defines", " ".join(f"{k}={v}" for k, v in config.private_defines) or "-")
    table.add_row("include_dirs", "\n".join(str(p) for p in config.include_dirs) or "-")
    table.add_row("link_targets", " ".join(config.link_targets) or "-")
    table.add_row("transitive link targets", " ".join(config.transitive_link_targets()) or "-")
    console.print(table)
    return 0


def probe_flag_command(args: ProbeFlagArgs, console: Console) -> int:
    """Exit 0 if the compiler accepts the flag, 1 otherwise."""
    toolchain = CompilerToolchain(compiler=args.cc)
    if toolchain.supports(args.flag):
        console.print(f"[green]{toolchain.compiler} supports {args.flag}[/green]")
        return 0
    console.print(f"[yellow]{toolchain.compiler} does not support {args.flag}[/yellow]")
    return 1


def clean_command(args: SessionArgs, console: Console) -> int:
    """Remove a session directory and everything published in it."""
    channel = _channel(args.session_dir)
    channel.clear()
    console.print(f"Removed {channel.session_dir}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modflags", description="Inspect modflags build sessions")
    parser.add_argument("--version", action="version", version=f"modflags {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    list_parser = sub.add_parser("list", help="List modules published in the session")
    list_parser.add_argument("--session-dir", type=Path, default=None)

    show_parser = sub.add_parser("show", help="Show a module's published configuration")
    show_parser.add_argument("module")
    show_parser.add_argument("--session-dir", type=Path, default=None)
    show_parser.add_argument("--json", dest="as_json", action="store_true", help="Print the raw payload")

    probe_parser = sub.add_parser("probe-flag", help="Check whether the compiler accepts a flag")
    probe_parser.add_argument("flag", help="Flag to check; pass it after -- when it starts with a dash")
    probe_parser.add_argument("--cc", default=None, help="Compiler executable (default: MODFLAGS_CC, CC, cc)")

    clean_parser = sub.add_parser("clean", help="Remove the session directory")
    clean_parser.add_argument("--session-dir", type=Path, default=None)

    return parser


def main(argv: Optional[list[str]] = None, console: Optional[Console] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    console = console if console is not None else Console()

    try:
        if args.command == "list":
            return list_command(SessionArgs(session_dir=args.session_dir), console)
        if args.command == "show":
            return show_command(ShowArgs(module=args.module, session_dir=args.session_dir, as_json=args.as_json), console)
        if args.command == "probe-flag":
            return probe_flag_command(ProbeFlagArgs(flag=args.flag, cc=args.cc), console)
        if args.command == "clean":
            return clean_command(SessionArgs(session_dir=args.session_dir), console)
    except (ModflagsError, ValueError, OSError) as e:
        console.print(f"[red]ERROR:[/red] {e}")
        return 1
    except KeyboardInterrupt:
        console.print("\nInterrupted")
        return 130

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
