"""Warning Profile Configuration.

This module defines the baseline private flags every module build step gets,
keyed by toolchain family, and the capability probes that conditionally add
more.

Design:
    Profiles declare their flags explicitly. The baseline is added as
    *private* flags, so a module's warning policy never leaks into the
    modules that depend on it.

    GNU-extension warnings are only enabled after probing: -Wgnu is
    Clang-only, and some libc headers (htonl on glibc, for instance) expand
    to statement expressions that -Wgnu rejects.
"""

from dataclasses import dataclass

from .toolchain import ToolchainFamily


@dataclass(frozen=True)
class WarningProfile:
    """Baseline flags for one toolchain family.

    Attributes:
        family: Toolchain family the profile applies to
        description: Human-readable profile description, shown in the defaults log
        baseline_flags: Private flags always added, in order
        probe_gnu_extensions: Whether the GNU-extension probes apply
    """

    family: ToolchainFamily
    description: str
    baseline_flags: tuple[str, ...]
    probe_gnu_extensions: bool


PROFILES: dict[ToolchainFamily, WarningProfile] = {
    ToolchainFamily.MSVC: WarningProfile(
        family=ToolchainFamily.MSVC,
        description="MSVC: level 4 warnings as errors",
        baseline_flags=(
            "/W4",
            "/WX",
            "/MP",
            # relaxes the implicit memory barriers MSVC applies to volatile accesses
            "/volatile:iso",
            # non-constant aggregate initializer
            "/wd4204",
            # address of a local variable in an initializer
            "/wd4221",
        ),
        probe_gnu_extensions=False,
    ),
    ToolchainFamily.POSIX: WarningProfile(
        family=ToolchainFamily.POSIX,
        description="GCC/Clang: pedantic warnings as errors, PIC",
        baseline_flags=(
            "-Wall",
            "-Werror",
            "-Wstrict-prototypes",
            "-fno-omit-frame-pointer",
            "-Wextra",
            "-pedantic",
            "-Wno-long-long",
            "-fPIC",
        ),
        probe_gnu_extensions=True,
    ),
}

GNU_WARNING_FLAG = "-Wgnu"

# -Wgnu-zero-variadic-macro-arguments results in a lot of false positives
GNU_WARNING_FLAGS = (GNU_WARNING_FLAG, "-Wno-gnu-zero-variadic-macro-arguments")

STATEMENT_EXPRESSION_SUPPRESSION = "-Wno-gnu-statement-expression"

HTONL_PROBE_FLAGS = (GNU_WARNING_FLAG, "-Werror")

HTONL_PROBE_SNIPPET = """\
#include <netinet/in.h>
#include <stdint.h>

int main(void) {
    uint32_t x = 0;
    x = htonl(x);
    return (int)x;
}
"""


def get_profile(family: ToolchainFamily) -> WarningProfile:
    """Get the warning profile for a toolchain family."""
    return PROFILES[family]
