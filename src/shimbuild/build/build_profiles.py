"""Build Profile Configuration.

Profiles declare the optimization and code generation flags applied when the
shim is compiled. User CFLAGS are merged in, minus any flag the profile
controls, so the profile always wins on optimization level.

Every profile compiles position independent code: the archive is linked into
host-language binaries that may themselves be shared objects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    RELEASE = "release"
    DEBUG = "debug"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ProfileFlags:
    """Compile flags for one profile.

    Attributes:
        name: Profile identifier (matches BuildProfile enum value)
        description: Human-readable profile description
        compile_flags: All compilation flags for this profile
        controlled_patterns: Flag prefixes this profile controls (stripped from CFLAGS)
    """

    name: str
    description: str
    compile_flags: tuple[str, ...]
    controlled_patterns: tuple[str, ...]


PROFILES: dict[BuildProfile, ProfileFlags] = {
    BuildProfile.RELEASE: ProfileFlags(
        name="release",
        description="Optimized build (default)",
        compile_flags=(
            "-O2",
            "-fPIC",
            "-ffunction-sections",
            "-fdata-sections",
        ),
        controlled_patterns=(
            "-O",
            "-g",
            "-fPIC",
            "-fpic",
            "-ffunction-sections",
            "-fdata-sections",
        ),
    ),
    BuildProfile.DEBUG: ProfileFlags(
        name="debug",
        description="Unoptimized build with debug info",
        compile_flags=(
            "-O0",
            "-g",
            "-fPIC",
        ),
        controlled_patterns=(
            "-O",
            "-g",
            "-fPIC",
            "-fpic",
        ),
    ),
}


def get_profile(profile: BuildProfile) -> ProfileFlags:
    """Get profile configuration by enum."""
    return PROFILES[profile]


def parse_profile(name: str) -> BuildProfile:
    """Convert a profile name (e.g. from the CLI) to a BuildProfile.

    Raises:
        ValueError: If the name is not a known profile
    """
    try:
        return BuildProfile(name.lower())
    except ValueError:
        known = ", ".join(p.value for p in BuildProfile)
        raise ValueError(f"Unknown build profile '{name}' (known: {known})") from None


def filter_user_flags(flags: Sequence[str], profile_flags: ProfileFlags) -> List[str]:
    """Remove flags that the profile controls from user supplied flags."""
    return [f for f in flags if not any(f.startswith(p) for p in profile_flags.controlled_patterns)]


def get_compile_flags(profile: BuildProfile, user_flags: Sequence[str] = ()) -> List[str]:
    """Profile compile flags followed by the filtered user flags.

    Args:
        profile: BuildProfile enum value
        user_flags: Flags from CFLAGS or the command line

    Returns:
        Flags in the order they are passed to the compiler
    """
    profile_flags = get_profile(profile)
    return list(profile_flags.compile_flags) + filter_user_flags(user_flags, profile_flags)


def format_profile_banner(profile: BuildProfile, compiler: str | None = None) -> str:
    """Format a build profile banner for display."""
    parts = [f"PROFILE={profile.value}"]
    if compiler:
        parts.append(f"COMPILER={compiler}")
    return " ".join(parts)
