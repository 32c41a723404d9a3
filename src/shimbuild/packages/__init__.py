"""Native library resolution for shimbuild.

This package handles locating system-installed C libraries through the
pkg-config registry and locating the host toolchain.
"""

from .library_spec import InvalidLibrarySpecification, LibrarySpecification, parse_specifications
from .probe import LibraryProbe, ProbeResult
from .toolchain import Toolchain, ToolchainFinder, ToolNotFoundError
from .version import VERSION_SCHEMES, compare_semver, compare_versions, get_version_scheme

__all__ = [
    "LibrarySpecification",
    "InvalidLibrarySpecification",
    "parse_specifications",
    "LibraryProbe",
    "ProbeResult",
    "Toolchain",
    "ToolchainFinder",
    "ToolNotFoundError",
    "VERSION_SCHEMES",
    "compare_versions",
    "compare_semver",
    "get_version_scheme",
]
