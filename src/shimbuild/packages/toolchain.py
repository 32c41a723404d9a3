"""Host toolchain discovery.

Locates the three executables the pipeline depends on:

    - C compiler: $CC, then cc, gcc, clang
    - Archiver:   $AR, then ar, llvm-ar, gcc-ar
    - pkg-config: $PKG_CONFIG, then pkg-config, pkgconf

Lookups only use the PATH captured in the BuildEnvironment.
"""

import shlex
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

from shimbuild.config import BuildEnvironment

COMPILER_CANDIDATES = ("cc", "gcc", "clang")
ARCHIVER_CANDIDATES = ("ar", "llvm-ar", "gcc-ar")
PKG_CONFIG_CANDIDATES = ("pkg-config", "pkgconf")


class ToolNotFoundError(Exception):
    """Raised when a required host tool is not found."""

    pass


@dataclass(frozen=True)
class Toolchain:
    """Resolved host tools.

    Attributes:
        cc: Compiler command (executable plus any wrapper args from $CC)
        ar: Archiver executable
    """

    cc: tuple[str, ...]
    ar: str

    @property
    def deterministic_archives(self) -> bool:
        """Whether the archiver accepts the ``D`` (zero timestamps/uids) modifier.

        Apple's ar rejects it; ZERO_AR_DATE is used there instead.
        """
        return sys.platform != "darwin"

    def archive_command(self, archive: Path, objects: Sequence[Path]) -> list[str]:
        """Command that creates *archive* from *objects* with an index."""
        flags = "crsD" if self.deterministic_archives else "crs"
        return [self.ar, flags, str(archive)] + [str(obj) for obj in objects]


class ToolchainFinder:
    """Finds host tools on the captured PATH."""

    def __init__(self, env: BuildEnvironment):
        self.env = env

    def which(self, name: str) -> Optional[Path]:
        """Resolve *name* on the captured PATH (absolute paths are checked directly)."""
        found = shutil.which(name, path=self.env.path or None)
        return Path(found) if found else None

    def _first(self, override: Optional[str], candidates: Sequence[str], kind: str) -> str:
        if override:
            found = self.which(override)
            if found is None:
                raise ToolNotFoundError(f"{kind} '{override}' not found on PATH")
            return str(found)
        for candidate in candidates:
            found = self.which(candidate)
            if found is not None:
                return str(found)
        raise ToolNotFoundError(f"No {kind} found on PATH (tried: {', '.join(candidates)})")

    def find_compiler(self) -> tuple[str, ...]:
        """Resolve the C compiler; $CC may carry wrapper arguments (e.g. "ccache cc")."""
        if self.env.cc:
            parts = shlex.split(self.env.cc)
            if not parts:
                raise ToolNotFoundError("CC is set but empty")
            exe = self._first(parts[0], (), "C compiler")
            return (exe, *parts[1:])
        return (self._first(None, COMPILER_CANDIDATES, "C compiler"),)

    def find_archiver(self) -> str:
        return self._first(self.env.ar, ARCHIVER_CANDIDATES, "archiver")

    def find_pkg_config(self) -> Optional[str]:
        """Resolve pkg-config, or None if it is not installed."""
        override = self.env.pkg_config if self.env.pkg_config != PKG_CONFIG_CANDIDATES[0] else None
        try:
            return self._first(override, PKG_CONFIG_CANDIDATES, "pkg-config")
        except ToolNotFoundError:
            return None

    def find(self) -> Toolchain:
        """Resolve compiler and archiver.

        Raises:
            ToolNotFoundError: If either tool is missing
        """
        return Toolchain(cc=self.find_compiler(), ar=self.find_archiver())

    def get_tool_paths(self) -> Dict[str, Optional[str]]:
        """Report every tool lookup without raising (used by ``shimbuild probe --tools``)."""
        tools: Dict[str, Optional[str]] = {}
        for key, finder in (("cc", self.find_compiler), ("ar", self.find_archiver)):
            try:
                result = finder()
                tools[key] = " ".join(result) if isinstance(result, tuple) else result
            except ToolNotFoundError:
                tools[key] = None
        tools["pkg-config"] = self.find_pkg_config()
        return tools
