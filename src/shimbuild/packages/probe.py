"""Library Probe.

Queries the pkg-config registry for a native library and returns its build
metadata as a :class:`ProbeResult`.

Probe Process:
    1. Refuse libraries disabled with NAME_NO_PKG_CONFIG
    2. pkg-config --print-errors --modversion NAME   (existence + version)
    3. Check version constraints with the configured comparison scheme
    4. pkg-config --cflags NAME                      (include paths, defines)
    5. pkg-config --libs [--static] NAME             (search paths, libraries)

A probe either returns a complete ProbeResult or raises. It only performs
read-only registry queries and only sees the environment captured in the
BuildEnvironment it was constructed with.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from shimbuild.config import BuildEnvironment, no_pkg_config_var
from shimbuild.errors import LibraryNotFound, RegistryUnavailable, VersionConstraintUnsatisfied
from shimbuild.subprocess_utils import run_tool

from .library_spec import LibrarySpecification
from .toolchain import ToolchainFinder
from .version import VersionCompare, compare_versions

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 30

# Options whose value may be given as the following token
_OPTIONS_WITH_ARGUMENT = ("-I", "-L", "-isystem", "-idirafter", "-include", "-framework", "-Xlinker")


def dedupe(items: Iterable[Any]) -> tuple:
    """Order-preserving de-duplication (first occurrence wins)."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return tuple(result)


def group_flags(tokens: Sequence[str]) -> List[tuple[str, ...]]:
    """Group option tokens with their detached argument.

    ``["-I", "/usr/include/x", "-framework", "Cocoa", "-lz"]`` becomes
    ``[("-I", "/usr/include/x"), ("-framework", "Cocoa"), ("-lz",)]`` so that
    de-duplication never separates an option from its value.
    """
    groups: List[tuple[str, ...]] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token in _OPTIONS_WITH_ARGUMENT and i + 1 < len(tokens):
            groups.append((token, tokens[i + 1]))
            i += 2
        else:
            groups.append((token,))
            i += 1
    return groups


def _option_value(group: tuple[str, ...], option: str) -> Optional[str]:
    if len(group) == 2 and group[0] == option:
        return group[1]
    if len(group) == 1 and group[0].startswith(option) and len(group[0]) > len(option):
        return group[0][len(option):]
    return None


@dataclass(frozen=True)
class ProbeResult:
    """Build metadata for one library as reported by pkg-config.

    Attributes:
        name: Canonical library name
        version: Resolved version
        include_paths: Header search directories (-I)
        link_paths: Library search directories (-L)
        libs: Library names to link (-l, without the prefix)
        link_flags: Complete linker flag list in registry order
        defines: Preprocessor defines (-D, without the prefix)
        cflags: Remaining compile flags (e.g. -pthread)
    """

    name: str
    version: str
    include_paths: tuple[str, ...] = ()
    link_paths: tuple[str, ...] = ()
    libs: tuple[str, ...] = ()
    link_flags: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    cflags: tuple[str, ...] = ()

    @classmethod
    def from_flags(
        cls,
        name: str,
        version: str,
        compile_tokens: Sequence[str],
        link_tokens: Sequence[str],
    ) -> "ProbeResult":
        """Classify raw pkg-config flags into a ProbeResult."""
        include_paths: List[str] = []
        defines: List[str] = []
        cflags: List[str] = []
        for group in dedupe(group_flags(compile_tokens)):
            include = _option_value(group, "-I")
            if include is None:
                include = _option_value(group, "-isystem")
            if include is not None:
                include_paths.append(include)
            elif group[0].startswith("-D") and len(group[0]) > 2:
                defines.append(group[0][2:])
            else:
                cflags.extend(group)

        link_paths: List[str] = []
        libs: List[str] = []
        link_flags: List[str] = []
        for group in dedupe(group_flags(link_tokens)):
            link_flags.extend(group)
            path = _option_value(group, "-L")
            if path is not None:
                link_paths.append(path)
            elif len(group) == 1 and group[0].startswith("-l") and len(group[0]) > 2:
                libs.append(group[0][2:])

        return cls(
            name=name,
            version=version,
            include_paths=dedupe(include_paths),
            link_paths=dedupe(link_paths),
            libs=dedupe(libs),
            link_flags=tuple(link_flags),
            defines=dedupe(defines),
            cflags=tuple(cflags),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "name": self.name,
            "version": self.version,
            "include_paths": list(self.include_paths),
            "link_paths": list(self.link_paths),
            "libs": list(self.libs),
            "link_flags": list(self.link_flags),
            "defines": list(self.defines),
            "cflags": list(self.cflags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeResult":
        """Deserialize from a dictionary produced by to_dict()."""
        return cls(
            name=data["name"],
            version=data["version"],
            include_paths=tuple(data.get("include_paths", ())),
            link_paths=tuple(data.get("link_paths", ())),
            libs=tuple(data.get("libs", ())),
            link_flags=tuple(data.get("link_flags", ())),
            defines=tuple(data.get("defines", ())),
            cflags=tuple(data.get("cflags", ())),
        )


class LibraryProbe:
    """Resolves LibrarySpecifications against the pkg-config registry."""

    def __init__(
        self,
        env: BuildEnvironment,
        version_compare: VersionCompare = compare_versions,
        timeout: float = PROBE_TIMEOUT,
    ):
        """Initialize the probe.

        Args:
            env: Captured build environment (registry search paths, PATH)
            version_compare: Comparison function used for version constraints
            timeout: Seconds allowed for each pkg-config call
        """
        self.env = env
        self.version_compare = version_compare
        self.timeout = timeout
        self._executable: Optional[str] = None

    def _pkg_config(self, name: str) -> str:
        if self._executable is None:
            self._executable = ToolchainFinder(self.env).find_pkg_config()
            if self._executable is None:
                raise RegistryUnavailable(name, self.env.pkg_config)
        return self._executable

    def _query(self, name: str, args: List[str]) -> str:
        cmd = [self._pkg_config(name)] + args + [name]
        try:
            result = run_tool(cmd, env=self.env.registry_env(), timeout=self.timeout)
        except FileNotFoundError as e:
            raise RegistryUnavailable(name, cmd[0], str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise RegistryUnavailable(name, cmd[0], f"timed out after {self.timeout}s") from e

        if not result.ok:
            raise LibraryNotFound(name, result.output)
        return result.stdout

    def check_version(self, spec: LibrarySpecification, version: str) -> None:
        """Raise VersionConstraintUnsatisfied if *version* violates *spec*."""
        compare = self.version_compare
        satisfied = True
        if spec.exact_version is not None:
            satisfied = compare(version, spec.exact_version) == 0
        else:
            if spec.min_version is not None:
                cmp = compare(version, spec.min_version)
                if cmp < 0 or (cmp == 0 and not spec.min_inclusive):
                    satisfied = False
            if spec.max_version is not None:
                cmp = compare(version, spec.max_version)
                if cmp > 0 or (cmp == 0 and not spec.max_inclusive):
                    satisfied = False
        if not satisfied:
            raise VersionConstraintUnsatisfied(spec.name, spec.requirement(), version)

    def probe(self, spec: LibrarySpecification) -> ProbeResult:
        """Probe one library.

        Raises:
            LibraryNotFound: The registry has no entry (or probing is disabled)
            RegistryUnavailable: pkg-config itself cannot be run
            VersionConstraintUnsatisfied: The resolved version is out of range
        """
        if self.env.is_disabled(spec.name):
            raise LibraryNotFound(
                spec.name, f"pkg-config probing disabled by {no_pkg_config_var(spec.name)}"
            )

        version = self._query(spec.name, ["--print-errors", "--modversion"]).strip()
        self.check_version(spec, version)

        statik = spec.statik or self.env.all_static
        compile_output = self._query(spec.name, ["--cflags"])
        link_output = self._query(spec.name, ["--libs"] + (["--static"] if statik else []))

        result = ProbeResult.from_flags(
            spec.name,
            version,
            shlex.split(compile_output),
            shlex.split(link_output),
        )

        if not result.include_paths:
            logger.warning("%s: registry reports no include paths", spec.name)
        if not result.link_flags:
            logger.warning("%s: registry reports no link flags", spec.name)

        logger.info("Probed %s %s", spec.name, version)
        return result

    def probe_all(self, specs: Iterable[LibrarySpecification]) -> List[ProbeResult]:
        """Probe every specification in order, stopping at the first failure."""
        return [self.probe(spec) for spec in specs]
