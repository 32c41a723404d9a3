"""Shim Compiler.

This module compiles the C shim against the metadata of every probed library
and packages it as a static archive.

Compilation Process:
    1. Merge include paths, defines and compile flags of all ProbeResults
       (ordered, first occurrence wins)
    2. Compile the shim source once into an object file
    3. Archive the object into lib<name>.a
    4. Move the archive into the output directory with an atomic rename

Both intermediate files live in a private temporary directory inside the
output directory, which is removed on every exit path. The output path only
ever holds a complete archive or nothing: a failed compilation also deletes
the archive left by an earlier run.

The compiler does not cache; skipping unchanged builds is the coordinator's
job (see build_state).
"""

import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from shimbuild.config import BuildEnvironment
from shimbuild.errors import ArtifactWriteFailed, CompilationFailed
from shimbuild.packages.probe import ProbeResult, dedupe, group_flags
from shimbuild.packages.toolchain import Toolchain
from shimbuild.subprocess_utils import run_tool

from .build_profiles import BuildProfile, get_compile_flags

logger = logging.getLogger(__name__)

COMPILE_TIMEOUT = 300

_ARTIFACT_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")


class InvalidArtifactName(ValueError):
    """Raised when an artifact name cannot be used as a file name."""

    pass


def validate_artifact_name(name: str) -> str:
    """Return *name* if it is usable as an archive name.

    Raises:
        InvalidArtifactName: If name is empty or not a plain file name
    """
    if not name or not _ARTIFACT_NAME_RE.match(name):
        raise InvalidArtifactName(f"Invalid artifact name: {name!r}")
    return name


def archive_filename(name: str) -> str:
    """File name of the static archive for artifact *name*."""
    return f"lib{name}.a"


def merge_include_paths(probe_results: Sequence[ProbeResult]) -> tuple[str, ...]:
    """Ordered union of all include paths."""
    return dedupe(path for result in probe_results for path in result.include_paths)


def merge_link_flags(probe_results: Sequence[ProbeResult]) -> tuple[str, ...]:
    """Ordered union of all linker flags, keeping option/value pairs intact."""
    groups = dedupe(group for result in probe_results for group in group_flags(result.link_flags))
    return tuple(token for group in groups for token in group)


@dataclass(frozen=True)
class CompilationUnit:
    """One compiler invocation.

    Attributes:
        source: Shim source file
        artifact_name: Symbolic name of the archive (lib<name>.a)
        include_paths: Union of all probe include paths
        defines: Union of all probe defines
        cflags: Union of remaining probe compile flags (e.g. -pthread)
    """

    source: Path
    artifact_name: str
    include_paths: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    cflags: tuple[str, ...] = ()


@dataclass(frozen=True)
class BuildArtifact:
    """A produced static archive and what it needs at link time.

    Attributes:
        name: Artifact name
        path: Location of lib<name>.a
        link_flags: Union of all probe linker flags
        link_paths: Union of all probe library search paths
        libs: Union of all probe libraries
    """

    name: str
    path: Path
    link_flags: tuple[str, ...] = ()
    link_paths: tuple[str, ...] = ()
    libs: tuple[str, ...] = ()

    @property
    def directory(self) -> Path:
        return self.path.parent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "link_flags": list(self.link_flags),
            "link_paths": list(self.link_paths),
            "libs": list(self.libs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildArtifact":
        return cls(
            name=data["name"],
            path=Path(data["path"]),
            link_flags=tuple(data.get("link_flags", ())),
            link_paths=tuple(data.get("link_paths", ())),
            libs=tuple(data.get("libs", ())),
        )


class ShimCompiler:
    """Compiles a single C source into a static archive."""

    def __init__(
        self,
        toolchain: Toolchain,
        out_dir: Path,
        profile: BuildProfile = BuildProfile.RELEASE,
        env: Optional[BuildEnvironment] = None,
        extra_cflags: Sequence[str] = (),
        timeout: float = COMPILE_TIMEOUT,
    ):
        """Initialize the compiler.

        Args:
            toolchain: Resolved compiler and archiver
            out_dir: Directory receiving lib<name>.a
            profile: Build profile providing optimization flags
            env: Build environment (tool PATH and CFLAGS)
            extra_cflags: Additional flags from the command line
            timeout: Seconds allowed for each tool invocation
        """
        self.toolchain = toolchain
        self.out_dir = Path(out_dir)
        self.profile = profile
        self.env = env if env is not None else BuildEnvironment()
        self.extra_cflags = tuple(extra_cflags)
        self.timeout = timeout

    def create_unit(
        self,
        probe_results: Sequence[ProbeResult],
        source: Path,
        artifact_name: str,
    ) -> CompilationUnit:
        """Aggregate probe metadata into a CompilationUnit.

        Raises:
            InvalidArtifactName: If artifact_name is empty or not a plain file name
        """
        return CompilationUnit(
            source=Path(source),
            artifact_name=validate_artifact_name(artifact_name),
            include_paths=merge_include_paths(probe_results),
            defines=dedupe(define for result in probe_results for define in result.defines),
            cflags=tuple(
                token
                for group in dedupe(g for result in probe_results for g in group_flags(result.cflags))
                for token in group
            ),
        )

    def artifact_path(self, name: str) -> Path:
        return self.out_dir / archive_filename(name)

    def compile_flags(self, unit: CompilationUnit) -> List[str]:
        """Every flag passed to the compiler, in order."""
        flags = get_compile_flags(self.profile, list(self.env.cflags) + list(self.extra_cflags))
        flags.extend(unit.cflags)
        flags.extend(f"-D{define}" for define in unit.defines)
        flags.extend(f"-I{path}" for path in unit.include_paths)
        return flags

    def compile_command(self, unit: CompilationUnit, object_path: Path) -> List[str]:
        cmd = list(self.toolchain.cc)
        cmd.extend(self.compile_flags(unit))
        cmd.extend(["-c", str(unit.source), "-o", str(object_path)])
        return cmd

    def command_fingerprint(self, unit: CompilationUnit) -> List[str]:
        """Compile command with a stable object path, used to detect flag changes."""
        return self.compile_command(unit, Path(f"{unit.source.stem}.o")) + [self.toolchain.ar]

    def _run(self, step: str, cmd: List[str], unit: CompilationUnit) -> None:
        try:
            result = run_tool(cmd, env=self.env.tool_env(), timeout=self.timeout)
        except FileNotFoundError as e:
            raise CompilationFailed(step, str(unit.source), str(e), cmd) from e
        except subprocess.TimeoutExpired as e:
            raise CompilationFailed(step, str(unit.source), f"timed out after {self.timeout}s", cmd) from e

        if not result.ok:
            raise CompilationFailed(step, str(unit.source), result.output, cmd)

        if result.stderr:
            # Warnings are forwarded as-is
            logger.warning("%s output for %s:\n%s", step, unit.source.name, result.stderr.rstrip())

    def _remove_stale(self, path: Path) -> None:
        try:
            path.unlink()
            logger.info("Removed stale artifact %s", path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ArtifactWriteFailed(str(path), f"cannot remove stale artifact: {e}") from e

    def compile(self, unit: CompilationUnit, probe_results: Sequence[ProbeResult] = ()) -> BuildArtifact:
        """Compile *unit* and install lib<name>.a into the output directory.

        Args:
            unit: Compilation unit from create_unit()
            probe_results: Probe results whose link metadata the artifact carries

        Returns:
            BuildArtifact for the installed archive

        Raises:
            CompilationFailed: Missing/unreadable source, compiler or archiver failure
            ArtifactWriteFailed: Output directory or archive cannot be written
        """
        source = unit.source
        final_path = self.artifact_path(unit.artifact_name)

        if not source.is_file() or not os.access(source, os.R_OK):
            self._remove_stale(final_path)
            raise CompilationFailed("source", str(source), f"source file not found or not readable: {source}")

        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            tmp_dir = Path(tempfile.mkdtemp(prefix=f".{unit.artifact_name}-", dir=self.out_dir))
        except OSError as e:
            raise ArtifactWriteFailed(str(final_path), str(e)) from e

        try:
            object_path = tmp_dir / f"{source.stem}.o"
            tmp_archive = tmp_dir / archive_filename(unit.artifact_name)

            logger.info("Compiling %s", source)
            try:
                self._run("compile", self.compile_command(unit, object_path), unit)
                self._run("archive", self.toolchain.archive_command(tmp_archive, [object_path]), unit)
            except CompilationFailed:
                self._remove_stale(final_path)
                raise

            if not tmp_archive.is_file():
                self._remove_stale(final_path)
                raise ArtifactWriteFailed(str(final_path), "archiver did not produce an archive")

            try:
                os.replace(tmp_archive, final_path)
            except OSError as e:
                self._remove_stale(final_path)
                raise ArtifactWriteFailed(str(final_path), str(e)) from e
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        logger.info("Created %s", final_path)
        return self.describe_artifact(unit, probe_results)

    def describe_artifact(self, unit: CompilationUnit, probe_results: Sequence[ProbeResult]) -> BuildArtifact:
        """BuildArtifact for the archive of *unit* (compiled now or by an earlier run)."""
        return BuildArtifact(
            name=unit.artifact_name,
            path=self.artifact_path(unit.artifact_name),
            link_flags=merge_link_flags(probe_results),
            link_paths=dedupe(path for result in probe_results for path in result.link_paths),
            libs=dedupe(lib for result in probe_results for lib in result.libs),
        )
