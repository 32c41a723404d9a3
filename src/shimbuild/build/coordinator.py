"""
Build coordination for shimbuild.

The coordinator runs the pipeline once per build invocation:

    IDLE -> PROBING -> {PROBE_FAILED | COMPILING}
         -> {COMPILE_FAILED | COMPILED} -> REPORTING -> DONE

1. Declare the rebuild trigger (always, whatever the outcome)
2. Probe every library in configured order, stopping at the first failure
3. Compile the shim, or reuse the archive when the build state is unchanged
4. Translate the artifact into directives for the host build system

It is the only component that turns pipeline errors into a result with an
exit code; everything below it raises.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from shimbuild import output
from shimbuild.config import BuildEnvironment
from shimbuild.errors import CompilationFailed, ShimBuildError
from shimbuild.packages.library_spec import LibrarySpecification
from shimbuild.packages.probe import LibraryProbe, ProbeResult
from shimbuild.packages.toolchain import Toolchain, ToolchainFinder, ToolNotFoundError
from shimbuild.packages.version import VersionCompare, compare_versions

from .build_profiles import BuildProfile
from .build_state import BuildState, BuildStateTracker
from .compiler import BuildArtifact, ShimCompiler, archive_filename, validate_artifact_name
from .directives import Directive, build_directives
from .rebuild_trigger import RebuildTrigger, declare_trigger

logger = logging.getLogger(__name__)

TOTAL_PHASES = 3


class PipelineState(Enum):
    """States of one pipeline run."""

    IDLE = "idle"
    PROBING = "probing"
    PROBE_FAILED = "probe_failed"
    COMPILING = "compiling"
    COMPILED = "compiled"
    COMPILE_FAILED = "compile_failed"
    REPORTING = "reporting"
    DONE = "done"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.PROBE_FAILED, PipelineState.COMPILE_FAILED, PipelineState.DONE)


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    success: bool
    state: PipelineState
    trigger: RebuildTrigger
    directives: List[Directive]
    artifact: Optional[BuildArtifact] = None
    probe_results: List[ProbeResult] = field(default_factory=list)
    error: Optional[ShimBuildError] = None
    compiled: bool = False
    build_time: float = 0.0
    states: List[PipelineState] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.success:
            return 0
        return self.error.exit_code if self.error is not None else 1

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.diagnostic
        if self.artifact is not None:
            return f"Built {self.artifact.path}"
        return ""


class BuildCoordinator:
    """Sequences probe -> compile -> report for one shim."""

    def __init__(
        self,
        specs: Sequence[LibrarySpecification],
        source: Path,
        artifact_name: str,
        out_dir: Path,
        env: Optional[BuildEnvironment] = None,
        profile: BuildProfile = BuildProfile.RELEASE,
        version_compare: VersionCompare = compare_versions,
        extra_cflags: Sequence[str] = (),
        toolchain: Optional[Toolchain] = None,
        scan_headers: bool = True,
        force: bool = False,
        show_progress: bool = False,
    ):
        """Initialize the coordinator.

        Args:
            specs: Libraries to probe, in probe order
            source: Shim C source file
            artifact_name: Archive name (produces lib<name>.a)
            out_dir: Directory receiving the archive and its build state
            env: Captured build environment (captured from os.environ if None)
            profile: Build profile for the compile step
            version_compare: Version comparison scheme for constraints
            extra_cflags: Additional compile flags
            toolchain: Pre-resolved toolchain (discovered on PATH if None)
            scan_headers: Whether local headers join the rebuild trigger
            force: Compile even if the build state is unchanged
            show_progress: Print timestamped progress to stderr

        Raises:
            InvalidArtifactName: If artifact_name is not a plain file name
        """
        validate_artifact_name(artifact_name)

        self.specs = tuple(specs)
        self.source = Path(source)
        self.artifact_name = artifact_name
        self.out_dir = Path(out_dir)
        self.artifact_path = self.out_dir / archive_filename(artifact_name)
        self.env = env if env is not None else BuildEnvironment.capture()
        self.profile = profile
        self.extra_cflags = tuple(extra_cflags)
        self.toolchain = toolchain
        self.scan_headers = scan_headers
        self.force = force
        self.show_progress = show_progress

        self.probe = LibraryProbe(self.env, version_compare=version_compare)
        self.tracker = BuildStateTracker(self.out_dir, artifact_name)
        self.state = PipelineState.IDLE
        self.states: List[PipelineState] = [PipelineState.IDLE]

    def _transition(self, state: PipelineState) -> None:
        logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state
        self.states.append(state)

    def _result(
        self,
        trigger: RebuildTrigger,
        start_time: float,
        probe_results: List[ProbeResult],
        artifact: Optional[BuildArtifact] = None,
        error: Optional[ShimBuildError] = None,
        compiled: bool = False,
    ) -> PipelineResult:
        if error is not None:
            logger.error("%s", error.diagnostic)
            if self.show_progress:
                output.log_error(error.diagnostic)
        return PipelineResult(
            success=error is None,
            state=self.state,
            trigger=trigger,
            directives=build_directives(trigger, artifact),
            artifact=artifact,
            probe_results=probe_results,
            error=error,
            compiled=compiled,
            build_time=time.time() - start_time,
            states=list(self.states),
        )

    def declare_trigger(self) -> RebuildTrigger:
        return declare_trigger(
            self.source,
            env_vars=self.env.influencing_vars(self.specs),
            scan_headers=self.scan_headers,
        )

    def _remove_artifact(self) -> None:
        """Delete lib<name>.a left over from an earlier successful build."""
        try:
            self.artifact_path.unlink()
            logger.info("Removed stale artifact %s", self.artifact_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove stale artifact %s: %s", self.artifact_path, e)

    def _create_compiler(self) -> ShimCompiler:
        toolchain = self.toolchain
        if toolchain is None:
            try:
                toolchain = ToolchainFinder(self.env).find()
            except ToolNotFoundError as e:
                raise CompilationFailed("toolchain", str(self.source), str(e)) from e
        return ShimCompiler(
            toolchain,
            self.out_dir,
            profile=self.profile,
            env=self.env,
            extra_cflags=self.extra_cflags,
        )

    def run(self) -> PipelineResult:
        """Run the whole pipeline once.

        Returns:
            PipelineResult; never raises pipeline errors (KeyboardInterrupt propagates)
        """
        start_time = time.time()
        trigger = self.declare_trigger()
        probe_results: List[ProbeResult] = []

        # Probing
        self._transition(PipelineState.PROBING)
        if self.show_progress:
            output.log_phase(1, TOTAL_PHASES, "Probing native libraries...")
        for spec in self.specs:
            try:
                result = self.probe.probe(spec)
            except ShimBuildError as e:
                self._transition(PipelineState.PROBE_FAILED)
                return self._result(trigger, start_time, probe_results, error=e)
            probe_results.append(result)
            if self.show_progress:
                output.log_probe(result.name, result.version)

        # Compiling
        self._transition(PipelineState.COMPILING)
        if self.show_progress:
            output.log_phase(2, TOTAL_PHASES, f"Compiling {self.source.name}...")
        try:
            artifact, compiled = self._compile(trigger, probe_results)
        except ShimBuildError as e:
            self.tracker.clear()
            self._remove_artifact()
            self._transition(PipelineState.COMPILE_FAILED)
            return self._result(trigger, start_time, probe_results, error=e)
        self._transition(PipelineState.COMPILED)
        if self.show_progress:
            output.log_artifact(artifact.path, compiled)

        # Reporting
        self._transition(PipelineState.REPORTING)
        if self.show_progress:
            output.log_phase(3, TOTAL_PHASES, "Emitting link directives...")
        result = self._result(trigger, start_time, probe_results, artifact=artifact, compiled=compiled)
        self._transition(PipelineState.DONE)
        result.state = self.state
        result.states = list(self.states)
        if self.show_progress:
            output.log_build_complete(result.build_time)
        return result

    def _compile(self, trigger: RebuildTrigger, probe_results: List[ProbeResult]) -> tuple[BuildArtifact, bool]:
        compiler = self._create_compiler()
        unit = compiler.create_unit(probe_results, self.source, self.artifact_name)

        current = BuildState.capture(
            self.artifact_name,
            trigger.paths,
            probe_results,
            compiler.command_fingerprint(unit),
        )

        if not self.force:
            needs_rebuild, reasons = self.tracker.check(current, self.artifact_path)
            if not needs_rebuild:
                logger.info("%s is up to date, skipping compilation", self.artifact_path)
                return compiler.describe_artifact(unit, probe_results), False
            for reason in reasons:
                logger.info("Rebuilding %s: %s", self.artifact_name, reason)

        artifact = compiler.compile(unit, probe_results)
        self.tracker.save(current, artifact.path)
        return artifact, True
