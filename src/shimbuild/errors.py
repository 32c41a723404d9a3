"""Error taxonomy for the shimbuild pipeline.

Every error is fatal to a pipeline run. Components raise these and let them
propagate; the build coordinator is the only place they are turned into an
exit status and a diagnostic for the host build system.

Exit codes:
    2 - LibraryNotFound
    3 - VersionConstraintUnsatisfied
    4 - CompilationFailed
    5 - ArtifactWriteFailed
    6 - RegistryUnavailable
"""

from typing import Optional


class ShimBuildError(Exception):
    """Base class for all pipeline errors."""

    exit_code = 1

    @property
    def diagnostic(self) -> str:
        """Human readable diagnostic for the host build system."""
        return str(self)


class LibraryNotFound(ShimBuildError):
    """Raised when the registry has no entry for a library."""

    exit_code = 2

    def __init__(self, name: str, detail: str = "", headline: Optional[str] = None):
        self.name = name
        self.detail = detail
        message = headline or f"library '{name}' not found in the pkg-config registry"
        if detail:
            message += f"\n{detail.rstrip()}"
        super().__init__(message)


class RegistryUnavailable(LibraryNotFound):
    """Raised when the pkg-config executable itself cannot be run."""

    exit_code = 6

    def __init__(self, name: str, executable: str, detail: str = ""):
        self.executable = executable
        super().__init__(
            name,
            detail,
            headline=f"could not query '{name}': pkg-config executable '{executable}' is not available",
        )


class VersionConstraintUnsatisfied(ShimBuildError):
    """Raised when the resolved version violates a configured constraint."""

    exit_code = 3

    def __init__(self, name: str, required: str, found: str):
        self.name = name
        self.required = required
        self.found = found
        super().__init__(
            f"library '{name}' version {found} does not satisfy requirement {required}"
        )


class CompilationFailed(ShimBuildError):
    """Raised when compiling or archiving the shim fails.

    Attributes:
        step: Which step failed ("compile", "archive" or "source")
        source: Source file being built
        output: Raw tool output, forwarded verbatim
        command: Command line that failed, if a tool was run
    """

    exit_code = 4

    def __init__(
        self,
        step: str,
        source: str,
        output: str = "",
        command: Optional[list[str]] = None,
    ):
        self.step = step
        self.source = source
        self.output = output
        self.command = command
        message = f"{step} step failed for {source}"
        if command:
            message += f"\ncommand: {' '.join(command)}"
        if output:
            message += f"\n{output}"
        super().__init__(message)


class ArtifactWriteFailed(ShimBuildError):
    """Raised when the archive cannot be written or moved into place."""

    exit_code = 5

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"failed to write artifact {path}: {reason}")
