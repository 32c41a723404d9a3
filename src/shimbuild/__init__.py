"""shimbuild - build-time native library probing and C shim compilation.

Locates system libraries through pkg-config, compiles a hand-written C shim
against them into a static archive, and tells the host build system how to
link it.
"""

from shimbuild.build.coordinator import BuildCoordinator, PipelineResult, PipelineState
from shimbuild.config import BuildEnvironment
from shimbuild.errors import (
    ArtifactWriteFailed,
    CompilationFailed,
    LibraryNotFound,
    RegistryUnavailable,
    ShimBuildError,
    VersionConstraintUnsatisfied,
)
from shimbuild.packages.library_spec import LibrarySpecification

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "BuildCoordinator",
    "PipelineResult",
    "PipelineState",
    "BuildEnvironment",
    "LibrarySpecification",
    "ShimBuildError",
    "LibraryNotFound",
    "RegistryUnavailable",
    "VersionConstraintUnsatisfied",
    "CompilationFailed",
    "ArtifactWriteFailed",
]
