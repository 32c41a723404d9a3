"""
Build pipeline components for shimbuild.

This package provides:
- Shim compilation and archiving (ShimCompiler)
- Build profiles
- Build state tracking (skip unchanged compilations)
- Rebuild trigger declaration
- Link directive formatting
- Pipeline coordination (BuildCoordinator)
"""

from .build_profiles import BuildProfile, get_profile
from .build_state import BuildState, BuildStateTracker
from .compiler import BuildArtifact, CompilationUnit, InvalidArtifactName, ShimCompiler
from .coordinator import BuildCoordinator, PipelineResult, PipelineState
from .directives import Directive, DirectiveKind, build_directives, format_directives
from .rebuild_trigger import RebuildTrigger, declare_trigger

__all__ = [
    "BuildProfile",
    "get_profile",
    "BuildState",
    "BuildStateTracker",
    "BuildArtifact",
    "CompilationUnit",
    "InvalidArtifactName",
    "ShimCompiler",
    "BuildCoordinator",
    "PipelineResult",
    "PipelineState",
    "Directive",
    "DirectiveKind",
    "build_directives",
    "format_directives",
    "RebuildTrigger",
    "declare_trigger",
]
