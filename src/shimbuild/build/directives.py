"""Link directives for the host build system.

The coordinator describes its outcome as a sequence of :class:`Directive`
records; a formatter renders them in the vocabulary of a particular host
build system.

Formats:
    cargo   One ``cargo::<key>=<value>`` line per directive
    json    A single JSON document listing every directive
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from shimbuild.packages.probe import group_flags

from .compiler import BuildArtifact
from .rebuild_trigger import RebuildTrigger


class DirectiveKind(Enum):
    """Kinds of instructions passed to the host build system."""

    RERUN_IF_CHANGED = "rerun-if-changed"
    RERUN_IF_ENV_CHANGED = "rerun-if-env-changed"
    LINK_SEARCH = "link-search"
    LINK_LIB = "link-lib"
    LINK_ARG = "link-arg"


@dataclass(frozen=True)
class Directive:
    """One instruction for the host build system.

    Attributes:
        kind: What the host should do
        value: Path, variable name, library name or flag
        modifier: Optional qualifier ("native" for search paths, "static" for libraries)
    """

    kind: DirectiveKind
    value: str
    modifier: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"kind": self.kind.value, "value": self.value, "modifier": self.modifier}


def trigger_directives(trigger: RebuildTrigger) -> List[Directive]:
    """Directives declaring the rebuild trigger."""
    directives = [Directive(DirectiveKind.RERUN_IF_CHANGED, str(path)) for path in trigger.paths]
    directives.extend(Directive(DirectiveKind.RERUN_IF_ENV_CHANGED, var) for var in trigger.env_vars)
    return directives


def link_directives(artifact: BuildArtifact) -> List[Directive]:
    """Directives for linking the archive and its native dependencies.

    The archive itself comes first so its undefined symbols resolve against
    the libraries that follow.
    """
    directives = [
        Directive(DirectiveKind.LINK_SEARCH, str(artifact.directory), "native"),
        Directive(DirectiveKind.LINK_LIB, artifact.name, "static"),
    ]
    directives.extend(Directive(DirectiveKind.LINK_SEARCH, path, "native") for path in artifact.link_paths)
    directives.extend(Directive(DirectiveKind.LINK_LIB, lib) for lib in artifact.libs)

    for group in group_flags(artifact.link_flags):
        if not _covered_by_search_or_lib(group):
            directives.extend(Directive(DirectiveKind.LINK_ARG, part) for part in group)
    return directives


def _covered_by_search_or_lib(group: tuple[str, ...]) -> bool:
    """True for -L/-l flags, which are already emitted as link-search/link-lib."""
    head = group[0]
    if head == "-L" and len(group) == 2:
        return True
    return len(group) == 1 and head[:2] in ("-L", "-l") and len(head) > 2


def build_directives(trigger: RebuildTrigger, artifact: Optional[BuildArtifact]) -> List[Directive]:
    """All directives for one pipeline run; link directives only on success."""
    directives = trigger_directives(trigger)
    if artifact is not None:
        directives.extend(link_directives(artifact))
    return directives


_CARGO_KEYS = {
    DirectiveKind.RERUN_IF_CHANGED: "rerun-if-changed",
    DirectiveKind.RERUN_IF_ENV_CHANGED: "rerun-if-env-changed",
    DirectiveKind.LINK_SEARCH: "rustc-link-search",
    DirectiveKind.LINK_LIB: "rustc-link-lib",
    DirectiveKind.LINK_ARG: "rustc-link-arg",
}


def format_cargo(directives: Sequence[Directive]) -> List[str]:
    """Render directives as cargo build script instructions."""
    lines = []
    for directive in directives:
        value = f"{directive.modifier}={directive.value}" if directive.modifier else directive.value
        lines.append(f"cargo::{_CARGO_KEYS[directive.kind]}={value}")
    return lines


def format_json(directives: Sequence[Directive]) -> List[str]:
    """Render directives as a single JSON document."""
    return [json.dumps({"directives": [d.to_dict() for d in directives]}, indent=2)]


FORMATTERS: Dict[str, Callable[[Sequence[Directive]], List[str]]] = {
    "cargo": format_cargo,
    "json": format_json,
}


def format_directives(directives: Iterable[Directive], fmt: str = "cargo") -> List[str]:
    """Render directives in the named format.

    Raises:
        ValueError: If the format is unknown
    """
    try:
        formatter = FORMATTERS[fmt]
    except KeyError:
        raise ValueError(f"Unknown directive format '{fmt}' (known: {', '.join(sorted(FORMATTERS))})") from None
    return formatter(list(directives))
