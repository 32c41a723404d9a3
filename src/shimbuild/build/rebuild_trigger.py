"""Rebuild trigger declaration.

The rebuild trigger is the set of files (and environment variables) whose
change must invalidate the produced archive. It always contains the shim
source; local headers pulled in with ``#include "..."`` are followed
recursively. System headers (``#include <...>``) belong to the probed
libraries and are covered by the registry state instead.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Set

logger = logging.getLogger(__name__)

_LOCAL_INCLUDE_RE = re.compile(r'^\s*#\s*include\s*"([^"]+)"', re.MULTILINE)


@dataclass(frozen=True)
class RebuildTrigger:
    """Watched inputs of one pipeline run.

    Attributes:
        paths: Shim source first, then local headers in sorted order
        env_vars: Environment variable names that influence the build
    """

    paths: tuple[Path, ...]
    env_vars: tuple[str, ...] = ()

    @property
    def source(self) -> Path:
        return self.paths[0]

    @property
    def headers(self) -> tuple[Path, ...]:
        return self.paths[1:]


def scan_local_includes(source: Path) -> List[Path]:
    """Find local headers reachable from *source* through quoted includes.

    Only headers that exist relative to the including file are returned;
    unreadable files are skipped. The result is sorted and contains no
    duplicates.
    """
    found: Set[Path] = set()
    pending = [source]
    visited: Set[Path] = set()

    while pending:
        current = pending.pop()
        if current in visited:
            continue
        visited.add(current)

        try:
            text = current.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Cannot scan %s for includes: %s", current, e)
            continue

        for name in _LOCAL_INCLUDE_RE.findall(text):
            header = (current.parent / name).resolve()
            if header.is_file() and header not in found:
                found.add(header)
                pending.append(header)

    found.discard(source.resolve())
    return sorted(found)


def declare_trigger(source: Path, env_vars: tuple[str, ...] = (), scan_headers: bool = True) -> RebuildTrigger:
    """Build the RebuildTrigger for a shim source.

    The source path is kept as given so the directive matches what the host
    build system passed in; headers are absolute.
    """
    headers = scan_local_includes(source) if scan_headers and source.is_file() else []
    return RebuildTrigger(paths=(source, *headers), env_vars=tuple(env_vars))
