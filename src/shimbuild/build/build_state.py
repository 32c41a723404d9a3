"""Build state tracking for skipping unchanged compilations.

After a successful compilation the coordinator stores a fingerprint of every
input next to the archive (``.<name>.state.json``): content digests of the
watched files, the probe results, and the exact compile command. On the next
run the fingerprint is recomputed; when nothing differs and the archive is
still the one that was produced, compilation is skipped.
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shimbuild.packages.probe import ProbeResult

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def hash_file(path: Path) -> Optional[str]:
    """SHA-256 of a file's content, or None if it cannot be read."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                digest.update(chunk)
    except OSError:
        return None
    return digest.hexdigest()


@dataclass
class BuildState:
    """Fingerprint of the inputs of one compilation.

    Attributes:
        artifact_name: Name of the produced archive
        input_hashes: Digest per watched file (None if unreadable)
        probes: Serialized ProbeResults in probe order
        command: Compile command fingerprint
        archive_hash: Digest of the produced archive (set after compilation)
    """

    artifact_name: str
    input_hashes: Dict[str, Optional[str]] = field(default_factory=dict)
    probes: List[Dict[str, Any]] = field(default_factory=list)
    command: List[str] = field(default_factory=list)
    archive_hash: Optional[str] = None

    @classmethod
    def capture(
        cls,
        artifact_name: str,
        inputs: Sequence[Path],
        probe_results: Sequence[ProbeResult],
        command: Sequence[str],
    ) -> "BuildState":
        """Compute the current state from the pipeline inputs."""
        return cls(
            artifact_name=artifact_name,
            input_hashes={str(path): hash_file(path) for path in inputs},
            probes=[result.to_dict() for result in probe_results],
            command=list(command),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "artifact_name": self.artifact_name,
            "input_hashes": dict(self.input_hashes),
            "probes": list(self.probes),
            "command": list(self.command),
            "archive_hash": self.archive_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildState":
        """Rebuild a state from its JSON form.

        Raises:
            KeyError: artifact_name is missing
            TypeError: A field has the wrong shape
        """
        if not isinstance(data["artifact_name"], str):
            raise TypeError("artifact_name must be a string")
        if not isinstance(data.get("input_hashes", {}), dict):
            raise TypeError("input_hashes must be an object")
        probes = data.get("probes", [])
        if not isinstance(probes, list) or not all(isinstance(p, dict) and "name" in p for p in probes):
            raise TypeError("probes must be a list of library records")
        if not isinstance(data.get("command", []), list):
            raise TypeError("command must be a list")
        return cls(
            artifact_name=data["artifact_name"],
            input_hashes=dict(data.get("input_hashes", {})),
            probes=list(data.get("probes", [])),
            command=list(data.get("command", [])),
            archive_hash=data.get("archive_hash"),
        )

    def save(self, path: Path) -> None:
        """Write the state atomically (temp file + rename)."""
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)
        os.replace(tmp_path, path)

    @classmethod
    def load(cls, path: Path) -> Optional["BuildState"]:
        """Load a saved state; None if missing, corrupted or from another format version."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable build state %s: %s", path, e)
            return None

        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            return None
        try:
            return cls.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring malformed build state %s: %s", path, e)
            return None

    def compare(self, previous: Optional["BuildState"]) -> Tuple[bool, List[str]]:
        """Compare with a previous state.

        Returns:
            (needs_rebuild, reasons)
        """
        if previous is None:
            return True, ["No previous build state found"]

        reasons = []
        if self.artifact_name != previous.artifact_name:
            reasons.append("artifact name has changed")

        for path, digest in self.input_hashes.items():
            if path not in previous.input_hashes:
                reasons.append(f"new input: {path}")
            elif digest is None or previous.input_hashes[path] != digest:
                reasons.append(f"input has changed: {path}")
        for path in previous.input_hashes:
            if path not in self.input_hashes:
                reasons.append(f"input no longer used: {path}")

        if self.probes != previous.probes:
            old = {p.get("name"): p for p in previous.probes}
            changed = [p["name"] for p in self.probes if old.get(p["name"]) != p]
            if changed:
                reasons.append(f"library metadata has changed: {', '.join(changed)}")
            else:
                reasons.append("library set has changed")

        if self.command != previous.command:
            reasons.append("compile command has changed")

        return bool(reasons), reasons


class BuildStateTracker:
    """Loads, checks and stores the build state of one artifact."""

    def __init__(self, out_dir: Path, artifact_name: str):
        self.out_dir = Path(out_dir)
        self.artifact_name = artifact_name
        self.state_file = self.out_dir / f".{artifact_name}.state.json"

    def check(self, current: BuildState, artifact_path: Path) -> Tuple[bool, List[str]]:
        """Decide whether the artifact must be rebuilt.

        The saved state must match *current* and the archive on disk must be
        the one recorded in it.
        """
        previous = BuildState.load(self.state_file)
        if previous is None:
            return True, ["No previous build state found"]
        needs_rebuild, reasons = current.compare(previous)
        if needs_rebuild:
            return needs_rebuild, reasons

        if not artifact_path.is_file():
            return True, [f"artifact missing: {artifact_path}"]
        if previous.archive_hash is None or hash_file(artifact_path) != previous.archive_hash:
            return True, [f"artifact modified: {artifact_path}"]

        current.archive_hash = previous.archive_hash
        return False, []

    def save(self, current: BuildState, artifact_path: Path) -> None:
        """Record *current* as the state that produced *artifact_path*."""
        current.archive_hash = hash_file(artifact_path)
        try:
            current.save(self.state_file)
        except OSError as e:
            # Next run recompiles; the archive itself is already in place
            logger.warning("Could not save build state %s: %s", self.state_file, e)

    def clear(self) -> None:
        """Forget the saved state (after a failed build)."""
        for path in (self.state_file, self.state_file.with_name(self.state_file.name + ".tmp")):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove build state %s: %s", path, e)
