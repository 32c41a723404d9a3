"""Subprocess utilities for running external build tools.

Every external tool the pipeline uses (pkg-config, the C compiler, the
archiver) is launched through :func:`run_tool`. It applies the
platform-specific creation flags, detaches stdin, captures output as text,
and makes sure an interrupted build does not leave a compiler running in
the background.
"""

import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Optional

import psutil

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300


@dataclass(frozen=True)
class ToolResult:
    """Completed tool invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined raw output, stderr first (where compilers write diagnostics)."""
        parts = [part for part in (self.stderr, self.stdout) if part]
        return "".join(parts)


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def safe_popen(cmd: list[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    stdin is redirected to DEVNULL unless the caller provides it, and any
    explicit creationflags are OR'd with the platform defaults.
    """
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return subprocess.Popen(cmd, **kwargs)


def kill_process_tree(pid: int, timeout: float = 5.0) -> None:
    """Terminate a process and all of its children.

    Compiler drivers spawn cc1/as/ld children; killing only the driver would
    leave them writing into the temporary build directory.
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    procs = root.children(recursive=True) + [root]
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


def run_tool(
    cmd: list[str],
    env: Optional[dict[str, str]] = None,
    cwd: Optional[str] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> ToolResult:
    """Run an external tool to completion and capture its output.

    Args:
        cmd: Command and arguments
        env: Complete environment for the child (not merged with os.environ)
        cwd: Working directory for the child
        timeout: Seconds before the tool is killed

    Returns:
        ToolResult with the exit status and raw output

    Raises:
        FileNotFoundError: If the executable does not exist
        subprocess.TimeoutExpired: If the tool exceeded the timeout
        KeyboardInterrupt: Re-raised after the process tree was killed
    """
    logger.debug("Running: %s", " ".join(cmd))
    proc = safe_popen(
        cmd,
        env=env,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        kill_process_tree(proc.pid)
        proc.communicate()
        raise
    except KeyboardInterrupt:
        logger.warning("Interrupted, killing %s (pid %d)", cmd[0], proc.pid)
        kill_process_tree(proc.pid)
        proc.communicate()
        raise

    return ToolResult(
        command=tuple(cmd),
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
    )
