"""
Timestamped progress output for the shimbuild CLI.

All progress lines carry the elapsed time since launch in MM:SS.cc format so
slow probes or compiles are easy to spot in build logs. Output goes to
stderr: stdout is reserved for the directives the host build system parses.

Example output:
    00:00.01 [1/3] Probing native libraries...
    00:00.03       glib-2.0 2.80.0
    00:00.05       libsquashfs1 1.3.1
    00:00.06 [2/3] Compiling shim.c...
    00:00.41       Archive: out/libshim.a (5,120 bytes)

Usage:
    from shimbuild.output import log_phase, log_detail

    log_phase(1, 3, "Probing native libraries...")
    log_detail("glib-2.0 2.80.0")
"""

import sys
import time
from pathlib import Path
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = False


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Called automatically on first log if not called explicitly.

    Args:
        output_stream: Optional output stream (defaults to sys.stderr)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """Enable or disable verbose-only messages."""
    global _verbose
    _verbose = verbose


def get_elapsed() -> float:
    """Seconds since the timer was initialized."""
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """Format the current elapsed time as MM:SS.cc."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    stream = _output_stream if _output_stream is not None else sys.stderr
    stream.write(f"{format_timestamp()} {message}\n")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """Log a message with timestamp."""
    if verbose_only and not _verbose:
        return
    _print(message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """Log a pipeline phase as ``[N/M] message``."""
    if verbose_only and not _verbose:
        return
    _print(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """Log an indented detail line."""
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_probe(name: str, version: str) -> None:
    """Log a resolved library."""
    log_detail(f"{name} {version}")


def log_artifact(path: Path, compiled: bool) -> None:
    """Log the produced (or reused) archive."""
    try:
        size = path.stat().st_size
    except OSError:
        size = 0
    state = "Archive" if compiled else "Archive (up to date)"
    log_detail(f"{state}: {path} ({size:,} bytes)")


def log_build_complete(build_time: float) -> None:
    """Log pipeline completion."""
    _print(f"Done in {build_time:.2f}s")


def log_error(message: str) -> None:
    """Log an error message."""
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """Log a warning message."""
    _print(f"WARNING: {message}")

