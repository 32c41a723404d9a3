"""Pytest configuration and shared fixtures for shimbuild tests.

Unit tests never run real tools: ``fake_registry`` stands in for pkg-config
and ``fake_tools`` for the compiler and archiver, both by patching
``run_tool`` where the module under test imported it.
"""

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from shimbuild import output
from shimbuild.subprocess_utils import ToolResult

GLIB_ENTRY = {
    "version": "2.80.0",
    "cflags": "-I/usr/include/glib-2.0 -I/usr/lib/x86_64-linux-gnu/glib-2.0/include",
    "libs": "-lglib-2.0",
    "static_libs": "-lglib-2.0 -lm -pthread -lpcre2-8",
}

SQUASHFS_ENTRY = {
    "version": "1.3.1",
    "cflags": "-I/usr/include",
    "libs": "-L/usr/lib -lsquashfs",
    "static_libs": "-L/usr/lib -lsquashfs -lz -llzma -lzstd",
}


@pytest.fixture(autouse=True)
def reset_output_module():
    """Keep progress output off the real stderr between tests."""
    yield
    output._output_stream = None
    output.set_verbose(False)


@dataclass
class FakeRegistry:
    """In-memory pkg-config replacement."""

    entries: Dict[str, Dict[str, str]] = field(default_factory=dict)
    calls: List[List[str]] = field(default_factory=list)

    def queried_names(self) -> List[str]:
        names = []
        for cmd in self.calls:
            if cmd[-1] not in names:
                names.append(cmd[-1])
        return names

    def __call__(
        self,
        cmd: List[str],
        env: Optional[dict] = None,
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        self.calls.append(list(cmd))
        name = cmd[-1]
        entry = self.entries.get(name)
        if entry is None:
            return ToolResult(
                tuple(cmd),
                1,
                "",
                f"Package {name} was not found in the pkg-config search path.\n"
                f"Perhaps you should add the directory containing `{name}.pc'\n"
                "to the PKG_CONFIG_PATH environment variable\n",
            )
        if "--modversion" in cmd:
            stdout = entry["version"]
        elif "--cflags" in cmd:
            stdout = entry["cflags"]
        elif "--static" in cmd:
            stdout = entry.get("static_libs", entry["libs"])
        else:
            stdout = entry["libs"]
        return ToolResult(tuple(cmd), 0, stdout + "\n", "")


@pytest.fixture
def fake_registry(monkeypatch):
    """Patch pkg-config with a registry holding glib-2.0 and libsquashfs1."""
    registry = FakeRegistry(
        entries={
            "glib-2.0": dict(GLIB_ENTRY),
            "libsquashfs1": dict(SQUASHFS_ENTRY),
        }
    )
    monkeypatch.setattr("shimbuild.packages.probe.run_tool", registry)
    monkeypatch.setattr(
        "shimbuild.packages.toolchain.ToolchainFinder.find_pkg_config",
        lambda self: "/usr/bin/pkg-config",
    )
    return registry


@dataclass
class FakeTools:
    """Compiler/archiver replacement that writes the files a real toolchain would."""

    compile_error: Optional[str] = None
    warnings: str = ""
    calls: List[List[str]] = field(default_factory=list)

    @property
    def compile_calls(self) -> List[List[str]]:
        return [cmd for cmd in self.calls if "-c" in cmd]

    def __call__(
        self,
        cmd: List[str],
        env: Optional[dict] = None,
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        self.calls.append(list(cmd))
        if "-c" in cmd:
            if self.compile_error is not None:
                return ToolResult(tuple(cmd), 1, "", self.compile_error)
            source = Path(cmd[cmd.index("-c") + 1])
            obj = Path(cmd[cmd.index("-o") + 1])
            obj.write_bytes(b"OBJ:" + source.read_bytes())
            return ToolResult(tuple(cmd), 0, "", self.warnings)
        archive = Path(cmd[2])
        members = b"".join(Path(p).read_bytes() for p in cmd[3:])
        archive.write_bytes(b"!<arch>\n" + members)
        return ToolResult(tuple(cmd), 0, "", "")


@pytest.fixture
def fake_tools(monkeypatch):
    """Patch compiler and archiver invocations."""
    tools = FakeTools()
    monkeypatch.setattr("shimbuild.build.compiler.run_tool", tools)
    return tools


@pytest.fixture
def shim_source(tmp_path):
    """A small shim source with one local header."""
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    (src_dir / "shim.h").write_text("int shim_answer(void);\n")
    source = src_dir / "shim.c"
    source.write_text('#include <glib.h>\n#include "shim.h"\n\nint shim_answer(void) { return 42; }\n')
    return source


@pytest.fixture
def stderr_stream(monkeypatch):
    """Capture progress output written by shimbuild.output."""
    stream = io.StringIO()
    monkeypatch.setattr(output, "_output_stream", stream)
    return stream
