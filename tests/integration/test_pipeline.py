"""End-to-end pipeline tests against the real pkg-config, C compiler and archiver.

Each test builds a private pkg-config registry (PKG_CONFIG_LIBDIR points at a
temporary directory of .pc files) so results do not depend on what the host
has installed.
"""

import os
import shutil
import sys
from pathlib import Path

import pytest

from shimbuild.build.coordinator import BuildCoordinator, PipelineState
from shimbuild.build.directives import DirectiveKind, format_cargo
from shimbuild.config import BuildEnvironment
from shimbuild.errors import CompilationFailed, LibraryNotFound
from shimbuild.packages.library_spec import parse_specifications

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not (shutil.which("pkg-config") or shutil.which("pkgconf")) or not shutil.which("cc") or not shutil.which("ar"),
        reason="requires pkg-config, cc and ar on PATH",
    ),
]

PC_TEMPLATE = """prefix={prefix}
includedir=${{prefix}}/include
libdir=${{prefix}}/lib

Name: {name}
Description: Test registry entry for {name}
Version: {version}
Libs: -L${{libdir}} -l{lib}
Cflags: -I${{includedir}}/{subdir}
"""

SHIM_SOURCE = """#include <glib.h>
#include <squashfs.h>
#include "shim.h"

int shim_version(void) { return FAKE_GLIB_MAJOR * 100 + FAKE_SQFS_MAJOR; }
"""


def add_library(registry: Path, prefix: Path, name: str, version: str, lib: str, subdir: str, header: str) -> None:
    include_dir = prefix / "include" / subdir
    include_dir.mkdir(parents=True, exist_ok=True)
    (include_dir / header[0]).write_text(header[1])
    (prefix / "lib").mkdir(parents=True, exist_ok=True)
    (registry / f"{name}.pc").write_text(
        PC_TEMPLATE.format(prefix=prefix, name=name, version=version, lib=lib, subdir=subdir)
    )


@pytest.fixture
def registry(tmp_path):
    directory = tmp_path / "registry"
    directory.mkdir()
    prefix = tmp_path / "prefix"
    add_library(directory, prefix, "glib-2.0", "2.80.0", "glib-2.0", "glib-2.0", ("glib.h", "#define FAKE_GLIB_MAJOR 2\n"))
    add_library(
        directory, prefix, "libsquashfs1", "1.3.1", "squashfs", "squashfs", ("squashfs.h", "#define FAKE_SQFS_MAJOR 1\n")
    )
    return directory


@pytest.fixture
def env(registry):
    return BuildEnvironment.capture({"PATH": os.environ["PATH"], "PKG_CONFIG_LIBDIR": str(registry)})


@pytest.fixture
def source(tmp_path):
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    (src_dir / "shim.h").write_text("int shim_version(void);\n")
    path = src_dir / "shim.c"
    path.write_text(SHIM_SOURCE)
    return path


def coordinator(env, source, out_dir, libs=("glib-2.0", "libsquashfs1"), **kwargs):
    return BuildCoordinator(
        specs=parse_specifications(libs),
        source=source,
        artifact_name="shim",
        out_dir=out_dir,
        env=env,
        **kwargs,
    )


def test_build_against_registry(env, source, tmp_path):
    """Both libraries resolve, the shim compiles and link flags are reported."""
    out_dir = tmp_path / "out"
    result = coordinator(env, source, out_dir).run()

    assert result.success, result.message
    assert result.exit_code == 0
    archive = out_dir / "libshim.a"
    assert archive.read_bytes().startswith(b"!<arch>\n")
    assert result.artifact.libs == ("glib-2.0", "squashfs")
    lines = format_cargo(result.directives)
    assert f"cargo::rustc-link-search=native={out_dir}" in lines
    assert "cargo::rustc-link-lib=static=shim" in lines
    assert "cargo::rustc-link-lib=glib-2.0" in lines


def test_single_library(env, tmp_path):
    """A shim needing only glib builds against glib alone."""
    path = tmp_path / "glib_only.c"
    path.write_text("#include <glib.h>\nint answer(void) { return FAKE_GLIB_MAJOR; }\n")
    result = coordinator(env, path, tmp_path / "out", libs=("glib-2.0",)).run()

    assert result.success, result.message
    assert result.artifact.link_flags


def test_missing_library(env, source, tmp_path):
    """An unknown library fails before any compilation and names the library."""
    out_dir = tmp_path / "out"
    result = coordinator(env, source, out_dir, libs=("libsquashfs1-missing",)).run()

    assert not result.success
    assert isinstance(result.error, LibraryNotFound)
    assert "libsquashfs1-missing" in result.message
    assert result.state is PipelineState.PROBE_FAILED
    assert not (out_dir / "libshim.a").exists()


def test_fail_fast_order(env, source, tmp_path):
    result = coordinator(env, source, tmp_path / "out", libs=("nope-1", "glib-2.0")).run()
    assert "nope-1" in result.message
    assert result.probe_results == []


def test_version_constraint(env, source, tmp_path):
    result = coordinator(env, source, tmp_path / "out", libs=("glib-2.0 >= 2.90", "libsquashfs1")).run()
    assert result.exit_code == 3


def test_syntax_error_leaves_no_artifact(env, source, tmp_path):
    """A broken shim reports the compiler's own diagnostic and removes the old archive."""
    out_dir = tmp_path / "out"
    assert coordinator(env, source, out_dir).run().success

    source.write_text(SHIM_SOURCE + "\nint broken( { return }\n")
    result = coordinator(env, source, out_dir).run()

    assert not result.success
    assert isinstance(result.error, CompilationFailed)
    assert result.exit_code == 4
    assert "error" in result.error.output
    assert result.error.output in result.message
    assert not (out_dir / "libshim.a").exists()
    assert [p for p in out_dir.iterdir() if p.name.startswith(".shim-")] == []


def test_unchanged_inputs_skip_compilation(env, source, tmp_path):
    out_dir = tmp_path / "out"
    first = coordinator(env, source, out_dir).run()
    mtime = (out_dir / "libshim.a").stat().st_mtime_ns

    second = coordinator(env, source, out_dir).run()

    assert first.compiled
    assert not second.compiled
    assert second.directives == first.directives
    assert (out_dir / "libshim.a").stat().st_mtime_ns == mtime


def test_header_change_triggers_rebuild(env, source, tmp_path):
    out_dir = tmp_path / "out"
    first = coordinator(env, source, out_dir).run()
    assert str((source.parent / "shim.h").resolve()) in [
        d.value for d in first.directives if d.kind is DirectiveKind.RERUN_IF_CHANGED
    ]

    (source.parent / "shim.h").write_text("int shim_version(void);\nint shim_extra(void);\n")
    assert coordinator(env, source, out_dir).run().compiled


@pytest.mark.skipif(sys.platform == "darwin", reason="Apple ar has no deterministic mode")
def test_forced_rebuild_is_byte_identical(env, source, tmp_path):
    out_dir = tmp_path / "out"
    coordinator(env, source, out_dir).run()
    first = (out_dir / "libshim.a").read_bytes()

    result = coordinator(env, source, out_dir, force=True).run()

    assert result.compiled
    assert (out_dir / "libshim.a").read_bytes() == first
