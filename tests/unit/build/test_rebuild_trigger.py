"""Unit tests for rebuild trigger declaration."""

from shimbuild.build.rebuild_trigger import declare_trigger, scan_local_includes


class TestScanLocalIncludes:
    def test_follows_quoted_includes_recursively(self, tmp_path):
        (tmp_path / "inc").mkdir()
        (tmp_path / "a.h").write_text('#include "inc/b.h"\n')
        (tmp_path / "inc" / "b.h").write_text('#  include "c.h"\n')
        (tmp_path / "inc" / "c.h").write_text("int c;\n")
        source = tmp_path / "shim.c"
        source.write_text('#include <stdio.h>\n#include "a.h"\n')

        headers = scan_local_includes(source)

        assert headers == sorted(
            [
                (tmp_path / "a.h").resolve(),
                (tmp_path / "inc" / "b.h").resolve(),
                (tmp_path / "inc" / "c.h").resolve(),
            ]
        )

    def test_system_includes_ignored(self, tmp_path):
        source = tmp_path / "shim.c"
        source.write_text("#include <glib.h>\n#include <squashfs/super.h>\n")
        assert scan_local_includes(source) == []

    def test_missing_header_ignored(self, tmp_path):
        source = tmp_path / "shim.c"
        source.write_text('#include "generated.h"\n')
        assert scan_local_includes(source) == []

    def test_include_cycle(self, tmp_path):
        (tmp_path / "a.h").write_text('#include "b.h"\n')
        (tmp_path / "b.h").write_text('#include "a.h"\n')
        source = tmp_path / "shim.c"
        source.write_text('#include "a.h"\n')
        assert len(scan_local_includes(source)) == 2

    def test_source_never_listed_as_header(self, tmp_path):
        source = tmp_path / "shim.c"
        source.write_text('#include "shim.c"\n')
        assert scan_local_includes(source) == []


class TestDeclareTrigger:
    def test_source_first(self, shim_source):
        trigger = declare_trigger(shim_source, env_vars=("CC",))
        assert trigger.source == shim_source
        assert trigger.headers == ((shim_source.parent / "shim.h").resolve(),)
        assert trigger.env_vars == ("CC",)

    def test_without_header_scan(self, shim_source):
        trigger = declare_trigger(shim_source, scan_headers=False)
        assert trigger.paths == (shim_source,)

    def test_missing_source_still_declared(self, tmp_path):
        source = tmp_path / "missing.c"
        trigger = declare_trigger(source)
        assert trigger.paths == (source,)
