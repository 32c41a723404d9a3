"""Unit tests for logging compliance across the codebase.

Production code reports through the logging module or shimbuild.output.
print() is reserved for cli.py, because stdout carries the directives the
host build system parses and stray output there would corrupt them.
"""

import re
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).parent.parent.parent / "src" / "shimbuild"


def _source_files():
    return [p for p in SRC_DIR.rglob("*.py") if "__pycache__" not in p.parts]


class TestLoggingCompliance:
    """Test cases for logging vs print statement compliance."""

    def test_no_print_outside_cli(self):
        """Verify print() is only used in the CLI module."""
        files = _source_files()
        assert files, f"No Python files found in {SRC_DIR}"

        violations = []
        for file_path in files:
            if file_path.name == "cli.py":
                continue
            for line_num, line in enumerate(file_path.read_text(encoding="utf-8").split("\n"), start=1):
                stripped = line.strip()
                if stripped.startswith("#"):
                    continue
                if re.search(r"(?<![\w.])print\s*\(", stripped):
                    violations.append(f"{file_path}:{line_num}: {stripped}")

        if violations:
            pytest.fail("print() found outside cli.py:\n" + "\n".join(violations))

    def test_modules_with_logging_use_module_logger(self):
        """Verify modules that import logging create a module-level logger."""
        missing = []
        for file_path in _source_files():
            content = file_path.read_text(encoding="utf-8")
            if file_path.name == "cli.py" or "import logging" not in content:
                continue
            if "logger = logging.getLogger(__name__)" not in content:
                missing.append(str(file_path))

        assert missing == [], f"Modules without a module logger: {missing}"
