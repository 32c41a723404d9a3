"""
Command-line interface for shimbuild.

This module provides the `shimbuild` CLI tool, meant to be called from a host
build system's build script:

    shimbuild build shim.c -l glib-2.0 -l libsquashfs1 --name shim --out-dir "$OUT_DIR"
    shimbuild probe glib-2.0 --format json

Directives go to stdout; progress and diagnostics go to stderr.
"""

import argparse
import json
import logging
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType
from typing import List, Optional

from shimbuild import __version__, output
from shimbuild.build.build_profiles import BuildProfile, format_profile_banner, parse_profile
from shimbuild.build.compiler import InvalidArtifactName
from shimbuild.build.coordinator import BuildCoordinator
from shimbuild.build.directives import FORMATTERS, format_directives
from shimbuild.config import BuildEnvironment
from shimbuild.errors import ShimBuildError
from shimbuild.packages.library_spec import InvalidLibrarySpecification, parse_specifications
from shimbuild.packages.probe import LibraryProbe
from shimbuild.packages.toolchain import ToolchainFinder
from shimbuild.packages.version import VERSION_SCHEMES, get_version_scheme

EXIT_USAGE = 1
EXIT_INTERRUPTED = 130


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    source: Path
    libs: List[str] = field(default_factory=list)
    name: Optional[str] = None
    out_dir: Optional[Path] = None
    profile: str = BuildProfile.RELEASE.value
    version_scheme: str = "pkg-config"
    static: bool = False
    cflags: List[str] = field(default_factory=list)
    format: str = "cargo"
    scan_headers: bool = True
    force: bool = False
    quiet: bool = False
    verbose: bool = False


@dataclass
class ProbeArgs:
    """Arguments for the probe command."""

    libs: List[str] = field(default_factory=list)
    static: bool = False
    version_scheme: str = "pkg-config"
    format: str = "text"
    tools: bool = False
    verbose: bool = False


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger to write to stderr."""
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    logger.handlers = [handler]


def _raise_interrupt(signum: int, frame: Optional[FrameType]) -> None:
    del signum, frame
    raise KeyboardInterrupt


def install_signal_handlers() -> None:
    """Treat SIGTERM like Ctrl-C so temporary files are cleaned up."""
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _raise_interrupt)


def _fail(message: str, code: int = EXIT_USAGE) -> None:
    print(f"error: {message}", file=sys.stderr)
    sys.exit(code)


def build_command(args: BuildArgs) -> None:
    """Probe libraries, compile the shim and print link directives.

    Examples:
        shimbuild build shim.c -l glib-2.0
        shimbuild build shim.c -l "glib-2.0>=2.56" -l libsquashfs1 -n shim -o out
        shimbuild build shim.c -l zlib --format json --profile debug
    """
    env = BuildEnvironment.capture()

    try:
        specs = parse_specifications(args.libs, statik=args.static)
        profile = parse_profile(args.profile)
        version_compare = get_version_scheme(args.version_scheme)
        out_dir = args.out_dir or env.out_dir or Path("build")
        coordinator = BuildCoordinator(
            specs=specs,
            source=args.source,
            artifact_name=args.name or args.source.stem,
            out_dir=out_dir,
            env=env,
            profile=profile,
            version_compare=version_compare,
            extra_cflags=args.cflags,
            scan_headers=args.scan_headers,
            force=args.force,
            show_progress=not args.quiet,
        )
    except (InvalidLibrarySpecification, InvalidArtifactName, ValueError) as e:
        _fail(str(e))
        return

    if args.verbose:
        output.log(f"shimbuild v{__version__}", verbose_only=True)
        output.log_detail(f"Source: {args.source}", verbose_only=True)
        output.log_detail(f"Output: {out_dir}", verbose_only=True)
        output.log_detail(format_profile_banner(profile), verbose_only=True)
        output.log_detail(f"Libraries: {', '.join(str(s) for s in specs) or '(none)'}", verbose_only=True)

    try:
        result = coordinator.run()
    except KeyboardInterrupt:
        output.log_warning("Build interrupted")
        sys.exit(EXIT_INTERRUPTED)

    for line in format_directives(result.directives, args.format):
        print(line)
    sys.stdout.flush()

    if not result.success:
        print(f"shimbuild: {result.message}", file=sys.stderr)
    sys.exit(result.exit_code)


def probe_command(args: ProbeArgs) -> None:
    """Probe libraries and print what the registry reports.

    Examples:
        shimbuild probe glib-2.0
        shimbuild probe glib-2.0 libsquashfs1 --format json
        shimbuild probe --tools
    """
    env = BuildEnvironment.capture()

    try:
        specs = parse_specifications(args.libs, statik=args.static)
        version_compare = get_version_scheme(args.version_scheme)
    except (InvalidLibrarySpecification, ValueError) as e:
        _fail(str(e))
        return

    report = {}
    if args.tools:
        report["tools"] = ToolchainFinder(env).get_tool_paths()

    probe = LibraryProbe(env, version_compare=version_compare)
    libraries = []
    try:
        for spec in specs:
            libraries.append(probe.probe(spec))
    except ShimBuildError as e:
        print(f"shimbuild: {e.diagnostic}", file=sys.stderr)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        sys.exit(EXIT_INTERRUPTED)

    if args.format == "json":
        report["libraries"] = [result.to_dict() for result in libraries]
        print(json.dumps(report, indent=2))
    else:
        for name, path in report.get("tools", {}).items():
            print(f"{name}: {path or 'not found'}")
        for result in libraries:
            print(f"{result.name} {result.version}")
            print(f"  include paths: {' '.join(result.include_paths) or '-'}")
            print(f"  link paths:    {' '.join(result.link_paths) or '-'}")
            print(f"  libs:          {' '.join(result.libs) or '-'}")
            print(f"  link flags:    {' '.join(result.link_flags) or '-'}")
            if result.defines:
                print(f"  defines:       {' '.join(result.defines)}")
    sys.exit(0)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shimbuild",
        description="Probe native libraries and compile a C shim into a static archive",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"shimbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Compile a shim against probed libraries and print link directives",
    )
    build_parser.add_argument("source", type=Path, help="Shim C source file")
    build_parser.add_argument(
        "-l",
        "--lib",
        action="append",
        dest="libs",
        default=[],
        help="Library to probe, e.g. 'glib-2.0' or 'glib-2.0>=2.56' (repeatable, probe order)",
    )
    build_parser.add_argument(
        "-n",
        "--name",
        default=None,
        help="Artifact name, produces lib<name>.a (default: source file stem)",
    )
    build_parser.add_argument(
        "-o",
        "--out-dir",
        type=Path,
        default=None,
        help="Output directory (default: $OUT_DIR or ./build)",
    )
    build_parser.add_argument(
        "--profile",
        default=BuildProfile.RELEASE.value,
        choices=[p.value for p in BuildProfile],
        help="Build profile (default: release)",
    )
    build_parser.add_argument(
        "--version-scheme",
        default="pkg-config",
        choices=sorted(VERSION_SCHEMES),
        help="How version constraints are compared (default: pkg-config)",
    )
    build_parser.add_argument(
        "--static",
        action="store_true",
        help="Request static link flags for every library",
    )
    build_parser.add_argument(
        "--cflag",
        action="append",
        dest="cflags",
        default=[],
        help="Extra compile flag (repeatable)",
    )
    build_parser.add_argument(
        "--format",
        default="cargo",
        choices=sorted(FORMATTERS),
        help="Directive format (default: cargo)",
    )
    build_parser.add_argument(
        "--no-scan-headers",
        action="store_false",
        dest="scan_headers",
        help="Only watch the source file, not its local headers",
    )
    build_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Compile even if nothing changed",
    )
    build_parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress progress output",
    )
    build_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )

    # Probe command
    probe_parser = subparsers.add_parser(
        "probe",
        help="Show what the registry reports for libraries",
    )
    probe_parser.add_argument("libs", nargs="*", default=[], help="Libraries to probe")
    probe_parser.add_argument(
        "--static",
        action="store_true",
        help="Request static link flags",
    )
    probe_parser.add_argument(
        "--version-scheme",
        default="pkg-config",
        choices=sorted(VERSION_SCHEMES),
        help="How version constraints are compared (default: pkg-config)",
    )
    probe_parser.add_argument(
        "--format",
        default="text",
        choices=["text", "json"],
        help="Output format (default: text)",
    )
    probe_parser.add_argument(
        "--tools",
        action="store_true",
        help="Also report compiler, archiver and pkg-config locations",
    )
    probe_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """shimbuild - native library probing and shim compilation."""
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging(parsed_args.verbose)
    output.set_verbose(parsed_args.verbose)
    output.init_timer()
    install_signal_handlers()

    if parsed_args.command == "build":
        args = BuildArgs(
            source=parsed_args.source,
            libs=parsed_args.libs,
            name=parsed_args.name,
            out_dir=parsed_args.out_dir,
            profile=parsed_args.profile,
            version_scheme=parsed_args.version_scheme,
            static=parsed_args.static,
            cflags=parsed_args.cflags,
            format=parsed_args.format,
            scan_headers=parsed_args.scan_headers,
            force=parsed_args.force,
            quiet=parsed_args.quiet,
            verbose=parsed_args.verbose,
        )
        build_command(args)
    elif parsed_args.command == "probe":
        args = ProbeArgs(
            libs=parsed_args.libs,
            static=parsed_args.static,
            version_scheme=parsed_args.version_scheme,
            format=parsed_args.format,
            tools=parsed_args.tools,
            verbose=parsed_args.verbose,
        )
        probe_command(args)


if __name__ == "__main__":
    main()
