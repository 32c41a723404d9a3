"""Build environment configuration.

The pipeline never reads ``os.environ`` while it runs. Instead the variables
that influence the pkg-config registry and the toolchain are captured once
into a frozen :class:`BuildEnvironment` record, which is passed explicitly to
every component. This keeps a probe a pure function of its inputs.

Recognized variables:
    PKG_CONFIG              pkg-config executable override
    PKG_CONFIG_PATH         extra registry search directories
    PKG_CONFIG_LIBDIR       replaces the default registry search directories
    PKG_CONFIG_SYSROOT_DIR  sysroot prefix applied by pkg-config
    PKG_CONFIG_ALL_STATIC   request static link flags for every library
    <NAME>_NO_PKG_CONFIG    disable probing for one library
    CC, AR                  compiler and archiver overrides
    CFLAGS                  extra compile flags
    OUT_DIR                 default output directory
    PATH                    used to locate tools
    HOME, TMPDIR, SDKROOT   passed through to the compiler and archiver,
                            together with every CCACHE_* variable
"""

import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

if TYPE_CHECKING:
    from shimbuild.packages.library_spec import LibrarySpecification


# Registry variables, exported to every pkg-config invocation when set
REGISTRY_VARS = (
    "PKG_CONFIG_PATH",
    "PKG_CONFIG_LIBDIR",
    "PKG_CONFIG_SYSROOT_DIR",
)

# Variables whose change must invalidate a previous build
TOOL_VARS = (
    "PKG_CONFIG",
    "PKG_CONFIG_ALL_STATIC",
    "CC",
    "AR",
    "CFLAGS",
)

# Passed through unchanged to the compiler and archiver when set
TOOL_PASSTHROUGH_VARS = (
    "HOME",
    "USER",
    "LOGNAME",
    "TMPDIR",
    "TEMP",
    "TMP",
    "SDKROOT",
    "MACOSX_DEPLOYMENT_TARGET",
)

_CCACHE_PREFIX = "CCACHE_"

_NO_PKG_CONFIG_SUFFIX = "_NO_PKG_CONFIG"


def no_pkg_config_var(name: str) -> str:
    """Return the opt-out variable name for a library (e.g. GLIB_2_0_NO_PKG_CONFIG)."""
    return re.sub(r"[^A-Za-z0-9]", "_", name).upper() + _NO_PKG_CONFIG_SUFFIX


@dataclass(frozen=True)
class BuildEnvironment:
    """Immutable snapshot of the environment variables the pipeline uses.

    Attributes:
        pkg_config: pkg-config executable name or path
        registry: Registry search variables (PKG_CONFIG_PATH and friends)
        all_static: Whether every library should be linked statically
        disabled: Library opt-out variables that were set (NAME_NO_PKG_CONFIG)
        cc: Compiler override, if any
        ar: Archiver override, if any
        cflags: Extra compile flags from CFLAGS
        out_dir: Default output directory from OUT_DIR
        path: Tool search PATH
        passthrough: Variables handed to compiler and archiver as-is
    """

    pkg_config: str = "pkg-config"
    registry: tuple[tuple[str, str], ...] = ()
    all_static: bool = False
    disabled: frozenset[str] = field(default_factory=frozenset)
    cc: Optional[str] = None
    ar: Optional[str] = None
    cflags: tuple[str, ...] = ()
    out_dir: Optional[Path] = None
    path: str = ""
    passthrough: tuple[tuple[str, str], ...] = ()

    @classmethod
    def capture(cls, environ: Optional[Mapping[str, str]] = None) -> "BuildEnvironment":
        """Capture a BuildEnvironment from a mapping (defaults to os.environ)."""
        if environ is None:
            environ = os.environ

        registry = tuple(
            (key, environ[key]) for key in REGISTRY_VARS if environ.get(key) is not None
        )
        disabled = frozenset(
            key for key, value in environ.items() if key.endswith(_NO_PKG_CONFIG_SUFFIX) and value
        )
        passthrough = tuple(
            (key, environ[key]) for key in TOOL_PASSTHROUGH_VARS if environ.get(key) is not None
        ) + tuple(sorted((key, value) for key, value in environ.items() if key.startswith(_CCACHE_PREFIX)))
        out_dir = environ.get("OUT_DIR")

        return cls(
            pkg_config=environ.get("PKG_CONFIG") or "pkg-config",
            registry=registry,
            all_static=_truthy(environ.get("PKG_CONFIG_ALL_STATIC")),
            disabled=disabled,
            cc=environ.get("CC") or None,
            ar=environ.get("AR") or None,
            cflags=tuple(shlex.split(environ.get("CFLAGS", ""))),
            out_dir=Path(out_dir) if out_dir else None,
            path=environ.get("PATH", os.defpath),
            passthrough=passthrough,
        )

    def registry_env(self) -> dict[str, str]:
        """Return the complete env dict for a pkg-config subprocess.

        System include and library directories are not filtered out so that
        every probe reports where its headers actually live.
        """
        env = {
            "PATH": self.path,
            "LC_ALL": "C",
            "PKG_CONFIG_ALLOW_SYSTEM_CFLAGS": "1",
            "PKG_CONFIG_ALLOW_SYSTEM_LIBS": "1",
        }
        env.update(dict(self.registry))
        return env

    def tool_env(self) -> dict[str, str]:
        """Return the env dict for compiler and archiver subprocesses.

        Captured passthrough variables (HOME, TMPDIR, SDKROOT, CCACHE_*) are
        included. Locale and archive timestamps stay pinned.
        """
        env = dict(self.passthrough)
        env.update(
            {
                "PATH": self.path,
                "LC_ALL": "C",
                "ZERO_AR_DATE": "1",
            }
        )
        return env

    def is_disabled(self, name: str) -> bool:
        """True if probing for *name* was disabled via NAME_NO_PKG_CONFIG."""
        return no_pkg_config_var(name) in self.disabled

    def influencing_vars(self, specs: Iterable["LibrarySpecification"] = ()) -> tuple[str, ...]:
        """Names of the variables whose change must trigger a rebuild."""
        names = list(REGISTRY_VARS) + list(TOOL_VARS)
        names.extend(no_pkg_config_var(spec.name) for spec in specs)
        return tuple(names)


def _truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() not in ("", "0", "false", "no")
