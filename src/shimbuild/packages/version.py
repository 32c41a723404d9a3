"""Version comparison schemes.

Version constraints on native libraries are checked through a pluggable
comparison function ``compare(a, b) -> int`` (negative, zero or positive,
like the old ``cmp``). Two schemes are provided:

    pkg-config  Segment-wise ordering used by pkg-config itself
                (``--atleast-version``): digits and letters are split into
                segments, numeric segments compare as integers and outrank
                alphabetic ones, and a longer version wins a tie.
    semver      major.minor.patch ordering where a pre-release suffix sorts
                before the plain release.
"""

import re
from typing import Callable, Dict

VersionCompare = Callable[[str, str], int]

_SEGMENT_RE = re.compile(r"\d+|[A-Za-z]+")
_SEMVER_RE = re.compile(r"^\s*v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?")


class UnknownVersionScheme(ValueError):
    """Raised when a version scheme name is not registered."""

    pass


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_versions(a: str, b: str) -> int:
    """Compare two versions the way pkg-config does."""
    if a == b:
        return 0

    segs_a = _SEGMENT_RE.findall(a)
    segs_b = _SEGMENT_RE.findall(b)

    for seg_a, seg_b in zip(segs_a, segs_b):
        a_num = seg_a.isdigit()
        b_num = seg_b.isdigit()
        if a_num != b_num:
            # numeric segments are newer than alphabetic ones
            return 1 if a_num else -1
        if a_num:
            result = _cmp(int(seg_a), int(seg_b))
        else:
            result = _cmp(seg_a, seg_b)
        if result:
            return result

    return _cmp(len(segs_a), len(segs_b))


def compare_semver(a: str, b: str) -> int:
    """Compare two versions as semantic versions.

    Missing minor/patch components count as zero. Versions that do not start
    with a number fall back to pkg-config ordering.
    """
    match_a = _SEMVER_RE.match(a)
    match_b = _SEMVER_RE.match(b)
    if match_a is None or match_b is None:
        return compare_versions(a, b)

    core_a = tuple(int(part or 0) for part in match_a.group(1, 2, 3))
    core_b = tuple(int(part or 0) for part in match_b.group(1, 2, 3))
    result = _cmp(core_a, core_b)
    if result:
        return result

    pre_a = match_a.group(4)
    pre_b = match_b.group(4)
    if pre_a == pre_b:
        return 0
    if pre_a is None:
        return 1
    if pre_b is None:
        return -1
    return compare_versions(pre_a, pre_b)


VERSION_SCHEMES: Dict[str, VersionCompare] = {
    "pkg-config": compare_versions,
    "semver": compare_semver,
}


def get_version_scheme(name: str) -> VersionCompare:
    """Look up a version comparison function by name.

    Raises:
        UnknownVersionScheme: If no scheme with that name exists
    """
    try:
        return VERSION_SCHEMES[name]
    except KeyError:
        known = ", ".join(sorted(VERSION_SCHEMES))
        raise UnknownVersionScheme(f"Unknown version scheme '{name}' (known: {known})") from None
