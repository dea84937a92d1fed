"""Version parsing and canary version math.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0").
Increments follow npm semantics: bumping a prerelease towards the release
it precedes drops the prerelease instead of skipping a version.
"""

from __future__ import annotations

import re

import semver

BUMPS = ("major", "minor", "patch", "premajor", "preminor", "prepatch", "prerelease")

_LOOSE_VERSION = re.compile(
    r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z.-]+))?(?:\+([0-9A-Za-z.-]+))?$"
)


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-beta.1+abc" → "1.2.3-beta.1+abc"

    Raises:
        ValueError: If the string is not a version.
    """
    match = _LOOSE_VERSION.match(version_str.strip())
    if not match:
        raise ValueError(f"{version_str!r} is not a valid version")
    major, minor, patch, prerelease, build = match.groups()
    return semver.Version(
        int(major), int(minor or 0), int(patch or 0), prerelease, build
    )


def is_prerelease(version_str: str) -> bool:
    return parse_version(version_str).prerelease is not None


def strip_tag_prefix(tag: str, prefix: str) -> str:
    """Turn a tag like "v1.2.3" or "pkg@1.2.3" into the bare version."""
    if "@" in tag[1:]:
        tag = tag.rsplit("@", 1)[1]
    if prefix and tag.startswith(prefix):
        tag = tag[len(prefix) :]
    return tag


def increment(version_str: str, part: str) -> str:
    """Increment the major, minor or patch part of a version.

    A prerelease is first promoted to the release it precedes when that
    release already satisfies the bump, the same way npm does it.

    Examples:
        increment("1.2.0", "minor") → "1.3.0"
        increment("1.3.0-alpha.2", "minor") → "1.3.0"
        increment("1.3.1-alpha.2", "minor") → "1.4.0"
    """
    v = parse_version(version_str)
    release = v.replace(prerelease=None, build=None)
    pre = v.prerelease is not None

    if part == "major":
        if pre and v.minor == 0 and v.patch == 0:
            return str(release)
        return str(release.bump_major())
    if part == "minor":
        if pre and v.patch == 0:
            return str(release)
        return str(release.bump_minor())
    if part == "patch":
        if pre:
            return str(release)
        return str(release.bump_patch())
    raise ValueError(f"Cannot increment {part!r}; expected major, minor or patch")


def canary_release_type(bump: str) -> str:
    """Map a requested bump to the prerelease type used for canaries.

    "prerelease" and "prepatch" are identical for canary purposes.

    Examples:
        "minor" → "preminor"
        "prepatch" → "prepatch"
        "prerelease" → "prepatch"
    """
    if bump not in BUMPS:
        raise ValueError(f"Unknown bump {bump!r}; expected one of {', '.join(BUMPS)}")
    if bump.startswith("pre"):
        return bump.replace("release", "patch")
    return f"pre{bump}"


def canary_version(
    last_version: str, bump: str, preid: str, ref_count: int, sha: str
) -> str:
    """Compute a canary version from the last release and commit distance.

    The increment ignores ``preid`` and any existing prerelease index. The
    prerelease number is ``ref_count - 1`` since describe counts from 1
    while a fresh prerelease starts at 0; build metadata carries the SHA.

    Example:
        canary_version("1.2.0", "minor", "alpha", 4, "abcd123")
        → "1.3.0-alpha.3+abcd123"
    """
    part = canary_release_type(bump)[len("pre") :]
    next_version = increment(last_version, part)
    return f"{next_version}-{preid}.{max(0, ref_count - 1)}+{sha}"
