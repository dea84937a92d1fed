"""Dependency specifier handling.

Classifies the specifiers a manifest uses for sibling packages and
rewrites them to concrete version ranges before publish, since a registry
cannot resolve "file:../sibling" style links.
"""

from __future__ import annotations

from collections.abc import Sequence
from fnmatch import fnmatch
from pathlib import Path

from .graph import DependencyGraph
from .models import DependencyKind, ReleaseSet

DEFAULT_LINK_PROTOCOLS = ("file:", "link:")


def save_prefix(exact: bool) -> str:
    """Range prefix for rewritten dependencies: "" when exact, else "^"."""
    return "" if exact else "^"


def link_target(raw: str, link_protocols: Sequence[str] = DEFAULT_LINK_PROTOCOLS) -> str | None:
    """Return the path of a local link specifier, or None for other specs.

    Examples:
        "file:../core" → "../core"
        "^1.0.0" → None
    """
    for protocol in link_protocols:
        if raw.startswith(protocol):
            return raw[len(protocol) :]
    return None


def classify_specifier(
    raw: str,
    *,
    package_location: Path,
    sibling_location: Path | None,
    link_protocols: Sequence[str] = DEFAULT_LINK_PROTOCOLS,
    preserve_specifiers: Sequence[str] = (),
) -> DependencyKind:
    """Decide how a dependency specifier is handled at publish time.

    - PRESERVED: matches a ``preserve_specifiers`` glob, or is a link that
      does not land on the sibling package's directory. Left untouched.
    - DIRECTORY: a link to the sibling package's directory. Rewritten.
    - REGISTRY: anything else (a version range, a tag, a URL).

    Args:
        raw: Specifier as written in the manifest.
        package_location: Directory of the package declaring the dependency.
        sibling_location: Directory of the workspace package with the
            dependency's name, or None if there is none.
        link_protocols: Prefixes that mark a local directory link.
        preserve_specifiers: Glob patterns of specifiers to keep as-is.
    """
    if any(fnmatch(raw, pattern) for pattern in preserve_specifiers):
        return DependencyKind.PRESERVED

    target = link_target(raw, link_protocols)
    if target is None:
        return DependencyKind.REGISTRY

    if sibling_location is not None:
        if (package_location / target).resolve() == sibling_location.resolve():
            return DependencyKind.DIRECTORY
    return DependencyKind.PRESERVED


def resolve_local_links(
    graph: DependencyGraph, release_set: ReleaseSet, prefix: str
) -> dict[str, dict[str, str]]:
    """Rewrite local directory links of released packages to version ranges.

    The range targets the dependency's new version when it is part of this
    release, otherwise its current version in the graph. Each manifest
    section is handled on its own: a link in devDependencies is rewritten
    even when dependencies names the same package with a range, and a
    range in peerDependencies is kept even when devDependencies links it.

    Returns:
        Map of package name → {dependency name → new specifier}, for the
        packages that had something rewritten.
    """
    rewritten: dict[str, dict[str, str]] = {}
    for name in release_set.names:
        node = graph.get(name)
        for spec in node.local_dependencies:
            if spec.kind is not DependencyKind.DIRECTORY:
                continue
            dep_version = release_set.version_of(spec.name) or graph.get(spec.name).version
            node.set_dependency_spec(spec.field, spec.name, f"{prefix}{dep_version}")
            rewritten.setdefault(name, {})[spec.name] = f"{prefix}{dep_version}"
    return rewritten


def apply_canary_versions(
    graph: DependencyGraph, release_set: ReleaseSet, prefix: str
) -> None:
    """Set canary versions and point local dependencies at them.

    Unlike :func:`resolve_local_links`, registry ranges on siblings are
    rewritten too, so canaries depend on each other. Preserved specifiers
    are still left alone.
    """
    for name, version in release_set.versions.items():
        node = graph.get(name)
        node.set_version(version)
        for spec in node.local_dependencies:
            if spec.kind is DependencyKind.PRESERVED:
                continue
            dep_version = release_set.version_of(spec.name) or graph.get(spec.name).version
            node.set_dependency_spec(spec.field, spec.name, f"{prefix}{dep_version}")
