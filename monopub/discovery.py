"""Workspace discovery: manifests on disk → DependencyGraph."""

from __future__ import annotations

import glob
from pathlib import Path

from .config import PublishOptions
from .deps import classify_specifier
from .errors import CycleError, ValidationError
from .graph import DependencyGraph, topo_sort
from .manifest import read_manifest
from .models import DEPENDENCY_FIELDS, DependencySpec, PackageNode
from .shell import info, step

MANIFEST = "package.json"


def find_member_dirs(root: Path, patterns: list[str]) -> list[Path]:
    """Expand member glob patterns to directories holding a package.json."""
    member_dirs: list[Path] = []
    for pattern in patterns:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if (p / MANIFEST).exists() and p not in member_dirs:
                member_dirs.append(p)
    return member_dirs


def discover_packages(root: Path, options: PublishOptions) -> DependencyGraph:
    """Scan the workspace and build the dependency graph.

    Reads the ``packages`` globs from the options to find package
    directories, then extracts name, version, privacy and dependencies
    from each package.json.

    Raises:
        ValidationError: If no packages are found, a manifest has no name,
            or a non-private package has no version.
    """
    step("Discovering workspace packages")

    member_dirs = find_member_dirs(root, options.packages)
    if not member_dirs:
        raise ValidationError(
            f"No packages found matching {', '.join(options.packages)}"
        )

    # First pass: collect basic info from each package
    manifests: dict[str, tuple[Path, dict]] = {}
    for d in member_dirs:
        manifest = read_manifest(d / MANIFEST)
        name = manifest.get("name")
        if not name:
            raise ValidationError(f"{d / MANIFEST} has no name")
        private = bool(manifest.get("private", False))
        if not manifest.get("version") and not private:
            raise ValidationError(
                f"{name} has no version",
                fix_hint='Add a "version" field or mark the package "private".',
            )
        manifests[name] = (d, manifest)

    locations = {name: d for name, (d, _) in manifests.items()}

    # Second pass: classify every declared dependency
    nodes: list[PackageNode] = []
    for name, (d, manifest) in manifests.items():
        dependencies: list[DependencySpec] = []
        for field in DEPENDENCY_FIELDS:
            for dep_name, raw in (manifest.get(field) or {}).items():
                spec = DependencySpec(
                    name=dep_name,
                    field=field,
                    raw=str(raw),
                    kind=classify_specifier(
                        str(raw),
                        package_location=d,
                        sibling_location=locations.get(dep_name),
                        link_protocols=options.link_protocols,
                        preserve_specifiers=options.preserve_specifiers,
                    ),
                    local=dep_name in locations and dep_name != name,
                )
                dependencies.append(spec)
        nodes.append(
            PackageNode(
                name=name,
                version=manifest.get("version") or "0.0.0",
                location=d,
                manifest_location=d / MANIFEST,
                private=bool(manifest.get("private", False)),
                manifest=manifest,
                dependencies=dependencies,
                contents=d / options.contents if options.contents else None,
            )
        )

    graph = DependencyGraph(nodes, graph_type=options.graph_type)

    # Print discovered packages for user feedback, dependencies first
    try:
        order = topo_sort(graph)
    except CycleError:
        order = graph.names
    for node in map(graph.get, order):
        deps = graph.dependencies_of(node.name)
        suffix = f" → [{', '.join(deps)}]" if deps else ""
        private = " (private)" if node.private else ""
        info(f"{node.name} {node.version}{private}{suffix}")

    return graph


def load_root_manifest(root: Path) -> dict | None:
    """The repository root's package.json, if it has one."""
    path = root / MANIFEST
    return read_manifest(path) if path.exists() else None
