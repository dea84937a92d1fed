"""Version strategies: decide what gets published, and at which version.

Each strategy returns a VersionResolution. Private packages never make it
into a release set, whatever the strategy.

- from-git: packages tagged at HEAD by a previous version bump
- from-package: packages whose manifest version is not on the registry
- canary: synthetic prerelease versions for packages changed since the
  last release
- explicit-bump: versions handed over by an external version bump
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from fnmatch import fnmatch
from pathlib import Path

from .backends import Git, Registry
from .config import PublishOptions
from .errors import GitUnavailableError, ValidationError
from .graph import DependencyGraph
from .models import PackageNode, ReleaseSet, VersionResolution
from .shell import info, notice, step
from .versions import canary_version, parse_version, strip_tag_prefix


def _fixed_tag_pattern(options: PublishOptions) -> str:
    return f"{options.tag_version_prefix}*.*.*"


def _rel_prefix(node: PackageNode, root: Path) -> str:
    try:
        rel = node.location.resolve().relative_to(root.resolve())
    except ValueError:
        rel = node.location
    return rel.as_posix().rstrip("/") + "/"


def _touches(files: list[str], prefix: str, ignore: list[str]) -> bool:
    return any(
        f.startswith(prefix) and not any(fnmatch(f, pattern) for pattern in ignore)
        for f in files
    )


async def _verify_working_tree(git: Git) -> None:
    """Working tree check that tolerates the absence of a repository."""
    try:
        await git.check_clean()
    except GitUnavailableError:
        notice("Unable to verify working tree, proceed at your own risk")


def _resolution(
    graph: DependencyGraph, versions: Mapping[str, str], needs_confirmation: bool
) -> VersionResolution:
    nodes = [graph.get(n) for n in graph.names if n in versions]
    return VersionResolution(
        release_set=ReleaseSet.from_nodes(nodes, versions),
        needs_confirmation=needs_confirmation,
    )


async def collect_updates(
    graph: DependencyGraph, git: Git, options: PublishOptions, root: Path
) -> list[str]:
    """Determine which packages changed since their last release.

    A package is a candidate if:
    1. force_publish is set
    2. No release tag is reachable for it (never released)
    3. A file in its directory changed since that tag (ignoring files
       matching ``ignore_changes``)
    4. Any of its dependencies is a candidate (transitive)

    Returns:
        Non-private candidate names in graph declaration order.
    """
    step("Collecting updated packages")
    public = [node.name for node in graph if not node.private]

    if options.force_publish:
        info("Force publish: all packages are candidates")
        return public

    dirty: set[str] = set()
    if options.independent:
        for name in public:
            described = await git.describe_ref(f"{name}@*", options.include_merged_tags)
            if not described.last_tag_name:
                dirty.add(name)
                info(f"{name}: never released")
                continue
            files = await git.files_changed_since(described.last_tag_name)
            if _touches(files, _rel_prefix(graph.get(name), root), options.ignore_changes):
                dirty.add(name)
                info(f"{name}: changed since {described.last_tag_name}")
    else:
        described = await git.describe_ref(
            _fixed_tag_pattern(options), options.include_merged_tags
        )
        if not described.last_tag_name:
            info("No release tag found: all packages are candidates")
            return public
        files = await git.files_changed_since(described.last_tag_name)
        for name in public:
            if _touches(files, _rel_prefix(graph.get(name), root), options.ignore_changes):
                dirty.add(name)
                info(f"{name}: changed since {described.last_tag_name}")

    # Propagate to dependents using BFS
    queue = list(dirty)
    while queue:
        node = queue.pop(0)
        for dependent in graph.dependents_of(node):
            if dependent not in dirty:
                info(f"{dependent}: updated (depends on {node})")
                dirty.add(dependent)
                queue.append(dependent)

    return [name for name in public if name in dirty]


async def from_git(
    graph: DependencyGraph, git: Git, options: PublishOptions, root: Path
) -> VersionResolution:
    """Publish the packages a version bump tagged at HEAD.

    Raises:
        WorkingTreeError: If the working tree is dirty or git is unusable.
    """
    await git.check_clean()

    pattern = "*@*" if options.independent else _fixed_tag_pattern(options)
    tags = await git.current_tags(pattern)
    if not tags:
        notice("No tagged release found. You might not have fetched tags.")
        return _resolution(graph, {}, not options.yes)

    if options.independent:
        names = {tag.rsplit("@", 1)[0] for tag in tags}
    else:
        files = await git.files_in_commit("HEAD")
        names = {
            node.name
            for node in graph
            if _touches(files, _rel_prefix(node, root), [])
        }

    versions = {n: graph.get(n).version for n in graph.names if n in names}
    return _resolution(graph, versions, not options.yes)


async def from_package(
    graph: DependencyGraph, git: Git, registry: Registry, options: PublishOptions
) -> VersionResolution:
    """Publish every package whose manifest version the registry lacks."""
    await _verify_working_tree(git)

    public = [node for node in graph if not node.private]
    published = await asyncio.gather(
        *(registry.is_published(node.name, node.version) for node in public)
    )
    versions = {
        node.name: node.version for node, done in zip(public, published) if not done
    }
    if not versions:
        notice("No unpublished release found")
    return _resolution(graph, versions, not options.yes)


async def canary(
    graph: DependencyGraph, git: Git, options: PublishOptions, root: Path
) -> VersionResolution:
    """Compute canary versions for the packages changed since the last release.

    In independent mode each package is described against its own tags and
    falls back to its manifest version when it was never released. In
    fixed mode the whole repository shares one describe result and falls
    back to the configured version (or the highest manifest version).
    """
    await _verify_working_tree(git)

    updates = await collect_updates(graph, git, options, root)
    prefix = options.tag_version_prefix
    versions: dict[str, str] = {}

    if options.independent:
        for name in updates:
            node = graph.get(name)
            described = await git.describe_ref(f"{name}@*", options.include_merged_tags)
            last = strip_tag_prefix(described.last_version or node.version, prefix)
            versions[name] = canary_version(
                last, options.bump, options.preid, described.ref_count, described.sha
            )
    elif updates:
        described = await git.describe_ref(
            _fixed_tag_pattern(options), options.include_merged_tags
        )
        fallback = options.version or max(
            (graph.get(n).version for n in updates), key=parse_version
        )
        last = strip_tag_prefix(described.last_version or fallback, prefix)
        version = canary_version(
            last, options.bump, options.preid, described.ref_count, described.sha
        )
        versions = {name: version for name in updates}

    return _resolution(graph, versions, not options.yes)


def explicit(
    graph: DependencyGraph, versions: Mapping[str, str], options: PublishOptions
) -> VersionResolution:
    """Accept the versions produced by an external version bump.

    The producer already asked for confirmation, so none is needed here.

    Raises:
        ValidationError: If a name is not a workspace package or a version
            does not parse.
    """
    unknown = sorted(set(versions).difference(graph.names))
    if unknown:
        raise ValidationError(f"Unknown packages in explicit versions: {', '.join(unknown)}")
    for name, version in versions.items():
        try:
            parse_version(version)
        except ValueError as exc:
            raise ValidationError(f"Invalid version for {name}: {version!r}") from exc
    return _resolution(graph, versions, False)


async def resolve_versions(
    graph: DependencyGraph,
    options: PublishOptions,
    *,
    git: Git,
    registry: Registry,
    root: Path,
) -> VersionResolution:
    """Run the strategy the options select."""
    strategy = options.strategy_name
    step(f"Resolving versions ({strategy})")
    if strategy == "from-git":
        return await from_git(graph, git, options, root)
    if strategy == "from-package":
        return await from_package(graph, git, registry, options)
    if strategy == "canary":
        return await canary(graph, git, options, root)
    if strategy == "explicit-bump":
        return explicit(graph, options.explicit_versions or {}, options)
    raise ValidationError("No version strategy selected")
