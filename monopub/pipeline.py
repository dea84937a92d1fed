"""Release pipeline: resolve → verify → stage → pack → publish → promote.

This module orchestrates the monopub publish process:
1. Resolve the release set with the selected version strategy, confirm
2. Verify registry credentials, package access and 2FA
3. Stage temporary licenses for packages that lack one
4. Apply canary versions (canary only)
5. Rewrite local directory links to version ranges
6. Annotate manifests with gitHead
7. Write manifests to disk
8. Pack every package in dependency order
9. Publish every tarball in dependency order
10. Reset manifests in the working tree
11. Promote from the temporary dist-tag (temp-tag mode only)

Each step is a Stage. Stages that do not apply to a run are filtered out
before the pipeline starts, and the rest run strictly one after the other:
every package is packed before the first publish, and every package is
published before any dist-tag is promoted.
"""

from __future__ import annotations

import asyncio
import subprocess
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_REGISTRY, PublishOptions
from .deps import apply_canary_versions, resolve_local_links, save_prefix
from .discovery import discover_packages, load_root_manifest
from .dist_tags import TEMP_TAG, plan_dist_tag
from .errors import LifecycleError, PartialPublishError, ReleaseError, TaskRunError
from .graph import DependencyGraph
from .licenses import (
    create_temp_licenses,
    find_license,
    format_names,
    packages_without_license,
    remove_temp_licenses,
)
from .manifest import refresh, serialize
from .models import PackageNode, PublishedPackage, PublishOutcome, ReleaseSet
from .otp import OtpCache
from .resolvers import resolve_versions
from .runner import run_topologically
from .shell import info, notice, step, warn

Confirm = Callable[[str], Awaitable[bool]]

ROOT_PACK_LIFECYCLES = ("prepublish", "prepare", "prepublishOnly", "prepack")
PACKAGE_PACK_HOOKS = ("prepublishOnly", "prepack")
ROOT_PUBLISH_LIFECYCLES = ("publish", "postpublish")


class PipelineContext(BaseModel):
    """Everything a stage reads, plus the state stages hand to each other.

    Collaborators are typed loosely since the Protocols in
    :mod:`monopub.backends` are structural.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    root: Path
    graph: DependencyGraph
    options: PublishOptions
    git: Any
    registry: Any
    packer: Any
    lifecycle: Any
    otp_cache: OtpCache
    confirm: Confirm | None = None

    release_set: ReleaseSet = Field(default_factory=ReleaseSet)
    aborted: bool = False
    two_factor: bool = False
    root_license: Path | None = None
    licensed: list[str] = Field(default_factory=list)
    published: list[PublishedPackage] = Field(default_factory=list)

    @property
    def nodes(self) -> list[PackageNode]:
        """Release-set nodes, in release-set order."""
        return [self.graph.get(name) for name in self.release_set.names]

    @property
    def root_manifest(self) -> dict | None:
        return load_root_manifest(self.root)

    @property
    def rooted_leaf(self) -> bool:
        """True when the repository root is itself a workspace package."""
        root = self.root.resolve()
        return any(node.location.resolve() == root for node in self.graph)


class Stage(BaseModel):
    """One pipeline step.

    Attributes:
        name: Label used in output.
        run: Coroutine taking and returning the context.
        enabled: Disabled stages never run.
    """

    name: str
    run: Callable[[PipelineContext], Awaitable[PipelineContext]]
    enabled: bool = True


async def _run_lifecycle(ctx: PipelineContext, location: Path, scripts: dict, stage: str) -> None:
    if ctx.options.ignore_scripts:
        return
    await ctx.lifecycle.run(location, scripts, stage)


async def _run_root_lifecycles(ctx: PipelineContext, stages: tuple[str, ...]) -> None:
    if ctx.rooted_leaf:
        return
    scripts = (ctx.root_manifest or {}).get("scripts") or {}
    for stage in stages:
        try:
            await _run_lifecycle(ctx, ctx.root, scripts, stage)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise LifecycleError.from_exception(f"Root {stage} script failed", exc) from exc


async def resolve_and_confirm(ctx: PipelineContext) -> PipelineContext:
    resolution = await resolve_versions(
        ctx.graph, ctx.options, git=ctx.git, registry=ctx.registry, root=ctx.root
    )
    release_set = resolution.release_set
    if not release_set:
        notice("No changed packages to publish")
        return ctx.model_copy(update={"aborted": True})

    step(f"Found {len(release_set)} package(s) to publish")
    for name, version in release_set.versions.items():
        info(f"- {name} => {version}")

    if resolution.needs_confirmation:
        confirm = ctx.confirm or _always_decline
        if not await confirm("Are you sure you want to publish these packages?"):
            info("Aborted")
            return ctx.model_copy(update={"aborted": True, "release_set": release_set})

    # Canary versions are applied by their own stage
    if not ctx.options.canary:
        for name, version in release_set.versions.items():
            node = ctx.graph.get(name)
            if node.version != version:
                node.set_version(version)

    return ctx.model_copy(update={"release_set": release_set})


async def _always_decline(message: str) -> bool:
    return False


async def verify_registry(ctx: PipelineContext) -> PipelineContext:
    """Check credentials, package access and account-level 2FA."""
    if ctx.options.registry.rstrip("/") != DEFAULT_REGISTRY.rstrip("/"):
        notice("Skipping all user and access validation due to third-party registry")
        return ctx
    if not ctx.options.verify_access:
        notice("Skipping all user and access validation (--no-verify-access)")
        return ctx

    step("Verifying registry access")
    username = await ctx.registry.username()
    if username:
        info(f"Logged in as {username}")
        await ctx.registry.package_access(ctx.release_set.names, username)
    two_factor = await ctx.registry.two_factor_required()
    if two_factor:
        info("Two-factor authentication required for publishing")
    return ctx.model_copy(update={"two_factor": two_factor})


async def stage_licenses(ctx: PipelineContext) -> PipelineContext:
    """Record which packages need a temporary copy of the root license."""
    snapshot = ctx.graph.snapshot(ctx.release_set.names)
    missing = [node.name for node in packages_without_license(snapshot.values())]
    if not missing:
        return ctx

    root_license = find_license(ctx.root)
    if root_license is None:
        warn(
            f"ENOLICENSE Packages {format_names(missing)} are missing a license. "
            "One way to fix this is to add a LICENSE.md file to the root of "
            "this repository."
        )
        return ctx

    info(f"Using {root_license.name} for {format_names(missing)}")
    return ctx.model_copy(update={"root_license": root_license, "licensed": missing})


async def apply_canary(ctx: PipelineContext) -> PipelineContext:
    apply_canary_versions(ctx.graph, ctx.release_set, save_prefix(ctx.options.exact))
    return ctx


async def link_local_dependencies(ctx: PipelineContext) -> PipelineContext:
    rewritten = resolve_local_links(ctx.graph, ctx.release_set, save_prefix(ctx.options.exact))
    for name, specs in rewritten.items():
        for dep_name, raw in specs.items():
            info(f"{name}: {dep_name} → {raw}")
    return ctx


async def annotate_git_head(ctx: PipelineContext) -> PipelineContext:
    try:
        sha = ctx.options.git_head or await ctx.git.current_sha()
    except (ReleaseError, subprocess.CalledProcessError, OSError) as exc:
        notice(f"Unable to determine gitHead: {exc}")
        return ctx
    for node in ctx.nodes:
        node.set_field("gitHead", sha)
    return ctx


async def serialize_manifests(ctx: PipelineContext) -> PipelineContext:
    for node in ctx.nodes:
        serialize(node)
    return ctx


async def pack_packages(ctx: PipelineContext) -> PipelineContext:
    """Pack every release-set package, dependencies first.

    Temporary license copies only exist while this stage runs.

    Raises:
        PartialPublishError: If any package fails to pack.
    """
    step(f"Packing {len(ctx.release_set)} package(s)")
    licensed = [ctx.graph.get(name) for name in ctx.licensed]
    if ctx.root_license:
        create_temp_licenses(ctx.root_license, licensed)

    async def pack_one(node: PackageNode) -> PackageNode:
        for hook in PACKAGE_PACK_HOOKS:
            await _run_lifecycle(ctx, node.location, node.scripts, hook)
        packed = await ctx.packer.pack(node, node.pack_directory)
        await _run_lifecycle(ctx, node.location, node.scripts, "postpack")
        node.set_packed(packed)
        refresh(node)
        info(f"packed {node.name}@{node.version}")
        return node

    try:
        await _run_root_lifecycles(ctx, ROOT_PACK_LIFECYCLES)
        await run_topologically(
            ctx.graph,
            ctx.release_set.names,
            pack_one,
            concurrency=ctx.options.concurrency,
            reject_cycles=ctx.options.reject_cycles,
        )
    except TaskRunError as exc:
        raise PartialPublishError("pack", exc.completed, exc.failed) from exc
    finally:
        if ctx.root_license:
            remove_temp_licenses(ctx.root_license, licensed)

    await _run_root_lifecycles(ctx, ("postpack",))
    return ctx


def _log_packed(node: PackageNode) -> None:
    packed = node.packed
    if packed is None:
        return
    info(f"  {len(packed.files)} files, {packed.size} B, shasum {packed.shasum}")
    if packed.integrity:
        info(f"  integrity {packed.integrity}")


async def publish_packages(ctx: PipelineContext) -> PipelineContext:
    """Publish every packed tarball, dependencies first.

    Raises:
        PartialPublishError: If any package fails to publish. Packages
            published before the failure stay published.
    """
    step(f"Publishing {len(ctx.release_set)} package(s)")
    if ctx.two_factor and not ctx.otp_cache.otp:
        await ctx.otp_cache.request(
            ctx.registry.request_otp, "This operation requires a one-time password:"
        )

    async def publish_one(node: PackageNode) -> PublishedPackage:
        if node.packed is None:
            raise ReleaseError(f"{node.name} was not packed")
        plan = plan_dist_tag(node, ctx.options)
        await ctx.registry.publish(node, node.packed.tarball_path, plan.publish, ctx.otp_cache)
        info(f"published {node.name}@{node.version} ({plan.publish})")
        _log_packed(node)
        await _run_lifecycle(ctx, node.location, node.scripts, "postpublish")
        return PublishedPackage(name=node.name, version=node.version)

    try:
        results = await run_topologically(
            ctx.graph,
            ctx.release_set.names,
            publish_one,
            concurrency=ctx.options.concurrency,
            reject_cycles=ctx.options.reject_cycles,
        )
    except TaskRunError as exc:
        raise PartialPublishError("publish", exc.completed, exc.failed) from exc

    await _run_root_lifecycles(ctx, ROOT_PUBLISH_LIFECYCLES)
    published = [results[name] for name in ctx.release_set.names if name in results]
    return ctx.model_copy(update={"published": published})


async def reset_working_tree(ctx: PipelineContext) -> PipelineContext:
    """Restore the manifests that publishing rewrote."""
    root = ctx.root.resolve()
    paths = [
        node.manifest_location.resolve().relative_to(root).as_posix() for node in ctx.nodes
    ]
    if ctx.root_manifest is not None and "package.json" not in paths:
        paths.insert(0, "package.json")
    try:
        await ctx.git.checkout(paths)
    except (ReleaseError, subprocess.CalledProcessError, OSError) as exc:
        notice(f"Unable to reset working tree changes: {exc}")
    return ctx


async def promote_dist_tags(ctx: PipelineContext) -> PipelineContext:
    """Move every package from the temporary tag to its real tag.

    Raises:
        PartialPublishError: If any tag change fails.
    """
    step("Promoting dist-tags")

    async def promote_one(node: PackageNode) -> None:
        plan = plan_dist_tag(node, ctx.options)
        spec = f"{node.name}@{node.version}"
        await ctx.registry.remove_dist_tag(spec, TEMP_TAG, ctx.otp_cache)
        await ctx.registry.add_dist_tag(spec, plan.promote, ctx.otp_cache)
        info(f"{spec} → {plan.promote}")

    try:
        await run_topologically(
            ctx.graph,
            ctx.release_set.names,
            promote_one,
            concurrency=ctx.options.concurrency,
        )
    except TaskRunError as exc:
        raise PartialPublishError("promote", exc.completed, exc.failed) from exc
    return ctx


def build_stages(options: PublishOptions) -> list[Stage]:
    """The stages that apply to this run, in execution order."""
    stages = [
        Stage(name="resolve", run=resolve_and_confirm),
        Stage(name="verify", run=verify_registry),
        Stage(name="licenses", run=stage_licenses),
        Stage(name="canary", run=apply_canary, enabled=options.canary),
        Stage(name="link", run=link_local_dependencies),
        Stage(name="git-head", run=annotate_git_head),
        Stage(name="serialize", run=serialize_manifests),
        Stage(name="pack", run=pack_packages),
        Stage(name="publish", run=publish_packages),
        Stage(name="reset", run=reset_working_tree, enabled=options.git_reset),
        Stage(name="promote", run=promote_dist_tags, enabled=options.temp_tag),
    ]
    return [s for s in stages if s.enabled]


async def run_pipeline(ctx: PipelineContext) -> PublishOutcome:
    for stage in build_stages(ctx.options):
        ctx = await stage.run(ctx)
        if ctx.aborted:
            return PublishOutcome(status="aborted")
    return PublishOutcome(status="published", published=ctx.published)


async def publish(
    root: Path,
    options: PublishOptions,
    *,
    git: Any,
    registry: Any,
    packer: Any,
    lifecycle: Any,
    confirm: Confirm | None = None,
) -> PublishOutcome:
    """Discover the workspace and run the publish pipeline over it.

    Args:
        root: Repository root.
        options: Validated options.
        git: Git collaborator.
        registry: Registry collaborator.
        packer: Packer collaborator.
        lifecycle: Lifecycle script runner.
        confirm: Asks the operator a yes/no question. Without one, any
            confirmation is treated as declined.

    Returns:
        The outcome: the published packages, or an aborted no-op.

    Raises:
        ReleaseError: Any subclass, see :mod:`monopub.errors`.
    """
    graph = discover_packages(root, options)
    ctx = PipelineContext(
        root=root,
        graph=graph,
        options=options,
        git=git,
        registry=registry,
        packer=packer,
        lifecycle=lifecycle,
        otp_cache=OtpCache(options.otp),
        confirm=confirm,
    )
    return await run_pipeline(ctx)


async def confirm_prompt(message: str) -> bool:
    """Ask the operator on the terminal, off the event loop."""
    return await asyncio.to_thread(click.confirm, message, default=False)
