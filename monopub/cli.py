"""CLI entry point for monopub."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click
from click.core import ParameterSource

from monopub.backends import GitCLI, NpmLifecycle, NpmPacker, NpmRegistry
from monopub.config import build_options
from monopub.errors import PartialPublishError, ReleaseError, ValidationError
from monopub.pipeline import confirm_prompt, publish as run_publish
from monopub.versions import BUMPS


def read_versions_file(path: str) -> dict[str, str]:
    """Load the name → version map written by an external version bump."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Unable to read versions from {path}", details=str(exc)) from exc
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise ValidationError(f"{path} must map package names to version strings")
    return data


def report_error(exc: ReleaseError) -> None:
    click.echo(f"ERROR: {exc.message}", err=True)
    if isinstance(exc, PartialPublishError):
        click.echo(f"  Succeeded: {', '.join(exc.succeeded) or '<none>'}", err=True)
        click.echo(f"  Failed: {', '.join(exc.failed) or '<none>'}", err=True)
    elif exc.details:
        click.echo(f"  Details: {exc.details}", err=True)
    if exc.fix_hint:
        click.echo(f"  Fix: {exc.fix_hint}", err=True)


@click.group()
@click.version_option(package_name="monopub")
def cli() -> None:
    """Publish the packages of a multi-package repository, in dependency order."""


@cli.command()
@click.argument("strategy", required=False, type=click.Choice(["from-git", "from-package"]))
@click.option("--canary", is_flag=True, help="Publish canary prerelease versions.")
@click.option("--bump", type=click.Choice(BUMPS), help="Increment used for canary versions.")
@click.option("--preid", help="Prerelease identifier for canary versions.")
@click.option(
    "--versions",
    "versions_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file of package versions from a version bump.",
)
@click.option("--dist-tag", help="Dist-tag to publish under.")
@click.option("--pre-dist-tag", help="Dist-tag for prerelease versions.")
@click.option("--temp-tag", is_flag=True, help="Publish under a temporary tag, then promote.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.option("--exact", is_flag=True, help="Pin local dependencies exactly.")
@click.option("--git-head", help="gitHead to record in manifests (from-package only).")
@click.option("--git-reset/--no-git-reset", default=True, help="Restore manifests after publishing.")
@click.option("--verify-access/--no-verify-access", default=True, help="Check registry access before publishing.")
@click.option("--registry", help="Registry URL.")
@click.option("--otp", help="One-time password for the registry.")
@click.option("--concurrency", type=click.IntRange(min=1), help="Maximum simultaneous operations.")
@click.option("--reject-cycles", is_flag=True, help="Fail on dependency cycles.")
@click.option("--graph-type", type=click.Choice(["dependencies", "all"]), help="Edges used for ordering.")
@click.option("--force-publish", is_flag=True, help="Canary-publish every package.")
@click.option("--include-merged-tags", is_flag=True, help="Describe against merged tags too.")
@click.option("--ignore-scripts", is_flag=True, help="Skip lifecycle scripts.")
@click.option("--contents", help="Subdirectory to pack for every package.")
def publish(strategy: str | None, versions_file: str | None, **flags: object) -> None:
    """Publish packages to the registry.

    Options left at their default do not override monopub.toml.
    """
    root = Path.cwd()
    ctx = click.get_current_context()
    try:
        overrides = {
            name: value
            for name, value in flags.items()
            if ctx.get_parameter_source(name) is not ParameterSource.DEFAULT
        }
        overrides["strategy"] = strategy
        if versions_file:
            overrides["explicit_versions"] = read_versions_file(versions_file)
        options = build_options(root, overrides)
        outcome = asyncio.run(
            run_publish(
                root,
                options,
                git=GitCLI(root),
                registry=NpmRegistry(options.registry, root),
                packer=NpmPacker(root),
                lifecycle=NpmLifecycle(),
                confirm=confirm_prompt,
            )
        )
    except ReleaseError as exc:
        report_error(exc)
        raise SystemExit(exc.exit_code) from exc

    if outcome.status == "aborted":
        return
    click.echo("Successfully published:")
    for pkg in outcome.published:
        click.echo(f" - {pkg.name}@{pkg.version}")
