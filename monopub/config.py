"""Configuration loading.

Options come from ``monopub.toml`` at the repository root, overridden by
command-line flags. The file is read with tomlkit and every value is
validated by the PublishOptions model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import pydantic
import tomlkit
from pydantic import BaseModel, ConfigDict, Field
from tomlkit.exceptions import ParseError

from .deps import DEFAULT_LINK_PROTOCOLS
from .errors import ValidationError
from .versions import BUMPS

CONFIG_FILE = "monopub.toml"
DEFAULT_REGISTRY = "https://registry.npmjs.org/"


class PublishOptions(BaseModel):
    """Every knob of the publish pipeline.

    Attributes:
        packages: Glob patterns of package directories, relative to the root.
        version: Shared version in fixed mode, or "independent".
        tag_version_prefix: Prefix of fixed-mode release tags.
        strategy: "from-git" or "from-package", if one was requested.
        canary: Publish synthetic canary versions.
        bump: Increment used for canary versions.
        preid: Prerelease identifier used for canary versions.
        explicit_versions: Name → version map produced by a version bump.
        dist_tag: Dist tag to publish under.
        pre_dist_tag: Dist tag for prerelease versions.
        temp_tag: Publish under a temporary tag, then promote.
        yes: Skip the confirmation prompt.
        exact: Pin rewritten local dependencies exactly.
        git_head: Explicit gitHead to annotate manifests with.
        git_reset: Restore manifests after publishing.
        verify_access: Check credentials, access and 2FA before publishing.
        registry: Registry URL.
        otp: One-time password to seed the OTP cache with.
        concurrency: Maximum simultaneous per-package operations.
        reject_cycles: Fail on dependency cycles instead of warning.
        graph_type: Whether devDependencies count as ordering edges.
        force_publish: Canary-publish every package, changed or not.
        include_merged_tags: Also describe against tags on merged branches.
        ignore_changes: Globs of files that do not count as changes.
        ignore_scripts: Skip all lifecycle scripts.
        contents: Subdirectory to pack for every package.
        link_protocols: Specifier prefixes treated as local directory links.
        preserve_specifiers: Globs of specifiers never rewritten.
    """

    model_config = ConfigDict(extra="forbid")

    packages: list[str] = Field(default_factory=lambda: ["packages/*"])
    version: str | None = None
    tag_version_prefix: str = "v"
    strategy: Literal["from-git", "from-package"] | None = None
    canary: bool = False
    bump: str = "prepatch"
    preid: str = "alpha"
    explicit_versions: dict[str, str] | None = None
    dist_tag: str | None = None
    pre_dist_tag: str | None = None
    temp_tag: bool = False
    yes: bool = False
    exact: bool = False
    git_head: str | None = None
    git_reset: bool = True
    verify_access: bool = True
    registry: str = DEFAULT_REGISTRY
    otp: str | None = None
    concurrency: int | None = Field(default=None, ge=1)
    reject_cycles: bool = False
    graph_type: Literal["dependencies", "all"] = "dependencies"
    force_publish: bool = False
    include_merged_tags: bool = False
    ignore_changes: list[str] = Field(default_factory=list)
    ignore_scripts: bool = False
    contents: str | None = None
    link_protocols: list[str] = Field(default_factory=lambda: list(DEFAULT_LINK_PROTOCOLS))
    preserve_specifiers: list[str] = Field(default_factory=list)

    @property
    def independent(self) -> bool:
        return self.version == "independent"

    @property
    def strategy_name(self) -> str | None:
        if self.canary:
            return "canary"
        if self.explicit_versions is not None:
            return "explicit-bump"
        return self.strategy


def load_config(root: Path) -> dict[str, Any]:
    """Read ``monopub.toml`` from the root, or return {} if there is none."""
    path = root / CONFIG_FILE
    if not path.exists():
        return {}
    try:
        return tomlkit.parse(path.read_text()).unwrap()
    except ParseError as exc:
        raise ValidationError(f"Invalid {CONFIG_FILE}", details=str(exc)) from exc


def validate_options(options: PublishOptions) -> None:
    """Reject option combinations that cannot work together.

    Raises:
        ValidationError: On conflicting strategies, a missing strategy,
            --git-head outside from-package, or an unknown canary bump.
    """
    chosen = [
        name
        for name, picked in (
            (options.strategy, options.strategy is not None),
            ("--canary", options.canary),
            ("--versions", options.explicit_versions is not None),
        )
        if picked
    ]
    if len(chosen) > 1:
        raise ValidationError(
            f"Conflicting version strategies: {' and '.join(chosen)}",
            fix_hint="Pick exactly one of from-git, from-package, --canary or --versions.",
        )
    if not chosen:
        raise ValidationError(
            "No version strategy selected",
            fix_hint="Pass from-git, from-package, --canary or --versions FILE.",
        )
    if options.git_head and options.strategy != "from-package":
        raise ValidationError('--git-head is only allowed with "from-package"')
    if options.bump not in BUMPS:
        raise ValidationError(
            f"Unknown bump {options.bump!r}", fix_hint=f"Use one of {', '.join(BUMPS)}."
        )


def build_options(root: Path, overrides: dict[str, Any] | None = None) -> PublishOptions:
    """Merge the config file with command-line overrides and validate.

    Overrides that are None are treated as "not given" so they never mask
    a value from the file.
    """
    values = load_config(root)
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    try:
        options = PublishOptions(**values)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid configuration in {CONFIG_FILE}", details=str(exc)) from exc
    validate_options(options)
    return options
