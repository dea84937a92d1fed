"""Dist-tag planning.

Decides, per package and at publish time, which registry dist-tag a
version goes out under and, in temp-tag mode, which tag it is promoted to
once every package has been published.
"""

from __future__ import annotations

from pydantic import BaseModel

from .config import PublishOptions
from .models import PackageNode
from .versions import is_prerelease

TEMP_TAG = "monopub-temp"
DEFAULT_TAG = "latest"


class DistTagPlan(BaseModel):
    """Where one package version is tagged.

    Attributes:
        publish: Tag passed to the publish call.
        promote: Real tag to move to afterwards (temp-tag mode only).
    """

    publish: str
    promote: str | None = None


def global_dist_tag(options: PublishOptions) -> str | None:
    """Tag requested for the whole run: --dist-tag, or "canary" for canaries."""
    if options.dist_tag:
        return options.dist_tag.strip()
    if options.canary:
        return "canary"
    return None


def resolved_tag(node: PackageNode, version: str, options: PublishOptions) -> str:
    """The tag a package version should end up under.

    Precedence: the prerelease dist-tag (for prerelease versions), then the
    run-wide tag, then the manifest's ``publishConfig.tag``, then "latest".
    """
    if options.pre_dist_tag and is_prerelease(version):
        return options.pre_dist_tag
    return global_dist_tag(options) or node.publish_config.get("tag") or DEFAULT_TAG


def plan_dist_tag(node: PackageNode, options: PublishOptions) -> DistTagPlan:
    final = resolved_tag(node, node.version, options)
    if options.temp_tag:
        return DistTagPlan(publish=TEMP_TAG, promote=final)
    return DistTagPlan(publish=final)
