"""Tests for monopub.dist_tags."""

from __future__ import annotations

from _fakes import make_node
from monopub.config import PublishOptions
from monopub.dist_tags import TEMP_TAG, global_dist_tag, plan_dist_tag, resolved_tag


class TestResolvedTag:
    """Tests for resolved_tag() precedence."""

    def test_defaults_to_latest(self) -> None:
        assert resolved_tag(make_node("a"), "1.0.0", PublishOptions()) == "latest"

    def test_publish_config_tag(self) -> None:
        node = make_node("a")
        node.set_field("publishConfig", {"tag": "legacy"})

        assert resolved_tag(node, "1.0.0", PublishOptions()) == "legacy"

    def test_explicit_tag_beats_publish_config(self) -> None:
        node = make_node("a")
        node.set_field("publishConfig", {"tag": "legacy"})

        assert resolved_tag(node, "1.0.0", PublishOptions(dist_tag=" next ")) == "next"

    def test_canary_tag(self) -> None:
        assert resolved_tag(make_node("a"), "1.0.1-alpha.0", PublishOptions(canary=True)) == "canary"

    def test_pre_dist_tag_for_prereleases_only(self) -> None:
        options = PublishOptions(dist_tag="next", pre_dist_tag="beta")
        node = make_node("a")

        assert resolved_tag(node, "2.0.0-rc.1", options) == "beta"
        assert resolved_tag(node, "2.0.0", options) == "next"

    def test_global_dist_tag(self) -> None:
        assert global_dist_tag(PublishOptions()) is None
        assert global_dist_tag(PublishOptions(canary=True, dist_tag="nightly")) == "nightly"


class TestPlanDistTag:
    def test_direct_publish(self) -> None:
        plan = plan_dist_tag(make_node("a"), PublishOptions(dist_tag="next"))

        assert plan.publish == "next"
        assert plan.promote is None

    def test_temp_tag_mode(self) -> None:
        plan = plan_dist_tag(make_node("a"), PublishOptions(temp_tag=True))

        assert plan.publish == TEMP_TAG
        assert plan.promote == "latest"
