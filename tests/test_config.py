"""Tests for monopub.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from monopub.config import PublishOptions, build_options, load_config, validate_options
from monopub.errors import ValidationError


class TestLoadConfig:
    """Tests for load_config()."""

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_config(tmp_path) == {}

    def test_reads_values(self, tmp_path: Path) -> None:
        (tmp_path / "monopub.toml").write_text(
            'packages = ["libs/*"]\nversion = "independent"\nexact = true\n'
        )

        assert load_config(tmp_path) == {
            "packages": ["libs/*"],
            "version": "independent",
            "exact": True,
        }

    def test_invalid_toml(self, tmp_path: Path) -> None:
        (tmp_path / "monopub.toml").write_text("packages = [\n")

        with pytest.raises(ValidationError, match="Invalid monopub.toml"):
            load_config(tmp_path)


class TestBuildOptions:
    """Tests for build_options()."""

    def test_overrides_win_over_file(self, tmp_path: Path) -> None:
        (tmp_path / "monopub.toml").write_text('dist_tag = "next"\nconcurrency = 2\n')

        options = build_options(tmp_path, {"strategy": "from-git", "dist_tag": "beta"})

        assert options.dist_tag == "beta"
        assert options.concurrency == 2

    def test_none_overrides_are_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "monopub.toml").write_text("git_reset = false\n")

        options = build_options(tmp_path, {"strategy": "from-git", "git_reset": None})

        assert options.git_reset is False

    def test_unknown_key_rejected(self, tmp_path: Path) -> None:
        (tmp_path / "monopub.toml").write_text("colour = true\n")

        with pytest.raises(ValidationError) as exc_info:
            build_options(tmp_path, {"strategy": "from-git"})

        assert exc_info.value.exit_code == 3

    def test_bad_graph_type(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            build_options(tmp_path, {"strategy": "from-git", "graph_type": "everything"})


class TestValidateOptions:
    """Tests for validate_options()."""

    def test_two_strategies_conflict(self) -> None:
        with pytest.raises(ValidationError, match="Conflicting"):
            validate_options(PublishOptions(strategy="from-git", canary=True))

    def test_canary_and_explicit_conflict(self) -> None:
        with pytest.raises(ValidationError, match="Conflicting"):
            validate_options(PublishOptions(canary=True, explicit_versions={"a": "1.0.0"}))

    def test_no_strategy(self) -> None:
        with pytest.raises(ValidationError, match="No version strategy"):
            validate_options(PublishOptions())

    def test_git_head_outside_from_package(self) -> None:
        with pytest.raises(ValidationError, match="--git-head"):
            validate_options(PublishOptions(strategy="from-git", git_head="abc"))

    def test_git_head_with_from_package(self) -> None:
        validate_options(PublishOptions(strategy="from-package", git_head="abc"))

    def test_bad_bump(self) -> None:
        with pytest.raises(ValidationError, match="Unknown bump"):
            validate_options(PublishOptions(canary=True, bump="huge"))


class TestPublishOptions:
    def test_strategy_name(self) -> None:
        assert PublishOptions(canary=True).strategy_name == "canary"
        assert PublishOptions(explicit_versions={}).strategy_name == "explicit-bump"
        assert PublishOptions(strategy="from-package").strategy_name == "from-package"
        assert PublishOptions().strategy_name is None

    def test_independent(self) -> None:
        assert PublishOptions(version="independent").independent
        assert not PublishOptions(version="1.0.0").independent

    def test_defaults(self) -> None:
        options = PublishOptions()

        assert options.bump == "prepatch"
        assert options.preid == "alpha"
        assert options.git_reset
        assert options.link_protocols == ["file:", "link:"]
