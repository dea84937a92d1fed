"""Tests for monopub.discovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from monopub.config import PublishOptions
from monopub.discovery import discover_packages, find_member_dirs, load_root_manifest
from monopub.errors import ValidationError
from monopub.models import DependencyKind


class TestDiscoverPackages:
    """Tests for discover_packages()."""

    def test_builds_graph(self, simple_workspace: Path) -> None:
        graph = discover_packages(simple_workspace, PublishOptions())

        assert graph.names == ["a", "b", "c"]
        assert graph.dependencies_of("a") == ["b"]
        assert graph.dependencies_of("c") == ["a"]
        assert graph.get("c").private

    def test_classifies_dependencies(self, simple_workspace: Path) -> None:
        graph = discover_packages(simple_workspace, PublishOptions())
        node = graph.get("a")

        assert node.dependency("b").kind is DependencyKind.DIRECTORY
        assert node.dependency("b").local
        assert node.dependency("left-pad").kind is DependencyKind.REGISTRY
        assert not node.dependency("left-pad").local

    def test_each_section_is_classified_separately(self, make_workspace) -> None:
        root = make_workspace(
            {
                "a": {
                    "name": "a",
                    "version": "1.0.0",
                    "dependencies": {"b": "^1.0.0"},
                    "devDependencies": {"b": "file:../b"},
                },
                "b": {"name": "b", "version": "1.0.0"},
            }
        )

        node = discover_packages(root, PublishOptions()).get("a")

        assert node.dependency("b").kind is DependencyKind.REGISTRY
        assert node.dependency("b", "devDependencies").kind is DependencyKind.DIRECTORY

    def test_peer_dependency_makes_an_edge(self, make_workspace) -> None:
        root = make_workspace(
            {
                "a": {
                    "name": "a",
                    "version": "1.0.0",
                    "devDependencies": {"b": "file:../b"},
                    "peerDependencies": {"b": ">=1.0.0"},
                },
                "b": {"name": "b", "version": "1.0.0"},
            }
        )

        assert discover_packages(root, PublishOptions()).dependencies_of("a") == ["b"]

    def test_no_packages(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="No packages found"):
            discover_packages(tmp_path, PublishOptions())

    def test_missing_version_on_public_package(self, make_workspace) -> None:
        root = make_workspace({"a": {"name": "a"}})

        with pytest.raises(ValidationError, match="a has no version"):
            discover_packages(root, PublishOptions())

    def test_private_package_may_omit_version(self, make_workspace) -> None:
        root = make_workspace({"a": {"name": "a", "private": True}})

        graph = discover_packages(root, PublishOptions())

        assert graph.get("a").version == "0.0.0"

    def test_missing_name(self, make_workspace) -> None:
        root = make_workspace({"a": {"version": "1.0.0"}})

        with pytest.raises(ValidationError, match="has no name"):
            discover_packages(root, PublishOptions())

    def test_contents_directory(self, make_workspace) -> None:
        root = make_workspace({"a": {"name": "a", "version": "1.0.0"}})

        graph = discover_packages(root, PublishOptions(contents="dist"))

        assert graph.get("a").pack_directory == root / "packages" / "a" / "dist"

    def test_dev_dependencies_follow_graph_type(self, make_workspace) -> None:
        root = make_workspace(
            {
                "a": {"name": "a", "version": "1.0.0", "devDependencies": {"b": "^1.0.0"}},
                "b": {"name": "b", "version": "1.0.0"},
            }
        )

        assert discover_packages(root, PublishOptions()).dependencies_of("a") == []
        assert discover_packages(root, PublishOptions(graph_type="all")).dependencies_of("a") == ["b"]


class TestHelpers:
    def test_find_member_dirs_skips_dirs_without_manifest(self, make_workspace) -> None:
        root = make_workspace({"a": {"name": "a", "version": "1.0.0"}})
        (root / "packages" / "empty").mkdir()

        assert find_member_dirs(root, ["packages/*"]) == [root / "packages" / "a"]

    def test_load_root_manifest(self, make_workspace) -> None:
        root = make_workspace({}, root_manifest={"name": "root", "private": True})

        assert load_root_manifest(root) == {"name": "root", "private": True}

    def test_load_root_manifest_missing(self, tmp_path: Path) -> None:
        assert load_root_manifest(tmp_path) is None
