"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

Workspace = Callable[..., Path]


def write_manifest_file(directory: Path, manifest: dict[str, Any]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(manifest, indent=2) + "\n")
    return path


@pytest.fixture
def make_workspace(tmp_path: Path) -> Workspace:
    """Build a workspace under tmp_path.

    Packages are given as {directory name: manifest}; each lands in
    ``packages/<directory name>``.
    """

    def build(
        packages: dict[str, dict[str, Any]],
        root_manifest: dict[str, Any] | None = None,
        config: str | None = None,
    ) -> Path:
        for dirname, manifest in packages.items():
            write_manifest_file(tmp_path / "packages" / dirname, manifest)
        if root_manifest is not None:
            write_manifest_file(tmp_path, root_manifest)
        if config is not None:
            (tmp_path / "monopub.toml").write_text(config)
        return tmp_path

    return build


@pytest.fixture
def simple_workspace(make_workspace: Workspace) -> Path:
    """Three packages: a depends on b through a file link, c is private."""
    return make_workspace(
        {
            "a": {
                "name": "a",
                "version": "1.0.0",
                "dependencies": {"b": "file:../b", "left-pad": "^1.3.0"},
            },
            "b": {"name": "b", "version": "2.0.0"},
            "c": {"name": "c", "version": "0.1.0", "private": True, "dependencies": {"a": "^1.0.0"}},
        }
    )
