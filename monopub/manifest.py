"""package.json reading and writing utilities.

Manifests are written back with the indentation and trailing newline they
were read with, so publish-time edits produce minimal diffs.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .models import PackageNode

DEFAULT_INDENT = "  "


def detect_indent(text: str) -> str:
    """Return the indentation of the first indented line, or two spaces."""
    for line in text.splitlines()[1:]:
        stripped = line.lstrip(" \t")
        if stripped and len(stripped) != len(line):
            return line[: len(line) - len(stripped)]
    return DEFAULT_INDENT


def read_manifest(path: Path) -> dict[str, Any]:
    """Load and parse a package.json file."""
    return json.loads(path.read_text(encoding="utf-8"))


def write_manifest(path: Path, data: dict[str, Any]) -> None:
    """Save manifest data, keeping the file's existing formatting."""
    indent, newline = DEFAULT_INDENT, "\n"
    if path.exists():
        text = path.read_text(encoding="utf-8")
        indent = detect_indent(text)
        newline = "\n" if text.endswith("\n") else ""
    path.write_text(
        json.dumps(data, indent=indent, ensure_ascii=False) + newline, encoding="utf-8"
    )


def serialize(node: PackageNode) -> None:
    """Flush a node's in-memory manifest to disk."""
    write_manifest(node.manifest_location, node.manifest)


def refresh(node: PackageNode) -> PackageNode:
    """Re-read a node's manifest from disk into the node."""
    node.replace_manifest(read_manifest(node.manifest_location))
    return node
