"""Temporary license files for packages that ship without one.

When the repository root has a license, packages lacking their own get a
copy for the duration of packing. The copies are always removed again,
whether packing succeeds or fails.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from pathlib import Path

from .models import PackageNode


def find_license(directory: Path) -> Path | None:
    """Return the first LICENSE/LICENCE-like file in a directory."""
    if not directory.is_dir():
        return None
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.name.lower().startswith(("license", "licence")):
            return path
    return None


def packages_without_license(nodes: Iterable[PackageNode]) -> list[PackageNode]:
    return [node for node in nodes if find_license(node.pack_directory) is None]


def format_names(names: list[str]) -> str:
    """Human list with an oxford comma: "a, b, and c"."""
    if len(names) <= 1:
        return "".join(names)
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def create_temp_licenses(license_path: Path, nodes: Iterable[PackageNode]) -> list[Path]:
    """Copy the root license into each package; returns the created files."""
    created: list[Path] = []
    for node in nodes:
        dest = node.pack_directory / license_path.name
        shutil.copyfile(license_path, dest)
        created.append(dest)
    return created


def remove_temp_licenses(license_path: Path, nodes: Iterable[PackageNode]) -> None:
    for node in nodes:
        (node.pack_directory / license_path.name).unlink(missing_ok=True)
