"""Data models for monopub.

These Pydantic models represent the core data structures used throughout
the publish pipeline.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

# Manifest sections that can hold a dependency specifier.
DEPENDENCY_FIELDS = (
    "dependencies",
    "devDependencies",
    "optionalDependencies",
    "peerDependencies",
)


class DependencyKind(str, Enum):
    """How a declared dependency specifier is treated at publish time."""

    REGISTRY = "registry"
    DIRECTORY = "directory"
    PRESERVED = "preserved"


class DependencySpec(BaseModel):
    """One dependency entry as declared in a manifest section.

    A package may name the same dependency in several sections with
    different specifiers, so each (field, name) entry is its own spec.

    Attributes:
        name: Name of the dependency.
        field: Manifest section the entry came from (e.g. "devDependencies").
        raw: The specifier exactly as written (e.g. "^1.0.0", "file:../b").
        kind: Classification used by the local link resolver.
        local: True when the dependency names a sibling workspace package.
    """

    name: str
    field: str
    raw: str
    kind: DependencyKind = DependencyKind.REGISTRY
    local: bool = False


class Packed(BaseModel):
    """Tarball produced for a package by the packer."""

    tarball_path: Path
    shasum: str
    integrity: str = ""
    size: int = 0
    files: list[str] = Field(default_factory=list)


class PackageNode(BaseModel):
    """One releasable package of the workspace.

    Nodes are owned by the DependencyGraph. Everything that changes a node
    goes through the setters below so the raw manifest and the parsed
    attributes never drift apart.

    Attributes:
        name: Package name from the manifest.
        version: Current version string from the manifest.
        location: Package directory.
        manifest_location: Path of the package's package.json.
        private: Private packages are never published.
        manifest: Raw manifest data as read from disk.
        dependencies: Declared dependency entries, one per manifest section
            that names the dependency.
        contents: Directory to pack instead of ``location``, if set.
        packed: Tarball metadata once the package has been packed.
    """

    name: str
    version: str
    location: Path
    manifest_location: Path
    private: bool = False
    manifest: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[DependencySpec] = Field(default_factory=list)
    contents: Path | None = None
    packed: Packed | None = None

    @property
    def local_dependencies(self) -> list[DependencySpec]:
        """Dependency entries that point at sibling workspace packages."""
        return [spec for spec in self.dependencies if spec.local]

    def dependency(self, dep_name: str, field: str = "dependencies") -> DependencySpec | None:
        for spec in self.dependencies:
            if spec.name == dep_name and spec.field == field:
                return spec
        return None

    @property
    def scripts(self) -> dict[str, str]:
        return dict(self.manifest.get("scripts") or {})

    @property
    def publish_config(self) -> dict[str, Any]:
        return dict(self.manifest.get("publishConfig") or {})

    @property
    def pack_directory(self) -> Path:
        return self.contents or self.location

    def get(self, key: str, default: Any = None) -> Any:
        return self.manifest.get(key, default)

    def set_field(self, key: str, value: Any) -> None:
        self.manifest[key] = value

    def set_version(self, version: str) -> None:
        self.version = version
        self.manifest["version"] = version

    def set_dependency_spec(self, field: str, dep_name: str, raw: str) -> None:
        """Rewrite the ``field`` entry for ``dep_name`` to ``raw``.

        Entries for the same dependency in other sections are left alone.
        """
        if field not in DEPENDENCY_FIELDS:
            raise ValueError(f"Not a dependency section: {field}")
        section = self.manifest.get(field)
        if isinstance(section, dict) and dep_name in section:
            section[dep_name] = raw
        self.dependencies = [
            spec.model_copy(update={"raw": raw, "kind": DependencyKind.REGISTRY})
            if spec.name == dep_name and spec.field == field
            else spec
            for spec in self.dependencies
        ]

    def set_packed(self, packed: Packed) -> None:
        self.packed = packed

    def replace_manifest(self, manifest: dict[str, Any]) -> None:
        """Adopt manifest data re-read from disk (lifecycle hooks may edit it)."""
        self.manifest = manifest
        self.version = manifest.get("version", self.version)
        self.private = bool(manifest.get("private", False))


class ReleaseSet(BaseModel):
    """Packages selected for this release with their target versions.

    Build with :meth:`from_nodes` so private packages are filtered out.
    """

    versions: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_nodes(
        cls, nodes: Iterable[PackageNode], versions: Mapping[str, str]
    ) -> ReleaseSet:
        return cls(
            versions={
                node.name: versions[node.name]
                for node in nodes
                if not node.private and node.name in versions
            }
        )

    @property
    def names(self) -> list[str]:
        return list(self.versions)

    def version_of(self, name: str) -> str | None:
        return self.versions.get(name)

    def __len__(self) -> int:
        return len(self.versions)

    def __contains__(self, name: object) -> bool:
        return name in self.versions


class VersionResolution(BaseModel):
    """Result of a version strategy.

    Attributes:
        release_set: What to publish, and at which versions.
        needs_confirmation: Whether the operator must confirm before any
            destructive work starts.
    """

    release_set: ReleaseSet
    needs_confirmation: bool = True


class DescribeResult(BaseModel):
    """Parsed ``git describe`` output."""

    last_tag_name: str | None = None
    last_version: str | None = None
    ref_count: int = 0
    sha: str
    is_dirty: bool = False


class PublishedPackage(BaseModel):
    name: str
    version: str


class PublishOutcome(BaseModel):
    """What the pipeline did: published packages, or an aborted no-op."""

    status: Literal["published", "aborted"]
    published: list[PublishedPackage] = Field(default_factory=list)
