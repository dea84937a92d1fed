"""External collaborators: git, the registry, the packer, lifecycle scripts.

The pipeline only talks to these through the Protocols below, so tests
can hand in fakes. The default implementations shell out to ``git`` and
``npm`` through :mod:`monopub.shell`, running each blocking call in a
worker thread.
"""

from __future__ import annotations

import asyncio
import json
import re
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

import click

from .errors import (
    CommandError,
    GitUnavailableError,
    LifecycleError,
    ReleaseError,
    UncommittedChangesError,
    ValidationError,
)
from .models import DescribeResult, PackageNode, Packed
from .otp import OtpCache
from .shell import git, run, warn

_DESCRIBE = re.compile(r"^((?:.*@)?(.*))-(\d+)-g([0-9a-f]+)-?(dirty)?$")
_SHA_ONLY = re.compile(r"^([0-9a-f]+)-?(dirty)?$")


class Git(Protocol):
    async def describe_ref(
        self, match: str | None = None, include_merged_tags: bool = False
    ) -> DescribeResult: ...

    async def current_tags(self, match: str) -> list[str]: ...

    async def files_in_commit(self, ref: str = "HEAD") -> list[str]: ...

    async def files_changed_since(self, ref: str) -> list[str]: ...

    async def checkout(self, paths: Sequence[str]) -> None: ...

    async def current_sha(self) -> str: ...

    async def check_clean(self) -> None: ...


class Registry(Protocol):
    async def username(self) -> str | None: ...

    async def package_access(self, names: Sequence[str], username: str) -> None: ...

    async def two_factor_required(self) -> bool: ...

    async def is_published(self, name: str, version: str) -> bool: ...

    async def publish(
        self, node: PackageNode, tarball: Path, tag: str, otp_cache: OtpCache
    ) -> None: ...

    async def add_dist_tag(self, spec: str, tag: str, otp_cache: OtpCache) -> None: ...

    async def remove_dist_tag(self, spec: str, tag: str, otp_cache: OtpCache) -> None: ...

    async def request_otp(self, prompt: str) -> str: ...


class Packer(Protocol):
    async def pack(self, node: PackageNode, directory: Path) -> Packed: ...


class Lifecycle(Protocol):
    async def run(self, location: Path, scripts: Mapping[str, str], stage: str) -> None: ...


def parse_describe(stdout: str) -> DescribeResult | None:
    """Parse ``git describe --long --dirty`` output.

    Returns None when no tag was reachable and only a SHA was printed;
    the caller has to count commits itself in that case.

    Examples:
        "v1.2.0-4-gabcd123" → last_version "v1.2.0", ref_count 4
        "pkg@1.2.0-4-gabcd123-dirty" → last_version "1.2.0", dirty
    """
    match = _DESCRIBE.match(stdout.strip())
    if not match:
        return None
    tag, version, count, sha, dirty = match.groups()
    return DescribeResult(
        last_tag_name=tag,
        last_version=version,
        ref_count=int(count),
        sha=sha,
        is_dirty=bool(dirty),
    )


class GitCLI:
    """Git collaborator backed by the git command line."""

    def __init__(self, root: Path) -> None:
        self.root = root

    async def _git(self, *args: str) -> str:
        try:
            return await asyncio.to_thread(git, *args, cwd=self.root)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise CommandError.from_exception(f"git {args[0]} failed", exc) from exc

    async def describe_ref(
        self, match: str | None = None, include_merged_tags: bool = False
    ) -> DescribeResult:
        args = ["describe", "--always", "--long", "--dirty"]
        if not include_merged_tags:
            args.append("--first-parent")
        if match:
            args.extend(["--match", match])
        stdout = await self._git(*args)

        parsed = parse_describe(stdout)
        if parsed is not None:
            return parsed

        # No reachable tag: only the SHA was printed
        sha_match = _SHA_ONLY.match(stdout)
        sha = sha_match.group(1) if sha_match else stdout
        count = await self._git("rev-list", "--count", sha)
        return DescribeResult(
            ref_count=int(count),
            sha=sha,
            is_dirty=bool(sha_match and sha_match.group(2)),
        )

    async def current_tags(self, match: str) -> list[str]:
        stdout = await self._git(
            "tag", "--sort", "version:refname", "--points-at", "HEAD", "--list", match
        )
        return stdout.splitlines()

    async def files_in_commit(self, ref: str = "HEAD") -> list[str]:
        stdout = await self._git(
            "diff-tree", "--name-only", "--no-commit-id", "--root", "-r", "-c", ref
        )
        return stdout.splitlines()

    async def files_changed_since(self, ref: str) -> list[str]:
        stdout = await self._git("diff", "--name-only", ref, "HEAD")
        return stdout.splitlines()

    async def checkout(self, paths: Sequence[str]) -> None:
        await self._git("checkout", "--", *paths)

    async def current_sha(self) -> str:
        return await self._git("rev-parse", "HEAD")

    async def check_clean(self) -> None:
        try:
            result = await self.describe_ref()
        except CommandError as exc:
            raise GitUnavailableError(
                "Unable to verify the working tree", details=exc.details
            ) from exc
        if result.is_dirty:
            raise UncommittedChangesError(
                "Working tree has uncommitted changes, please commit or remove them."
            )


class NpmRegistry:
    """Registry collaborator backed by the npm command line.

    Args:
        registry: Registry URL passed to every npm call.
        root: Directory npm runs in.
    """

    def __init__(self, registry: str, root: Path) -> None:
        self.registry = registry
        self.root = root

    async def _npm(self, *args: str, otp: str | None = None) -> subprocess.CompletedProcess[str]:
        cmd = ["npm", *args, "--registry", self.registry]
        if otp:
            cmd.extend(["--otp", otp])
        return await asyncio.to_thread(run, *cmd, cwd=self.root, check=False)

    async def _with_otp(self, otp_cache: OtpCache, *args: str) -> subprocess.CompletedProcess[str]:
        """Run an npm command, asking for a fresh OTP once if it is rejected."""
        used = otp_cache.otp
        result = await self._npm(*args, otp=used)
        if result.returncode != 0 and "EOTP" in result.stderr + result.stdout:
            otp = await otp_cache.request(self.request_otp, stale=used)
            result = await self._npm(*args, otp=otp)
        return result

    async def username(self) -> str | None:
        result = await self._npm("whoami")
        if result.returncode != 0:
            raise ValidationError(
                "Authentication error",
                details=result.stderr.strip(),
                fix_hint="Use `npm whoami` to troubleshoot.",
            )
        return result.stdout.strip() or None

    async def package_access(self, names: Sequence[str], username: str) -> None:
        result = await self._npm("access", "list", "packages", username, "--json")
        if result.returncode != 0:
            warn("Unable to verify package access; continuing without the check")
            return
        access = json.loads(result.stdout or "{}")
        denied = [n for n in names if n in access and access[n] != "read-write"]
        if denied:
            raise ValidationError(
                f"You do not have write permission for: {', '.join(denied)}",
                fix_hint="Ask a package owner to grant you access.",
            )

    async def two_factor_required(self) -> bool:
        result = await self._npm("profile", "get", "--json")
        if result.returncode != 0:
            warn("Unable to read the npm profile; assuming 2FA is not required")
            return False
        tfa = json.loads(result.stdout or "{}").get("tfa")
        return bool(tfa) and tfa.get("mode") == "auth-and-writes"

    async def is_published(self, name: str, version: str) -> bool:
        result = await self._npm("view", f"{name}@{version}", "version", "--json")
        return result.returncode == 0 and bool(result.stdout.strip())

    async def publish(
        self, node: PackageNode, tarball: Path, tag: str, otp_cache: OtpCache
    ) -> None:
        result = await self._with_otp(
            otp_cache, "publish", str(tarball), "--tag", tag, "--ignore-scripts"
        )
        if result.returncode != 0:
            raise ReleaseError(
                f"npm publish failed for {node.name}@{node.version}",
                details=result.stderr.strip(),
            )

    async def add_dist_tag(self, spec: str, tag: str, otp_cache: OtpCache) -> None:
        result = await self._with_otp(otp_cache, "dist-tag", "add", spec, tag)
        if result.returncode != 0:
            raise ReleaseError(f"Failed to add dist-tag {tag} to {spec}", details=result.stderr.strip())

    async def remove_dist_tag(self, spec: str, tag: str, otp_cache: OtpCache) -> None:
        name = spec.rsplit("@", 1)[0] if "@" in spec[1:] else spec
        result = await self._with_otp(otp_cache, "dist-tag", "rm", name, tag)
        if result.returncode != 0:
            raise ReleaseError(f"Failed to remove dist-tag {tag} from {name}", details=result.stderr.strip())

    async def request_otp(self, prompt: str) -> str:
        return await asyncio.to_thread(click.prompt, prompt, type=str)


class NpmPacker:
    """Packer collaborator producing tarballs with ``npm pack``.

    Tarballs land in a private temporary directory unless ``destination``
    is given.
    """

    def __init__(self, root: Path, destination: Path | None = None) -> None:
        self.root = root
        self.destination = destination or Path(tempfile.mkdtemp(prefix="monopub-"))

    async def pack(self, node: PackageNode, directory: Path) -> Packed:
        result = await asyncio.to_thread(
            run,
            "npm",
            "pack",
            str(directory),
            "--json",
            "--ignore-scripts",
            "--pack-destination",
            str(self.destination),
            cwd=self.root,
        )
        [info] = json.loads(result.stdout)
        return Packed(
            tarball_path=self.destination / info["filename"],
            shasum=info["shasum"],
            integrity=info.get("integrity", ""),
            size=info.get("size", 0),
            files=[f["path"] for f in info.get("files", [])],
        )


class NpmLifecycle:
    """Runs package.json scripts with ``npm run``."""

    async def run(self, location: Path, scripts: Mapping[str, str], stage: str) -> None:
        if stage not in scripts:
            return
        try:
            await asyncio.to_thread(run, "npm", "run", stage, cwd=location, capture=False)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise LifecycleError.from_exception(
                f"{stage} script failed in {location}", exc
            ) from exc
