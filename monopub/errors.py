"""Exception hierarchy for monopub.

Every error the pipeline raises on purpose derives from ReleaseError and
carries an exit code for the CLI:

- 1: General error
- 3: Validation error
- 4: Working tree error
- 5: Dependency cycle
- 6: Partial publish
"""

from __future__ import annotations

import subprocess
from collections.abc import Iterable


class ReleaseError(Exception):
    """Base exception for all release errors."""

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        details: str | None = None,
        fix_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.fix_hint = fix_hint

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"\nDetails: {self.details}")
        if self.fix_hint:
            parts.append(f"\nFix: {self.fix_hint}")
        return "".join(parts)


class ValidationError(ReleaseError):
    """Pre-flight validation failures.

    Raised when:
    - Conflicting version strategies or flags are combined
    - A non-private package has no version
    - Explicit versions name a package outside the workspace
    """

    exit_code = 3


class WorkingTreeError(ReleaseError):
    """The git working tree is not in a publishable state."""

    exit_code = 4


class UncommittedChangesError(WorkingTreeError):
    """Uncommitted changes are present in the working tree."""


class GitUnavailableError(WorkingTreeError):
    """git could not inspect the working tree (e.g. no repository)."""


class CommandError(ReleaseError):
    """An external command (git, npm) could not be run or exited non-zero."""

    @classmethod
    def from_exception(cls, message: str, exc: BaseException) -> CommandError:
        """Wrap a subprocess failure, keeping its stderr as the details."""
        details = str(exc)
        if isinstance(exc, subprocess.CalledProcessError):
            stderr = exc.stderr
            if isinstance(stderr, bytes):
                stderr = stderr.decode(errors="replace")
            if stderr and stderr.strip():
                details = f"{exc}\n{stderr.strip()}"
        return cls(message, details=details)


class LifecycleError(CommandError):
    """A package.json lifecycle script failed."""


class CycleError(ReleaseError):
    """Dependency cycle among the packages being processed."""

    exit_code = 5

    def __init__(self, members: Iterable[str]) -> None:
        self.members = sorted(members)
        super().__init__(
            f"Dependency cycle detected involving: {', '.join(self.members)}",
            fix_hint="Remove the cycle or run without --reject-cycles.",
        )


class TaskRunError(ReleaseError):
    """A per-package operation failed during a topological run.

    The first failure is chained as ``__cause__``.
    """

    def __init__(
        self,
        name: str,
        error: BaseException,
        completed: list[str],
        failed: list[str],
    ) -> None:
        self.name = name
        self.error = error
        self.completed = completed
        self.failed = failed
        super().__init__(f"{name}: {error}")


class PartialPublishError(ReleaseError):
    """Some packages were processed before a stage failed.

    Already-published packages are never unpublished; this error only
    reports which packages made it and which did not.
    """

    exit_code = 6

    def __init__(self, stage: str, succeeded: list[str], failed: list[str]) -> None:
        self.stage = stage
        self.succeeded = succeeded
        self.failed = failed
        details = (
            f"succeeded: {', '.join(succeeded) or '<none>'}; "
            f"failed: {', '.join(failed) or '<none>'}"
        )
        super().__init__(f"{stage} failed for {len(failed)} package(s)", details)
