"""Shell and git utilities.

Provides simple wrappers around subprocess calls for running git and npm,
plus the output helpers used for every line the release tool prints.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "describe", "--long").
        cwd: Directory to run in. Defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., tag lookup).

    Returns:
        Stripped stdout from the git command.

    Raises:
        subprocess.CalledProcessError: If the command fails and check is set.
    """
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=check
    )
    return result.stdout.strip()


def run(
    *args: str, cwd: Path | None = None, check: bool = True, capture: bool = True
) -> subprocess.CompletedProcess[str]:
    """Run an arbitrary command.

    By default the output is captured and the full CompletedProcess is
    returned so callers can inspect stderr (npm reports OTP challenges
    there). With ``capture=False`` output streams directly to the terminal
    so users can see script progress.

    Args:
        *args: Command and arguments (e.g., "npm", "pack", "--json").
        cwd: Directory to run in.
        check: If True (default), raise on non-zero exit.
        capture: If True (default), capture stdout and stderr.
    """
    return subprocess.run(args, cwd=cwd, capture_output=capture, text=True, check=check)


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate the stages of the publish pipeline in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def info(msg: str) -> None:
    """Print an indented progress line."""
    print(f"  {msg}")


def notice(msg: str) -> None:
    """Print an FYI line for conditions the pipeline tolerates."""
    print(f"  FYI: {msg}", file=sys.stderr)


def warn(msg: str) -> None:
    """Print a warning line."""
    print(f"  WARNING: {msg}", file=sys.stderr)

