"""One-time password cache shared by every publish call of a run."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from .runner import yield_slot

OtpPrompt = Callable[[str], Awaitable[str]]


class OtpCache:
    """Single-slot holder for the registry one-time password.

    The slot is read by every publish and dist-tag call. When a password is
    missing or rejected, concurrent callers queue on a lock so only one of
    them prompts the operator; the others pick up the fresh value. The
    password is never written to disk.

    Args:
        otp: Password to start with (e.g. from --otp).
    """

    def __init__(self, otp: str | None = None) -> None:
        self._otp = otp or None
        self._lock = asyncio.Lock()
        self.prompts = 0

    @property
    def otp(self) -> str | None:
        return self._otp

    async def request(
        self,
        prompt: OtpPrompt,
        message: str = "Enter OTP:",
        *,
        stale: str | None = None,
    ) -> str:
        """Return a usable password, prompting only if there is none.

        Args:
            prompt: Coroutine that asks the operator for a password.
            message: Prompt text.
            stale: A password the registry just rejected. A cached value
                equal to it is not reused.
        """
        if self._otp and self._otp != stale:
            return self._otp

        # Waiting on the operator does not hold a worker slot
        async with yield_slot():
            async with self._lock:
                if self._otp and self._otp != stale:
                    return self._otp
                otp = (await prompt(message)).strip()
                self.prompts += 1
                self._otp = otp
                return otp
