"""Exception hierarchy for pgscratch."""
from __future__ import annotations

import shlex
from collections.abc import Sequence


class PgScratchError(RuntimeError):
    """Base class for errors raised while managing a scratch instance."""


class NotFoundError(PgScratchError):
    """Raised when no usable PostgreSQL installation can be located."""


class ConfigurationRejected(PgScratchError):
    """Raised when an option cannot be applied to an instance."""


class NotReadyError(PgScratchError):
    """Raised when the working directory is missing or unreadable."""


class DefunctError(PgScratchError):
    """Raised when an operation is attempted on a torn-down instance."""


class NotRunningError(PgScratchError):
    """Raised when an operation requires a started server."""


class LaunchFailed(PgScratchError):
    """Raised when an external command could not be started at all."""

    def __init__(self, operation: str, args: Sequence[str], reason: str) -> None:
        self.operation = operation
        self.command = list(args)
        self.reason = reason
        super().__init__(
            f"{operation} failed: could not run {shlex.join(self.command)}: {reason}"
        )


class ExternalCommandFailed(PgScratchError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(
        self,
        operation: str,
        args: Sequence[str],
        returncode: int,
        stderr: str = "",
    ) -> None:
        self.operation = operation
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = stderr.strip() or "no output"
        super().__init__(
            f"{operation} failed (exit {returncode}); "
            f"command: {shlex.join(self.command)}; stderr: {message}"
        )


class TeardownPanic(BaseException):
    """Raised by ``must_fini`` when teardown fails.

    Derives from :class:`BaseException` so ``except Exception`` blocks in test
    code do not absorb a broken cleanup.
    """


__all__ = [
    "ConfigurationRejected",
    "DefunctError",
    "ExternalCommandFailed",
    "LaunchFailed",
    "NotFoundError",
    "NotReadyError",
    "NotRunningError",
    "PgScratchError",
    "TeardownPanic",
]
