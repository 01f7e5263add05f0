"""Process exit codes for the ``pgscratch`` command line."""
from __future__ import annotations

from enum import IntEnum

from .config import ConfigError
from .errors import ConfigurationRejected, NotFoundError, NotReadyError


class ExitCode(IntEnum):
    """Exit statuses reported by ``pgscratch`` commands.

    ``VALIDATION`` covers bad configuration or rejected options,
    ``ENVIRONMENT`` a missing PostgreSQL installation or unusable working
    directory, and ``PROVIDER`` a PostgreSQL utility that failed to run or
    exited non-zero.
    """

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4

    @classmethod
    def for_exception(cls, exc: BaseException) -> ExitCode:
        """Return the exit code reported when a command fails with *exc*."""
        if isinstance(exc, (ConfigError, ConfigurationRejected)):
            return cls.VALIDATION
        if isinstance(exc, (NotFoundError, NotReadyError)):
            return cls.ENVIRONMENT
        return cls.PROVIDER


__all__ = ["ExitCode"]
