"""pgscratch: disposable PostgreSQL servers for test suites.

The public surface is :class:`ScratchPostgres` plus the option factories in
:mod:`pgscratch.options`.
"""
from __future__ import annotations

from . import options
from .errors import (
    ConfigurationRejected,
    DefunctError,
    ExternalCommandFailed,
    LaunchFailed,
    NotFoundError,
    NotReadyError,
    NotRunningError,
    PgScratchError,
    TeardownPanic,
)
from .instance import ScratchPostgres
from .locator import postgres_installed
from .runner import logger_sink, null_log
from .state import InstanceState

__all__ = [
    "ConfigurationRejected",
    "DefunctError",
    "ExternalCommandFailed",
    "InstanceState",
    "LaunchFailed",
    "NotFoundError",
    "NotReadyError",
    "NotRunningError",
    "PgScratchError",
    "ScratchPostgres",
    "TeardownPanic",
    "__version__",
    "get_version",
    "logger_sink",
    "null_log",
    "options",
    "postgres_installed",
]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
