"""Locate an installed PostgreSQL engine.

A candidate directory is accepted only when every utility in
:data:`REQUIRED_UTILITIES` is present in it as a regular file. Candidates are
examined in order and the first complete directory wins; utilities are never
combined from different directories, so the selected set always belongs to a
single installation.

When no explicit directory is given the search covers ``$PATH`` followed by
the package-manager locations in :data:`WELL_KNOWN_GLOBS`.
"""
from __future__ import annotations

import glob
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import NotFoundError
from .runner import CommandRunner

LOGGER = logging.getLogger(__name__)

REQUIRED_UTILITIES: tuple[str, ...] = ("psql", "initdb", "pg_ctl", "pg_dump")

WELL_KNOWN_GLOBS: tuple[str, ...] = (
    "/usr/lib/postgresql/*/bin",  # Debian
    "/usr/pgsql-*/bin",  # CentOS
    "/usr/local/pgsql/bin",
    "/usr/local/pgsql-*/bin",
    "/usr/local/bin",  # macOS Homebrew, and others
)


@dataclass(frozen=True, slots=True)
class PostgresInstallation:
    """A complete set of PostgreSQL utilities and the version they report."""

    bin_dir: Path
    commands: Mapping[str, Path] = field(default_factory=dict)
    version: str = ""


def candidate_directories(
    search_hint: str | os.PathLike[str] | None,
    *,
    env: Mapping[str, str] | None = None,
) -> list[Path]:
    """Return the directories to examine, in search order."""
    if search_hint:
        return [Path(search_hint)]

    resolved_env = os.environ if env is None else env
    candidates = [
        Path(entry)
        for entry in resolved_env.get("PATH", "").split(os.pathsep)
        if entry
    ]
    for pattern in WELL_KNOWN_GLOBS:
        candidates.extend(Path(match) for match in sorted(glob.glob(pattern)))
    return candidates


def find_postgres(
    search_hint: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> dict[str, Path]:
    """Return the utilities of the first complete installation found."""
    candidates = candidate_directories(search_hint, env=env)
    for directory in candidates:
        commands: dict[str, Path] = {}
        for name in REQUIRED_UTILITIES:
            path = directory / name
            if not path.is_file():
                break
            commands[name] = path
        else:
            LOGGER.debug("Using PostgreSQL utilities from %s", directory)
            return commands

    tried = os.pathsep.join(str(directory) for directory in candidates)
    raise NotFoundError(f"couldn't find Postgres; tried {tried}")


def query_version(commands: Mapping[str, Path], runner: CommandRunner | None = None) -> str:
    """Return the version reported by ``psql -V``."""
    active = runner or CommandRunner()
    result = active.run("psql -V", [str(commands["psql"]), "-V"])
    fields = (result.stdout or "").strip().split()
    if not fields:
        raise NotFoundError(f"{commands['psql']} -V reported no version.")
    return fields[-1]


def locate(
    search_hint: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    runner: CommandRunner | None = None,
) -> PostgresInstallation:
    """Find a complete installation and query its version."""
    commands = find_postgres(search_hint, env=env)
    version = query_version(commands, runner)
    return PostgresInstallation(
        bin_dir=commands["psql"].parent,
        commands=commands,
        version=version,
    )


def postgres_installed(search_hint: str | os.PathLike[str] | None = None) -> None:
    """Raise :class:`NotFoundError` unless an installation can be found."""
    find_postgres(search_hint)


__all__ = [
    "PostgresInstallation",
    "REQUIRED_UTILITIES",
    "WELL_KNOWN_GLOBS",
    "candidate_directories",
    "find_postgres",
    "locate",
    "postgres_installed",
    "query_version",
]
