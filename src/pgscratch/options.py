"""Options accepted by :class:`~pgscratch.instance.ScratchPostgres`.

Each factory returns a callable applied to the instance, either during
construction or through ``set_option``. An option that cannot be applied
raises :class:`~pgscratch.errors.ConfigurationRejected`; during construction
this aborts the whole constructor, so a partially configured instance is
never returned.
"""
from __future__ import annotations

import os
from collections.abc import Callable
from typing import TYPE_CHECKING

from .runner import LogFunc

if TYPE_CHECKING:
    from .instance import ScratchPostgres

Option = Callable[["ScratchPostgres"], None]


def postgres_path(directory: str | os.PathLike[str] | None) -> Option:
    """Look for the PostgreSQL utilities in *directory* only.

    Fails when no complete installation lives there, and once the instance
    has been initialised.
    """

    def _apply(instance: ScratchPostgres) -> None:
        instance._set_postgres_path(directory)

    return _apply


def working_dir(directory: str | os.PathLike[str]) -> Option:
    """Use *directory* as the working directory.

    The caller keeps ownership: the directory must exist before ``start`` and
    is left in place by ``fini``.
    """

    def _apply(instance: ScratchPostgres) -> None:
        instance._set_working_dir(directory)

    return _apply


def encoding(value: str) -> Option:
    """Pass *value* to ``initdb -E``; it is not checked until ``initdb`` runs."""

    def _apply(instance: ScratchPostgres) -> None:
        instance._set_encoding(value)

    return _apply


def log_func(logf: LogFunc | None) -> Option:
    """Send diagnostic output to *logf*, e.g. ``print`` or a logger sink."""

    def _apply(instance: ScratchPostgres) -> None:
        instance._set_log_func(logf)

    return _apply


def conf_template(text: str) -> Option:
    """Replace the Jinja2 template rendered into ``postgresql.conf``.

    The template must reference ``{{ working_dir }}``.
    """

    def _apply(instance: ScratchPostgres) -> None:
        instance._set_conf_template(text)

    return _apply


def dir_prefix(prefix: str) -> Option:
    """Set the prefix used when generating a working directory."""

    def _apply(instance: ScratchPostgres) -> None:
        instance._set_dir_prefix(prefix)

    return _apply


__all__ = [
    "Option",
    "conf_template",
    "dir_prefix",
    "encoding",
    "log_func",
    "postgres_path",
    "working_dir",
]
