"""pytest fixtures backed by a scratch PostgreSQL server.

Enable with ``-p pgscratch.pytest_plugin`` or by listing
``"pgscratch.pytest_plugin"`` in ``pytest_plugins`` of the root
``conftest.py``. One server is started per session; each test using
``pgscratch_db`` gets a fresh database.
"""
from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterator

import pytest

from . import options as opt
from .config import ScratchConfig, load_config
from .errors import NotFoundError
from .instance import ScratchPostgres
from .runner import logger_sink

LOGGER = logging.getLogger("pgscratch.pytest")

_NAME_CLEANUP = re.compile(r"[^a-z0-9_]+")


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register the pgscratch command line options."""
    group = parser.getgroup("pgscratch")
    group.addoption(
        "--pgscratch-postgres-path",
        default=None,
        help="Directory holding the PostgreSQL utilities used by pgscratch fixtures.",
    )


@pytest.fixture(scope="session")
def pgscratch_config(pytestconfig: pytest.Config) -> ScratchConfig:
    """Configuration merged from file, environment and command line."""
    return load_config(
        overrides={"postgres_path": pytestconfig.getoption("pgscratch_postgres_path")}
    )


@pytest.fixture(scope="session")
def pgscratch_instance(pgscratch_config: ScratchConfig) -> Iterator[ScratchPostgres]:
    """A started server shared by the session; skipped when PostgreSQL is absent."""
    try:
        instance = ScratchPostgres(
            opt.log_func(logger_sink(LOGGER)),
            *pgscratch_config.options(),
        )
    except NotFoundError as exc:
        pytest.skip(f"PostgreSQL is not installed: {exc}")

    try:
        instance.start()
        yield instance
    finally:
        instance.must_fini()


@pytest.fixture
def pgscratch_db(pgscratch_instance: ScratchPostgres, request: pytest.FixtureRequest) -> str:
    """Create a database for the requesting test and return its URI."""
    return pgscratch_instance.create_db(database_name(request.node.name))


def database_name(test_name: str) -> str:
    """Return a unique, identifier-safe database name derived from *test_name*."""
    stem = _NAME_CLEANUP.sub("_", test_name.lower()).strip("_")[:40] or "test"
    return f"{stem}_{uuid.uuid4().hex[:8]}"


__all__ = ["database_name", "pgscratch_config", "pgscratch_db", "pgscratch_instance"]
