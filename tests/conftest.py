"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

from pgscratch.errors import NotFoundError
from pgscratch.locator import find_postgres

pytest_plugins = ["pytester"]

FAKE_VERSION = "16.2"

_PREAMBLE = """\
#!/bin/sh
echo "$(basename "$0") $*" >> "$(dirname "$0")/calls.log"
"""

FAKE_SCRIPTS = {
    "psql": """\
if [ "$1" = "-V" ]; then
    echo "psql (PostgreSQL) {version}"
    exit 0
fi
name=$(printf '%s' "$2" | sed -n 's/^CREATE DATABASE "\\([^"]*\\)".*/\\1/p')
if [ -z "$name" ]; then
    echo "ERROR:  syntax error" >&2
    exit 1
fi
echo "$name" >> "$(dirname "$0")/databases"
echo "CREATE DATABASE"
""",
    "initdb": """\
while [ $# -gt 0 ]; do
    case "$1" in
        -D) shift; datadir="$1" ;;
        -E) shift; encoding="$1" ;;
    esac
    shift
done
if [ "$encoding" = "GARBAGE" ]; then
    echo "initdb: error: \\"GARBAGE\\" is not a valid server encoding name" >&2
    exit 1
fi
mkdir -p "$datadir"
echo "Success."
""",
    "pg_ctl": """\
for last in "$@"; do :; done
if [ "$last" = "stop" ] && [ -f "$(dirname "$0")/fail_stop" ]; then
    echo "pg_ctl: could not send stop signal" >&2
    exit 1
fi
""",
    "pg_dump": """\
name=$(printf '%s' "$1" | sed 's|^postgresql:///\\([^?]*\\)?.*|\\1|')
if ! grep -qx "$name" "$(dirname "$0")/databases" 2>/dev/null; then
    echo "pg_dump: error: database \\"$name\\" does not exist" >&2
    exit 1
fi
echo "-- PostgreSQL database dump"
echo "-- Dumped database: $name"
""",
}


@dataclass(slots=True)
class FakePostgres:
    """A directory of stub PostgreSQL utilities that record their calls."""

    bin_dir: Path

    @property
    def calls_log(self) -> Path:
        return self.bin_dir / "calls.log"

    def calls(self, utility: str | None = None) -> list[str]:
        """Return recorded invocations, optionally limited to *utility*."""
        if not self.calls_log.exists():
            return []
        lines = self.calls_log.read_text(encoding="utf-8").splitlines()
        if utility is None:
            return lines
        return [line for line in lines if line.split(" ", 1)[0] == utility]

    def fail_stop(self) -> None:
        """Make subsequent ``pg_ctl ... stop`` calls exit non-zero."""
        (self.bin_dir / "fail_stop").write_text("", encoding="utf-8")


def write_fake_postgres(bin_dir: Path, version: str = FAKE_VERSION) -> FakePostgres:
    """Populate *bin_dir* with stub utilities reporting *version*."""
    bin_dir.mkdir(parents=True, exist_ok=True)
    for name, body in FAKE_SCRIPTS.items():
        script = bin_dir / name
        script.write_text(_PREAMBLE + textwrap.dedent(body).replace("{version}", version))
        script.chmod(0o755)
    return FakePostgres(bin_dir)


@pytest.fixture
def fake_postgres(tmp_path: Path) -> FakePostgres:
    """Return stub PostgreSQL utilities installed under ``tmp_path``."""
    return write_fake_postgres(tmp_path / "pgbin")


def _real_postgres_available() -> bool:
    try:
        find_postgres(None)
    except NotFoundError:
        return False
    return True


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip tests needing PostgreSQL when it is absent, and slow tests during mutation runs."""
    if not _real_postgres_available():
        skip_postgres = pytest.mark.skip(reason="PostgreSQL is not installed.")
        for item in items:
            if item.get_closest_marker("postgres") is not None:
                item.add_marker(skip_postgres)
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)
