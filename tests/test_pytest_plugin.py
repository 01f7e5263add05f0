"""Tests for the pgscratch pytest fixtures."""
from __future__ import annotations

import re

import pytest

from conftest import FakePostgres
from pgscratch import locator
from pgscratch.pytest_plugin import database_name

DB_TEST_MODULE = """
    def test_first(pgscratch_db):
        assert pgscratch_db.startswith("postgresql:///test_first_")

    def test_second(pgscratch_db, pgscratch_instance):
        assert pgscratch_db.startswith("postgresql:///test_second_")
        assert pgscratch_instance.pg_version == "16.2"
"""


@pytest.fixture
def isolated_env(pytester: pytest.Pytester, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's pgscratch settings out of the inner session."""
    monkeypatch.setenv("PGSCRATCH_CONFIG_FILE", str(pytester.path / "absent.yml"))
    monkeypatch.delenv("PGSCRATCH_POSTGRES_PATH", raising=False)


@pytest.mark.usefixtures("isolated_env")
def test_fixtures_share_one_server(
    pytester: pytest.Pytester,
    fake_postgres: FakePostgres,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """One server serves the session and each test gets its own database."""
    monkeypatch.setenv("PGSCRATCH_POSTGRES_PATH", str(fake_postgres.bin_dir))
    pytester.makepyfile(DB_TEST_MODULE)

    result = pytester.runpytest("-p", "pgscratch.pytest_plugin")

    result.assert_outcomes(passed=2)
    assert len(fake_postgres.calls("initdb")) == 1
    assert [line.rsplit(" ", 1)[-1] for line in fake_postgres.calls("pg_ctl")] == [
        "start",
        "stop",
    ]
    created = (fake_postgres.bin_dir / "databases").read_text().split()
    assert [name.rsplit("_", 1)[0] for name in created] == ["test_first", "test_second"]


@pytest.mark.usefixtures("isolated_env")
def test_command_line_option_selects_installation(
    pytester: pytest.Pytester,
    fake_postgres: FakePostgres,
) -> None:
    pytester.makepyfile(DB_TEST_MODULE)

    result = pytester.runpytest(
        "-p",
        "pgscratch.pytest_plugin",
        f"--pgscratch-postgres-path={fake_postgres.bin_dir}",
    )

    result.assert_outcomes(passed=2)


@pytest.mark.usefixtures("isolated_env")
def test_missing_postgres_skips(
    pytester: pytest.Pytester,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without any installation the dependent tests are skipped, not failed."""
    monkeypatch.setenv("PATH", str(pytester.path / "empty"))
    monkeypatch.setattr(locator, "WELL_KNOWN_GLOBS", ())
    pytester.makepyfile(DB_TEST_MODULE)

    result = pytester.runpytest("-p", "pgscratch.pytest_plugin", "-rs")

    result.assert_outcomes(skipped=2)
    result.stdout.fnmatch_lines(["*PostgreSQL is not installed*"])


@pytest.mark.parametrize(
    ("test_name", "stem"),
    [
        ("test_simple", "test_simple"),
        ("test_case[Param-1]", "test_case_param_1"),
        ("TEST---Upper", "test_upper"),
        ("[]", "test"),
        ("x" * 80, "x" * 40),
    ],
)
def test_database_name_is_identifier_safe(test_name: str, stem: str) -> None:
    name = database_name(test_name)
    assert re.fullmatch(rf"{stem}_[0-9a-f]{{8}}", name)


def test_database_names_are_unique() -> None:
    assert database_name("test_same") != database_name("test_same")
