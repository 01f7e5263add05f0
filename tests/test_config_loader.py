"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakePostgres
from pgscratch.config import ConfigError, ScratchConfig, load_config
from pgscratch.instance import ScratchPostgres


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, ScratchConfig)
    assert config.postgres_path is None
    assert config.working_dir is None
    assert config.encoding == "UNICODE"
    assert config.dir_prefix is None
    assert config.verbose is False
    assert config.options() == []


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "pgscratch.yml"
    cfg.write_text(
        "postgres_path: /usr/lib/postgresql/16/bin\n"
        "encoding: UTF8\n"
        "verbose: true\n"
        "working_dir: {work}\n".format(work=tmp_path / "work")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.postgres_path == Path("/usr/lib/postgresql/16/bin")
    assert config.encoding == "UTF8"
    assert config.verbose is True
    assert config.working_dir == tmp_path / "work"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "pgscratch.yml"
    cfg.write_text("encoding: LATIN1\nverbose: true\n")
    env = {
        "PGSCRATCH_ENCODING": "UTF8",
        "PGSCRATCH_VERBOSE": "false",
        "PGSCRATCH_DIR_PREFIX": "ci.",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.encoding == "UTF8"
    assert config.verbose is False
    assert config.dir_prefix == "ci."


def test_overrides_beat_environment(tmp_path: Path) -> None:
    """Programmatic overrides win; ``None`` overrides are ignored."""
    env = {"PGSCRATCH_ENCODING": "UTF8"}

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"encoding": "SQL_ASCII", "working_dir": None},
    )

    assert config.encoding == "SQL_ASCII"
    assert config.working_dir is None


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("dir_prefix: suite.\n")

    config = load_config(env={"PGSCRATCH_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.dir_prefix == "suite."


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A non-mapping document raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_key_raises(tmp_path: Path) -> None:
    """Unexpected keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_invalid_types_raise(tmp_path: Path) -> None:
    """Badly typed values are rejected."""
    with pytest.raises(ConfigError, match="verbose"):
        load_config(config_file=tmp_path / "missing.yml", env={"PGSCRATCH_VERBOSE": "maybe"})
    with pytest.raises(ConfigError, match="encoding"):
        load_config(config_file=tmp_path / "missing.yml", env={"PGSCRATCH_ENCODING": ""})


def test_to_dict_round_trips_paths(tmp_path: Path) -> None:
    """to_dict emits plain strings for paths."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"PGSCRATCH_WORKING_DIR": str(tmp_path)},
    )
    payload = config.to_dict()
    assert payload["working_dir"] == str(tmp_path)
    assert payload["postgres_path"] is None
    assert payload["config_file"] == str(tmp_path / "missing.yml")


def test_options_configure_instance(tmp_path: Path, fake_postgres: FakePostgres) -> None:
    """Config-derived options are applied to a new instance."""
    template = tmp_path / "postgresql.conf.j2"
    template.write_text("unix_socket_directories = '{{ working_dir }}'\n")
    work = tmp_path / "work"
    work.mkdir()
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={
            "PGSCRATCH_POSTGRES_PATH": str(fake_postgres.bin_dir),
            "PGSCRATCH_WORKING_DIR": str(work),
            "PGSCRATCH_ENCODING": "UTF8",
            "PGSCRATCH_CONF_TEMPLATE_FILE": str(template),
        },
    )

    pg = ScratchPostgres(*config.options())

    assert pg.commands["psql"] == fake_postgres.bin_dir / "psql"
    assert pg.working_dir == work
    assert pg.encoding == "UTF8"
    assert pg.conf_template == template.read_text()
    pg.fini()


def test_missing_template_file_raises(tmp_path: Path) -> None:
    """An unreadable template file is a configuration error."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"PGSCRATCH_CONF_TEMPLATE_FILE": str(tmp_path / "absent.j2")},
    )
    with pytest.raises(ConfigError, match="absent.j2"):
        config.options()
