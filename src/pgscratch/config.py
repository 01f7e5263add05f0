"""Configuration loader for pgscratch.

Values are merged from, in increasing precedence:

1. Built-in defaults.
2. ``~/.config/pgscratch/config.yml`` (or the file named by
   ``PGSCRATCH_CONFIG_FILE``, or an explicit path).
3. Environment variables prefixed with ``PGSCRATCH_``.
4. Explicit overrides supplied programmatically (CLI flags).

For example::

    export PGSCRATCH_POSTGRES_PATH=/usr/lib/postgresql/16/bin
    export PGSCRATCH_VERBOSE=true

Values are coerced via PyYAML's ``safe_load`` so booleans parse naturally.
The result is an immutable :class:`ScratchConfig`, which can be turned into
instance options with :meth:`ScratchConfig.options`.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml

from . import options as opt
from .instance import DEFAULT_ENCODING
from .options import Option

ENV_PREFIX = "PGSCRATCH_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ScratchConfig:
    """Resolved configuration values for pgscratch."""

    config_file: Path
    postgres_path: Path | None = None
    working_dir: Path | None = None
    encoding: str = DEFAULT_ENCODING
    dir_prefix: str | None = None
    conf_template_file: Path | None = None
    verbose: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "config_file": str(self.config_file),
            "postgres_path": _path_or_none(self.postgres_path),
            "working_dir": _path_or_none(self.working_dir),
            "encoding": self.encoding,
            "dir_prefix": self.dir_prefix,
            "conf_template_file": _path_or_none(self.conf_template_file),
            "verbose": self.verbose,
        }

    def options(self) -> list[Option]:
        """Return the instance options implied by this configuration."""
        result: list[Option] = []
        if self.postgres_path is not None:
            result.append(opt.postgres_path(self.postgres_path))
        if self.dir_prefix:
            result.append(opt.dir_prefix(self.dir_prefix))
        if self.working_dir is not None:
            result.append(opt.working_dir(self.working_dir))
        if self.encoding != DEFAULT_ENCODING:
            result.append(opt.encoding(self.encoding))
        if self.conf_template_file is not None:
            try:
                text = self.conf_template_file.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigError(
                    f"Failed to read config template {self.conf_template_file}: {exc}"
                ) from exc
            result.append(opt.conf_template(text))
        return result


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/pgscratch/config.yml",
    "postgres_path": None,
    "working_dir": None,
    "encoding": DEFAULT_ENCODING,
    "dir_prefix": None,
    "conf_template_file": None,
    "verbose": False,
}

ALLOWED_KEYS = set(DEFAULTS.keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> ScratchConfig:
    """Load and merge configuration sources into a :class:`ScratchConfig`."""
    merged: dict[str, object] = dict(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_path = _determine_config_path(str(DEFAULTS["config_file"]), config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    merged.update(file_values)
    merged.update(_build_env_overrides(resolved_env))
    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    merged["config_file"] = str(config_path)

    unknown_keys = set(merged.keys()) - ALLOWED_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    return _build_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    result: dict[str, object] = {}
    for key, value in data.items():
        if not isinstance(key, str):
            raise ConfigError(f"Config file {path} must use string keys. Got {key!r}.")
        result[key] = value
    return result


def _build_config(raw: Mapping[str, object]) -> ScratchConfig:
    verbose = raw.get("verbose", False)
    if not isinstance(verbose, bool):
        raise ConfigError(f"Expected verbose to be a boolean. Got {verbose!r}.")

    encoding = raw.get("encoding")
    if not isinstance(encoding, str) or not encoding.strip():
        raise ConfigError(f"Expected encoding to be a non-empty string. Got {encoding!r}.")

    dir_prefix = raw.get("dir_prefix")
    if dir_prefix is not None and not isinstance(dir_prefix, str):
        raise ConfigError(f"Expected dir_prefix to be a string. Got {dir_prefix!r}.")

    return ScratchConfig(
        config_file=_to_path(raw.get("config_file")),
        postgres_path=_optional_path(raw.get("postgres_path"), "postgres_path"),
        working_dir=_optional_path(raw.get("working_dir"), "working_dir"),
        encoding=encoding.strip(),
        dir_prefix=dir_prefix or None,
        conf_template_file=_optional_path(raw.get("conf_template_file"), "conf_template_file"),
        verbose=verbose,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if not name:
            continue
        overrides[name] = _coerce_value(value)
    return overrides


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_path(value: object, label: str) -> Path | None:
    if value is None or value == "":
        return None
    if not isinstance(value, (str, Path)):
        raise ConfigError(f"Expected {label} to be a path. Got {value!r}.")
    return _to_path(value)


def _path_or_none(value: Path | None) -> str | None:
    return str(value) if value is not None else None


__all__ = ["ConfigError", "ScratchConfig", "load_config"]
