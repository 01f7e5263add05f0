"""Lifecycle controller for a disposable PostgreSQL server.

:class:`ScratchPostgres` owns one server instance from construction to
teardown::

    pg = ScratchPostgres(options.log_func(print))
    pg.start()
    try:
        uri = pg.create_db("app_test")
        ...
    finally:
        pg.must_fini()

The ``deadline`` keyword accepted by the public operations is not passed on
to the external commands; every call blocks until its subprocess exits.
"""
from __future__ import annotations

import getpass
import logging
import os
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType, TracebackType
from typing import IO, TYPE_CHECKING

from .errors import (
    ConfigurationRejected,
    DefunctError,
    ExternalCommandFailed,
    LaunchFailed,
    NotFoundError,
    NotReadyError,
    NotRunningError,
    TeardownPanic,
)
from .locator import locate
from .runner import CommandRunner, LogFunc, null_log
from .state import InstanceState
from .templates import TemplateEngine, TemplateRenderError, default_conf_template

if TYPE_CHECKING:
    from .options import Option

LOGGER = logging.getLogger(__name__)

DEFAULT_ENCODING = "UNICODE"
DEFAULT_DIR_PREFIX = "pgscratch."
ADMIN_USER = "postgres"
ADMIN_DATABASE = "postgres"
URI_SCHEME = "postgresql"
CONF_FILE_NAME = "postgresql.conf"
SERVER_LOG_NAME = "postgres.log"


def default_dir_prefix() -> str:
    """Return the working directory prefix, including the user name when known."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        return DEFAULT_DIR_PREFIX
    return f"{DEFAULT_DIR_PREFIX}{user}." if user else DEFAULT_DIR_PREFIX


class ScratchPostgres:
    """A managed, throwaway PostgreSQL server.

    The instance and all of its data are disposed of by :meth:`fini`. Once
    torn down an instance cannot be started again.
    """

    def __init__(self, *options: Option, env: Mapping[str, str] | None = None) -> None:
        """Apply *options* in order, then locate PostgreSQL if still needed.

        Any failing option aborts construction. *env* replaces ``os.environ``
        when searching ``PATH`` for the engine.
        """
        self._env = env
        self._state = InstanceState.UNINITIALIZED
        self._encoding = DEFAULT_ENCODING
        self._logf: LogFunc = null_log
        self._dir_prefix = default_dir_prefix()
        self._conf_template = default_conf_template()
        self._working_dir: Path | None = None
        self._owns_working_dir = False
        self._commands: dict[str, Path] = {}
        self._pg_version = ""
        # Extra server options passed through ``pg_ctl -o``; not exposed yet.
        self._extra_server_opts: tuple[str, ...] = ()
        self._templates = TemplateEngine.default()
        self._runner = CommandRunner(log=self._log)

        for option in options:
            option(self)
        if not self._commands:
            self._resolve(None)

    def __repr__(self) -> str:
        return (
            f"ScratchPostgres(state={self._state.name}, version={self._pg_version!r}, "
            f"working_dir={self._working_dir!r})"
        )

    def __enter__(self) -> ScratchPostgres:
        try:
            self.start()
        except BaseException:
            self.fini()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.fini()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> InstanceState:
        """Current lifecycle state."""
        return self._state

    @property
    def pg_version(self) -> str:
        """Version reported by the located ``psql``."""
        return self._pg_version

    @property
    def commands(self) -> Mapping[str, Path]:
        """Resolved utility paths keyed by utility name."""
        return MappingProxyType(self._commands)

    @property
    def working_dir(self) -> Path | None:
        """Directory holding the versioned data directory and the socket."""
        return self._working_dir

    @property
    def owns_working_dir(self) -> bool:
        """``True`` when the working directory was generated and will be removed."""
        return self._owns_working_dir

    @property
    def db_dir(self) -> Path | None:
        """Data directory, ``<working_dir>/<pg_version>``."""
        if self._working_dir is None:
            return None
        return self._working_dir / self._pg_version

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def conf_template(self) -> str:
        return self._conf_template

    @property
    def dir_prefix(self) -> str:
        return self._dir_prefix

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def set_option(self, *options: Option) -> None:
        """Apply *options* in order, stopping at the first failure."""
        for option in options:
            option(self)

    def _require_uninitialized(self, what: str) -> None:
        if self._state.reached(InstanceState.INITIALIZED):
            raise ConfigurationRejected(
                f"Cannot set {what}; instance is {self._state.name.lower()}."
            )

    def _set_postgres_path(self, directory: str | os.PathLike[str] | None) -> None:
        self._require_uninitialized("postgres path")
        try:
            self._resolve(directory)
        except (NotFoundError, LaunchFailed, ExternalCommandFailed) as exc:
            raise ConfigurationRejected(f"Unusable postgres path {directory!r}: {exc}") from exc

    def _set_working_dir(self, directory: str | os.PathLike[str]) -> None:
        if self._owns_working_dir:
            raise ConfigurationRejected(
                f"Cannot set working directory; already using {self._working_dir}."
            )
        self._require_uninitialized("working directory")
        self._working_dir = Path(directory)

    def _set_encoding(self, value: str) -> None:
        self._require_uninitialized("encoding")
        self._encoding = value

    def _set_log_func(self, logf: LogFunc | None) -> None:
        self._require_uninitialized("log function")
        self._logf = logf or null_log

    def _set_conf_template(self, text: str) -> None:
        self._require_uninitialized("config template")
        try:
            self._templates.validate(text)
        except TemplateRenderError as exc:
            raise ConfigurationRejected(str(exc)) from exc
        self._conf_template = text

    def _set_dir_prefix(self, prefix: str) -> None:
        if self._owns_working_dir:
            raise ConfigurationRejected(
                f"Cannot set directory prefix; already using {self._working_dir}."
            )
        if not prefix or os.sep in prefix:
            raise ConfigurationRejected(f"Invalid directory prefix {prefix!r}.")
        self._dir_prefix = prefix

    def _resolve(self, search_hint: str | os.PathLike[str] | None) -> None:
        installation = locate(search_hint, env=self._env, runner=self._runner)
        self._commands = dict(installation.commands)
        self._pg_version = installation.version
        LOGGER.debug(
            "Located PostgreSQL %s in %s", installation.version, installation.bin_dir
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, *, deadline: float | None = None) -> None:
        """Start the server, initialising the data directory on first use."""
        if self._state is InstanceState.DEFUNCT:
            raise DefunctError("pgscratch instance is defunct")
        if not self._state.reached(InstanceState.INITIALIZED):
            self._initialize()

        db_dir = self._require_db_dir()
        server_opts = " ".join(["-c listen_addresses=''", *self._extra_server_opts])
        self._runner.run(
            "Start",
            [
                self._commands["pg_ctl"],
                "-w",
                "-o",
                server_opts,
                "-s",
                "-D",
                db_dir,
                "-l",
                db_dir / SERVER_LOG_NAME,
                "start",
            ],
        )
        self._transition(InstanceState.SERVER_STARTED)

    def create_db(
        self,
        db_name: str,
        create_args: str = "",
        *,
        deadline: float | None = None,
    ) -> str:
        """Create *db_name* with ``psql`` and return its connection URI.

        *create_args* is appended verbatim to the ``CREATE DATABASE``
        statement, e.g. ``"TEMPLATE template0"``.
        """
        self._require_running("create database")
        statement = f'CREATE DATABASE "{db_name}"'
        if create_args:
            statement = f"{statement} {create_args}"
        self._runner.run(
            "CreateDB",
            [self._commands["psql"], "-c", statement, self.db_uri(ADMIN_DATABASE)],
        )
        return self.db_uri(db_name)

    def dump_db(self, db_name: str, sink: IO[bytes], *, deadline: float | None = None) -> None:
        """Write the output of ``pg_dump`` for *db_name* into *sink*.

        Useful for capturing database contents when a test fails.
        """
        self._require_running("dump database")
        self._runner.stream(
            "DumpDB",
            [self._commands["pg_dump"], self.db_uri(db_name)],
            sink,
        )

    def db_uri(self, db_name: str) -> str:
        """Return the local-socket connection URI for *db_name*."""
        host = self._working_dir if self._working_dir is not None else ""
        return f"{URI_SCHEME}:///{db_name}?host={host}&user={ADMIN_USER}"

    def fini(self, *, deadline: float | None = None) -> None:
        """Stop the server if running and remove a generated working directory.

        Safe to call repeatedly and before :meth:`start`. The instance is
        defunct afterwards even when stopping the server fails; that failure
        is re-raised once cleanup has run.
        """
        if self._state is InstanceState.DEFUNCT:
            return
        try:
            if self._state.reached(InstanceState.SERVER_STARTED):
                self._runner.run(
                    "Fini",
                    [
                        self._commands["pg_ctl"],
                        "-m",
                        "immediate",
                        "-w",
                        "-D",
                        self._require_db_dir(),
                        "stop",
                    ],
                )
        finally:
            if self._owns_working_dir and self._state.reached(InstanceState.PRESENT):
                self._remove_working_dir()
            self._transition(InstanceState.DEFUNCT)

    def must_fini(self, *, deadline: float | None = None) -> None:
        """Call :meth:`fini`, converting any failure into :class:`TeardownPanic`."""
        try:
            self.fini(deadline=deadline)
        except Exception as exc:
            raise TeardownPanic(f"must_fini: {exc}") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _initialize(self) -> None:
        if self._working_dir is None:
            try:
                self._working_dir = Path(tempfile.mkdtemp(prefix=self._dir_prefix))
            except OSError as exc:
                self._transition(InstanceState.NOT_PRESENT)
                raise NotReadyError(f"Cannot create working directory: {exc}") from exc
            self._owns_working_dir = True
            self._transition(InstanceState.PRESENT)
        elif not self._working_dir.is_dir() or not os.access(
            self._working_dir, os.R_OK | os.X_OK
        ):
            self._transition(InstanceState.NOT_PRESENT)
            raise NotReadyError(
                f"Working directory {self._working_dir} not present or not readable."
            )

        db_dir = self._require_db_dir()
        if not db_dir.exists():
            self._runner.run(
                "initDB",
                [
                    self._commands["initdb"],
                    "--nosync",
                    "-U",
                    ADMIN_USER,
                    "-D",
                    db_dir,
                    "-E",
                    self._encoding,
                    "-A",
                    "trust",
                ],
            )

        conf_file = db_dir / CONF_FILE_NAME
        self._log(f"pgscratch: generating {conf_file}")
        try:
            self._templates.render_to_path(
                self._conf_template,
                conf_file,
                {"working_dir": str(self._working_dir)},
                mode=0o600,
            )
        except TemplateRenderError as exc:
            raise ConfigurationRejected(f"initDB failed to render {conf_file}: {exc}") from exc
        except OSError as exc:
            raise NotReadyError(f"Cannot write {conf_file}: {exc}") from exc
        self._transition(InstanceState.INITIALIZED)

    def _remove_working_dir(self) -> None:
        if self._working_dir is None:
            return
        self._log(f"pgscratch: cleaning up {self._working_dir}")
        try:
            shutil.rmtree(self._working_dir)
        except FileNotFoundError:
            return
        except OSError as exc:
            LOGGER.warning("Failed to remove %s: %s", self._working_dir, exc)
            self._log(f"pgscratch: failed to remove {self._working_dir}: {exc}")

    def _require_running(self, action: str) -> None:
        if self._state is InstanceState.DEFUNCT:
            raise DefunctError(f"pgscratch instance is defunct; cannot {action}.")
        if self._state is not InstanceState.SERVER_STARTED:
            raise NotRunningError(f"Server not started; cannot {action}.")

    def _require_db_dir(self) -> Path:
        db_dir = self.db_dir
        if db_dir is None:
            raise NotReadyError("Working directory has not been established.")
        return db_dir

    def _transition(self, state: InstanceState) -> None:
        LOGGER.debug("pgscratch instance %s -> %s", self._state.name, state.name)
        self._state = state

    def _log(self, message: str) -> None:
        self._logf(message)


__all__ = [
    "ADMIN_USER",
    "DEFAULT_ENCODING",
    "ScratchPostgres",
    "default_dir_prefix",
]
