"""Subprocess orchestration for the PostgreSQL utilities."""
from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import IO

from .errors import ExternalCommandFailed, LaunchFailed

LogFunc = Callable[[str], None]
"""Receives one diagnostic line at a time."""

CommandArg = str | os.PathLike[str]

LOG_PREFIX = "pgscratch: "
STREAM_CHUNK_SIZE = 64 * 1024


def null_log(message: str) -> None:
    """Discard *message*; the default sink."""


def logger_sink(logger: logging.Logger, level: int = logging.DEBUG) -> LogFunc:
    """Return a sink that forwards lines to *logger* at *level*."""

    def _sink(message: str) -> None:
        logger.log(level, "%s", message)

    return _sink


@dataclass(slots=True)
class CommandRunner:
    """Run external commands, logging them and classifying failures."""

    log: LogFunc = null_log

    def run(self, operation: str, args: Sequence[CommandArg]) -> subprocess.CompletedProcess[str]:
        """Run *args* to completion and return the captured result.

        Standard error is merged into standard output so lines keep their
        order; output is decoded as UTF-8 with undecodable bytes replaced.
        Raises :class:`LaunchFailed` when the process cannot be started and
        :class:`ExternalCommandFailed`, carrying the combined output, when it
        exits non-zero.
        """
        command = [str(arg) for arg in args]
        self._emit(shlex.join(command))
        try:
            result = subprocess.run(  # noqa: S603
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise LaunchFailed(operation, command, str(exc)) from exc
        self._emit_output(result.stdout)
        if result.returncode != 0:
            output = (result.stdout or "").strip()
            raise ExternalCommandFailed(operation, command, result.returncode, output)
        return result

    def stream(self, operation: str, args: Sequence[CommandArg], sink: IO[bytes]) -> None:
        """Run *args* copying its standard output into *sink* as it arrives."""
        command = [str(arg) for arg in args]
        self._emit(f"starting {operation}: {shlex.join(command)}")
        with tempfile.TemporaryFile() as errors:
            try:
                process = subprocess.Popen(  # noqa: S603
                    command,
                    stdout=subprocess.PIPE,
                    stderr=errors,
                )
            except OSError as exc:
                raise LaunchFailed(operation, command, str(exc)) from exc
            assert process.stdout is not None
            with process:
                try:
                    shutil.copyfileobj(process.stdout, sink, STREAM_CHUNK_SIZE)
                except BaseException:
                    process.kill()
                    raise
                returncode = process.wait()
            errors.seek(0)
            stderr = errors.read().decode("utf-8", errors="replace")
        self._emit_output(stderr)
        if returncode != 0:
            raise ExternalCommandFailed(operation, command, returncode, stderr.strip())

    # ------------------------------------------------------------------
    def _emit(self, line: str) -> None:
        self.log(f"{LOG_PREFIX}{line}")

    def _emit_output(self, output: str | None) -> None:
        if not output:
            return
        for line in output.strip().splitlines():
            self._emit(line)


__all__ = ["STREAM_CHUNK_SIZE", "CommandRunner", "LogFunc", "logger_sink", "null_log"]
