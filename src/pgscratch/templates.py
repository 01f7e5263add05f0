"""Jinja2 rendering for the server configuration file."""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from functools import cache
from pathlib import Path

from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    meta,
)

CONF_TEMPLATE_NAME = "postgresql.conf.j2"
TEMPLATE_VARIABLES = frozenset({"working_dir"})


class TemplateRenderError(RuntimeError):
    """Raised when a configuration template is invalid or fails to render."""


@dataclass(slots=True)
class TemplateEngine:
    """Render configuration templates with strict variables."""

    environment: Environment

    @classmethod
    def default(cls) -> TemplateEngine:
        """Return an engine backed by the templates shipped with pgscratch."""
        environment = Environment(
            loader=PackageLoader("pgscratch", "templates"),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,  # noqa: S701 - output is a postgres config file
        )
        return cls(environment=environment)

    def source(self, name: str) -> str:
        """Return the raw text of the built-in template *name*."""
        loader = self.environment.loader
        assert loader is not None
        text, _filename, _uptodate = loader.get_source(self.environment, name)
        return text

    def validate(self, text: str) -> None:
        """Check that *text* parses and only references known variables.

        The template must reference ``working_dir``, which becomes the
        server's socket directory.
        """
        try:
            parsed = self.environment.parse(text)
        except TemplateError as exc:
            raise TemplateRenderError(f"Template does not parse: {exc}") from exc
        variables = meta.find_undeclared_variables(parsed)
        unknown = variables - TEMPLATE_VARIABLES
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise TemplateRenderError(f"Template references unknown variables: {joined}.")
        missing = TEMPLATE_VARIABLES - variables
        if missing:
            joined = ", ".join(sorted(missing))
            raise TemplateRenderError(f"Template must reference: {joined}.")

    def render_text(self, text: str, context: Mapping[str, object]) -> str:
        """Render the template *text* with *context*."""
        try:
            return self.environment.from_string(text).render(dict(context))
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render template: {exc}") from exc

    def render_to_path(
        self,
        text: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o600,
    ) -> bool:
        """Render *text* into *destination*; return ``True`` when it changed."""
        content = self.render_text(text, context)
        if destination.exists() and destination.read_text(encoding="utf-8") == content:
            destination.chmod(mode)
            return False
        fd = os.open(destination, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        try:
            # An existing file keeps its old mode through os.open.
            os.fchmod(fd, mode)
        except OSError:
            os.close(fd)
            raise
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        return True


@cache
def default_conf_template() -> str:
    """Return the built-in ``postgresql.conf`` template text."""
    return TemplateEngine.default().source(CONF_TEMPLATE_NAME)


__all__ = [
    "CONF_TEMPLATE_NAME",
    "TemplateEngine",
    "TemplateRenderError",
    "default_conf_template",
]
