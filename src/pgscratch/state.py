"""Lifecycle states for a scratch PostgreSQL instance."""
from __future__ import annotations

from enum import IntEnum


class InstanceState(IntEnum):
    """Ordered lifecycle states of a :class:`~pgscratch.instance.ScratchPostgres`.

    The values are explicit and form a total order used for "at least this far
    along" checks::

        NOT_PRESENT < PRESENT < UNINITIALIZED < INITIALIZED < SERVER_STARTED < DEFUNCT

    ``UNINITIALIZED`` is the state of a freshly constructed instance.
    ``NOT_PRESENT`` and ``PRESENT`` only describe the working directory while
    it is being materialised: ``PRESENT`` once a generated directory exists,
    ``NOT_PRESENT`` when a caller-supplied directory could not be used.
    ``DEFUNCT`` is terminal.
    """

    NOT_PRESENT = 0
    PRESENT = 1
    UNINITIALIZED = 2
    INITIALIZED = 3
    SERVER_STARTED = 4
    DEFUNCT = 5

    def reached(self, other: InstanceState) -> bool:
        """Return ``True`` when this state is at or beyond *other*."""
        return int(self) >= int(other)


__all__ = ["InstanceState"]
