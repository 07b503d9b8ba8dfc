"""
Typed failures raised by the deduplication and merge engine.

Callers (CLI, API layers) map these to their own responses; the engine never
swallows them.
"""

from __future__ import annotations


class MDMError(Exception):
    """Base class for engine failures scoped to a single operation."""


class NotFoundError(MDMError):
    """A record, rule or merge log is absent or outside the tenant's scope."""


class InvalidOperationError(MDMError):
    """The request itself is not meaningful (e.g. merging a record with itself)."""


class InvalidStateError(MDMError):
    """The target exists but is not in a state that allows the operation."""


class AlreadyMergedError(MDMError):
    """A record already participates in an ACTIVE merge."""


__all__ = [
    "AlreadyMergedError",
    "InvalidOperationError",
    "InvalidStateError",
    "MDMError",
    "NotFoundError",
]
