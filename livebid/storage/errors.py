"""Store failure type shared by all backends."""

from __future__ import annotations


class StoreError(RuntimeError):
    """Raised when the persistence layer cannot complete an operation."""
