from __future__ import annotations


class ConfigError(ValueError):
    """Raised for invalid setup values, before any simulation step runs."""


class CollectiveError(RuntimeError):
    """Raised when a participant fails to contribute to a per-step gather.

    There is no retry and no partial quorum. Receiving this ends the run.
    """
