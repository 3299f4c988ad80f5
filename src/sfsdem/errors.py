from __future__ import annotations


class SfsError(Exception):
    pass


class ConfigurationError(SfsError, ValueError):
    """Missing or invalid option. The message names the offending option."""


class DataError(SfsError):
    """Corrupt or unusable input (file, georeference, camera or position records)."""


class ModelInvariantError(SfsError, RuntimeError):
    """A caller/environment bug: wrong camera capabilities, non-unit normals."""
