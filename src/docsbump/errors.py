from __future__ import annotations


class ConfigurationError(ValueError):
    """Expected data is missing or malformed in config, a tracked file, or an API response."""


class RemoteOperationError(RuntimeError):
    """A version-control command or hosting API call failed."""


class ClosedResourceError(RuntimeError):
    """An operation was attempted on a working copy that was already destroyed."""
