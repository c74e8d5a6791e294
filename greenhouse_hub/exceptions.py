"""
Greenhouse Hub Exceptions

Small exception hierarchy. Nothing in the core is fatal: callers catch these
and degrade to "retry next cycle".
"""


class GreenhouseHubError(Exception):
    """Base exception for the greenhouse hub."""

    pass


class ConfigurationError(GreenhouseHubError):
    """Configuration file is missing or invalid."""

    pass


class RemoteStoreError(GreenhouseHubError):
    """Remote store request failed, timed out or was rejected."""

    pass
