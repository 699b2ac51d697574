"""Error taxonomy for the monitoring engine.

Probe failures (bad URL, timeouts, HTTP error codes) are normally captured
as data on a HealthCheckRecord; the classes here exist so the few places
that do raise can say which kind of failure happened.
"""

from __future__ import annotations


class HealthwatchError(Exception):
    """Base class for all engine errors."""


class ValidationError(HealthwatchError):
    """Bad input: unparsable URL, unsupported protocol, invalid field."""


class TransportError(HealthwatchError):
    """No HTTP response: timeout, connection refused, DNS failure."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        self.timed_out = timed_out
        super().__init__(message)


class ProtocolError(HealthwatchError):
    """The target answered with an HTTP error status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"Request failed with status code {status_code}")


class PersistenceError(HealthwatchError):
    """The store could not be read or written."""


class ConfigurationError(HealthwatchError):
    """A setting is missing or invalid."""


class NotFoundError(HealthwatchError):
    """A referenced service, incident or window does not exist."""


class ConflictError(HealthwatchError):
    """The write would duplicate an existing open entity."""
