"""Typed errors raised by the draw engine and its collaborators.

Callers discriminate failures by exception class, never by message text.
Every :class:`DrawEngineError` carries the HTTP status code an inbound
request handler should answer with.
"""

from __future__ import annotations


class DrawEngineError(Exception):
    """Base class for every error the draw engine raises."""

    status_code: int = 500


class InvalidInput(DrawEngineError, ValueError):
    """Malformed MSISDN, non-positive amount or an otherwise invalid argument."""

    status_code = 400


class InvalidDrawConfig(InvalidInput):
    """A schedule request (digits, prizes, draw type, lookback) fails validation."""


class DuplicateDraw(DrawEngineError):
    """A non-failed draw already exists for the requested (date, type)."""

    status_code = 409


class DrawNotFound(DrawEngineError, LookupError):
    """No draw exists with the requested id."""

    status_code = 404


class InvalidState(DrawEngineError):
    """The draw is not in the state the operation requires."""

    status_code = 409


class AlreadyRunning(InvalidState):
    """Another executor won the SCHEDULED -> RUNNING compare-and-swap."""


class ImmutableDrawError(InvalidState):
    """A write targeted the frozen winners or seed of a completed draw."""


class StorageUnavailable(DrawEngineError):
    """The persistence layer failed; the operation may be retried."""

    status_code = 503


class NotificationDispatchFailed(DrawEngineError):
    """A single winner notification could not be handed off or sent."""

    status_code = 502


class DrawCancelled(DrawEngineError):
    """The request driving a draw was cancelled before completion was recorded."""

    status_code = 500


class DrawDeadlineExceeded(DrawEngineError):
    """A draw execution ran past its deadline before completion was recorded."""

    status_code = 500


class DrawExecutionFailed(DrawEngineError):
    """An unexpected error aborted a running draw; see ``__cause__``."""

    status_code = 500


class ConfigError(ValueError):
    """Configuration could not be loaded or failed validation."""


class SMSGatewayError(RuntimeError):
    """An outbound SMS gateway rejected a message or returned garbage."""


__all__ = [
    "AlreadyRunning",
    "ConfigError",
    "DrawCancelled",
    "DrawDeadlineExceeded",
    "DrawEngineError",
    "DrawExecutionFailed",
    "DrawNotFound",
    "DuplicateDraw",
    "ImmutableDrawError",
    "InvalidDrawConfig",
    "InvalidInput",
    "InvalidState",
    "NotificationDispatchFailed",
    "SMSGatewayError",
    "StorageUnavailable",
]
