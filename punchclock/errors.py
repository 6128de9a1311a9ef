"""Error taxonomy for the timer and alerting core.

HTTP-facing errors (Unauthenticated, NotFound, InvalidState) are mapped to
status codes in main.py. Delivery errors (TransportFailure and friends) are
always caught per target by the dispatchers and never reach API callers.
"""


class PunchclockError(Exception):
    """Base class for all domain errors."""

    status_code = 500


class Unauthenticated(PunchclockError):
    """No resolved tenant+user identity on the request."""

    status_code = 401


class NotFound(PunchclockError):
    """Referenced record does not exist or belongs to another tenant."""

    status_code = 404


class InvalidState(PunchclockError):
    """Operation not applicable to the record's current state."""

    status_code = 409


class TransportFailure(PunchclockError):
    """A push/email/SMS/webhook delivery attempt failed."""


class PushEndpointGone(TransportFailure):
    """Push service reported the endpoint as permanently gone (404/410)."""


class ConfigurationMissing(PunchclockError):
    """No provider credentials configured for a delivery channel."""
