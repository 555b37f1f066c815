"""Error taxonomy shared by the commerce services.

Each error carries a short, stable ``code`` (used as ``detail`` in API
responses and persisted in idempotent error responses) and the HTTP status
the API layer maps it to. The message is meant for humans.
"""


class CommerceError(Exception):
    """Base class for every error raised by the domain services."""

    code = "UNKNOWN_ERROR"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def as_body(self) -> dict:
        return {"detail": self.code, "message": self.message}


class NotFound(CommerceError):
    """An entity id does not resolve."""

    code = "NOT_FOUND"
    status_code = 404


class InvalidData(CommerceError):
    """The request is semantically invalid (duplicate active edit, foreign item...)."""

    code = "INVALID_DATA"
    status_code = 400


class NotAllowed(CommerceError):
    """The request is valid but the entity is in the wrong state."""

    code = "NOT_ALLOWED"
    status_code = 422


class AlreadyInProgress(CommerceError):
    """Another worker holds the lock on the idempotency key."""

    code = "ALREADY_IN_PROGRESS"
    status_code = 409


class ConcurrentIdempotentRequest(CommerceError):
    """A racing request created the same idempotency key and is still running."""

    code = "CONCURRENT_IDEMPOTENT_REQUEST"
    status_code = 409


class UnknownStage(CommerceError):
    """An idempotency record points at a recovery point nobody handles."""

    code = "UNKNOWN_RECOVERY_POINT"
    status_code = 500


class UpstreamUnavailable(CommerceError):
    """A remote provider failed, answered with an error or sits behind an open circuit."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503
