"""Error taxonomy for the classroom authorization engine.

Every failure the engine can report is an ``AuthorizationError`` subclass
carrying an ``ErrorKind``. Presenters map the kind to user-facing text; the
engine itself never formats messages for display.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""

    INVALID_CONFIGURATION = "invalid_configuration"
    CRYPTO_UNAVAILABLE = "crypto_unavailable"
    NETWORK_ERROR = "network_error"
    PROVIDER_ERROR = "provider_error"
    MALFORMED_RESPONSE = "malformed_response"
    REGISTRATION_FAILED = "registration_failed"
    ALREADY_IN_PROGRESS = "already_in_progress"
    ALREADY_AUTHORIZED = "already_authorized"
    NOT_AUTHORIZED = "not_authorized"
    STATE_MISMATCH = "state_mismatch"
    AUTHORIZATION_DENIED = "authorization_denied"


class AuthorizationError(Exception):
    """Base class for all authorization engine errors."""

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR

    def to_dict(self) -> dict[str, str]:
        """Serialize for JSON output and event payloads."""
        return {"kind": self.kind.value, "message": str(self)}


class InvalidConfigurationError(AuthorizationError):
    """Client configuration is missing or unusable."""

    kind = ErrorKind.INVALID_CONFIGURATION


class CryptoUnavailableError(AuthorizationError):
    """The secure random source could not produce key material."""

    kind = ErrorKind.CRYPTO_UNAVAILABLE


class NetworkError(AuthorizationError):
    """Transport-level failure (timeout, DNS, TLS, connection reset)."""

    kind = ErrorKind.NETWORK_ERROR


class ProviderError(AuthorizationError):
    """The identity provider or backing server answered with an error.

    Attributes:
        status: HTTP status code, if the error came from an HTTP response
    """

    kind = ErrorKind.PROVIDER_ERROR

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict[str, str]:
        data = super().to_dict()
        if self.status is not None:
            data["status"] = str(self.status)
        return data


class MalformedResponseError(AuthorizationError):
    """A response body did not have the expected shape."""

    kind = ErrorKind.MALFORMED_RESPONSE


class RegistrationFailedError(AuthorizationError):
    """Tokens were obtained but could not be registered with the backing server.

    This is a soft failure: the provider-side grant stands.
    """

    kind = ErrorKind.REGISTRATION_FAILED


class AlreadyInProgressError(AuthorizationError):
    """An authorization attempt or revocation is already running."""

    kind = ErrorKind.ALREADY_IN_PROGRESS


class AlreadyAuthorizedError(AuthorizationError):
    """The session already holds a grant; revoke it before linking again."""

    kind = ErrorKind.ALREADY_AUTHORIZED


class NotAuthorizedError(AuthorizationError):
    """Revocation was requested without an active grant."""

    kind = ErrorKind.NOT_AUTHORIZED


class StateMismatchError(AuthorizationError):
    """The redirect's state parameter does not match the pending request."""

    kind = ErrorKind.STATE_MISMATCH


class AuthorizationDeniedError(AuthorizationError):
    """The provider redirected back with an ``error`` instead of a code."""

    kind = ErrorKind.AUTHORIZATION_DENIED

    def __init__(self, error: str, description: str | None = None):
        message = f"Authorization denied: {error}"
        if description:
            message = f"{message} - {description}"
        super().__init__(message)
        self.error = error
        self.description = description


class InvalidTransitionError(RuntimeError):
    """A session transition outside the allowed edges was attempted.

    Indicates a programming error in the session, never a user-facing failure.
    """
