"""Exception types raised by the hassws client.

Every error derives from HASSWSError so callers can catch the whole family.
"""

from __future__ import annotations


class HASSWSError(Exception):
    """Base class for all hassws errors."""

    pass


class ConfigurationError(HASSWSError):
    """Raised when the client is constructed without a host or token."""

    pass


# =============================================================================
# Transport / Protocol
# =============================================================================


class TransportError(HASSWSError):
    """Raised when the websocket cannot be dialed or written to."""

    pass


class NotConnectedError(TransportError):
    """Raised when a frame is sent while no socket is open."""

    pass


class ProtocolError(HASSWSError):
    """Raised when the hub sends a frame that breaks the handshake."""

    pass


class MinimumVersionError(HASSWSError):
    """Raised when the hub is older than the minimum supported version."""

    def __init__(self, version: str | None, minimum: str) -> None:
        self.version = version
        self.minimum = minimum
        super().__init__(
            f"home assistant {version or 'unknown'} is older than minimum version {minimum}"
        )


# =============================================================================
# Authentication
# =============================================================================


class AuthenticationError(HASSWSError):
    """Base class for authentication failures."""

    pass


class InvalidAuthError(AuthenticationError):
    """Raised when the hub explicitly rejects the access token. Not retryable."""

    pass


class AuthRetriesExhaustedError(AuthenticationError):
    """Raised when no auth_ok/auth_invalid reply arrived within the attempt budget."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"failed to authenticate after {attempts} attempts")


# =============================================================================
# Commands
# =============================================================================


class CommandError(HASSWSError):
    """Raised when the hub answers a command with success=false."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"error code: {code}, message: {message}")


class CommandTimeoutError(HASSWSError):
    """Raised when no reply arrived for a request before its timeout."""

    def __init__(self, request_id: int, timeout: float) -> None:
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(f"response timeout for request ID: {request_id} after {timeout:g}s")


class ConnectionLostError(HASSWSError):
    """Raised for a pending request whose connection was reset or closed."""

    def __init__(self, request_id: int, reason: str = "connection reset") -> None:
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"request ID {request_id} abandoned: {reason}")


# =============================================================================
# Comparator
# =============================================================================


class ComparisonError(HASSWSError):
    """Base class for comparator failures."""

    pass


class UnsupportedOperandError(ComparisonError):
    """Raised when a condition operand is outside the supported kinds."""

    pass


class UnsupportedOperatorError(ComparisonError):
    """Raised when a condition type is not valid for the operand kind."""

    pass


class CoercionError(ComparisonError, ValueError):
    """Raised when an observed value cannot be converted to the operand kind."""

    pass


# =============================================================================
# Listeners / REST
# =============================================================================


class InvalidPatternError(HASSWSError, ValueError):
    """Raised when a regex listener is registered with an invalid pattern."""

    pass


class RestError(HASSWSError):
    """Raised when a REST call returns a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")
