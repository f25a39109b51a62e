from __future__ import annotations


class AuthError(RuntimeError):
    """Base class for failures reported by the authentication subsystem."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PortExhaustionError(AuthError):
    def __init__(self, low: int, high: int) -> None:
        super().__init__(f"No available ports found between {low} and {high}")
        self.low = low
        self.high = high


class BindError(AuthError):
    def __init__(self, port: int, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Could not bind callback server to port {port}{detail}")
        self.port = port


class CallbackHandlerError(AuthError):
    def __init__(self, message: str = "Server error processing authentication") -> None:
        super().__init__(message)


class ProviderDeclinedError(AuthError):
    def __init__(self, error: str, description: str | None = None) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description


class CsrfViolationError(AuthError):
    def __init__(self, message: str = "Invalid state parameter - potential CSRF attack") -> None:
        super().__init__(message)


class TokenExchangeError(AuthError):
    def __init__(self, provider_message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(f"Token exchange failed: {provider_message or 'unknown error'}")
        self.provider_message = provider_message
        self.status_code = status_code


class UserInfoError(AuthError):
    def __init__(self, message: str = "Failed to get user information") -> None:
        super().__init__(message)


class IntrospectionError(AuthError):
    def __init__(self, message: str = "Token introspection failed") -> None:
        super().__init__(message)


class NetworkTimeoutError(AuthError):
    """A bounded-timeout call failed before a response arrived.

    ``timed_out`` separates a slow backend (the request was sent but took
    too long) from an unreachable one (no connection could be made).
    """

    def __init__(self, url: str, *, timed_out: bool, timeout: float | None = None) -> None:
        if timed_out:
            limit = f" after {timeout:g}s" if timeout is not None else ""
            message = f"Request timeout - {url} took too long to respond{limit}"
        else:
            message = f"Backend unreachable - could not connect to {url}; it may not be running"
        super().__init__(message)
        self.url = url
        self.timed_out = timed_out


class AuthTimeoutError(AuthError):
    def __init__(self, message: str = "Authentication timeout - please try again") -> None:
        super().__init__(message)


class UsageFetchError(AuthError):
    pass


class CredentialStoreError(OSError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
