"""Errors raised by the Sage Accounting connector."""

from __future__ import annotations


class SageError(Exception):
    """Base class for all connector errors."""


class InvalidTokenData(SageError):
    def __init__(self, message: str = "Invalid token data.") -> None:
        super().__init__(message)


class InvalidCode(SageError):
    def __init__(self, message: str = "Invalid code.") -> None:
        super().__init__(message)


class InvalidEmptyToken(SageError):
    def __init__(self, message: str = "Invalid empty token.") -> None:
        super().__init__(message)


class InvalidJsonResponse(SageError):
    def __init__(self, message: str = "Invalid json response.") -> None:
        super().__init__(message)


class InvalidHttpResponse(SageError):
    """Non-2xx response from the authorization server or the accounting API."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Invalid response. {status_code}.")
        self.status_code = status_code
        self.body = body
