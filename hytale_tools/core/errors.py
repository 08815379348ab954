"""Error types raised by the installation engine.

Every failure surfaces as a subclass of :class:`HytaleToolsError` carrying
an :class:`ErrorType` code and a human-readable message. None of them
terminate the host process; that is the caller's decision.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorType(StrEnum):
    """Error codes shared by all engine errors."""

    INSTALL_ERROR = "INSTALL_ERROR"
    VERIFY_ERROR = "VERIFY_ERROR"
    MISSING_FILE = "MISSING_FILE"
    HASH_ERROR = "HASH_ERROR"
    FETCH_ERROR = "FETCH_ERROR"
    UNKNOWN_OS = "UNKNOWN_OS"


class HytaleToolsError(Exception):
    """Base error for the installation engine.

    Attributes:
        error_type: Error code
        details: Extra key/value context for logging
    """

    default_type: ErrorType = ErrorType.INSTALL_ERROR

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | None = None,
        **details: object,
    ):
        self.error_type = error_type or self.default_type
        self.details = details
        super().__init__(message)


class InstallError(HytaleToolsError):
    """Raised when applying an official patch fails."""

    default_type = ErrorType.INSTALL_ERROR


class VerifyError(HytaleToolsError):
    """Raised when the patch tool cannot run a verification at all."""

    default_type = ErrorType.VERIFY_ERROR


class MissingFileError(HytaleToolsError):
    """Raised when an expected local file (e.g. a backup) is absent."""

    default_type = ErrorType.MISSING_FILE


class HashError(HytaleToolsError):
    """Raised when a downloaded or local file does not match its hash.

    Attributes:
        expected: Expected hex digest
        actual: Actual hex digest
    """

    default_type = ErrorType.HASH_ERROR

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        actual: str | None = None,
        **details: object,
    ):
        self.expected = expected
        self.actual = actual
        super().__init__(message, **details)


class FetchError(HytaleToolsError):
    """Raised when a network request fails.

    Attributes:
        url: Requested URL
        status_code: HTTP status, when a response was received
    """

    default_type = ErrorType.FETCH_ERROR

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        **details: object,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message, **details)


class UnsupportedPlatformError(HytaleToolsError):
    """Raised when the host OS/architecture has no published artifacts."""

    default_type = ErrorType.UNKNOWN_OS
