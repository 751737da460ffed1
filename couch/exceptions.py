"""Custom exception classes for CouchDB interactions."""

from typing import Optional


class CouchException(Exception):
    """
    Base exception class for all CouchDB-related errors.

    Attributes:
        status_code: HTTP status returned by CouchDB, if any
        error: CouchDB error name (e.g. 'not_found', 'conflict')
        reason: Human-readable reason from the CouchDB response body
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        reason: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.reason = reason


class CouchHTTPError(CouchException):
    """
    Raised when CouchDB answers with an unexpected non-2xx status.
    """
    pass


class NotFoundError(CouchHTTPError):
    """
    Raised when a database or document does not exist (404).
    """
    pass


class ConflictError(CouchHTTPError):
    """
    Raised when a document update is rejected because of a stale revision (409).
    """
    pass


class PreconditionFailedError(CouchHTTPError):
    """
    Raised on 412, which CouchDB uses when a database already exists.
    """
    pass


class UnauthorizedError(CouchHTTPError):
    """
    Raised when credentials are missing or lack permission (401/403).
    """
    pass


class CouchConnectionError(CouchException):
    """
    Raised when the CouchDB server is unreachable or the request times out.
    """
    pass
