"""Classifiers that pick out the CouchDB errors callers are allowed to recover from."""

from typing import Optional

from couch.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
)


def as_maybe_not_found_error(error: BaseException) -> Optional[NotFoundError]:
    """
    Return the error if it means "database or document does not exist".

    Args:
        error: Any exception raised by the driver

    Returns:
        The same error typed as NotFoundError, or None
    """
    if isinstance(error, NotFoundError) and error.error in (None, 'not_found'):
        return error
    return None


def as_maybe_exists_error(error: BaseException) -> Optional[PreconditionFailedError]:
    """
    Return the error if it means "database already exists".

    Args:
        error: Any exception raised by the driver

    Returns:
        The same error typed as PreconditionFailedError, or None
    """
    if isinstance(error, PreconditionFailedError) and error.error in (None, 'file_exists'):
        return error
    return None


def as_maybe_conflict_error(error: BaseException) -> Optional[ConflictError]:
    """Return the error if it is a document update conflict, otherwise None."""
    if isinstance(error, ConflictError) and error.error in (None, 'conflict'):
        return error
    return None
