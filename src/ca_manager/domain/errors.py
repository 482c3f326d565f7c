"""
Typed exceptions raised inside the engine and the codec layer.

Codec functions and the operation bodies of CertificateAuthority raise these.
Each public operation runs its body through `CertificateAuthority._guarded`,
which wraps it in Result.attempt under the CA lock, so the exception surfaces
as a Failure carrying the code attached to its class. The manager and the
class-level open/create calls use Result.attempt directly.
"""

from __future__ import annotations

from ca_manager.domain.failure import CaError


class CaException(Exception):
    """Base class; `code` selects the CaError the boundary reports."""

    code: CaError = CaError.IO_FAILURE


class DatastoreLockedError(CaException):
    code = CaError.LOCKED_DATASTORE

    def __init__(self, message: str = "Certificate authority is locked") -> None:
        super().__init__(message)


class InvalidPasswordError(CaException):
    code = CaError.INVALID_PASSWORD

    def __init__(self, message: str = "Invalid password") -> None:
        super().__init__(message)


class NotFoundError(CaException):
    code = CaError.NOT_FOUND


class InvalidArgumentError(CaException):
    code = CaError.INVALID_ARGUMENT


class StoreIOError(CaException):
    code = CaError.IO_FAILURE


class UnknownKeyTypeError(InvalidArgumentError):
    """Public key algorithm or size is outside the supported catalogue."""


def error_code_for(exception: BaseException) -> CaError:
    """Map any exception raised below the engine boundary to a CaError."""
    match exception:
        case CaException(code=code):
            return code
        case LookupError():
            return CaError.NOT_FOUND
        case ValueError() | TypeError():
            return CaError.INVALID_ARGUMENT
        case OSError():
            return CaError.IO_FAILURE
        case _:
            return CaError.IO_FAILURE
