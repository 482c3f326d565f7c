"""
Failure description — structured error information for the failure track.

Every engine operation that can fail reports one of five CaError codes, so
callers branch on the code instead of matching message strings:

    LOCKED_DATASTORE  key material requested while the CA is locked
    NOT_FOUND         the referenced request / certificate / template is unknown
    INVALID_ARGUMENT  bad request fields, double revoke, expiry <= 0, ...
    IO_FAILURE        bad path, duplicate CA, malformed store, format mismatch
    INVALID_PASSWORD  a passphrase failed to decrypt PKCS#8 / PKCS#12 content
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class CaError(Enum):
    """Closed set of failure conditions reported by the certificate authority engine."""

    LOCKED_DATASTORE = "LOCKED_DATASTORE"
    """Operation needs the CA private key, but the keystore has not been unlocked."""

    NOT_FOUND = "NOT_FOUND"
    """Entry is not a member of this CA's collections."""

    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    """Caller-supplied value rejected; nothing was changed."""

    IO_FAILURE = "IO_FAILURE"
    """Filesystem, layout or encoding problem."""

    INVALID_PASSWORD = "INVALID_PASSWORD"
    """Passphrase did not decrypt the store. Retrying with another one may succeed."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(CaError.NOT_FOUND, "Template not known")
    >>> desc.code
    <CaError.NOT_FOUND: 'NOT_FOUND'>
    """

    code: CaError
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def create(
        code: CaError,
        message: str,
        exception: BaseException | None = None,
    ) -> FailureDescription:
        return FailureDescription(code=code, message=message, exception=exception)

    def detail(self) -> str:
        """Message followed by the exception text, when one is attached."""
        if self.exception is None:
            return self.message
        return f"{self.message}: {self.exception}"

    def full_stack_trace(self) -> str:
        """Full stack trace string including the message and exception chain."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__)
        )
        return f"{self.message}\n{tb}"
