"""
Domain models — immutable value objects handled by the engine.

CertificateKeyPairTemplate is a reusable preset for certificate requests;
equality is field-wise, so a template read back from disk compares equal
to the one that was stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from cryptography import x509

from ca_manager.domain.enums import ExtendedKeyUsage, KeyType, KeyUsage


def utc_now() -> datetime:
    """Current time, truncated to whole seconds (X.509 time resolution)."""
    return datetime.now(UTC).replace(microsecond=0)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class CertificateKeyPairTemplate:
    """Stored request parameters: subject, key type, usages, SAN and CRL location."""

    subject: x509.Name
    key_type: KeyType
    description: str | None = None
    key_usage: frozenset[KeyUsage] = frozenset()
    extended_key_usage: tuple[ExtendedKeyUsage, ...] = ()
    subject_alternative_names: tuple[x509.GeneralName, ...] = ()
    ca_request: bool = False
    crl_location: str | None = None
    creation_date: datetime = field(default_factory=utc_now)

    def __str__(self) -> str:
        return self.description or self.subject.rfc4514_string()
