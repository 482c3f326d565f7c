"""
Ports — Protocol-based interfaces the engine depends on.

  SigningRequest  anything the CA can sign: an internally built request
                  (owns a lazily generated key pair) or a foreign PKCS#10 CSR
                  (public key only, key type possibly unknown).
  ActivityLogger  the per-CA audit trail.
  OutputRenderer  a line-oriented report sink (plain text or HTML) that the
                  certificate, CRL and CSR reports write to.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    CertificatePublicKeyTypes,
)

from ca_manager.domain.enums import ExtendedKeyUsage, KeyType, KeyUsage


@runtime_checkable
class SigningRequest(Protocol):
    """
    Port: the parameters of a certificate to be issued.

    `foreign` is True for requests that arrived as PKCS#10 files; for those
    the key type check is skipped and there is no private key, so the signed
    certificate is stored as a PKCS#7 chain instead of a PKCS#12 bundle.
    """

    subject: x509.Name | None
    key_type: KeyType | None
    description: str | None
    key_usage: frozenset[KeyUsage]
    extended_key_usage: tuple[ExtendedKeyUsage, ...]
    subject_alternative_names: tuple[x509.GeneralName, ...]
    ca_request: bool
    crl_location: str | None

    @property
    def foreign(self) -> bool: ...

    def public_key(self) -> CertificatePublicKeyTypes: ...

    def private_key(self) -> CertificateIssuerPrivateKeyTypes | None: ...


@runtime_checkable
class ActivityLogger(Protocol):
    """Port: record one audited action of a certificate authority."""

    def record(self, action: str, **details: Any) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class OutputRenderer(Protocol):
    """
    Port: receives a report line by line.

    `content` takes an optional key; a multi-line value keeps its line breaks
    and `monospace` marks values such as hex dumps whose layout matters.
    Nothing is guaranteed to reach the underlying stream before `finish`.
    """

    def header(self, value: str | None) -> None: ...

    def empty_line(self) -> None: ...

    def content(self, key: str | None, value: str | None, monospace: bool = False) -> None: ...

    def horizontal_line(self) -> None: ...

    def finish(self) -> None: ...
