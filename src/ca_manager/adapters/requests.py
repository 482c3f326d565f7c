"""
Signing requests — the two concrete SigningRequest implementations.

CertificateRequest is built locally (from a template or by a collaborator);
its key pair is generated on first use from the key type. A
PKCS10CertificateRequest wraps a CSR received from elsewhere: only the
public key is known and the key type may fall outside the catalogue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    CertificatePublicKeyTypes,
)

from ca_manager.adapters import key_pair_factory
from ca_manager.domain.enums import (
    ExtendedKeyUsage,
    KeyType,
    KeyUsage,
    extended_key_usages_of,
    key_usages_of,
)
from ca_manager.domain.errors import InvalidArgumentError
from ca_manager.domain.models import CertificateKeyPairTemplate, utc_now


@dataclass(slots=True)
class CertificateRequest:
    subject: x509.Name | None = None
    key_type: KeyType | None = None
    description: str | None = None
    key_usage: frozenset[KeyUsage] = frozenset()
    extended_key_usage: tuple[ExtendedKeyUsage, ...] = ()
    subject_alternative_names: tuple[x509.GeneralName, ...] = ()
    ca_request: bool = False
    crl_location: str | None = None
    creation_date: datetime = field(default_factory=utc_now)
    key_pair: CertificateIssuerPrivateKeyTypes | None = field(default=None, repr=False)

    @property
    def foreign(self) -> bool:
        return False

    def private_key(self) -> CertificateIssuerPrivateKeyTypes:
        """The request's private key, generated from `key_type` on first access."""
        if self.key_pair is None:
            if self.key_type is None:
                raise InvalidArgumentError("Request has no key type to generate a key pair from")
            self.key_pair = key_pair_factory.generate_key_pair(self.key_type)
        return self.key_pair

    def public_key(self) -> CertificatePublicKeyTypes:
        return self.private_key().public_key()

    @classmethod
    def from_template(cls, template: CertificateKeyPairTemplate) -> CertificateRequest:
        return cls(
            subject=template.subject,
            key_type=template.key_type,
            description=template.description,
            key_usage=template.key_usage,
            extended_key_usage=template.extended_key_usage,
            subject_alternative_names=template.subject_alternative_names,
            ca_request=template.ca_request,
            crl_location=template.crl_location,
        )

    def to_template(self) -> CertificateKeyPairTemplate:
        if self.subject is None or self.key_type is None:
            raise InvalidArgumentError("A template needs a subject and a key type")
        return CertificateKeyPairTemplate(
            subject=self.subject,
            key_type=self.key_type,
            description=self.description,
            key_usage=self.key_usage,
            extended_key_usage=self.extended_key_usage,
            subject_alternative_names=self.subject_alternative_names,
            ca_request=self.ca_request,
            crl_location=self.crl_location,
        )


def _requested(csr: x509.CertificateSigningRequest, extension_type: type) -> object | None:
    try:
        return csr.extensions.get_extension_for_class(extension_type).value
    except x509.ExtensionNotFound:
        return None


@dataclass(slots=True)
class PKCS10CertificateRequest:
    """A foreign PKCS#10 CSR; requested extensions are carried over to the certificate."""

    csr: x509.CertificateSigningRequest = field(repr=False)
    subject: x509.Name | None = None
    key_type: KeyType | None = None
    description: str | None = None
    key_usage: frozenset[KeyUsage] = frozenset()
    extended_key_usage: tuple[ExtendedKeyUsage, ...] = ()
    subject_alternative_names: tuple[x509.GeneralName, ...] = ()
    ca_request: bool = False
    crl_location: str | None = None

    @classmethod
    def from_csr(cls, csr: x509.CertificateSigningRequest, description: str | None = None) -> PKCS10CertificateRequest:
        key_usage = _requested(csr, x509.KeyUsage)
        extended = _requested(csr, x509.ExtendedKeyUsage)
        alternative_names = _requested(csr, x509.SubjectAlternativeName)
        constraints = _requested(csr, x509.BasicConstraints)
        return cls(
            csr=csr,
            subject=csr.subject,
            key_type=key_pair_factory.key_type_for(csr.public_key()),
            description=description,
            key_usage=key_usages_of(key_usage) if isinstance(key_usage, x509.KeyUsage) else frozenset(),
            extended_key_usage=(
                extended_key_usages_of(extended) if isinstance(extended, x509.ExtendedKeyUsage) else ()
            ),
            subject_alternative_names=(
                tuple(alternative_names) if isinstance(alternative_names, x509.SubjectAlternativeName) else ()
            ),
            ca_request=isinstance(constraints, x509.BasicConstraints) and constraints.ca,
        )

    @property
    def foreign(self) -> bool:
        return True

    def private_key(self) -> None:
        return None

    def public_key(self) -> CertificatePublicKeyTypes:
        return self.csr.public_key()  # type: ignore[return-value]
