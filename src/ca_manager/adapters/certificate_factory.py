"""
Certificate factory — self-signed CA certificates, CA-signed certificates and CRLs.

Builds X.509 objects with cryptography's builders. Request validation runs
in a fixed order and raises InvalidArgumentError at the first problem,
before any serial number is drawn:

    request → subject → key type (skipped for foreign PKCS#10 requests)
    → not_before → not_after → not_before < not_after
    → subject differs from every issuer chain subject
    → not_before ≥ issuer not_before → not_after ≤ issuer not_after
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes

from ca_manager.adapters.issued_certificate import IssuedCertificate
from ca_manager.domain.enums import (
    KeyUsage,
    RevokeReasonCode,
    SignatureAlgorithm,
    extended_key_usage_extension,
    key_usage_extension,
)
from ca_manager.domain.errors import InvalidArgumentError, UnknownKeyTypeError
from ca_manager.domain.models import as_utc, utc_now
from ca_manager.domain.ports import SigningRequest

log = structlog.get_logger()

_DIGESTS: dict[str, type[hashes.HashAlgorithm]] = {
    "SHA1": hashes.SHA1,
    "SHA224": hashes.SHA224,
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
    "SHA3-224": hashes.SHA3_224,
    "SHA3-256": hashes.SHA3_256,
    "SHA3-384": hashes.SHA3_384,
    "SHA3-512": hashes.SHA3_512,
}

_CA_KEY_USAGE = frozenset({KeyUsage.KEY_CERT_SIGN, KeyUsage.CRL_SIGN})


@dataclass(frozen=True, slots=True)
class RevocationEntry:
    """One line of a CRL."""

    serial_number: int
    revocation_date: datetime
    reason: RevokeReasonCode = RevokeReasonCode.UNSPECIFIED


# ─────────────────────── Signature algorithms ───────────────────────


def default_signature_algorithm(key: CertificateIssuerPrivateKeyTypes) -> SignatureAlgorithm:
    """Default digest per key family."""
    match key:
        case rsa.RSAPrivateKey():
            return SignatureAlgorithm.SHA256_WITH_RSA
        case dsa.DSAPrivateKey():
            return SignatureAlgorithm.SHA256_WITH_DSA
        case ec.EllipticCurvePrivateKey():
            return SignatureAlgorithm.SHA512_WITH_ECDSA
        case ed25519.Ed25519PrivateKey():
            return SignatureAlgorithm.ED25519
        case ed448.Ed448PrivateKey():
            return SignatureAlgorithm.ED448
        case _:
            raise UnknownKeyTypeError(f"No signature algorithm for {type(key).__name__}")


def _family_of(key: CertificateIssuerPrivateKeyTypes) -> str:
    return default_signature_algorithm(key).key_family


def _sign_arguments(
    key: CertificateIssuerPrivateKeyTypes,
    algorithm: SignatureAlgorithm | None,
) -> dict:
    """Keyword arguments for Builder.sign(): digest and, for PSS, RSA padding."""
    algorithm = algorithm or default_signature_algorithm(key)
    if algorithm.key_family != _family_of(key):
        raise InvalidArgumentError(f"Signature algorithm {algorithm} does not match the {_family_of(key)} key")
    if algorithm.digest is None:
        return {"private_key": key, "algorithm": None}
    digest = _DIGESTS[algorithm.digest]()
    arguments: dict = {"private_key": key, "algorithm": digest}
    if algorithm.uses_pss:
        arguments["rsa_padding"] = padding.PSS(mgf=padding.MGF1(digest), salt_length=padding.PSS.DIGEST_LENGTH)
    return arguments


# ─────────────────────── CA capabilities ───────────────────────


def _extension(certificate: x509.Certificate, extension_type: type) -> object | None:
    try:
        return certificate.extensions.get_extension_for_class(extension_type).value
    except x509.ExtensionNotFound:
        return None


def is_ca_certificate(certificate: x509.Certificate) -> bool:
    """Basic constraints CA=true, and keyCertSign + cRLSign when key usage is present."""
    constraints = _extension(certificate, x509.BasicConstraints)
    if not isinstance(constraints, x509.BasicConstraints) or not constraints.ca:
        return False
    usage = _extension(certificate, x509.KeyUsage)
    if isinstance(usage, x509.KeyUsage):
        return usage.key_cert_sign and usage.crl_sign
    return True


def can_create_intermediate_ca(certificate: x509.Certificate) -> bool:
    """True when the path length constraint leaves room for one more CA below."""
    constraints = _extension(certificate, x509.BasicConstraints)
    if not isinstance(constraints, x509.BasicConstraints) or not is_ca_certificate(certificate):
        return False
    return constraints.path_length is None or constraints.path_length >= 1


def _key_identifier(certificate: x509.Certificate) -> bytes:
    ski = _extension(certificate, x509.SubjectKeyIdentifier)
    if isinstance(ski, x509.SubjectKeyIdentifier):
        return ski.digest
    return x509.SubjectKeyIdentifier.from_public_key(certificate.public_key()).digest  # type: ignore[arg-type]


def _crl_distribution_point(location: str, issuer: x509.Name) -> x509.CRLDistributionPoints:
    return x509.CRLDistributionPoints([
        x509.DistributionPoint(
            full_name=[x509.UniformResourceIdentifier(location)],
            relative_name=None,
            reasons=None,
            crl_issuer=[x509.DirectoryName(issuer)],
        )
    ])


# ─────────────────────── Self-signed certificates ───────────────────────


def generate_self_signed_certificate(
    subject: x509.Name,
    not_after: datetime,
    key: CertificateIssuerPrivateKeyTypes,
    signature_algorithm: SignatureAlgorithm | None = None,
    *,
    is_ca: bool = False,
    crl_location: str | None = None,
    not_before: datetime | None = None,
) -> x509.Certificate:
    """
    Build a self-signed certificate; the serial is the current time in millis.

    CA certificates carry SKI, BasicConstraints(ca) and keyCertSign + cRLSign.
    """
    not_before = as_utc(not_before) if not_before is not None else utc_now()
    not_after = as_utc(not_after)
    if not_before >= not_after:
        raise InvalidArgumentError("Start date must be before the expiry date")

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(time.time_ns() // 1_000_000)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
    )
    if is_ca:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        builder = builder.add_extension(key_usage_extension(_CA_KEY_USAGE), critical=True)
        if crl_location:
            builder = builder.add_extension(_crl_distribution_point(crl_location, subject), critical=False)

    certificate = builder.sign(**_sign_arguments(key, signature_algorithm))
    log.info("certificate.self_signed", subject=subject.rfc4514_string(), ca=is_ca)
    return certificate


# ─────────────────────── CA-signed certificates ───────────────────────


def validate_request(
    issuer: IssuedCertificate,
    request: SigningRequest | None,
    not_before: datetime | None,
    not_after: datetime | None,
) -> None:
    if request is None:
        raise InvalidArgumentError("Certificate request is required")
    if request.subject is None:
        raise InvalidArgumentError("Certificate request has no subject")
    if not request.foreign and request.key_type is None:
        raise InvalidArgumentError("Certificate request has no key type")
    if not_before is None:
        raise InvalidArgumentError("Start date is required")
    if not_after is None:
        raise InvalidArgumentError("Expiry date is required")
    not_before, not_after = as_utc(not_before), as_utc(not_after)
    if not_before >= not_after:
        raise InvalidArgumentError("Start date must be before the expiry date")
    if any(request.subject == certificate.subject for certificate in issuer.certificate_chain):
        raise InvalidArgumentError("Subject must differ from the issuer subject")
    if not_before < issuer.certificate.not_valid_before_utc:
        raise InvalidArgumentError("Start date precedes the issuer's own start date")
    if not_after > issuer.certificate.not_valid_after_utc:
        raise InvalidArgumentError("Expiry date exceeds the issuer's own expiry date")
    if request.ca_request and not can_create_intermediate_ca(issuer.certificate):
        raise InvalidArgumentError("Issuer path length does not permit an intermediate CA")


def sign_certificate_request(
    issuer: IssuedCertificate,
    request: SigningRequest,
    not_before: datetime,
    not_after: datetime,
    next_serial: Callable[[], int],
    signature_algorithm: SignatureAlgorithm | None = None,
) -> x509.Certificate:
    """
    Validate and sign `request` with the issuer's key.

    `next_serial` is called once, after validation succeeded.
    """
    validate_request(issuer, request, not_before, not_after)
    if issuer.private_key is None:
        raise InvalidArgumentError("Issuer private key is not available")

    ca_certificate = issuer.certificate
    public_key = request.public_key()
    serial = next_serial()

    builder = (
        x509.CertificateBuilder()
        .subject_name(request.subject)  # type: ignore[arg-type]
        .issuer_name(ca_certificate.subject)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(as_utc(not_before))
        .not_valid_after(as_utc(not_after))
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier(
                key_identifier=_key_identifier(ca_certificate),
                authority_cert_issuer=[x509.DirectoryName(ca_certificate.issuer)],
                authority_cert_serial_number=ca_certificate.serial_number,
            ),
            critical=False,
        )
    )
    if request.key_usage:
        builder = builder.add_extension(key_usage_extension(request.key_usage), critical=True)
    if request.extended_key_usage:
        builder = builder.add_extension(extended_key_usage_extension(request.extended_key_usage), critical=False)
    if request.subject_alternative_names:
        # RFC 5280 4.2.1.6: critical only when the subject is empty.
        builder = builder.add_extension(
            x509.SubjectAlternativeName(list(request.subject_alternative_names)),
            critical=len(request.subject) == 0,  # type: ignore[arg-type]
        )
    if request.ca_request:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
    if request.crl_location:
        builder = builder.add_extension(
            _crl_distribution_point(request.crl_location, ca_certificate.subject), critical=False
        )

    certificate = builder.sign(**_sign_arguments(issuer.private_key, signature_algorithm))
    log.info(
        "certificate.signed",
        subject=certificate.subject.rfc4514_string(),
        serial=hex(serial),
        ca_request=request.ca_request,
    )
    return certificate


# ─────────────────────── CRLs ───────────────────────


def generate_crl(
    issuer: IssuedCertificate,
    entries: Iterable[RevocationEntry],
    crl_number: int,
    next_update: datetime,
    signature_algorithm: SignatureAlgorithm | None = None,
    this_update: datetime | None = None,
) -> x509.CertificateRevocationList:
    """Sign a CRL carrying CRL number and authority key identifier extensions."""
    if issuer.private_key is None:
        raise InvalidArgumentError("Issuer private key is not available")
    this_update = as_utc(this_update) if this_update is not None else utc_now()
    ca_certificate = issuer.certificate

    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(ca_certificate.subject)
        .last_update(this_update)
        .next_update(as_utc(next_update))
        .add_extension(x509.CRLNumber(crl_number), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier(
                key_identifier=_key_identifier(ca_certificate),
                authority_cert_issuer=None,
                authority_cert_serial_number=None,
            ),
            critical=False,
        )
    )
    count = 0
    for entry in entries:
        revoked = (
            x509.RevokedCertificateBuilder()
            .serial_number(entry.serial_number)
            .revocation_date(as_utc(entry.revocation_date))
        )
        if entry.reason.reason_flag is not None:
            revoked = revoked.add_extension(x509.CRLReason(entry.reason.reason_flag), critical=False)
        builder = builder.add_revoked_certificate(revoked.build())
        count += 1

    crl = builder.sign(**_sign_arguments(issuer.private_key, signature_algorithm))
    log.info("crl.generated", crl_number=crl_number, revoked=count)
    return crl
