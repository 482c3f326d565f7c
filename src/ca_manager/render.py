"""
Reports — human-readable descriptions of CA artifacts written to an OutputRenderer.

  render_authority           the CA itself: identity, private key, certificate
  render_issued_certificate  an Issued/ or Revoked/ entry
  render_crl                 a published CRL and its entries
  render_csr                 an imported PKCS#10 request

Fields come from cryptography; signature algorithm and extension names are
looked up through asn1crypto's OID maps. Binary values are shown as
lowercase hex, 16 bytes per line. None of the functions call
`renderer.finish()`, so several reports can share one output.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog
from asn1crypto import algos as asn1_algos
from asn1crypto import crl as asn1_crl
from asn1crypto import csr as asn1_csr
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes, PublicKeyTypes

from ca_manager.adapters import key_pair_factory
from ca_manager.adapters.templates import general_name_document
from ca_manager.domain.enums import ExtendedKeyUsage, RevokeReasonCode, key_usages_of
from ca_manager.domain.errors import CaException, InvalidArgumentError
from ca_manager.domain.ports import OutputRenderer
from ca_manager.domain.result import Failure, Success
from ca_manager.properties import (
    CertificateRequestProperties,
    CRLProperties,
    IssuedCertificateProperties,
    format_date,
)

if TYPE_CHECKING:
    from ca_manager.authority import CertificateAuthority

log = structlog.get_logger()

HEX_WRAP = 16
ACCESS_ERROR = "ERROR UNABLE TO ACCESS Certificate Information"

_DER = serialization.Encoding.DER


# ─────────────────────── Value formatting ───────────────────────


def hex_string(data: bytes, wrap: int = HEX_WRAP, indent: str = "") -> str:
    """Space separated hex octets, `wrap` per line; continuation lines start with `indent`."""
    octets = [f"{b:02x}" for b in data]
    lines = (" ".join(octets[i:i + wrap]) for i in range(0, len(octets), wrap))
    return ("\n" + indent).join(lines)


def dual_value(value: int) -> str:
    return f"0x{value:x} ({value})"


def _flag(value: bool) -> str:
    return "True" if value else "False"


def _int_bytes(value: int) -> bytes:
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def _digest(data: bytes, algorithm: hashes.HashAlgorithm) -> bytes:
    digest = hashes.Hash(algorithm)
    digest.update(data)
    return digest.finalize()


def reason_label(code: RevokeReasonCode) -> str:
    return code.name.replace("_", " ").capitalize()


def _general_name(name: x509.GeneralName) -> str:
    try:
        document = general_name_document(name)
    except InvalidArgumentError:
        return repr(name)
    return f"{document.tag.value}: {document.value}"


def _names(names: Iterable[x509.GeneralName] | None) -> str | None:
    labels = sorted(_general_name(name) for name in names or ())
    return "\n".join(labels) if labels else None


def _signature_algorithm(algorithm: asn1_algos.SignedDigestAlgorithm) -> str:
    oid = algorithm["algorithm"]
    return f"{oid.native} ({oid.dotted})" if oid.native != oid.dotted else oid.dotted


def _purpose(oid: x509.ObjectIdentifier) -> str:
    return next((usage.name for usage in ExtendedKeyUsage if usage.value == oid.dotted_string), oid.dotted_string)


# ─────────────────────── Keys ───────────────────────


def key_algorithm(key: PublicKeyTypes | PrivateKeyTypes) -> str:
    match key:
        case rsa.RSAPublicKey() | rsa.RSAPrivateKey():
            return "RSA"
        case dsa.DSAPublicKey() | dsa.DSAPrivateKey():
            return "DSA"
        case ec.EllipticCurvePublicKey() | ec.EllipticCurvePrivateKey():
            return "EC"
        case ed25519.Ed25519PublicKey() | ed25519.Ed25519PrivateKey():
            return "Ed25519"
        case ed448.Ed448PublicKey() | ed448.Ed448PrivateKey():
            return "Ed448"
        case _:
            return type(key).__name__


def _curve_name(key: PublicKeyTypes | PrivateKeyTypes) -> str | None:
    match key:
        case ec.EllipticCurvePublicKey() | ec.EllipticCurvePrivateKey():
            return key.curve.name
        case ed25519.Ed25519PublicKey() | ed25519.Ed25519PrivateKey():
            return "Ed25519"
        case ed448.Ed448PublicKey() | ed448.Ed448PrivateKey():
            return "Ed448"
        case _:
            return None


def describe_public_key(key: PublicKeyTypes) -> str:
    """Key material by component: modulus and exponent, Y, or the X/Y point."""
    match key:
        case rsa.RSAPublicKey():
            numbers = key.public_numbers()
            modulus = hex_string(_int_bytes(numbers.n), indent=" " * 9)
            return f"Modulus: {modulus}\nExponent: {numbers.e} (0x{numbers.e:x})"
        case dsa.DSAPublicKey():
            return f"Y: {hex_string(_int_bytes(key.public_numbers().y), indent=' ' * 3)}"
        case ec.EllipticCurvePublicKey():
            numbers = key.public_numbers()
            x = hex_string(_int_bytes(numbers.x), indent=" " * 3)
            y = hex_string(_int_bytes(numbers.y), indent=" " * 3)
            return f"X: {x}\nY: {y}"
        case ed25519.Ed25519PublicKey() | ed448.Ed448PublicKey():
            raw = key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
            return f"Key: {hex_string(raw, indent=' ' * 5)}"
        case _:
            return type(key).__name__


def _render_key_details(renderer: OutputRenderer, key: PublicKeyTypes | PrivateKeyTypes) -> None:
    renderer.content("Key Algorithm:", key_algorithm(key))
    renderer.content("Key Length/Size:", str(key_pair_factory.key_length(key)))
    curve = _curve_name(key)
    if curve is not None:
        renderer.content("Curve Name:", curve)


def _render_fingerprints(renderer: OutputRenderer, der: bytes) -> None:
    renderer.content("SHA1 Fingerprint:", hex_string(_digest(der, hashes.SHA1())), True)
    renderer.content("SHA512 Fingerprint:", hex_string(_digest(der, hashes.SHA512())), True)


def _render_private_key(renderer: OutputRenderer, title: str, key: PrivateKeyTypes) -> None:
    renderer.header(f"{title} Private Key")
    _render_key_details(renderer, key)
    der = key.private_bytes(_DER, serialization.PrivateFormat.PKCS8, serialization.NoEncryption())
    _render_fingerprints(renderer, der)
    renderer.horizontal_line()


def _render_public_key(renderer: OutputRenderer, key: PublicKeyTypes) -> None:
    _render_key_details(renderer, key)
    renderer.content("Public Key:", describe_public_key(key), True)


# ─────────────────────── Extensions ───────────────────────


def _render_extensions(renderer: OutputRenderer, extensions: x509.Extensions) -> None:
    for extension in extensions:
        value = extension.value
        match value:
            case x509.BasicConstraints():
                renderer.header("Basic Constraints")
                renderer.content("Certificate Authority:", _flag(value.ca))
                if value.ca and value.path_length is not None:
                    renderer.content("Certificate Chain Depth:", str(value.path_length))
            case x509.CRLDistributionPoints():
                renderer.header("CRL Location")
                for point in value:
                    renderer.content("CRL Issuers:", _names(point.crl_issuer) or "Unknown")
                    renderer.content("CRL Locations:", _names(point.full_name) or "N/A")
            case x509.KeyUsage():
                renderer.header("Key Usage")
                renderer.content("Usage:", "\n".join(sorted(usage.value for usage in key_usages_of(value))))
            case x509.ExtendedKeyUsage():
                renderer.header("Extended Key Usage")
                renderer.content("Usage:", "\n".join(sorted(_purpose(oid) for oid in value)))
            case x509.SubjectAlternativeName():
                renderer.header("Subject Alternate Names")
                renderer.content("Alternate Names:", _names(value))
            case x509.SubjectKeyIdentifier():
                renderer.header("Subject Public Key Identifier")
                renderer.content("Data:", hex_string(value.digest), True)
            case x509.AuthorityKeyIdentifier():
                renderer.header("Authority Key Identifier")
                if value.authority_cert_issuer:
                    renderer.content("Authority Certificate Issuer:", _names(value.authority_cert_issuer))
                if value.authority_cert_serial_number is not None:
                    renderer.content("Authority Serial Number:", dual_value(value.authority_cert_serial_number))
                if not value.authority_cert_issuer and value.authority_cert_serial_number is None:
                    renderer.content("Authority Key Identifier:", hex_string(value.key_identifier or b""), True)
            case x509.UnrecognizedExtension():
                renderer.header(asn1_x509.ExtensionId.map(extension.oid.dotted_string))
                renderer.content("Data:", hex_string(value.value), True)
            case _:
                renderer.header(asn1_x509.ExtensionId.map(extension.oid.dotted_string))
                renderer.content("Data:", hex_string(value.public_bytes()), True)
        renderer.content("Critical:", _flag(extension.critical))


# ─────────────────────── Certificates ───────────────────────


def render_certificate(renderer: OutputRenderer, title: str, certificate: x509.Certificate) -> None:
    """Subject, issuer, validity, public key, extensions and signature of one certificate."""
    der = certificate.public_bytes(_DER)
    renderer.header(f"{title} Certificate")
    renderer.header("Subject")
    renderer.content("X.500 Name:", certificate.subject.rfc4514_string())
    renderer.header("Issuer")
    renderer.content("X.500 Name:", certificate.issuer.rfc4514_string())
    renderer.header("Issued Certificate")
    renderer.content("Version:", str(certificate.version.value + 1))
    renderer.content("Serial:", dual_value(certificate.serial_number))
    renderer.content("Not Valid Before:", format_date(certificate.not_valid_before_utc))
    renderer.content("Not Valid After:", format_date(certificate.not_valid_after_utc))
    _render_fingerprints(renderer, der)

    renderer.header("Public Key")
    _render_public_key(renderer, certificate.public_key())
    _render_extensions(renderer, certificate.extensions)

    renderer.header("Certificate Signature")
    renderer.content(
        "Signature Algorithm:", _signature_algorithm(asn1_x509.Certificate.load(der)["signature_algorithm"])
    )
    renderer.content("Signature:", hex_string(certificate.signature), True)


def _render_key_and_certificate(
    renderer: OutputRenderer,
    title: str,
    private_key: PrivateKeyTypes | None,
    certificate: x509.Certificate,
) -> None:
    if private_key is not None:
        _render_private_key(renderer, title, private_key)
    render_certificate(renderer, title, certificate)


def _render_error(renderer: OutputRenderer, header: str, message: str) -> None:
    renderer.header(header)
    renderer.content("Error:", message)


def render_issued_certificate(
    renderer: OutputRenderer,
    properties: IssuedCertificateProperties,
    password: str | None = None,
) -> None:
    """
    Describe an issued (or revoked) entry. A PKCS#12 entry needs `password`
    to show its certificate; without it only the stored properties appear.
    """
    key = IssuedCertificateProperties.Key
    title = properties.description or properties.subject or properties.path.name
    renderer.header(title)
    renderer.content("Created Date:", properties.get(key.CREATION_DATE))
    if properties.revoke_date is not None:
        renderer.content("Revoked Date:", format_date(properties.revoke_date))
    if properties.revoke_code is not None:
        renderer.content("Revocation Reason:", reason_label(properties.revoke_code))
    if properties.comments is not None:
        renderer.content("Comments:", properties.comments)
    renderer.horizontal_line()

    try:
        issued = properties.load_issued_certificate(password)
    except CaException as e:
        log.debug("report.certificate_unavailable", file=properties.path.name, error=str(e))
        _render_error(renderer, ACCESS_ERROR, str(e))
        return
    _render_key_and_certificate(renderer, title, issued.private_key, issued.certificate)


def render_authority(renderer: OutputRenderer, authority: CertificateAuthority) -> None:
    """Describe the CA; the key and certificate sections need it unlocked."""
    title = authority.description or str(authority.certificate_authority_id)
    renderer.header(title)
    renderer.content("UUID:", str(authority.certificate_authority_id), True)
    renderer.content("Location:", str(authority.base_path))
    renderer.horizontal_line()

    material = authority.get_key_pair().flat_map(
        lambda private_key: authority.get_certificate().map(lambda certificate: (private_key, certificate))
    )
    match material:
        case Failure(error):
            _render_error(renderer, ACCESS_ERROR, error.message)
        case Success((private_key, certificate)):
            _render_key_and_certificate(renderer, title, private_key, certificate)


# ─────────────────────── CRLs ───────────────────────


def _entry_reason(entry: x509.RevokedCertificate) -> RevokeReasonCode | None:
    try:
        flag = entry.extensions.get_extension_for_class(x509.CRLReason).value.reason
    except x509.ExtensionNotFound:
        return None
    return next((code for code in RevokeReasonCode if code.reason_flag is flag), None)


def render_crl(
    renderer: OutputRenderer,
    properties: CRLProperties,
    entry_limit: int | None = None,
    title: str | None = None,
) -> None:
    """
    Describe a CRL. Revoked entries are listed by revocation date, then
    serial; past `entry_limit` only the number of remaining entries is shown.
    """
    key = CRLProperties.Key
    renderer.header(title or properties.get(key.ISSUER))
    try:
        crl = properties.load_crl()
    except CaException as e:
        _render_error(renderer, "ERROR UNABLE TO ACCESS CRL", str(e))
        return
    der = crl.public_bytes(_DER)

    renderer.content("Issuer:", properties.get(key.ISSUER))
    try:
        authority_key = crl.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
    except x509.ExtensionNotFound:
        authority_key = None
    if authority_key is not None and authority_key.key_identifier is not None:
        renderer.content("Issuer ID:", hex_string(authority_key.key_identifier), True)
    if authority_key is not None and authority_key.authority_cert_serial_number is not None:
        renderer.content("Issuer Serial:", dual_value(authority_key.authority_cert_serial_number))
    renderer.content("Issue Date:", properties.get(key.ISSUE_DATE))
    renderer.content("Next Update Date:", properties.get(key.NEXT_EXPECTED_DATE))
    renderer.content("Serial:", properties.get(key.CRL_SERIAL_NUMBER))
    _render_fingerprints(renderer, der)
    renderer.horizontal_line()

    renderer.header("Revoked Certificates")
    entries = sorted(crl, key=lambda entry: (entry.revocation_date_utc, entry.serial_number))
    if not entries:
        renderer.content(None, "No Certificates")
    else:
        renderer.content("Total Certificates Count:", str(len(entries)))
        renderer.empty_line()
        shown = entries if entry_limit is None else entries[:max(entry_limit, 0)]
        for entry in shown:
            renderer.content("Certificate Serial:", dual_value(entry.serial_number))
            renderer.content("Revoke Date:", format_date(entry.revocation_date_utc))
            reason = _entry_reason(entry)
            if reason is not None:
                renderer.content("Revocation Reason:", reason_label(reason))
            renderer.empty_line()
        if len(entries) > len(shown):
            renderer.content(None, f"{len(entries) - len(shown)} additional certificates included...")
    renderer.horizontal_line()

    renderer.header("CRL Signature")
    renderer.content(
        "Signature Algorithm:", _signature_algorithm(asn1_crl.CertificateList.load(der)["signature_algorithm"])
    )
    renderer.content("Signature:", hex_string(crl.signature), True)


# ─────────────────────── Certificate signing requests ───────────────────────


def render_csr(renderer: OutputRenderer, properties: CertificateRequestProperties, title: str | None = None) -> None:
    key = CertificateRequestProperties.Key
    renderer.header(title or properties.subject or properties.path.name)
    try:
        csr = properties.load_request().csr
    except CaException as e:
        _render_error(renderer, "ERROR UNABLE TO ACCESS Certificate Signing Request", str(e))
        return
    der = csr.public_bytes(_DER)

    renderer.content("Import Date:", properties.get(key.IMPORT_DATE))
    renderer.content("Subject:", properties.subject)
    renderer.header("Subject Public Key Info")
    _render_public_key(renderer, csr.public_key())
    renderer.header("Certificate Signing Request Fingerprints")
    _render_fingerprints(renderer, der)
    _render_extensions(renderer, csr.extensions)

    renderer.header("Certificate Signing Request Signature")
    renderer.content(
        "Signature Algorithm:", _signature_algorithm(asn1_csr.CertificationRequest.load(der)["signature_algorithm"])
    )
    renderer.content("Signature:", hex_string(csr.signature), True)
