"""
Shared test fixtures and helpers for the ca-manager test suite.

Builds real key material with cryptography: a self-signed EC CA certificate,
leaf requests and PKCS#10 CSRs. Every CA lives in its own tmp_path and uses
incremental serials so serial assertions are deterministic.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ca_manager.adapters import certificate_factory, codecs, key_pair_factory
from ca_manager.adapters.issued_certificate import IssuedCertificate
from ca_manager.adapters.requests import CertificateRequest
from ca_manager.authority import CertificateAuthority
from ca_manager.domain.assertions import ResultAssertions
from ca_manager.domain.enums import EncodingType, KeyType, KeyUsage
from ca_manager.domain.models import utc_now

PASSPHRASE = "changeme"


def name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_ca_certificate(
    key_type: KeyType = KeyType.EC_P256,
    subject: str = "Test CA",
    days: int = 365,
    password: str | None = PASSPHRASE,
) -> IssuedCertificate:
    """Self-signed CA certificate with its private key."""
    key = key_pair_factory.generate_key_pair(key_type)
    certificate = certificate_factory.generate_self_signed_certificate(
        name(subject),
        utc_now() + timedelta(days=days),
        key,
        is_ca=True,
    )
    return IssuedCertificate((certificate,), key, password)


def make_leaf_request(
    subject: str = "MySubjectCert",
    key_type: KeyType = KeyType.EC_P256,
    description: str | None = None,
) -> CertificateRequest:
    return CertificateRequest(
        subject=name(subject),
        key_type=key_type,
        description=description,
        key_usage=frozenset({KeyUsage.DIGITAL_SIGNATURE}),
    )


def make_csr(subject: str = "Remote Subject", encoding: EncodingType = EncodingType.PEM) -> bytes:
    """A PKCS#10 CSR for a fresh P-256 key."""
    key = ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(name(subject))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("remote.example.org")]), critical=False)
        .sign(key, hashes.SHA256())
    )
    return codecs.encode_csr(csr, encoding)


def validity(start_seconds: int = 10, end_seconds: int = 360):
    now = utc_now()
    return now + timedelta(seconds=start_seconds), now + timedelta(seconds=end_seconds)


# ─────────────────────── Fixtures ───────────────────────


@pytest.fixture()
def ca_issuer() -> IssuedCertificate:
    return make_ca_certificate()


@pytest.fixture()
def authority(tmp_path: Path, ca_issuer: IssuedCertificate) -> Iterator[CertificateAuthority]:
    """An UNLOCKED CA in tmp_path with incremental serials."""
    base = tmp_path / "ca"
    base.mkdir()
    ca = ResultAssertions.assert_success(CertificateAuthority.create(base, ca_issuer, "Test CA"))
    ResultAssertions.assert_success(ca.set_incremental_serial(True))
    yield ca
    ca.close()


@pytest.fixture()
def locked_authority(authority: CertificateAuthority) -> CertificateAuthority:
    ResultAssertions.assert_success(authority.lock())
    return authority


@pytest.fixture()
def csr_file(tmp_path: Path) -> Path:
    path = tmp_path / "remote.csr"
    path.write_bytes(make_csr())
    return path
