"""
IssuedCertificate — a certificate chain, optionally with its private key.

This is the unit the CA stores for every signed request and the material
that backs the CA itself (its `ca.p12` keystore). It can be opened from
and written to PKCS#12 / PKCS#7 files and exported piecewise in any
supported encoding.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    CertificatePublicKeyTypes,
)

from ca_manager.adapters import codecs
from ca_manager.domain.enums import EncodingType, PKCS8Cipher, PKCS12Cipher
from ca_manager.domain.errors import InvalidArgumentError, StoreIOError

log = structlog.get_logger()


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise StoreIOError(f"Unable to read {path}") from e


def _write(path: Path, data: bytes) -> Path:
    path.write_bytes(data)
    return path


@dataclass(eq=False, slots=True)
class IssuedCertificate:
    """
    Certificate chain (leaf first) plus optional private key and passphrase.

    Equality compares the chains and the private keys by value.
    """

    certificate_chain: tuple[x509.Certificate, ...]
    private_key: CertificateIssuerPrivateKeyTypes | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.certificate_chain:
            raise InvalidArgumentError("An issued certificate needs a non-empty certificate chain")
        self.certificate_chain = tuple(self.certificate_chain)

    @property
    def certificate(self) -> x509.Certificate:
        return self.certificate_chain[0]

    @property
    def public_key(self) -> CertificatePublicKeyTypes:
        return self.certificate.public_key()

    # ─────────────────────── Opening ───────────────────────

    @classmethod
    def open_pkcs12(cls, path: Path, password: str | None) -> IssuedCertificate:
        """Raises InvalidPasswordError for a wrong passphrase, StoreIOError for anything else."""
        contents = codecs.load_pkcs12(_read(path), password)
        if not contents.certificates:
            raise StoreIOError(f"Keystore {path.name} holds no certificate")
        return cls(contents.certificates, contents.private_key, password)  # type: ignore[arg-type]

    @classmethod
    def open_pkcs7(cls, path: Path) -> IssuedCertificate:
        chain = codecs.load_pkcs7(_read(path))
        if not chain:
            raise StoreIOError(f"PKCS#7 file {path.name} holds no certificate")
        return cls(chain)

    # ─────────────────────── Writing / exports ───────────────────────

    def create_pkcs12(
        self,
        path: Path,
        password: str | None,
        alias: str | None = None,
        cipher: PKCS12Cipher = PKCS12Cipher.AES256,
    ) -> Path:
        if self.private_key is None:
            raise InvalidArgumentError("A PKCS#12 keystore needs the private key")
        data = codecs.encode_pkcs12(self.private_key, self.certificate_chain, password, alias, cipher)
        log.debug("pkcs12.written", file=path.name, cipher=cipher.value)
        return _write(path, data)

    def create_pkcs7(self, path: Path, encoding: EncodingType = EncodingType.DER) -> Path:
        return _write(path, codecs.encode_pkcs7(self.certificate_chain, encoding))

    def create_certificate(self, path: Path, encoding: EncodingType) -> Path:
        return _write(path, codecs.encode_certificate(self.certificate, encoding))

    def create_private_key(
        self,
        path: Path,
        password: str | None,
        encoding: EncodingType,
        cipher: PKCS8Cipher = PKCS8Cipher.NONE,
    ) -> Path:
        if self.private_key is None:
            raise InvalidArgumentError("No private key is available for export")
        return _write(path, codecs.encode_private_key(self.private_key, password, encoding, cipher))

    def create_public_key(self, path: Path, encoding: EncodingType) -> Path:
        return _write(path, codecs.encode_public_key(self.public_key, encoding))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IssuedCertificate):
            return NotImplemented
        return self.certificate_chain == other.certificate_chain and codecs.private_keys_equal(
            self.private_key, other.private_key
        )

    __hash__ = None  # type: ignore[assignment]
