"""
Codec layer — PKCS#7, PKCS#8, PKCS#10, PKCS#12, X.509 CRL and public key encoding.

Adapter layer split between the two ASN.1 libraries:
  - asn1crypto: PEM detection / armoring, CMS SignedData unwrapping for
    PKCS#7 chains, PBES2 EncryptedPrivateKeyInfo structures, and a strict
    structural check of PKCS#12 Pfx envelopes
  - cryptography (PyCA): certificate / CSR / CRL / key objects, PBKDF2 and
    block ciphers, PKCS#12 bundle serialization

Decoders accept PEM or DER transparently. Every decoder raises StoreIOError
for malformed or mismatched input and InvalidPasswordError when a
passphrase fails to decrypt otherwise well-formed content.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import structlog
from asn1crypto import cms, core, pem
from asn1crypto import algos as asn1_algos
from asn1crypto import keys as asn1_keys
from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives import padding as block_padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificatePublicKeyTypes,
    PrivateKeyTypes,
    PublicKeyTypes,
)
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12

from ca_manager.domain.enums import EncodingType, PKCS8Cipher, PKCS12Cipher
from ca_manager.domain.errors import InvalidArgumentError, InvalidPasswordError, StoreIOError

log = structlog.get_logger()

_DECODE_ERRORS = (ValueError, TypeError, UnsupportedAlgorithm)

# ─────────────────────── PEM / DER ───────────────────────


def _der_of(data: bytes) -> bytes:
    """DER content of `data`, unwrapping the first PEM block when armored."""
    if pem.detect(data):
        _, _, der = pem.unarmor(data)
        return der
    return data


def _armor(label: str, der: bytes, encoding: EncodingType) -> bytes:
    if encoding is EncodingType.PEM:
        return pem.armor(label, der)
    return der


def _serialization_encoding(encoding: EncodingType) -> serialization.Encoding:
    return serialization.Encoding.PEM if encoding is EncodingType.PEM else serialization.Encoding.DER


def is_pem(data: bytes) -> bool:
    return pem.detect(data)


# ─────────────────────── X.509 certificates ───────────────────────


def load_certificate(data: bytes) -> x509.Certificate:
    try:
        return x509.load_der_x509_certificate(_der_of(data))
    except _DECODE_ERRORS as e:
        raise StoreIOError("Not an X.509 certificate") from e


def encode_certificate(certificate: x509.Certificate, encoding: EncodingType) -> bytes:
    return certificate.public_bytes(_serialization_encoding(encoding))


def order_chain(certificates: list[x509.Certificate]) -> tuple[x509.Certificate, ...]:
    """
    Arrange certificates leaf first, each one followed by its issuer.

    SET OF encodings (PKCS#7, PKCS#12 bags) do not preserve chain order.
    Certificates that do not link into the chain are appended at the end.
    """
    remaining = list(certificates)
    if len(remaining) <= 1:
        return tuple(remaining)

    issuers = {c.issuer for c in remaining if c.issuer != c.subject}
    current = next((c for c in remaining if c.subject not in issuers), remaining[0])
    ordered = [current]
    remaining.remove(current)
    while remaining and current.issuer != current.subject:
        parent = next((c for c in remaining if c.subject == current.issuer), None)
        if parent is None:
            break
        ordered.append(parent)
        remaining.remove(parent)
        current = parent
    ordered.extend(remaining)
    return tuple(ordered)


# ─────────────────────── PKCS#7 certificate chains ───────────────────────


def load_pkcs7(data: bytes) -> tuple[x509.Certificate, ...]:
    """Decode a degenerate PKCS#7 SignedData into its certificate chain, leaf first."""
    try:
        content_info = cms.ContentInfo.load(_der_of(data))
        content_type = content_info["content_type"].native
        if content_type != "signed_data":
            raise ValueError(f"unexpected content type {content_type}")
        certificate_set = content_info["content"]["certificates"]
        certificates = []
        if not isinstance(certificate_set, core.Void):
            for choice in certificate_set:
                if choice.name == "certificate":
                    certificates.append(x509.load_der_x509_certificate(choice.chosen.dump()))
    except _DECODE_ERRORS as e:
        raise StoreIOError("Not a PKCS#7 certificate chain") from e
    log.debug("pkcs7.decoded", certificates=len(certificates))
    return order_chain(certificates)


def encode_pkcs7(chain: tuple[x509.Certificate, ...] | list[x509.Certificate], encoding: EncodingType) -> bytes:
    if not chain:
        raise InvalidArgumentError("A PKCS#7 chain needs at least one certificate")
    return pkcs7.serialize_certificates(list(chain), _serialization_encoding(encoding))


# ─────────────────────── PKCS#8 private keys ───────────────────────

_PBKDF2_ITERATIONS = 10_000
_SALT_LENGTH = 16

# PBES2 encryption scheme name (asn1crypto) and key length in bytes.
_PKCS8_SCHEMES: dict[PKCS8Cipher, tuple[str, int]] = {
    PKCS8Cipher.DES3_CBC: ("tripledes_3key", 24),
    PKCS8Cipher.AES_128_CBC: ("aes128_cbc", 16),
    PKCS8Cipher.AES_192_CBC: ("aes192_cbc", 24),
    PKCS8Cipher.AES_256_CBC: ("aes256_cbc", 32),
}

_PRF_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


def _block_cipher(cipher_name: str, secret: bytes) -> algorithms.AES | TripleDES:
    if cipher_name == "tripledes":
        return TripleDES(secret)
    return algorithms.AES(secret)


def _pbkdf2(password: str, salt: bytes, iterations: int, length: int, prf: str) -> bytes:
    kdf = PBKDF2HMAC(algorithm=_PRF_HASHES[prf](), length=length, salt=salt, iterations=iterations)
    return kdf.derive(password.encode("utf-8"))


def _encrypt_pkcs8(plain_der: bytes, password: str, cipher: PKCS8Cipher) -> bytes:
    scheme, key_size = _PKCS8_SCHEMES[cipher]
    salt = os.urandom(_SALT_LENGTH)
    secret = _pbkdf2(password, salt, _PBKDF2_ITERATIONS, key_size, "sha256")
    block = _block_cipher("tripledes" if cipher is PKCS8Cipher.DES3_CBC else "aes", secret)
    iv = os.urandom(block.block_size // 8)

    padder = block_padding.PKCS7(block.block_size).padder()
    padded = padder.update(plain_der) + padder.finalize()
    encryptor = Cipher(block, modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()

    info = asn1_keys.EncryptedPrivateKeyInfo({
        "encryption_algorithm": {
            "algorithm": "pbes2",
            "parameters": {
                "key_derivation_func": {
                    "algorithm": "pbkdf2",
                    "parameters": {
                        "salt": asn1_algos.Pbkdf2Salt(name="specified", value=salt),
                        "iteration_count": _PBKDF2_ITERATIONS,
                        "key_length": key_size,
                        "prf": {"algorithm": "sha256"},
                    },
                },
                "encryption_scheme": {"algorithm": scheme, "parameters": iv},
            },
        },
        "encrypted_data": encrypted,
    })
    return info.dump()


def _encrypted_info(der: bytes) -> asn1_keys.EncryptedPrivateKeyInfo | None:
    """Parse `der` as EncryptedPrivateKeyInfo; None when it is some other structure."""
    try:
        info = asn1_keys.EncryptedPrivateKeyInfo.load(der)
        info["encryption_algorithm"]["algorithm"].native
        info["encrypted_data"].native
    except (ValueError, TypeError):
        return None
    return info


def _decrypt_pkcs8(info: asn1_keys.EncryptedPrivateKeyInfo, der: bytes, password: str) -> PrivateKeyTypes:
    algorithm = info["encryption_algorithm"]
    if algorithm["algorithm"].native != "pbes2":
        # PBES1 / PKCS#12 PBE schemes are left to OpenSSL
        try:
            return serialization.load_der_private_key(der, password.encode("utf-8"))
        except _DECODE_ERRORS as e:
            raise InvalidPasswordError("Unable to decrypt private key, invalid password") from e

    if algorithm.kdf != "pbkdf2" or algorithm.encryption_cipher not in ("aes", "tripledes"):
        raise StoreIOError(f"Unsupported private key encryption {algorithm.encryption_cipher}")

    secret = _pbkdf2(
        password,
        algorithm.kdf_salt,
        algorithm.kdf_iterations,
        algorithm.key_length,
        algorithm.kdf_hmac,
    )
    block = _block_cipher(algorithm.encryption_cipher, secret)
    decryptor = Cipher(block, modes.CBC(algorithm.encryption_iv)).decryptor()
    try:
        padded = decryptor.update(info["encrypted_data"].native) + decryptor.finalize()
        unpadder = block_padding.PKCS7(block.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return serialization.load_der_private_key(plain, password=None)
    except _DECODE_ERRORS as e:
        raise InvalidPasswordError("Unable to decrypt private key, invalid password") from e


def load_private_key(data: bytes, password: str | None = None) -> PrivateKeyTypes:
    """Decode a PKCS#8 private key, decrypting it when it is wrapped."""
    try:
        der = _der_of(data)
    except _DECODE_ERRORS as e:
        raise StoreIOError("Not a PKCS#8 private key") from e

    info = _encrypted_info(der)
    if info is None:
        try:
            return serialization.load_der_private_key(der, password=None)
        except _DECODE_ERRORS as e:
            raise StoreIOError("Not a PKCS#8 private key") from e

    if not password:
        raise InvalidPasswordError("Private key is encrypted and no password was supplied")
    return _decrypt_pkcs8(info, der, password)


def encode_private_key(
    private_key: PrivateKeyTypes,
    password: str | None,
    encoding: EncodingType,
    cipher: PKCS8Cipher = PKCS8Cipher.NONE,
) -> bytes:
    """Encode a private key as PKCS#8, PBES2-wrapped unless `cipher` is NONE."""
    if cipher is PKCS8Cipher.NONE:
        return private_key.private_bytes(
            _serialization_encoding(encoding),
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    if not password:
        raise InvalidArgumentError(f"A password is required for {cipher.value} encryption")
    plain_der = private_key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return _armor("ENCRYPTED PRIVATE KEY", _encrypt_pkcs8(plain_der, password, cipher), encoding)


def private_keys_equal(first: PrivateKeyTypes | None, second: PrivateKeyTypes | None) -> bool:
    """
    Compare private keys by value.

    EC keys are compared on the private scalar S; other keys on their
    unencrypted PKCS#8 DER encoding.
    """
    if first is None or second is None:
        return first is second
    if isinstance(first, ec.EllipticCurvePrivateKey) and isinstance(second, ec.EllipticCurvePrivateKey):
        return (
            first.curve.name == second.curve.name
            and first.private_numbers().private_value == second.private_numbers().private_value
        )

    def _plain(key: PrivateKeyTypes) -> bytes:
        return key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

    return type(first) is type(second) and _plain(first) == _plain(second)


# ─────────────────────── PKCS#10 requests ───────────────────────


def load_csr(data: bytes) -> x509.CertificateSigningRequest:
    try:
        return x509.load_der_x509_csr(_der_of(data))
    except _DECODE_ERRORS as e:
        raise StoreIOError("Not a PKCS#10 certificate signing request") from e


def encode_csr(csr: x509.CertificateSigningRequest, encoding: EncodingType) -> bytes:
    return csr.public_bytes(_serialization_encoding(encoding))


# ─────────────────────── PKCS#12 keystores ───────────────────────

_PKCS12_ALGORITHMS: dict[PKCS12Cipher, tuple[pkcs12.PBES, type[hashes.HashAlgorithm]]] = {
    PKCS12Cipher.DES3: (pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC, hashes.SHA1),
    PKCS12Cipher.AES256: (pkcs12.PBES.PBESv2SHA256AndAES256CBC, hashes.SHA256),
}
_PKCS12_KDF_ROUNDS = 50_000


@dataclass(frozen=True, slots=True)
class KeyStoreContents:
    """Decoded PKCS#12 keystore: key, chain (leaf first) and friendly name."""

    private_key: PrivateKeyTypes | None
    certificates: tuple[x509.Certificate, ...]
    alias: str | None = None


def _check_pfx(data: bytes) -> None:
    """Reject anything that is not structurally a PKCS#12 Pfx (e.g. a PKCS#7 file)."""
    try:
        pfx = asn1_pkcs12.Pfx.load(data)
        pfx["version"].native
        content_type = pfx["auth_safe"]["content_type"].native
    except (ValueError, TypeError) as e:
        raise StoreIOError("Not a PKCS#12 keystore") from e
    if content_type not in ("data", "signed_data"):
        raise StoreIOError(f"Not a PKCS#12 keystore: unexpected content type {content_type}")


def load_pkcs12(data: bytes, password: str | None) -> KeyStoreContents:
    _check_pfx(data)
    try:
        bundle = pkcs12.load_pkcs12(data, password.encode("utf-8") if password else None)
    except UnsupportedAlgorithm as e:
        raise StoreIOError("PKCS#12 keystore uses an unsupported algorithm") from e
    except (ValueError, TypeError) as e:
        raise InvalidPasswordError("Unable to decrypt PKCS#12 keystore, invalid password") from e

    certificates: list[x509.Certificate] = []
    alias = None
    if bundle.cert is not None:
        certificates.append(bundle.cert.certificate)
        if bundle.cert.friendly_name:
            alias = bundle.cert.friendly_name.decode("utf-8")
    certificates.extend(c.certificate for c in bundle.additional_certs)
    log.debug("pkcs12.decoded", certificates=len(certificates), has_key=bundle.key is not None)
    return KeyStoreContents(bundle.key, order_chain(certificates), alias)


def check_pkcs12_password(password: str | None, cipher: PKCS12Cipher) -> None:
    """An encrypted keystore needs a non-empty password; PKCS12Cipher.NONE takes none."""
    if cipher is not PKCS12Cipher.NONE and not password:
        raise InvalidArgumentError(f"A {cipher.value} PKCS#12 keystore needs a password")


def encode_pkcs12(
    private_key: PrivateKeyTypes,
    chain: tuple[x509.Certificate, ...],
    password: str | None,
    alias: str | None = None,
    cipher: PKCS12Cipher = PKCS12Cipher.AES256,
) -> bytes:
    """Serialize key + chain; the leaf carries `alias` as its friendly name."""
    if not chain:
        raise InvalidArgumentError("A PKCS#12 keystore needs at least one certificate")
    check_pkcs12_password(password, cipher)
    if cipher is PKCS12Cipher.NONE:
        encryption: serialization.KeySerializationEncryption = serialization.NoEncryption()
    else:
        pbes, mac = _PKCS12_ALGORITHMS[cipher]
        encryption = (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(_PKCS12_KDF_ROUNDS)
            .key_cert_algorithm(pbes)
            .hmac_hash(mac())
            .build(password.encode("utf-8"))  # type: ignore[union-attr]
        )
    return pkcs12.serialize_key_and_certificates(
        name=alias.encode("utf-8") if alias else None,
        key=private_key,
        cert=chain[0],
        cas=list(chain[1:]) or None,
        encryption_algorithm=encryption,
    )


# ─────────────────────── X.509 CRLs ───────────────────────


def load_crl(data: bytes) -> x509.CertificateRevocationList:
    try:
        return x509.load_der_x509_crl(_der_of(data))
    except _DECODE_ERRORS as e:
        raise StoreIOError("Not an X.509 CRL") from e


def encode_crl(crl: x509.CertificateRevocationList, encoding: EncodingType) -> bytes:
    return crl.public_bytes(_serialization_encoding(encoding))


# ─────────────────────── Public keys ───────────────────────


def load_public_key(data: bytes) -> PublicKeyTypes:
    try:
        return serialization.load_der_public_key(_der_of(data))
    except _DECODE_ERRORS as e:
        raise StoreIOError("Not a SubjectPublicKeyInfo public key") from e


def encode_public_key(public_key: CertificatePublicKeyTypes | PublicKeyTypes, encoding: EncodingType) -> bytes:
    return public_key.public_bytes(
        _serialization_encoding(encoding),
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
