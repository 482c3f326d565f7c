"""
Key pair factory — generation and identification of asymmetric keys.

Uses cryptography (PyCA) primitives for every family in the KeyType catalogue:
RSA (e = 65537), DSA, EC named curves (SEC, NIST and Brainpool names), Ed25519
and Ed448. Binary sect* curves resolve only while the installed cryptography
release still provides them.
"""

from __future__ import annotations

import structlog
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    PrivateKeyTypes,
    PublicKeyTypes,
)

from ca_manager.domain.enums import KeyType
from ca_manager.domain.errors import UnknownKeyTypeError

log = structlog.get_logger()

_RSA_PUBLIC_EXPONENT = 65537

# Curve parameter names (as carried by KeyType.parameters) to PyCA curve class
# names. Names whose class is missing from the installed release are left out.
_CURVE_CLASSES: dict[str, str] = {
    "secp192r1": "SECP192R1",
    "prime192v1": "SECP192R1",
    "P-192": "SECP192R1",
    "secp224r1": "SECP224R1",
    "P-224": "SECP224R1",
    "secp256k1": "SECP256K1",
    "secp256r1": "SECP256R1",
    "prime256v1": "SECP256R1",
    "P-256": "SECP256R1",
    "secp384r1": "SECP384R1",
    "P-384": "SECP384R1",
    "secp521r1": "SECP521R1",
    "P-521": "SECP521R1",
    "sect163k1": "SECT163K1",
    "K-163": "SECT163K1",
    "sect163r2": "SECT163R2",
    "B-163": "SECT163R2",
    "sect233k1": "SECT233K1",
    "K-233": "SECT233K1",
    "sect233r1": "SECT233R1",
    "B-233": "SECT233R1",
    "sect283k1": "SECT283K1",
    "K-283": "SECT283K1",
    "sect283r1": "SECT283R1",
    "B-283": "SECT283R1",
    "sect409k1": "SECT409K1",
    "K-409": "SECT409K1",
    "sect409r1": "SECT409R1",
    "B-409": "SECT409R1",
    "sect571k1": "SECT571K1",
    "K-571": "SECT571K1",
    "sect571r1": "SECT571R1",
    "B-571": "SECT571R1",
    "brainpoolP256r1": "BrainpoolP256R1",
    "brainpoolP384r1": "BrainpoolP384R1",
    "brainpoolP512r1": "BrainpoolP512R1",
}

_CURVES: dict[str, type[ec.EllipticCurve]] = {
    parameters: getattr(ec, class_name)
    for parameters, class_name in _CURVE_CLASSES.items()
    if hasattr(ec, class_name)
}


def supported_curves() -> frozenset[KeyType]:
    """EC catalogue entries whose curve the installed cryptography release provides."""
    return frozenset(kt for kt in KeyType if kt.family == "EC" and kt.parameters in _CURVES)


def curve_for(key_type: KeyType) -> ec.EllipticCurve:
    if key_type.family != "EC" or key_type.parameters not in _CURVE_CLASSES:
        raise UnknownKeyTypeError(f"{key_type} is not a supported elliptic curve")
    if key_type.parameters not in _CURVES:
        raise UnknownKeyTypeError(f"{key_type} is not available in this cryptography release")
    return _CURVES[key_type.parameters]()


def generate_key_pair(key_type: KeyType) -> CertificateIssuerPrivateKeyTypes:
    """Generate a new private key (its public half is reachable via .public_key())."""
    match key_type.family:
        case "RSA":
            key: CertificateIssuerPrivateKeyTypes = rsa.generate_private_key(
                public_exponent=_RSA_PUBLIC_EXPONENT, key_size=key_type.bit_length
            )
        case "DSA":
            key = dsa.generate_private_key(key_size=key_type.bit_length)
        case "EC":
            key = ec.generate_private_key(curve_for(key_type))
        case "Ed25519":
            key = ed25519.Ed25519PrivateKey.generate()
        case "Ed448":
            key = ed448.Ed448PrivateKey.generate()
        case _:
            raise UnknownKeyTypeError(f"Unsupported key type {key_type.name}")
    log.debug("keypair.generated", key_type=key_type.name)
    return key


def _sized(family: str, size: int) -> KeyType | None:
    return next((kt for kt in KeyType if kt.family == family and kt.bit_length == size), None)


def key_type_for(key: PublicKeyTypes | PrivateKeyTypes) -> KeyType | None:
    """
    Identify the catalogue entry of a key, or None when it is not catalogued.

    EC keys resolve to the SEC-named entry of their curve.
    """
    match key:
        case rsa.RSAPublicKey() | rsa.RSAPrivateKey():
            return _sized("RSA", key.key_size)
        case dsa.DSAPublicKey() | dsa.DSAPrivateKey():
            return _sized("DSA", key.key_size)
        case ec.EllipticCurvePublicKey() | ec.EllipticCurvePrivateKey():
            return next((kt for kt in KeyType if kt.parameters == key.curve.name), None)
        case ed25519.Ed25519PublicKey() | ed25519.Ed25519PrivateKey():
            return KeyType.ED25519
        case ed448.Ed448PublicKey() | ed448.Ed448PrivateKey():
            return KeyType.ED448
        case _:
            return None


def key_length(key: PublicKeyTypes | PrivateKeyTypes) -> int:
    """Key size in bits (curve size for EC, fixed sizes for EdDSA)."""
    match key:
        case ec.EllipticCurvePublicKey() | ec.EllipticCurvePrivateKey():
            return key.curve.key_size
        case ed25519.Ed25519PublicKey() | ed25519.Ed25519PrivateKey():
            return 256
        case ed448.Ed448PublicKey() | ed448.Ed448PrivateKey():
            return 448
        case rsa.RSAPublicKey() | rsa.RSAPrivateKey() | dsa.DSAPublicKey() | dsa.DSAPrivateKey():
            return key.key_size
        case _:
            raise UnknownKeyTypeError(f"Unsupported key {type(key).__name__}")
