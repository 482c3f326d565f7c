"""
Enumerations shared by the engine, the codecs and the persisted documents.

Members are persisted by name (KeyType, RevokeReasonCode) or by value
(SignatureAlgorithm, usages), so neither may be renamed once released.
"""

from __future__ import annotations

from enum import Enum, unique

from cryptography import x509

# ─────────────────────── Key types ───────────────────────


@unique
class KeyType(Enum):
    """
    Catalogue of key pairs the factory can generate.

    Each member carries (description, family, bit length, curve parameter).
    """

    RSA_1024 = ("RSA 1024", "RSA", 1024, None)
    RSA_2048 = ("RSA 2048", "RSA", 2048, None)
    RSA_3072 = ("RSA 3072", "RSA", 3072, None)
    RSA_4096 = ("RSA 4096", "RSA", 4096, None)
    RSA_8192 = ("RSA 8192", "RSA", 8192, None)
    RSA_16384 = ("RSA 16384", "RSA", 16384, None)

    DSA_1024 = ("DSA 1024", "DSA", 1024, None)
    DSA_2048 = ("DSA 2048", "DSA", 2048, None)
    DSA_3072 = ("DSA 3072", "DSA", 3072, None)
    DSA_4096 = ("DSA 4096", "DSA", 4096, None)

    EC_secp192r1 = ("EC SEC secp192r1", "EC", 192, "secp192r1")
    EC_secp224r1 = ("EC SEC secp224r1", "EC", 224, "secp224r1")
    EC_secp256k1 = ("EC SEC secp256k1", "EC", 256, "secp256k1")
    EC_secp256r1 = ("EC SEC secp256r1", "EC", 256, "secp256r1")
    EC_secp384r1 = ("EC SEC secp384r1", "EC", 384, "secp384r1")
    EC_secp521r1 = ("EC SEC secp521r1", "EC", 521, "secp521r1")
    EC_sect163k1 = ("EC SEC sect163k1", "EC", 163, "sect163k1")
    EC_sect163r2 = ("EC SEC sect163r2", "EC", 163, "sect163r2")
    EC_sect233k1 = ("EC SEC sect233k1", "EC", 233, "sect233k1")
    EC_sect233r1 = ("EC SEC sect233r1", "EC", 233, "sect233r1")
    EC_sect283k1 = ("EC SEC sect283k1", "EC", 283, "sect283k1")
    EC_sect283r1 = ("EC SEC sect283r1", "EC", 283, "sect283r1")
    EC_sect409k1 = ("EC SEC sect409k1", "EC", 409, "sect409k1")
    EC_sect409r1 = ("EC SEC sect409r1", "EC", 409, "sect409r1")
    EC_sect571k1 = ("EC SEC sect571k1", "EC", 571, "sect571k1")
    EC_sect571r1 = ("EC SEC sect571r1", "EC", 571, "sect571r1")
    EC_B163 = ("EC NIST B-163", "EC", 163, "B-163")
    EC_B233 = ("EC NIST B-233", "EC", 233, "B-233")
    EC_B283 = ("EC NIST B-283", "EC", 283, "B-283")
    EC_B409 = ("EC NIST B-409", "EC", 409, "B-409")
    EC_B571 = ("EC NIST B-571", "EC", 571, "B-571")
    EC_K163 = ("EC NIST K-163", "EC", 163, "K-163")
    EC_K233 = ("EC NIST K-233", "EC", 233, "K-233")
    EC_K283 = ("EC NIST K-283", "EC", 283, "K-283")
    EC_K409 = ("EC NIST K-409", "EC", 409, "K-409")
    EC_K571 = ("EC NIST K-571", "EC", 571, "K-571")
    EC_P192 = ("EC NIST P-192", "EC", 192, "P-192")
    EC_P224 = ("EC NIST P-224", "EC", 224, "P-224")
    EC_P256 = ("EC NIST P-256", "EC", 256, "P-256")
    EC_P384 = ("EC NIST P-384", "EC", 384, "P-384")
    EC_P521 = ("EC NIST P-521", "EC", 521, "P-521")
    EC_prime192v1 = ("EC ANSI X9.62 prime192v1", "EC", 192, "prime192v1")
    EC_prime256v1 = ("EC ANSI X9.62 prime256v1", "EC", 256, "prime256v1")
    EC_brainpoolP256r1 = ("EC TeleTrusT brainpoolP256r1", "EC", 256, "brainpoolP256r1")
    EC_brainpoolP384r1 = ("EC TeleTrusT brainpoolP384r1", "EC", 384, "brainpoolP384r1")
    EC_brainpoolP512r1 = ("EC TeleTrusT brainpoolP512r1", "EC", 512, "brainpoolP512r1")

    ED25519 = ("Ed25519", "Ed25519", 256, None)
    ED448 = ("Ed448", "Ed448", 448, None)

    def __init__(self, description: str, family: str, bit_length: int, parameters: str | None) -> None:
        self.description = description
        self.family = family
        self.bit_length = bit_length
        self.parameters = parameters

    def __str__(self) -> str:
        return self.description

    @classmethod
    def for_name(cls, name: str | None) -> KeyType | None:
        """Lookup by member name, None for unknown or missing names."""
        if not name:
            return None
        return cls.__members__.get(name)


# ─────────────────────── Signature algorithms ───────────────────────


@unique
class SignatureAlgorithm(Enum):
    SHA1_WITH_RSA = "SHA1withRSA"
    SHA224_WITH_RSA = "SHA224withRSA"
    SHA256_WITH_RSA = "SHA256withRSA"
    SHA384_WITH_RSA = "SHA384withRSA"
    SHA512_WITH_RSA = "SHA512withRSA"
    SHA3_224_WITH_RSA = "SHA3-224withRSA"
    SHA3_256_WITH_RSA = "SHA3-256withRSA"
    SHA3_384_WITH_RSA = "SHA3-384withRSA"
    SHA3_512_WITH_RSA = "SHA3-512withRSA"
    SHA256_WITH_RSA_AND_MGF1 = "SHA256withRSAandMGF1"

    SHA1_WITH_DSA = "SHA1withDSA"
    SHA224_WITH_DSA = "SHA224withDSA"
    SHA256_WITH_DSA = "SHA256withDSA"
    SHA384_WITH_DSA = "SHA384withDSA"
    SHA512_WITH_DSA = "SHA512withDSA"

    SHA1_WITH_ECDSA = "SHA1withECDSA"
    SHA224_WITH_ECDSA = "SHA224withECDSA"
    SHA256_WITH_ECDSA = "SHA256withECDSA"
    SHA384_WITH_ECDSA = "SHA384withECDSA"
    SHA512_WITH_ECDSA = "SHA512withECDSA"
    SHA3_224_WITH_ECDSA = "SHA3-224withECDSA"
    SHA3_256_WITH_ECDSA = "SHA3-256withECDSA"
    SHA3_384_WITH_ECDSA = "SHA3-384withECDSA"
    SHA3_512_WITH_ECDSA = "SHA3-512withECDSA"

    ED25519 = "Ed25519"
    ED448 = "Ed448"

    @property
    def key_family(self) -> str:
        """Key family able to produce this signature (matches KeyType.family)."""
        name = self.value
        if "withRSA" in name:
            return "RSA"
        if name.endswith("withECDSA"):
            return "EC"
        if name.endswith("withDSA"):
            return "DSA"
        return name

    @property
    def digest(self) -> str | None:
        """Digest name prefix ("SHA256", "SHA3-384"); None for the EdDSA variants."""
        if "with" not in self.value:
            return None
        return self.value.split("with", 1)[0]

    @property
    def uses_pss(self) -> bool:
        return self.value.endswith("andMGF1")

    def __str__(self) -> str:
        return self.value

    @classmethod
    def for_key_type(cls, key_type: KeyType) -> list[SignatureAlgorithm]:
        return [alg for alg in cls if alg.key_family == key_type.family]


# ─────────────────────── Usages ───────────────────────


@unique
class KeyUsage(Enum):
    """Bits of the X.509 KeyUsage extension; values are the RFC 5280 names."""

    DIGITAL_SIGNATURE = "digitalSignature"
    NON_REPUDIATION = "nonRepudiation"
    KEY_ENCIPHERMENT = "keyEncipherment"
    DATA_ENCIPHERMENT = "dataEncipherment"
    KEY_AGREEMENT = "keyAgreement"
    KEY_CERT_SIGN = "keyCertSign"
    CRL_SIGN = "cRLSign"
    ENCIPHER_ONLY = "encipherOnly"
    DECIPHER_ONLY = "decipherOnly"


def key_usage_extension(usages: frozenset[KeyUsage] | set[KeyUsage]) -> x509.KeyUsage:
    key_agreement = KeyUsage.KEY_AGREEMENT in usages
    return x509.KeyUsage(
        digital_signature=KeyUsage.DIGITAL_SIGNATURE in usages,
        content_commitment=KeyUsage.NON_REPUDIATION in usages,
        key_encipherment=KeyUsage.KEY_ENCIPHERMENT in usages,
        data_encipherment=KeyUsage.DATA_ENCIPHERMENT in usages,
        key_agreement=key_agreement,
        key_cert_sign=KeyUsage.KEY_CERT_SIGN in usages,
        crl_sign=KeyUsage.CRL_SIGN in usages,
        encipher_only=key_agreement and KeyUsage.ENCIPHER_ONLY in usages,
        decipher_only=key_agreement and KeyUsage.DECIPHER_ONLY in usages,
    )


def key_usages_of(extension: x509.KeyUsage) -> frozenset[KeyUsage]:
    """Inverse of key_usage_extension."""
    usages = {
        KeyUsage.DIGITAL_SIGNATURE: extension.digital_signature,
        KeyUsage.NON_REPUDIATION: extension.content_commitment,
        KeyUsage.KEY_ENCIPHERMENT: extension.key_encipherment,
        KeyUsage.DATA_ENCIPHERMENT: extension.data_encipherment,
        KeyUsage.KEY_AGREEMENT: extension.key_agreement,
        KeyUsage.KEY_CERT_SIGN: extension.key_cert_sign,
        KeyUsage.CRL_SIGN: extension.crl_sign,
    }
    # encipher_only / decipher_only raise unless key_agreement is set
    if extension.key_agreement:
        usages[KeyUsage.ENCIPHER_ONLY] = extension.encipher_only
        usages[KeyUsage.DECIPHER_ONLY] = extension.decipher_only
    return frozenset(usage for usage, present in usages.items() if present)


@unique
class ExtendedKeyUsage(Enum):
    """Key purposes of the ExtendedKeyUsage extension, valued by OID."""

    ANY_EXTENDED_KEY_USAGE = "2.5.29.37.0"
    SERVER_AUTH = "1.3.6.1.5.5.7.3.1"
    CLIENT_AUTH = "1.3.6.1.5.5.7.3.2"
    CODE_SIGNING = "1.3.6.1.5.5.7.3.3"
    EMAIL_PROTECTION = "1.3.6.1.5.5.7.3.4"
    IPSEC_END_SYSTEM = "1.3.6.1.5.5.7.3.5"
    IPSEC_TUNNEL = "1.3.6.1.5.5.7.3.6"
    IPSEC_USER = "1.3.6.1.5.5.7.3.7"
    TIME_STAMPING = "1.3.6.1.5.5.7.3.8"
    OCSP_SIGNING = "1.3.6.1.5.5.7.3.9"
    DVCS = "1.3.6.1.5.5.7.3.10"
    SBGP_CERT_AA_SERVER_AUTH = "1.3.6.1.5.5.7.3.11"
    SCVP_RESPONDER = "1.3.6.1.5.5.7.3.12"
    EAP_OVER_PPP = "1.3.6.1.5.5.7.3.13"
    EAP_OVER_LAN = "1.3.6.1.5.5.7.3.14"
    SCVP_SERVER = "1.3.6.1.5.5.7.3.15"
    SCVP_CLIENT = "1.3.6.1.5.5.7.3.16"
    IPSEC_IKE = "1.3.6.1.5.5.7.3.17"
    CAPWAP_AC = "1.3.6.1.5.5.7.3.18"
    CAPWAP_WTP = "1.3.6.1.5.5.7.3.19"
    SIP_DOMAIN = "1.3.6.1.5.5.7.3.20"
    SECURE_SHELL_CLIENT = "1.3.6.1.5.5.7.3.21"
    SECURE_SHELL_SERVER = "1.3.6.1.5.5.7.3.22"
    SEND_ROUTER = "1.3.6.1.5.5.7.3.23"
    SEND_PROXIED_ROUTER = "1.3.6.1.5.5.7.3.24"
    SEND_OWNER = "1.3.6.1.5.5.7.3.25"
    SEND_PROXIED_OWNER = "1.3.6.1.5.5.7.3.26"
    CMC_CA = "1.3.6.1.5.5.7.3.27"
    CMC_RA = "1.3.6.1.5.5.7.3.28"
    CMC_ARCHIVE = "1.3.6.1.5.5.7.3.29"
    BGPSEC_ROUTER = "1.3.6.1.5.5.7.3.30"
    SMARTCARD_LOGON = "1.3.6.1.4.1.311.20.2.2"
    MAC_ADDRESS = "1.3.6.1.1.1.1.22"
    MS_SGC = "1.3.6.1.4.1.311.10.3.3"
    NS_SGC = "2.16.840.1.113730.4.1"

    @property
    def oid(self) -> x509.ObjectIdentifier:
        return x509.ObjectIdentifier(self.value)


def extended_key_usage_extension(usages: tuple[ExtendedKeyUsage, ...]) -> x509.ExtendedKeyUsage:
    return x509.ExtendedKeyUsage([usage.oid for usage in usages])


def extended_key_usages_of(extension: x509.ExtendedKeyUsage) -> tuple[ExtendedKeyUsage, ...]:
    """Known purposes of an ExtendedKeyUsage extension, unknown OIDs dropped."""
    known = {usage.value: usage for usage in ExtendedKeyUsage}
    return tuple(known[oid.dotted_string] for oid in extension if oid.dotted_string in known)


# ─────────────────────── Revocation ───────────────────────


@unique
class RevokeReasonCode(Enum):
    """CRL reason codes (RFC 5280 section 5.3.1)."""

    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6
    UNKNOWN = 7
    REMOVE_FROM_CRL = 8
    PRIVILEGE_WITHDRAWN = 9
    AA_COMPROMISE = 10

    @property
    def reason_flag(self) -> x509.ReasonFlags | None:
        """Matching CRL entry reason; UNKNOWN (7) is unassigned and has none."""
        return _REASON_FLAGS.get(self)

    @classmethod
    def for_name(cls, name: str | None) -> RevokeReasonCode:
        if not name:
            return cls.UNSPECIFIED
        return cls.__members__.get(name, cls.UNKNOWN)


_REASON_FLAGS: dict[RevokeReasonCode, x509.ReasonFlags] = {
    RevokeReasonCode.UNSPECIFIED: x509.ReasonFlags.unspecified,
    RevokeReasonCode.KEY_COMPROMISE: x509.ReasonFlags.key_compromise,
    RevokeReasonCode.CA_COMPROMISE: x509.ReasonFlags.ca_compromise,
    RevokeReasonCode.AFFILIATION_CHANGED: x509.ReasonFlags.affiliation_changed,
    RevokeReasonCode.SUPERSEDED: x509.ReasonFlags.superseded,
    RevokeReasonCode.CESSATION_OF_OPERATION: x509.ReasonFlags.cessation_of_operation,
    RevokeReasonCode.CERTIFICATE_HOLD: x509.ReasonFlags.certificate_hold,
    RevokeReasonCode.REMOVE_FROM_CRL: x509.ReasonFlags.remove_from_crl,
    RevokeReasonCode.PRIVILEGE_WITHDRAWN: x509.ReasonFlags.privilege_withdrawn,
    RevokeReasonCode.AA_COMPROMISE: x509.ReasonFlags.aa_compromise,
}


# ─────────────────────── Encodings and ciphers ───────────────────────


@unique
class EncodingType(Enum):
    PEM = "PEM"
    DER = "DER"


@unique
class PKCS8Cipher(Enum):
    """Private key wrapping: PBES2 with PBKDF2-HMAC-SHA256 and the named block cipher."""

    NONE = "NONE"
    DES3_CBC = "DES3_CBC"
    AES_128_CBC = "AES_128_CBC"
    AES_192_CBC = "AES_192_CBC"
    AES_256_CBC = "AES_256_CBC"


@unique
class PKCS12Cipher(Enum):
    """Key and certificate bag encryption of a PKCS#12 keystore."""

    NONE = "NONE"
    DES3 = "DES3"
    AES256 = "AES256"


@unique
class GeneralNameTag(Enum):
    """Persisted tag of a subject alternative name entry."""

    RFC822_NAME = "rfc822Name"
    DNS_NAME = "dNSName"
    DIRECTORY_NAME = "directoryName"
    URI = "uniformResourceIdentifier"
    IP_ADDRESS = "iPAddress"
    REGISTERED_ID = "registeredID"
