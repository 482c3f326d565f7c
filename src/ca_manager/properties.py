"""
Property bags — small key→string JSON documents beside every stored artifact.

  IssuedCertificateProperties   Issued/<serial>.prop   (moves to Revoked/ on revocation)
  CertificateRequestProperties  Requests/<millis>.csrprop
  CRLProperties                 X509CRL/<crl serial>.crlprop

A bag knows the name of its artifact, never its owning CA: artifact files
are found through an ArtifactLocator (the ordered directories to search).
The full object (certificate bundle, CSR, CRL) is loaded lazily and cached.

Bags are equal when they are bound to the same property file. They sort by
their natural key; a missing value sorts before any present one.
"""

from __future__ import annotations

import functools
import json
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import ClassVar, Self

import structlog
from cryptography import x509
from pydantic import TypeAdapter, ValidationError

from ca_manager.adapters import codecs
from ca_manager.adapters.issued_certificate import IssuedCertificate
from ca_manager.adapters.requests import PKCS10CertificateRequest
from ca_manager.domain.enums import KeyType, RevokeReasonCode
from ca_manager.domain.errors import NotFoundError, StoreIOError
from ca_manager.domain.models import as_utc

log = structlog.get_logger()

_DOCUMENT = TypeAdapter(dict[str, str])


def format_date(value: datetime) -> str:
    return as_utc(value).isoformat()


def parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


@dataclass(frozen=True, slots=True)
class ArtifactLocator:
    """Ordered directories in which an artifact filename is looked up."""

    directories: tuple[Path, ...]

    def resolve(self, filename: str) -> Path:
        for directory in self.directories:
            candidate = directory / filename
            if candidate.is_file():
                return candidate
        raise NotFoundError(f"Artifact {filename} not found")


def _nulls_first(value: object | None) -> tuple[int, object]:
    return (0, "") if value is None else (1, value)


@functools.total_ordering
class PropertyBag:
    """Common storage for the three property documents."""

    SUFFIX: ClassVar[str]

    def __init__(self, path: Path, locator: ArtifactLocator, values: dict[str, str] | None = None) -> None:
        self._path = path
        self._locator = locator
        self._values: dict[str, str] = dict(values or {})

    @classmethod
    def load(cls, path: Path, locator: ArtifactLocator) -> Self:
        try:
            values = _DOCUMENT.validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise StoreIOError(f"Unable to read properties {path.name}: {e}") from e
        return cls(path, locator, values)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def locator(self) -> ArtifactLocator:
        return self._locator

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str | None) -> str | None:
        """Set or, for None, remove a value. Returns the previous value."""
        if value is None:
            return self._values.pop(key, None)
        previous = self._values.get(key)
        self._values[key] = value
        return previous

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    def reset(self, values: dict[str, str]) -> None:
        """Replace every value, e.g. to roll back edits of a failed operation."""
        self._values = dict(values)

    @property
    def comments(self) -> str | None:
        return self.get("comments")

    @comments.setter
    def comments(self, value: str | None) -> None:
        self.set("comments", value)

    def store(self) -> Path:
        try:
            self._path.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"Unable to write properties {self._path.name}: {e}") from e
        log.debug("properties.stored", file=self._path.name)
        return self._path

    def relocate(self, path: Path, locator: ArtifactLocator | None = None) -> None:
        self._path = path
        if locator is not None:
            self._locator = locator

    def sort_key(self) -> tuple:
        raise NotImplementedError

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PropertyBag):
            return NotImplemented
        return type(self) is type(other) and self._path == other._path

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._path))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._path.name})"


# ─────────────────────── Issued certificates ───────────────────────


class IssuedCertificateProperties(PropertyBag):
    SUFFIX = ".prop"

    class Key(StrEnum):
        DESCRIPTION = "description"
        FILENAME = "filename"
        PKCS12_STORE = "pkcs12store"
        PKCS7_STORE = "pkcs7store"
        SUBJECT = "subject"
        START_DATE = "startDate"
        END_DATE = "endDate"
        KEY_TYPE = "keyType"
        COMMENTS = "comments"
        REVOKE_DATE = "revokeDate"
        CREATION_DATE = "creationDate"
        REVOKE_CODE = "revokeCode"
        SERIAL_NUMBER = "certificateSerialNumber"
        CSR_STORE = "csrStore"

    def __init__(self, path: Path, locator: ArtifactLocator, values: dict[str, str] | None = None) -> None:
        super().__init__(path, locator, values)
        self._issued: IssuedCertificate | None = None

    @property
    def description(self) -> str | None:
        return self.get(self.Key.DESCRIPTION)

    @property
    def subject(self) -> str | None:
        return self.get(self.Key.SUBJECT)

    @property
    def serial_number(self) -> int | None:
        value = self.get(self.Key.SERIAL_NUMBER)
        return int(value) if value else None

    @property
    def start_date(self) -> datetime | None:
        return parse_date(self.get(self.Key.START_DATE))

    @property
    def end_date(self) -> datetime | None:
        return parse_date(self.get(self.Key.END_DATE))

    @property
    def revoke_date(self) -> datetime | None:
        return parse_date(self.get(self.Key.REVOKE_DATE))

    @property
    def revoke_code(self) -> RevokeReasonCode | None:
        value = self.get(self.Key.REVOKE_CODE)
        return RevokeReasonCode.for_name(value) if value else None

    @property
    def key_type(self) -> KeyType | None:
        return KeyType.for_name(self.get(self.Key.KEY_TYPE))

    @property
    def is_revoked(self) -> bool:
        return self.get(self.Key.REVOKE_DATE) is not None

    @property
    def store_filename(self) -> str:
        """Name of the PKCS#12 or PKCS#7 artifact."""
        filename = self.get(self.Key.PKCS12_STORE) or self.get(self.Key.PKCS7_STORE)
        if filename is None:
            raise StoreIOError(f"{self.path.name} names no certificate store")
        return filename

    def load_issued_certificate(self, password: str | None = None) -> IssuedCertificate:
        """Open the stored bundle; a PKCS#12 store needs its passphrase."""
        if self._issued is None:
            if self.get(self.Key.PKCS12_STORE) is not None:
                path = self.locator.resolve(self.get(self.Key.PKCS12_STORE))  # type: ignore[arg-type]
                self._issued = IssuedCertificate.open_pkcs12(path, password)
            else:
                self._issued = IssuedCertificate.open_pkcs7(self.locator.resolve(self.store_filename))
        return self._issued

    def load_certificate(self, password: str | None = None) -> x509.Certificate:
        return self.load_issued_certificate(password).certificate

    def clear_issued_certificate(self) -> None:
        self._issued = None

    def sort_key(self) -> tuple:
        return (
            _nulls_first(self.description),
            _nulls_first(self.subject),
            _nulls_first(self.start_date),
            _nulls_first(self.end_date),
        )

    def __str__(self) -> str:
        return self.description or self.subject or self.path.name


# ─────────────────────── Certificate requests ───────────────────────


class CertificateRequestProperties(PropertyBag):
    SUFFIX = ".csrprop"

    class Key(StrEnum):
        FILENAME = "filename"
        CSR_FILENAME = "csrFilename"
        SUBJECT = "subject"
        IMPORT_DATE = "importDate"
        COMMENTS = "comments"
        KEY_TYPE = "keyType"

    def __init__(self, path: Path, locator: ArtifactLocator, values: dict[str, str] | None = None) -> None:
        super().__init__(path, locator, values)
        self._request: PKCS10CertificateRequest | None = None

    @property
    def subject(self) -> str | None:
        return self.get(self.Key.SUBJECT)

    @property
    def import_date(self) -> datetime | None:
        return parse_date(self.get(self.Key.IMPORT_DATE))

    @property
    def key_type(self) -> KeyType | None:
        return KeyType.for_name(self.get(self.Key.KEY_TYPE))

    @property
    def csr_filename(self) -> str:
        filename = self.get(self.Key.CSR_FILENAME)
        if filename is None:
            raise StoreIOError(f"{self.path.name} names no CSR file")
        return filename

    def load_request(self) -> PKCS10CertificateRequest:
        if self._request is None:
            path = self.locator.resolve(self.csr_filename)
            try:
                data = path.read_bytes()
            except OSError as e:
                raise StoreIOError(f"Unable to read {path.name}") from e
            self._request = PKCS10CertificateRequest.from_csr(codecs.load_csr(data))
        return self._request

    def sort_key(self) -> tuple:
        return (_nulls_first(self.subject), _nulls_first(self.import_date))

    def __str__(self) -> str:
        return self.subject or self.path.name


# ─────────────────────── CRLs ───────────────────────


class CRLProperties(PropertyBag):
    SUFFIX = ".crlprop"

    class Key(StrEnum):
        ISSUER = "issuer"
        FILENAME = "filename"
        CRL_FILENAME = "crlFilename"
        ISSUE_DATE = "issueDate"
        NEXT_EXPECTED_DATE = "nextExpectedDate"
        CRL_SERIAL_NUMBER = "crlSerialNumber"
        COMMENTS = "comments"

    def __init__(self, path: Path, locator: ArtifactLocator, values: dict[str, str] | None = None) -> None:
        super().__init__(path, locator, values)
        self._crl: x509.CertificateRevocationList | None = None

    @property
    def crl_serial_number(self) -> int | None:
        value = self.get(self.Key.CRL_SERIAL_NUMBER)
        return int(value) if value else None

    @property
    def issue_date(self) -> datetime | None:
        return parse_date(self.get(self.Key.ISSUE_DATE))

    @property
    def next_expected_date(self) -> datetime | None:
        return parse_date(self.get(self.Key.NEXT_EXPECTED_DATE))

    def load_crl(self) -> x509.CertificateRevocationList:
        if self._crl is None:
            filename = self.get(self.Key.CRL_FILENAME)
            if filename is None:
                raise StoreIOError(f"{self.path.name} names no CRL file")
            path = self.locator.resolve(filename)
            try:
                data = path.read_bytes()
            except OSError as e:
                raise StoreIOError(f"Unable to read {path.name}") from e
            self._crl = codecs.load_crl(data)
        return self._crl

    def cache_crl(self, crl: x509.CertificateRevocationList) -> None:
        self._crl = crl

    def sort_key(self) -> tuple:
        return (
            _nulls_first(self.crl_serial_number),
            _nulls_first(self.issue_date),
            _nulls_first(self.next_expected_date),
        )

    def __str__(self) -> str:
        return f"CRL #{self.crl_serial_number}" if self.crl_serial_number is not None else self.path.name
