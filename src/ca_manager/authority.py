"""
CertificateAuthority — the engine that owns one CA directory on disk.

State machine:

    LOCKED  ──unlock(passphrase)──►  UNLOCKED  ──lock()──►  LOCKED

A CA is LOCKED after open() and UNLOCKED after create(). Only an unlocked CA
holds the decrypted key material; every operation that needs it fails with
CaError.LOCKED_DATASTORE while locked and changes nothing.

Every public operation returns a Result. Internally the work runs under one
re-entrant lock inside Result.attempt, so typed exceptions become failures
carrying their CaError. Change events are collected while the lock is held
and published after it is released, only when the operation succeeded.
Exceptions raised by subscribers reach the caller.

On-disk layout under the base directory:

    configuration.json   settings document
    ca.p12               CA keystore
    Issued/              <serial>.p12 | .p7b, <serial>.prop, <serial>.csr
    Revoked/             same names, moved here on revocation
    Requests/            <millis>.csr, <millis>.csrprop
    X509CRL/             <crl serial>.crl, <crl serial>.crlprop
    Templates/           <epoch seconds>.template
    Log/                 <uuid>.log
"""

from __future__ import annotations

import os
import shutil
import threading
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeAlias, TypeVar
from uuid import UUID

import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes

from ca_manager.activity_log import NullActivityLog, activity_log_for
from ca_manager.adapters import certificate_factory, codecs
from ca_manager.adapters.certificate_factory import RevocationEntry
from ca_manager.adapters.issued_certificate import IssuedCertificate
from ca_manager.adapters.requests import PKCS10CertificateRequest
from ca_manager.adapters.templates import TEMPLATE_SUFFIX, read_template, write_template
from ca_manager.backup import BackupProgress, create_backup
from ca_manager.domain.enums import EncodingType, PKCS8Cipher, PKCS12Cipher, RevokeReasonCode, SignatureAlgorithm
from ca_manager.domain.errors import (
    CaException,
    DatastoreLockedError,
    InvalidArgumentError,
    NotFoundError,
    StoreIOError,
)
from ca_manager.domain.events import (
    CaProperty,
    EventChannel,
    EventHandler,
    PropertyChangeEvent,
    SubscriptionHandle,
    property_changed,
)
from ca_manager.domain.models import CertificateKeyPairTemplate, as_utc, utc_now
from ca_manager.domain.ports import ActivityLogger, SigningRequest
from ca_manager.domain.result import Result
from ca_manager.properties import (
    ArtifactLocator,
    CertificateRequestProperties,
    CRLProperties,
    IssuedCertificateProperties,
    PropertyBag,
    format_date,
)
from ca_manager.settings import SETTINGS_FILENAME, CertificateAuthoritySettings

log = structlog.get_logger()

T = TypeVar("T")
V = TypeVar("V")

ISSUED_PATH = "Issued"
REVOKED_PATH = "Revoked"
REQUESTS_PATH = "Requests"
X509CRL_PATH = "X509CRL"
TEMPLATES_PATH = "Templates"

COLLECTION_DIRECTORIES = (ISSUED_PATH, REVOKED_PATH, REQUESTS_PATH, X509CRL_PATH, TEMPLATES_PATH)

CSR_SUFFIX = ".csr"

_SYSTEM_PATHS = frozenset(
    Path(p) for p in ("/bin", "/boot", "/dev", "/etc", "/lib", "/lib64", "/proc", "/sbin", "/sys", "/usr", "/var")
)

IssuedCollection: TypeAlias = dict[Path, IssuedCertificateProperties]

_IssuedKey = IssuedCertificateProperties.Key
_RequestKey = CertificateRequestProperties.Key
_CRLKey = CRLProperties.Key


def _current_millis() -> int:
    return time.time_ns() // 1_000_000


def _is_system_path(path: Path) -> bool:
    return path.parent == path or path in _SYSTEM_PATHS


def _check_base(path: Path | str | None) -> Path:
    """A usable CA directory: given, existing, a directory, not a root or system path."""
    if path is None or str(path).strip() == "":
        raise StoreIOError("No certificate authority path given")
    base = Path(path).expanduser().resolve()
    if not base.exists():
        raise StoreIOError(f"{base} does not exist")
    if not base.is_dir():
        raise StoreIOError(f"{base} is not a directory")
    if _is_system_path(base):
        raise StoreIOError(f"{base} is a system location")
    return base


def _check_issuer(issuer: IssuedCertificate | None) -> IssuedCertificate:
    if issuer is None:
        raise StoreIOError("No CA certificate given")
    if issuer.private_key is None:
        raise StoreIOError("The CA certificate has no private key")
    certificate = issuer.certificate
    if certificate.issuer != certificate.subject:
        raise StoreIOError("The CA certificate is not self-signed")
    try:
        certificate.verify_directly_issued_by(certificate)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise StoreIOError("The CA certificate is not self-signed") from e
    if not certificate_factory.is_ca_certificate(certificate):
        raise StoreIOError("The certificate is not a CA certificate")
    return issuer


class CertificateAuthority:
    """
    One certificate authority rooted at `base_path`.

    Use the open() and create() class methods; the constructor only wires
    state. Equality is by base directory and CA UUID.
    """

    def __init__(
        self,
        base: Path,
        settings: CertificateAuthoritySettings,
        keystore_cipher: PKCS12Cipher = PKCS12Cipher.AES256,
    ) -> None:
        self._base = base
        self._settings = settings
        self._keystore_cipher = keystore_cipher
        self._lock = threading.RLock()
        self._events = EventChannel()
        self._issuer: IssuedCertificate | None = None
        self._issued: IssuedCollection = {}
        self._revoked: IssuedCollection = {}
        self._requests: dict[Path, CertificateRequestProperties] = {}
        self._crls: dict[Path, CRLProperties] = {}
        self._templates: dict[Path, CertificateKeyPairTemplate] = {}
        self._activity: ActivityLogger = NullActivityLog()

    # ─────────────────────── Construction ───────────────────────

    @classmethod
    def open(
        cls,
        path: Path | str | None,
        keystore_cipher: PKCS12Cipher = PKCS12Cipher.AES256,
    ) -> Result[CertificateAuthority]:
        """Open an existing CA directory. The CA starts LOCKED."""
        return Result.attempt(lambda: cls._open(path, keystore_cipher), "Unable to open certificate authority")

    @classmethod
    def _open(cls, path: Path | str | None, keystore_cipher: PKCS12Cipher) -> CertificateAuthority:
        base = _check_base(path)
        settings_path = base / SETTINGS_FILENAME
        if not settings_path.is_file():
            raise StoreIOError(f"{base} holds no certificate authority")
        ca = cls(base, CertificateAuthoritySettings.read(settings_path), keystore_cipher)
        ca._ensure_layout()
        ca._activity = activity_log_for(base, str(ca.certificate_authority_id), ca._settings.enable_log)
        ca._scan([])
        log.info("authority.opened", ca=str(ca), path=str(base))
        return ca

    @classmethod
    def create(
        cls,
        path: Path | str | None,
        issued_certificate: IssuedCertificate | None,
        description: str | None = None,
        *,
        expiry_days: int = 365,
        keystore_cipher: PKCS12Cipher = PKCS12Cipher.AES256,
    ) -> Result[CertificateAuthority]:
        """
        Create a CA in an empty, writable directory from a self-signed CA
        certificate and its private key. The keystore is protected with
        `issued_certificate.password`. The new CA is UNLOCKED.
        """
        return Result.attempt(
            lambda: cls._create(path, issued_certificate, description, expiry_days, keystore_cipher),
            "Unable to create certificate authority",
        )

    @classmethod
    def _create(
        cls,
        path: Path | str | None,
        issued_certificate: IssuedCertificate | None,
        description: str | None,
        expiry_days: int,
        keystore_cipher: PKCS12Cipher,
    ) -> CertificateAuthority:
        base = _check_base(path)
        if not os.access(base, os.W_OK):
            raise StoreIOError(f"{base} is not writable")
        if (base / SETTINGS_FILENAME).exists():
            raise StoreIOError(f"{base} already holds a certificate authority")
        issuer = _check_issuer(issued_certificate)
        codecs.check_pkcs12_password(issuer.password, keystore_cipher)

        settings = CertificateAuthoritySettings(description=description or None, expiry_days=expiry_days)
        ca = cls(base, settings, keystore_cipher)
        ca._ensure_layout()
        alias = description or issuer.certificate.subject.rfc4514_string()
        issuer.create_pkcs12(base / settings.pkcs12_filename, issuer.password, alias, keystore_cipher)
        CertificateAuthoritySettings.write(settings, base / SETTINGS_FILENAME)

        ca._issuer = IssuedCertificate(issuer.certificate_chain, issuer.private_key, issuer.password)
        ca._scan([])
        log.info("authority.created", ca=str(ca), path=str(base))
        return ca

    def _ensure_layout(self) -> None:
        for element in COLLECTION_DIRECTORIES:
            (self._base / element).mkdir(exist_ok=True)

    # ─────────────────────── Plumbing ───────────────────────

    def _guarded(self, action: Callable[[list[PropertyChangeEvent]], T], error_message: str) -> Result[T]:
        events: list[PropertyChangeEvent] = []
        with self._lock:
            result = Result.attempt(lambda: action(events), error_message)
        if result.is_failure():
            error = result.error()
            log.warning("authority.operation_failed", ca=str(self), code=error.code.name, error=error.message)
            return result
        self._events.publish_all(events)
        return result

    def _unlocked(self) -> IssuedCertificate:
        if self._issuer is None:
            raise DatastoreLockedError(
                "The certificate authority is locked. Unable to complete requested operation."
            )
        return self._issuer

    def _save_settings(self) -> None:
        CertificateAuthoritySettings.write(self._settings, self._base / SETTINGS_FILENAME)

    def _locator(self, *elements: str) -> ArtifactLocator:
        return ArtifactLocator(tuple(self._base / element for element in elements))

    def _signature_algorithm(self, key: CertificateIssuerPrivateKeyTypes) -> SignatureAlgorithm:
        return self._settings.signature_algorithm or certificate_factory.default_signature_algorithm(key)

    def generate_filename(self, serial: int, element: str, suffix: str) -> Path:
        """`<base>/<element>/<serial as 16 hex digits><suffix>`."""
        return self._base / element / f"{serial:016x}{suffix}"

    # ─────────────────────── Identity / state ───────────────────────

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def certificate_authority_id(self) -> UUID:
        return self._settings.uuid

    @property
    def is_locked(self) -> bool:
        return self._issuer is None

    @property
    def description(self) -> str | None:
        return self._settings.description

    @property
    def expiry_days(self) -> int:
        return self._settings.expiry_days

    @property
    def incremental_serial(self) -> bool:
        return self._settings.incremental_serial

    @property
    def enable_log(self) -> bool:
        return self._settings.enable_log

    @property
    def activity_log(self) -> ActivityLogger:
        return self._activity

    # ─────────────────────── Lock / unlock ───────────────────────

    def unlock(self, password: str | None) -> Result[CertificateAuthority]:
        """Decrypt the keystore. Already unlocked is a no-op without an event."""

        def action(events: list[PropertyChangeEvent]) -> CertificateAuthority:
            if self._issuer is not None:
                return self
            issuer = IssuedCertificate.open_pkcs12(self._base / self._settings.pkcs12_filename, password)
            if issuer.private_key is None:
                raise StoreIOError("The CA keystore holds no private key")
            if not certificate_factory.is_ca_certificate(issuer.certificate):
                raise InvalidArgumentError("The keystore certificate is not a CA certificate")
            self._issuer = issuer
            self._activity.record("unlock", ca=str(self))
            log.info("authority.unlocked", ca=str(self))
            property_changed(events, self, CaProperty.UNLOCKED, True, False)
            return self

        return self._guarded(action, "Unable to unlock certificate authority")

    def lock(self) -> Result[CertificateAuthority]:
        """Drop the key material. Already locked is a no-op without an event."""

        def action(events: list[PropertyChangeEvent]) -> CertificateAuthority:
            if self._issuer is None:
                return self
            self._issuer = None
            self._activity.record("lock", ca=str(self))
            log.info("authority.locked", ca=str(self))
            property_changed(events, self, CaProperty.UNLOCKED, False, True)
            return self

        return self._guarded(action, "Unable to lock certificate authority")

    def close(self) -> None:
        """Lock and release the activity log file."""
        self.lock()
        with self._lock:
            self._activity.close()
            self._activity = NullActivityLog()

    # ─────────────────────── Settings ───────────────────────

    def _set_setting(
        self,
        field: str,
        prop: CaProperty,
        value: Any,
        validate: Callable[[], None] | None = None,
    ) -> Result[CertificateAuthority]:
        def action(events: list[PropertyChangeEvent]) -> CertificateAuthority:
            if validate is not None:
                validate()
            old = getattr(self._settings, field)
            setattr(self._settings, field, value)
            self._save_settings()
            self._activity.record("settings.changed", setting=prop.value, value=str(value))
            log.info("authority.setting_changed", ca=str(self), setting=prop.value, value=str(value))
            property_changed(events, self, prop, old, value)
            return self

        return self._guarded(action, f"Unable to change {prop.value}")

    def set_description(self, description: str | None) -> Result[CertificateAuthority]:
        return self._set_setting("description", CaProperty.DESCRIPTION, description or None)

    def set_expiry_days(self, expiry_days: int) -> Result[CertificateAuthority]:
        def validate() -> None:
            if expiry_days is None or expiry_days <= 0:
                raise InvalidArgumentError(f"Expiry days must be positive, got {expiry_days}")

        return self._set_setting("expiry_days", CaProperty.EXPIRY, expiry_days, validate)

    def set_incremental_serial(self, incremental: bool) -> Result[CertificateAuthority]:
        return self._set_setting("incremental_serial", CaProperty.INCREMENTAL_SERIAL, bool(incremental))

    def set_signature_algorithm(self, algorithm: SignatureAlgorithm | None) -> Result[CertificateAuthority]:
        """None reverts to the default for the CA key; checked against the key when unlocked."""

        def validate() -> None:
            if self._issuer is None or algorithm is None:
                return
            key_family = certificate_factory.default_signature_algorithm(self._issuer.private_key).key_family  # type: ignore[arg-type]
            if algorithm.key_family != key_family:
                raise InvalidArgumentError(f"{algorithm} cannot sign with a {key_family} key")

        return self._set_setting("signature_algorithm", CaProperty.SIGNATURE, algorithm, validate)

    def set_enable_log(self, enable: bool) -> Result[CertificateAuthority]:
        result = self._set_setting("enable_log", CaProperty.ENABLE_LOG, bool(enable))
        if result.is_success():
            with self._lock:
                self._activity.close()
                self._activity = activity_log_for(self._base, str(self.certificate_authority_id), bool(enable))
        return result

    def get_signature_algorithm(self) -> Result[SignatureAlgorithm]:
        def action(events: list[PropertyChangeEvent]) -> SignatureAlgorithm:
            issuer = self._unlocked()
            return self._signature_algorithm(issuer.private_key)  # type: ignore[arg-type]

        return self._guarded(action, "Unable to read signature algorithm")

    # ─────────────────────── Serial numbers ───────────────────────

    def _consume_serial(self) -> int:
        with self._lock:
            value = self._settings.get_and_increment_serial(_current_millis())
            self._save_settings()
            return value

    def _consume_crl_serial(self) -> int:
        with self._lock:
            value = self._settings.get_and_increment_crl_serial()
            self._save_settings()
            return value

    def get_next_serial_number(self) -> Result[int]:
        """Consume the next certificate serial; it is persisted before it is returned."""
        return self._guarded(lambda events: self._consume_serial(), "Unable to allocate serial number")

    def get_next_crl_serial_number(self) -> Result[int]:
        return self._guarded(lambda events: self._consume_crl_serial(), "Unable to allocate CRL serial number")

    def peek_next_serial_number(self) -> int:
        with self._lock:
            return self._settings.serial

    def peek_next_crl_serial_number(self) -> int:
        with self._lock:
            return self._settings.crl_serial

    # ─────────────────────── Key material ───────────────────────

    def get_certificate(self) -> Result[x509.Certificate]:
        return self._guarded(lambda events: self._unlocked().certificate, "Unable to read CA certificate")

    def get_certificate_chain(self) -> Result[tuple[x509.Certificate, ...]]:
        return self._guarded(lambda events: self._unlocked().certificate_chain, "Unable to read CA certificate chain")

    def get_key_pair(self) -> Result[CertificateIssuerPrivateKeyTypes]:
        return self._guarded(lambda events: self._unlocked().private_key, "Unable to read CA key pair")  # type: ignore[arg-type, return-value]

    def can_create_intermediate_ca(self) -> Result[bool]:
        return self._guarded(
            lambda events: certificate_factory.can_create_intermediate_ca(self._unlocked().certificate),
            "Unable to inspect CA certificate",
        )

    # ─────────────────────── Exports ───────────────────────

    def export_certificate(self, path: Path, encoding: EncodingType = EncodingType.PEM) -> Result[Path]:
        return self._export(lambda issuer: issuer.create_certificate(Path(path), encoding), "certificate")

    def export_certificate_chain(self, path: Path, encoding: EncodingType = EncodingType.PEM) -> Result[Path]:
        return self._export(lambda issuer: issuer.create_pkcs7(Path(path), encoding), "certificate chain")

    def export_private_key(
        self,
        path: Path,
        password: str | None,
        encoding: EncodingType = EncodingType.PEM,
        cipher: PKCS8Cipher = PKCS8Cipher.AES_256_CBC,
    ) -> Result[Path]:
        return self._export(
            lambda issuer: issuer.create_private_key(Path(path), password, encoding, cipher), "private key"
        )

    def export_public_key(self, path: Path, encoding: EncodingType = EncodingType.PEM) -> Result[Path]:
        return self._export(lambda issuer: issuer.create_public_key(Path(path), encoding), "public key")

    def export_pkcs12(
        self,
        path: Path,
        password: str | None,
        alias: str | None = None,
        cipher: PKCS12Cipher = PKCS12Cipher.AES256,
    ) -> Result[Path]:
        return self._export(lambda issuer: issuer.create_pkcs12(Path(path), password, alias, cipher), "PKCS#12")

    def _export(self, writer: Callable[[IssuedCertificate], Path], what: str) -> Result[Path]:
        def action(events: list[PropertyChangeEvent]) -> Path:
            written = writer(self._unlocked())
            self._activity.record("export", item=what, file=str(written))
            log.info("authority.exported", ca=str(self), item=what, file=str(written))
            return written

        return self._guarded(action, f"Unable to export {what}")

    # ─────────────────────── Signing ───────────────────────

    def _sign(self, request: SigningRequest, start: datetime, expiry: datetime) -> x509.Certificate:
        issuer = self._unlocked()
        certificate = certificate_factory.sign_certificate_request(
            issuer,
            request,
            start,
            expiry,
            self._consume_serial,
            self._signature_algorithm(issuer.private_key),  # type: ignore[arg-type]
        )
        self._activity.record(
            "sign",
            subject=certificate.subject.rfc4514_string(),
            serial=str(certificate.serial_number),
        )
        return certificate

    def sign_certificate_request(
        self,
        request: SigningRequest,
        start: datetime,
        expiry: datetime,
    ) -> Result[x509.Certificate]:
        """Sign without storing anything but the consumed serial."""
        return self._guarded(lambda events: self._sign(request, start, expiry), "Unable to sign certificate request")

    def sign_and_store_certificate_request(
        self,
        request: SigningRequest,
        start: datetime,
        expiry: datetime,
        password: str | None,
    ) -> Result[IssuedCertificateProperties]:
        """
        Sign and store under Issued/: a PKCS#12 bundle protected by `password`
        when the request owns its private key, a DER PKCS#7 chain otherwise.
        """

        def action(events: list[PropertyChangeEvent]) -> IssuedCertificateProperties:
            if request is not None and not request.foreign:
                codecs.check_pkcs12_password(password, self._keystore_cipher)
            certificate = self._sign(request, start, expiry)
            chain = (certificate, *self._unlocked().certificate_chain)
            serial = certificate.serial_number

            values = {
                _IssuedKey.SUBJECT: certificate.subject.rfc4514_string(),
                _IssuedKey.START_DATE: format_date(start),
                _IssuedKey.END_DATE: format_date(expiry),
                _IssuedKey.SERIAL_NUMBER: str(serial),
            }
            creation_date = getattr(request, "creation_date", None)
            if creation_date is not None:
                values[_IssuedKey.CREATION_DATE] = format_date(creation_date)
            if request.description:
                values[_IssuedKey.DESCRIPTION] = request.description
            if request.key_type is not None:
                values[_IssuedKey.KEY_TYPE] = request.key_type.name

            private_key = request.private_key()
            if private_key is not None:
                artifact = self.generate_filename(serial, ISSUED_PATH, ".p12")
                alias = f"{request.description or values[_IssuedKey.SUBJECT]}#{serial}"
                IssuedCertificate(chain, private_key, password).create_pkcs12(
                    artifact, password, alias, self._keystore_cipher
                )
                values[_IssuedKey.PKCS12_STORE] = artifact.name
            else:
                artifact = self.generate_filename(serial, ISSUED_PATH, ".p7b")
                IssuedCertificate(chain).create_pkcs7(artifact, EncodingType.DER)
                values[_IssuedKey.PKCS7_STORE] = artifact.name

            properties_path = artifact.with_suffix(IssuedCertificateProperties.SUFFIX)
            values[_IssuedKey.FILENAME] = properties_path.name
            properties = IssuedCertificateProperties(
                properties_path, self._locator(ISSUED_PATH, REVOKED_PATH), {str(k): v for k, v in values.items()}
            )
            properties.store()

            old = tuple(self._issued.values())
            self._issued[properties_path] = properties
            log.info("authority.certificate_stored", ca=str(self), file=artifact.name, serial=hex(serial))
            property_changed(events, self, CaProperty.ISSUED, old, tuple(self._issued.values()))
            return properties

        return self._guarded(action, "Unable to sign and store certificate request")

    # ─────────────────────── Revocation ───────────────────────

    def revoke_certificate(
        self,
        issued: IssuedCertificateProperties | None,
        revocation_date: datetime | None = None,
        reason: RevokeReasonCode | None = None,
    ) -> Result[IssuedCertificateProperties]:
        """Move an issued entry and its files to Revoked/. Defaults: now, UNSPECIFIED."""

        def action(events: list[PropertyChangeEvent]) -> IssuedCertificateProperties:
            if issued is None:
                raise InvalidArgumentError("No certificate given to revoke")
            if issued.is_revoked:
                raise InvalidArgumentError("Certificate is already revoked")
            if issued.path not in self._issued:
                raise NotFoundError("Certificate is not issued by this authority")
            code = reason or RevokeReasonCode.UNSPECIFIED
            when = as_utc(revocation_date) if revocation_date is not None else utc_now()

            # Every name is resolved and checked before the first change.
            source = self._base / ISSUED_PATH
            target = self._base / REVOKED_PATH
            old_path = issued.path
            new_path = target / old_path.name
            moves = [
                (source / filename, target / filename)
                for filename in (issued.store_filename, issued.get(_IssuedKey.CSR_STORE))
                if filename is not None and (source / filename).exists()
            ]
            moves.append((old_path, new_path))
            clash = next((dst for _, dst in moves if dst.exists()), None)
            if clash is not None:
                raise StoreIOError(f"{clash.name} already exists in {REVOKED_PATH}")

            snapshot = issued.as_dict()
            moved: list[tuple[Path, Path]] = []
            try:
                for src, dst in moves:
                    src.replace(dst)
                    moved.append((src, dst))
                issued.set(_IssuedKey.REVOKE_DATE, format_date(when))
                issued.set(_IssuedKey.REVOKE_CODE, code.name)
                issued.relocate(new_path)
                issued.store()
            except (OSError, CaException):
                for src, dst in reversed(moved):
                    dst.replace(src)
                issued.reset(snapshot)
                issued.relocate(old_path)
                raise
            issued.clear_issued_certificate()

            old_issued = tuple(self._issued.values())
            old_revoked = tuple(self._revoked.values())
            del self._issued[old_path]
            self._revoked[new_path] = issued
            self._activity.record(
                "revoke", subject=issued.subject, serial=issued.get(_IssuedKey.SERIAL_NUMBER), reason=code.name
            )
            log.info("authority.certificate_revoked", ca=str(self), subject=issued.subject, reason=code.name)
            property_changed(events, self, CaProperty.ISSUED, old_issued, tuple(self._issued.values()))
            property_changed(events, self, CaProperty.REVOKED, old_revoked, tuple(self._revoked.values()))
            return issued

        return self._guarded(action, "Unable to revoke certificate")

    # ─────────────────────── CRLs ───────────────────────

    def create_crl(self, next_update: datetime | None = None) -> Result[CRLProperties]:
        """
        Issue a CRL over every revoked entry that has not expired yet.

        A missing `next_update` means "now"; the date is not validated.
        """

        def action(events: list[PropertyChangeEvent]) -> CRLProperties:
            issuer = self._unlocked()
            now = utc_now()
            until = as_utc(next_update) if next_update is not None else now

            entries = []
            for revoked in self._revoked.values():
                serial, revoked_at, expires = revoked.serial_number, revoked.revoke_date, revoked.end_date
                if serial is None or revoked_at is None or expires is None:
                    log.warning("authority.crl_entry_incomplete", file=revoked.path.name)
                    continue
                if now < expires:
                    reason = revoked.revoke_code or RevokeReasonCode.UNSPECIFIED
                    entries.append(RevocationEntry(serial, revoked_at, reason))

            crl_number = self._consume_crl_serial()
            crl = certificate_factory.generate_crl(
                issuer,
                entries,
                crl_number,
                until,
                self._signature_algorithm(issuer.private_key),  # type: ignore[arg-type]
                this_update=now,
            )
            artifact = self.generate_filename(crl_number, X509CRL_PATH, ".crl")
            artifact.write_bytes(codecs.encode_crl(crl, EncodingType.DER))

            properties_path = artifact.with_suffix(CRLProperties.SUFFIX)
            properties = CRLProperties(
                properties_path,
                self._locator(X509CRL_PATH),
                {
                    _CRLKey.ISSUER: crl.issuer.rfc4514_string(),
                    _CRLKey.CRL_SERIAL_NUMBER: str(crl_number),
                    _CRLKey.ISSUE_DATE: format_date(crl.last_update_utc),
                    _CRLKey.NEXT_EXPECTED_DATE: format_date(until),
                    _CRLKey.CRL_FILENAME: artifact.name,
                    _CRLKey.FILENAME: properties_path.name,
                },
            )
            properties.cache_crl(crl)
            properties.store()

            old = tuple(self._crls.values())
            self._crls[properties_path] = properties
            self._activity.record("crl", crl_number=crl_number, entries=len(entries))
            log.info("authority.crl_created", ca=str(self), crl_number=crl_number, entries=len(entries))
            property_changed(events, self, CaProperty.CRLS, old, tuple(self._crls.values()))
            return properties

        return self._guarded(action, "Unable to create CRL")

    # ─────────────────────── Certificate signing requests ───────────────────────

    def add_certificate_signing_request(self, file: Path | str | None) -> Result[CertificateRequestProperties]:
        """Import a PKCS#10 file (PEM or DER) into Requests/."""

        def action(events: list[PropertyChangeEvent]) -> CertificateRequestProperties:
            if file is None:
                raise InvalidArgumentError("No CSR file given")
            source = Path(file)
            try:
                data = source.read_bytes()
            except OSError as e:
                raise StoreIOError(f"Unable to read {source}") from e
            request = PKCS10CertificateRequest.from_csr(codecs.load_csr(data))

            stamp = _current_millis()
            while self.generate_filename(stamp, REQUESTS_PATH, CSR_SUFFIX).exists():
                stamp += 1
            target = self.generate_filename(stamp, REQUESTS_PATH, CSR_SUFFIX)
            shutil.copyfile(source, target)

            properties_path = target.with_suffix(CertificateRequestProperties.SUFFIX)
            values = {
                _RequestKey.SUBJECT: request.csr.subject.rfc4514_string(),
                _RequestKey.CSR_FILENAME: target.name,
                _RequestKey.IMPORT_DATE: format_date(utc_now()),
                _RequestKey.FILENAME: properties_path.name,
            }
            if request.key_type is not None:
                values[_RequestKey.KEY_TYPE] = request.key_type.name
            properties = CertificateRequestProperties(
                properties_path, self._locator(REQUESTS_PATH), {str(k): v for k, v in values.items()}
            )
            properties.store()

            old = tuple(self._requests.values())
            self._requests[properties_path] = properties
            self._activity.record("csr.added", subject=properties.subject, file=target.name)
            log.info("authority.csr_added", ca=str(self), subject=properties.subject)
            property_changed(events, self, CaProperty.REQUESTS, old, tuple(self._requests.values()))
            return properties

        return self._guarded(action, "Unable to add certificate signing request")

    def _known_request(self, request: CertificateRequestProperties | None) -> CertificateRequestProperties:
        if request is None:
            raise InvalidArgumentError("No certificate request given")
        if request.path not in self._requests:
            raise NotFoundError("The certificate request does not exist")
        return request

    def _discard_request(self, request: CertificateRequestProperties) -> None:
        (self._base / REQUESTS_PATH / request.csr_filename).unlink(missing_ok=True)
        request.path.unlink(missing_ok=True)
        del self._requests[request.path]

    def remove_certificate_signing_request(
        self,
        request: CertificateRequestProperties | None,
    ) -> Result[CertificateRequestProperties]:
        def action(events: list[PropertyChangeEvent]) -> CertificateRequestProperties:
            known = self._known_request(request)
            old = tuple(self._requests.values())
            self._discard_request(known)
            self._activity.record("csr.removed", subject=known.subject)
            log.info("authority.csr_removed", ca=str(self), subject=known.subject)
            property_changed(events, self, CaProperty.REQUESTS, old, tuple(self._requests.values()))
            return known

        return self._guarded(action, "Unable to remove certificate signing request")

    def move_certificate_signing_request(
        self,
        request: CertificateRequestProperties | None,
        issued: IssuedCertificateProperties | None,
    ) -> Result[IssuedCertificateProperties]:
        """Attach a pending CSR to the certificate issued from it and drop it from Requests/."""

        def action(events: list[PropertyChangeEvent]) -> IssuedCertificateProperties:
            if issued is None:
                raise InvalidArgumentError("No issued certificate given")
            known = self._known_request(request)
            if issued.path not in self._issued and issued.path not in self._revoked:
                raise NotFoundError("The issued certificate does not exist")

            target = issued.path.parent / (Path(issued.store_filename).stem + CSR_SUFFIX)
            shutil.copy2(known.locator.resolve(known.csr_filename), target)
            issued.set(_IssuedKey.CSR_STORE, target.name)
            issued.store()

            old = tuple(self._requests.values())
            self._discard_request(known)
            log.info("authority.csr_moved", ca=str(self), subject=known.subject, file=target.name)
            property_changed(events, self, CaProperty.REQUESTS, old, tuple(self._requests.values()))
            return issued

        return self._guarded(action, "Unable to move certificate signing request")

    # ─────────────────────── Templates ───────────────────────

    def add_template(self, template: CertificateKeyPairTemplate | None) -> Result[CertificateKeyPairTemplate]:
        def action(events: list[PropertyChangeEvent]) -> CertificateKeyPairTemplate:
            if template is None:
                raise InvalidArgumentError("No template given")
            stamp = int(template.creation_date.timestamp())
            while self.generate_filename(stamp, TEMPLATES_PATH, TEMPLATE_SUFFIX).exists():
                stamp += 1
            path = write_template(template, self.generate_filename(stamp, TEMPLATES_PATH, TEMPLATE_SUFFIX))

            old = tuple(self._templates.values())
            self._templates[path] = template
            log.info("authority.template_added", ca=str(self), template=str(template), file=path.name)
            property_changed(events, self, CaProperty.TEMPLATES, old, tuple(self._templates.values()))
            return template

        return self._guarded(action, "Unable to add template")

    def remove_certificate_template(
        self,
        template: CertificateKeyPairTemplate | None,
    ) -> Result[CertificateKeyPairTemplate]:
        def action(events: list[PropertyChangeEvent]) -> CertificateKeyPairTemplate:
            path = next((p for p, t in self._templates.items() if template is not None and t == template), None)
            if path is None:
                raise NotFoundError("The template does not exist")
            path.unlink(missing_ok=True)

            old = tuple(self._templates.values())
            removed = self._templates.pop(path)
            log.info("authority.template_removed", ca=str(self), template=str(removed))
            property_changed(events, self, CaProperty.TEMPLATES, old, tuple(self._templates.values()))
            return removed

        return self._guarded(action, "Unable to remove template")

    # ─────────────────────── Property updates ───────────────────────

    def _update(self, properties: PropertyBag | None, *collections: dict[Path, Any]) -> Result[Any]:
        def action(events: list[PropertyChangeEvent]) -> PropertyBag:
            if properties is None:
                raise InvalidArgumentError("No properties given")
            if not any(properties.path in collection for collection in collections):
                raise NotFoundError(f"{properties.path.name} does not belong to this authority")
            properties.store()
            log.info("authority.properties_updated", ca=str(self), file=properties.path.name)
            return properties

        return self._guarded(action, "Unable to update properties")

    def update_issued_certificate_properties(
        self,
        properties: IssuedCertificateProperties | None,
    ) -> Result[IssuedCertificateProperties]:
        return self._update(properties, self._issued, self._revoked)

    def update_certificate_request_properties(
        self,
        properties: CertificateRequestProperties | None,
    ) -> Result[CertificateRequestProperties]:
        return self._update(properties, self._requests)

    def update_crl_properties(self, properties: CRLProperties | None) -> Result[CRLProperties]:
        return self._update(properties, self._crls)

    # ─────────────────────── Collections ───────────────────────

    @property
    def issued_certificates(self) -> tuple[IssuedCertificateProperties, ...]:
        with self._lock:
            return tuple(self._issued.values())

    @property
    def revoked_certificates(self) -> tuple[IssuedCertificateProperties, ...]:
        with self._lock:
            return tuple(self._revoked.values())

    @property
    def certificate_requests(self) -> tuple[CertificateRequestProperties, ...]:
        with self._lock:
            return tuple(self._requests.values())

    @property
    def crls(self) -> tuple[CRLProperties, ...]:
        with self._lock:
            return tuple(self._crls.values())

    @property
    def templates(self) -> tuple[CertificateKeyPairTemplate, ...]:
        with self._lock:
            return tuple(self._templates.values())

    # ─────────────────────── Refresh ───────────────────────

    def refresh(self) -> Result[CertificateAuthority]:
        """Rescan the collection directories and repair the serial counters."""

        def action(events: list[PropertyChangeEvent]) -> CertificateAuthority:
            self._scan(events)
            return self

        return self._guarded(action, "Unable to refresh certificate authority")

    def _scan_directory(
        self,
        element: str,
        suffix: str,
        current: dict[Path, V],
        load: Callable[[Path], V],
    ) -> bool:
        """Reload one collection in place; True when its set of files changed."""
        directory = self._base / element
        found: dict[Path, V] = {}
        for path in sorted(directory.iterdir()):
            if not path.is_file() or not path.name.lower().endswith(suffix):
                continue
            if path in current:
                found[path] = current[path]
                continue
            try:
                found[path] = load(path)
            except CaException as e:
                log.warning("authority.entry_skipped", ca=str(self), file=path.name, error=str(e))
        changed = found.keys() != current.keys()
        current.clear()
        current.update(found)
        return changed

    def _scan(self, events: list[PropertyChangeEvent]) -> None:
        issued_locator = self._locator(ISSUED_PATH, REVOKED_PATH)
        collections: list[tuple[CaProperty, str, str, dict[Path, Any], Callable[[Path], Any]]] = [
            (CaProperty.ISSUED, ISSUED_PATH, IssuedCertificateProperties.SUFFIX, self._issued,
             lambda p: IssuedCertificateProperties.load(p, issued_locator)),
            (CaProperty.REVOKED, REVOKED_PATH, IssuedCertificateProperties.SUFFIX, self._revoked,
             lambda p: IssuedCertificateProperties.load(p, issued_locator)),
            (CaProperty.REQUESTS, REQUESTS_PATH, CertificateRequestProperties.SUFFIX, self._requests,
             lambda p: CertificateRequestProperties.load(p, self._locator(REQUESTS_PATH))),
            (CaProperty.TEMPLATES, TEMPLATES_PATH, TEMPLATE_SUFFIX, self._templates, read_template),
            (CaProperty.CRLS, X509CRL_PATH, CRLProperties.SUFFIX, self._crls,
             lambda p: CRLProperties.load(p, self._locator(X509CRL_PATH))),
        ]
        for prop, element, suffix, collection, load in collections:
            old = tuple(collection.values())
            if self._scan_directory(element, suffix, collection, load):
                property_changed(events, self, prop, old, tuple(collection.values()))

        max_serial = max(
            (s for s in map(_serial_of, (*self._issued.values(), *self._revoked.values())) if s is not None),
            default=0,
        )
        if self._settings.set_serial(max_serial + 1):
            self._save_settings()
            log.warning("authority.serial_fixed", ca=str(self), serial=self._settings.serial)

        max_crl_serial = max(
            (s for s in (crl.crl_serial_number for crl in self._crls.values()) if s is not None),
            default=0,
        )
        if self._settings.set_crl_serial(max_crl_serial + 1):
            self._save_settings()
            log.warning("authority.crl_serial_fixed", ca=str(self), crl_serial=self._settings.crl_serial)

    # ─────────────────────── Backup ───────────────────────

    def backup(self, path: Path | str | None, progress: BackupProgress | None = None) -> Result[Path]:
        """Archive the whole CA directory to a zip file; works locked or unlocked."""

        def action(events: list[PropertyChangeEvent]) -> Path:
            if not path:
                raise InvalidArgumentError("No backup file given")
            self._activity.record("backup", file=str(path))
            archive = create_backup(self._base, self.certificate_authority_id, self.description, Path(path), progress)
            log.info("authority.backed_up", ca=str(self), archive=str(archive))
            return archive

        return self._guarded(action, "Unable to back up certificate authority")

    # ─────────────────────── Subscriptions ───────────────────────

    def subscribe(self, handler: EventHandler) -> SubscriptionHandle:
        return self._events.subscribe(handler)

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        return self._events.unsubscribe(handle)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CertificateAuthority):
            return NotImplemented
        return self._base == other._base and self.certificate_authority_id == other.certificate_authority_id

    def __hash__(self) -> int:
        return hash((self._base, self.certificate_authority_id))

    def __str__(self) -> str:
        return str(self._settings)

    def __repr__(self) -> str:
        return f"CertificateAuthority({self._settings!s}, {self._base})"


def _serial_of(properties: IssuedCertificateProperties) -> int | None:
    """Certificate serial from the bag, falling back to the hex file stem."""
    if properties.serial_number is not None:
        return properties.serial_number
    try:
        return int(properties.path.stem, 16)
    except ValueError:
        return None
