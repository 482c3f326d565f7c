"""
CertificateAuthorityManager — the registry of open certificate authorities.

Owned by the composition root (see main.py) and passed to whoever needs it;
there is no module-level instance. It:

  - opens / creates CAs and refuses a second registration of the same
    directory or the same CA UUID (IO_FAILURE);
  - forwards every event of a registered CA to its own subscribers and
    reports registry changes as CERTIFICATE_AUTHORITIES events;
  - restores backup archives and opens the restored CA;
  - locks a CA when it is removed, and locks every CA when its last
    subscriber goes away so no key stays decrypted with nobody watching.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

import structlog

from ca_manager.adapters.issued_certificate import IssuedCertificate
from ca_manager.authority import CertificateAuthority
from ca_manager.backup import restore_backup
from ca_manager.config import AppSettings
from ca_manager.domain.events import (
    CaProperty,
    EventChannel,
    EventHandler,
    PropertyChangeEvent,
    SubscriptionHandle,
)
from ca_manager.domain.errors import InvalidArgumentError
from ca_manager.domain.failure import CaError
from ca_manager.domain.result import Result

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class _Registration:
    authority: CertificateAuthority
    handle: SubscriptionHandle


def _registry_key(path: Path | str | None) -> Path | None:
    if path is None or str(path).strip() == "":
        return None
    return Path(path).expanduser().resolve()


class CertificateAuthorityManager:
    def __init__(self, app_settings: AppSettings | None = None) -> None:
        self._app_settings = app_settings or AppSettings()
        self._registry: dict[Path, _Registration] = {}
        self._events = EventChannel()
        self._lock = threading.RLock()

    @property
    def certificate_authorities(self) -> tuple[CertificateAuthority, ...]:
        with self._lock:
            return tuple(r.authority for r in self._registry.values())

    def get(self, ca_id: UUID) -> CertificateAuthority | None:
        return next((ca for ca in self.certificate_authorities if ca.certificate_authority_id == ca_id), None)

    # ─────────────────────── Registration ───────────────────────

    def _already_open(self, key: Path | None) -> Result[CertificateAuthority] | None:
        if key is not None and key in self._registry:
            return Result.failure(CaError.IO_FAILURE, f"Certificate authority at {key} is already open")
        return None

    def _register(self, authority: CertificateAuthority) -> Result[CertificateAuthority]:
        with self._lock:
            old = self.certificate_authorities
            rejected = self._already_open(authority.base_path)
            ca_id = authority.certificate_authority_id
            if rejected is None and any(ca.certificate_authority_id == ca_id for ca in old):
                rejected = Result.failure(
                    CaError.IO_FAILURE,
                    f"Certificate authority {ca_id} is already open from another path",
                )
            if rejected is None:
                handle = authority.subscribe(self._events.publish)
                self._registry[authority.base_path] = _Registration(authority, handle)
            new = self.certificate_authorities
        if rejected is not None:
            authority.close()
            log.warning("manager.duplicate_rejected", ca=str(authority), path=str(authority.base_path))
            return rejected
        log.info("manager.registered", ca=str(authority), path=str(authority.base_path))
        self._events.publish(PropertyChangeEvent(self, CaProperty.CERTIFICATE_AUTHORITIES, old, new))
        return Result.success(authority)

    def open(self, path: Path | str | None) -> Result[CertificateAuthority]:
        with self._lock:
            duplicate = self._already_open(_registry_key(path))
        if duplicate is not None:
            return duplicate
        return CertificateAuthority.open(path, self._app_settings.keystore_cipher).flat_map(self._register)

    def create(
        self,
        path: Path | str | None,
        issued_certificate: IssuedCertificate | None,
        description: str | None = None,
    ) -> Result[CertificateAuthority]:
        with self._lock:
            duplicate = self._already_open(_registry_key(path))
        if duplicate is not None:
            return duplicate
        return CertificateAuthority.create(
            path,
            issued_certificate,
            description,
            expiry_days=self._app_settings.default_expiry_days,
            keystore_cipher=self._app_settings.keystore_cipher,
        ).flat_map(self._register)

    def restore(self, archive: Path | str | None, destination: Path | str | None) -> Result[CertificateAuthority]:
        """Unpack a backup archive under `destination` and open the restored CA."""

        def unpack() -> Path:
            if not archive or not destination:
                raise InvalidArgumentError("A backup archive and a destination directory are required")
            return restore_backup(Path(archive), Path(destination))

        return (
            Result.attempt(unpack, "Unable to restore backup")
            .peek(lambda base: log.info("manager.restored", path=str(base)))
            .peek_failure(
                lambda error: log.warning("manager.restore_failed", code=error.code.name, error=error.message)
            )
            .flat_map(self.open)
        )

    def remove(self, authority: CertificateAuthority) -> bool:
        """Lock and unregister `authority`. False when it was not registered."""
        with self._lock:
            old = self.certificate_authorities
            registration = self._registry.get(authority.base_path)
            if registration is None or registration.authority is not authority:
                return False
            del self._registry[authority.base_path]
            new = self.certificate_authorities
        authority.close()
        authority.unsubscribe(registration.handle)
        log.info("manager.removed", ca=str(authority))
        self._events.publish(PropertyChangeEvent(self, CaProperty.CERTIFICATE_AUTHORITIES, old, new))
        return True

    def close(self) -> None:
        """Lock and release every registered CA."""
        for authority in self.certificate_authorities:
            self.remove(authority)

    # ─────────────────────── Subscriptions ───────────────────────

    def subscribe(self, handler: EventHandler) -> SubscriptionHandle:
        return self._events.subscribe(handler)

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """Remove a subscriber; when none remain every registered CA is locked."""
        removed = self._events.unsubscribe(handle)
        if removed and len(self._events) == 0:
            for authority in self.certificate_authorities:
                authority.lock()
            log.info("manager.all_locked", count=len(self.certificate_authorities))
        return removed
