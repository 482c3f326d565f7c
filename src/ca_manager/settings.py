"""
CertificateAuthoritySettings — the persisted `configuration.json` document.

A pydantic model validated on every read and on every assignment. The
document is always rewritten as a whole: serialized to a temporary sibling
file, then moved over the original with os.replace, so a crash never
leaves a half-written configuration behind.

Serial policy: `serial` and `crl_serial` hold the *next* value to hand out.

    incremental mode   returns serial, stores serial + 1
    timestamp mode     returns max(now_ms, serial), stores that + 1

The CRL serial is always incremental.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ca_manager.domain.enums import SignatureAlgorithm
from ca_manager.domain.errors import StoreIOError

log = structlog.get_logger()

SETTINGS_FILENAME = "configuration.json"
DEFAULT_PKCS12_FILENAME = "ca.p12"


def _current_millis() -> int:
    return time.time_ns() // 1_000_000


class CertificateAuthoritySettings(BaseModel):
    """Identity, signing policy and serial counters of one CA."""

    model_config = ConfigDict(validate_assignment=True, populate_by_name=True, extra="ignore")

    uuid: UUID = Field(default_factory=uuid4)
    description: str | None = None
    pkcs12_filename: str = Field(default=DEFAULT_PKCS12_FILENAME, alias="pkcs12Filename", min_length=1)
    signature_algorithm: SignatureAlgorithm | None = Field(default=None, alias="signatureAlgorithm")
    expiry_days: int = Field(default=365, gt=0, alias="expiryDays")
    serial: int = Field(default=1, ge=1)
    crl_serial: int = Field(default=1, ge=1, alias="crlSerial")
    incremental_serial: bool = Field(default=False, alias="incrementalSerial")
    enable_log: bool = Field(default=False, alias="enableLog")

    # ─────────────────────── Serial counters ───────────────────────

    def get_and_increment_serial(self, now_ms: int | None = None) -> int:
        if self.incremental_serial:
            value = self.serial
        else:
            value = max(now_ms if now_ms is not None else _current_millis(), self.serial)
        self.serial = value + 1
        return value

    def get_and_increment_crl_serial(self) -> int:
        value = self.crl_serial
        self.crl_serial = value + 1
        return value

    def set_serial(self, value: int | None) -> bool:
        """Raise the next serial to `value`. Returns True when it changed."""
        if value is None:
            return False
        value = max(value, 1)
        if value <= self.serial:
            return False
        self.serial = value
        return True

    def set_crl_serial(self, value: int | None) -> bool:
        if value is None:
            return False
        value = max(value, 1)
        if value <= self.crl_serial:
            return False
        self.crl_serial = value
        return True

    # ─────────────────────── Persistence ───────────────────────

    @classmethod
    def read(cls, path: Path) -> CertificateAuthoritySettings:
        try:
            return cls.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise StoreIOError(f"Unable to read settings {path}: {e}") from e

    @staticmethod
    def write(settings: CertificateAuthoritySettings, path: Path) -> None:
        temporary = path.with_name(f".{path.name}.tmp")
        try:
            temporary.write_text(settings.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
            os.replace(temporary, path)
        except OSError as e:
            temporary.unlink(missing_ok=True)
            raise StoreIOError(f"Unable to write settings {path}: {e}") from e
        log.debug("settings.written", file=str(path), serial=settings.serial, crl_serial=settings.crl_serial)

    # ─────────────────────── Identity ───────────────────────

    def _identity(self) -> tuple[UUID, str, str | None]:
        return (self.uuid, self.pkcs12_filename, self.description)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CertificateAuthoritySettings):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __str__(self) -> str:
        if self.description:
            return f"{self.description} [{self.uuid}]"
        return f"[{self.uuid}]"
