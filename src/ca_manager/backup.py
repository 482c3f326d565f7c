"""
Backup archives — a whole CA directory in one zip file.

Layout of an archive:

    manifest.json           BackupManifest: uuid, folder, creation date, files
    <folder>/<relative>     every file under the CA base directory

The zip comment holds the CA UUID and must agree with the manifest. Each
manifest entry records the size and SHA-512 of one file; restore checks
both before writing anything, and removes the partially restored folder
when any check fails.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import zipfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ca_manager.domain.errors import InvalidArgumentError, StoreIOError
from ca_manager.domain.models import utc_now

log = structlog.get_logger()

MANIFEST = "manifest.json"
_CHUNK = 2**20

# (file name, index, total) -> keep going
BackupProgress = Callable[[str, int, int], bool]


class BackupManifestEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str = Field(min_length=1)
    size: int = Field(ge=0)
    sha512: str = Field(pattern=r"^[0-9a-f]{128}$")


class BackupManifest(BaseModel):
    """Identity of the archived CA and the checksums of its files."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: UUID
    description: str = Field(min_length=1)
    creation_date: datetime = Field(alias="creationDate")
    entries: list[BackupManifestEntry] = Field(default_factory=list)


def file_sha512(path: Path) -> str:
    digest = hashlib.sha512()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def folder_name(uuid: UUID, description: str | None) -> str:
    """The description when it is usable as one directory name, else the UUID."""
    if description and description not in (".", "..") and Path(description).name == description:
        if os.sep not in description and "/" not in description:
            return description
    return str(uuid)


def _keep_going(progress: BackupProgress | None, name: str, index: int, total: int) -> None:
    if progress is not None and not progress(name, index, total):
        raise StoreIOError("Operation cancelled")


# ─────────────────────── Backup ───────────────────────


def create_backup(
    base: Path,
    uuid: UUID,
    description: str | None,
    target: Path,
    progress: BackupProgress | None = None,
) -> Path:
    """
    Write every file under `base` to the zip archive `target`.

    An existing `target` is replaced. The archive may not be written inside
    the directory it backs up. A cancelled or failed backup leaves no file.
    """
    base = base.resolve()
    target = target.resolve()
    if target.is_relative_to(base):
        raise InvalidArgumentError(f"Backup target {target} lies inside {base}")
    if target.is_dir():
        raise InvalidArgumentError(f"Backup target {target} is a directory")

    folder = folder_name(uuid, description)
    files = sorted(path for path in base.rglob("*") if path.is_file())
    manifest = BackupManifest(uuid=uuid, description=folder, creation_date=utc_now())

    target.unlink(missing_ok=True)
    try:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED, allowZip64=True) as archive:
            archive.comment = str(uuid).encode("ascii")
            for index, path in enumerate(files):
                relative = path.relative_to(base).as_posix()
                _keep_going(progress, relative, index, len(files))
                archive.write(path, f"{folder}/{relative}")
                manifest.entries.append(
                    BackupManifestEntry(filename=relative, size=path.stat().st_size, sha512=file_sha512(path))
                )
            archive.writestr(MANIFEST, manifest.model_dump_json(by_alias=True, indent=2))
    except StoreIOError:
        target.unlink(missing_ok=True)
        raise
    except OSError as e:
        target.unlink(missing_ok=True)
        raise StoreIOError(f"Unable to write backup {target.name}: {e}") from e

    log.info("backup.created", ca=str(uuid), archive=str(target), files=len(files))
    return target


# ─────────────────────── Restore ───────────────────────


def read_manifest(archive: zipfile.ZipFile) -> BackupManifest:
    try:
        manifest = BackupManifest.model_validate_json(archive.read(MANIFEST))
    except KeyError as e:
        raise StoreIOError(f"Backup has no {MANIFEST}") from e
    except ValidationError as e:
        raise StoreIOError(f"Backup {MANIFEST} is invalid: {e.error_count()} error(s)") from e
    if archive.comment.decode("ascii", errors="replace") != str(manifest.uuid):
        raise StoreIOError("Backup comment does not match the manifest UUID")
    return manifest


def _restore_entries(
    archive: zipfile.ZipFile,
    manifest: BackupManifest,
    base: Path,
    progress: BackupProgress | None,
) -> None:
    total = len(manifest.entries)
    for index, entry in enumerate(manifest.entries):
        _keep_going(progress, entry.filename, index, total)
        path = (base / entry.filename).resolve()
        if not path.is_relative_to(base) or path == base:
            raise StoreIOError(f"Backup entry {entry.filename} escapes the restore folder")
        member = f"{manifest.description}/{entry.filename}"
        try:
            info = archive.getinfo(member)
        except KeyError as e:
            raise StoreIOError(f"Backup is missing {entry.filename}") from e
        if info.file_size != entry.size:
            raise StoreIOError(f"Backup entry {entry.filename} has the wrong size")
        data = archive.read(info)
        if hashlib.sha512(data).hexdigest() != entry.sha512:
            raise StoreIOError(f"Backup entry {entry.filename} failed its checksum")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


def restore_backup(archive_path: Path, destination: Path, progress: BackupProgress | None = None) -> Path:
    """
    Unpack a backup into `destination/<folder>` and return that folder.

    The folder must not exist yet. Every entry is checked against the
    manifest; on any failure the folder is removed again.
    """
    if not archive_path.is_file():
        raise StoreIOError(f"Backup {archive_path} is not a readable file")
    destination = destination.resolve()
    if not destination.is_dir() or not os.access(destination, os.W_OK):
        raise StoreIOError(f"Restore destination {destination} is not a writable directory")

    try:
        archive = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as e:
        raise StoreIOError(f"{archive_path.name} is not a backup archive") from e

    with archive:
        manifest = read_manifest(archive)
        base = (destination / manifest.description).resolve()
        if base.parent != destination:
            raise StoreIOError(f"Backup folder {manifest.description!r} is not a plain directory name")
        if base.exists():
            raise StoreIOError(f"{base} already exists")
        if len(manifest.entries) < 2:
            raise StoreIOError("Backup holds too few files to be a certificate authority")

        base.mkdir()
        try:
            _restore_entries(archive, manifest, base, progress)
        except Exception:
            shutil.rmtree(base, ignore_errors=True)
            raise

    log.info("backup.restored", ca=str(manifest.uuid), path=str(base), files=len(manifest.entries))
    return base
