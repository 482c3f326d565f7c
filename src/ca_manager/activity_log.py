"""
Activity log — the per-CA audit trail in `Log/<uuid>.log`.

One JSON line per audited action (unlock, sign, revoke, CRL, ...), written
through a structlog WriteLogger bound to the open file. A CA with logging
disabled holds a NullActivityLog and its actions are dropped.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO, Any

import structlog

from ca_manager.domain.errors import StoreIOError

LOG_DIRECTORY = "Log"


class NullActivityLog:
    def record(self, action: str, **details: Any) -> None:
        pass

    def close(self) -> None:
        pass


class FileActivityLog:
    """Appends JSON lines to one file; reopening an existing log continues it."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._file: IO[str] | None = None
        self._logger: Any = None

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> FileActivityLog:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._path.open("a", encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"Unable to open activity log {self._path}: {e}") from e
        self._logger = structlog.wrap_logger(
            structlog.WriteLogger(self._file),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.BoundLogger,
        )
        return self

    def record(self, action: str, **details: Any) -> None:
        if self._logger is not None:
            self._logger.info(action, **details)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = None
        self._logger = None


def activity_log_for(base: Path, ca_id: str, enabled: bool) -> FileActivityLog | NullActivityLog:
    if not enabled:
        return NullActivityLog()
    return FileActivityLog(base / LOG_DIRECTORY / f"{ca_id}.log").open()
