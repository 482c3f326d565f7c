"""
Configuration — typed, validated application settings from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables prefixed with CA_MANAGER_
  - Fall back to a .env file
  - Validate types and constraints at startup

These are process-wide defaults for the composition root. Each CA keeps its
own policy in its `configuration.json` (see settings.py); AppSettings only
supplies the values new CAs and the command line start from.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ca_manager.domain.enums import PKCS12Cipher

# Resolve the .env file relative to the project root, so settings load
# correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables (CA_MANAGER_LOG_LEVEL, CA_MANAGER_CRL_VALIDITY_DAYS, ...)
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="CA_MANAGER_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    default_expiry_days: int = Field(default=365, gt=0, description="Expiry days of a newly created CA")
    keystore_cipher: PKCS12Cipher = Field(
        default=PKCS12Cipher.AES256,
        description="Cipher of the CA keystore and of issued PKCS#12 bundles",
    )
    crl_validity_days: int = Field(default=7, gt=0, description="Default next-update distance of a CLI-issued CRL")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}, got {value!r}")
        return level
