"""Configuration schema for gitsync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path
from typing import Any, List, Literal

from pydantic import BaseModel, Field, field_validator

from .credentials import DEFAULT_TOKEN_ENV_VARS


def _split(value: Any, separator: str) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(separator) if part.strip()]
    return value


class SshSettings(BaseModel):
    """SSH credential profile settings."""

    keys: List[str] = Field(
        default_factory=list,
        description="Private key paths in priority order (empty = ~/.ssh defaults)",
    )
    known_hosts: str = Field(
        default="",
        description="known_hosts file (empty = ~/.ssh/known_hosts)",
    )
    agent: bool = Field(
        default=True,
        description="Try the running SSH agent before key files",
    )

    @field_validator("keys", mode="before")
    @classmethod
    def split_keys(cls, v: Any) -> Any:
        """Accept an os.pathsep separated string (GITSYNC_SSH_KEYS)."""
        return _split(v, os.pathsep)

    @field_validator("keys")
    @classmethod
    def validate_keys(cls, v: List[str]) -> List[str]:
        """Warn about configured keys that don't exist."""
        for key in v:
            path = Path(key).expanduser()
            if not path.exists():
                warnings.warn(f"SSH key does not exist: {key}", UserWarning)
            elif not path.is_file():
                warnings.warn(f"SSH key path is not a file: {key}", UserWarning)
        return v


class HttpsSettings(BaseModel):
    """HTTPS credential settings."""

    token_env_vars: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TOKEN_ENV_VARS),
        description="Environment variables holding a token, first non-empty wins",
    )

    @field_validator("token_env_vars", mode="before")
    @classmethod
    def split_token_env_vars(cls, v: Any) -> Any:
        return _split(v, ",")


class RemoteSettings(BaseModel):
    """Remote selection."""

    name: str = Field(
        default="origin",
        min_length=1,
        description="Remote to fetch from",
    )


class BackendSettings(BaseModel):
    """Version-control backend selection."""

    name: str = Field(
        default="gitpython",
        description="Registered backend name (gitpython, memory)",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.gitsync/logs)",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log path exists but isn't a directory (it is created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class GitSyncConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    ssh: SshSettings = Field(default_factory=SshSettings)
    https: HttpsSettings = Field(default_factory=HttpsSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
