"""Pydantic schemas for mcpWinCC configuration."""

from __future__ import annotations

import base64
import binascii
from typing import Literal, Optional

from pydantic import BaseModel, Field, validator


class WinCCConfig(BaseModel):
    """Connection and authentication settings for the WinCC REST service."""

    url: str = Field(
        default="http://localhost:34569/WinCCRestService",
        description="Base URL of the WinCC REST service; endpoint paths are appended verbatim",
    )
    username: Optional[str] = Field(
        default="username1",
        description="Default user for Basic authentication",
    )
    password: Optional[str] = Field(
        default="password1",
        description="Default password for Basic authentication",
    )
    bearer_token: Optional[str] = Field(
        default=None,
        description="Bearer token; takes precedence over username/password when set",
    )
    skip_certificate_validation: bool = Field(
        default=False,
        description="Accept self-signed or otherwise invalid certificates on https URLs",
    )
    request_timeout: Optional[float] = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for a WinCC response. None waits indefinitely.",
    )
    strict_errors: bool = Field(
        default=False,
        description="Report failed tool calls as MCP tool errors instead of plain text results",
    )

    @validator("url")
    def validate_url(cls, value: str) -> str:
        value = (value or "").strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("WinCC URL must start with http:// or https://")
        return value

    @validator("username", "password", "bearer_token")
    def empty_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value


class APIKeyKDFConfig(BaseModel):
    """Argon2id KDF configuration for the inbound API key."""

    algorithm: Literal["argon2id"] = Field(
        default="argon2id",
        description="KDF algorithm identifier",
    )
    salt: str = Field(description="Base64 encoded salt")
    time_cost: int = Field(default=3, ge=1, description="Argon2 time cost")
    memory_cost: int = Field(default=65536, ge=8, description="Argon2 memory cost (KiB)")
    parallelism: int = Field(default=1, ge=1, description="Argon2 parallelism")
    hash_len: int = Field(default=32, ge=16, description="Derived hash length")
    hash: str = Field(description="Base64 encoded Argon2id hash output")

    @validator("salt", "hash")
    def validate_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except binascii.Error as exc:  # pragma: no cover - guard clause
            raise ValueError("Value must be base64 encoded") from exc
        return value


class HTTPServerConfig(BaseModel):
    """Listener settings for the streamable HTTP MCP endpoint."""

    host: str = Field(
        default="0.0.0.0",
        description="Bind address for the HTTP listener",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="TCP port of the HTTP listener",
    )
    allow_origin: str = Field(
        default="*",
        description="Value for the CORS allowed origin",
    )
    api_key_kdf: Optional[APIKeyKDFConfig] = Field(
        default=None,
        description="Argon2id protected API key required from MCP clients",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Plaintext API key (prefer api_key_kdf)",
    )

    @validator("host")
    def validate_host(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("HTTP host cannot be empty")
        return value.strip()

    @validator("allow_origin")
    def validate_allow_origin(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("allow_origin cannot be empty")
        return value.strip()

    @validator("api_key")
    def validate_plaintext_key(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not value:
            raise ValueError("API key cannot be empty")
        return value

    @property
    def requires_api_key(self) -> bool:
        return bool(self.api_key or self.api_key_kdf)


class LoggingConfig(BaseModel):
    """Logging options for the server."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging verbosity for the MCP service",
    )
    logfile: Optional[str] = Field(
        default=None,
        description="Optional log file path (appends). None logs to stdout only.",
    )
    debug: bool = Field(
        default=False,
        description="Force DEBUG level and log every WinCC request",
    )


class Config(BaseModel):
    """Root configuration document."""

    wincc: WinCCConfig = Field(default_factory=WinCCConfig)
    http: HTTPServerConfig = Field(default_factory=HTTPServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
