"""Argon2id API key helpers for the inbound MCP HTTP endpoint."""

from __future__ import annotations

import base64
import hmac
import os
import secrets
from typing import Any, Dict, Optional

from argon2.low_level import Type, hash_secret_raw

from mcpWinCC.config.schema import APIKeyKDFConfig, HTTPServerConfig


DEFAULT_ARGON2_SETTINGS: Dict[str, int] = {
    "time_cost": 3,
    "memory_cost": 64 * 1024,
    "parallelism": 1,
    "hash_len": 32,
}
DEFAULT_SALT_BYTES = 16
DEFAULT_API_KEY_BYTES = 32


def generate_random_api_key(byte_length: int = DEFAULT_API_KEY_BYTES) -> str:
    """Return a URL-safe random API key string."""
    return secrets.token_urlsafe(byte_length)


def new_kdf_block(existing: Optional[Dict[str, Any]] = None, salt_bytes: int = DEFAULT_SALT_BYTES) -> Dict[str, Any]:
    """Return an Argon2id parameter block with defaults and a salt filled in."""
    kdf = dict(existing or {})
    kdf.setdefault("algorithm", "argon2id")
    for key, value in DEFAULT_ARGON2_SETTINGS.items():
        kdf.setdefault(key, value)
    if not kdf.get("salt"):
        kdf["salt"] = base64.b64encode(os.urandom(salt_bytes)).decode("ascii")
    return kdf


def _derive(secret: str, salt_b64: str, time_cost: int, memory_cost: int, parallelism: int, hash_len: int) -> bytes:
    return hash_secret_raw(
        secret=secret.encode("utf-8"),
        salt=base64.b64decode(salt_b64),
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=hash_len,
        type=Type.ID,
    )


def hash_api_key(api_key: str, kdf: Dict[str, Any]) -> str:
    """Derive the base64 Argon2id hash stored in the configuration file."""
    derived = _derive(
        api_key,
        kdf["salt"],
        int(kdf["time_cost"]),
        int(kdf["memory_cost"]),
        int(kdf["parallelism"]),
        int(kdf["hash_len"]),
    )
    return base64.b64encode(derived).decode("ascii")


def _matches_kdf(token: str, kdf: APIKeyKDFConfig) -> bool:
    expected = base64.b64decode(kdf.hash)
    computed = _derive(token, kdf.salt, kdf.time_cost, kdf.memory_cost, kdf.parallelism, kdf.hash_len)
    return hmac.compare_digest(expected, computed)


def verify_api_key(token: Optional[str], http_config: HTTPServerConfig) -> bool:
    """Check a presented API key against the configured hash or plaintext key."""
    if not token:
        return False

    if http_config.api_key_kdf:
        return _matches_kdf(token, http_config.api_key_kdf)

    if http_config.api_key:
        return hmac.compare_digest(http_config.api_key, token)

    return False
