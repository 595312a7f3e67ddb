"""Configuration loader and CLI helpers for mcpWinCC."""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from mcpWinCC.config.api_keys import generate_random_api_key, hash_api_key, new_kdf_block
from mcpWinCC.config.schema import Config, LoggingConfig


logger = logging.getLogger(__name__)
DEFAULT_CONFIG_PATH = os.path.expanduser("~/.config/mcpwincc/config.json")
_cached_config: Optional[Config] = None

REDACTED = "***"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigurationError(ValueError):
    """Raised when the effective configuration cannot be used to start the server."""


def parse_port(value: Any) -> int:
    """Convert a port from the environment or CLI into an int in 1..65535."""
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid port '{value}': must be an integer between 1 and 65535") from exc
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"Invalid port '{value}': must be an integer between 1 and 65535")
    return port


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    candidate = str(value).strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean value '{value}'")


def parse_timeout(value: Any) -> Optional[float]:
    candidate = str(value).strip().lower()
    if candidate in ("", "none", "0"):
        return None
    try:
        return float(candidate)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid request timeout '{value}'") from exc


# (section, key, converter) for every environment override
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[Any], Any]]] = {
    "WINCC_URL": ("wincc", "url", str),
    "WINCC_USR": ("wincc", "username", str),
    "WINCC_PWD": ("wincc", "password", str),
    "WINCC_BEARER_TOKEN": ("wincc", "bearer_token", str),
    "WINCC_SKIP_CERT_VALIDATION": ("wincc", "skip_certificate_validation", parse_bool),
    "WINCC_REQUEST_TIMEOUT": ("wincc", "request_timeout", parse_timeout),
    "WINCC_STRICT_ERRORS": ("wincc", "strict_errors", parse_bool),
    "WINCC_ALLOW_ORIGIN": ("http", "allow_origin", str),
    "WINCC_MCP_HOST": ("http", "host", str),
    "WINCC_MCP_PORT": ("http", "port", parse_port),
    "WINCC_DEBUG": ("logging", "debug", parse_bool),
}

# argparse destination -> (section, key, converter)
CLI_OVERRIDES: Dict[str, Tuple[str, str, Callable[[Any], Any]]] = {
    "wincc_url": ("wincc", "url", str),
    "username": ("wincc", "username", str),
    "password": ("wincc", "password", str),
    "bearer_token": ("wincc", "bearer_token", str),
    "skip_cert_validation": ("wincc", "skip_certificate_validation", parse_bool),
    "request_timeout": ("wincc", "request_timeout", parse_timeout),
    "strict_errors": ("wincc", "strict_errors", parse_bool),
    "allow_origin": ("http", "allow_origin", str),
    "host": ("http", "host", str),
    "port": ("http", "port", parse_port),
    "debug": ("logging", "debug", parse_bool),
    "log_level": ("logging", "level", lambda value: str(value).upper()),
    "logfile": ("logging", "logfile", str),
}


def setup_logging(logging_config: LoggingConfig) -> None:
    """Install console/file logging using the supplied configuration."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if logging_config.logfile:
        try:
            log_dir = os.path.dirname(os.path.abspath(logging_config.logfile))
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(logging_config.logfile, mode="a")
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logger.info("Logging to file: %s", logging_config.logfile)
        except OSError as exc:
            logger.warning("Could not configure file logging at %s: %s", logging_config.logfile, exc)

    level = "DEBUG" if logging_config.debug else logging_config.level
    root_logger.setLevel(getattr(logging, level.upper()))
    logger.info("Logging configured: level=%s file=%s", level, logging_config.logfile or "stdout")


def load_config_data(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Read the raw JSON configuration document, or an empty one if the file is missing."""
    path = config_path or DEFAULT_CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as fh:
            config_data = json.load(fh)
        logger.info("Loaded configuration from %s", path)
    except FileNotFoundError:
        logger.warning("Configuration file not found at %s. Using defaults.", path)
        config_data = {}
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in configuration file {path}: {exc}") from exc

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")
    return config_data


def _apply(config_data: Dict[str, Any], section: str, key: str, value: Any) -> None:
    block = config_data.get(section)
    if not isinstance(block, dict):
        block = {}
        config_data[section] = block
    block[key] = value


def apply_env_overrides(config_data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Layer WINCC_* environment variables over the file configuration."""
    environ = os.environ if environ is None else environ
    for name, (section, key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        _apply(config_data, section, key, convert(raw))
    return config_data


def apply_cli_overrides(config_data: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Layer command-line flags over everything else."""
    for dest, (section, key, convert) in CLI_OVERRIDES.items():
        raw = getattr(args, dest, None)
        if raw is None:
            continue
        _apply(config_data, section, key, convert(raw))
    return config_data


def build_config(
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Combine file, environment and CLI layers into a validated Config."""
    config_data = load_config_data(getattr(args, "config", None))
    apply_env_overrides(config_data, environ)
    apply_cli_overrides(config_data, args)
    try:
        return Config(**config_data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments for the MCP server."""
    parser = argparse.ArgumentParser(description="mcpWinCC FastMCP server for the WinCC V8 REST API")
    parser.add_argument("--config", type=str, help="Path to configuration JSON file")
    parser.add_argument("--wincc-url", type=str, help="Base URL of the WinCC REST service (WINCC_URL)")
    parser.add_argument("--username", type=str, help="Default WinCC user (WINCC_USR)")
    parser.add_argument("--password", type=str, help="Default WinCC password (WINCC_PWD)")
    parser.add_argument("--bearer-token", type=str, help="Bearer token for WinCC (WINCC_BEARER_TOKEN)")
    parser.add_argument(
        "--skip-cert-validation",
        action="store_const",
        const=True,
        default=None,
        help="Accept invalid TLS certificates from WinCC (WINCC_SKIP_CERT_VALIDATION)",
    )
    parser.add_argument(
        "--request-timeout",
        type=str,
        help="Seconds to wait for WinCC responses, 'none' to wait indefinitely (WINCC_REQUEST_TIMEOUT)",
    )
    parser.add_argument(
        "--strict-errors",
        action="store_const",
        const=True,
        default=None,
        help="Report failures as MCP tool errors (WINCC_STRICT_ERRORS)",
    )
    parser.add_argument("--allow-origin", type=str, help="CORS allowed origin (WINCC_ALLOW_ORIGIN)")
    parser.add_argument("--host", type=str, help="Bind address of the HTTP listener (WINCC_MCP_HOST)")
    parser.add_argument("--port", type=str, help="Port of the HTTP listener (WINCC_MCP_PORT)")
    parser.add_argument(
        "--debug",
        action="store_const",
        const=True,
        default=None,
        help="Enable debug logging of WinCC requests (WINCC_DEBUG)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override logging level",
    )
    parser.add_argument("--logfile", type=str, help="Path to log file (appends)")
    parser.add_argument(
        "--transport",
        type=str,
        default="http",
        choices=["http", "stdio"],
        help="Transport to expose (http for streamable HTTP via FastAPI/uvicorn, stdio for local MCP)",
    )
    parser.add_argument(
        "--genkey",
        action="store_true",
        help="Generate a new API key, store its hash in the config, then exit",
    )
    return parser.parse_args(argv)


def get_config(parsed_args: Optional[argparse.Namespace] = None) -> Config:
    """Return a cached, validated config (respecting env and CLI overrides)."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    args = parsed_args or parse_arguments()
    config = build_config(args)
    setup_logging(config.logging)
    _cached_config = config
    return config


def redact_secret(value: Optional[str], visible: int = 3) -> Optional[str]:
    """Mask a secret down to a short suffix for diagnostics."""
    if value is None:
        return None
    if len(value) <= visible * 2:
        return REDACTED
    return f"{REDACTED}{value[-visible:]}"


def describe_config(config: Config) -> Dict[str, Any]:
    """Return the effective configuration with secrets redacted."""
    wincc = config.wincc.model_dump()
    wincc["password"] = redact_secret(config.wincc.password)
    wincc["bearer_token"] = redact_secret(config.wincc.bearer_token)

    http = config.http.model_dump(exclude={"api_key_kdf"})
    http["api_key"] = redact_secret(config.http.api_key)
    http["api_key_kdf"] = (
        {"algorithm": config.http.api_key_kdf.algorithm, "hash": redact_secret(config.http.api_key_kdf.hash)}
        if config.http.api_key_kdf
        else None
    )

    return {
        "wincc": wincc,
        "http": http,
        "logging": config.logging.model_dump(),
    }


def generate_and_store_api_key(config_path: Optional[str] = None) -> str:
    """Generate an API key, store its Argon2id hash, and return the plain token."""
    path = config_path or DEFAULT_CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as fh:
            config_data = json.load(fh)
    except FileNotFoundError:
        logger.info("Configuration file %s does not exist yet, creating it", path)
        config_data = {}
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in configuration file {path}: {exc}") from exc

    http_block = config_data.get("http") or {}
    kdf_block = new_kdf_block(http_block.get("api_key_kdf"))

    new_key = generate_random_api_key()
    kdf_block["hash"] = hash_api_key(new_key, kdf_block)
    http_block["api_key_kdf"] = kdf_block
    http_block.pop("api_key", None)
    config_data["http"] = http_block

    # Validate before persisting
    try:
        Config(**config_data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {path}: {exc}") from exc

    config_dir = os.path.dirname(path)
    if config_dir:
        os.makedirs(config_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config_data, fh, indent=2)
        fh.write("\n")

    logger.info("Updated API key hash in %s", path)
    return new_key
