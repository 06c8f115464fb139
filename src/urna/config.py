"""Carga y valida la configuración de urna.

La configuración vive en un YAML (``urna.yaml`` o la ruta de ``URNA_CONFIG``)
y las variables de entorno con prefijo ``URNA_`` la sobreescriben.

English:
    Loads and validates urna configuration. Values come from a YAML file
    (``urna.yaml`` or the path in ``URNA_CONFIG``); ``URNA_``-prefixed
    environment variables (and ``.env``) override them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import Role

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("urna.yaml")
CONFIG_PATH_ENV = "URNA_CONFIG"
PRIVATE_KEY_ENV = "URNA_PRIVATE_KEY"
_KEY_PLACEHOLDERS = {"", "0x...", "REPLACE_ME"}


class UserEntry(BaseModel):
    """Entrada de la tabla estática de credenciales.

    English: Static credential table entry.
    """

    username: str = Field(min_length=1)
    password_sha256: str = Field(min_length=64, max_length=64)
    role: Role = Role.USER


class UrnaSettings(BaseSettings):
    """Variables de entorno, ``.env`` y YAML para urna.

    English: Environment variables, ``.env`` and YAML settings for urna.
    """

    model_config = SettingsConfigDict(
        env_prefix="URNA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    rpc_url: str = "http://127.0.0.1:7545"
    contract_address: Optional[str] = None
    contract_artifact: Optional[Path] = None
    expected_chain_id: Optional[int] = None
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    receipt_timeout_seconds: float = Field(default=120.0, gt=0)
    read_retries: int = Field(default=3, ge=1, le=10)
    cost_margin_percent: int = Field(default=20, ge=0, le=100)
    notice_seconds: float = Field(default=5.0, gt=0)
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    log_redact_identifiers: bool = False
    users: List[UserEntry] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return normalized

    @field_validator("rpc_url")
    @classmethod
    def _validate_rpc_url(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("rpc_url must be an http(s) URL")
        return cleaned


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    """Carga un mapa YAML o lanza un error orientado al usuario.

    English: Load a YAML mapping or raise a user-facing error.
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path.name} has YAML syntax errors.") from exc
    except OSError as exc:
        raise ConfigurationError(f"Unable to read {path.as_posix()}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path.name} must be a YAML mapping.")
    return raw


def resolve_config_path(path: Optional[Path] = None) -> tuple[Path, bool]:
    """Resuelve la ruta del YAML y si fue pedida explícitamente.

    English: Resolve the YAML path and whether it was explicitly requested.
    """
    if path is not None:
        return Path(path), True
    env_path = os.getenv(CONFIG_PATH_ENV, "").strip()
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def load_settings(path: Optional[Path] = None) -> UrnaSettings:
    """Carga y valida configuración, fallando con detalle.

    English: Load and validate configuration, failing with details.
    """
    config_path, explicit = resolve_config_path(path)
    yaml_values: dict[str, Any] = {}
    if config_path.exists():
        yaml_values = _load_yaml_mapping(config_path)
    elif explicit:
        raise ConfigurationError(f"Missing {config_path.as_posix()}.")

    if str(yaml_values.pop("private_key", "") or "").strip() not in _KEY_PLACEHOLDERS:
        logger.warning("private_key found in %s but ignored; set %s instead", config_path.name, PRIVATE_KEY_ENV)

    try:
        from_env = UrnaSettings()
        overrides = from_env.model_dump(include=from_env.model_fields_set)
        settings = UrnaSettings(**{**yaml_values, **overrides})
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    logger.debug("Configuration loaded from %s (%d yaml keys)", config_path.as_posix(), len(yaml_values))
    return settings


def resolve_private_key() -> Optional[str]:
    """Resuelve la clave privada exclusivamente desde el entorno.

    English: Resolve the signing key exclusively from ``URNA_PRIVATE_KEY``.
    """
    env_key = os.getenv(PRIVATE_KEY_ENV, "").strip()
    return env_key or None
