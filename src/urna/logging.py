"""Configuración de logging estructurado para urna.

English:
    Structured logging setup for urna (structlog over the stdlib handlers).
"""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import structlog

_REDACT_IDENTIFIERS = False


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    *,
    redact_identifiers: bool = False,
) -> structlog.BoundLogger:
    """Configura structlog y handlers de consola/archivo.

    English: Configure structlog and console/file handlers.
    """
    global _REDACT_IDENTIFIERS
    _REDACT_IDENTIFIERS = redact_identifiers

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                log_dir / "urna.log",
                when="midnight",
                backupCount=30,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=log_level.upper(),
        handlers=handlers,
        format="%(message)s",
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(log_level.upper())),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def obfuscate_identifier(value: Optional[str]) -> Optional[str]:
    """Devuelve identificador acortado para logs sin exponer valores completos.

    English: Return a shortened identifier for logs without exposing full values.
    """
    if value is None or len(value) <= 10:
        return value
    return f"{value[:6]}…{value[-4:]}"


def redact(value: Optional[str]) -> Optional[str]:
    """Aplica ``obfuscate_identifier`` sólo si la privacidad está activa.

    English: Apply ``obfuscate_identifier`` only when redaction is enabled.
    """
    if _REDACT_IDENTIFIERS:
        return obfuscate_identifier(value)
    return value


def bind_context(
    logger: Any,
    identity: Optional[str] = None,
    proposal_index: Optional[int] = None,
    stage: Optional[str] = None,
) -> Any:
    """Adjunta contexto estándar al logger.

    English: Bind standard context to the logger.
    """
    context: dict[str, Any] = {}
    if identity:
        context["identity"] = redact(identity)
    if proposal_index is not None:
        context["proposal_index"] = proposal_index
    if stage:
        context["stage"] = stage
    return logger.bind(**context)
