"""Clasificador de fallos remotos del ledger.

Traduce mensajes opacos del runtime del contrato a la taxonomía tipada de
``urna.errors``. La regla de extracción busca un segmento "revert reason"
con los delimitadores que usa el runtime; si lo encuentra, el motivo se
muestra tal cual. Si no, se devuelve "Operation failed." y el texto crudo
queda para diagnóstico.

English:
    Classifier for remote ledger failures. Extraction rule: search the
    failure text for a revert-reason segment using the runtime delimiters;
    when found, surface the reason verbatim, otherwise fall back to a generic
    "Operation failed." message and keep the raw text for diagnostics.
    ``classify`` is total and never raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from .errors import (
    ErrorKind,
    LedgerUnavailable,
    NotFound,
    SimulationRejected,
    SubmissionRejected,
    UrnaError,
)

GENERIC_FAILURE_MESSAGE = "Operation failed."

# Ordered from most to least specific; the first match wins.
REVERT_REASON_PATTERNS = (
    re.compile(r"VM Exception while processing transaction: revert\s+(?P<reason>[^\n\"']+)"),
    re.compile(r"reverted with reason string\s+'(?P<reason>[^']*)'"),
    re.compile(r"execution reverted:\s*(?P<reason>[^\n\"']+)"),
    re.compile(r"\brevert\s+(?P<reason>[^\n\"']+)"),
)

TRANSPORT_MARKERS = (
    "connection refused",
    "connection aborted",
    "connection reset",
    "max retries exceeded",
    "timed out",
    "timeout",
    "could not connect",
    "failed to establish",
    "name or service not known",
)


@dataclass(frozen=True)
class ClassifiedFailure:
    """Resultado de clasificar un fallo remoto.

    English: Result of classifying a remote failure.
    """

    kind: ErrorKind
    message: str
    raw: str
    reason: Optional[str] = None

    def to_error(self, stage: str = "submission") -> UrnaError:
        """Construye la excepción tipada correspondiente.

        English:
            Build the matching typed exception. ``stage`` selects between
            ``SimulationRejected`` and ``SubmissionRejected`` for rejections.
        """
        if self.kind is ErrorKind.LEDGER_UNAVAILABLE:
            return LedgerUnavailable(self.message, raw=self.raw)
        if self.kind is ErrorKind.NOT_FOUND:
            return NotFound(self.message, raw=self.raw)
        if stage == "simulation":
            return SimulationRejected(self.message, raw=self.raw)
        return SubmissionRejected(self.message, raw=self.raw)


def extract_revert_reason(text: str) -> Optional[str]:
    """Extrae el motivo de revert si el texto lo contiene.

    English: Extract the revert reason when present in ``text``.
    """
    for pattern in REVERT_REASON_PATTERNS:
        match = pattern.search(text)
        if match:
            reason = match.group("reason").strip().rstrip(".").strip()
            if reason:
                return reason
    return None


def _failure_text(failure: Any) -> str:
    if failure is None:
        return ""
    if isinstance(failure, str):
        return failure
    parts = []
    message = getattr(failure, "message", None)
    if isinstance(message, str) and message:
        parts.append(message)
    try:
        rendered = str(failure)
    except Exception:  # noqa: BLE001
        rendered = repr(type(failure))
    if rendered and rendered not in parts:
        parts.append(rendered)
    data = getattr(failure, "data", None)
    if isinstance(data, str) and data and data not in parts:
        parts.append(data)
    return " | ".join(parts)


def _looks_like_transport_failure(failure: Any, text: str) -> bool:
    if isinstance(failure, (ConnectionError, TimeoutError)):
        return True
    lowered = text.lower()
    return any(marker in lowered for marker in TRANSPORT_MARKERS)


def classify(failure: Any) -> ClassifiedFailure:
    """Clasifica un fallo remoto (excepción o texto) sin lanzar nunca.

    English:
        Classify a remote failure (exception or text). Never raises: the
        worst case is the generic ``OPERATION_FAILED`` kind.
    """
    try:
        if isinstance(failure, UrnaError):
            return ClassifiedFailure(
                kind=failure.kind,
                message=failure.message,
                raw=failure.raw or failure.message,
                reason=getattr(failure, "reason", None),
            )

        text = _failure_text(failure)
        reason = extract_revert_reason(text)
        if reason:
            return ClassifiedFailure(
                kind=ErrorKind.SUBMISSION_REJECTED,
                message=reason,
                raw=text,
                reason=reason,
            )
        if _looks_like_transport_failure(failure, text):
            return ClassifiedFailure(
                kind=ErrorKind.LEDGER_UNAVAILABLE,
                message="Ledger unavailable. Please try again later.",
                raw=text,
            )
        return ClassifiedFailure(
            kind=ErrorKind.OPERATION_FAILED,
            message=GENERIC_FAILURE_MESSAGE,
            raw=text,
        )
    except Exception:  # noqa: BLE001
        return ClassifiedFailure(
            kind=ErrorKind.OPERATION_FAILED,
            message=GENERIC_FAILURE_MESSAGE,
            raw="<unrenderable failure>",
        )


def display_message(classified: ClassifiedFailure) -> str:
    """Texto para el usuario, con el crudo sólo en el caso genérico.

    English: User-facing text; the raw text is appended only for the generic kind.
    """
    if classified.kind is ErrorKind.OPERATION_FAILED and classified.raw:
        return f"{classified.message} ({classified.raw})"
    return classified.message
