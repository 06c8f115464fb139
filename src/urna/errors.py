"""Taxonomía de errores de la capa de orquestación electoral.

English:
    Error taxonomy for the election orchestration layer. Every pipeline
    failure reaches the caller as one of these types, carrying a ``kind`` and
    a human-readable ``message`` ready for display.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Tipos de error expuestos al llamador.

    English: Error kinds surfaced to callers.
    """

    VALIDATION = "validation"
    PRECONDITION = "precondition"
    SIMULATION_REJECTED = "simulation_rejected"
    SUBMISSION_REJECTED = "submission_rejected"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    SUBMISSION_UNCONFIRMED = "submission_unconfirmed"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    PERMISSION_DENIED = "permission_denied"
    CONFIGURATION = "configuration"
    INCONSISTENT_STATE = "inconsistent_state"
    OPERATION_FAILED = "operation_failed"


class PreconditionCode(str, Enum):
    """Regla de negocio violada detectada antes de enviar.

    English: Business rule already violated, detected before submitting.
    """

    SNAPSHOT_MISSING = "snapshot_missing"
    PROPOSAL_OUT_OF_RANGE = "proposal_out_of_range"
    PROPOSAL_INACTIVE = "proposal_inactive"
    NOT_REGISTERED = "not_registered"
    ALREADY_VOTED = "already_voted"
    VOTING_CLOSED = "voting_closed"
    DUPLICATE_REGISTRATION = "duplicate_registration"


class UrnaError(Exception):
    """Error base con tipo y mensaje para mostrar.

    English: Base error carrying a kind and a display message.
    """

    kind: ErrorKind = ErrorKind.OPERATION_FAILED
    retryable: bool = False

    def __init__(self, message: str, *, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.raw = raw


class ValidationError(UrnaError):
    """Entrada local inválida; nunca contacta el ledger.

    English: Locally detectable bad input; never contacts the ledger.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class PreconditionError(UrnaError):
    """Regla de negocio ya violada según la última lectura.

    English: Business rule already violated per the latest local or remote read.
    """

    kind = ErrorKind.PRECONDITION

    def __init__(self, code: PreconditionCode, message: str, *, source: str = "local") -> None:
        super().__init__(message)
        self.code = code
        self.source = source


class SimulationRejected(UrnaError):
    """La ejecución en seco indica que la llamada fallaría.

    English: The dry run reports the call would fail.
    """

    kind = ErrorKind.SIMULATION_REJECTED

    def __init__(self, reason: str, *, raw: Optional[str] = None) -> None:
        super().__init__(reason, raw=raw)
        self.reason = reason


class SubmissionRejected(UrnaError):
    """El ledger rechazó la escritura real.

    English: The ledger rejected the actual write after simulation passed.
    """

    kind = ErrorKind.SUBMISSION_REJECTED

    def __init__(self, reason: str, *, raw: Optional[str] = None, tx_hash: Optional[str] = None) -> None:
        super().__init__(reason, raw=raw)
        self.reason = reason
        self.tx_hash = tx_hash


class LedgerUnavailable(UrnaError):
    """Fallo de transporte o conectividad; reintentable.

    English: Transport/connectivity failure; retryable by re-invoking.
    """

    kind = ErrorKind.LEDGER_UNAVAILABLE
    retryable = True


class SubmissionUnconfirmed(LedgerUnavailable):
    """El envío pudo llegar al ledger pero no hay recibo; no reenviar.

    English:
        The write may have reached the ledger but no receipt came back.
        Resending could record it twice, so callers must refresh instead.
    """

    kind = ErrorKind.SUBMISSION_UNCONFIRMED
    retryable = False

    def __init__(self, message: str, *, raw: Optional[str] = None, tx_hash: Optional[str] = None) -> None:
        super().__init__(message, raw=raw)
        self.tx_hash = tx_hash


class NotFound(UrnaError):
    """La entidad referenciada no existe en el ledger.

    English: Referenced entity does not exist on the ledger.
    """

    kind = ErrorKind.NOT_FOUND


class InvalidCredentials(UrnaError):
    kind = ErrorKind.INVALID_CREDENTIALS


class PermissionDenied(UrnaError):
    kind = ErrorKind.PERMISSION_DENIED


class ConfigurationError(UrnaError):
    kind = ErrorKind.CONFIGURATION


class InconsistentLedgerState(UrnaError):
    """Un registro refrescado revertiría un indicador irreversible.

    English: A refreshed record would drive an irreversible flag backwards.
    """

    kind = ErrorKind.INCONSISTENT_STATE
