"""Esquemas de validación para registros crudos del ledger.

Los registros llegan con los nombres de campo del contrato (camelCase) y en
dos variantes históricas: ``votedProposalId`` frente a ``voteIndex`` y
``votingOpen()`` (sólo booleano) frente a ``getVotingStatus()`` (tupla con
ventana). La variante posterior es la canónica; la anterior se migra.

English:
    Validation schemas for raw ledger records. Records arrive with contract
    field names (camelCase) and in two historical variants; the later variant
    is canonical and the older one is migrated before validation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .models import Proposal, Voter, VotingPeriod

PROPOSAL_FIELDS = ("name", "description", "voteCount", "isActive")
VOTER_FIELDS = ("isRegistered", "hasVoted", "voteIndex", "name")
STATUS_FIELDS = ("isOpen", "start", "end")


class ProposalRecord(BaseModel):
    """Esquema de una propuesta del contrato.

    English: Contract proposal schema.
    """

    name: str = Field(min_length=1)
    description: str = ""
    vote_count: int = Field(ge=0)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        """Normaliza texto eliminando espacios y valida no vacío.

        English:
            Normalize text by trimming whitespace and validate non-empty.
        """
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Proposal name cannot be empty")
        return cleaned


class VoterRecord(BaseModel):
    """Esquema del registro de votante.

    English: Voter record schema.
    """

    is_registered: bool = False
    has_voted: bool = False
    voted_proposal_index: Optional[int] = Field(default=None, ge=0)
    display_name: str = ""

    @model_validator(mode="after")
    def index_matches_has_voted(self) -> "VoterRecord":
        """El índice sólo tiene sentido cuando ``has_voted`` es verdadero.

        English:
            Solidity returns 0 for an unset index, so it is dropped unless
            ``has_voted`` is true; a voted record must carry an index.
        """
        if not self.has_voted:
            self.voted_proposal_index = None
        elif self.voted_proposal_index is None:
            raise ValueError("voted record without votedProposalIndex")
        return self


class VotingStatusRecord(BaseModel):
    """Esquema del estado de votación.

    English: Voting status schema. ``0`` timestamps mean "not set".
    """

    is_open: bool = False
    start: Optional[int] = Field(default=None, ge=0)
    end: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def end_after_start(self) -> "VotingStatusRecord":
        if not self.start:
            self.start = None
        if not self.end:
            self.end = None
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError(f"voting end ({self.end}) must be after start ({self.start})")
        return self


def _as_mapping(payload: Any, fields: Sequence[str]) -> Dict[str, Any]:
    """Convierte tuplas posicionales del contrato en dict.

    English: Turn positional contract tuples into a dict keyed by ``fields``.
    """
    if isinstance(payload, Mapping):
        return dict(payload)
    if isinstance(payload, (list, tuple)):
        return {key: value for key, value in zip(fields, payload)}
    raise ValueError(f"Unsupported ledger payload type: {type(payload).__name__}")


def _migrate_proposal(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Migra claves de propuesta desde el formato del contrato.

    English: Migrate proposal keys from the contract format.
    """
    if "voteCount" in payload and "vote_count" not in payload:
        payload["vote_count"] = payload.pop("voteCount")
    if "isActive" in payload and "is_active" not in payload:
        payload["is_active"] = payload.pop("isActive")
    return payload


def _migrate_voter(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Migra claves de votante; acepta ambas variantes del índice.

    English: Migrate voter keys; both index variants are accepted.
    """
    for legacy in ("voteIndex", "votedProposalId", "votedProposalIndex", "vote"):
        if legacy in payload and "voted_proposal_index" not in payload:
            payload["voted_proposal_index"] = payload.pop(legacy)
    if "isRegistered" in payload and "is_registered" not in payload:
        payload["is_registered"] = payload.pop("isRegistered")
    if "hasVoted" in payload and "has_voted" not in payload:
        payload["has_voted"] = payload.pop("hasVoted")
    for legacy in ("name", "displayName"):
        if legacy in payload and "display_name" not in payload:
            payload["display_name"] = payload.pop(legacy)
    return payload


def _migrate_status(payload: Any) -> Dict[str, Any]:
    """Migra el estado; un booleano suelto es la variante ``votingOpen()``.

    English: Migrate status; a bare boolean is the ``votingOpen()`` variant.
    """
    if isinstance(payload, bool):
        return {"is_open": payload}
    data = _as_mapping(payload, STATUS_FIELDS)
    for legacy in ("isOpen", "votingOpen", "active"):
        if legacy in data and "is_open" not in data:
            data["is_open"] = data.pop(legacy)
    for legacy in ("startTime", "votingStart"):
        if legacy in data and "start" not in data:
            data["start"] = data.pop(legacy)
    for legacy in ("endTime", "votingEnd"):
        if legacy in data and "end" not in data:
            data["end"] = data.pop(legacy)
    return data


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def validate_proposal(payload: Any, index: int) -> Proposal:
    """Valida y normaliza una propuesta cruda.

    English: Validate and normalize a raw proposal. Raises ``ValueError``.
    """
    data = _migrate_proposal(_as_mapping(payload, PROPOSAL_FIELDS))
    try:
        record = ProposalRecord.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Proposal {index} failed validation: {exc}") from exc
    return Proposal(
        index=index,
        name=record.name,
        description=record.description,
        vote_count=record.vote_count,
        is_active=record.is_active,
    )


def validate_voter(payload: Any, address: str) -> Voter:
    """Valida y normaliza un registro de votante crudo.

    English: Validate and normalize a raw voter record. Raises ``ValueError``.
    """
    data = _migrate_voter(_as_mapping(payload, VOTER_FIELDS))
    try:
        record = VoterRecord.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Voter record for {address} failed validation: {exc}") from exc
    return Voter(
        address=address,
        is_registered=record.is_registered,
        has_voted=record.has_voted,
        voted_proposal_index=record.voted_proposal_index,
        display_name=record.display_name,
    )


def validate_status(payload: Any) -> VotingPeriod:
    """Valida y normaliza el estado de votación crudo.

    English: Validate and normalize the raw voting status. Raises ``ValueError``.
    """
    data = _migrate_status(payload)
    try:
        record = VotingStatusRecord.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Voting status failed validation: {exc}") from exc
    return VotingPeriod(
        start=_from_timestamp(record.start),
        end=_from_timestamp(record.end),
        is_open=record.is_open,
    )
