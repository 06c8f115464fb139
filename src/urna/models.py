"""Modelos inmutables del estado electoral.

English:
    Immutable election state models. The ledger owns every entity; these are
    read-only copies held by the cache and the pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Roles del gate de autenticación.

    English: Roles produced by the authentication gate.
    """

    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class Proposal:
    """Propuesta del ledger identificada por su índice ordinal.

    Attributes:
        index (int): Posición asignada por el ledger, base cero.
        name (str): Nombre no vacío.
        description (str): Descripción.
        vote_count (int): Votos registrados, no negativo.
        is_active (bool): Si admite votos.

    English:
        Ledger proposal identified by its ordinal index.
    """

    index: int
    name: str
    description: str
    vote_count: int
    is_active: bool = True


@dataclass(frozen=True)
class Voter:
    """Registro de votante para una dirección.

    English:
        Voter record for an account address. ``is_registered`` and
        ``has_voted`` only ever move from False to True.
    """

    address: str
    is_registered: bool
    has_voted: bool
    voted_proposal_index: Optional[int] = None
    display_name: str = ""

    def regresses_from(self, previous: "Voter") -> bool:
        """True si este registro revierte un indicador irreversible.

        English: True when this record drives an irreversible flag backwards.
        """
        return (previous.is_registered and not self.is_registered) or (previous.has_voted and not self.has_voted)


@dataclass(frozen=True)
class VotingPeriod:
    """Ventana de votación ``[start, end)`` reportada por el ledger.

    English:
        Voting window ``[start, end)`` as reported by the ledger. ``is_open``
        is the ledger's own flag (it also covers pauses). The local copy is
        advisory; the ledger decides at submission time.
    """

    start: Optional[datetime]
    end: Optional[datetime]
    is_open: bool

    def is_open_at(self, now: Optional[datetime] = None) -> bool:
        if not self.is_open:
            return False
        if self.start is None or self.end is None:
            return self.is_open
        moment = now or utcnow()
        return self.start <= moment < self.end

    def time_remaining(self, now: Optional[datetime] = None) -> timedelta:
        if self.end is None or not self.is_open_at(now):
            return timedelta(0)
        return self.end - (now or utcnow())

    @classmethod
    def closed(cls) -> "VotingPeriod":
        return cls(start=None, end=None, is_open=False)


@dataclass(frozen=True)
class ElectionSnapshot:
    """Copia consistente del estado del ledger publicada atómicamente.

    English:
        Internally consistent copy of ledger state, published atomically and
        replaced wholesale on every refresh.
    """

    identity: str
    proposals: Tuple[Proposal, ...]
    voter: Optional[Voter]
    period: VotingPeriod
    fetched_at: datetime = field(default_factory=utcnow)
    generation: int = 0

    def proposal(self, index: int) -> Optional[Proposal]:
        if 0 <= index < len(self.proposals):
            return self.proposals[index]
        return None

    @property
    def can_vote(self) -> bool:
        """Indicador de presentación para habilitar el botón de voto.

        English: Display hint mirroring the local precondition check.
        """
        voter = self.voter
        return bool(voter and voter.is_registered and not voter.has_voted and self.period.is_open_at())


@dataclass(frozen=True)
class CallDescriptor:
    """Llamada de contrato: nombre de función y argumentos.

    English: Contract call descriptor (function name and arguments).
    """

    function: str
    args: Tuple[Any, ...] = ()

    def describe(self) -> str:
        rendered = ", ".join(repr(arg) for arg in self.args)
        return f"{self.function}({rendered})"


@dataclass(frozen=True)
class Receipt:
    """Recibo de una transacción aceptada.

    English: Receipt of an accepted transaction.
    """

    tx_hash: str
    block_number: Optional[int] = None
    cost_used: Optional[int] = None
    status: int = 1
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProposalResult:
    """Entrada del recuento ordenado.

    English: Entry of the ranked tally.
    """

    index: int
    name: str
    description: str
    vote_count: int
    percentage: float
