"""Contrato mínimo del cliente del ledger consumido por el núcleo.

English:
    Narrow ledger client contract consumed by the core. Every call is
    request/response and asynchronous. Implementations raise the typed errors
    of ``urna.errors``: ``NotFound`` for an out-of-range proposal,
    ``SimulationRejected`` / ``SubmissionRejected`` carrying the classified
    reason, and ``LedgerUnavailable`` for transport failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Union

from ..models import CallDescriptor, Receipt

RawRecord = Union[Dict[str, Any], tuple, bool]


class LedgerClient(ABC):
    @abstractmethod
    async def read_proposal_count(self) -> int:
        ...

    @abstractmethod
    async def read_proposal(self, index: int) -> RawRecord:
        """Devuelve ``{name, description, voteCount, isActive}``.

        English: Returns the raw proposal; raises ``NotFound`` out of range.
        """

    @abstractmethod
    async def read_voter(self, address: str) -> RawRecord:
        """Devuelve ``{isRegistered, hasVoted, voteIndex, name}``."""

    @abstractmethod
    async def read_voting_status(self) -> RawRecord:
        """Devuelve ``{isOpen, start, end}``."""

    @abstractmethod
    async def simulate_vote(self, address: str, proposal_index: int) -> None:
        """Evalúa el voto sin confirmarlo.

        English: Evaluate the vote without committing; raises ``SimulationRejected``.
        """

    @abstractmethod
    async def estimate_cost(self, call: CallDescriptor, address: str) -> int:
        ...

    @abstractmethod
    async def submit(self, call: CallDescriptor, address: str, cost_limit: int) -> Receipt:
        """Envía la llamada; único paso con efecto observable.

        English: Send the call; the only stage with an external side effect.
        """
