"""Recuento ordenado con porcentajes.

English:
    Ranked tally with percentages, read straight from the ledger. There is no
    snapshot isolation against concurrent votes; a tally computed while votes
    land may mix counts from slightly different ledger states.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import structlog

from .cache import as_read_error, fetch_proposals
from .ledger.base import LedgerClient
from .models import Proposal, ProposalResult

logger = structlog.get_logger(__name__)


def rank_proposals(proposals: Tuple[Proposal, ...]) -> List[ProposalResult]:
    """Ordena por votos descendentes; los empates conservan el índice.

    English:
        Rank by vote count descending; ties keep ascending index order since
        ``sorted`` is stable. Percentages are 0 when no votes exist.
    """
    total = sum(proposal.vote_count for proposal in proposals)
    ordered = sorted(proposals, key=lambda proposal: (-proposal.vote_count, proposal.index))
    return [
        ProposalResult(
            index=proposal.index,
            name=proposal.name,
            description=proposal.description,
            vote_count=proposal.vote_count,
            percentage=(proposal.vote_count / total * 100) if total > 0 else 0.0,
        )
        for proposal in ordered
    ]


@dataclass(frozen=True)
class Tally:
    results: Tuple[ProposalResult, ...]

    @property
    def total_votes(self) -> int:
        return sum(result.vote_count for result in self.results)

    @property
    def winners(self) -> Tuple[ProposalResult, ...]:
        """Todas las entradas con el máximo; vacío si no hay votos.

        English: Every entry sharing the maximum count; empty with no votes.
        """
        if self.total_votes == 0:
            return ()
        top = self.results[0].vote_count
        return tuple(result for result in self.results if result.vote_count == top)


class ResultsAggregator:
    """Lee todas las propuestas y produce el recuento.

    English: Read every proposal and produce the ranked tally.
    """

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger

    async def compute_results(self) -> List[ProposalResult]:
        try:
            proposals = await fetch_proposals(self._ledger)
        except Exception as exc:  # noqa: BLE001
            error = as_read_error(exc)
            logger.error("results_read_failed", error_kind=error.kind.value, error=error.message)
            if error is exc:
                raise
            raise error from exc
        results = rank_proposals(proposals)
        logger.info("results_computed", proposals=len(results), total_votes=sum(r.vote_count for r in results))
        return results

    async def compute_tally(self) -> Tally:
        return Tally(results=tuple(await self.compute_results()))
