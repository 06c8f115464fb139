"""Caché local del estado electoral.

English:
    Local read model mirroring ledger state. Refresh is always
    caller-triggered; a snapshot is published only after every read has
    completed, and it replaces the previous one wholesale. A failed refresh
    leaves the previous snapshot visible.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .classifier import classify
from .errors import InconsistentLedgerState, LedgerUnavailable, UrnaError
from .ledger.base import LedgerClient
from .logging import redact
from .models import ElectionSnapshot, Proposal, Voter, VotingPeriod
from .schemas import validate_proposal, validate_status, validate_voter

logger = structlog.get_logger(__name__)


async def fetch_proposals(ledger: LedgerClient) -> Tuple[Proposal, ...]:
    """Lee el número de propuestas y luego cada una en orden.

    English:
        Read the proposal count, then every proposal by index sequentially
        over ``[0, count)``; no gaps are assumed.
    """
    count = await ledger.read_proposal_count()
    if count < 0:
        raise InconsistentLedgerState(f"Ledger reported a negative proposal count ({count}).")
    proposals: List[Proposal] = []
    for index in range(count):
        raw = await ledger.read_proposal(index)
        proposals.append(_validated(validate_proposal, raw, index))
    return tuple(proposals)


async def fetch_voter(ledger: LedgerClient, address: str) -> Voter:
    raw = await ledger.read_voter(address)
    return _validated(validate_voter, raw, address)


async def fetch_period(ledger: LedgerClient) -> VotingPeriod:
    raw = await ledger.read_voting_status()
    return _validated(validate_status, raw)


def _validated(validator: Any, *args: Any) -> Any:
    try:
        return validator(*args)
    except ValueError as exc:
        raise InconsistentLedgerState("Ledger returned a malformed record.", raw=str(exc)) from exc


def as_read_error(exc: BaseException) -> UrnaError:
    if isinstance(exc, UrnaError):
        return exc
    classified = classify(exc)
    return LedgerUnavailable("Failed to load voting data. Please try again later.", raw=classified.raw)


class ElectionStateCache:
    """Instantánea del ledger para la identidad activa.

    Example:
        >>> cache = ElectionStateCache(ledger)
        >>> snapshot = await cache.refresh(session.address)
        >>> cache.current() is snapshot
        True
    """

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger
        self._snapshot: Optional[ElectionSnapshot] = None
        self._started = 0
        self._published = 0
        self._observed_voters: Dict[str, Voter] = {}

    @property
    def ledger(self) -> LedgerClient:
        return self._ledger

    def current(self) -> Optional[ElectionSnapshot]:
        return self._snapshot

    def invalidate(self) -> None:
        """Descarta la instantánea (logout o cambio de identidad).

        English:
            Discard the snapshot on logout or identity change. Refreshes that
            are still in flight will not publish afterwards.
        """
        self._snapshot = None
        self._published = self._started
        self._observed_voters.clear()
        logger.info("cache_invalidated")

    async def refresh(self, identity: str) -> ElectionSnapshot:
        """Relee propuestas, votante y periodo y publica el resultado.

        English:
            Re-read proposals, the voter record for ``identity`` and the
            voting status concurrently, then publish one complete snapshot.
            Raises ``LedgerUnavailable`` (or another typed error) and keeps
            the previous snapshot when any read fails.
        """
        self._started += 1
        generation = self._started
        log = logger.bind(identity=redact(identity), generation=generation)
        log.info("cache_refresh_start")

        results = await asyncio.gather(
            fetch_proposals(self._ledger),
            fetch_voter(self._ledger, identity),
            fetch_period(self._ledger),
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            error = as_read_error(failures[0])
            log.error(
                "cache_refresh_failed",
                error_kind=error.kind.value,
                error=error.message,
                failed_reads=len(failures),
            )
            raise error from failures[0]

        proposals, voter, period = results
        previous = self._observed_voters.get(identity)
        if previous is not None and voter.regresses_from(previous):
            log.warning(
                "cache_voter_regression",
                previous_registered=previous.is_registered,
                previous_voted=previous.has_voted,
                registered=voter.is_registered,
                voted=voter.has_voted,
            )
            raise InconsistentLedgerState("Ledger returned a voter record older than one already observed.")

        snapshot = ElectionSnapshot(
            identity=identity,
            proposals=proposals,
            voter=voter,
            period=period,
            generation=generation,
        )
        if generation <= self._published:
            log.info("cache_refresh_superseded", published_generation=self._published)
            return snapshot

        self._observed_voters[identity] = voter
        self._snapshot = snapshot
        self._published = generation
        log.info(
            "cache_refresh_published",
            proposals=len(proposals),
            registered=voter.is_registered,
            voted=voter.has_voted,
            voting_open=period.is_open,
        )
        return snapshot
