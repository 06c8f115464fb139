"""Pruebas de la caché del estado electoral.

Tests for the election state cache.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import VOTER_ADDRESS
from urna.cache import ElectionStateCache, fetch_proposals
from urna.errors import InconsistentLedgerState, LedgerUnavailable, NotFound


def test_refresh_publishes_complete_snapshot(ledger, cache) -> None:
    snapshot = asyncio.run(cache.refresh(VOTER_ADDRESS))

    assert cache.current() is snapshot
    assert [proposal.name for proposal in snapshot.proposals] == ["Parks", "Roads", "Library"]
    assert [proposal.index for proposal in snapshot.proposals] == [0, 1, 2]
    assert snapshot.voter.is_registered is True
    assert snapshot.period.is_open is True
    assert snapshot.identity == VOTER_ADDRESS


def test_proposals_are_read_sequentially_over_count(ledger) -> None:
    asyncio.run(fetch_proposals(ledger))

    reads = [args for name, args in ledger.calls if name == "read_proposal"]
    assert ledger.calls[0][0] == "read_proposal_count"
    assert reads == [(0,), (1,), (2,)]


def test_failed_read_keeps_previous_snapshot(ledger, cache) -> None:
    """Español: Si falla la tercera lectura, la instantánea previa sigue visible.

    English: When the third read fails, the prior snapshot stays visible.
    """
    first = asyncio.run(cache.refresh(VOTER_ADDRESS))
    ledger.proposals[0]["voteCount"] = 9
    ledger.fail("read_voting_status", ConnectionRefusedError("Connection refused"))

    with pytest.raises(LedgerUnavailable) as excinfo:
        asyncio.run(cache.refresh(VOTER_ADDRESS))

    assert excinfo.value.message == "Failed to load voting data. Please try again later."
    assert cache.current() is first
    assert cache.current().proposals[0].vote_count == 0


def test_unexpected_not_found_during_scan_is_typed(ledger, cache) -> None:
    ledger.fail("read_proposal", NotFound("Proposal 0 does not exist."))

    with pytest.raises(NotFound):
        asyncio.run(cache.refresh(VOTER_ADDRESS))
    assert cache.current() is None


def test_malformed_record_raises_inconsistent_state(ledger, cache) -> None:
    ledger.proposals[1]["name"] = ""

    with pytest.raises(InconsistentLedgerState):
        asyncio.run(cache.refresh(VOTER_ADDRESS))


def test_voter_flag_regression_is_rejected(ledger, cache) -> None:
    ledger.voters[VOTER_ADDRESS].update({"hasVoted": True, "voteIndex": 1})
    voted = asyncio.run(cache.refresh(VOTER_ADDRESS))
    ledger.voters[VOTER_ADDRESS].update({"hasVoted": False, "voteIndex": 0})

    with pytest.raises(InconsistentLedgerState):
        asyncio.run(cache.refresh(VOTER_ADDRESS))
    assert cache.current() is voted


def test_invalidate_discards_snapshot_and_observed_voters(ledger, cache) -> None:
    ledger.voters[VOTER_ADDRESS].update({"hasVoted": True, "voteIndex": 1})
    asyncio.run(cache.refresh(VOTER_ADDRESS))

    cache.invalidate()
    ledger.voters[VOTER_ADDRESS].update({"hasVoted": False, "voteIndex": 0})
    snapshot = asyncio.run(cache.refresh(VOTER_ADDRESS))

    assert snapshot.voter.has_voted is False


def test_superseded_refresh_does_not_publish(ledger) -> None:
    """Español: Gana el refresco iniciado más recientemente.

    English: The most recently started refresh wins publication.
    """
    cache = ElectionStateCache(ledger)

    async def scenario():
        gate = ledger.hold("read_voting_status")
        slow = asyncio.create_task(cache.refresh(VOTER_ADDRESS))
        await asyncio.sleep(0)
        fast = await cache.refresh(VOTER_ADDRESS)
        gate.set()
        stale = await slow
        return fast, stale

    fast, stale = asyncio.run(scenario())

    assert cache.current() is fast
    assert stale.generation < fast.generation
    assert cache.current() is not stale


def test_refresh_in_flight_during_invalidate_is_dropped(ledger) -> None:
    cache = ElectionStateCache(ledger)

    async def scenario():
        gate = ledger.hold("read_voting_status")
        pending = asyncio.create_task(cache.refresh(VOTER_ADDRESS))
        await asyncio.sleep(0)
        cache.invalidate()
        gate.set()
        return await pending

    asyncio.run(scenario())

    assert cache.current() is None
