"""
======================== ÍNDICE / INDEX ========================
1. Descripción general / Overview
2. Componentes principales / Main components
3. Notas de mantenimiento / Maintenance notes

======================== ESPAÑOL ========================
Archivo: `conftest.py`.
Fixtures compartidas: bloqueo de red, un ledger falso en memoria que
registra cada llamada y permite inyectar fallos, y sesiones de prueba.

Componentes detectados:
  - block_network
  - FakeLedger
  - make_ledger / ledger / cache
  - user_session / admin_session

======================== ENGLISH ========================
File: `conftest.py`.
Shared fixtures: network blocking, an in-memory fake ledger that records
every call and supports failure injection, and test sessions.
"""

from __future__ import annotations

import asyncio
import socket
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

REPO_ROOT = Path(__file__).resolve().parent
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from urna.cache import ElectionStateCache  # noqa: E402
from urna.errors import NotFound, SimulationRejected  # noqa: E402
from urna.ledger.base import LedgerClient  # noqa: E402
from urna.models import CallDescriptor, Receipt, Role  # noqa: E402
from urna.session import Session  # noqa: E402

VOTER_ADDRESS = "0x" + "1" * 40
OTHER_ADDRESS = "0x" + "2" * 40
ADMIN_ADDRESS = "0x" + "a" * 40
NEW_VOTER_ADDRESS = "0x" + "3" * 40

# 2020-01-01 .. 2100-01-01 in unix seconds.
OPEN_WINDOW = (1577836800, 4102444800)


class FakeLedger(LedgerClient):
    """Ledger en memoria con registro de llamadas.

    English:
        In-memory ledger recording every call as ``(name, args)``. Failures
        are injected per method with ``fail``; ``hold`` parks a method on an
        ``asyncio.Event`` until the test releases it.
    """

    def __init__(
        self,
        proposals: Optional[List[Dict[str, Any]]] = None,
        voters: Optional[Dict[str, Dict[str, Any]]] = None,
        status: Any = None,
        estimate: int = 100,
    ) -> None:
        self.proposals = [dict(item) for item in (proposals or [])]
        self.voters = {address: dict(record) for address, record in (voters or {}).items()}
        self.status = status if status is not None else {"isOpen": True, "start": OPEN_WINDOW[0], "end": OPEN_WINDOW[1]}
        self.estimate = estimate
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._failures: Dict[str, List[BaseException]] = {}
        self._sticky: Dict[str, BaseException] = {}
        self._holds: Dict[str, asyncio.Event] = {}
        self._tx = 0

    def fail(self, name: str, exc: BaseException, *, times: Optional[int] = 1) -> None:
        if times is None:
            self._sticky[name] = exc
        else:
            self._failures.setdefault(name, []).extend([exc] * times)

    def hold(self, name: str) -> asyncio.Event:
        event = asyncio.Event()
        self._holds[name] = event
        return event

    def called(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        event = self._holds.pop(name, None)
        if event is not None:
            await event.wait()
        if name in self._sticky:
            raise self._sticky[name]
        queued = self._failures.get(name)
        if queued:
            raise queued.pop(0)

    async def read_proposal_count(self) -> int:
        await self._enter("read_proposal_count")
        return len(self.proposals)

    async def read_proposal(self, index: int) -> Dict[str, Any]:
        await self._enter("read_proposal", index)
        if not 0 <= index < len(self.proposals):
            raise NotFound(f"Proposal {index} does not exist.")
        return dict(self.proposals[index])

    async def read_voter(self, address: str) -> Dict[str, Any]:
        await self._enter("read_voter", address)
        return dict(self.voters.get(address, {"isRegistered": False, "hasVoted": False, "voteIndex": 0, "name": ""}))

    async def read_voting_status(self) -> Any:
        await self._enter("read_voting_status")
        return dict(self.status) if isinstance(self.status, dict) else self.status

    async def simulate_vote(self, address: str, proposal_index: int) -> None:
        await self._enter("simulate_vote", address, proposal_index)
        voter = self.voters.get(address, {})
        if voter.get("hasVoted"):
            raise SimulationRejected("Already voted", raw="execution reverted: Already voted")

    async def estimate_cost(self, call: CallDescriptor, address: str) -> int:
        await self._enter("estimate_cost", call, address)
        return self.estimate

    async def submit(self, call: CallDescriptor, address: str, cost_limit: int) -> Receipt:
        await self._enter("submit", call, address, cost_limit)
        if call.function == "vote":
            (index,) = call.args
            self.proposals[index]["voteCount"] += 1
            voter = self.voters.setdefault(address, {"isRegistered": True, "name": ""})
            voter.update({"hasVoted": True, "voteIndex": index})
        elif call.function == "addVoter":
            voter_address, name = call.args
            self.voters[voter_address] = {"isRegistered": True, "hasVoted": False, "voteIndex": 0, "name": name}
        elif call.function == "addProposal":
            name, description = call.args
            self.proposals.append({"name": name, "description": description, "voteCount": 0, "isActive": True})
        elif call.function == "setVotingPeriod":
            start, end = call.args
            self.status = {"isOpen": True, "start": start, "end": end}
        self._tx += 1
        return Receipt(tx_hash=f"0x{self._tx:064x}", block_number=self._tx, cost_used=cost_limit - 1)


def default_proposals() -> List[Dict[str, Any]]:
    return [
        {"name": "Parks", "description": "More green space", "voteCount": 0, "isActive": True},
        {"name": "Roads", "description": "Fix potholes", "voteCount": 0, "isActive": True},
        {"name": "Library", "description": "Longer hours", "voteCount": 0, "isActive": True},
    ]


@pytest.fixture(autouse=True)
def block_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """Impide conexiones de red reales en tests.

    English:
        Prevents real network connections in tests.
    """

    def guarded_connect(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("Network access is disabled during tests.")

    def guarded_create_connection(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("Network access is disabled during tests.")

    monkeypatch.setattr(socket.socket, "connect", guarded_connect, raising=True)
    monkeypatch.setattr(socket, "create_connection", guarded_create_connection, raising=True)


@pytest.fixture
def make_ledger():
    """Fábrica de ``FakeLedger`` con tres propuestas y un votante registrado.

    English: Factory for a ``FakeLedger`` with three proposals and one registered voter.
    """

    def factory(**overrides: Any) -> FakeLedger:
        overrides.setdefault("proposals", default_proposals())
        overrides.setdefault(
            "voters",
            {VOTER_ADDRESS: {"isRegistered": True, "hasVoted": False, "voteIndex": 0, "name": "Ada"}},
        )
        return FakeLedger(**overrides)

    return factory


@pytest.fixture
def ledger(make_ledger) -> FakeLedger:
    return make_ledger()


@pytest.fixture
def cache(ledger: FakeLedger) -> ElectionStateCache:
    return ElectionStateCache(ledger)


@pytest.fixture
def user_session() -> Session:
    return Session(username="1", role=Role.USER, address=VOTER_ADDRESS, token=1)


@pytest.fixture
def admin_session() -> Session:
    return Session(username="admin", role=Role.ADMIN, address=ADMIN_ADDRESS, token=1)
