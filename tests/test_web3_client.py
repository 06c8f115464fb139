"""Pruebas del cliente web3 con un nodo falso en memoria.

Tests for the web3 ledger client against an in-memory fake node.
"""

from __future__ import annotations

import asyncio
import json
import time
from types import SimpleNamespace

import pytest
import requests
from eth_account import Account
from tenacity import wait_none
from web3.exceptions import ContractLogicError, TimeExhausted

from urna.config import UrnaSettings
from urna.errors import (
    ConfigurationError,
    LedgerUnavailable,
    NotFound,
    SimulationRejected,
    SubmissionRejected,
    SubmissionUnconfirmed,
)
from urna.ledger.web3_client import VOTING_ABI, Web3LedgerClient
from urna.models import CallDescriptor
from urna.pipeline import Stage, run_remote

CONTRACT = "0x" + "c" * 40
SENDER = "0x" + "1" * 40
TX_HASH = b"\x11" * 32


class FakeCall:
    def __init__(self, node, name, args):
        self.node = node
        self.name = name
        self.args = args

    def _outcome(self, kind, tx):
        self.node.log.append((kind, self.name, self.args, tx))
        behaviour = self.node.behaviours.get((kind, self.name))
        if isinstance(behaviour, list):
            behaviour = behaviour.pop(0) if len(behaviour) > 1 else behaviour[0]
        if isinstance(behaviour, BaseException):
            raise behaviour
        if callable(behaviour):
            return behaviour(*self.args)
        return behaviour

    def call(self, tx=None):
        return self._outcome("call", tx)

    def estimate_gas(self, tx):
        return self._outcome("estimate_gas", tx) or 50_000

    def transact(self, tx):
        self._outcome("transact", tx)
        return TX_HASH

    def build_transaction(self, tx):
        self._outcome("build_transaction", tx)
        return {**tx, "to": CONTRACT, "value": 0, "data": "0x"}


class FakeFunctions:
    def __init__(self, node):
        self._node = node

    def __getattr__(self, name):
        return lambda *args: FakeCall(self._node, name, args)


class FakeEth:
    chain_id = 1337
    gas_price = 1
    accounts = [SENDER]

    def __init__(self, node):
        self.node = node

    def contract(self, address, abi):  # noqa: ARG002
        return SimpleNamespace(functions=FakeFunctions(self.node))

    def get_transaction_count(self, address):  # noqa: ARG002
        return 0

    def send_raw_transaction(self, raw):
        self.node.log.append(("send_raw", None, (raw,), None))
        return TX_HASH

    def wait_for_transaction_receipt(self, tx_hash, timeout):  # noqa: ARG002
        if self.node.receipt_error is not None:
            raise self.node.receipt_error
        return {"status": self.node.receipt_status, "blockNumber": 7, "gasUsed": 41_000}


class FakeWeb3:
    def __init__(self):
        self.log = []
        self.behaviours = {}
        self.receipt_status = 1
        self.receipt_error = None
        self.eth = FakeEth(self)
        self.net = SimpleNamespace(version="5777")


def _client(node, **kwargs) -> Web3LedgerClient:
    kwargs.setdefault("retry_wait", wait_none())
    return Web3LedgerClient(node, CONTRACT, **kwargs)


def test_tuple_returns_are_keyed_by_abi_output_names() -> None:
    node = FakeWeb3()
    node.behaviours[("call", "proposals")] = lambda index: ("Parks", "Green", 3, True)

    record = asyncio.run(_client(node).read_proposal(0))

    assert record == {"name": "Parks", "description": "Green", "voteCount": 3, "isActive": True}


def test_out_of_range_proposal_is_not_found() -> None:
    node = FakeWeb3()
    node.behaviours[("call", "proposals")] = ContractLogicError("execution reverted")

    with pytest.raises(NotFound):
        asyncio.run(_client(node).read_proposal(9))


def test_reads_retry_transport_errors() -> None:
    node = FakeWeb3()
    flaky = requests.exceptions.ConnectionError("Connection refused")
    node.behaviours[("call", "getProposalsCount")] = [flaky, flaky, 3]

    count = asyncio.run(_client(node, read_retries=3).read_proposal_count())

    assert count == 3
    assert sum(1 for entry in node.log if entry[1] == "getProposalsCount") == 3


def test_exhausted_retries_surface_ledger_unavailable() -> None:
    node = FakeWeb3()
    node.behaviours[("call", "voters")] = requests.exceptions.ConnectionError("Connection refused")

    with pytest.raises(LedgerUnavailable):
        asyncio.run(_client(node, read_retries=2).read_voter(SENDER))
    assert sum(1 for entry in node.log if entry[1] == "voters") == 2


def test_voting_status_prefers_the_windowed_getter() -> None:
    node = FakeWeb3()
    node.behaviours[("call", "getVotingStatus")] = (True, 100, 200)
    node.behaviours[("call", "votingOpen")] = False

    windowed = asyncio.run(_client(node).read_voting_status())
    legacy_abi = [item for item in VOTING_ABI if item["name"] != "getVotingStatus"]
    legacy = asyncio.run(_client(node, abi=legacy_abi).read_voting_status())

    assert windowed == {"isOpen": True, "start": 100, "end": 200}
    assert legacy is False


def test_simulation_revert_is_classified_by_the_pipeline() -> None:
    node = FakeWeb3()
    node.behaviours[("call", "vote")] = ContractLogicError("execution reverted: Already voted")

    with pytest.raises(SimulationRejected) as excinfo:
        asyncio.run(run_remote(Stage.SIMULATION, _client(node).simulate_vote(SENDER, 0)))

    assert excinfo.value.reason == "Already voted"
    (entry,) = [item for item in node.log if item[1] == "vote"]
    assert entry[3] == {"from": SENDER}


def test_submit_through_unlocked_account_uses_cost_limit() -> None:
    node = FakeWeb3()

    receipt = asyncio.run(_client(node).submit(CallDescriptor("vote", (1,)), SENDER, 120))

    (entry,) = [item for item in node.log if item[0] == "transact"]
    assert entry[3] == {"from": SENDER, "gas": 120}
    assert receipt.tx_hash == "0x" + "11" * 32
    assert receipt.block_number == 7
    assert receipt.cost_used == 41_000


def test_failed_receipt_is_a_submission_rejection() -> None:
    node = FakeWeb3()
    node.receipt_status = 0

    with pytest.raises(SubmissionRejected) as excinfo:
        asyncio.run(_client(node).submit(CallDescriptor("addProposal", ("A", "B")), SENDER, 120))

    assert excinfo.value.tx_hash == "0x" + "11" * 32


def test_submit_signs_locally_with_configured_key() -> None:
    node = FakeWeb3()
    account = Account.create()

    asyncio.run(
        _client(node, private_key=account.key.hex()).submit(CallDescriptor("vote", (0,)), account.address, 90)
    )

    assert any(entry[0] == "send_raw" for entry in node.log)
    assert not any(entry[0] == "transact" for entry in node.log)


def test_unknown_write_function_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        asyncio.run(_client(FakeWeb3()).estimate_cost(CallDescriptor("selfdestruct"), SENDER))


def test_list_accounts_returns_node_accounts() -> None:
    assert asyncio.run(_client(FakeWeb3()).list_accounts()) == [SENDER]


def _artifact(tmp_path, networks):
    path = tmp_path / "Voting.json"
    path.write_text(json.dumps({"abi": VOTING_ABI, "networks": networks}), encoding="utf-8")
    return path


def test_from_settings_resolves_address_from_artifact(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("URNA_PRIVATE_KEY", raising=False)
    settings = UrnaSettings(contract_artifact=_artifact(tmp_path, {"5777": {"address": CONTRACT}}))

    client = Web3LedgerClient.from_settings(settings, web3=FakeWeb3())

    assert client.contract_address.lower() == CONTRACT


def test_from_settings_rejects_undeployed_network(tmp_path) -> None:
    settings = UrnaSettings(contract_artifact=_artifact(tmp_path, {"1": {"address": CONTRACT}}))

    with pytest.raises(ConfigurationError) as excinfo:
        Web3LedgerClient.from_settings(settings, web3=FakeWeb3())

    assert excinfo.value.message == "Contract not deployed on the current network!"


def test_from_settings_checks_expected_chain(tmp_path) -> None:
    settings = UrnaSettings(contract_address=CONTRACT, expected_chain_id=5)

    with pytest.raises(ConfigurationError):
        Web3LedgerClient.from_settings(settings, web3=FakeWeb3())


def test_missing_receipt_is_unconfirmed_and_not_retryable() -> None:
    node = FakeWeb3()
    node.receipt_error = TimeExhausted("Transaction is not in the chain after 120 seconds")

    with pytest.raises(SubmissionUnconfirmed) as excinfo:
        asyncio.run(_client(node).submit(CallDescriptor("vote", (1,)), SENDER, 120))

    assert excinfo.value.retryable is False
    assert excinfo.value.tx_hash == "0x" + "11" * 32
    assert sum(1 for entry in node.log if entry[0] == "transact") == 1


def test_send_timeout_is_unconfirmed_and_not_retryable() -> None:
    node = FakeWeb3()
    node.behaviours[("transact", "vote")] = lambda *args: time.sleep(0.3)

    with pytest.raises(SubmissionUnconfirmed) as excinfo:
        asyncio.run(_client(node, request_timeout_seconds=0.05).submit(CallDescriptor("vote", (1,)), SENDER, 120))

    assert excinfo.value.retryable is False
    assert excinfo.value.tx_hash is None
    assert isinstance(excinfo.value, LedgerUnavailable)
