"""
======================== ÍNDICE / INDEX ========================
1. Descripción general / Overview
2. Componentes principales / Main components
3. Notas de mantenimiento / Maintenance notes

======================== ESPAÑOL ========================
Archivo: `src/urna/ledger/web3_client.py`.
Cliente del ledger sobre un nodo JSON-RPC usando web3. Las llamadas de web3
son bloqueantes, así que se ejecutan en un hilo con ``asyncio.to_thread`` y
un tiempo límite. Sólo las lecturas se reintentan ante errores de
transporte; los envíos nunca.

Componentes detectados:
  - VOTING_ABI
  - load_artifact
  - resolve_contract_address
  - build_web3
  - Web3LedgerClient

Notas:
- La clave privada se lee sólo de ``URNA_PRIVATE_KEY``; sin clave, el nodo
  firma con sus cuentas desbloqueadas (Ganache).

======================== ENGLISH ========================
File: `src/urna/ledger/web3_client.py`.
Ledger client over a JSON-RPC node using web3. web3 calls block, so they
run in a worker thread via ``asyncio.to_thread`` under a timeout. Only reads
are retried on transport errors; submissions never are.

Detected components:
  - VOTING_ABI
  - load_artifact
  - resolve_contract_address
  - build_web3
  - Web3LedgerClient

Notes:
- The private key comes only from ``URNA_PRIVATE_KEY``; without it the node
  signs with its unlocked accounts (Ganache).
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
import structlog
from eth_account import Account
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted

from ..classifier import classify
from ..config import UrnaSettings, resolve_private_key
from ..errors import (
    ConfigurationError,
    LedgerUnavailable,
    NotFound,
    SubmissionRejected,
    SubmissionUnconfirmed,
    UrnaError,
)
from ..logging import redact
from ..models import CallDescriptor, Receipt
from .base import LedgerClient, RawRecord

logger = structlog.get_logger(__name__)

UNAVAILABLE_MESSAGE = "Ledger unavailable. Please try again later."
GENERIC_REJECTION = "Transaction was rejected by the ledger."
UNCONFIRMED_MESSAGE = "Transaction sent but not confirmed. Refresh to check its status before trying again."

TRANSPORT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)

WRITE_FUNCTIONS = frozenset({"vote", "addVoter", "addProposal", "setVotingPeriod"})


def _fn(name: str, inputs: Sequence[tuple], outputs: Sequence[tuple], mutability: str) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": arg, "type": kind, "internalType": kind} for arg, kind in inputs],
        "outputs": [{"name": arg, "type": kind, "internalType": kind} for arg, kind in outputs],
    }


# Used when no Truffle artifact supplies the deployed ABI.
VOTING_ABI: List[Dict[str, Any]] = [
    _fn("getProposalsCount", (), (("", "uint256"),), "view"),
    _fn(
        "proposals",
        (("", "uint256"),),
        (("name", "string"), ("description", "string"), ("voteCount", "uint256"), ("isActive", "bool")),
        "view",
    ),
    _fn(
        "voters",
        (("", "address"),),
        (("isRegistered", "bool"), ("hasVoted", "bool"), ("voteIndex", "uint256"), ("name", "string")),
        "view",
    ),
    _fn("getVotingStatus", (), (("isOpen", "bool"), ("start", "uint256"), ("end", "uint256")), "view"),
    _fn("votingOpen", (), (("", "bool"),), "view"),
    _fn("addVoter", (("_voter", "address"), ("_name", "string")), (), "nonpayable"),
    _fn("addProposal", (("_name", "string"), ("_description", "string")), (), "nonpayable"),
    _fn("setVotingPeriod", (("_start", "uint256"), ("_end", "uint256")), (), "nonpayable"),
    _fn("vote", (("_proposalIndex", "uint256"),), (), "nonpayable"),
]


def load_artifact(path: Path) -> Dict[str, Any]:
    """Carga un artefacto Truffle (``abi`` y ``networks``).

    English: Load a Truffle build artifact (``abi`` and ``networks``).
    """
    try:
        artifact = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unable to read contract artifact {Path(path).as_posix()}: {exc}") from exc
    if not isinstance(artifact, dict) or "abi" not in artifact:
        raise ConfigurationError(f"{Path(path).name} is not a contract artifact (missing 'abi').")
    return artifact


def resolve_contract_address(artifact: Dict[str, Any], network_id: str) -> str:
    deployed = (artifact.get("networks") or {}).get(str(network_id)) or {}
    address = deployed.get("address")
    if not address:
        raise ConfigurationError("Contract not deployed on the current network!")
    return address


def build_web3(rpc_url: str, timeout_seconds: float) -> Web3:
    """Construye un cliente Web3 sobre HTTP.

    English: Build a Web3 client over HTTP.
    """
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds}))


def _normalize_record(value: Any, outputs: Sequence[Dict[str, Any]]) -> RawRecord:
    """Convierte tuplas con salidas nombradas en mapas.

    English: Turn tuple returns with named ABI outputs into mappings.
    """
    if isinstance(value, (list, tuple)) and outputs and all(item.get("name") for item in outputs):
        return dict(zip((item["name"] for item in outputs), value))
    if isinstance(value, list):
        return tuple(value)
    return value


class Web3LedgerClient(LedgerClient):
    """Implementación de ``LedgerClient`` sobre un contrato de votación.

    English: ``LedgerClient`` implementation over a deployed voting contract.
    """

    def __init__(
        self,
        web3: Any,
        contract_address: str,
        *,
        abi: Optional[List[Dict[str, Any]]] = None,
        private_key: Optional[str] = None,
        request_timeout_seconds: float = 10.0,
        receipt_timeout_seconds: float = 120.0,
        read_retries: int = 3,
        retry_wait: Any = None,
    ) -> None:
        self._web3 = web3
        self._abi = abi or VOTING_ABI
        self._address = Web3.to_checksum_address(contract_address)
        self._contract = web3.eth.contract(address=self._address, abi=self._abi)
        self._account = Account.from_key(private_key) if private_key else None
        self._private_key = private_key
        self._timeout = request_timeout_seconds
        self._receipt_timeout = receipt_timeout_seconds
        self._read_retries = read_retries
        self._retry_wait = retry_wait if retry_wait is not None else wait_exponential(multiplier=0.5, min=0.5, max=4)
        self._functions = {item["name"]: item for item in self._abi if item.get("type") == "function"}

    @classmethod
    def from_settings(cls, settings: UrnaSettings, *, web3: Any = None) -> "Web3LedgerClient":
        """Construye el cliente desde la configuración, verificando la red.

        English:
            Build the client from settings. The contract address comes from
            ``contract_address`` or from the artifact's entry for the node's
            network id; ``expected_chain_id`` is checked when set.
        """
        web3 = web3 or build_web3(settings.rpc_url, settings.request_timeout_seconds)
        try:
            chain_id = int(web3.eth.chain_id)
            network_id = str(web3.net.version)
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailable(UNAVAILABLE_MESSAGE, raw=str(exc)) from exc

        if settings.expected_chain_id is not None and chain_id != settings.expected_chain_id:
            raise ConfigurationError(
                f"Connected to chain {chain_id}, expected {settings.expected_chain_id}. Switch networks."
            )

        abi = None
        address = settings.contract_address
        if settings.contract_artifact is not None:
            artifact = load_artifact(settings.contract_artifact)
            abi = artifact["abi"]
            if not address:
                address = resolve_contract_address(artifact, network_id)
        if not address:
            raise ConfigurationError("Set contract_address or contract_artifact to locate the voting contract.")

        logger.info("ledger_client_ready", chain_id=chain_id, network_id=network_id, contract=redact(address))
        return cls(
            web3,
            address,
            abi=abi,
            private_key=resolve_private_key(),
            request_timeout_seconds=settings.request_timeout_seconds,
            receipt_timeout_seconds=settings.receipt_timeout_seconds,
            read_retries=settings.read_retries,
        )

    @property
    def contract_address(self) -> str:
        return self._address

    async def _in_thread(self, func: Callable[[], Any], timeout: float) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise LedgerUnavailable(UNAVAILABLE_MESSAGE, raw="ledger call timed out") from exc

    def _with_retries(self, func: Callable[[], Any]) -> Callable[[], Any]:
        def attempt() -> Any:
            for attempt_state in Retrying(
                retry=retry_if_exception_type(TRANSPORT_ERRORS),
                stop=stop_after_attempt(self._read_retries),
                wait=self._retry_wait,
                reraise=True,
            ):
                with attempt_state:
                    return func()
            return None

        return attempt

    async def _read(self, name: str, *args: Any) -> Any:
        function = getattr(self._contract.functions, name)
        try:
            value = await self._in_thread(self._with_retries(lambda: function(*args).call()), self._timeout)
        except UrnaError:
            raise
        except TRANSPORT_ERRORS as exc:
            logger.warning("ledger_read_unavailable", function=name, error=str(exc))
            raise LedgerUnavailable(UNAVAILABLE_MESSAGE, raw=str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            classified = classify(exc)
            logger.warning("ledger_read_failed", function=name, error_kind=classified.kind.value, raw=classified.raw)
            raise LedgerUnavailable("Failed to load voting data. Please try again later.", raw=classified.raw) from exc
        return _normalize_record(value, self._functions.get(name, {}).get("outputs", ()))

    async def read_proposal_count(self) -> int:
        return int(await self._read("getProposalsCount"))

    async def read_proposal(self, index: int) -> RawRecord:
        function = self._contract.functions.proposals
        try:
            value = await self._in_thread(self._with_retries(lambda: function(index).call()), self._timeout)
        except UrnaError:
            raise
        except (ContractLogicError, BadFunctionCallOutput) as exc:
            # Out-of-range array access reverts without a reason.
            raise NotFound(f"Proposal {index} does not exist.", raw=str(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailable(UNAVAILABLE_MESSAGE, raw=str(exc)) from exc
        return _normalize_record(value, self._functions["proposals"].get("outputs", ()))

    async def read_voter(self, address: str) -> RawRecord:
        return await self._read("voters", Web3.to_checksum_address(address))

    async def read_voting_status(self) -> RawRecord:
        if "getVotingStatus" in self._functions:
            return await self._read("getVotingStatus")
        return bool(await self._read("votingOpen"))

    async def simulate_vote(self, address: str, proposal_index: int) -> None:
        sender = Web3.to_checksum_address(address)
        call = self._contract.functions.vote(proposal_index)
        await self._in_thread(lambda: call.call({"from": sender}), self._timeout)
        logger.debug("ledger_vote_simulated", identity=redact(address), proposal_index=proposal_index)

    async def estimate_cost(self, call: CallDescriptor, address: str) -> int:
        bound = self._bind(call)
        sender = Web3.to_checksum_address(address)
        estimate = await self._in_thread(lambda: bound.estimate_gas({"from": sender}), self._timeout)
        return int(estimate)

    async def submit(self, call: CallDescriptor, address: str, cost_limit: int) -> Receipt:
        """Envía la transacción y espera su recibo. Sin reintentos.

        English:
            Send the transaction and wait for its receipt. Never retried. A
            receipt with status 0 raises ``SubmissionRejected``; a send or a
            receipt wait that ends without an answer raises
            ``SubmissionUnconfirmed``, which is not retryable.
        """
        bound = self._bind(call)
        sender = Web3.to_checksum_address(address)
        try:
            tx_hash = await asyncio.wait_for(
                asyncio.to_thread(self._send, bound, sender, cost_limit), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            # The send keeps running in its worker thread and may still land.
            logger.error("ledger_tx_send_unconfirmed", call=call.function, identity=redact(address))
            raise SubmissionUnconfirmed(UNCONFIRMED_MESSAGE, raw="transaction send timed out") from exc
        tx_hex = Web3.to_hex(tx_hash)
        logger.info("ledger_tx_sent", call=call.function, tx_hash=redact(tx_hex), identity=redact(address))

        try:
            receipt = await self._in_thread(
                lambda: self._web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout),
                self._receipt_timeout + self._timeout,
            )
        except (TimeExhausted, LedgerUnavailable, *TRANSPORT_ERRORS) as exc:
            logger.error("ledger_tx_receipt_missing", call=call.function, tx_hash=redact(tx_hex), error=str(exc))
            raise SubmissionUnconfirmed(UNCONFIRMED_MESSAGE, raw=str(exc), tx_hash=tx_hex) from exc

        status = int(receipt.get("status", 1))
        if status == 0:
            raise SubmissionRejected(GENERIC_REJECTION, raw=f"receipt status 0 for {tx_hex}", tx_hash=tx_hex)
        return Receipt(
            tx_hash=tx_hex,
            block_number=receipt.get("blockNumber"),
            cost_used=receipt.get("gasUsed"),
            status=status,
        )

    async def list_accounts(self) -> List[str]:
        """Cuentas que expone el nodo (o la de la clave configurada).

        English: Accounts exposed by the node, or the configured key's account.
        """
        if self._account is not None:
            return [self._account.address]
        try:
            accounts = await self._in_thread(self._with_retries(lambda: self._web3.eth.accounts), self._timeout)
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailable(UNAVAILABLE_MESSAGE, raw=str(exc)) from exc
        return [str(account) for account in accounts]

    def _bind(self, call: CallDescriptor) -> Any:
        if call.function not in WRITE_FUNCTIONS or call.function not in self._functions:
            raise ConfigurationError(f"Contract does not expose {call.describe()}.")
        args = call.args
        if call.function == "addVoter":
            args = (Web3.to_checksum_address(args[0]),) + tuple(args[1:])
        return getattr(self._contract.functions, call.function)(*args)

    def _send(self, bound: Any, sender: str, cost_limit: int) -> Any:
        if self._account is None:
            return bound.transact({"from": sender, "gas": cost_limit})
        if self._account.address != sender:
            raise ConfigurationError("URNA_PRIVATE_KEY does not match the session account.")
        tx = bound.build_transaction(
            {
                "from": sender,
                "nonce": self._web3.eth.get_transaction_count(sender),
                "chainId": self._web3.eth.chain_id,
                "gasPrice": self._web3.eth.gas_price,
                "gas": cost_limit,
            }
        )
        signed = Account.sign_transaction(tx, self._private_key)
        raw_tx = getattr(signed, "raw_transaction", None) or signed.rawTransaction
        return self._web3.eth.send_raw_transaction(raw_tx)

