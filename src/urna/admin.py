"""
EN: Administrative mutations: register a voter, add a proposal and set the
    voting period. Each mutation validates its form locally, estimates the
    cost with the safety margin, submits once and clears the form on success.
    Refreshing the election cache afterwards is left to the caller.

ES: Mutaciones administrativas: registrar votante, agregar propuesta y fijar
    el periodo de votacion. Cada mutacion valida su formulario localmente,
    estima el coste con margen, envia una sola vez y limpia el formulario.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from web3 import Web3

from .cache import fetch_period, fetch_voter
from .errors import NotFound, PreconditionCode, PreconditionError, UrnaError, ValidationError
from .ledger.base import LedgerClient
from .logging import bind_context, redact
from .models import CallDescriptor, Receipt, Role, VotingPeriod
from .notifications import NoticeBoard
from .pipeline import DEFAULT_COST_MARGIN_PERCENT, Stage, apply_cost_margin, run_remote
from .session import Session, require_role

logger = structlog.get_logger(__name__)


@dataclass
class RegisterVoterForm:
    address: str = ""
    name: str = ""

    def clear(self) -> None:
        self.address = ""
        self.name = ""


@dataclass
class ProposalForm:
    name: str = ""
    description: str = ""

    def clear(self) -> None:
        self.name = ""
        self.description = ""


@dataclass
class VotingPeriodForm:
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def clear(self) -> None:
        self.start = None
        self.end = None


@dataclass(frozen=True)
class PeriodSummary:
    """EN: Admin-side view of the voting period, re-read after an update.

    ES: Vista del periodo para el administrador; independiente de la cache.
    """

    receipt: Receipt
    period: Optional[VotingPeriod] = None
    refresh_error: Optional[UrnaError] = None


def to_unix_seconds(moment: datetime) -> int:
    """EN: Whole unix seconds; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


class AdminMutationPipeline:
    """EN: Runs the three administrative mutations for an admin session.

    ES: Ejecuta las tres mutaciones administrativas para una sesion admin.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        cost_margin_percent: int = DEFAULT_COST_MARGIN_PERCENT,
        notices: Optional[NoticeBoard] = None,
    ) -> None:
        self._ledger = ledger
        self._margin = cost_margin_percent
        self._notices = notices
        self.period_summary: Optional[PeriodSummary] = None

    async def register_voter(self, session: Session, form: RegisterVoterForm) -> Receipt:
        """EN: Register ``form.address`` under ``form.name``.

        Raises ``PreconditionError`` (DUPLICATE_REGISTRATION) when the ledger
        already lists the address as registered.
        """
        return await self._guarded(session, "voter_registered", "Voter added successfully!", self._register, form)

    async def add_proposal(self, session: Session, form: ProposalForm) -> Receipt:
        return await self._guarded(session, "proposal_added", "Proposal added successfully!", self._add, form)

    async def set_voting_period(self, session: Session, form: VotingPeriodForm) -> PeriodSummary:
        """EN: Set the voting window and re-read it into ``period_summary``.

        ES: Fija la ventana de votacion y la relee en ``period_summary``.
        """
        return await self._guarded(
            session, "voting_period_set", "Voting period set successfully!", self._set_period, form
        )

    async def _guarded(self, session, event, success_message, operation, form):  # noqa: ANN001
        log = bind_context(logger, identity=session.address)
        try:
            require_role(session, Role.ADMIN)
            result = await operation(session, form, log)
        except UrnaError as exc:
            log.warning("admin_mutation_failed", operation=event, error_kind=exc.kind.value, error=exc.message)
            if self._notices is not None:
                self._notices.error(exc.message)
            raise
        form.clear()
        log.info(event)
        if self._notices is not None:
            self._notices.success(success_message)
        return result

    async def _register(self, session: Session, form: RegisterVoterForm, log) -> Receipt:  # noqa: ANN001
        address = (form.address or "").strip()
        name = (form.name or "").strip()
        if not address or not name:
            raise ValidationError("Please fill in all voter fields")
        if not Web3.is_address(address):
            raise ValidationError(f"'{address}' is not a valid account address.", field="address")

        try:
            existing = await run_remote(Stage.REMOTE_CHECK, fetch_voter(self._ledger, address))
        except NotFound:
            existing = None
        if existing is not None and existing.is_registered:
            raise PreconditionError(
                PreconditionCode.DUPLICATE_REGISTRATION,
                "Voter is already registered.",
                source="remote",
            )
        log.info("admin_stage_passed", stage=Stage.REMOTE_CHECK.value, voter=redact(address))
        return await self._submit(CallDescriptor("addVoter", (address, name)), session.address, log)

    async def _add(self, session: Session, form: ProposalForm, log) -> Receipt:  # noqa: ANN001
        name = (form.name or "").strip()
        description = (form.description or "").strip()
        if not name or not description:
            raise ValidationError("Please fill in all proposal fields")
        return await self._submit(CallDescriptor("addProposal", (name, description)), session.address, log)

    async def _set_period(self, session: Session, form: VotingPeriodForm, log) -> PeriodSummary:  # noqa: ANN001
        if form.start is None or form.end is None:
            raise ValidationError("Please set both start and end times")
        start = to_unix_seconds(form.start)
        end = to_unix_seconds(form.end)
        if start >= end:
            raise ValidationError("End time must be after start time", field="end")

        receipt = await self._submit(CallDescriptor("setVotingPeriod", (start, end)), session.address, log)
        try:
            period = await run_remote(Stage.REFRESH, fetch_period(self._ledger))
        except UrnaError as exc:
            # The period is set; only the read-back failed.
            log.warning("admin_period_reread_failed", error_kind=exc.kind.value, error=exc.message)
            self.period_summary = PeriodSummary(receipt=receipt, refresh_error=exc)
            return self.period_summary
        self.period_summary = PeriodSummary(receipt=receipt, period=period)
        return self.period_summary

    async def _submit(self, call: CallDescriptor, address: str, log) -> Receipt:  # noqa: ANN001
        estimate = await run_remote(Stage.COST_ESTIMATE, self._ledger.estimate_cost(call, address))
        limit = apply_cost_margin(int(estimate), self._margin)
        log.info("admin_stage_passed", stage=Stage.COST_ESTIMATE.value, call=call.function, estimate=estimate, limit=limit)
        receipt = await run_remote(Stage.SUBMISSION, self._ledger.submit(call, address, limit))
        log.info("admin_submitted", call=call.function, tx_hash=redact(receipt.tx_hash))
        return receipt
