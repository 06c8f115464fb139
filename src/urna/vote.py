"""
======================== ÍNDICE / INDEX ========================
1. Descripción general / Overview
2. Componentes principales / Main components
3. Notas de mantenimiento / Maintenance notes

======================== ESPAÑOL ========================
Archivo: `src/urna/vote.py`.
Pipeline de emisión de un voto: verificación local, re-validación remota,
simulación, estimación de coste, envío y refresco. Cada etapa es una
barrera: un fallo aborta las etapas restantes.

Componentes detectados:
  - VoteOutcome
  - VoteSubmissionPipeline

Notas:
- El envío nunca se reintenta automáticamente: reenviar un voto quizá ya
  confirmado no es seguro (el ledger no ofrece clave de idempotencia).

======================== ENGLISH ========================
File: `src/urna/vote.py`.
Vote submission pipeline: local check, remote re-validation, simulation,
cost estimation, submission and refresh. Each stage is a hard gate.

Detected components:
  - VoteOutcome
  - VoteSubmissionPipeline

Notes:
- Submission is never retried automatically: resending a possibly
  committed vote is unsafe (no idempotency key exists on the ledger).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import structlog

from .cache import ElectionStateCache, as_read_error, fetch_period, fetch_voter
from .errors import (
    InconsistentLedgerState,
    NotFound,
    PreconditionCode,
    PreconditionError,
    UrnaError,
)
from .ledger.base import LedgerClient
from .logging import bind_context, redact
from .models import CallDescriptor, ElectionSnapshot, Receipt, Role, utcnow
from .notifications import NoticeBoard
from .pipeline import (
    DEFAULT_COST_MARGIN_PERCENT,
    Stage,
    apply_cost_margin,
    check_vote_preconditions,
    run_remote,
    validate_proposal_index,
)
from .schemas import validate_proposal
from .session import Session, require_role

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VoteOutcome:
    """Resultado de un voto aceptado por el ledger.

    English:
        Outcome of a vote accepted by the ledger. ``refresh_error`` is set
        when the post-vote refresh failed; the vote itself still stands and
        the refresh can be retried without resubmitting.
        ``stale`` is set when the session changed while the vote was in
        flight; the refresh is then skipped so the new identity's snapshot
        is left alone.
    """

    session_token: int
    proposal_index: int
    receipt: Receipt
    cost_estimate: int
    cost_limit: int
    stages: Tuple[Stage, ...]
    snapshot: Optional[ElectionSnapshot] = None
    refresh_error: Optional[UrnaError] = field(default=None, compare=False)
    stale: bool = False

    @property
    def refreshed(self) -> bool:
        return not self.stale and self.refresh_error is None and self.snapshot is not None


class VoteSubmissionPipeline:
    """Emite exactamente un voto para la identidad de la sesión.

    English: Cast exactly one vote for the session identity.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        cache: ElectionStateCache,
        *,
        cost_margin_percent: int = DEFAULT_COST_MARGIN_PERCENT,
        notices: Optional[NoticeBoard] = None,
        clock: Callable[[], datetime] = utcnow,
        is_current: Optional[Callable[[int], bool]] = None,
    ) -> None:
        self._ledger = ledger
        self._cache = cache
        self._margin = cost_margin_percent
        self._notices = notices
        self._clock = clock
        self._is_current = is_current

    async def cast(self, session: Session, proposal_index: int) -> VoteOutcome:
        """Ejecuta las seis etapas en orden estricto.

        English: Run the six stages in strict order.
        """
        log = bind_context(logger, identity=session.address, proposal_index=proposal_index)
        try:
            outcome = await self._run(session, proposal_index, log)
        except UrnaError as exc:
            log.warning("vote_failed", error_kind=exc.kind.value, error=exc.message)
            if self._notices is not None:
                self._notices.error(exc.message)
            raise
        if self._notices is not None and not outcome.stale:
            self._notices.success("Vote cast successfully!")
        return outcome

    async def _run(self, session: Session, proposal_index: int, log) -> VoteOutcome:  # noqa: ANN001
        require_role(session, Role.USER)
        index = validate_proposal_index(proposal_index)
        address = session.address
        stages: List[Stage] = []

        self._check_local(address, index)
        stages.append(Stage.LOCAL_CHECK)
        log.info("vote_stage_passed", stage=Stage.LOCAL_CHECK.value)

        await self._check_remote(address, index)
        stages.append(Stage.REMOTE_CHECK)
        log.info("vote_stage_passed", stage=Stage.REMOTE_CHECK.value)

        await run_remote(Stage.SIMULATION, self._ledger.simulate_vote(address, index))
        stages.append(Stage.SIMULATION)
        log.info("vote_stage_passed", stage=Stage.SIMULATION.value)

        call = CallDescriptor("vote", (index,))
        estimate = await run_remote(Stage.COST_ESTIMATE, self._ledger.estimate_cost(call, address))
        limit = apply_cost_margin(int(estimate), self._margin)
        stages.append(Stage.COST_ESTIMATE)
        log.info("vote_stage_passed", stage=Stage.COST_ESTIMATE.value, estimate=estimate, limit=limit)

        receipt = await run_remote(Stage.SUBMISSION, self._ledger.submit(call, address, limit))
        stages.append(Stage.SUBMISSION)
        log.info("vote_submitted", tx_hash=redact(receipt.tx_hash), cost_used=receipt.cost_used)

        snapshot: Optional[ElectionSnapshot] = None
        refresh_error: Optional[UrnaError] = None
        stale = self._is_current is not None and not self._is_current(session.token)
        if stale:
            log.info("vote_refresh_skipped_stale_session", token=session.token)
        else:
            try:
                snapshot = await run_remote(Stage.REFRESH, self._cache.refresh(address))
                stages.append(Stage.REFRESH)
            except UrnaError as exc:
                refresh_error = exc
                log.warning("vote_refresh_failed", error_kind=exc.kind.value, error=exc.message)

        return VoteOutcome(
            session_token=session.token,
            proposal_index=index,
            receipt=receipt,
            cost_estimate=int(estimate),
            cost_limit=limit,
            stages=tuple(stages),
            snapshot=snapshot,
            refresh_error=refresh_error,
            stale=stale,
        )

    def _check_local(self, address: str, index: int) -> None:
        snapshot = self._cache.current()
        # A snapshot of another account is as good as none.
        if snapshot is None or snapshot.identity.lower() != address.lower():
            raise PreconditionError(
                PreconditionCode.SNAPSHOT_MISSING,
                "Voting data is not loaded yet. Please refresh.",
            )
        check_vote_preconditions(
            proposal_index=index,
            proposal_count=len(snapshot.proposals),
            proposal=snapshot.proposal(index),
            voter=snapshot.voter,
            period=snapshot.period,
            now=self._clock(),
            source="local",
        )

    async def _check_remote(self, address: str, index: int) -> None:
        """Relee votante, propuesta y periodo directamente del ledger.

        English:
            Re-read the voter record, the chosen proposal and the voting
            status straight from the ledger (the reads run concurrently) and
            re-apply the checks.
        """
        voter_result, proposal_result, period_result = await asyncio.gather(
            fetch_voter(self._ledger, address),
            self._ledger.read_proposal(index),
            fetch_period(self._ledger),
            return_exceptions=True,
        )
        for result in (voter_result, proposal_result, period_result):
            if isinstance(result, NotFound) and result is not period_result:
                continue
            if isinstance(result, UrnaError):
                raise result
            if isinstance(result, Exception):
                raise as_read_error(result) from result
            if isinstance(result, BaseException):
                raise result

        proposal = None
        if not isinstance(proposal_result, BaseException):
            try:
                proposal = validate_proposal(proposal_result, index)
            except ValueError as exc:
                raise InconsistentLedgerState(str(exc)) from exc
        # A proposal the ledger returned is in range by construction.
        check_vote_preconditions(
            proposal_index=index,
            proposal_count=index + 1 if proposal is not None else index,
            proposal=proposal,
            voter=None if isinstance(voter_result, BaseException) else voter_result,
            period=period_result,
            now=self._clock(),
            source="remote",
        )
