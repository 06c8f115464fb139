"""Piezas compartidas por los pipelines de voto y de administración.

English:
    Pieces shared by the vote and admin pipelines: stage names, the cost
    safety margin and the precondition checks.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Optional

from .cache import as_read_error
from .classifier import classify
from .errors import PreconditionCode, PreconditionError, UrnaError, ValidationError
from .models import Proposal, Voter, VotingPeriod

DEFAULT_COST_MARGIN_PERCENT = 20


class Stage(str, Enum):
    """Etapas del pipeline en orden estricto.

    English: Pipeline stages, in strict order.
    """

    LOCAL_CHECK = "local_check"
    REMOTE_CHECK = "remote_check"
    SIMULATION = "simulation"
    COST_ESTIMATE = "cost_estimate"
    SUBMISSION = "submission"
    REFRESH = "refresh"


READ_STAGES = frozenset({Stage.REMOTE_CHECK, Stage.REFRESH})


def apply_cost_margin(estimate: int, margin_percent: int = DEFAULT_COST_MARGIN_PERCENT) -> int:
    """Escala la estimación hacia arriba y redondea al entero superior.

    English:
        Scale the estimate up by ``margin_percent`` and round up to the next
        whole unit, in integer arithmetic: ``100`` at 20% gives ``120``.
    """
    if isinstance(estimate, bool) or not isinstance(estimate, int) or estimate < 0:
        raise ValueError(f"Cost estimate must be a non-negative integer, got {estimate!r}")
    if margin_percent < 0:
        raise ValueError("margin_percent must be >= 0")
    return -(-estimate * (100 + margin_percent) // 100)


def validate_proposal_index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Proposal index must be an integer.", field="proposal_index")
    if value < 0:
        raise ValidationError("Proposal index cannot be negative.", field="proposal_index")
    return value


def check_vote_preconditions(
    *,
    proposal_index: int,
    proposal_count: int,
    proposal: Optional[Proposal],
    voter: Optional[Voter],
    period: Optional[VotingPeriod] = None,
    now: Optional[datetime] = None,
    source: str = "local",
) -> None:
    """Aplica las reglas de elegibilidad del voto.

    English:
        Apply the vote eligibility rules in order: index in range, proposal
        active, voter registered, voter has not voted and, when ``period`` is
        given, voting open. Raises ``PreconditionError`` on the first violation.
    """
    if proposal is None or not 0 <= proposal_index < proposal_count:
        raise PreconditionError(
            PreconditionCode.PROPOSAL_OUT_OF_RANGE,
            f"Proposal {proposal_index} does not exist.",
            source=source,
        )
    if not proposal.is_active:
        raise PreconditionError(
            PreconditionCode.PROPOSAL_INACTIVE,
            f"Proposal '{proposal.name}' is not active.",
            source=source,
        )
    if voter is None or not voter.is_registered:
        raise PreconditionError(
            PreconditionCode.NOT_REGISTERED,
            "You are not registered to vote.",
            source=source,
        )
    if voter.has_voted:
        raise PreconditionError(
            PreconditionCode.ALREADY_VOTED,
            "You have already voted.",
            source=source,
        )
    if period is not None and not period.is_open_at(now):
        raise PreconditionError(
            PreconditionCode.VOTING_CLOSED,
            "Voting is not open.",
            source=source,
        )


async def run_remote(stage: Stage, call: Awaitable[Any]) -> Any:
    """Ejecuta una llamada remota y tipa cualquier fallo no tipado.

    English:
        Await a remote call and turn untyped failures into the taxonomy.
        Read stages (remote check, refresh) yield read errors. Submission
        failures become submission rejections, any other stage a simulation
        rejection.
    """
    try:
        return await call
    except UrnaError:
        raise
    except Exception as exc:  # noqa: BLE001
        if stage in READ_STAGES:
            raise as_read_error(exc) from exc
        target = "submission" if stage is Stage.SUBMISSION else "simulation"
        raise classify(exc).to_error(target) from exc
