"""Pruebas del clasificador de fallos remotos.

Tests for the remote failure classifier.
"""

from __future__ import annotations

import pytest

from urna.classifier import GENERIC_FAILURE_MESSAGE, classify, display_message, extract_revert_reason
from urna.errors import (
    ErrorKind,
    LedgerUnavailable,
    PreconditionCode,
    PreconditionError,
    SimulationRejected,
    SubmissionRejected,
)


@pytest.mark.parametrize(
    "text",
    [
        "VM Exception while processing transaction: revert Already voted",
        "Error: execution reverted: Already voted",
        "Error: VM Exception: reverted with reason string 'Already voted'",
        'Returned error: {"message": "revert Already voted"}',
    ],
)
def test_revert_reason_is_surfaced_verbatim(text: str) -> None:
    """Español: El motivo se muestra tal cual con cualquier delimitador.

    English: The reason is surfaced verbatim for every runtime delimiter.
    """
    classified = classify(RuntimeError(text))

    assert classified.kind is ErrorKind.SUBMISSION_REJECTED
    assert classified.message == "Already voted"
    assert classified.reason == "Already voted"
    assert text in classified.raw


def test_unrecognized_failure_falls_back_to_generic_message() -> None:
    classified = classify(RuntimeError("something odd happened"))

    assert classified.kind is ErrorKind.OPERATION_FAILED
    assert classified.message == GENERIC_FAILURE_MESSAGE
    assert classified.raw == "something odd happened"
    assert display_message(classified) == "Operation failed. (something odd happened)"


def test_transport_failures_are_ledger_unavailable() -> None:
    refused = classify(ConnectionRefusedError("[Errno 111] Connection refused"))
    timed_out = classify(RuntimeError("HTTPConnectionPool: Read timed out."))

    assert refused.kind is ErrorKind.LEDGER_UNAVAILABLE
    assert timed_out.kind is ErrorKind.LEDGER_UNAVAILABLE
    assert isinstance(refused.to_error(), LedgerUnavailable)
    assert refused.to_error().retryable is True


def test_classify_is_total() -> None:
    class Unprintable(Exception):
        def __str__(self) -> str:
            raise ValueError("cannot render")

    for failure in (None, "", Unprintable(), object(), 42):
        classified = classify(failure)
        assert classified.kind in ErrorKind


def test_typed_errors_pass_through_unchanged() -> None:
    error = PreconditionError(PreconditionCode.ALREADY_VOTED, "You have already voted.")

    classified = classify(error)

    assert classified.kind is ErrorKind.PRECONDITION
    assert classified.message == "You have already voted."


def test_to_error_selects_stage_specific_rejection() -> None:
    classified = classify("execution reverted: Voting is closed")

    simulation = classified.to_error("simulation")
    submission = classified.to_error("submission")

    assert isinstance(simulation, SimulationRejected)
    assert isinstance(submission, SubmissionRejected)
    assert simulation.reason == submission.reason == "Voting is closed"


def test_extract_revert_reason_ignores_text_without_reason() -> None:
    assert extract_revert_reason("execution reverted") is None
    assert extract_revert_reason("") is None
