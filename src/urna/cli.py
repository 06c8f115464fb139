"""
======================== ÍNDICE / INDEX ========================
1. Descripción general / Overview
2. Componentes principales / Main components
3. Notas de mantenimiento / Maintenance notes

======================== ESPAÑOL ========================
Archivo: `src/urna/cli.py`.
Interfaz de línea de comandos: cada comando inicia sesión con las
credenciales dadas, ejecuta una operación y muestra el resultado con rich.
Los errores tipados terminan con código 1 y su mensaje para mostrar.

Componentes detectados:
  - app
  - build_ledger
  - status / vote / results / accounts
  - register_voter / add_proposal / set_period

======================== ENGLISH ========================
File: `src/urna/cli.py`.
Command line interface: every command logs in with the given credentials,
runs one operation and renders the outcome with rich. Typed errors exit
with code 1 and their display message.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .admin import AdminMutationPipeline, ProposalForm, RegisterVoterForm, VotingPeriodForm
from .auth import StaticCredentialGate
from .cache import ElectionStateCache
from .config import UrnaSettings, load_settings
from .errors import UrnaError, ValidationError
from .ledger.base import LedgerClient
from .ledger.web3_client import Web3LedgerClient
from .logging import setup_logging
from .models import ElectionSnapshot
from .notifications import NoticeBoard
from .results import ResultsAggregator
from .session import Session, SessionController
from .vote import VoteSubmissionPipeline

app = typer.Typer(help="urna: client for an on-ledger voting contract.", no_args_is_help=True)
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to urna.yaml.")
UsernameOption = typer.Option(..., "--username", "-u", help="Login username.")
PasswordOption = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help="Login password.")
AccountOption = typer.Option(None, "--account", "-a", help="Account address (defaults to the node's first account).")


def build_ledger(settings: UrnaSettings) -> LedgerClient:
    return Web3LedgerClient.from_settings(settings)


def parse_instant(value: str) -> datetime:
    """Acepta ISO 8601 o segundos unix.

    English: Accept ISO 8601 or unix seconds.
    """
    text = value.strip()
    try:
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        return datetime.fromisoformat(text)
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid instant: {value!r}") from exc


@dataclass
class Runtime:
    settings: UrnaSettings
    ledger: LedgerClient
    notices: NoticeBoard
    controller: SessionController


def _bootstrap(config: Optional[Path]) -> Runtime:
    settings = load_settings(config)
    setup_logging(
        settings.log_level,
        settings.log_dir,
        redact_identifiers=settings.log_redact_identifiers,
    )
    ledger = build_ledger(settings)
    notices = NoticeBoard(settings.notice_seconds)
    controller = SessionController(
        StaticCredentialGate.from_settings(settings),
        ElectionStateCache(ledger),
        notices=notices,
    )
    return Runtime(settings=settings, ledger=ledger, notices=notices, controller=controller)


async def _resolve_all_accounts(ledger: LedgerClient) -> List[str]:
    list_accounts = getattr(ledger, "list_accounts", None)
    return list(await list_accounts()) if list_accounts is not None else []


async def _resolve_account(ledger: LedgerClient, account: Optional[str]) -> str:
    if account:
        return account
    accounts = await _resolve_all_accounts(ledger)
    if not accounts:
        raise ValidationError("No account available; pass --account.", field="account")
    return accounts[0]


async def _login(runtime: Runtime, username: str, password: str, account: Optional[str]) -> Session:
    address = await _resolve_account(runtime.ledger, account)
    return await runtime.controller.login(username, password, address)


def _run(config: Optional[Path], operation: Callable[[Runtime], Awaitable[Any]]) -> Any:
    try:
        runtime = _bootstrap(config)
        return asyncio.run(operation(runtime))
    except UrnaError as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {exc.message}")
        raise typer.Exit(code=1) from exc


def _render_snapshot(snapshot: ElectionSnapshot) -> None:
    voter = snapshot.voter
    period = snapshot.period
    console.print("[bold cyan]Your Voting Status[/bold cyan]")
    console.print(f"Registration Status: {'Registered' if voter and voter.is_registered else 'Not Registered'}")
    console.print(f"Voting Status: {'Voted' if voter and voter.has_voted else 'Not Voted'}")
    console.print(f"Voting Period: {'Active' if period.is_open_at() else 'Inactive'}")
    if period.end is not None and period.is_open_at():
        console.print(f"Time Remaining: {period.time_remaining()}")
    console.print(f"Can Vote: {'yes' if snapshot.can_vote else 'no'}")

    table = Table(title="Proposals")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Votes", justify="right")
    table.add_column("Active")
    for proposal in snapshot.proposals:
        table.add_row(
            str(proposal.index),
            proposal.name,
            proposal.description,
            str(proposal.vote_count),
            "yes" if proposal.is_active else "no",
        )
    console.print(table)


@app.callback()
def main() -> None:
    """Interfaz de línea de comandos de urna.

    English: urna command line interface.
    """


@app.command()
def version() -> None:
    console.print(__version__)


@app.command()
def accounts(config: Optional[Path] = ConfigOption) -> None:
    """Lista las cuentas que expone el nodo.

    English: List the accounts exposed by the node.
    """

    async def operation(runtime: Runtime) -> None:
        for address in await _resolve_all_accounts(runtime.ledger):
            console.print(address)

    _run(config, operation)


@app.command()
def status(
    username: str = UsernameOption,
    password: str = PasswordOption,
    account: Optional[str] = AccountOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Muestra propuestas, estado del votante y periodo.

    English: Show proposals, voter status and the voting period.
    """

    async def operation(runtime: Runtime) -> None:
        await _login(runtime, username, password, account)
        snapshot = runtime.controller.cache.current()
        if snapshot is not None:
            _render_snapshot(snapshot)

    _run(config, operation)


@app.command()
def vote(
    proposal_index: int = typer.Argument(..., help="Zero-based proposal index."),
    username: str = UsernameOption,
    password: str = PasswordOption,
    account: Optional[str] = AccountOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Emite un voto por la propuesta indicada.

    English: Cast a vote for the given proposal.
    """

    async def operation(runtime: Runtime) -> None:
        session = await _login(runtime, username, password, account)
        pipeline = VoteSubmissionPipeline(
            runtime.ledger,
            runtime.controller.cache,
            cost_margin_percent=runtime.settings.cost_margin_percent,
            notices=runtime.notices,
            is_current=runtime.controller.is_current,
        )
        outcome = await pipeline.cast(session, proposal_index)
        console.print(f"[bold green]Vote cast successfully![/bold green] tx={outcome.receipt.tx_hash}")
        if outcome.refresh_error is not None:
            console.print(f"[yellow]Vote recorded, but refresh failed:[/yellow] {outcome.refresh_error.message}")
        elif outcome.snapshot is not None:
            _render_snapshot(outcome.snapshot)

    _run(config, operation)


@app.command()
def results(config: Optional[Path] = ConfigOption) -> None:
    """Muestra el recuento ordenado con porcentajes.

    English: Show the ranked tally with percentages.
    """

    async def operation(runtime: Runtime) -> None:
        tally = await ResultsAggregator(runtime.ledger).compute_tally()
        table = Table(title=f"Voting Results ({tally.total_votes} votes)")
        table.add_column("Rank", justify="right")
        table.add_column("Name")
        table.add_column("Votes", justify="right")
        table.add_column("Share", justify="right")
        winners = {result.index for result in tally.winners}
        for rank, result in enumerate(tally.results, start=1):
            name = f"[bold]{result.name}[/bold]" if result.index in winners else result.name
            table.add_row(str(rank), name, str(result.vote_count), f"{result.percentage:.1f}%")
        console.print(table)

    _run(config, operation)


@app.command("register-voter")
def register_voter(
    voter_address: str = typer.Argument(..., help="Address to register."),
    voter_name: str = typer.Argument(..., help="Voter display name."),
    username: str = UsernameOption,
    password: str = PasswordOption,
    account: Optional[str] = AccountOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Registra un votante (sólo administradores).

    English: Register a voter (admins only).
    """

    async def operation(runtime: Runtime) -> None:
        session = await _login(runtime, username, password, account)
        pipeline = _admin_pipeline(runtime)
        receipt = await pipeline.register_voter(session, RegisterVoterForm(voter_address, voter_name))
        console.print(f"[bold green]Voter added successfully![/bold green] tx={receipt.tx_hash}")

    _run(config, operation)


@app.command("add-proposal")
def add_proposal(
    name: str = typer.Argument(..., help="Proposal name."),
    description: str = typer.Argument(..., help="Proposal description."),
    username: str = UsernameOption,
    password: str = PasswordOption,
    account: Optional[str] = AccountOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    async def operation(runtime: Runtime) -> None:
        session = await _login(runtime, username, password, account)
        receipt = await _admin_pipeline(runtime).add_proposal(session, ProposalForm(name, description))
        console.print(f"[bold green]Proposal added successfully![/bold green] tx={receipt.tx_hash}")

    _run(config, operation)


@app.command("set-period")
def set_period(
    start: str = typer.Argument(..., help="Start instant: ISO 8601 (UTC when naive) or unix seconds."),
    end: str = typer.Argument(..., help="End instant: ISO 8601 (UTC when naive) or unix seconds."),
    username: str = UsernameOption,
    password: str = PasswordOption,
    account: Optional[str] = AccountOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Fija el periodo de votación (sólo administradores).

    English: Set the voting period (admins only).
    """

    async def operation(runtime: Runtime) -> None:
        session = await _login(runtime, username, password, account)
        form = VotingPeriodForm(parse_instant(start), parse_instant(end))
        summary = await _admin_pipeline(runtime).set_voting_period(session, form)
        console.print(f"[bold green]Voting period set successfully![/bold green] tx={summary.receipt.tx_hash}")
        if summary.period is not None:
            state = "open" if summary.period.is_open_at() else "closed"
            console.print(f"Period: {summary.period.start} -> {summary.period.end} ({state})")

    _run(config, operation)


def _admin_pipeline(runtime: Runtime) -> AdminMutationPipeline:
    return AdminMutationPipeline(
        runtime.ledger,
        cost_margin_percent=runtime.settings.cost_margin_percent,
        notices=runtime.notices,
    )


if __name__ == "__main__":
    app()
