# ruff: noqa: I001
"""CLI for the ``ledger_pipeline`` package.

A thin Typer shell over :class:`~ledger_pipeline.service.LedgerService`.
Environment variables (``LEDGER_*``, ``OPENAI_API_KEY``, ``DATABASE_URL``)
are loaded from a local ``.env`` with ``python-dotenv`` before any command
runs; output tables are rendered with ``rich``.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import ArgumentInfo

from .errors import LedgerError
from .logging_setup import configure_logging
from .models import DEFAULT_CATEGORIES, EmailMessage, RawMessage, Transaction
from .service import LedgerService, build_service, month_bounds
from .settings import PipelineSettings

console = Console()


# ---- Small module-level helpers used by CLI commands -------------------------


def _parse_when(raw: Any, *, field: str, line_no: int) -> datetime:
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"line {line_no}: '{field}' must be an ISO-8601 string")
    dt = datetime.fromisoformat(raw.strip())
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def read_messages(path: Path) -> list[RawMessage]:
    """Read JSON lines of ``{"text", "received_at", "source_account_id"?}``."""

    out: list[RawMessage] = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            obj = json.loads(line)
            if not isinstance(obj, dict) or not isinstance(obj.get("text"), str):
                raise ValueError(f"line {line_no}: expected an object with a 'text' string")
            out.append(
                RawMessage(
                    obj["text"],
                    _parse_when(obj.get("received_at"), field="received_at", line_no=line_no),
                    obj.get("source_account_id"),
                )
            )
    return out


def read_emails(path: Path) -> list[EmailMessage]:
    """Read JSON lines of ``{"header", "body", "received_at", "source_account_id"?}``."""

    out: list[EmailMessage] = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            obj = json.loads(line)
            if not isinstance(obj, dict) or not isinstance(obj.get("body"), str):
                raise ValueError(f"line {line_no}: expected an object with a 'body' string")
            out.append(
                EmailMessage(
                    str(obj.get("header") or ""),
                    obj["body"],
                    _parse_when(obj.get("received_at"), field="received_at", line_no=line_no),
                    obj.get("source_account_id"),
                )
            )
    return out


def _service(ctx: typer.Context) -> LedgerService:
    state: dict[str, Any] = ctx.ensure_object(dict)
    svc = state.get("service")
    if svc is None:
        settings = PipelineSettings.from_env()
        if state.get("fallback") is not None:
            settings = settings.model_copy(update={"fallback_enabled": state["fallback"]})
        svc = build_service(settings, database_url=state.get("database_url"))
        state["service"] = svc
    return svc


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


def _fmt_amount(v: Any) -> str:
    return "-" if v is None else f"{v:,.2f}"


def _fmt_dt(v: datetime | None) -> str:
    return "-" if v is None else v.strftime("%Y-%m-%d %H:%M")


def _transaction_table(rows: list[Transaction], title: str) -> Table:
    table = Table(title=title)
    for col in ("id", "when", "type", "amount", "merchant", "category", "account", "parser", "error"):
        table.add_column(col)
    for t in rows:
        table.add_row(
            t.id[:8],
            _fmt_dt(t.timestamp),
            t.type.value,
            _fmt_amount(t.amount),
            t.merchant or "-",
            t.category,
            t.account_last_digits or "-",
            t.parser_type.render() if t.parser_type else "-",
            t.parsing_error or "",
        )
    return table


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Turn bank SMS and email notifications into a categorized ledger and "
        "detect recurring payments. Loads settings from a local .env first."
    ),
)

# Module-level argument object to satisfy ruff B008 (no calls in defaults).
JSONL_PATH_ARGUMENT: ArgumentInfo = typer.Argument(
    ...,
    help="Path to a JSON-lines file",
    dir_okay=False,
    file_okay=True,
    exists=True,
    readable=True,
)


@app.command("ingest")
def ingest_cmd(
    ctx: typer.Context,
    path: Annotated[Path, JSONL_PATH_ARGUMENT],
    *,
    show: bool = typer.Option(False, help="Print the stored transactions afterwards."),
) -> None:
    """Ingest SMS messages from a JSON-lines file."""

    try:
        messages = read_messages(path)
    except (OSError, ValueError) as e:
        raise _fail(f"cannot read {path}: {e}") from e
    svc = _service(ctx)
    try:
        summary = svc.sync(messages)
    except LedgerError as e:
        raise _fail(f"sync failed: {e}") from e
    console.print(
        f"new={summary.new_count} duplicates={summary.duplicate_count} "
        f"failed={summary.failed_count}"
    )
    if show:
        console.print(_transaction_table(svc.transactions.query_all(), "Transactions"))


@app.command("ingest-email")
def ingest_email_cmd(
    ctx: typer.Context,
    path: Annotated[Path, JSONL_PATH_ARGUMENT],
) -> None:
    """Ingest bank emails from a JSON-lines file (header, body, received_at)."""

    try:
        emails = read_emails(path)
    except (OSError, ValueError) as e:
        raise _fail(f"cannot read {path}: {e}") from e
    svc = _service(ctx)
    counts: dict[str, int] = {}
    for email in emails:
        try:
            outcome, _tx = svc.ingest_email(email)
        except LedgerError as e:
            raise _fail(f"ingest failed: {e}") from e
        counts[outcome.value] = counts.get(outcome.value, 0) + 1
    console.print(" ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "nothing to ingest")


@app.command("reparse")
def reparse_cmd(
    ctx: typer.Context,
    transaction_ids: Annotated[list[str] | None, typer.Argument()] = None,
    *,
    delay: float | None = typer.Option(
        None, help="Seconds between model calls (defaults to LEDGER_BULK_REPARSE_DELAY_SEC)."
    ),
) -> None:
    """Re-run extraction for the given transactions, or every unparsed one."""

    svc = _service(ctx)
    if delay is not None:
        svc.update_settings(bulk_reparse_delay_sec=delay)
    try:
        if transaction_ids and len(transaction_ids) == 1:
            tx = svc.reparse(transaction_ids[0])
            console.print(_transaction_table([tx], "Re-parsed"))
            return
        summary = svc.bulk_reparse(transaction_ids or None)
    except KeyError as e:
        raise _fail(f"no transaction with id {e.args[0]}") from e
    except LedgerError as e:
        raise _fail(f"re-parse failed: {e}") from e
    console.print(
        f"succeeded={summary.succeeded} failed={summary.failed} skipped={summary.skipped}"
    )


@app.command("edit-category")
def edit_category_cmd(
    ctx: typer.Context,
    transaction_id: str,
    category: Annotated[str | None, typer.Argument()] = None,
) -> None:
    """Set a transaction's category; prompts with a picker when omitted."""

    svc = _service(ctx)
    current = svc.transactions.get(transaction_id)
    if current is None:
        raise _fail(f"no transaction with id {transaction_id}")
    if category is None:
        from .term_ui import select_category

        known = list(DEFAULT_CATEGORIES) + [a.category for a in svc.learner.associations()]
        category = select_category(known, default=current.category)
        if category is None:
            console.print("cancelled")
            return
    try:
        updated = svc.edit_category(transaction_id, category)
    except ValueError as e:
        raise _fail(str(e)) from e
    console.print(f"{updated.id}\t{updated.merchant or '-'}\t{updated.category}")


@app.command("rebuild-series")
def rebuild_series_cmd(ctx: typer.Context) -> None:
    """Recompute recurring series from all stored transactions."""

    svc = _service(ctx)
    try:
        summary = svc.rebuild_series()
    except LedgerError as e:
        raise _fail(f"rebuild failed: {e}") from e
    console.print(
        f"series={summary.series_count} skipped={summary.skipped_count} "
        f"overdue={summary.overdue_count} upcoming={summary.upcoming_count}"
    )


@app.command("series")
def series_cmd(
    ctx: typer.Context,
    *,
    upcoming: bool = typer.Option(False, "--upcoming", help="Only series due soon."),
    overdue: bool = typer.Option(False, "--overdue", help="Only overdue series."),
) -> None:
    """List recurring series with their next expected date."""

    svc = _service(ctx)
    now = datetime.now(UTC)
    if upcoming:
        rows = svc.upcoming(now)
    elif overdue:
        rows = svc.overdue(now)
    else:
        rows = svc.series()
    table = Table(title="Recurring series")
    for col in ("merchant", "category", "frequency", "avg", "count", "last", "next", "conf", "status"):
        table.add_column(col)
    for s in rows:
        table.add_row(
            s.merchant,
            s.category,
            s.frequency_label,
            _fmt_amount(s.average_amount),
            str(s.occurrence_count),
            _fmt_dt(s.last_occurrence),
            _fmt_dt(s.next_expected_date),
            f"{s.confidence_score:.2f}",
            svc.detector.status(s, now).value if s.is_active else "inactive",
        )
    console.print(table)


@app.command("spending")
def spending_cmd(
    ctx: typer.Context,
    *,
    year: int = typer.Option(..., help="Calendar year."),
    month: int = typer.Option(..., min=1, max=12, help="Calendar month (1-12)."),
    top: int = typer.Option(5, help="Number of merchants to list."),
) -> None:
    """Spending by category and top merchants for one month."""

    svc = _service(ctx)
    start, end = month_bounds(year, month)
    by_category = svc.spending_by_category(start, end)
    table = Table(title=f"Spending {year}-{month:02d}")
    table.add_column("category")
    table.add_column("total", justify="right")
    for cat, total in by_category.items():
        table.add_row(cat, _fmt_amount(total))
    console.print(table)

    totals = svc.monthly_totals(year, month)
    console.print(
        f"debits={_fmt_amount(totals.debits)} credits={_fmt_amount(totals.credits)} "
        f"net={_fmt_amount(totals.net)} transactions={totals.count}"
    )
    merchants = Table(title="Top merchants")
    merchants.add_column("merchant")
    merchants.add_column("total", justify="right")
    merchants.add_column("count", justify="right")
    for m in svc.top_merchants(top, start, end):
        merchants.add_row(m.merchant, _fmt_amount(m.total), str(m.count))
    console.print(merchants)


@app.command("stats")
def stats_cmd(ctx: typer.Context) -> None:
    """Accounts, balances, recurring-series statistics and model call counts."""

    svc = _service(ctx)
    accounts = Table(title="Accounts")
    accounts.add_column("account")
    accounts.add_column("latest balance", justify="right")
    for acct in svc.distinct_accounts():
        accounts.add_row(acct, _fmt_amount(svc.latest_balance(acct)))
    console.print(accounts)

    st = svc.series_statistics()
    console.print(
        f"series total={st.total} active={st.active} upcoming={st.upcoming} "
        f"overdue={st.overdue} monthly_amount={_fmt_amount(st.total_monthly_amount)}"
    )
    llm = svc.llm_stats()
    console.print(f"model calls={llm.call_count} last_error={llm.last_error or '-'}")


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    database_url: str | None = typer.Option(
        None, help="Override LEDGER_DATABASE_URL / DATABASE_URL."
    ),
    fallback: bool | None = typer.Option(
        None,
        "--fallback/--no-fallback",
        help="Enable the model fallback (defaults to LEDGER_FALLBACK_ENABLED).",
    ),
    log_level: str | None = typer.Option(None, help="Override LEDGER_LOG_LEVEL."),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging. The service is
    built lazily by the first subcommand that needs it.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    try:
        configure_logging(level=log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level") from e

    state = ctx.ensure_object(dict)
    state["database_url"] = database_url
    state["fallback"] = fallback

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
