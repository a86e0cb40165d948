"""
Assessment CLI - administration for quiz configurations and certificates.

Usage:
    assess presets                    # List configuration presets
    assess validate config.json       # Validate a configuration file
    assess resolve COURSE --quiz QUIZ # Show the configuration a quiz resolves to
    assess verify CODE                # Verify a certificate
    assess revoke CERTIFICATE_ID      # Revoke a certificate
    assess sessions                   # List resumable quiz sessions
    assess cleanup-sessions           # Delete stale session snapshots
    assess init-db                    # Create database tables
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from assessment.core.errors import AssessmentError
from assessment.quiz.configuration import (
    RULE_FIELDS,
    ConfigurationStore,
    QuizConfiguration,
    parse_configuration_input,
    validate,
)
from config import get_settings

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="assess",
    help="Quiz assessment engine administration",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


def _format_value(value: object) -> str:
    if value is None:
        return "[dim]-[/]"
    if isinstance(value, bool):
        return "[green]yes[/]" if value else "[red]no[/]"
    return str(value)


def _rules_table(configuration: QuizConfiguration, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Rule", style="cyan")
    table.add_column("Value")
    for name, value in configuration.rules().items():
        table.add_row(name, _format_value(value))
    return table


# =============================================================================
# Configuration Commands
# =============================================================================


@app.command()
def presets() -> None:
    """List the built-in configuration presets."""
    items = ConfigurationStore.presets()

    table = Table(title="Configuration Presets")
    table.add_column("Preset", style="cyan")
    for preset in items:
        table.add_column(preset.id, justify="center")
    for name in RULE_FIELDS:
        table.add_row(name, *(_format_value(p.rules[name]) for p in items))
    console.print(table)

    for preset in items:
        marker = " [yellow](default)[/]" if preset.is_default else ""
        console.print(f"[bold]{preset.name}[/]{marker}: {preset.description}")


@app.command("validate")
def validate_file(
    config_file: Annotated[
        Path, typer.Argument(help="JSON file with configuration fields")
    ],
) -> None:
    """
    Validate a quiz configuration file.

    Unset rules take the system defaults; every invalid field is reported.
    """
    if not config_file.exists():
        console.print(f"[red]File not found: {config_file}[/]")
        raise typer.Exit(1)

    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON: {e}[/]")
        raise typer.Exit(1) from e

    if not isinstance(data, dict):
        console.print("[red]Configuration file must contain a JSON object[/]")
        raise typer.Exit(1)

    errors = validate(data)
    if errors:
        table = Table(title=f"Invalid configuration: {config_file.name}")
        table.add_column("Field", style="cyan")
        table.add_column("Problem", style="red")
        for error in errors:
            table.add_row(error.field, error.message)
        console.print(table)
        raise typer.Exit(1)

    values, _ = parse_configuration_input(data)
    candidate = QuizConfiguration(
        course_id=values.get("course_id") or "-",
        quiz_id=values.get("quiz_id"),
        **{k: v for k, v in values.items() if k in RULE_FIELDS},
    )
    console.print(_rules_table(candidate, f"{config_file.name} is valid"))


@app.command()
def resolve(
    course_id: Annotated[str, typer.Argument(help="Course ID")],
    quiz_id: Annotated[
        str | None, typer.Option("--quiz", "-q", help="Quiz ID (course default when omitted)")
    ] = None,
) -> None:
    """Show the configuration a quiz resolves to (creates the course default if missing)."""
    configuration = _run(_resolve(course_id, quiz_id))
    scope = f"quiz {quiz_id}" if quiz_id else "course default"
    console.print(_rules_table(configuration, f"Configuration {configuration.id} ({scope})"))


async def _resolve(course_id: str, quiz_id: str | None) -> QuizConfiguration:
    from assessment.db.database import async_session_scope, dispose_async_engine
    from assessment.db.repositories import SqlConfigurationRepository

    try:
        async with async_session_scope() as session:
            store = ConfigurationStore(SqlConfigurationRepository(session))
            return await store.resolve(course_id, quiz_id)
    finally:
        await dispose_async_engine()


# =============================================================================
# Certificate Commands
# =============================================================================


@app.command()
def verify(
    code: Annotated[str, typer.Argument(help="Verification code printed on the certificate")],
) -> None:
    """Verify a certificate by its verification code."""
    verification = _run(_verify(code))
    certificate = verification.certificate

    if certificate is None:
        console.print(f"[red]✗ {verification.message}[/]")
        raise typer.Exit(1)

    style = "green" if verification.is_valid else "red"
    console.print(
        Panel(
            f"[bold]{certificate.title}[/]\n"
            f"Recipient: {certificate.recipient_name}\n"
            f"Course: {certificate.course_title}\n"
            f"Score: {certificate.score}%\n"
            f"Completed: {certificate.completion_date:%Y-%m-%d}\n"
            f"Number: {certificate.certificate_number}\n"
            f"Issued by: {certificate.issued_by}",
            title=verification.message,
            border_style=style,
        )
    )
    if not verification.is_valid:
        raise typer.Exit(1)


async def _verify(code: str):
    from assessment.certificates.issuer import CertificateIssuer
    from assessment.db.database import async_session_scope, dispose_async_engine
    from assessment.db.repositories import SqlCertificateRepository

    try:
        async with async_session_scope() as session:
            issuer = CertificateIssuer(SqlCertificateRepository(session))
            return await issuer.verify(code)
    finally:
        await dispose_async_engine()


@app.command()
def revoke(
    certificate_id: Annotated[str, typer.Argument(help="Certificate ID")],
) -> None:
    """Revoke an issued certificate."""
    certificate = _run(_revoke(certificate_id))
    if certificate is None:
        console.print(f"[red]Certificate not found: {certificate_id}[/]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Revoked {certificate.certificate_number}[/]")


async def _revoke(certificate_id: str):
    from assessment.certificates.issuer import CertificateIssuer
    from assessment.db.database import async_session_scope, dispose_async_engine
    from assessment.db.repositories import SqlCertificateRepository

    try:
        async with async_session_scope() as session:
            issuer = CertificateIssuer(SqlCertificateRepository(session))
            return await issuer.revoke(certificate_id)
    finally:
        await dispose_async_engine()


# =============================================================================
# Session Commands
# =============================================================================


@app.command()
def sessions(
    learner: Annotated[
        str | None, typer.Option("--learner", "-l", help="Only this learner's sessions")
    ] = None,
) -> None:
    """List resumable quiz sessions saved on this machine."""
    from assessment.quiz.session_store import SessionStore

    found = SessionStore().list_sessions(learner)
    if not found:
        console.print("[yellow]No resumable sessions[/]")
        return

    table = Table(title="Resumable Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Learner")
    table.add_column("Quiz")
    table.add_column("Status")
    table.add_column("Answered", justify="right")
    table.add_column("Time left", justify="right")
    for session in found:
        table.add_row(
            session.id,
            session.learner_id,
            session.quiz_id,
            session.status.value,
            f"{len(session.answers)}/{len(session.questions)}",
            _format_value(session.time_remaining),
        )
    console.print(table)


@app.command("cleanup-sessions")
def cleanup_sessions() -> None:
    """Delete expired or unreadable session snapshots."""
    from assessment.quiz.session_store import SessionStore

    removed = SessionStore().cleanup_expired()
    console.print(f"[green]✓ Removed {removed} session snapshot(s)[/]")


# =============================================================================
# Database Commands
# =============================================================================


@app.command("init-db")
def init_database() -> None:
    """Create the assessment tables."""
    from assessment.db.database import init_db

    settings = get_settings()
    console.print(f"[cyan]Initializing tables at {settings.database_url.rsplit('@', 1)[-1]}...[/]")
    try:
        init_db()
    except Exception as e:  # Intentionally broad - report any driver error to the operator
        console.print(f"[red]Database initialization failed: {e}[/]")
        raise typer.Exit(1) from e
    console.print("[green]✓ Tables ready[/]")


def _run(coro):
    """Run an async command, reporting engine errors without a traceback."""
    try:
        return asyncio.run(coro)
    except AssessmentError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1) from e


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()

    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level="WARNING",
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB")

    app()


if __name__ == "__main__":
    main()
