"""Command-line interface for managing recurring templates.

The ``recurrence`` command lists, creates and edits templates, triggers
manual generations, runs single ticks and serves the background scheduler.
"""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
import json
import logging
import time
from typing import List, NoReturn

import typer

from ..admin import TemplateAdmin
from ..config import load_config
from ..cron import iter_occurrences
from ..errors import RecurrenceError
from ..metrics import start_metrics_server
from ..models import TaskPriority
from ..scheduler import (
    RecurringScheduler,
    create_scheduler,
    get_default_scheduler,
    set_default_scheduler,
)
from ..schemas import TemplateCreate
import task_recurrence as tr


app = typer.Typer(help="Manage recurring task templates")


def _scheduler() -> RecurringScheduler:
    try:
        return get_default_scheduler()
    except RuntimeError:
        sched = create_scheduler(load_config())
        set_default_scheduler(sched)
        return sched


def _admin() -> TemplateAdmin:
    return TemplateAdmin.from_scheduler(_scheduler())


def _fail(exc: Exception) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


def _fmt(value: datetime | None) -> str:
    return value.isoformat() if value else "-"


@app.callback()
def _global_options(
    metrics_port: int | None = typer.Option(
        None,
        "--metrics-port",
        help="Expose Prometheus metrics on PORT before executing the command",
    ),
) -> None:
    """Handle global options for the CLI."""

    if metrics_port is not None:
        start_metrics_server(metrics_port)


@app.command("list")
def list_templates(
    assignee: str | None = typer.Option(None, "--assignee", help="Filter by assignee"),
) -> None:
    """List recurring templates."""

    for t in _admin().list(assignee_id=assignee):
        status = "enabled" if t.enabled else "disabled"
        typer.echo(
            f"{t.id}\t{t.name}\t{t.cron}\t{status}\tnext={_fmt(t.next_generation_at)}"
        )


@app.command("show")
def show_template(template_id: str) -> None:
    """Print ``TEMPLATE_ID`` as JSON."""

    try:
        template = _admin().get(template_id)
    except RecurrenceError as exc:
        _fail(exc)
    typer.echo(json.dumps(template.to_dict(), indent=2))


@app.command("add")
def add_template(
    name: str,
    cron: str,
    title: str = typer.Option(..., "--title", help="Title of generated tasks"),
    assignee: str = typer.Option(..., "--assignee", help="Assignee of generated tasks"),
    description: str = typer.Option("", "--description"),
    priority: TaskPriority = typer.Option(TaskPriority.MEDIUM, "--priority"),
    branch: str | None = typer.Option(None, "--branch"),
    tag: List[str] = typer.Option([], "--tag", help="Tag to copy (repeatable)"),
    attribute: List[str] = typer.Option(
        [], "--attr", help="Context attribute KEY=VALUE (repeatable)"
    ),
    disabled: bool = typer.Option(False, "--disabled", help="Create disabled"),
    user_id: str | None = typer.Option(None, "--user-id", help="Template author"),
) -> None:
    """Create template ``NAME`` generating on ``CRON``."""

    attributes = {}
    for item in attribute:
        key, sep, value = item.partition("=")
        if not sep or not key:
            _fail(ValueError(f"invalid attribute {item!r}, expected KEY=VALUE"))
        attributes[key] = value

    try:
        payload = TemplateCreate(
            name=name,
            cron=cron,
            title=title,
            description=description,
            priority=priority,
            assignee_id=assignee,
            branch=branch,
            tags=tag,
            attributes=attributes,
            enabled=not disabled,
        )
        template = _admin().create(payload, actor_id=user_id)
    except (ValueError, RecurrenceError) as exc:
        _fail(exc)
    typer.echo(f"{template.id} created, next={_fmt(template.next_generation_at)}")


@app.command("enable")
def enable_template(template_id: str) -> None:
    """Enable ``TEMPLATE_ID`` and reschedule it from now."""

    try:
        template = _admin().set_enabled(template_id, True)
    except RecurrenceError as exc:
        _fail(exc)
    typer.echo(f"{template.id} enabled, next={_fmt(template.next_generation_at)}")


@app.command("disable")
def disable_template(template_id: str) -> None:
    """Disable ``TEMPLATE_ID`` so it stops generating tasks."""

    try:
        _admin().set_enabled(template_id, False)
    except RecurrenceError as exc:
        _fail(exc)
    typer.echo(f"{template_id} disabled")


@app.command("remove")
def remove_template(template_id: str) -> None:
    """Delete ``TEMPLATE_ID``; generated tasks and history are kept."""

    try:
        _admin().delete(template_id)
    except RecurrenceError as exc:
        _fail(exc)
    typer.echo(f"{template_id} removed")


@app.command("generate")
def generate_now(
    template_id: str,
    user_id: str | None = typer.Option(None, "--user-id", help="Requesting user"),
) -> None:
    """Generate a task from ``TEMPLATE_ID`` right now."""

    try:
        result = _admin().generate(template_id, actor_id=user_id)
    except RecurrenceError as exc:
        _fail(exc)
    typer.echo(f"{result.instance.id}\t{result.instance.title}")


@app.command("history")
def show_history(template_id: str) -> None:
    """List the generations recorded for ``TEMPLATE_ID``."""

    for record in _admin().history(template_id):
        typer.echo(
            f"{record.generated_at.isoformat()}\t{record.trigger.value}\t"
            f"{record.instance_id}\t{record.instance_title}"
        )


@app.command("tick")
def run_tick() -> None:
    """Run a single scheduler tick and print its outcome."""

    report = _scheduler().run_once()
    if report.error:
        _fail(RuntimeError(report.error))
    for outcome in report.outcomes:
        if outcome.ok:
            typer.echo(
                f"{outcome.template_id}\tok\t{outcome.instance_id}\t"
                f"next={_fmt(outcome.next_generation_at)}"
            )
        else:
            typer.echo(f"{outcome.template_id}\tfailed\t{outcome.error}")
    typer.echo(f"{len(report.succeeded)} generated, {len(report.failed)} failed")


@app.command("next")
def preview(
    expression: str,
    count: int = typer.Option(5, "--count", min=1, help="Occurrences to show"),
    tz: str | None = typer.Option(None, "--timezone", help="Override the zone"),
) -> None:
    """Print upcoming occurrences of cron ``EXPRESSION``."""

    zone = tz or load_config().get("timezone", "UTC")
    try:
        for when in iter_occurrences(
            expression, zone, datetime.now(dt_timezone.utc), count
        ):
            typer.echo(when.isoformat())
    except RecurrenceError as exc:
        _fail(exc)


@app.command("serve")
def serve(
    api_port: int | None = typer.Option(
        None, "--api-port", help="Also serve the admin API on PORT"
    ),
    host: str = typer.Option("127.0.0.1", "--host"),
) -> None:
    """Run the background scheduler until interrupted."""

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sched = tr.initialize()
    if not sched.running:
        typer.echo("scheduler not started (non-serving environment)", err=True)
    try:
        if api_port is not None:
            import uvicorn

            from ..api import app as api_app

            uvicorn.run(api_app, host=host, port=api_port)
        else:
            while sched.running:
                time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        tr.shutdown()


def main(args: list[str] | None = None) -> None:
    """CLI entry point used by ``console_scripts`` or directly.

    Parameters
    ----------
    args:
        Optional list of CLI arguments. If ``None`` (default), an empty list is
        passed so that pytest arguments are ignored during tests.
    """

    app(args or [], standalone_mode=False)


__all__ = ["app", "main"]
