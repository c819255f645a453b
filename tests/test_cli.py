import pytest
from typer.testing import CliRunner

from task_recurrence.cli import app, main
from task_recurrence.scheduler import get_default_scheduler, set_default_scheduler
from tests.utils.fakes import make_template


def test_cli_main_requires_command():
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    with pytest.raises(Exception, match="Missing command"):
        main([])


def test_add_and_list(scheduler, stores):
    set_default_scheduler(scheduler)
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "add",
            "Backups",
            "0 9 * * 1",
            "--title",
            "Check backups",
            "--assignee",
            "alice",
            "--priority",
            "High",
            "--tag",
            "backup",
            "--attr",
            "server_name=srv-01",
            "--user-id",
            "manager",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "next=2024-01-08T07:00:00+00:00" in result.output

    (template,) = stores.templates.list()
    assert template.created_by == "manager"
    assert template.fields.attributes == {"server_name": "srv-01"}
    assert template.fields.tags == ["backup"]

    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert template.id in result.output
    assert "enabled" in result.output


def test_add_rejects_invalid_input(scheduler, stores):
    set_default_scheduler(scheduler)
    runner = CliRunner()
    base = ["add", "Backups", "--title", "t", "--assignee", "alice"]

    result = runner.invoke(app, base[:2] + ["not-a-cron"] + base[2:])
    assert result.exit_code == 1
    result = runner.invoke(app, base[:2] + ["0 9 * * 1"] + base[2:] + ["--attr", "novalue"])
    assert result.exit_code == 1
    assert stores.templates.list() == []


def test_tick_and_history(scheduler, stores):
    set_default_scheduler(scheduler)
    template = make_template()
    stores.templates.create(template)
    runner = CliRunner()

    result = runner.invoke(app, ["tick"])
    assert result.exit_code == 0
    assert "1 generated, 0 failed" in result.output

    result = runner.invoke(app, ["history", template.id])
    assert result.exit_code == 0
    assert "automatic" in result.output
    assert "Check backups" in result.output


def test_generate_is_manual(scheduler, stores):
    set_default_scheduler(scheduler)
    template = make_template()
    stores.templates.create(template)

    result = CliRunner().invoke(app, ["generate", template.id, "--user-id", "manager"])

    assert result.exit_code == 0
    (record,) = stores.generations.list_for_template(template.id)
    assert record.trigger.value == "manual"
    assert record.actor_id == "manager"


def test_disable_enable_and_remove(scheduler, stores):
    set_default_scheduler(scheduler)
    template = make_template()
    stores.templates.create(template)
    runner = CliRunner()

    assert runner.invoke(app, ["disable", template.id]).exit_code == 0
    assert stores.templates.find_due(scheduler.clock()) == []

    result = runner.invoke(app, ["enable", template.id])
    assert result.exit_code == 0
    assert stores.templates.get(template.id).next_generation_at is not None

    assert runner.invoke(app, ["remove", template.id]).exit_code == 0
    assert stores.templates.list() == []


def test_unknown_template_fails(scheduler):
    set_default_scheduler(scheduler)
    result = CliRunner().invoke(app, ["show", "missing"])
    assert result.exit_code == 1
    assert "Unknown template: missing" in result.output


def test_next_previews_occurrences():
    runner = CliRunner()
    result = runner.invoke(
        app, ["next", "0 9 * * 1", "--count", "3", "--timezone", "Asia/Jerusalem"]
    )
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 3
    assert all(line.endswith("+02:00") or line.endswith("+03:00") for line in lines)

    result = runner.invoke(app, ["next", "not-a-cron"])
    assert result.exit_code == 1


def test_commands_create_default_scheduler_from_config():
    result = CliRunner().invoke(app, ["list"])
    assert result.exit_code == 0
    assert not get_default_scheduler().running


def test_metrics_port_option(monkeypatch, scheduler):
    set_default_scheduler(scheduler)
    called = {}

    def fake_start(port):
        called["port"] = port

    monkeypatch.setattr("task_recurrence.cli.start_metrics_server", fake_start)
    result = CliRunner().invoke(app, ["--metrics-port", "9100", "list"])
    assert result.exit_code == 0
    assert called["port"] == 9100


def test_serve_in_test_environment_exits():
    result = CliRunner().invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "not started" in result.output
