import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import task_recurrence as pkg  # noqa: E402
from task_recurrence.generation_log import GenerationLog  # noqa: E402
from task_recurrence.instance_store import InstanceStore  # noqa: E402
from task_recurrence.materializer import TaskMaterializer  # noqa: E402
from task_recurrence.scheduler import RecurringScheduler  # noqa: E402
from task_recurrence.template_store import TemplateStore  # noqa: E402
from tests.utils.fakes import FixedClock, RecordingNotifier  # noqa: E402

scheduler_module = pkg.scheduler

# Monday 2024-01-01 09:01 in Asia/Jerusalem
MONDAY_0901 = datetime(2024, 1, 1, 7, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for var in (
        "RECURRENCE_CONFIG",
        "RECURRENCE_TIMEZONE",
        "RECURRENCE_TICK_SECONDS",
        "RECURRENCE_FALLBACK_HOURS",
        "RECURRENCE_NOTIFY_WEBHOOK",
        "RECURRENCE_NOTIFY_TIMEOUT",
        "RECURRENCE_APP_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("RECURRENCE_ENV", "test")
    monkeypatch.setenv("RECURRENCE_TEMPLATES_PATH", str(tmp_path / "env-templates.yml"))
    monkeypatch.setenv("RECURRENCE_INSTANCES_PATH", str(tmp_path / "env-instances.yml"))
    monkeypatch.setenv(
        "RECURRENCE_GENERATIONS_PATH", str(tmp_path / "env-generations.yml")
    )
    yield


@pytest.fixture(autouse=True)
def shutdown_scheduler():
    yield
    sched = scheduler_module._default_scheduler
    if sched is not None:
        sched.stop(wait=True, timeout=5)
    scheduler_module._default_scheduler = None


@pytest.fixture
def clock():
    return FixedClock(MONDAY_0901)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def stores(tmp_path):
    return SimpleNamespace(
        templates=TemplateStore(tmp_path / "templates.yml"),
        instances=InstanceStore(tmp_path / "instances.yml"),
        generations=GenerationLog(tmp_path / "generations.yml"),
    )


@pytest.fixture
def materializer(stores, notifier, clock):
    return TaskMaterializer(
        stores.templates,
        stores.instances,
        stores.generations,
        notifier,
        timezone="Asia/Jerusalem",
        app_url="https://helpdesk.example",
        clock=clock,
    )


@pytest.fixture
def scheduler(stores, materializer, clock):
    return RecurringScheduler(
        stores.templates, materializer, interval_seconds=3600, clock=clock
    )
