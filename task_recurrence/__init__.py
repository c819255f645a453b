"""Recurring task generation for the helpdesk task tracker.

Cron-defined templates are turned into concrete tasks by a background
scheduler started once per process via :func:`initialize`.
"""

import threading

from .scheduler import (
    RecurringScheduler,
    TickReport,
    create_scheduler,
    get_default_scheduler,
    set_default_scheduler,
)
from . import scheduler  # noqa: F401
from . import metrics  # noqa: F401
from .config import load_config
from .cron import next_occurrence
from .errors import (
    InvalidCronExpression,
    InvalidTimezone,
    NotificationFailure,
    PersistenceFailure,
    RecurrenceError,
    TemplateNotFound,
)
from .materializer import TaskMaterializer

_init_lock = threading.Lock()


def initialize(path: str | None = None) -> RecurringScheduler:
    """Build the default scheduler from configuration and start it.

    Repeated calls while the default scheduler is running return it
    unchanged, so module re-evaluation never registers a second loop.
    """

    with _init_lock:
        current = scheduler._default_scheduler
        if current is not None and current.running:
            return current
        cfg = load_config(path)
        sched = create_scheduler(cfg)
        set_default_scheduler(sched)
        sched.start()
        return sched


def shutdown() -> None:
    """Stop and discard the default scheduler, if any."""

    with _init_lock:
        current = scheduler._default_scheduler
        if current is not None:
            current.stop()
        set_default_scheduler(None)


from . import cli  # noqa: F401,E402
from . import api  # noqa: F401,E402


__all__ = [
    "scheduler",
    "metrics",
    "cli",
    "api",
    "initialize",
    "shutdown",
    "load_config",
    "next_occurrence",
    "create_scheduler",
    "get_default_scheduler",
    "RecurringScheduler",
    "TaskMaterializer",
    "TickReport",
    "RecurrenceError",
    "InvalidCronExpression",
    "InvalidTimezone",
    "PersistenceFailure",
    "NotificationFailure",
    "TemplateNotFound",
]
