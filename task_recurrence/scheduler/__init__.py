"""Background loop generating tasks from due recurring templates.

:class:`RecurringScheduler` owns one worker thread. On every tick it asks
the template store for due templates and materializes them one after the
other. A failing template is recorded in the :class:`TickReport` and the
loop moves on to the next one.

Only one scheduler may run against a given store at a time: nothing here
stops two processes from generating the same template twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .. import metrics
from ..config import is_serving
from ..generation_log import GenerationLog
from ..instance_store import InstanceStore
from ..materializer import TaskMaterializer
from ..models import GenerationTrigger, RecurringTemplate, utcnow
from ..notifier import create_notifier
from ..template_store import TemplateRepository, TemplateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateOutcome:
    """Result of processing one template during a tick."""

    template_id: str
    template_name: str
    ok: bool
    instance_id: Optional[str] = None
    next_generation_at: Optional[datetime] = None
    used_fallback: bool = False
    notified: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "ok": self.ok,
            "instance_id": self.instance_id,
            "next_generation_at": (
                self.next_generation_at.isoformat() if self.next_generation_at else None
            ),
            "used_fallback": self.used_fallback,
            "notified": self.notified,
            "error": self.error,
        }


@dataclass
class TickReport:
    """Everything that happened during one tick."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: List[TemplateOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> List[TemplateOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[TemplateOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class RecurringScheduler:
    """Tick loop plus start/stop guard.

    Parameters
    ----------
    templates:
        Store queried for due templates on every tick.
    materializer:
        Performs each generation.
    interval_seconds:
        Time between tick starts. Ticks never overlap: a tick that runs past
        its successor's start skips the missed beats.
    serving:
        ``False`` for test or CI processes, in which :meth:`start` does
        nothing.
    clock:
        Wall-clock source for the tick time.
    """

    def __init__(
        self,
        templates: TemplateRepository,
        materializer: TaskMaterializer,
        *,
        interval_seconds: float = 60.0,
        serving: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.templates = templates
        self.materializer = materializer
        self.interval = float(interval_seconds)
        self.serving = serving
        self.clock = clock
        self.last_report: Optional[TickReport] = None
        self._lifecycle_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> bool:
        """Start the tick loop; return ``False`` if nothing was started."""

        with self._lifecycle_lock:
            if self.running:
                logger.info("Recurring scheduler already running, skipping start")
                return False
            if not self.serving:
                logger.info("Non-serving environment, recurring scheduler not started")
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="recurring-scheduler", daemon=True
            )
            self._thread.start()
        logger.info("Recurring scheduler started (interval=%ss)", self.interval)
        return True

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Cancel the pending tick.

        A materialization already in progress is allowed to finish; with
        ``wait`` the call blocks until it has.
        """

        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            if wait and thread is not threading.current_thread():
                thread.join(timeout)
            # a thread still finishing its tick keeps ``running`` true
            if not thread.is_alive():
                self._thread = None
        logger.info("Recurring scheduler stopped")

    def _loop(self) -> None:
        deadline = time.monotonic()
        while not self._stop_event.is_set():
            self.run_once()
            deadline += self.interval
            now = time.monotonic()
            if now > deadline:
                skipped = math.ceil((now - deadline) / self.interval)
                logger.warning("Tick overran by %d interval(s)", skipped)
                deadline += skipped * self.interval
            self._stop_event.wait(deadline - now)

    # ------------------------------------------------------------------
    # Ticks
    def run_once(self, now: datetime | None = None) -> TickReport:
        """Run one tick synchronously and return its report."""

        with self._tick_lock:
            start = time.monotonic()
            report = self._tick(now or self.clock())
            metrics.TICKS.inc()
            metrics.TICK_LATENCY.observe(time.monotonic() - start)
            self.last_report = report
        return report

    def _tick(self, now: datetime) -> TickReport:
        report = TickReport(started_at=now)
        try:
            due = self.templates.find_due(now)
        except Exception as exc:
            logger.exception("Querying due templates failed; retrying next tick")
            report.error = str(exc)
            report.finished_at = self.clock()
            return report

        if due:
            logger.info("Found %d due recurring template(s)", len(due))
        for template in due:
            report.outcomes.append(self._process(template, now))
        report.finished_at = self.clock()
        return report

    def _process(self, template: RecurringTemplate, now: datetime) -> TemplateOutcome:
        try:
            result = self.materializer.materialize(template, now=now)
        except Exception as exc:
            logger.exception(
                "Generating task for template %s (%s) failed", template.id, template.name
            )
            metrics.GENERATION_FAILURE.labels(GenerationTrigger.AUTOMATIC.value).inc()
            return TemplateOutcome(
                template_id=template.id,
                template_name=template.name,
                ok=False,
                error=str(exc),
            )
        return TemplateOutcome(
            template_id=template.id,
            template_name=template.name,
            ok=True,
            instance_id=result.instance.id,
            next_generation_at=result.next_generation_at,
            used_fallback=result.used_fallback,
            notified=result.notified,
        )


def create_scheduler(cfg: Dict[str, Any]) -> RecurringScheduler:
    """Build a scheduler and its stores from a :func:`load_config` mapping."""

    templates = TemplateStore(cfg.get("templates_path"))
    materializer = TaskMaterializer(
        templates,
        InstanceStore(cfg.get("instances_path")),
        GenerationLog(cfg.get("generations_path")),
        create_notifier(cfg),
        timezone=cfg.get("timezone", "UTC"),
        fallback=timedelta(hours=float(cfg.get("fallback_hours", 24))),
        app_url=cfg.get("app_url"),
    )
    return RecurringScheduler(
        templates,
        materializer,
        interval_seconds=float(cfg.get("tick_seconds", 60)),
        serving=is_serving(cfg),
    )


# ---------------------------------------------------------------------------
# Default scheduler accessor

_default_scheduler: RecurringScheduler | None = None


def set_default_scheduler(scheduler: RecurringScheduler | None) -> None:
    """Set the scheduler used by the CLI and API."""

    global _default_scheduler
    _default_scheduler = scheduler


def get_default_scheduler() -> RecurringScheduler:
    """Return the configured default scheduler."""

    if _default_scheduler is None:
        raise RuntimeError("Default scheduler has not been initialised")
    return _default_scheduler


__all__ = [
    "RecurringScheduler",
    "TemplateOutcome",
    "TickReport",
    "create_scheduler",
    "get_default_scheduler",
    "set_default_scheduler",
]
