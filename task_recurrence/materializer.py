"""Turn one due template into one concrete task.

A materialization creates the task, appends its :class:`GenerationRecord`,
moves the template's schedule forward and finally tells the assignee. Only
the notification is allowed to fail silently; store errors propagate as
:class:`PersistenceFailure` and the template stays due.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone, tzinfo
import logging
from typing import Callable, Optional

import yaml

from . import metrics
from .cron import next_occurrence, resolve_timezone
from .errors import InvalidCronExpression, PersistenceFailure
from .generation_log import AuditSink
from .instance_store import InstanceRepository
from .models import (
    GenerationRecord,
    GenerationTrigger,
    RecurringTemplate,
    TaskInstance,
    TaskStatus,
    TaskType,
    utcnow,
)
from .notifier import LogNotifier, Notifier, build_notification
from .template_store import TemplateRepository

logger = logging.getLogger(__name__)


DEFAULT_FALLBACK = timedelta(hours=24)


@dataclass(frozen=True)
class MaterializationResult:
    """What one successful materialization produced."""

    template_id: str
    instance: TaskInstance
    record: GenerationRecord
    generated_at: datetime
    next_generation_at: Optional[datetime]
    used_fallback: bool = False
    notified: bool = False


class TaskMaterializer:
    """Create task instances from recurring templates.

    Parameters
    ----------
    templates, instances, generations:
        Stores for templates, generated tasks and the audit history.
    notifier:
        Receives the assignee notification; errors are logged and ignored.
    timezone:
        Zone the template cron expressions are evaluated in.
    fallback:
        Offset used as the next due time when a cron expression is invalid.
    """

    def __init__(
        self,
        templates: TemplateRepository,
        instances: InstanceRepository,
        generations: AuditSink,
        notifier: Notifier | None = None,
        *,
        timezone: str | tzinfo = "UTC",
        fallback: timedelta = DEFAULT_FALLBACK,
        app_url: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if fallback <= timedelta(0):
            raise ValueError("fallback must be positive")
        self.templates = templates
        self.instances = instances
        self.generations = generations
        self.notifier = notifier or LogNotifier()
        self.timezone = resolve_timezone(timezone)
        self.fallback = fallback
        self.app_url = app_url
        self.clock = clock

    def build_instance(self, template: RecurringTemplate, now: datetime) -> TaskInstance:
        """Return an unsaved task carrying ``template``'s fields.

        Recurring obligations belong to their assignee, so the assignee is
        recorded as both creator and assignee.
        """

        fields = template.fields
        return TaskInstance(
            title=fields.title,
            description=fields.description,
            priority=fields.priority,
            status=TaskStatus.OPEN,
            type=TaskType.RECURRING_INSTANCE,
            creator_id=fields.assignee_id,
            assignee_id=fields.assignee_id,
            branch=fields.branch,
            tags=list(fields.tags),
            attributes=dict(fields.attributes),
            recurring_template_id=template.id,
            created_at=now,
        )

    def compute_next(self, template: RecurringTemplate, now: datetime) -> tuple[datetime, bool]:
        """Return ``(next_generation_at, used_fallback)`` seeded from ``now``."""

        try:
            upcoming = next_occurrence(template.cron, self.timezone, now)
        except InvalidCronExpression as exc:
            logger.warning(
                "Template %s (%s) has an invalid cron expression %r, "
                "retrying in %s: %s",
                template.id,
                template.name,
                template.cron,
                self.fallback,
                exc.reason,
            )
            metrics.CRON_FALLBACK.inc()
            return now + self.fallback, True
        return upcoming.astimezone(dt_timezone.utc), False

    @metrics.track_operation(name="materialize")
    def materialize(
        self,
        template: RecurringTemplate,
        *,
        now: datetime | None = None,
        trigger: GenerationTrigger = GenerationTrigger.AUTOMATIC,
        actor_id: str | None = None,
    ) -> MaterializationResult:
        """Generate one task from ``template``.

        Automatic runs advance ``next_generation_at`` from ``now`` (never
        from the previous due time, so downtime does not cause a burst of
        catch-up tasks). Manual runs only touch ``last_generated_at``.
        """

        now = now or self.clock()
        instance = self.build_instance(template, now)
        instance = self._persist(
            "create instance", template, lambda: self.instances.create(instance)
        )

        automatic = trigger is GenerationTrigger.AUTOMATIC
        if automatic:
            next_at, used_fallback = self.compute_next(template, now)
        else:
            next_at, used_fallback = None, False

        record = GenerationRecord(
            template_id=template.id,
            template_name=template.name,
            instance_id=instance.id,
            instance_title=instance.title,
            actor_id=actor_id or template.fields.assignee_id,
            generated_at=now,
            trigger=trigger,
            metadata={
                "cron": template.cron,
                "priority": instance.priority.value,
                "used_fallback": used_fallback,
            },
        )
        self._persist(
            "append generation record", template, lambda: self.generations.append(record)
        )
        if automatic:
            self._persist(
                "advance schedule",
                template,
                lambda: self.templates.record_generation(
                    template.id, last_generated_at=now, next_generation_at=next_at
                ),
            )
        else:
            # the snapshot in ``template`` may predate a tick; keep the stored schedule
            next_at = self._persist(
                "record manual generation",
                template,
                lambda: self.templates.record_manual_generation(
                    template.id, last_generated_at=now
                ),
            )
        logger.info(
            "Generated task %s from template %s (%s, %s); next at %s",
            instance.id,
            template.id,
            template.name,
            trigger.value,
            next_at.isoformat() if next_at else None,
        )

        notified = self._notify(template, instance)
        metrics.GENERATION_SUCCESS.labels(trigger.value).inc()
        return MaterializationResult(
            template_id=template.id,
            instance=instance,
            record=record,
            generated_at=now,
            next_generation_at=next_at,
            used_fallback=used_fallback,
            notified=notified,
        )

    def _persist(self, step: str, template: RecurringTemplate, action):
        try:
            return action()
        except PersistenceFailure:
            raise
        except (OSError, yaml.YAMLError) as exc:
            raise PersistenceFailure(
                f"{step} failed for template {template.id}: {exc}"
            ) from exc

    def _notify(self, template: RecurringTemplate, instance: TaskInstance) -> bool:
        message = build_notification(instance, self.app_url)
        try:
            self.notifier.notify(instance.assignee_id, message)
        except Exception:
            logger.warning(
                "Failed to notify %s about task %s from template %s",
                instance.assignee_id,
                instance.id,
                template.id,
                exc_info=True,
            )
            metrics.NOTIFICATION_FAILURE.inc()
            return False
        return True
