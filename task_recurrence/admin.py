"""Administrative template operations shared by the CLI and the API."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List

from .generation_log import GenerationLog
from .instance_store import InstanceStore
from .materializer import MaterializationResult, TaskMaterializer
from .models import (
    GenerationRecord,
    GenerationTrigger,
    RecurringTemplate,
    TaskInstance,
    TemplateFields,
)
from .scheduler import RecurringScheduler
from .schemas import TemplateCreate, TemplateUpdate
from .template_store import TemplateStore

logger = logging.getLogger(__name__)


class TemplateAdmin:
    """CRUD and manual generation on top of a scheduler's stores."""

    def __init__(self, materializer: TaskMaterializer) -> None:
        self.materializer = materializer
        self.templates: TemplateStore = materializer.templates  # type: ignore[assignment]
        self.instances: InstanceStore = materializer.instances  # type: ignore[assignment]
        self.generations: GenerationLog = materializer.generations  # type: ignore[assignment]

    @classmethod
    def from_scheduler(cls, scheduler: RecurringScheduler) -> "TemplateAdmin":
        return cls(scheduler.materializer)

    def _now(self, now: datetime | None) -> datetime:
        return now or self.materializer.clock()

    def create(
        self,
        payload: TemplateCreate,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> RecurringTemplate:
        now = self._now(now)
        template = RecurringTemplate(
            name=payload.name,
            cron=payload.cron,
            enabled=payload.enabled,
            created_by=actor_id,
            created_at=now,
            fields=TemplateFields(
                title=payload.title,
                description=payload.description,
                priority=payload.priority,
                assignee_id=payload.assignee_id,
                branch=payload.branch,
                tags=list(payload.tags),
                attributes=dict(payload.attributes),
            ),
        )
        template.next_generation_at, _ = self.materializer.compute_next(template, now)
        self.templates.create(template)
        logger.info("Template %s (%s) created by %s", template.id, template.name, actor_id)
        return template

    def get(self, template_id: str) -> RecurringTemplate:
        return self.templates.get(template_id)

    def list(
        self, *, assignee_id: str | None = None, enabled: bool | None = None
    ) -> List[RecurringTemplate]:
        return self.templates.list(assignee_id=assignee_id, enabled=enabled)

    def update(
        self,
        template_id: str,
        payload: TemplateUpdate,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> RecurringTemplate:
        """Apply ``payload``; a new cron or re-enabling reschedules from now.

        Generation timestamps written by a tick since ``template_id`` was read
        are kept unless the update reschedules.
        """

        now = self._now(now)
        template = self.templates.get(template_id)
        changes = payload.model_dump(exclude_unset=True)

        reschedule = False
        if "name" in changes and changes["name"] is not None:
            template.name = changes["name"]
        if changes.get("cron") is not None and changes["cron"] != template.cron:
            template.cron = changes["cron"]
            reschedule = True
        if changes.get("enabled") is not None:
            if changes["enabled"] and not template.enabled:
                reschedule = True
            template.enabled = changes["enabled"]

        fields = template.fields
        for key in ("title", "description", "priority", "assignee_id"):
            if changes.get(key) is not None:
                setattr(fields, key, changes[key])
        if "branch" in changes:
            fields.branch = changes["branch"]
        if changes.get("tags") is not None:
            fields.tags = list(changes["tags"])
        if changes.get("attributes") is not None:
            fields.attributes = dict(changes["attributes"])

        if reschedule:
            template.next_generation_at, _ = self.materializer.compute_next(template, now)
        template = self.templates.update(template, reschedule=reschedule)
        logger.info(
            "Template %s (%s) updated by %s: %s",
            template.id,
            template.name,
            actor_id,
            sorted(changes),
        )
        return template

    def set_enabled(
        self,
        template_id: str,
        enabled: bool,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> RecurringTemplate:
        return self.update(
            template_id, TemplateUpdate(enabled=enabled), actor_id=actor_id, now=now
        )

    def delete(self, template_id: str, *, actor_id: str | None = None) -> None:
        self.templates.delete(template_id)
        logger.info("Template %s deleted by %s", template_id, actor_id)

    def generate(
        self,
        template_id: str,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> MaterializationResult:
        """Generate a task immediately without moving the automatic schedule."""

        template = self.templates.get(template_id)
        return self.materializer.materialize(
            template,
            now=self._now(now),
            trigger=GenerationTrigger.MANUAL,
            actor_id=actor_id,
        )

    def recent_instances(self, template_id: str, limit: int = 10) -> List[TaskInstance]:
        return self.instances.list_for_template(template_id, limit=limit)

    def history(self, template_id: str) -> List[GenerationRecord]:
        return self.generations.list_for_template(template_id)
