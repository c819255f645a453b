from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .errors import TemplateNotFound
from .models import RecurringTemplate, dump_instant, load_instant
from .storage import YamlFileStore, resolve_store_path


class TemplateRepository(Protocol):
    """What the scheduler needs from template persistence."""

    def find_due(self, now: datetime) -> List[RecurringTemplate]:
        ...

    def record_generation(
        self,
        template_id: str,
        *,
        last_generated_at: datetime,
        next_generation_at: Optional[datetime],
    ) -> None:
        ...

    def record_manual_generation(
        self, template_id: str, *, last_generated_at: datetime
    ) -> Optional[datetime]:
        ...


class TemplateStore(YamlFileStore):
    """Persistent store for :class:`RecurringTemplate` definitions."""

    default: Dict[str, Any] = {}

    def __init__(self, path: str | Path | None = None) -> None:
        super().__init__(
            resolve_store_path(
                path, "RECURRENCE_TEMPLATES_PATH", "templates_path", "templates.yml"
            )
        )

    # ------------------------------------------------------------------
    # Administrative CRUD
    def create(self, template: RecurringTemplate) -> RecurringTemplate:
        with self._locked():
            data = self._read()
            if template.id in data:
                raise ValueError(f"Template already exists: {template.id}")
            data[template.id] = template.to_dict()
            self._write(data)
        return template

    def get(self, template_id: str) -> RecurringTemplate:
        with self._locked():
            entry = self._read().get(template_id)
        if entry is None:
            raise TemplateNotFound(template_id)
        return RecurringTemplate.from_dict(entry)

    def list(
        self,
        *,
        assignee_id: str | None = None,
        enabled: bool | None = None,
    ) -> List[RecurringTemplate]:
        with self._locked():
            entries = list(self._read().values())
        templates = [RecurringTemplate.from_dict(e) for e in entries]
        if assignee_id is not None:
            templates = [t for t in templates if t.fields.assignee_id == assignee_id]
        if enabled is not None:
            templates = [t for t in templates if t.enabled is enabled]
        return sorted(templates, key=lambda t: t.created_at)

    def update(
        self, template: RecurringTemplate, *, reschedule: bool = False
    ) -> RecurringTemplate:
        """Write the administrative fields of ``template``.

        The stored generation timestamps win over the ones carried by
        ``template``, which may be older than a tick that ran since it was
        read. With ``reschedule`` the new ``next_generation_at`` is written.
        """

        with self._locked():
            data = self._read()
            stored = data.get(template.id)
            if stored is None:
                raise TemplateNotFound(template.id)
            entry = template.to_dict()
            entry["last_generated_at"] = stored.get("last_generated_at")
            if not reschedule:
                entry["next_generation_at"] = stored.get("next_generation_at")
            data[template.id] = entry
            self._write(data)
        return RecurringTemplate.from_dict(entry)

    def delete(self, template_id: str) -> None:
        with self._locked():
            data = self._read()
            if data.pop(template_id, None) is None:
                raise TemplateNotFound(template_id)
            self._write(data)

    # ------------------------------------------------------------------
    # Scheduler access
    def find_due(self, now: datetime) -> List[RecurringTemplate]:
        """Return enabled templates whose next generation is unset or ``<= now``.

        Templates never generated come first, then by ascending due time.
        """

        with self._locked():
            entries = list(self._read().values())
        due = [
            t for t in (RecurringTemplate.from_dict(e) for e in entries) if t.is_due(now)
        ]
        return sorted(
            due,
            key=lambda t: (
                t.next_generation_at is not None,
                t.next_generation_at or t.created_at,
            ),
        )

    def record_generation(
        self,
        template_id: str,
        *,
        last_generated_at: datetime,
        next_generation_at: Optional[datetime],
    ) -> None:
        """Update only the generation timestamps of ``template_id``."""

        with self._locked():
            data = self._read()
            entry = data.get(template_id)
            if entry is None:
                raise TemplateNotFound(template_id)
            entry["last_generated_at"] = dump_instant(last_generated_at)
            entry["next_generation_at"] = dump_instant(next_generation_at)
            self._write(data)

    def record_manual_generation(
        self, template_id: str, *, last_generated_at: datetime
    ) -> Optional[datetime]:
        """Set ``last_generated_at`` only and return the stored next due time."""

        with self._locked():
            data = self._read()
            entry = data.get(template_id)
            if entry is None:
                raise TemplateNotFound(template_id)
            entry["last_generated_at"] = dump_instant(last_generated_at)
            self._write(data)
        return load_instant(entry.get("next_generation_at"))
