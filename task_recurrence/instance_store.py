from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .models import TaskInstance
from .storage import YamlFileStore, resolve_store_path


class InstanceRepository(Protocol):
    def create(self, instance: TaskInstance) -> TaskInstance:
        ...


class InstanceStore(YamlFileStore):
    """Persistent store for generated :class:`TaskInstance` work items."""

    default: Dict[str, Any] = {}

    def __init__(self, path: str | Path | None = None) -> None:
        super().__init__(
            resolve_store_path(
                path, "RECURRENCE_INSTANCES_PATH", "instances_path", "instances.yml"
            )
        )

    def create(self, instance: TaskInstance) -> TaskInstance:
        with self._locked():
            data = self._read()
            data[instance.id] = instance.to_dict()
            self._write(data)
        return instance

    def get(self, instance_id: str) -> Optional[TaskInstance]:
        with self._locked():
            entry = self._read().get(instance_id)
        return TaskInstance.from_dict(entry) if entry is not None else None

    def delete(self, instance_id: str) -> bool:
        with self._locked():
            data = self._read()
            removed = data.pop(instance_id, None) is not None
            if removed:
                self._write(data)
        return removed

    def list_for_template(
        self, template_id: str, limit: int | None = None
    ) -> List[TaskInstance]:
        """Return instances generated from ``template_id``, newest first."""

        with self._locked():
            entries = list(self._read().values())
        instances = [
            TaskInstance.from_dict(e)
            for e in entries
            if e.get("recurring_template_id") == template_id
        ]
        instances.sort(key=lambda i: i.created_at, reverse=True)
        return instances[:limit] if limit is not None else instances
