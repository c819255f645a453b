from __future__ import annotations

from pathlib import Path
from typing import Any, List, Protocol

from .models import GenerationRecord
from .storage import YamlFileStore, resolve_store_path


class AuditSink(Protocol):
    def append(self, record: GenerationRecord) -> None:
        ...


class GenerationLog(YamlFileStore):
    """Append-only history of materializations.

    Records are never rewritten or removed, so the history survives deletion
    of the generated tasks and edits to the templates.
    """

    default: List[Any] = []

    def __init__(self, path: str | Path | None = None) -> None:
        super().__init__(
            resolve_store_path(
                path, "RECURRENCE_GENERATIONS_PATH", "generations_path", "generations.yml"
            )
        )

    def append(self, record: GenerationRecord) -> None:
        with self._locked():
            data = self._read()
            data.append(record.to_dict())
            self._write(data)

    def list_for_template(self, template_id: str) -> List[GenerationRecord]:
        with self._locked():
            entries = self._read()
        return [
            GenerationRecord.from_dict(e)
            for e in entries
            if isinstance(e, dict) and e.get("template_id") == template_id
        ]

    def all(self) -> List[GenerationRecord]:
        with self._locked():
            entries = self._read()
        return [GenerationRecord.from_dict(e) for e in entries if isinstance(e, dict)]
