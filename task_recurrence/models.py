"""Data model for recurring templates, generated tasks and audit records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TaskStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    PENDING_VENDOR = "PendingVendor"
    PENDING_USER = "PendingUser"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class TaskType(str, Enum):
    STANDARD = "standard"
    RECURRING_INSTANCE = "recurring_instance"


class GenerationTrigger(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def dump_instant(value: Optional[datetime]) -> Optional[str]:
    """Serialize ``value`` as an ISO-8601 UTC string."""

    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def load_instant(value: Any) -> Optional[datetime]:
    """Parse an instant written by :func:`dump_instant`.

    Naive values are assumed to be UTC.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class TemplateFields:
    """Fields copied verbatim into every generated task."""

    title: str
    assignee_id: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    branch: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "assignee_id": self.assignee_id,
            "branch": self.branch,
            "tags": list(self.tags),
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateFields":
        return cls(
            title=str(data["title"]),
            assignee_id=str(data["assignee_id"]),
            description=str(data.get("description") or ""),
            priority=TaskPriority(data.get("priority") or TaskPriority.MEDIUM.value),
            branch=data.get("branch"),
            tags=list(data.get("tags") or []),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass
class RecurringTemplate:
    """A persisted cron schedule plus the fields of the task it produces.

    ``next_generation_at`` of ``None`` means the template is due on the next
    tick.
    """

    name: str
    cron: str
    fields: TemplateFields
    id: str = field(default_factory=new_id)
    enabled: bool = True
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_generated_at: Optional[datetime] = None
    next_generation_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        if not self.enabled:
            return False
        return self.next_generation_at is None or self.next_generation_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cron": self.cron,
            "enabled": self.enabled,
            "fields": self.fields.to_dict(),
            "created_by": self.created_by,
            "created_at": dump_instant(self.created_at),
            "last_generated_at": dump_instant(self.last_generated_at),
            "next_generation_at": dump_instant(self.next_generation_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurringTemplate":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            cron=str(data.get("cron") or ""),
            fields=TemplateFields.from_dict(data.get("fields") or {}),
            enabled=bool(data.get("enabled", True)),
            created_by=data.get("created_by"),
            created_at=load_instant(data.get("created_at")) or utcnow(),
            last_generated_at=load_instant(data.get("last_generated_at")),
            next_generation_at=load_instant(data.get("next_generation_at")),
        )


@dataclass
class TaskInstance:
    """A concrete work item produced from a template."""

    title: str
    creator_id: str
    assignee_id: str
    recurring_template_id: Optional[str] = None
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.OPEN
    type: TaskType = TaskType.STANDARD
    branch: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "type": self.type.value,
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "branch": self.branch,
            "tags": list(self.tags),
            "attributes": dict(self.attributes),
            "recurring_template_id": self.recurring_template_id,
            "created_at": dump_instant(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskInstance":
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            description=str(data.get("description") or ""),
            priority=TaskPriority(data.get("priority") or TaskPriority.MEDIUM.value),
            status=TaskStatus(data.get("status") or TaskStatus.OPEN.value),
            type=TaskType(data.get("type") or TaskType.STANDARD.value),
            creator_id=str(data["creator_id"]),
            assignee_id=str(data["assignee_id"]),
            branch=data.get("branch"),
            tags=list(data.get("tags") or []),
            attributes=dict(data.get("attributes") or {}),
            recurring_template_id=data.get("recurring_template_id"),
            created_at=load_instant(data.get("created_at")) or utcnow(),
        )


@dataclass(frozen=True)
class GenerationRecord:
    """Append-only audit entry for one materialization.

    Records outlive the generated task; deleting the task leaves its record.
    """

    template_id: str
    template_name: str
    instance_id: str
    instance_title: str
    actor_id: str
    generated_at: datetime
    trigger: GenerationTrigger = GenerationTrigger.AUTOMATIC
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "instance_id": self.instance_id,
            "instance_title": self.instance_title,
            "actor_id": self.actor_id,
            "generated_at": dump_instant(self.generated_at),
            "trigger": self.trigger.value,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationRecord":
        return cls(
            id=str(data["id"]),
            template_id=str(data["template_id"]),
            template_name=str(data.get("template_name") or ""),
            instance_id=str(data["instance_id"]),
            instance_title=str(data.get("instance_title") or ""),
            actor_id=str(data.get("actor_id") or ""),
            generated_at=load_instant(data["generated_at"]) or utcnow(),
            trigger=GenerationTrigger(data.get("trigger") or "automatic"),
            metadata=dict(data.get("metadata") or {}),
        )
