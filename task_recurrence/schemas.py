from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .cron import validate_cron
from .errors import InvalidCronExpression
from .models import TaskPriority


def _check_cron(value: str) -> str:
    try:
        return validate_cron(value)
    except InvalidCronExpression as exc:
        raise ValueError(str(exc)) from exc


class TemplateCreate(BaseModel):
    """Schema for creating a recurring template."""

    name: str = Field(min_length=1, max_length=255)
    cron: str
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_id: str = Field(min_length=1)
    branch: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        return _check_cron(value)


class TemplateUpdate(BaseModel):
    """Schema for partial template updates; omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    cron: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = Field(default=None, min_length=1)
    branch: Optional[str] = None
    tags: Optional[List[str]] = None
    attributes: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, value: Optional[str]) -> Optional[str]:
        return _check_cron(value) if value is not None else None
