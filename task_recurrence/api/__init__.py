from __future__ import annotations

from typing import Any, Dict

from fastapi import Depends, FastAPI, Header, HTTPException

from ..admin import TemplateAdmin
from ..errors import PersistenceFailure, TemplateNotFound
from ..models import RecurringTemplate
from ..scheduler import get_default_scheduler
from ..schemas import TemplateCreate, TemplateUpdate


app = FastAPI(title="Recurring tasks")


def get_admin() -> TemplateAdmin:
    """Return the template admin bound to the default scheduler."""
    try:
        return TemplateAdmin.from_scheduler(get_default_scheduler())
    except RuntimeError as exc:
        raise HTTPException(503, detail=str(exc)) from exc


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Return the user identifier from ``X-User-ID`` header."""
    if x_user_id is None:
        raise HTTPException(400, "user_id header required")
    return x_user_id


def _template_payload(template: RecurringTemplate) -> Dict[str, Any]:
    return template.to_dict()


def _lookup(admin: TemplateAdmin, template_id: str) -> RecurringTemplate:
    try:
        return admin.get(template_id)
    except TemplateNotFound as exc:
        raise HTTPException(404, detail=str(exc)) from exc


@app.get("/templates")
def list_templates(
    assignee_id: str | None = None,
    enabled: bool | None = None,
    admin: TemplateAdmin = Depends(get_admin),
):
    """Return all templates, optionally filtered."""
    return [
        _template_payload(t)
        for t in admin.list(assignee_id=assignee_id, enabled=enabled)
    ]


@app.post("/templates", status_code=201)
def create_template(
    payload: TemplateCreate,
    user_id: str = Depends(get_user_id),
    admin: TemplateAdmin = Depends(get_admin),
):
    """Create a template and schedule its first generation."""
    try:
        template = admin.create(payload, actor_id=user_id)
    except PersistenceFailure as exc:
        raise HTTPException(500, detail=str(exc)) from exc
    return _template_payload(template)


@app.get("/templates/{template_id}")
def get_template(template_id: str, admin: TemplateAdmin = Depends(get_admin)):
    """Return a template together with its ten most recent tasks."""
    template = _lookup(admin, template_id)
    body = _template_payload(template)
    body["recent_instances"] = [
        i.to_dict() for i in admin.recent_instances(template_id, limit=10)
    ]
    return body


@app.put("/templates/{template_id}")
def update_template(
    template_id: str,
    payload: TemplateUpdate,
    user_id: str = Depends(get_user_id),
    admin: TemplateAdmin = Depends(get_admin),
):
    """Apply a partial update."""
    try:
        template = admin.update(template_id, payload, actor_id=user_id)
    except TemplateNotFound as exc:
        raise HTTPException(404, detail=str(exc)) from exc
    except PersistenceFailure as exc:
        raise HTTPException(500, detail=str(exc)) from exc
    return _template_payload(template)


@app.delete("/templates/{template_id}")
def delete_template(
    template_id: str,
    user_id: str = Depends(get_user_id),
    admin: TemplateAdmin = Depends(get_admin),
):
    """Delete a template; its generated tasks and history remain."""
    try:
        admin.delete(template_id, actor_id=user_id)
    except TemplateNotFound as exc:
        raise HTTPException(404, detail=str(exc)) from exc
    return {"success": True}


@app.post("/templates/{template_id}/generate", status_code=201)
def generate_now(
    template_id: str,
    user_id: str = Depends(get_user_id),
    admin: TemplateAdmin = Depends(get_admin),
):
    """Manually generate a task from a template."""
    try:
        result = admin.generate(template_id, actor_id=user_id)
    except TemplateNotFound as exc:
        raise HTTPException(404, detail=str(exc)) from exc
    except PersistenceFailure as exc:
        raise HTTPException(500, detail=str(exc)) from exc
    return {
        "instance": result.instance.to_dict(),
        "record": result.record.to_dict(),
        "notified": result.notified,
    }


@app.get("/templates/{template_id}/history")
def template_history(template_id: str, admin: TemplateAdmin = Depends(get_admin)):
    """Return the generation records of a template.

    History is kept after the template is deleted.
    """
    return [r.to_dict() for r in admin.history(template_id)]


@app.get("/scheduler")
def scheduler_status():
    """Return whether the loop runs and the report of its last tick."""
    try:
        sched = get_default_scheduler()
    except RuntimeError as exc:
        raise HTTPException(503, detail=str(exc)) from exc
    report = sched.last_report
    return {
        "running": sched.running,
        "interval_seconds": sched.interval,
        "last_report": report.to_dict() if report else None,
    }
