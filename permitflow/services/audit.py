from __future__ import annotations

from typing import Any, Iterable, Mapping

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.context import get_request_id
from permitflow.core.logging import get_audit_logger
from permitflow.models.audit_log import AuditLog
from permitflow.services.stages import Stage

audit_logger = get_audit_logger()


def _encode(value: Any) -> Any:
    if value is None:
        return None
    return jsonable_encoder(value)


def model_snapshot(model: Any, *, include: Iterable[str] | None = None) -> dict[str, Any]:
    """Column values of ``model`` as JSON-safe data, optionally limited to ``include``."""
    if model is None:
        return {}
    names = [column.name for column in model.__table__.columns]
    if include is not None:
        wanted = set(include)
        names = [name for name in names if name in wanted]
    return _encode({name: getattr(model, name) for name in names})


def _field_changes(
    before: Mapping[str, Any] | None, after: Mapping[str, Any] | None
) -> dict[str, dict[str, Any]] | None:
    before = before or {}
    after = after or {}
    changes = {
        key: {"from": before.get(key), "to": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    }
    return changes or None


def _stage_label(code: Any) -> str:
    try:
        return Stage(int(code)).name
    except (TypeError, ValueError):
        return str(code)


def _summarize(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    if not changes:
        return action
    stage_change = changes.get("stage")
    if stage_change is not None:
        return f"{action}: {_stage_label(stage_change['from'])} -> {_stage_label(stage_change['to'])}"
    return f"{action}: {', '.join(changes)}"


def record_audit_log(
    db: AsyncSession,
    *,
    actor: str,
    action: str,
    resource_type: str,
    resource_id: str,
    old_value: Any | None = None,
    new_value: Any | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction and mirror it to the audit log stream.

    The row commits or rolls back together with the workflow change it describes.
    """
    before = _encode(old_value)
    after = _encode(new_value)
    changes = None
    if isinstance(before, dict) or isinstance(after, dict):
        changes = _field_changes(before, after)
    summary = _summarize(action, changes)
    entry = AuditLog(
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_value=before,
        new_value=after,
        changes=changes,
        summary=summary,
        request_id=get_request_id(),
    )
    db.add(entry)
    audit_logger.info(summary, extra={"application_id": resource_id})
    return entry
