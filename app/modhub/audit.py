from __future__ import annotations

import json
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.modhub.models import AuditEvent, User


def _request_id() -> str | None:
    # Scripts and background threads record events too.
    if not has_request_context():
        return None
    return getattr(g, "request_id", None)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """Append an audit row to `s`; the caller commits."""
    ev = AuditEvent(
        request_id=request_id or _request_id(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )
    if actor is not None:
        ev.actor_user_id = actor.id
        ev.actor_user_email = actor.email
    if metadata:
        ev.metadata_json = json.dumps(metadata, sort_keys=True, ensure_ascii=False)
    s.add(ev)
    return ev
