# Overview: Audit recorder collaborator; receives a before/after entry for every mutation.

"""
Audit recording

The workflow core does not own audit persistence. It hands every mutation to
whatever recorder is registered on the app:

    app.extensions["audit_recorder"] = MyRecorder()

A recorder is any object with
    record(actor_id, action, entity_type, entity_id, before=None, after=None)

RULES:
- Called AFTER the business transaction commits
- Best-effort: a failing recorder is logged and never undoes or fails the
  business operation that already happened
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import AuditLog

EXTENSION_KEY = "audit_recorder"


class DatabaseAuditRecorder:
    """Default recorder: one AuditLog row per entry, committed on its own."""

    def record(self, actor_id, action, entity_type, entity_id, before=None, after=None) -> None:
        entry = AuditLog(
            actor_user_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
        )
        db.session.add(entry)
        db.session.commit()


def get_recorder():
    return current_app.extensions.get(EXTENSION_KEY)


def record(actor_id, action: str, entity_type: str, entity_id, *, before: dict | None = None, after: dict | None = None) -> None:
    recorder = get_recorder()
    if recorder is None:
        return
    try:
        recorder.record(actor_id, action, entity_type, entity_id, before=before, after=after)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to write audit entry %s %s/%s", action, entity_type, entity_id
        )


def list_entries(entity_type: str, entity_id: int, limit: int = 200) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
