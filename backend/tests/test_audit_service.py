"""
Audit recording tests.

Verifies:
- Mutations hand a before/after entry to the recorder
- A failing recorder never fails or undoes the business operation
"""

import logging

import pytest

from dealflow.errors import InvalidTransitionError
from dealflow.extensions import db
from dealflow.models import AuditLog, Deal
from dealflow.services import audit_service, deal_service, lifecycle_service as lifecycle


class FailingRecorder:
    def record(self, *args, **kwargs):
        raise RuntimeError("audit store unavailable")


class ListRecorder:
    def __init__(self):
        self.entries = []

    def record(self, actor_id, action, entity_type, entity_id, before=None, after=None):
        self.entries.append((actor_id, action, entity_type, entity_id, before, after))


class TestDatabaseRecorder:

    def test_transition_is_logged(self, workflow, manager):
        deal = workflow.create()
        deal_service.start_work(manager, deal.id)

        entries = audit_service.list_entries("deal", deal.id)
        assert [e.action for e in entries] == ["deal.start_work", "deal.created"]
        latest = entries[0]
        assert latest.actor_user_id == manager.user_id
        assert latest.before["status"] == lifecycle.NEW
        assert latest.after["status"] == lifecycle.IN_PROGRESS

    def test_failed_operation_is_not_logged(self, workflow, manager):
        deal = workflow.create()
        with pytest.raises(InvalidTransitionError):
            deal_service.request_stock_confirmation(manager, deal.id)
        assert [e.action for e in audit_service.list_entries("deal", deal.id)] == ["deal.created"]


class TestRecorderCollaborator:

    def test_custom_recorder_receives_entries(self, app, monkeypatch, workflow, manager):
        recorder = ListRecorder()
        monkeypatch.setitem(app.extensions, audit_service.EXTENSION_KEY, recorder)

        deal = workflow.create()
        deal_service.cancel(manager, deal.id, reason="duplicate")

        actions = [entry[1] for entry in recorder.entries]
        assert actions == ["deal.created", "deal.cancel"]
        assert recorder.entries[1][5]["status"] == lifecycle.CANCELED
        assert db.session.query(AuditLog).count() == 0

    def test_failing_recorder_keeps_operation(self, app, monkeypatch, caplog, workflow, manager):
        monkeypatch.setitem(app.extensions, audit_service.EXTENSION_KEY, FailingRecorder())
        deal = workflow.create()

        with caplog.at_level(logging.ERROR):
            result = deal_service.start_work(manager, deal.id)

        assert result.status == lifecycle.IN_PROGRESS
        assert db.session.get(Deal, deal.id).status == lifecycle.IN_PROGRESS
        assert "Failed to write audit entry deal.start_work" in caplog.text
