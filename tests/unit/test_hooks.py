"""Tests for post-commit hooks."""

import logging
import threading
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from reqflow.core.approval.hooks import (
    AuditRecord,
    PostCommitHooks,
    TransitionEvent,
    attachment_record,
    make_audit_hook,
    make_notification_hook,
)
from reqflow.core.errors import ValidationError
from reqflow.db.models import AuditAction


@pytest.fixture
def hooks():
    hooks = PostCommitHooks(max_workers=2)
    yield hooks
    hooks.shutdown(wait=False)


def _event(**kwargs):
    defaults = dict(requisition_id=uuid4(), actor_id=uuid4(), operation="approve",
                    from_status="IN_APPROVAL", to_status="APPROVED")
    defaults.update(kwargs)
    return TransitionEvent(**defaults)


class TestTransitionEvent:
    """Test event helpers."""

    def test_status_changed(self):
        assert _event().status_changed
        assert not _event(operation="advance", to_status="IN_APPROVAL").status_changed
        assert not _event(operation="create", from_status=None, to_status=None).status_changed


class TestPostCommitHooks:
    """Test hook isolation."""

    def test_runs_in_registration_order(self, hooks):
        calls = []
        hooks.register(lambda e: calls.append("first"), name="first")
        hooks.register(lambda e: calls.append("second"), name="second")

        hooks.run(_event())

        assert calls == ["first", "second"]
        assert hooks.names == ["first", "second"]

    def test_failing_hook_does_not_stop_others(self, hooks, caplog):
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        hooks.register(broken, name="broken")
        hooks.register(lambda e: calls.append(e.operation), name="after")

        with caplog.at_level(logging.WARNING):
            hooks.run(_event())

        assert calls == ["approve"]
        assert "broken failed" in caplog.text

    def test_bounded_hook_times_out(self, hooks, caplog):
        release = threading.Event()
        hooks.register(lambda e: release.wait(5), name="slow", timeout=0.05)

        with caplog.at_level(logging.WARNING):
            hooks.run(_event())
        release.set()

        assert "slow timed out" in caplog.text

    def test_bounded_hook_failure_is_logged(self, hooks, caplog):
        def broken(event):
            raise ValueError("bad channel")

        hooks.register(broken, name="bounded", timeout=1.0)
        with caplog.at_level(logging.WARNING):
            hooks.run(_event())

        assert "bounded failed" in caplog.text

    def test_after_shutdown_bounded_hooks_are_skipped(self, caplog):
        hooks = PostCommitHooks()
        hooks.register(lambda e: None, name="late", timeout=1.0)
        hooks.shutdown(wait=True)

        with caplog.at_level(logging.WARNING):
            hooks.run(_event())

        assert "skipped" in caplog.text

    def test_saturated_pool_drops_dispatch(self, caplog):
        hooks = PostCommitHooks(max_workers=1, max_in_flight=1)
        release = threading.Event()
        calls = []

        def stuck(event):
            calls.append(event.operation)
            release.wait(5)

        hooks.register(stuck, name="stuck", timeout=0.05)
        try:
            with caplog.at_level(logging.WARNING):
                hooks.run(_event(operation="first"))
                hooks.run(_event(operation="second"))
        finally:
            release.set()
            hooks.shutdown(wait=True)

        assert calls == ["first"]
        assert "stuck dropped" in caplog.text

    def test_slot_is_released_after_completion(self):
        hooks = PostCommitHooks(max_workers=1, max_in_flight=1)
        calls = []
        hooks.register(lambda e: calls.append(e.operation), name="quick", timeout=1.0)
        try:
            hooks.run(_event(operation="first"))
            hooks.run(_event(operation="second"))
        finally:
            hooks.shutdown(wait=True)

        assert calls == ["first", "second"]


class TestAuditHook:
    """Test the audit trail hook."""

    def test_records_with_event_timestamp(self):
        recorder = MagicMock()
        records = [AuditRecord(AuditAction.STATUS_CHANGED, "IN_APPROVAL", "APPROVED", field_name="status")]
        event = _event(audit_records=records)

        make_audit_hook(recorder)(event)

        recorder.record_many.assert_called_once_with(
            event.requisition_id, event.actor_id, records, created_at=event.occurred_at,
        )

    def test_nothing_to_record(self):
        recorder = MagicMock()
        make_audit_hook(recorder)(_event())
        recorder.record_many.assert_not_called()

    def test_failure_is_an_audit_gap(self, caplog):
        recorder = MagicMock()
        recorder.record_many.side_effect = RuntimeError("database gone")
        event = _event(audit_records=[AuditRecord(AuditAction.CREATED)])

        with caplog.at_level(logging.ERROR):
            make_audit_hook(recorder)(event)

        assert "Audit gap" in caplog.text
        assert str(event.requisition_id) in caplog.text


class TestNotificationHook:
    """Test mapping of events to notifications."""

    def test_step_approval_and_status_change(self):
        dispatcher = MagicMock()
        step_id = str(uuid4())
        event = _event(audit_records=[
            AuditRecord(AuditAction.STEP_APPROVED, "PENDING", "APPROVED",
                        details={"step_id": step_id, "sequence": 1, "role": "FINANCE"}),
            AuditRecord(AuditAction.STATUS_CHANGED, "IN_APPROVAL", "APPROVED", field_name="status"),
        ])

        make_notification_hook(dispatcher)(event)

        dispatcher.notify_step_approved.assert_called_once_with(
            event.requisition_id, step_id, event.actor_id, sequence=1, role="FINANCE",
        )
        dispatcher.notify_status_changed.assert_called_once_with(
            event.requisition_id, "IN_APPROVAL", "APPROVED", None,
        )

    def test_advance_does_not_notify_status(self):
        dispatcher = MagicMock()
        event = _event(operation="advance", to_status="IN_APPROVAL", audit_records=[
            AuditRecord(AuditAction.STEP_APPROVED, details={"step_id": "s", "sequence": 0, "role": "MANAGER"}),
        ])

        make_notification_hook(dispatcher)(event)

        dispatcher.notify_step_approved.assert_called_once()
        dispatcher.notify_status_changed.assert_not_called()

    def test_rejection_carries_comment(self):
        dispatcher = MagicMock()
        event = _event(operation="reject", to_status="REJECTED", reason="over budget", audit_records=[
            AuditRecord(AuditAction.STEP_REJECTED,
                        details={"step_id": "s", "sequence": 0, "role": "MANAGER", "comment": "over budget"}),
        ])

        make_notification_hook(dispatcher)(event)

        _, kwargs = dispatcher.notify_step_rejected.call_args
        assert kwargs["comment"] == "over budget"
        dispatcher.notify_status_changed.assert_called_once_with(
            event.requisition_id, "IN_APPROVAL", "REJECTED", "over budget",
        )


class TestAttachmentRecord:
    """Test attachment audit records."""

    def test_upload_carries_new_value(self):
        record = attachment_record(AuditAction.ATTACHMENT_UPLOADED, filename="quote.pdf", size=10)
        assert record.previous_value is None
        assert record.new_value["filename"] == "quote.pdf"
        assert record.field_name == "attachments"

    def test_deletion_keeps_previous_value(self):
        record = attachment_record(AuditAction.ATTACHMENT_DELETED, filename="quote.pdf", size=10)
        assert record.previous_value["size"] == 10
        assert record.new_value is None

    def test_other_actions_rejected(self):
        with pytest.raises(ValidationError):
            attachment_record(AuditAction.CREATED, filename="x")
