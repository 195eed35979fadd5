"""End-to-end tests for the requisition approval workflow."""

from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from reqflow.core.approval.hooks import PostCommitHooks, make_audit_hook
from reqflow.core.approval.service import RequisitionWorkflow
from reqflow.core.approval.states import RequisitionStatus, StepStatus
from reqflow.core.config import Settings
from reqflow.core.errors import (
    ConflictingRuleError,
    InvalidTransitionError,
    NoMatchingRuleError,
    NotAuthorizedError,
    NotFoundError,
    NotPendingError,
    StepOutOfOrderError,
    ValidationError,
)
from reqflow.core.rbac import Actor, Role
from reqflow.core.rules import StaticApproverDirectory
from reqflow.db.models import AuditAction
from reqflow.services.notifications import NotificationEventType
from tests.factories import create_rule, make_actor, requisition_payload

pytestmark = [pytest.mark.integration]


@pytest.fixture
def two_step_rule(db_session):
    return create_rule(db_session, name="manager-then-finance", steps=["MANAGER", "FINANCE"],
                       max_amount=Decimal("1000"))


@pytest.fixture
def draft(workflow, staff, two_step_rule):
    return workflow.create_requisition(staff, requisition_payload(amount="500.00"))


@pytest.fixture
def submitted(workflow, staff, draft):
    return workflow.submit(draft.id, staff)


def _status(workflow, requisition_id):
    return workflow.get_requisition(requisition_id).status


def _next_step_id(workflow, requisition_id):
    return workflow.ledger.get_next_pending_step(requisition_id).id


def _step_states(workflow, requisition_id):
    return [(s.sequence, s.status) for s in workflow.get_steps(requisition_id)]


def _status_changes(recorder, requisition_id):
    return [
        (e.previous_value, e.new_value)
        for e in recorder.get_for_requisition(requisition_id, AuditAction.STATUS_CHANGED)
    ]


class TestDrafts:
    """Test draft creation and editing."""

    def test_create(self, workflow, recorder, staff):
        requisition = workflow.create_requisition(staff, requisition_payload())

        assert requisition.status == RequisitionStatus.DRAFT.value
        assert requisition.submitter_id == staff.id
        assert requisition.department_id == staff.department_id
        assert requisition.currency == "USD"
        assert requisition.urgency_level == "MEDIUM"

        [entry] = recorder.get_for_requisition(requisition.id)
        assert entry.action == AuditAction.CREATED.value
        assert entry.new_value["title"] == requisition.title

    def test_create_does_not_notify(self, workflow, memory_channel, staff):
        workflow.create_requisition(staff, requisition_payload())
        assert memory_channel.sent == []

    def test_create_invalid(self, workflow, staff):
        with pytest.raises(ValidationError) as exc:
            workflow.create_requisition(staff, requisition_payload(amount="-1"))
        assert exc.value.errors[0]["loc"] == ["amount"]

    def test_update_records_each_changed_field(self, workflow, recorder, staff, draft):
        workflow.update_requisition(draft.id, staff, {"amount": "750.00", "title": draft.title,
                                                       "category": "furniture"})

        entries = recorder.get_for_requisition(draft.id, AuditAction.FIELD_UPDATED)
        assert [(e.field_name, e.previous_value, e.new_value) for e in entries] == [
            ("category", "office-supplies", "furniture"),
            ("amount", "500.00", "750.00"),
        ]
        assert workflow.get_requisition(draft.id).amount == Decimal("750.00")

    def test_only_submitter_edits(self, workflow, draft, manager):
        with pytest.raises(NotAuthorizedError):
            workflow.update_requisition(draft.id, manager, {"title": "Mine now"})

    def test_no_edits_after_submission(self, workflow, staff, submitted):
        with pytest.raises(InvalidTransitionError):
            workflow.update_requisition(submitted.id, staff, {"title": "Too late"})


class TestVisibility:
    """Test who can read requisitions."""

    def test_unknown_requisition(self, workflow, staff):
        with pytest.raises(NotFoundError):
            workflow.get_requisition(uuid4(), staff)

    def test_other_staff_cannot_view(self, workflow, draft, department_id):
        with pytest.raises(NotAuthorizedError):
            workflow.get_requisition(draft.id, make_actor(Role.STAFF, department_id=department_id))

    def test_listing(self, workflow, staff, manager, draft, submitted):
        other = workflow.create_requisition(make_actor(Role.STAFF), requisition_payload())

        own, total = workflow.list_requisitions(staff)
        assert total == 1
        assert [r.id for r in own] == [draft.id]

        everything, total = workflow.list_requisitions(manager)
        assert total == 2
        assert {r.id for r in everything} == {draft.id, other.id}

        in_approval, _ = workflow.list_requisitions(manager, status=RequisitionStatus.IN_APPROVAL)
        assert [r.id for r in in_approval] == [draft.id]

    def test_listing_page_bounds(self, workflow, staff):
        with pytest.raises(ValidationError):
            workflow.list_requisitions(staff, take=0)


class TestSubmission:
    """Test submission and rule resolution."""

    def test_creates_steps(self, workflow, staff, submitted, two_step_rule):
        assert submitted.status == RequisitionStatus.IN_APPROVAL.value
        assert submitted.submitted_at is not None
        assert submitted.resolved_rule["rule_name"] == "manager-then-finance"
        assert submitted.resolved_rule["rule_id"] == str(two_step_rule.id)

        steps = workflow.get_steps(submitted.id)
        assert [(s.sequence, s.required_role, s.status) for s in steps] == [
            (0, "MANAGER", "PENDING"),
            (1, "FINANCE", "PENDING"),
        ]

    def test_only_submitter_submits(self, workflow, draft, manager):
        with pytest.raises(NotAuthorizedError):
            workflow.submit(draft.id, manager)

    def test_twice(self, workflow, staff, submitted):
        with pytest.raises(InvalidTransitionError):
            workflow.submit(submitted.id, staff)

    def test_pending_uploads(self, workflow, staff, draft):
        with pytest.raises(ValidationError):
            workflow.submit(draft.id, staff, pending_uploads=1)
        assert _status(workflow, draft.id) == RequisitionStatus.DRAFT.value

    def test_incomplete_draft(self, workflow, staff, two_step_rule):
        draft = workflow.create_requisition(staff, requisition_payload(business_justification=""))
        with pytest.raises(ValidationError) as exc:
            workflow.submit(draft.id, staff)
        assert exc.value.errors[0]["loc"] == ["business_justification"]

    def test_no_matching_rule_leaves_draft(self, workflow, staff, two_step_rule):
        draft = workflow.create_requisition(staff, requisition_payload(amount="5000.00"))
        with pytest.raises(NoMatchingRuleError):
            workflow.submit(draft.id, staff)

        assert _status(workflow, draft.id) == RequisitionStatus.DRAFT.value
        assert workflow.get_steps(draft.id) == []

    def test_conflicting_rules(self, db_session, workflow, staff, two_step_rule):
        create_rule(db_session, name="also-small", steps=["FINANCE"], max_amount=Decimal("1000"))
        draft = workflow.create_requisition(staff, requisition_payload())
        with pytest.raises(ConflictingRuleError):
            workflow.submit(draft.id, staff)

    def test_fallback_chain(self, db_session, runtime, settings, staff):
        fallback = Settings(_env_file=None, database_url=settings.database_url,
                            fallback_approver_roles="FINANCE")
        workflow = RequisitionWorkflow(db_session, locks=runtime.locks, hooks=runtime.hooks, settings=fallback)
        draft = workflow.create_requisition(staff, requisition_payload())

        submitted = workflow.submit(draft.id, staff)

        assert submitted.resolved_rule["fallback"] is True
        assert [s.required_role for s in workflow.get_steps(draft.id)] == ["FINANCE"]

    def test_rule_edits_do_not_touch_submitted(self, db_session, workflow, submitted, two_step_rule):
        two_step_rule.steps = [{"role": "ADMIN", "assignee_id": None}]
        db_session.commit()
        assert [s.required_role for s in workflow.get_steps(submitted.id)] == ["MANAGER", "FINANCE"]

    def test_notifies_status_change(self, workflow, memory_channel, submitted):
        [notification] = memory_channel.sent
        assert notification.event_type == NotificationEventType.STATUS_CHANGED
        assert notification.data["from_status"] == "DRAFT"
        assert notification.data["to_status"] == "IN_APPROVAL"


class TestStepDecisions:
    """Test sequential step approval and rejection."""

    def test_approve_in_order(self, workflow, submitted, manager, finance):
        step = workflow.approve_step(submitted.id, manager, _next_step_id(workflow, submitted.id))
        assert step.sequence == 0
        assert _status(workflow, submitted.id) == RequisitionStatus.IN_APPROVAL.value
        assert _step_states(workflow, submitted.id) == [(0, "APPROVED"), (1, "PENDING")]

        workflow.approve_step(submitted.id, finance, _next_step_id(workflow, submitted.id),
                              comment="within budget")
        requisition = workflow.get_requisition(submitted.id)
        assert requisition.status == RequisitionStatus.APPROVED.value
        assert requisition.decided_at is not None
        assert _step_states(workflow, submitted.id) == [(0, "APPROVED"), (1, "APPROVED")]

    def test_reject_after_approval(self, workflow, recorder, submitted, manager, finance):
        workflow.approve_step(submitted.id, manager, _next_step_id(workflow, submitted.id))
        step = workflow.reject_step(submitted.id, finance, _next_step_id(workflow, submitted.id),
                                    comment="over budget")

        assert step.comment == "over budget"
        assert _status(workflow, submitted.id) == RequisitionStatus.REJECTED.value
        assert _step_states(workflow, submitted.id) == [(0, "APPROVED"), (1, "REJECTED")]
        assert _status_changes(recorder, submitted.id)[-1] == ("IN_APPROVAL", "REJECTED")

    def test_reject_first_leaves_later_pending(self, workflow, submitted, manager):
        workflow.reject_step(submitted.id, manager, _next_step_id(workflow, submitted.id),
                             comment="duplicate")
        assert _step_states(workflow, submitted.id) == [(0, "REJECTED"), (1, "PENDING")]

    def test_reject_requires_comment(self, workflow, submitted, manager):
        with pytest.raises(ValidationError):
            workflow.reject_step(submitted.id, manager, _next_step_id(workflow, submitted.id), comment="")
        assert _status(workflow, submitted.id) == RequisitionStatus.IN_APPROVAL.value

    def test_wrong_role(self, workflow, submitted, finance):
        with pytest.raises(NotAuthorizedError):
            workflow.approve_step(submitted.id, finance, _next_step_id(workflow, submitted.id))

    def test_staff_cannot_approve(self, workflow, submitted, department_id):
        with pytest.raises(NotAuthorizedError):
            workflow.approve_step(submitted.id, make_actor(Role.STAFF, department_id=department_id),
                                  _next_step_id(workflow, submitted.id))

    def test_out_of_order(self, workflow, submitted, finance):
        second = workflow.get_steps(submitted.id)[1]
        with pytest.raises(StepOutOfOrderError):
            workflow.approve_step(submitted.id, finance, second.id)

    def test_double_approve(self, workflow, submitted, manager, admin):
        first = workflow.get_steps(submitted.id)[0]
        decided = workflow.approve_step(submitted.id, manager, first.id)
        decided_at = decided.decided_at

        with pytest.raises(NotPendingError):
            workflow.approve_step(submitted.id, admin, first.id)

        first = workflow.get_steps(submitted.id)[0]
        assert first.actor_id == manager.id
        assert first.decided_at == decided_at

    def test_repeated_approve_does_not_decide_next_step(self, db_session, workflow, staff, manager):
        create_rule(db_session, name="two-managers", steps=["MANAGER", "MANAGER"],
                    min_amount=Decimal("1000"), max_amount=Decimal("5000"))
        requisition = workflow.submit(
            workflow.create_requisition(staff, requisition_payload(amount="2000.00")).id, staff
        )
        seen = _next_step_id(workflow, requisition.id)

        workflow.approve_step(requisition.id, manager, seen)
        with pytest.raises(NotPendingError):
            workflow.approve_step(requisition.id, manager, seen)

        assert _status(workflow, requisition.id) == RequisitionStatus.IN_APPROVAL.value
        assert _step_states(workflow, requisition.id) == [(0, "APPROVED"), (1, "PENDING")]

    def test_repeated_admin_reject_is_refused(self, workflow, submitted, admin):
        seen = _next_step_id(workflow, submitted.id)
        workflow.reject_step(submitted.id, admin, seen, comment="duplicate")
        with pytest.raises(NotPendingError):
            workflow.reject_step(submitted.id, admin, seen, comment="duplicate")
        assert _step_states(workflow, submitted.id) == [(0, "REJECTED"), (1, "PENDING")]

    def test_step_of_other_requisition(self, workflow, staff, submitted, manager):
        other = workflow.submit(workflow.create_requisition(staff, requisition_payload()).id, staff)
        foreign = workflow.get_steps(other.id)[0]
        with pytest.raises(NotFoundError):
            workflow.approve_step(submitted.id, manager, foreign.id)

    def test_terminal_requisition(self, workflow, submitted, manager, admin):
        workflow.reject_step(submitted.id, manager, _next_step_id(workflow, submitted.id), comment="no")
        left_pending = _next_step_id(workflow, submitted.id)
        with pytest.raises(InvalidTransitionError):
            workflow.approve_step(submitted.id, admin, left_pending)

    def test_step_notifications(self, workflow, memory_channel, submitted, manager, finance):
        memory_channel.sent.clear()
        workflow.approve_step(submitted.id, manager, _next_step_id(workflow, submitted.id))
        assert [n.event_type for n in memory_channel.sent] == [NotificationEventType.STEP_APPROVED]

        workflow.approve_step(submitted.id, finance, _next_step_id(workflow, submitted.id))
        assert [n.event_type for n in memory_channel.sent][1:] == [
            NotificationEventType.STEP_APPROVED,
            NotificationEventType.STATUS_CHANGED,
        ]

    def test_available_transitions(self, workflow, submitted, staff, manager, finance):
        for_manager = workflow.get_available_transitions(submitted.id, manager)
        assert for_manager["can_decide_next_step"] is True
        assert for_manager["transitions"] == ["advance", "reject"]

        for_finance = workflow.get_available_transitions(submitted.id, finance)
        assert for_finance["can_decide_next_step"] is False
        assert for_finance["next_step_id"] == for_manager["next_step_id"]

        assert workflow.get_available_transitions(submitted.id, staff)["transitions"] == []


class TestAdministrativeOperations:
    """Test bulk rejection and cancellation."""

    def test_reject_all(self, workflow, recorder, memory_channel, submitted, admin):
        memory_channel.sent.clear()
        steps = workflow.reject_all(submitted.id, admin, comment="vendor under investigation")

        assert len(steps) == 2
        assert _step_states(workflow, submitted.id) == [(0, "REJECTED"), (1, "REJECTED")]
        assert _status(workflow, submitted.id) == RequisitionStatus.REJECTED.value
        assert _status_changes(recorder, submitted.id) == [
            ("DRAFT", "IN_APPROVAL"),
            ("IN_APPROVAL", "REJECTED"),
        ]
        assert len(recorder.get_for_requisition(submitted.id, AuditAction.STEP_REJECTED)) == 2
        status_notifications = [n for n in memory_channel.sent
                                if n.event_type == NotificationEventType.STATUS_CHANGED]
        assert len(status_notifications) == 1

    def test_reject_all_is_admin_only(self, workflow, submitted, manager):
        with pytest.raises(NotAuthorizedError):
            workflow.reject_all(submitted.id, manager, comment="no")

    def test_cancel_draft(self, workflow, draft, admin):
        cancelled = workflow.cancel(draft.id, admin, reason="  duplicate of REQ-12 ")
        assert cancelled.status == RequisitionStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "duplicate of REQ-12"

    def test_cancel_in_approval(self, workflow, submitted, admin):
        workflow.cancel(submitted.id, admin, reason="budget freeze")
        assert _status(workflow, submitted.id) == RequisitionStatus.CANCELLED.value
        assert _step_states(workflow, submitted.id) == [(0, "SKIPPED"), (1, "SKIPPED")]
        assert all(step.actor_id is None and step.comment == "budget freeze"
                   for step in workflow.get_steps(submitted.id, admin))

    def test_cancel_after_first_approval_keeps_decided_step(self, workflow, submitted, manager, admin):
        workflow.approve_step(submitted.id, manager, _next_step_id(workflow, submitted.id))
        workflow.cancel(submitted.id, admin, reason="vendor withdrew")
        assert _step_states(workflow, submitted.id) == [(0, "APPROVED"), (1, "SKIPPED")]

    def test_cancel_requires_admin_and_reason(self, workflow, staff, draft, admin):
        with pytest.raises(NotAuthorizedError):
            workflow.cancel(draft.id, staff, reason="changed my mind")
        with pytest.raises(ValidationError):
            workflow.cancel(draft.id, admin, reason=" ")

    def test_cannot_cancel_terminal(self, workflow, submitted, admin):
        workflow.reject_all(submitted.id, admin, comment="no")
        with pytest.raises(InvalidTransitionError):
            workflow.cancel(submitted.id, admin, reason="cleanup")


class TestPayment:
    """Test payment recording."""

    @pytest.fixture
    def approved(self, workflow, submitted, manager, finance):
        workflow.approve_step(submitted.id, manager, _next_step_id(workflow, submitted.id))
        workflow.approve_step(submitted.id, finance, _next_step_id(workflow, submitted.id))
        return submitted

    def test_record_payment(self, workflow, recorder, approved, finance):
        paid = workflow.record_payment(approved.id, finance, {
            "actual_amount_paid": "480.00",
            "payment_method": "bank_transfer",
            "payment_reference": "TX-991",
        })

        assert paid.status == RequisitionStatus.PAID.value
        assert paid.actual_amount_paid == Decimal("480.00")
        assert paid.payment_date is not None
        [entry] = recorder.get_for_requisition(approved.id, AuditAction.PAYMENT_RECORDED)
        assert entry.new_value["payment_reference"] == "TX-991"

    def test_manager_cannot_record(self, workflow, approved, manager):
        with pytest.raises(NotAuthorizedError):
            workflow.record_payment(approved.id, manager, {"actual_amount_paid": "1", "payment_method": "card"})

    def test_only_when_approved(self, workflow, submitted, finance):
        with pytest.raises(InvalidTransitionError):
            workflow.record_payment(submitted.id, finance, {"actual_amount_paid": "1", "payment_method": "card"})

    def test_status_round_trip(self, workflow, recorder, approved, finance):
        workflow.record_payment(approved.id, finance, {"actual_amount_paid": "500.00", "payment_method": "card"})
        assert _status_changes(recorder, approved.id) == [
            ("DRAFT", "IN_APPROVAL"),
            ("IN_APPROVAL", "APPROVED"),
            ("APPROVED", "PAID"),
        ]


class TestAttachmentEvents:
    """Test attachment audit events."""

    def test_upload_on_draft(self, workflow, recorder, staff, draft):
        workflow.record_attachment_event(draft.id, staff, {"event": "uploaded", "filename": "quote.pdf",
                                                           "size": 2048})
        [entry] = recorder.get_for_requisition(draft.id, AuditAction.ATTACHMENT_UPLOADED)
        assert entry.new_value["filename"] == "quote.pdf"
        assert entry.field_name == "attachments"

    def test_delete_after_submission(self, workflow, staff, submitted):
        with pytest.raises(InvalidTransitionError):
            workflow.record_attachment_event(submitted.id, staff, {"event": "DELETED", "filename": "quote.pdf"})

    def test_download_by_approver(self, workflow, recorder, submitted, manager):
        workflow.record_attachment_event(submitted.id, manager, {"event": "DOWNLOADED", "filename": "quote.pdf"})
        assert len(recorder.get_for_requisition(submitted.id, AuditAction.ATTACHMENT_DOWNLOADED)) == 1


class TestHookFailures:
    """A failing post-commit hook never fails the transition."""

    def test_audit_gap_is_logged(self, db_session, settings, staff, two_step_rule, caplog):
        broken = MagicMock()
        broken.record_many.side_effect = RuntimeError("audit store down")
        hooks = PostCommitHooks()
        hooks.register(make_audit_hook(broken), name="audit_trail")
        workflow = RequisitionWorkflow(db_session, hooks=hooks, settings=settings)

        try:
            draft = workflow.create_requisition(staff, requisition_payload())
            submitted = workflow.submit(draft.id, staff)
        finally:
            hooks.shutdown()

        assert submitted.status == RequisitionStatus.IN_APPROVAL.value
        assert "Audit gap" in caplog.text
        assert [s.status for s in workflow.get_steps(draft.id)] == [StepStatus.PENDING.value] * 2


class TestApproverAssignment:
    """Steps are assigned from the approver directory at submission."""

    @pytest.fixture
    def assigned_manager(self, department_id):
        return make_actor(Role.MANAGER, department_id=department_id)

    @pytest.fixture
    def directed(self, db_session, runtime, settings, assigned_manager, department_id):
        directory = StaticApproverDirectory({(Role.MANAGER, department_id): assigned_manager.id})
        return RequisitionWorkflow(db_session, locks=runtime.locks, hooks=runtime.hooks,
                                   settings=settings, directory=directory)

    def test_steps_are_assigned(self, directed, staff, two_step_rule, assigned_manager):
        requisition = directed.submit(directed.create_requisition(staff, requisition_payload()).id, staff)

        steps = directed.get_steps(requisition.id)
        assert [(s.required_role, s.assignee_id) for s in steps] == [
            ("MANAGER", assigned_manager.id), ("FINANCE", None),
        ]
        assert requisition.resolved_rule["steps"][0]["assignee_id"] == str(assigned_manager.id)

    def test_only_assignee_decides(self, directed, staff, two_step_rule, manager, assigned_manager):
        requisition = directed.submit(directed.create_requisition(staff, requisition_payload()).id, staff)
        first = directed.get_steps(requisition.id)[0]

        with pytest.raises(NotAuthorizedError):
            directed.approve_step(requisition.id, manager, first.id)

        # Role changed since submission; the recorded assignee still decides
        moved = Actor(id=assigned_manager.id, role=Role.FINANCE, department_id=assigned_manager.department_id)
        assert directed.approve_step(requisition.id, moved, first.id).actor_id == assigned_manager.id

    def test_without_directory_steps_are_role_only(self, workflow, submitted):
        assert [s.assignee_id for s in workflow.get_steps(submitted.id)] == [None, None]
