# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.
"""Unit tests for ApprovalService against a real (SQLite) database."""

import uuid

import pytest

from hookflow.approvals.fsm import ApprovalStateMachine
from hookflow.approvals.service import ApprovalService
from hookflow.core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from hookflow.core.metrics import service_metrics
from hookflow.protocols.states import RejectPolicy

LEVELS = [
    {"name": "Manager", "level": 1, "allowed_roles": ["admin"], "approval_counts_required": 1},
    {"name": "Finance", "level": 2, "allowed_roles": ["finance"], "approval_counts_required": 2},
]


@pytest.fixture
def service(db_session):
    return ApprovalService(db_session, ApprovalStateMachine(RejectPolicy.STEP_BACK))


@pytest.fixture
async def workflow(service, owner):
    return await service.create_workflow(owner, name="Invoices", resource_type="invoice", approvals=LEVELS)


@pytest.fixture
async def task(service, owner, workflow):
    return await service.create_task(owner, workflow.id, "inv-1")


class TestWorkflows:
    @pytest.mark.asyncio
    async def test_create_persists_levels_in_order(self, service, owner):
        wf = await service.create_workflow(
            owner, name="PO", resource_type="po", approvals=list(reversed(LEVELS)),
        )
        assert [a.level for a in wf.approvals] == [1, 2]
        assert wf.approvals[1].approval_counts_required == 2
        assert wf.owner_id == "org-1"

    @pytest.mark.asyncio
    async def test_create_rejects_gap(self, service, owner):
        levels = [dict(LEVELS[0]), dict(LEVELS[1], level=3)]
        with pytest.raises(ValidationError):
            await service.create_workflow(owner, name="bad", resource_type="po", approvals=levels)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_see_workflow(self, service, other_owner, workflow):
        with pytest.raises(NotFoundError):
            await service.get_workflow(other_owner, workflow.id)

    @pytest.mark.asyncio
    async def test_update_name_and_enabled(self, service, owner, workflow):
        updated = await service.update_workflow(owner, workflow.id, name="Renamed", enabled=False)
        assert updated.name == "Renamed"
        assert updated.enabled is False
        assert len(updated.approvals) == 2

    @pytest.mark.asyncio
    async def test_update_requires_a_field(self, service, owner, workflow):
        with pytest.raises(ValidationError):
            await service.update_workflow(owner, workflow.id)

    @pytest.mark.asyncio
    async def test_list_is_owner_scoped_and_searchable(self, service, owner, other_owner, workflow):
        await service.create_workflow(other_owner, name="Invoices too", resource_type="invoice", approvals=LEVELS)
        await service.create_workflow(owner, name="Purchase orders", resource_type="po", approvals=LEVELS)

        items, total = await service.list_workflows(owner)
        assert total == 2

        items, total = await service.list_workflows(owner, search="INVOICE")
        assert total == 1
        assert items[0].id == workflow.id


class TestTasks:
    @pytest.mark.asyncio
    async def test_new_task_is_pending_at_level_one(self, task):
        assert task.status == "Pending"
        assert task.next_review_level == 1
        assert task.version == 1
        assert task.actions == []

    @pytest.mark.asyncio
    async def test_bulk_create(self, service, owner, workflow):
        outcome = await service.create_tasks(owner, workflow.id, ["a", "b", "c"])
        assert [t.resource_id for t in outcome.created] == ["a", "b", "c"]
        assert outcome.errors == []
        assert service_metrics.get_counter("approval_tasks_created") == 3

    @pytest.mark.asyncio
    async def test_bulk_create_reports_bad_elements(self, service, owner, workflow):
        outcome = await service.create_tasks(owner, workflow.id, ["r1", 123, "", "x" * 257, "r3"])
        assert [t.resource_id for t in outcome.created] == ["r1", "r3"]
        assert [e["index"] for e in outcome.errors] == [1, 2, 3]
        assert outcome.errors[0]["resourceId"] == 123
        assert service_metrics.get_counter("approval_tasks_created") == 2

    @pytest.mark.asyncio
    async def test_single_create_rejects_empty_resource_id(self, service, owner, workflow):
        with pytest.raises(ValidationError):
            await service.create_task(owner, workflow.id, "  ")

    @pytest.mark.asyncio
    async def test_disabled_workflow_refuses_tasks(self, service, owner, workflow):
        await service.update_workflow(owner, workflow.id, enabled=False)
        with pytest.raises(ValidationError):
            await service.create_task(owner, workflow.id, "inv-2")

    @pytest.mark.asyncio
    async def test_foreign_workflow_refuses_tasks(self, service, other_owner, workflow):
        with pytest.raises(ValidationError):
            await service.create_task(other_owner, workflow.id, "inv-2")

    @pytest.mark.asyncio
    async def test_list_tasks_filters(self, service, owner, workflow, task):
        await service.create_task(owner, workflow.id, "inv-2")
        items, total = await service.list_tasks(owner, resource_id="inv-2")
        assert total == 1
        assert items[0].resource_id == "inv-2"

        items, total = await service.list_tasks(owner, status="Pending")
        assert total == 2


class TestReviewActions:
    @pytest.mark.asyncio
    async def test_full_approval_path_records_history(self, service, owner, task):
        task = await service.approve(owner, task.id, "alice", ["admin"], comment="ok")
        assert (task.status, task.next_review_level, task.version) == ("InProgress", 2, 2)

        task = await service.approve(owner, task.id, "bob", ["finance"])
        assert (task.status, task.next_review_level, task.version) == ("Completed", None, 3)

        assert [a.sequence for a in task.actions] == [1, 2]
        first = task.actions[0]
        assert (first.reviewer_id, first.action_type, first.comment) == ("alice", "approve", "ok")
        assert (first.current_status, first.next_status) == ("Pending", "InProgress")
        assert (first.current_level, first.next_level) == (1, 2)

        with pytest.raises(InvalidStateError):
            await service.approve(owner, task.id, "bob", ["finance"])
        task = await service.get_task(owner, task.id)
        assert len(task.actions) == 2

    @pytest.mark.asyncio
    async def test_reject_at_level_two_steps_back(self, service, owner, task):
        await service.approve(owner, task.id, "alice", ["admin"])
        task = await service.reject(owner, task.id, "bob", ["finance"], comment="bad")
        assert (task.status, task.next_review_level) == ("InProgress", 1)
        assert task.actions[-1].action_type == "reject"
        assert task.actions[-1].comment == "bad"

    @pytest.mark.asyncio
    async def test_reject_at_level_one_is_final(self, service, owner, task):
        task = await service.reject(owner, task.id, "alice", ["admin"], comment="no")
        assert (task.status, task.next_review_level) == ("Rejected", None)

    @pytest.mark.asyncio
    async def test_reject_requires_comment(self, service, owner, task):
        with pytest.raises(ValidationError):
            await service.reject(owner, task.id, "alice", ["admin"], comment="   ")

    @pytest.mark.asyncio
    async def test_role_mismatch(self, service, owner, task):
        with pytest.raises(PermissionDeniedError):
            await service.approve(owner, task.id, "mallory", ["finance"])

    @pytest.mark.asyncio
    async def test_unknown_task(self, service, owner):
        with pytest.raises(NotFoundError):
            await service.approve(owner, uuid.uuid4(), "alice", ["admin"])

    @pytest.mark.asyncio
    async def test_foreign_owner_is_forbidden(self, service, other_owner, task):
        with pytest.raises(AuthorizationError) as exc:
            await service.approve(other_owner, task.id, "eve", ["admin"])
        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, service, owner, task):
        await service.approve(owner, task.id, "alice", ["admin"])
        with pytest.raises(ConflictError) as exc:
            await service.approve(owner, task.id, "bob", ["finance"], expected_version=1)
        assert exc.value.status_code == 409
        task = await service.get_task(owner, task.id)
        assert (task.status, task.version, len(task.actions)) == ("InProgress", 2, 1)
        assert service_metrics.get_counter("approval_conflicts") == 1

    @pytest.mark.asyncio
    async def test_concurrent_session_wins_race(self, session_factory, owner, workflow, task, db_session):
        await db_session.commit()
        stale_version = task.version

        async with session_factory() as other:
            await ApprovalService(other).approve(owner, task.id, "alice", ["admin"])
            await other.commit()

        with pytest.raises(ConflictError):
            await ApprovalService(db_session).approve(
                owner, task.id, "bob", ["admin", "finance"], expected_version=stale_version,
            )


class TestDiscard:
    @pytest.mark.asyncio
    async def test_partial_success(self, service, owner, workflow, task):
        done = await service.create_task(owner, workflow.id, "inv-2")
        await service.reject(owner, done.id, "alice", ["admin"], comment="no")
        missing = uuid.uuid4()

        outcome = await service.discard(owner, [task.id, done.id, missing], "alice", ["admin"])

        assert [t.id for t in outcome.discarded] == [task.id]
        assert outcome.discarded[0].status == "Discarded"
        assert outcome.discarded[0].next_review_level is None
        assert outcome.discarded[0].actions[-1].action_type == "discard"
        assert {e["taskId"] for e in outcome.errors} == {str(done.id), str(missing)}

    @pytest.mark.asyncio
    async def test_malformed_ids_reported_not_raised(self, service, owner, task):
        outcome = await service.discard(owner, [str(task.id), "not-a-uuid", 42, str(task.id)], "alice", ["admin"])
        assert [t.id for t in outcome.discarded] == [task.id]
        assert [e["taskId"] for e in outcome.errors] == ["not-a-uuid", "42"]

    @pytest.mark.asyncio
    async def test_foreign_tasks_reported_not_raised(self, service, other_owner, task):
        outcome = await service.discard(other_owner, [task.id], "eve", ["admin"])
        assert outcome.discarded == []
        assert outcome.errors[0]["taskId"] == str(task.id)

    @pytest.mark.asyncio
    async def test_role_mismatch_reported(self, service, owner, task):
        outcome = await service.discard(owner, [task.id], "bob", ["finance"])
        assert outcome.discarded == []
        assert "admin" in outcome.errors[0]["error"]
