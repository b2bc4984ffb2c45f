# ruff: noqa: INP001

import pytest

from app.core.exceptions import Forbidden, ForbiddenReason
from app.models.task import TaskStatus
from app.models.user import UserRole
from app.services.permissions import ActorCapability
from app.services.progress import (
    NON_ASSIGNEE_PROGRESS_CAP,
    ParentAggregate,
    RequestedUpdate,
    TaskState,
    reconcile_single_task,
    recompute_parent_aggregate,
    round_half_up,
)

TODO_0 = TaskState(status=TaskStatus.TODO, progress_percentage=0)


def assignee():
    return ActorCapability(
        actor_id="u-assignee", role=UserRole.MEMBER, is_assignee=True, can_edit=True, can_change_status=True
    )


def creator_not_assignee():
    return ActorCapability(
        actor_id="u-creator", role=UserRole.MEMBER, is_creator=True, can_edit=True, can_change_status=True
    )


def team_member():
    # Can edit progress but not move the task through its workflow
    return ActorCapability(
        actor_id="u-member", role=UserRole.MEMBER, is_team_member=True, can_edit=True, can_change_status=False
    )


def test_assignee_reporting_100_completes_task():
    state = reconcile_single_task(TODO_0, RequestedUpdate(progress_percentage=100), assignee())
    assert state == TaskState(TaskStatus.COMPLETED, 100)


def test_admin_counts_as_capable():
    admin = ActorCapability(actor_id="u-admin", role=UserRole.ADMIN, can_edit=True, can_change_status=True)
    state = reconcile_single_task(TODO_0, RequestedUpdate(progress_percentage=100), admin)
    assert state.status == TaskStatus.COMPLETED


def test_non_assignee_progress_is_clamped_to_90():
    state = reconcile_single_task(TODO_0, RequestedUpdate(progress_percentage=100), creator_not_assignee())
    assert state == TaskState(TaskStatus.IN_REVIEW, NON_ASSIGNEE_PROGRESS_CAP)


def test_non_assignee_explicit_completion_is_rejected():
    with pytest.raises(Forbidden) as excinfo:
        reconcile_single_task(TODO_0, RequestedUpdate(status=TaskStatus.COMPLETED), creator_not_assignee())
    assert excinfo.value.reason == ForbiddenReason.COMPLETION_REQUIRES_ASSIGNEE


def test_status_change_without_status_capability_is_rejected():
    with pytest.raises(Forbidden) as excinfo:
        reconcile_single_task(TODO_0, RequestedUpdate(status=TaskStatus.IN_PROGRESS), team_member())
    assert excinfo.value.reason == ForbiddenReason.STATUS_CHANGE_FORBIDDEN
    assert excinfo.value.detail != Forbidden(ForbiddenReason.EDIT_FORBIDDEN).detail


def test_restating_current_status_needs_no_status_capability():
    existing = TaskState(TaskStatus.IN_PROGRESS, 40)
    state = reconcile_single_task(existing, RequestedUpdate(status=TaskStatus.IN_PROGRESS), team_member())
    assert state == existing


def test_progress_only_update_by_team_member_derives_status():
    state = reconcile_single_task(TODO_0, RequestedUpdate(progress_percentage=30), team_member())
    assert state == TaskState(TaskStatus.IN_PROGRESS, 30)


@pytest.mark.parametrize(
    "progress, expected",
    [
        (95, TaskStatus.IN_REVIEW),
        (90, TaskStatus.IN_REVIEW),
        (89, TaskStatus.IN_PROGRESS),
        (1, TaskStatus.IN_PROGRESS),
    ],
)
def test_status_thresholds(progress, expected):
    state = reconcile_single_task(TODO_0, RequestedUpdate(progress_percentage=progress), assignee())
    assert state.status == expected


def test_zero_progress_never_forces_todo():
    existing = TaskState(TaskStatus.IN_REVIEW, 90)
    state = reconcile_single_task(existing, RequestedUpdate(progress_percentage=0), assignee())
    assert state == TaskState(TaskStatus.IN_REVIEW, 0)


def test_explicit_status_wins_over_derived_status():
    state = reconcile_single_task(
        TODO_0, RequestedUpdate(progress_percentage=100, status=TaskStatus.IN_REVIEW), assignee()
    )
    assert state == TaskState(TaskStatus.IN_REVIEW, 100)


def test_explicit_todo_and_completed_fill_in_progress():
    existing = TaskState(TaskStatus.IN_PROGRESS, 60)
    assert reconcile_single_task(existing, RequestedUpdate(status=TaskStatus.TODO), assignee()) == TaskState(
        TaskStatus.TODO, 0
    )
    assert reconcile_single_task(existing, RequestedUpdate(status=TaskStatus.COMPLETED), assignee()) == TaskState(
        TaskStatus.COMPLETED, 100
    )
    assert reconcile_single_task(existing, RequestedUpdate(status=TaskStatus.IN_REVIEW), assignee()) == TaskState(
        TaskStatus.IN_REVIEW, 60
    )


def test_empty_request_keeps_existing_state():
    existing = TaskState(TaskStatus.IN_PROGRESS, 40)
    assert reconcile_single_task(existing, RequestedUpdate(), assignee()) is existing


def test_derived_completion_always_means_full_progress():
    for capability in (assignee(), creator_not_assignee(), team_member()):
        for progress in range(0, 101):
            state = reconcile_single_task(TODO_0, RequestedUpdate(progress_percentage=progress), capability)
            if state.status == TaskStatus.COMPLETED:
                assert state.progress_percentage == 100
            if not capability.is_assignee_or_admin:
                assert state.progress_percentage <= NON_ASSIGNEE_PROGRESS_CAP
                assert state.status != TaskStatus.COMPLETED


def test_round_half_up():
    assert round_half_up(22.5) == 23
    assert round_half_up(16.666) == 17
    assert round_half_up(0.4) == 0


@pytest.mark.parametrize(
    "children, expected",
    [
        ([TaskStatus.COMPLETED, TaskStatus.COMPLETED], ParentAggregate(100, TaskStatus.COMPLETED)),
        ([TaskStatus.COMPLETED, TaskStatus.IN_REVIEW], ParentAggregate(95, TaskStatus.IN_REVIEW)),
        ([TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS], ParentAggregate(75, TaskStatus.IN_REVIEW)),
        ([TaskStatus.IN_PROGRESS, TaskStatus.TODO], ParentAggregate(25, TaskStatus.IN_PROGRESS)),
        ([TaskStatus.IN_REVIEW, TaskStatus.IN_PROGRESS, TaskStatus.TODO], ParentAggregate(47, TaskStatus.IN_PROGRESS)),
        (
            [TaskStatus.IN_REVIEW, TaskStatus.TODO, TaskStatus.TODO, TaskStatus.TODO],
            ParentAggregate(23, TaskStatus.IN_PROGRESS),
        ),
        ([TaskStatus.TODO, TaskStatus.TODO], ParentAggregate(0, None)),
    ],
)
def test_parent_aggregate(children, expected):
    assert recompute_parent_aggregate(children) == expected


def test_cancelled_children_are_left_out():
    assert recompute_parent_aggregate([TaskStatus.COMPLETED, TaskStatus.CANCELLED]) == ParentAggregate(
        100, TaskStatus.COMPLETED
    )
    assert recompute_parent_aggregate([TaskStatus.CANCELLED]) is None
    assert recompute_parent_aggregate([]) is None


def test_parent_aggregate_accepts_stored_strings():
    assert recompute_parent_aggregate(["COMPLETED", "TODO"]) == ParentAggregate(50, TaskStatus.IN_PROGRESS)
