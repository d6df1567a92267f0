# estimator/workflow.py
"""Approval state machine for estimates.

This module only decides *what* a transition does.  Reading the workflow row
and writing the result atomically is the job of ``estimator.approvals.utils``.
Whether the actor holds the override capability is resolved by the caller and
passed in as ``actor.can_override``.
"""

from __future__ import annotations

from dataclasses import dataclass

from estimator.errors import AuthorizationError, StateConflictError, ValidationError

PENDING = 'pending_approval'
APPROVED = 'approved'
REJECTED = 'rejected'
SENT_BACK = 'sent_back'

TERMINAL_STATUSES = (APPROVED, REJECTED)

# Actions accepted by ``plan_action``; values match the stored history actions
# where they coincide.
FORWARD = 'approved'
FINAL_APPROVE = 'approved_final'
REJECT = 'rejected'
SEND_BACK = 'sent_back'

ACTION_ALIASES = {
    'approved': FORWARD,
    'approve': FORWARD,
    'forward': FORWARD,
    'approved_final': FINAL_APPROVE,
    'final_approve': FINAL_APPROVE,
    'rejected': REJECT,
    'reject': REJECT,
    'sent_back': SEND_BACK,
    'send_back': SEND_BACK,
}

# History actions
H_SUBMITTED = 'submitted'
H_FORWARDED = 'forwarded'
H_APPROVED = 'approved'
H_REJECTED = 'rejected'
H_SENT_BACK = 'sent_back'


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str | None = None
    can_override: bool = False


@dataclass(frozen=True)
class WorkflowState:
    status: str
    current_level: int
    current_approver_id: str | None
    initiated_by: str | None = None
    version: int = 1


@dataclass(frozen=True)
class Transition:
    status: str
    current_level: int
    history_action: str
    history_level: int
    # level whose approver becomes current; None when no one is waiting
    next_approver_level: int | None


def normalize_action(action: str | None) -> str:
    if not action:
        raise ValidationError('Please select an action')
    try:
        return ACTION_ALIASES[action]
    except KeyError:
        raise ValidationError(f'Unknown approval action: {action}') from None


def plan_submit(existing: WorkflowState | None, actor: Actor) -> Transition:
    """Submit a fresh estimate, or resubmit one that was sent back."""
    if existing is not None:
        if existing.status == PENDING:
            raise StateConflictError('Estimate is already awaiting approval')
        if existing.status in TERMINAL_STATUSES:
            raise StateConflictError(f'Estimate workflow is already {existing.status}')
        if existing.initiated_by != actor.user_id and not actor.can_override:
            raise AuthorizationError('Only the initiator can resubmit this estimate')
    return Transition(
        status=PENDING,
        current_level=1,
        history_action=H_SUBMITTED,
        history_level=1,
        next_approver_level=1,
    )


def can_act(state: WorkflowState, actor: Actor) -> bool:
    if actor.can_override:
        return True
    return state.current_approver_id is not None and state.current_approver_id == actor.user_id


def plan_action(state: WorkflowState, action: str, actor: Actor, levels: int = 4) -> Transition:
    """Validate and describe one approver action.

    Raises before anything is written: state conflicts for terminal or
    non-pending workflows, authorization errors for actors who are neither the
    current approver nor override holders.
    """
    action = normalize_action(action)
    if state.status in TERMINAL_STATUSES:
        raise StateConflictError(f'Workflow is already {state.status}')
    if state.status != PENDING:
        raise StateConflictError('Workflow is not awaiting approval')
    if not can_act(state, actor):
        raise AuthorizationError('You are not the approver for the current level')

    level = state.current_level
    if action == FORWARD:
        next_level = level + 1
        if next_level > levels:
            return Transition(APPROVED, next_level, H_APPROVED, level, None)
        return Transition(PENDING, next_level, H_FORWARDED, level, next_level)

    if action == FINAL_APPROVE:
        if level != levels and not actor.can_override:
            raise AuthorizationError(f'Final approval is only allowed at level {levels}')
        return Transition(APPROVED, level, H_APPROVED, level, None)

    if action == REJECT:
        return Transition(REJECTED, level, H_REJECTED, level, None)

    return Transition(SENT_BACK, level, H_SENT_BACK, level, None)


def level_name(level: int, names: dict | None = None) -> str:
    names = names or {}
    return names.get(level) or f'Level {level}'
