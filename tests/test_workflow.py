import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest

from estimator import workflow as wfm
from estimator.errors import AuthorizationError, StateConflictError, ValidationError
from estimator.workflow import Actor, WorkflowState

JE = Actor('je')
SDE = Actor('sde')
ADMIN = Actor('admin', 'super_admin', can_override=True)


def pending(level=1, approver='je', initiated_by='init'):
    return WorkflowState(wfm.PENDING, level, approver, initiated_by)


def test_first_submit_starts_at_level_one():
    t = wfm.plan_submit(None, Actor('init'))
    assert t.status == wfm.PENDING
    assert t.current_level == 1
    assert t.history_action == wfm.H_SUBMITTED
    assert t.next_approver_level == 1


def test_submit_while_pending_conflicts():
    with pytest.raises(StateConflictError):
        wfm.plan_submit(pending(), Actor('init'))


@pytest.mark.parametrize('status', [wfm.APPROVED, wfm.REJECTED])
def test_submit_after_terminal_conflicts(status):
    state = WorkflowState(status, 2, None, 'init')
    with pytest.raises(StateConflictError):
        wfm.plan_submit(state, Actor('init'))


def test_resubmit_after_send_back_is_for_initiator():
    state = WorkflowState(wfm.SENT_BACK, 3, None, 'init')
    assert wfm.plan_submit(state, Actor('init')).current_level == 1
    assert wfm.plan_submit(state, ADMIN).current_level == 1
    with pytest.raises(AuthorizationError):
        wfm.plan_submit(state, Actor('someone'))


def test_forward_moves_to_next_level():
    t = wfm.plan_action(pending(), 'approved', JE)
    assert (t.status, t.current_level, t.history_action, t.history_level) == \
        (wfm.PENDING, 2, wfm.H_FORWARDED, 1)
    assert t.next_approver_level == 2


def test_forward_past_last_level_approves():
    t = wfm.plan_action(pending(4, 'ee'), 'forward', Actor('ee'))
    assert t.status == wfm.APPROVED
    assert t.history_action == wfm.H_APPROVED
    assert t.history_level == 4
    assert t.next_approver_level is None


def test_three_forwards_reach_last_level():
    state = pending()
    for approver, nxt in (('je', 'sde'), ('sde', 'de'), ('de', 'ee')):
        t = wfm.plan_action(state, 'approved', Actor(approver))
        state = WorkflowState(t.status, t.current_level, nxt, 'init')
    assert state.status == wfm.PENDING
    assert state.current_level == 4
    t = wfm.plan_action(state, 'approved_final', Actor('ee'))
    assert t.status == wfm.APPROVED


def test_final_approve_below_last_level_needs_override():
    with pytest.raises(AuthorizationError):
        wfm.plan_action(pending(2, 'sde'), 'approved_final', SDE)
    t = wfm.plan_action(pending(2, 'sde'), 'approved_final', ADMIN)
    assert t.status == wfm.APPROVED
    assert t.history_level == 2


def test_wrong_approver_is_rejected():
    with pytest.raises(AuthorizationError):
        wfm.plan_action(pending(), 'approved', SDE)


def test_override_acts_at_any_level():
    t = wfm.plan_action(pending(3, 'de'), 'rejected', ADMIN)
    assert t.status == wfm.REJECTED
    assert t.history_action == wfm.H_REJECTED


def test_send_back_clears_next_approver():
    t = wfm.plan_action(pending(2, 'sde'), 'send_back', SDE)
    assert t.status == wfm.SENT_BACK
    assert t.current_level == 2
    assert t.next_approver_level is None


@pytest.mark.parametrize('status', [wfm.APPROVED, wfm.REJECTED])
def test_terminal_states_are_immutable(status):
    state = WorkflowState(status, 4, None, 'init')
    for action in ('approved', 'approved_final', 'rejected', 'sent_back'):
        with pytest.raises(StateConflictError):
            wfm.plan_action(state, action, ADMIN)


def test_sent_back_workflow_cannot_be_acted_on():
    state = WorkflowState(wfm.SENT_BACK, 2, None, 'init')
    with pytest.raises(StateConflictError):
        wfm.plan_action(state, 'approved', ADMIN)


@pytest.mark.parametrize('action', [None, '', 'escalate'])
def test_unknown_actions(action):
    with pytest.raises(ValidationError):
        wfm.plan_action(pending(), action, JE)


def test_level_names_fall_back():
    names = {1: 'Junior Engineer'}
    assert wfm.level_name(1, names) == 'Junior Engineer'
    assert wfm.level_name(3, names) == 'Level 3'
