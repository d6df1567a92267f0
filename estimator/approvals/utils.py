# estimator/approvals/utils.py

"""Persisting approval transitions.

A transition only lands if the workflow row still holds the status, level
and version that were read.  The row is mapped with a version counter, so
the UPDATE also matches on the version loaded into the session.  The
history insert and the work status change share that commit; a mismatch
rolls the whole attempt back as a state conflict.
"""

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from estimator import db
from estimator.errors import AuthorizationError, StateConflictError, ValidationError
from estimator.models import ApprovalHistory, ApprovalWorkflow, Work, WorkAssignment, utcnow
from estimator import workflow as wfm

STALE_MESSAGE = 'The estimate has changed since it was loaded; refresh and try again'

WORK_STATUS_FOR = {
    wfm.PENDING: 'in_approval',
    wfm.APPROVED: 'approved',
    wfm.REJECTED: 'rejected',
    wfm.SENT_BACK: 'sent_back',
}


def approval_levels() -> int:
    return current_app.config.get('APPROVAL_LEVELS', 4)


def level_name(level: int) -> str:
    return wfm.level_name(level, current_app.config.get('APPROVAL_LEVEL_NAMES'))


def snapshot(wf: ApprovalWorkflow) -> wfm.WorkflowState:
    return wfm.WorkflowState(
        status=wf.status,
        current_level=wf.current_level,
        current_approver_id=wf.current_approver_id,
        initiated_by=wf.initiated_by,
        version=wf.version,
    )


def approver_for(works_id: str, level: int):
    a = WorkAssignment.query.filter_by(works_id=works_id, level=level).first()
    return a.approver_id if a else None


def _next_approver(works_id: str, transition: wfm.Transition):
    if transition.next_approver_level is None:
        return None
    approver = approver_for(works_id, transition.next_approver_level)
    if approver is None:
        raise ValidationError(
            f'No approver assigned for {level_name(transition.next_approver_level)}'
        )
    return approver


def assign_approver(works_id: str, level: int, approver_id: str, actor) -> WorkAssignment:
    if not actor.can_override:
        raise AuthorizationError('Only administrators can assign approvers')
    if level < 1 or level > approval_levels():
        raise ValidationError(f'Level must be between 1 and {approval_levels()}')
    if not approver_id:
        raise ValidationError('Approver is required')
    Work.query.get_or_404(works_id)
    a = WorkAssignment.query.filter_by(works_id=works_id, level=level).first()
    if a is None:
        a = WorkAssignment(works_id=works_id, level=level)
        db.session.add(a)
    a.approver_id = approver_id
    db.session.commit()
    return a


def _apply_transition(wf: ApprovalWorkflow, state: wfm.WorkflowState, **values) -> None:
    """Write ``values`` onto ``wf`` if it still holds the state that was read.

    The flush carries the mapper's version check, so a row moved on by
    another session since it was loaded fails with ``StaleDataError``.
    """
    if (wf.status, wf.current_level, wf.version) != (state.status, state.current_level, state.version):
        db.session.rollback()
        raise StateConflictError(STALE_MESSAGE)
    for key, value in values.items():
        setattr(wf, key, value)
    try:
        db.session.flush()
    except StaleDataError:
        db.session.rollback()
        raise StateConflictError(STALE_MESSAGE) from None


def _record(workflow_id, level, actor, action, comments, works_id, status):
    db.session.add(ApprovalHistory(
        workflow_id = workflow_id,
        level       = level,
        approver_id = actor.user_id,
        action      = action,
        comments    = comments or None,
    ))
    Work.query.filter_by(works_id=works_id).update({'estimate_status': WORK_STATUS_FOR[status]})


def submit_approval(works_id: str, actor) -> ApprovalWorkflow:
    """Start the approval chain, or restart it after a send-back."""
    work = Work.query.get_or_404(works_id)
    wf = ApprovalWorkflow.query.filter_by(works_id=works_id).first()
    state = snapshot(wf) if wf else None

    transition = wfm.plan_submit(state, actor)
    approver = _next_approver(works_id, transition)

    if wf is None:
        wf = ApprovalWorkflow(
            works_id            = work.works_id,
            current_level       = transition.current_level,
            current_approver_id = approver,
            status              = transition.status,
            initiated_by        = actor.user_id,
        )
        db.session.add(wf)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise StateConflictError('Estimate has already been submitted') from None
    else:
        _apply_transition(
            wf, state,
            status=transition.status,
            current_level=transition.current_level,
            current_approver_id=approver,
            initiated_at=utcnow(),
        )

    _record(wf.id, transition.history_level, actor, transition.history_action,
            None, works_id, transition.status)
    db.session.commit()
    logging.info("approval submitted work=%s workflow=%s by=%s", works_id, wf.id, actor.user_id)
    return db.session.get(ApprovalWorkflow, wf.id)


def act_on_approval(workflow_id: int, action: str, comments: str | None, actor,
                    expected: wfm.WorkflowState | None = None) -> ApprovalWorkflow:
    """Apply one approver action.

    ``expected`` lets a caller pin the state it showed to the user; by default
    the state is read here.  Either way the write only lands if the row still
    matches that state.
    """
    if workflow_id is None:
        raise ValidationError('Please select a workflow')
    wf = db.session.get(ApprovalWorkflow, workflow_id)
    if wf is None:
        raise ValidationError(f'Workflow {workflow_id} not found')
    state = expected or snapshot(wf)

    transition = wfm.plan_action(state, action, actor, approval_levels())
    approver = _next_approver(wf.works_id, transition)

    _apply_transition(
        wf, state,
        status=transition.status,
        current_level=transition.current_level,
        current_approver_id=approver,
    )
    _record(wf.id, transition.history_level, actor, transition.history_action,
            comments, wf.works_id, transition.status)
    db.session.commit()
    logging.info("approval action workflow=%s action=%s level=%s status=%s by=%s",
                 workflow_id, transition.history_action, transition.history_level,
                 transition.status, actor.user_id)
    return db.session.get(ApprovalWorkflow, workflow_id)


def serialize_history(h: ApprovalHistory) -> dict:
    return {
        'id'         : h.id,
        'level'      : h.level,
        'level_name' : level_name(h.level),
        'approver_id': h.approver_id,
        'action'     : h.action,
        'comments'   : h.comments,
        'created_at' : h.created_at.isoformat() if h.created_at else None,
    }


def serialize_workflow(wf: ApprovalWorkflow, with_history: bool = True) -> dict:
    out = {
        'id'                 : wf.id,
        'works_id'           : wf.works_id,
        'work_name'          : wf.work.name if wf.work else None,
        'current_level'      : wf.current_level,
        'current_level_name' : level_name(wf.current_level),
        'current_approver_id': wf.current_approver_id,
        'status'             : wf.status,
        'initiated_by'       : wf.initiated_by,
        'initiated_at'       : wf.initiated_at.isoformat() if wf.initiated_at else None,
        'version'            : wf.version,
    }
    if with_history:
        out['history'] = [serialize_history(h) for h in wf.history]
    return out
