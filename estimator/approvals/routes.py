# estimator/approvals/routes.py

from dataclasses import replace

from flask import Blueprint, request, jsonify
from estimator.auth import current_actor
from estimator.errors import ValidationError
from estimator.models import ApprovalWorkflow, WorkAssignment, Work
from estimator import workflow as wfm
from estimator.approvals.utils import (
    assign_approver,
    submit_approval,
    act_on_approval,
    serialize_workflow,
    snapshot,
    level_name,
)

bp = Blueprint('approvals', __name__)


@bp.route('/pending')
def pending():
    """Workflows waiting on the caller; override roles see every pending one."""
    actor = current_actor()
    q = ApprovalWorkflow.query.filter_by(status=wfm.PENDING)
    if not actor.can_override:
        q = q.filter_by(current_approver_id=actor.user_id)
    return jsonify(workflows=[serialize_workflow(w, with_history=False)
                              for w in q.order_by(ApprovalWorkflow.id).all()])


@bp.route('/mine')
def my_submissions():
    actor = current_actor()
    wfs = (ApprovalWorkflow.query.filter_by(initiated_by=actor.user_id)
           .order_by(ApprovalWorkflow.id).all())
    return jsonify(workflows=[serialize_workflow(w, with_history=False) for w in wfs])


@bp.route('/<int:workflow_id>')
def view_workflow(workflow_id):
    wf = ApprovalWorkflow.query.get_or_404(workflow_id)
    return jsonify(workflow=serialize_workflow(wf))


@bp.route('/works/<works_id>')
def workflow_for_work(works_id):
    Work.query.get_or_404(works_id)
    wf = ApprovalWorkflow.query.filter_by(works_id=works_id).first_or_404()
    return jsonify(workflow=serialize_workflow(wf))


@bp.route('/works/<works_id>/assignments')
def list_assignments(works_id):
    Work.query.get_or_404(works_id)
    rows = (WorkAssignment.query.filter_by(works_id=works_id)
            .order_by(WorkAssignment.level).all())
    return jsonify(assignments=[{
        'level'      : a.level,
        'level_name' : level_name(a.level),
        'approver_id': a.approver_id,
    } for a in rows])


@bp.route('/works/<works_id>/assignments', methods=['POST'])
def add_assignment(works_id):
    data = request.get_json() or {}
    try:
        level = int(data.get('level'))
    except (TypeError, ValueError):
        raise ValidationError('Level must be an integer') from None
    a = assign_approver(works_id, level, (data.get('approver_id') or '').strip(), current_actor())
    return jsonify(level=a.level, approver_id=a.approver_id), 201


@bp.route('/works/<works_id>/submit', methods=['POST'])
def submit(works_id):
    wf = submit_approval(works_id, current_actor())
    return jsonify(workflow=serialize_workflow(wf)), 201


@bp.route('/<int:workflow_id>/action', methods=['POST'])
def act(workflow_id):
    """
    Body: { action: approved|approved_final|rejected|sent_back, comments?, version? }
    ``version`` pins the state the caller is looking at.
    """
    actor = current_actor()
    data = request.get_json() or {}
    expected = None
    if data.get('version') is not None:
        try:
            version = int(data['version'])
        except (TypeError, ValueError):
            raise ValidationError('version must be an integer') from None
        wf = ApprovalWorkflow.query.get_or_404(workflow_id)
        expected = replace(snapshot(wf), version=version)
    wf = act_on_approval(workflow_id, data.get('action'), data.get('comments'), actor, expected)
    return jsonify(workflow=serialize_workflow(wf))
