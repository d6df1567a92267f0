# estimator/works/routes.py

from flask import Blueprint, request, jsonify
from sqlalchemy.exc import IntegrityError
from estimator import db
from estimator.auth import current_actor
from estimator.errors import StateConflictError, ValidationError
from estimator.models import Work, Subwork, LineItem, ItemRate, MeasurementRow, RateAnalysis
from estimator.api.rate_catalog import search_rates
from estimator.measurements.utils import price_row
from estimator.works.utils import (
    recompute_item,
    ensure_editable,
    next_item_number,
    parse_float,
    validate_operation,
    build_rates,
    serialize_item,
    serialize_rate,
    serialize_work,
    build_recap,
)

bp = Blueprint('works', __name__)


@bp.route('/', methods=['GET'])
def list_works():
    works = Work.query.order_by(Work.created_at.desc()).all()
    return jsonify(works=[serialize_work(w) for w in works])


@bp.route('/', methods=['POST'])
def create_work():
    data = request.get_json() or {}
    works_id = (data.get('works_id') or '').strip()
    name = (data.get('name') or '').strip()
    if not works_id or not name:
        raise ValidationError('Work id and name are required')
    actor = current_actor(required=False)
    w = Work(
        works_id   = works_id,
        name       = name,
        division   = data.get('division'),
        created_by = actor.user_id if actor else None,
    )
    db.session.add(w)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StateConflictError(f'Work {works_id} already exists') from None
    return jsonify(work=serialize_work(w)), 201


@bp.route('/<works_id>')
def view_work(works_id):
    w = Work.query.get_or_404(works_id)
    return jsonify(work=serialize_work(w, with_items=True))


@bp.route('/<works_id>/delete', methods=['POST'])
def delete_work(works_id):
    w = Work.query.get_or_404(works_id)
    if w.estimate_status in ('in_approval', 'approved'):
        raise StateConflictError(f'Estimate is {w.estimate_status} and cannot be deleted')
    db.session.delete(w)
    db.session.commit()
    return jsonify(success=True)


@bp.route('/<works_id>/subworks', methods=['POST'])
def add_subwork(works_id):
    w = Work.query.get_or_404(works_id)
    ensure_editable(w, current_actor(required=False))
    data = request.get_json() or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Sub-work name required')
    sr_no = max((s.sr_no for s in w.subworks), default=0) + 1
    s = Subwork(works_id=w.works_id, sr_no=sr_no, name=name)
    db.session.add(s)
    db.session.commit()
    return jsonify(id=s.id, sr_no=s.sr_no, name=s.name), 201


@bp.route('/<works_id>/mark-ready', methods=['POST'])
def mark_ready(works_id):
    """Move a draft (or sent-back) estimate to ready_for_approval."""
    w = Work.query.get_or_404(works_id)
    if w.estimate_status not in ('draft', 'sent_back'):
        raise StateConflictError(f'Estimate is {w.estimate_status}')
    w.estimate_status = 'ready_for_approval'
    db.session.commit()
    return jsonify(estimate_status=w.estimate_status)


@bp.route('/<works_id>/recap')
def recap(works_id):
    w = Work.query.get_or_404(works_id)
    return jsonify(build_recap(w))


@bp.route('/catalog/search')
def catalog_search():
    """
    Reference rate search used to pre-fill a new rate.
    Returns { rates: [ {item_no,description,unit,rate,reference}, … ] }.
    """
    q = request.args.get('q', '').strip()
    if len(q) < 2:
        return jsonify(rates=[])
    return jsonify(rates=search_rates(q, request.args.get('schedule')))


@bp.route('/subworks/<int:subwork_id>/items', methods=['POST'])
def add_item(subwork_id):
    s = Subwork.query.get_or_404(subwork_id)
    ensure_editable(s.work, current_actor(required=False))
    data = request.get_json() or {}

    description = (data.get('description') or '').strip()
    if not description:
        raise ValidationError('Item description is required')
    rates = build_rates(data.get('rates'))
    if not rates:
        raise ValidationError('Please add at least one valid rate entry with description and rate.')

    it = LineItem(
        subwork_id        = s.id,
        item_number       = next_item_number(s),
        description       = description,
        category          = data.get('category') or '',
        unit              = data.get('unit') or rates[0].unit,
        default_rate      = rates[0].rate,
        catalog_reference = data.get('catalog_reference'),
    )
    validate_operation(data, it)
    it.rates = rates
    db.session.add(it)
    recompute_item(it)
    db.session.commit()
    return jsonify(item=serialize_item(it)), 201


@bp.route('/items/<int:item_id>')
def view_item(item_id):
    it = LineItem.query.get_or_404(item_id)
    return jsonify(item=serialize_item(it))


@bp.route('/items/<int:item_id>/update', methods=['POST'])
def update_item(item_id):
    it = LineItem.query.get_or_404(item_id)
    ensure_editable(it.subwork.work, current_actor(required=False))
    data = request.get_json() or {}
    if 'description' in data and not (data.get('description') or '').strip():
        raise ValidationError('Item description is required')
    it.description = data.get('description', it.description)
    it.category    = data.get('category', it.category)
    it.unit        = data.get('unit', it.unit)
    db.session.commit()
    return jsonify(item=serialize_item(it))


@bp.route('/items/<int:item_id>/delete', methods=['POST'])
def delete_item(item_id):
    it = LineItem.query.get_or_404(item_id)
    ensure_editable(it.subwork.work, current_actor(required=False))
    db.session.delete(it)
    db.session.commit()
    return jsonify(success=True)


@bp.route('/items/<int:item_id>/operation', methods=['POST'])
def set_operation(item_id):
    """Save the item-level operation and unit conversion, then re-price."""
    it = LineItem.query.get_or_404(item_id)
    ensure_editable(it.subwork.work, current_actor(required=False))
    validate_operation(request.get_json() or {}, it)
    recompute_item(it)
    db.session.commit()
    return jsonify(item=serialize_item(it))


@bp.route('/items/<int:item_id>/recompute', methods=['POST'])
def recompute(item_id):
    it = recompute_item(item_id)
    db.session.commit()
    return jsonify(item=serialize_item(it))


@bp.route('/items/<int:item_id>/rates', methods=['POST'])
def add_rate(item_id):
    it = LineItem.query.get_or_404(item_id)
    ensure_editable(it.subwork.work, current_actor(required=False))
    rates = build_rates([request.get_json() or {}])
    if not rates:
        raise ValidationError('Rate needs a description and a rate greater than zero')
    r = rates[0]
    r.item_id = it.id
    db.session.add(r)
    recompute_item(it)
    db.session.commit()
    return jsonify(rate=serialize_rate(r)), 201


@bp.route('/items/<int:item_id>/rates/<int:rate_id>/update', methods=['POST'])
def update_rate(item_id, rate_id):
    it = LineItem.query.get_or_404(item_id)
    ensure_editable(it.subwork.work, current_actor(required=False))
    r = ItemRate.query.filter_by(id=rate_id, item_id=it.id).first_or_404()
    data = request.get_json() or {}
    if 'description' in data:
        desc = (data.get('description') or '').strip()
        if not desc:
            raise ValidationError('Rate description is required')
        r.description = desc
    if 'rate' in data:
        value = parse_float(data, 'rate')
        if value is None or value <= 0:
            raise ValidationError('Rate must be greater than zero')
        r.rate = value
    r.unit = data.get('unit', r.unit)
    if it.rates and it.rates[0].id == r.id:
        it.default_rate = r.rate
    recompute_item(it)
    db.session.commit()
    return jsonify(rate=serialize_rate(r))


@bp.route('/items/<int:item_id>/rates/<int:rate_id>/delete', methods=['POST'])
def delete_rate(item_id, rate_id):
    it = LineItem.query.get_or_404(item_id)
    ensure_editable(it.subwork.work, current_actor(required=False))
    r = ItemRate.query.filter_by(id=rate_id, item_id=it.id).first_or_404()
    if len(it.rates) <= 1:
        raise ValidationError('An item must keep at least one rate')

    # Rows priced from this rate fall back to the item default
    detached = MeasurementRow.query.filter_by(rate_id=r.id).all()
    for m in detached:
        m.rate_id = None
    RateAnalysis.query.filter_by(rate_id=r.id).delete()

    db.session.delete(r)
    db.session.flush()
    db.session.refresh(it)
    if it.rates:
        it.default_rate = it.rates[0].rate
    for m in detached:
        price_row(m, it)
    recompute_item(it)
    db.session.commit()
    return jsonify(success=True)
