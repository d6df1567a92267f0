# estimator/rate_analysis/routes.py

from flask import Blueprint, request, jsonify
from estimator import db
from estimator import ledger
from estimator.auth import current_actor
from estimator.errors import ValidationError
from estimator.models import LineItem
from estimator.works.utils import ensure_editable, parse_float, serialize_item
from estimator.rate_analysis.utils import (
    find_rate,
    find_analysis,
    analysis_view,
    evaluate_rate_analysis,
    stored_entries,
)

bp = Blueprint('rate_analysis', __name__)


def _load(item_id, data):
    it = LineItem.query.get_or_404(item_id)
    actor = current_actor(required=False)
    ensure_editable(it.subwork.work, actor)
    rate = find_rate(it, data.get('rate_id'))
    return it, rate, actor


def _saved(it, rate, result):
    db.session.commit()
    return jsonify(
        analysis=analysis_view(it, rate, find_analysis(it, rate)),
        final_rate=result.final_rate,
        total_rate=result.total_rate,
        item=serialize_item(it),
    )


@bp.route('/preview', methods=['POST'])
def preview():
    """Evaluate without saving: { base_rate, entries, final_tax_percent }."""
    data = request.get_json() or {}
    base = parse_float(data, 'base_rate', 0.0)
    entries = ledger.load_entries(data.get('entries'))
    tax_pct = parse_float(data, 'final_tax_percent')
    result = ledger.evaluate(base, entries, tax_pct)
    return jsonify(analysis=dict(result.to_dict(), entries=ledger.dump_entries(entries, base)))


@bp.route('/items/<int:item_id>')
def view_analysis(item_id):
    it = LineItem.query.get_or_404(item_id)
    rate = find_rate(it, request.args.get('rate_id'))
    default = parse_float(request.args, 'base_rate')
    return jsonify(analysis=analysis_view(it, rate, find_analysis(it, rate), default))


@bp.route('/items/<int:item_id>', methods=['POST'])
def save_analysis(item_id):
    """
    Save the whole analysis.
    Body: { rate_id?, entries: [ {label,type,value,factor}, … ], final_tax_percent?, base_rate? }
    """
    data = request.get_json() or {}
    it, rate, actor = _load(item_id, data)
    kwargs = {}
    if 'entries' in data:
        kwargs['entries'] = data.get('entries') or []
    if 'final_tax_percent' in data:
        kwargs['final_tax_percent'] = parse_float(data, 'final_tax_percent')
    result, _ = evaluate_rate_analysis(
        it, rate,
        base_rate=parse_float(data, 'base_rate'),
        created_by=actor.user_id if actor else None,
        **kwargs,
    )
    return _saved(it, rate, result)


@bp.route('/items/<int:item_id>/entries', methods=['POST'])
def add_entry(item_id):
    """Append an entry, or insert it after position ``after``."""
    data = request.get_json() or {}
    it, rate, actor = _load(item_id, data)
    entries = stored_entries(it, rate)
    after = data.get('after')
    if after is None:
        after = len(entries) - 1
    try:
        after = int(after)
    except (TypeError, ValueError):
        raise ValidationError('after must be an integer position') from None
    entries = ledger.insert_after(entries, after, data.get('entry') or {})
    result, _ = evaluate_rate_analysis(it, rate, entries=entries,
                                       created_by=actor.user_id if actor else None)
    return _saved(it, rate, result)


@bp.route('/items/<int:item_id>/entries/<int:index>/update', methods=['POST'])
def update_entry(item_id, index):
    data = request.get_json() or {}
    it, rate, actor = _load(item_id, data)
    entries = ledger.replace_at(stored_entries(it, rate), index, data.get('entry') or {})
    result, _ = evaluate_rate_analysis(it, rate, entries=entries,
                                       created_by=actor.user_id if actor else None)
    return _saved(it, rate, result)


@bp.route('/items/<int:item_id>/entries/<int:index>/delete', methods=['POST'])
def delete_entry(item_id, index):
    data = request.get_json() or {}
    it, rate, actor = _load(item_id, data)
    entries = ledger.remove_at(stored_entries(it, rate), index)
    result, _ = evaluate_rate_analysis(it, rate, entries=entries,
                                       created_by=actor.user_id if actor else None)
    return _saved(it, rate, result)


@bp.route('/items/<int:item_id>/final-tax', methods=['POST'])
def apply_final_tax(item_id):
    data = request.get_json() or {}
    it, rate, _ = _load(item_id, data)
    percent = parse_float(data, 'percent', 0.0)
    if percent < 0:
        raise ValidationError('Tax percent cannot be negative')
    result, _ = evaluate_rate_analysis(it, rate, final_tax_percent=percent)
    return _saved(it, rate, result)


@bp.route('/items/<int:item_id>/final-tax/clear', methods=['POST'])
def clear_final_tax(item_id):
    data = request.get_json() or {}
    it, rate, _ = _load(item_id, data)
    result, _ = evaluate_rate_analysis(it, rate, final_tax_percent=None)
    return _saved(it, rate, result)
