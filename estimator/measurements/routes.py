# estimator/measurements/routes.py

import logging

from flask import Blueprint, request, jsonify
from estimator import db
from estimator.auth import current_actor
from estimator.errors import ValidationError
from estimator.models import LineItem, MeasurementRow
from estimator.works.utils import recompute_item, ensure_editable, serialize_item
from estimator.measurements.utils import (
    next_sr_no,
    apply_inputs,
    price_row,
    manual_rows,
    reference_row,
    rate_groups,
    royalty_view,
    save_royalty,
    testing_view,
    save_testing,
    serialize_row,
)

bp = Blueprint('measurements', __name__)


def _editable_item(item_id):
    it = LineItem.query.get_or_404(item_id)
    actor = current_actor(required=False)
    ensure_editable(it.subwork.work, actor)
    return it, actor


@bp.route('/<int:item_id>/measurements')
def list_measurements(item_id):
    it = LineItem.query.get_or_404(item_id)
    return jsonify(
        measurements=[serialize_row(m) for m in it.measurements],
        rate_groups=rate_groups(it),
        final_quantity=it.final_quantity,
    )


@bp.route('/<int:item_id>/measurements', methods=['POST'])
def add_measurement(item_id):
    it, actor = _editable_item(item_id)
    row = MeasurementRow(item_id=it.id, sr_no=next_sr_no(it),
                         created_by=actor.user_id if actor else None)
    apply_inputs(row, request.get_json() or {})
    price_row(row, it)
    db.session.add(row)
    recompute_item(it)
    db.session.commit()
    logging.info("measurement added item=%s row=%s qty=%s", it.id, row.sr_no, row.calculated_quantity)
    return jsonify(measurement=serialize_row(row), item=serialize_item(it)), 201


@bp.route('/<int:item_id>/measurements/<int:row_id>/update', methods=['POST'])
def update_measurement(item_id, row_id):
    it, _ = _editable_item(item_id)
    row = MeasurementRow.query.filter_by(id=row_id, item_id=it.id).first_or_404()
    apply_inputs(row, request.get_json() or {})
    price_row(row, it)
    recompute_item(it)
    db.session.commit()
    return jsonify(measurement=serialize_row(row), item=serialize_item(it))


@bp.route('/<int:item_id>/measurements/<int:row_id>/delete', methods=['POST'])
def delete_measurement(item_id, row_id):
    it, _ = _editable_item(item_id)
    row = MeasurementRow.query.filter_by(id=row_id, item_id=it.id).first_or_404()
    db.session.delete(row)
    recompute_item(it)
    db.session.commit()
    return jsonify(success=True, item=serialize_item(it))


@bp.route('/<int:item_id>/measurements/import', methods=['POST'])
def import_measurements(item_id):
    """
    Bulk add manual-quantity rows.
    Body: { rows: [ {description, quantity}, … ] }
    """
    it, actor = _editable_item(item_id)
    rows = manual_rows(it, (request.get_json() or {}).get('rows'),
                       created_by=actor.user_id if actor else None)
    db.session.add_all(rows)
    recompute_item(it)
    db.session.commit()
    return jsonify(measurements=[serialize_row(r) for r in rows], item=serialize_item(it)), 201


@bp.route('/<int:item_id>/measurements/reference', methods=['POST'])
def reference_measurement(item_id):
    """Add a row whose quantity is another item's measured total."""
    it, actor = _editable_item(item_id)
    source_id = (request.get_json() or {}).get('source_item_id')
    if source_id is None:
        raise ValidationError('Select the item to reference')
    source = LineItem.query.get_or_404(source_id)
    row = reference_row(it, source, created_by=actor.user_id if actor else None)
    db.session.add(row)
    recompute_item(it)
    db.session.commit()
    return jsonify(measurement=serialize_row(row), item=serialize_item(it)), 201


@bp.route('/<int:item_id>/royalty')
def get_royalty(item_id):
    it = LineItem.query.get_or_404(item_id)
    return jsonify(royalty=royalty_view(it))


@bp.route('/<int:item_id>/royalty', methods=['POST'])
def update_royalty(item_id):
    """
    Body: { measurement?, metal_factor?, murum_factor?, sand_factor? }
    ``measurement: null`` resets it to the item's measured total.
    """
    it, actor = _editable_item(item_id)
    rec = save_royalty(it, request.get_json() or {}, created_by=actor.user_id if actor else None)
    db.session.commit()
    logging.info("royalty saved item=%s metal=%s murum=%s sand=%s",
                 it.id, rec.hb_metal, rec.murum, rec.sand)
    return jsonify(royalty=royalty_view(it), item=serialize_item(it))


@bp.route('/<int:item_id>/testing')
def get_testing(item_id):
    it = LineItem.query.get_or_404(item_id)
    return jsonify(testing=testing_view(it))


@bp.route('/<int:item_id>/testing', methods=['POST'])
def update_testing(item_id):
    """Body: { quantity?, description?, required_tests? }"""
    it, actor = _editable_item(item_id)
    rec = save_testing(it, request.get_json() or {}, created_by=actor.user_id if actor else None)
    db.session.commit()
    logging.info("testing saved item=%s quantity=%s tests=%s", it.id, rec.quantity, rec.required_tests)
    return jsonify(testing=testing_view(it), item=serialize_item(it))
