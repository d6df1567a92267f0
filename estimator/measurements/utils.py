# estimator/measurements/utils.py

"""Measurement row helpers: input parsing, pricing, numbering.

Also the per-item royalty and testing statements, which sit beside the
measurement rows and never feed the item total.
"""

from estimator import db
from estimator.errors import ValidationError
from estimator.models import MeasurementRow, RoyaltyMeasurement, TestingMeasurement
from estimator.quantities import (
    compute_quantity,
    line_amount,
    resolve_effective_rate,
    royalty_factors,
    royalty_quantities,
    signed_total,
    testing_total,
)
from estimator.works.utils import parse_float

DIMENSIONS = ('factor', 'no_of_units', 'length', 'width', 'height')
ROYALTY_FACTORS = ('metal_factor', 'murum_factor', 'sand_factor')


def next_sr_no(item) -> int:
    last = (db.session.query(db.func.max(MeasurementRow.sr_no))
            .filter(MeasurementRow.item_id == item.id).scalar())
    return (last or 0) + 1


def _flag(data: dict, key: str, current: bool) -> bool:
    value = data.get(key, current)
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def apply_inputs(row: MeasurementRow, data: dict) -> None:
    """Copy user inputs onto ``row``; derived fields are left to ``price_row``."""
    row.description = data.get('description', row.description)
    row.unit = data.get('unit', row.unit)
    for dim in DIMENSIONS:
        default = getattr(row, dim)
        if default is None:
            default = 1.0 if dim == 'factor' else 0.0
        setattr(row, dim, parse_float(data, dim, default))
    if not row.factor:
        row.factor = 1.0

    row.is_manual_quantity = _flag(data, 'is_manual_quantity', row.is_manual_quantity or False)
    if row.is_manual_quantity:
        row.manual_quantity = parse_float(data, 'manual_quantity', row.manual_quantity) or 0.0
    else:
        row.manual_quantity = None
    row.is_deduction = _flag(data, 'is_deduction', row.is_deduction or False)
    if 'rate_id' in data:
        raw = data.get('rate_id')
        try:
            row.rate_id = int(raw) if raw not in (None, '') else None
        except (TypeError, ValueError):
            raise ValidationError('rate_id must be an integer') from None


def price_row(row: MeasurementRow, item) -> MeasurementRow:
    """Recompute quantity and line amount from the row's current inputs."""
    ids = {r.id for r in item.rates}
    if row.rate_id is not None and row.rate_id not in ids:
        row.rate_id = None
    row.calculated_quantity = compute_quantity(row)
    row.rate = resolve_effective_rate(row.rate_id, item.rates, item.default_rate)
    row.line_amount = line_amount(row.calculated_quantity, row.rate, row.is_deduction)
    return row


def manual_rows(item, rows, created_by=None) -> list:
    """Rows for a bulk quantity import (one manual row per input line)."""
    if not rows:
        raise ValidationError('No measurement rows to import')
    start = next_sr_no(item)
    out = []
    for offset, r in enumerate(rows):
        quantity = parse_float(r, 'quantity', 0.0)
        row = MeasurementRow(
            item_id            = item.id,
            sr_no              = start + offset,
            description        = r.get('description'),
            unit               = item.unit,
            factor             = 1.0,
            no_of_units        = 1.0,
            length             = 1.0,
            width              = 1.0,
            height             = 1.0,
            is_manual_quantity = True,
            manual_quantity    = quantity,
            is_deduction       = False,
            created_by         = created_by,
        )
        out.append(price_row(row, item))
    return out


def reference_row(item, source, created_by=None) -> MeasurementRow:
    """Manual row carrying another item's signed measured total."""
    if source.id == item.id:
        raise ValidationError('An item cannot reference itself')
    if source.subwork_id != item.subwork_id:
        raise ValidationError('Referenced item must belong to the same sub-work')
    if not source.measurements:
        raise ValidationError('Referenced item has no measurements')
    row = MeasurementRow(
        item_id            = item.id,
        sr_no              = next_sr_no(item),
        description        = f'Qty. as per Item No. {source.item_number}',
        unit               = source.unit,
        is_manual_quantity = True,
        manual_quantity    = signed_total(source.measurements),
        reference_item_id  = source.id,
        created_by         = created_by,
    )
    return price_row(row, item)


def rate_groups(item) -> list:
    """Measured quantity grouped by the rate each row was priced at."""
    groups = {}
    descriptions = {r.rate: r.description for r in item.rates}
    for m in item.measurements:
        g = groups.setdefault(m.rate, {'rate': m.rate, 'quantity': 0.0,
                                       'description': descriptions.get(m.rate)})
        g['quantity'] += m.calculated_quantity or 0.0
    return list(groups.values())


def serialize_row(m: MeasurementRow) -> dict:
    return {
        'id'                 : m.id,
        'sr_no'              : m.sr_no,
        'description'        : m.description,
        'unit'               : m.unit,
        'factor'             : m.factor,
        'no_of_units'        : m.no_of_units,
        'length'             : m.length,
        'width'              : m.width,
        'height'             : m.height,
        'is_manual_quantity' : m.is_manual_quantity,
        'manual_quantity'    : m.manual_quantity,
        'is_deduction'       : m.is_deduction,
        'rate_id'            : m.rate_id,
        'rate'               : m.rate,
        'calculated_quantity': m.calculated_quantity,
        'line_amount'        : m.line_amount,
        'reference_item_id'  : m.reference_item_id,
    }


def _require_category(item, category: str) -> None:
    if (item.category or '').strip().lower() != category:
        raise ValidationError(f'Item {item.item_number} is not a {category} item')


def _statement_quantity(data: dict, key: str, stored, measured: float) -> float:
    """Posted value, else the stored one, else the item's measured total.

    Posting ``null`` explicitly goes back to the measured total.
    """
    if key in data:
        value = parse_float(data, key)
        return measured if value is None else value
    return measured if stored is None else stored


def _non_negative(data: dict, key: str, current) -> float:
    value = parse_float(data, key, current) or 0.0
    if value < 0:
        raise ValidationError(f'{key} cannot be negative')
    return value


def analysis_entries(item) -> list:
    entries = []
    for a in sorted(item.analyses, key=lambda a: a.id):
        entries.extend(a.entries or [])
    return entries


def royalty_view(item) -> dict:
    _require_category(item, 'royalty')
    measured = signed_total(item.measurements)
    rec = item.royalty
    if rec is None:
        out = royalty_factors(analysis_entries(item))
        out['measurement'] = measured
    else:
        out = {key: getattr(rec, key) for key in ('measurement',) + ROYALTY_FACTORS}
    out.update(royalty_quantities(out['measurement'], out['metal_factor'],
                                  out['murum_factor'], out['sand_factor']))
    out['item_id'] = item.id
    out['measured_total'] = measured
    out['saved'] = rec is not None
    return out


def save_royalty(item, data: dict, created_by=None) -> RoyaltyMeasurement:
    """Create or update the item's royalty statement.

    A new statement takes its factors from the item's rate analysis; posted
    factors override them.
    """
    _require_category(item, 'royalty')
    rec = item.royalty
    current = royalty_factors(analysis_entries(item)) if rec is None else {
        key: getattr(rec, key) for key in ROYALTY_FACTORS
    }
    factors = {key: _non_negative(data, key, current[key]) for key in ROYALTY_FACTORS}
    measurement = _statement_quantity(data, 'measurement', rec.measurement if rec else None,
                                      signed_total(item.measurements))

    if rec is None:
        rec = RoyaltyMeasurement(item_id=item.id, created_by=created_by)
        db.session.add(rec)
    rec.measurement = measurement
    for key, value in factors.items():
        setattr(rec, key, value)
    quantities = royalty_quantities(measurement, factors['metal_factor'],
                                    factors['murum_factor'], factors['sand_factor'])
    rec.hb_metal = quantities['hb_metal']
    rec.murum = quantities['murum']
    rec.sand = quantities['sand']
    return rec


def testing_view(item) -> dict:
    _require_category(item, 'testing')
    measured = signed_total(item.measurements)
    rec = item.testing
    quantity = measured if rec is None else rec.quantity
    required = 0 if rec is None else rec.required_tests
    return {
        'item_id'       : item.id,
        'quantity'      : quantity,
        'description'   : '' if rec is None else rec.description,
        'required_tests': required,
        'total'         : testing_total(quantity, required),
        'measured_total': measured,
        'saved'         : rec is not None,
    }


def save_testing(item, data: dict, created_by=None) -> TestingMeasurement:
    """Create or update the item's testing statement."""
    _require_category(item, 'testing')
    rec = item.testing
    required = _non_negative(data, 'required_tests', rec.required_tests if rec else 0)
    if required != int(required):
        raise ValidationError('required_tests must be a whole number')
    quantity = _statement_quantity(data, 'quantity', rec.quantity if rec else None,
                                   signed_total(item.measurements))

    if rec is None:
        rec = TestingMeasurement(item_id=item.id, created_by=created_by)
        db.session.add(rec)
    rec.quantity = quantity
    rec.description = data.get('description', rec.description) or ''
    rec.required_tests = int(required)
    rec.total = testing_total(quantity, rec.required_tests)
    return rec
