# estimator/works/utils.py

"""Helpers for the works blueprint: recompute, edit lock, serialisers."""

import logging

from estimator import db
from estimator.errors import AuthorizationError, StateConflictError, ValidationError
from estimator.models import LineItem, ItemRate, Work
from estimator.quantities import OPERATION_TYPES, aggregate_item, price_rates

EDITABLE_STATUSES = ('draft', 'ready_for_approval', 'sent_back')


def recompute_item(item_or_id) -> LineItem:
    """Re-derive ``final_quantity`` and every rate amount for one item.

    Overwrites the stored aggregates; safe to run any number of times.  The
    caller owns the commit.
    """
    item = item_or_id if isinstance(item_or_id, LineItem) else LineItem.query.get_or_404(item_or_id)
    db.session.flush()
    db.session.refresh(item)

    final_qty = aggregate_item(
        item.measurements,
        item.operation_type,
        item.operation_value,
        item.unit_conversion_factor,
    )
    item.final_quantity = final_qty

    total = 0.0
    for rate, qty, amount in price_rates(item.rates, final_qty):
        rate.quantity = qty
        rate.total_amount = amount
        total += amount
    item.total_amount = total

    logging.info("recomputed item=%s final_quantity=%s total_amount=%s",
                 item.id, final_qty, total)
    return item


def ensure_editable(work: Work, actor) -> None:
    """Refuse edits to estimate content outside the editable states.

    While the estimate sits with an approver only that approver (or an
    override role) may change it.
    """
    status = work.estimate_status
    if status in EDITABLE_STATUSES:
        return
    if status == 'in_approval':
        wf = work.workflow
        if actor is not None and (actor.can_override or
                                  (wf is not None and wf.current_approver_id == actor.user_id)):
            return
        raise AuthorizationError('Estimate is in approval; only the current approver can edit it')
    raise StateConflictError(f'Estimate is {status} and can no longer be edited')


def next_item_number(subwork) -> str:
    numbers = []
    for it in subwork.items:
        try:
            numbers.append(int(it.item_number))
        except (TypeError, ValueError):
            continue
    return str(max(numbers) + 1 if numbers else 1)


def parse_float(data: dict, key: str, default=None):
    raw = data.get(key, default)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{key} must be a number') from None


def validate_operation(data: dict, item: LineItem) -> None:
    op = data.get('operation_type', item.operation_type) or 'none'
    if op not in OPERATION_TYPES:
        raise ValidationError(f'operation_type must be one of {", ".join(OPERATION_TYPES)}')
    item.operation_type = op
    item.operation_value = parse_float(data, 'operation_value', item.operation_value) or 0.0
    factor = parse_float(data, 'unit_conversion_factor', item.unit_conversion_factor)
    item.unit_conversion_factor = factor or 1.0
    item.final_unit = data.get('final_unit', item.final_unit)


def build_rates(raw_rates) -> list:
    """Valid rate rows (description and rate > 0) from a request payload."""
    rates = []
    for r in raw_rates or []:
        desc = (r.get('description') or '').strip()
        value = parse_float(r, 'rate', 0.0)
        if desc and value > 0:
            rates.append(ItemRate(description=desc, rate=value, unit=r.get('unit') or ''))
    return rates


def serialize_rate(r: ItemRate) -> dict:
    return {
        'id'          : r.id,
        'description' : r.description,
        'rate'        : r.rate,
        'unit'        : r.unit,
        'quantity'    : r.quantity,
        'total_amount': r.total_amount,
    }


def serialize_item(it: LineItem) -> dict:
    out = {
        'id'                    : it.id,
        'subwork_id'            : it.subwork_id,
        'item_number'           : it.item_number,
        'description'           : it.description,
        'category'              : it.category,
        'unit'                  : it.unit,
        'default_rate'          : it.default_rate,
        'operation_type'        : it.operation_type,
        'operation_value'       : it.operation_value,
        'unit_conversion_factor': it.unit_conversion_factor,
        'final_unit'            : it.final_unit,
        'final_quantity'        : it.final_quantity,
        'total_amount'          : it.total_amount,
        'rates'                 : [serialize_rate(r) for r in it.rates],
    }
    if it.royalty is not None:
        out['royalty_total'] = it.royalty.hb_metal + it.royalty.murum + it.royalty.sand
    if it.testing is not None:
        out['testing_quantity'] = it.testing.quantity
    return out


def serialize_work(w: Work, with_items: bool = False) -> dict:
    out = {
        'works_id'       : w.works_id,
        'name'           : w.name,
        'division'       : w.division,
        'estimate_status': w.estimate_status,
        'created_by'     : w.created_by,
        'total_amount'   : w.total_amount,
    }
    if with_items:
        out['subworks'] = [{
            'id'          : s.id,
            'sr_no'       : s.sr_no,
            'name'        : s.name,
            'total_amount': s.total_amount,
            'items'       : [serialize_item(i) for i in s.items],
        } for s in w.subworks]
    return out


_ONES = ['', 'One', 'Two', 'Three', 'Four', 'Five', 'Six', 'Seven', 'Eight', 'Nine']
_TEENS = ['Ten', 'Eleven', 'Twelve', 'Thirteen', 'Fourteen', 'Fifteen', 'Sixteen',
          'Seventeen', 'Eighteen', 'Nineteen']
_TENS = ['', '', 'Twenty', 'Thirty', 'Forty', 'Fifty', 'Sixty', 'Seventy', 'Eighty', 'Ninety']


def _below_thousand(n: int) -> str:
    if n == 0:
        return ''
    if n < 10:
        return _ONES[n]
    if n < 20:
        return _TEENS[n - 10]
    if n < 100:
        return _TENS[n // 10] + (' ' + _ONES[n % 10] if n % 10 else '')
    rest = _below_thousand(n % 100)
    return _ONES[n // 100] + ' Hundred' + (' & ' + rest if rest else '')


def _indian_words(n: int) -> str:
    parts = []
    crore, n = divmod(n, 10_000_000)
    lakh, n = divmod(n, 100_000)
    thousand, n = divmod(n, 1000)
    if crore:
        parts.append(_indian_words(crore) + ' Crore')
    if lakh:
        parts.append(_below_thousand(lakh) + ' Lakh')
    if thousand:
        parts.append(_below_thousand(thousand) + ' Thousand')
    if n:
        parts.append(_below_thousand(n))
    return ' '.join(parts)


def amount_in_words(amount: float) -> str:
    """Rupee amount in words using the Indian grouping (Crore, Lakh, Thousand)."""
    n = int(abs(amount or 0))
    if n == 0:
        return 'Zero Only'
    return 'INR ' + _indian_words(n) + ' Only'


def build_recap(work: Work) -> dict:
    rows = []
    for s in work.subworks:
        rows.append({
            'sr_no'       : s.sr_no,
            'name'        : s.name,
            'item_count'  : len(s.items),
            'total_amount': round(s.total_amount, 2),
        })
    total = round(work.total_amount, 2)
    return {
        'works_id'       : work.works_id,
        'name'           : work.name,
        'subworks'       : rows,
        'total_amount'   : total,
        'amount_in_words': amount_in_words(total),
    }
