# estimator/quantities.py
"""Measurement-to-quantity arithmetic.

Pure helpers shared by the measurement and item routes.  Inputs are plain
mappings or model instances: anything exposing the measurement attributes
works, which keeps these functions usable from tests without a database.
"""

from __future__ import annotations

OPERATION_TYPES = ('none', 'multiply', 'divide', 'add', 'subtract')


def _get(row, name, default=None):
    if isinstance(row, dict):
        value = row.get(name, default)
    else:
        value = getattr(row, name, default)
    return default if value is None else value


def compute_quantity(row) -> float:
    """Return the raw (unsigned) quantity for one measurement row.

    A manual quantity replaces the dimensional product entirely.  Missing
    dimensions count as zero, so an incomplete row yields 0 rather than an
    error.  Negative dimensions are not rejected.
    """
    if _get(row, 'is_manual_quantity', False):
        return float(_get(row, 'manual_quantity', 0.0))

    factor = _get(row, 'factor', 1.0) or 1.0
    return (
        float(factor)
        * float(_get(row, 'no_of_units', 0.0))
        * float(_get(row, 'length', 0.0))
        * float(_get(row, 'width', 0.0))
        * float(_get(row, 'height', 0.0))
    )


def line_amount(quantity: float, rate: float, is_deduction: bool = False) -> float:
    amount = quantity * (rate or 0.0)
    return -amount if is_deduction else amount


def resolve_effective_rate(rate_id, rates, default_rate: float | None) -> float:
    """Rate the row references, else the item's default rate."""
    if rate_id is not None:
        for r in rates:
            if _get(r, 'id') == rate_id:
                return float(_get(r, 'rate', 0.0))
    return float(default_rate or 0.0)


def signed_quantity(row) -> float:
    qty = float(_get(row, 'calculated_quantity', 0.0))
    return -abs(qty) if _get(row, 'is_deduction', False) else qty


def signed_total(rows) -> float:
    return sum(signed_quantity(r) for r in rows)


def apply_operation(total: float, operation_type: str | None, value: float | None) -> float:
    value = value or 0.0
    if operation_type == 'multiply':
        return total * value
    if operation_type == 'divide':
        # dividing by zero leaves the total unchanged
        return total / value if value != 0 else total
    if operation_type == 'add':
        return total + value
    if operation_type == 'subtract':
        return total - value
    return total


def apply_unit_conversion(quantity: float, factor: float | None) -> float:
    """Divide by the conversion factor (e.g. 1000 to turn kg into MT)."""
    factor = factor or 1.0
    if factor != 1:
        return quantity / factor
    return quantity


def aggregate_item(rows, operation_type='none', operation_value=0.0,
                   unit_conversion_factor=1.0) -> float:
    """Signed row total -> item operation -> unit conversion."""
    total = signed_total(rows)
    total = apply_operation(total, operation_type, operation_value)
    return apply_unit_conversion(total, unit_conversion_factor)


def price_rates(rates, final_quantity: float) -> list[tuple]:
    """Return ``(rate, quantity, amount)`` for every rate at ``final_quantity``."""
    priced = []
    for r in rates:
        value = float(_get(r, 'rate', 0.0))
        priced.append((r, final_quantity, value * final_quantity))
    return priced


# Royalty and testing statements

def royalty_quantities(measurement, metal_factor, murum_factor, sand_factor) -> dict:
    """Material quantities for a royalty item: ``measurement`` times each factor."""
    measurement = measurement or 0.0
    hb_metal = measurement * (metal_factor or 0.0)
    murum = measurement * (murum_factor or 0.0)
    sand = measurement * (sand_factor or 0.0)
    return {
        'hb_metal': hb_metal,
        'murum': murum,
        'sand': sand,
        'total': hb_metal + murum + sand,
    }


def royalty_factors(entries) -> dict:
    """Material factors read off rate-analysis entry labels.

    An entry whose label mentions metal, murum (or murrum) or sand supplies
    that material's factor; a later entry overrides an earlier one.
    """
    factors = {'metal_factor': 0.0, 'murum_factor': 0.0, 'sand_factor': 0.0}
    for e in entries or []:
        label = str(_get(e, 'label', '')).lower()
        factor = float(_get(e, 'factor', 0.0))
        if 'metal' in label:
            factors['metal_factor'] = factor
        if 'murum' in label or 'murrum' in label:
            factors['murum_factor'] = factor
        if 'sand' in label:
            factors['sand_factor'] = factor
    return factors


def testing_total(quantity, required_tests) -> float:
    return (quantity or 0.0) * (required_tests or 0)
