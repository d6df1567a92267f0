# estimator/rate_analysis/utils.py

"""Persistence side of the rate-analysis ledger."""

import logging

from estimator import db
from estimator.errors import ValidationError
from estimator.models import ItemRate, RateAnalysis
from estimator import ledger
from estimator.works.utils import recompute_item

_UNSET = object()


def find_rate(item, rate_id):
    if rate_id in (None, ''):
        return None
    try:
        rate_id = int(rate_id)
    except (TypeError, ValueError):
        raise ValidationError('rate_id must be an integer') from None
    return ItemRate.query.filter_by(id=rate_id, item_id=item.id).first_or_404()


def find_analysis(item, rate):
    return RateAnalysis.query.filter_by(
        item_id=item.id, rate_id=rate.id if rate else None
    ).first()


def base_rate_for(item, rate, analysis, default=None) -> float:
    return ledger.resolve_base_rate(
        analysis.base_rate if analysis else None,
        rate.rate if rate else None,
        default if default is not None else item.default_rate,
    )


def analysis_view(item, rate, analysis, default=None) -> dict:
    """Current analysis with every entry amount re-derived from the base rate."""
    base = base_rate_for(item, rate, analysis, default)
    entries = ledger.load_entries(analysis.entries if analysis else [])
    tax_pct = analysis.final_tax_percent if analysis else None
    result = ledger.evaluate(base, entries, tax_pct)
    out = result.to_dict()
    out.update({
        'item_id': item.id,
        'rate_id': rate.id if rate else None,
        'saved'  : analysis is not None,
        'entries': ledger.dump_entries(entries, base),
    })
    return out


def evaluate_rate_analysis(item, rate=None, entries=_UNSET, final_tax_percent=_UNSET,
                           base_rate=None, created_by=None):
    """Evaluate and persist the analysis for ``(item, rate)``.

    The resulting rate (``total_rate`` when a final tax is applied) becomes
    the rate's active value and the item is re-priced.  Omitted arguments keep
    what is already stored.  The caller owns the commit.
    """
    analysis = find_analysis(item, rate)
    if analysis is None:
        analysis = RateAnalysis(item_id=item.id, rate_id=rate.id if rate else None, entries=[])
        db.session.add(analysis)

    if base_rate is not None:
        analysis.base_rate = float(base_rate)
    elif analysis.base_rate is None:
        # snapshot the rate as it stands before the analysis is applied
        analysis.base_rate = base_rate_for(item, rate, None)

    typed = ledger.load_entries(analysis.entries if entries is _UNSET else entries)
    if final_tax_percent is not _UNSET:
        analysis.final_tax_percent = None if final_tax_percent in (None, '') else float(final_tax_percent)

    result = ledger.evaluate(analysis.base_rate, typed, analysis.final_tax_percent)

    analysis.entries = ledger.dump_entries(typed, result.base_rate)
    analysis.total_additions = result.additions
    analysis.total_deletions = result.deletions
    analysis.total_taxes = result.taxes
    analysis.calculated_rate = result.calculated_rate
    analysis.final_rate = result.final_rate
    analysis.final_tax_amount = result.final_tax_amount
    analysis.total_rate = result.total_rate
    if created_by:
        analysis.created_by = created_by

    if rate is not None:
        rate.rate = result.total_rate
        if item.rates and item.rates[0].id == rate.id:
            item.default_rate = rate.rate
    else:
        item.default_rate = result.total_rate

    recompute_item(item)
    logging.info("rate analysis saved item=%s rate=%s final_rate=%s total_rate=%s",
                 item.id, rate.id if rate else None, result.final_rate, result.total_rate)
    return result, analysis


def stored_entries(item, rate) -> list:
    analysis = find_analysis(item, rate)
    return ledger.load_entries(analysis.entries if analysis else [])
