# estimator/ledger.py
"""Rate-analysis ledger.

A rate analysis starts from a base unit rate and applies an ordered list of
entries.  Each entry is one of three variants:

* ``Addition``  - adds ``value * factor`` to the rate
* ``Deletion``  - subtracts ``value * factor``
* ``Tax``       - adds ``value * factor`` percent of the *base* rate

Entry amounts are always re-derived from the current base rate; the amount
stored alongside an entry is informational only.

The calculated rate is rounded to a 0.05 step with
``ceil((rate - 0.025) / 0.05) * 0.05``: a rate sitting exactly on the
x.x25 / x.x75 boundary goes down, anything above it goes up.  An optional
final-stage tax is applied once on top of the rounded rate and is not
rounded again.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import ClassVar

from estimator.errors import ValidationError

ROUNDING_STEP = Decimal('0.05')
ROUNDING_OFFSET = Decimal('0.025')


@dataclass(frozen=True)
class Entry:
    label: str
    value: float
    factor: float = 1.0

    kind: ClassVar[str] = ''

    @property
    def effective_value(self) -> float:
        return self.value * self.factor

    def amount(self, base_rate: float) -> float:
        raise NotImplementedError

    def to_dict(self, base_rate: float) -> dict:
        return {
            'label': self.label,
            'type': self.kind,
            'value': self.value,
            'factor': self.factor,
            'amount': self.amount(base_rate),
        }


@dataclass(frozen=True)
class Addition(Entry):
    kind: ClassVar[str] = 'Addition'

    def amount(self, base_rate: float) -> float:
        return self.effective_value


@dataclass(frozen=True)
class Deletion(Entry):
    kind: ClassVar[str] = 'Deletion'

    def amount(self, base_rate: float) -> float:
        return -self.effective_value


@dataclass(frozen=True)
class Tax(Entry):
    kind: ClassVar[str] = 'Tax'

    def amount(self, base_rate: float) -> float:
        return (base_rate * self.effective_value) / 100


ENTRY_TYPES = {cls.kind: cls for cls in (Addition, Deletion, Tax)}


@dataclass(frozen=True)
class LedgerResult:
    base_rate: float
    additions: float
    deletions: float
    taxes: float
    calculated_rate: float
    final_rate: float
    final_tax_percent: float | None = None
    final_tax_amount: float | None = None

    @property
    def total_rate(self) -> float:
        return self.final_rate + (self.final_tax_amount or 0.0)

    def to_dict(self) -> dict:
        return {
            'base_rate': self.base_rate,
            'total_additions': self.additions,
            'total_deletions': self.deletions,
            'total_taxes': self.taxes,
            'calculated_rate': self.calculated_rate,
            'final_rate': self.final_rate,
            'final_tax_percent': self.final_tax_percent,
            'final_tax_amount': self.final_tax_amount,
            'total_rate': self.total_rate,
        }


def _number(data: dict, key: str, default=None) -> float:
    raw = data.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'Entry {key} must be a number') from None


def make_entry(data: dict) -> Entry:
    """Build a typed entry from a request payload or stored JSON.

    Label and type are required; value and factor must be positive.
    """
    if isinstance(data, Entry):
        return data
    label = (data.get('label') or '').strip()
    kind = data.get('type')
    if not label:
        raise ValidationError('Entry label is required')
    if kind not in ENTRY_TYPES:
        raise ValidationError(f'Entry type must be one of {", ".join(ENTRY_TYPES)}')
    value = _number(data, 'value')
    factor = _number(data, 'factor', 1)
    if value <= 0:
        raise ValidationError('Entry value must be greater than zero')
    if factor <= 0:
        raise ValidationError('Entry factor must be greater than zero')
    return ENTRY_TYPES[kind](label=label, value=value, factor=factor)


def load_entries(raw: list | None) -> list[Entry]:
    return [make_entry(e) for e in (raw or [])]


def dump_entries(entries: list[Entry], base_rate: float) -> list[dict]:
    return [e.to_dict(base_rate) for e in entries]


def round_rate(calculated_rate: float) -> float:
    """Round to the 0.05 grid with the lower-bias boundary rule."""
    rate = Decimal(repr(round(calculated_rate, 10)))
    steps = ((rate - ROUNDING_OFFSET) / ROUNDING_STEP).to_integral_value(rounding=ROUND_CEILING)
    return float(steps * ROUNDING_STEP)


def final_tax_amount(final_rate: float, percent: float) -> float:
    return final_rate * percent / 100


def evaluate(base_rate: float, entries, final_tax_percent: float | None = None) -> LedgerResult:
    base_rate = float(base_rate or 0.0)
    additions = deletions = taxes = 0.0
    for entry in load_entries(entries):
        amount = entry.amount(base_rate)
        if isinstance(entry, Addition):
            additions += amount
        elif isinstance(entry, Deletion):
            deletions += abs(amount)
        elif isinstance(entry, Tax):
            taxes += amount

    calculated = base_rate + additions - deletions + taxes
    final = round_rate(calculated)

    tax_amount = None
    if final_tax_percent is not None:
        tax_amount = final_tax_amount(final, float(final_tax_percent))
    return LedgerResult(
        base_rate=base_rate,
        additions=additions,
        deletions=deletions,
        taxes=taxes,
        calculated_rate=calculated,
        final_rate=final,
        final_tax_percent=final_tax_percent,
        final_tax_amount=tax_amount,
    )


def resolve_base_rate(saved_base_rate=None, selected_rate=None, default=None) -> float:
    """Saved analysis base rate, then selected rate, then caller default, then 0."""
    for candidate in (saved_base_rate, selected_rate, default):
        if candidate is not None:
            return float(candidate)
    return 0.0


def insert_after(entries: list, index: int, entry) -> list:
    """Return a new list with ``entry`` placed after position ``index``.

    ``index`` of -1 inserts at the top.
    """
    entries = list(entries)
    if index < -1 or index >= len(entries):
        raise ValidationError(f'No entry at position {index}')
    entries.insert(index + 1, make_entry(entry))
    return entries


def replace_at(entries: list, index: int, entry) -> list:
    entries = list(entries)
    if index < 0 or index >= len(entries):
        raise ValidationError(f'No entry at position {index}')
    entries[index] = make_entry(entry)
    return entries


def remove_at(entries: list, index: int) -> list:
    entries = list(entries)
    if index < 0 or index >= len(entries):
        raise ValidationError(f'No entry at position {index}')
    del entries[index]
    return entries
