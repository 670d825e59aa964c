"""
Field catalog and typed attribute access (``validation_kernel.domain.fields``).

Responsibility
--------------
Declares, per rule category, the closed set of request attributes a rule
condition may reference and the type each one has.  ``read_field`` is the
only way rule evaluation reads a request attribute: it returns a value of
the declared type, or None when the attribute is absent or has the wrong
runtime type.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* Unknown fields are rejected when a rule is saved, never at match time.
* Strings are never coerced into numbers; ``bool`` is never a number.
* A missing or mistyped attribute makes a condition not match.  It never
  raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from validation_kernel.domain.rules import FieldType, RuleCategory, Scalar


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    field_type: FieldType


def _specs(*rows: tuple[str, str, FieldType]) -> dict[str, FieldSpec]:
    return {name: FieldSpec(name, label, ftype) for name, label, ftype in rows}


# Fields every request carries, available to every category.
COMMON_FIELDS: dict[str, FieldSpec] = _specs(
    ("amount", "Amount", FieldType.NUMBER),
    ("priority", "Priority", FieldType.TEXT),
    ("requester_id", "Requester", FieldType.TEXT),
    ("reason", "Reason", FieldType.TEXT),
    ("workspace_id", "Workspace", FieldType.TEXT),
    ("requested_on", "Request date", FieldType.DATE),
)

_CATEGORY_FIELDS: dict[RuleCategory, dict[str, FieldSpec]] = {
    RuleCategory.EXPENSE: _specs(
        ("expense_category", "Expense category", FieldType.TEXT),
        ("supplier_name", "Supplier", FieldType.TEXT),
        ("expense_date", "Expense date", FieldType.DATE),
        ("receipt_count", "Receipts attached", FieldType.NUMBER),
    ),
    RuleCategory.PURCHASE_ORDER: _specs(
        ("supplier_id", "Supplier", FieldType.TEXT),
        ("supplier_name", "Supplier name", FieldType.TEXT),
        ("item_count", "Line items", FieldType.NUMBER),
        ("delivery_date", "Delivery date", FieldType.DATE),
    ),
    RuleCategory.PRODUCTION_ORDER: _specs(
        ("product_id", "Product", FieldType.TEXT),
        ("quantity", "Quantity", FieldType.NUMBER),
        ("planned_start", "Planned start", FieldType.DATE),
    ),
    RuleCategory.ADVANCE: _specs(
        ("employee_id", "Employee", FieldType.TEXT),
        ("outstanding_balance", "Outstanding balance", FieldType.NUMBER),
        ("repayment_months", "Repayment months", FieldType.NUMBER),
    ),
    RuleCategory.DEBT: _specs(
        ("party_id", "Counterparty", FieldType.TEXT),
        ("outstanding_balance", "Outstanding balance", FieldType.NUMBER),
        ("due_date", "Due date", FieldType.DATE),
    ),
    RuleCategory.LEAVE: _specs(
        ("employee_id", "Employee", FieldType.TEXT),
        ("leave_type", "Leave type", FieldType.TEXT),
        ("start_date", "Start date", FieldType.DATE),
    ),
    RuleCategory.TRANSFER: _specs(
        ("source_location", "From", FieldType.TEXT),
        ("destination_location", "To", FieldType.TEXT),
        ("item_count", "Line items", FieldType.NUMBER),
    ),
    RuleCategory.PRICE_ADJUSTMENT: _specs(
        ("product_id", "Product", FieldType.TEXT),
        ("current_price", "Current price", FieldType.NUMBER),
    ),
    RuleCategory.CREDIT_APPROVAL: _specs(
        ("customer_id", "Customer", FieldType.TEXT),
        ("customer_tier", "Customer tier", FieldType.TEXT),
        ("overdue_amount", "Overdue amount", FieldType.NUMBER),
    ),
    RuleCategory.GENERIC: {},
}

FIELD_CATALOG: dict[RuleCategory, dict[str, FieldSpec]] = {
    category: {**COMMON_FIELDS, **extra}
    for category, extra in _CATEGORY_FIELDS.items()
}


def field_spec(category: RuleCategory, name: str) -> FieldSpec | None:
    """Look up a field in a category's catalog."""
    return FIELD_CATALOG[category].get(name)


# ---------------------------------------------------------------------------
# Typed coercion
# ---------------------------------------------------------------------------


def as_number(value: Any) -> Decimal | None:
    """Exact Decimal for int/float/Decimal values; None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def as_text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def as_date(value: Any) -> date | None:
    """date for date/datetime values and ISO date strings.

    ISO strings are accepted because JSON payloads cannot carry dates.
    The whole string must parse, as a date or as a timestamp.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            return None
    return None


_COERCERS = {
    FieldType.NUMBER: as_number,
    FieldType.TEXT: as_text,
    FieldType.DATE: as_date,
}


def coerce(value: Any, field_type: FieldType) -> Scalar | None:
    """Coerce a value to the declared field type, or None."""
    return _COERCERS[field_type](value)


def read_field(snapshot: dict[str, Any], name: str, field_type: FieldType) -> Scalar | None:
    """Read an attribute from a request snapshot with its declared type."""
    if name not in snapshot:
        return None
    return coerce(snapshot[name], field_type)
