"""
Module: validation_kernel.db.types
Responsibility: Tagged JSON column used to persist typed attribute
    snapshots and compiled rule conditions.
Architecture position: Kernel > DB.  May be imported by models/ and
    services/.  MUST NOT import from those layers.

Invariants enforced:
    - Attribute snapshots round-trip with their Python types intact.  Plain
      JSON would turn Decimal into float and date into str, which would
      change how rule conditions evaluate after a reload.
    - Amounts are never stored as float.

Failure modes:
    - TypeError from encode_value() for values that have no tagged form.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator


_DECIMAL_TAG = "__decimal__"
_DATE_TAG = "__date__"
_DATETIME_TAG = "__datetime__"


def encode_value(value: Any) -> Any:
    """
    Convert a Python value into its tagged JSON form.

    Decimal, date and datetime become single-key dicts; containers are
    encoded recursively; JSON scalars pass through.
    """
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        # Floats enter as exact decimals so comparisons stay exact.
        return {_DECIMAL_TAG: str(Decimal(str(value)))}
    if isinstance(value, Decimal):
        return {_DECIMAL_TAG: str(value)}
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    raise TypeError(
        f"Value of type {type(value).__name__} cannot be stored as a typed attribute"
    )


def decode_value(value: Any) -> Any:
    """Inverse of encode_value()."""
    if isinstance(value, dict):
        if len(value) == 1:
            (tag, raw), = value.items()
            if tag == _DECIMAL_TAG:
                return Decimal(raw)
            if tag == _DATETIME_TAG:
                return datetime.fromisoformat(raw)
            if tag == _DATE_TAG:
                return date.fromisoformat(raw)
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class TypedJSON(TypeDecorator):
    """
    JSON column that preserves Decimal, date and datetime values.

    Guarantees:
        - process_bind_param: tagged encoding via encode_value().
        - process_result_value: decoding via decode_value().
    """

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encode_value(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decode_value(value)
