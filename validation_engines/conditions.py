"""
validation_engines.conditions -- Rule condition compilation and evaluation.

Responsibility:
    Turn raw condition input into typed ``RuleCondition`` values (at rule
    save time) and evaluate a compiled condition against a request's
    attribute snapshot (at match time).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import validation_kernel/domain/ types and exceptions.

Invariants enforced:
    - Compilation rejects unknown fields, mismatched field types,
      operators not allowed for the field type, and values that do not
      parse as the field type.  All problems are reported together.
    - Evaluation never raises: a missing or mistyped attribute is simply
      "no match", including for negative operators.
    - Text comparisons are case-insensitive.

Failure modes:
    - InvalidRuleConfigurationError from ``compile_conditions``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from validation_kernel.domain.fields import (
    FIELD_CATALOG,
    as_date,
    as_number,
    read_field,
)
from validation_kernel.domain.rules import (
    OPERATORS_BY_FIELD_TYPE,
    ConditionOperator,
    ConditionSpec,
    FieldType,
    RuleCategory,
    RuleCondition,
    Scalar,
)
from validation_kernel.exceptions import InvalidRuleConfigurationError

_MULTI_VALUE_OPERATORS = frozenset({ConditionOperator.IN, ConditionOperator.NOT_IN})


class _ConditionError(ValueError):
    """Single compilation problem; collected into InvalidRuleConfigurationError."""


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def _parse_scalar(raw: Any, field_type: FieldType) -> Scalar:
    if field_type == FieldType.NUMBER:
        if isinstance(raw, str):
            try:
                value = Decimal(raw.strip())
            except InvalidOperation:
                raise _ConditionError(f"'{raw}' is not a number") from None
            if not value.is_finite():
                raise _ConditionError(f"'{raw}' is not a finite number")
            return value
        number = as_number(raw)
        if number is None:
            raise _ConditionError(f"{raw!r} is not a number")
        return number
    if field_type == FieldType.DATE:
        parsed = as_date(raw)
        if parsed is None:
            raise _ConditionError(f"{raw!r} is not an ISO date")
        return parsed
    if not isinstance(raw, str) or not raw.strip():
        raise _ConditionError(f"{raw!r} is not a non-empty text value")
    return raw


def _parse_value(
    raw: Any,
    field_type: FieldType,
    operator: ConditionOperator,
) -> Scalar | tuple[Scalar, ...]:
    if raw is None:
        raise _ConditionError("a value is required")

    if operator == ConditionOperator.BETWEEN:
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            raise _ConditionError("'between' needs exactly two bounds")
        low, high = (_parse_scalar(v, field_type) for v in raw)
        if low > high:
            raise _ConditionError(f"lower bound {low} is above upper bound {high}")
        return (low, high)

    if operator in _MULTI_VALUE_OPERATORS:
        if not isinstance(raw, (list, tuple)) or not raw:
            raise _ConditionError(f"'{operator.value}' needs a non-empty list")
        return tuple(_parse_scalar(v, field_type) for v in raw)

    if isinstance(raw, (list, tuple)):
        raise _ConditionError(f"'{operator.value}' takes a single value")
    return _parse_scalar(raw, field_type)


def compile_condition(
    spec: ConditionSpec,
    category: RuleCategory,
    *,
    rule_name: str = "condition",
    label: str | None = None,
) -> RuleCondition:
    """Compile one raw condition for a rule in ``category``.

    Raises:
        InvalidRuleConfigurationError: with a single error message.
    """
    return compile_conditions([spec], category, rule_name=rule_name, labels=[label])[0]


def compile_conditions(
    specs: Sequence[ConditionSpec],
    category: RuleCategory,
    rule_name: str,
    labels: Sequence[str | None] | None = None,
) -> tuple[RuleCondition, ...]:
    """Compile every condition of a rule, collecting all problems.

    A rule with zero conditions is rejected here: it could never match.

    Raises:
        InvalidRuleConfigurationError: listing every problem found.
    """
    errors: list[str] = []
    compiled: list[RuleCondition] = []
    catalog = FIELD_CATALOG[category]

    if not specs:
        errors.append("at least one condition is required")

    for index, spec in enumerate(specs, start=1):
        where = f"condition {index} ({spec.field})"
        field_spec = catalog.get(spec.field)
        if field_spec is None:
            errors.append(f"{where}: unknown field for category '{category.value}'")
            continue

        try:
            operator = ConditionOperator(spec.operator)
        except ValueError:
            errors.append(f"{where}: unknown operator '{spec.operator}'")
            continue

        if operator not in OPERATORS_BY_FIELD_TYPE[field_spec.field_type]:
            errors.append(
                f"{where}: operator '{operator.value}' is not allowed "
                f"for {field_spec.field_type.value} fields"
            )
            continue

        try:
            value = _parse_value(spec.value, field_spec.field_type, operator)
        except _ConditionError as exc:
            errors.append(f"{where}: {exc}")
            continue

        label = labels[index - 1] if labels and index <= len(labels) else None
        compiled.append(
            RuleCondition(
                field=spec.field,
                field_type=field_spec.field_type,
                operator=operator,
                value=value,
                label=label or field_spec.label,
            )
        )

    if errors:
        raise InvalidRuleConfigurationError(rule_name, errors)
    return tuple(compiled)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _fold(value: Scalar, field_type: FieldType) -> Scalar:
    if field_type == FieldType.TEXT:
        return value.casefold()  # type: ignore[union-attr]
    return value


def evaluate_condition(condition: RuleCondition, snapshot: dict[str, Any]) -> bool:
    """True when the request attribute satisfies the condition."""
    actual = read_field(snapshot, condition.field, condition.field_type)
    if actual is None:
        return False

    ftype = condition.field_type
    actual = _fold(actual, ftype)
    op = condition.operator

    if isinstance(condition.value, tuple):
        expected_many = tuple(_fold(v, ftype) for v in condition.value)
        if op == ConditionOperator.BETWEEN:
            low, high = expected_many
            return low <= actual <= high
        if op == ConditionOperator.IN:
            return actual in expected_many
        if op == ConditionOperator.NOT_IN:
            return actual not in expected_many
        return False

    expected = _fold(condition.value, ftype)

    if op == ConditionOperator.EQUALS:
        return actual == expected
    if op == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if op == ConditionOperator.GREATER_THAN:
        return actual > expected
    if op == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return actual >= expected
    if op == ConditionOperator.LESS_THAN:
        return actual < expected
    if op == ConditionOperator.LESS_THAN_OR_EQUAL:
        return actual <= expected
    if op == ConditionOperator.CONTAINS:
        return expected in actual
    if op == ConditionOperator.NOT_CONTAINS:
        return expected not in actual
    if op == ConditionOperator.STARTS_WITH:
        return actual.startswith(expected)
    return False


def conditions_match(conditions: Iterable[RuleCondition], snapshot: dict[str, Any]) -> bool:
    """AND of all conditions.  An empty set never matches."""
    matched_any = False
    for condition in conditions:
        if not evaluate_condition(condition, snapshot):
            return False
        matched_any = True
    return matched_any
