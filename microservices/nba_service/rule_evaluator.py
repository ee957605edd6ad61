"""
Audience Rule Evaluator

Decides whether a customer satisfies an audience rule tree. Every
supported field is bound to a static value type; any operator that is
not defined for that type evaluates to False rather than raising.

All functions here are pure: they read the customer and the rule tree
and never mutate either, so they are safe to call concurrently.
"""

import math
import operator
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple, Union

from .models import (
    AudienceConfig,
    Condition,
    Customer,
    EligibilityVerdict,
    GroupOperator,
    RuleField,
    RuleGroup,
    RuleOperator,
    as_utc,
    utc_now,
)

# Eligibility reason codes
AUDIENCE_MATCH = "AUDIENCE_MATCH"
NO_AUDIENCE_MATCH = "NO_AUDIENCE_MATCH"
SUPPRESSED_RISK_FLAG = "SUPPRESSED_RISK_FLAG"
EXCLUDED_BY_RULE = "EXCLUDED_BY_RULE"


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    SET = "set"


FIELD_TYPES = {
    RuleField.PLAN: FieldType.STRING,
    RuleField.TENURE_MONTHS: FieldType.NUMBER,
    RuleField.PURCHASES_12MO: FieldType.NUMBER,
    RuleField.COMPLAINTS_12MO: FieldType.NUMBER,
    RuleField.RISK_FLAG: FieldType.BOOLEAN,
    RuleField.CONSENT_SMS: FieldType.BOOLEAN,
    RuleField.CONSENT_EMAIL: FieldType.BOOLEAN,
    RuleField.ABP_ENROLLED: FieldType.BOOLEAN,
    RuleField.CREDIT_CARD_EXP_AT: FieldType.DATE,
    RuleField.RISK_FLAGS: FieldType.SET,
}

RISK_FIELDS = {RuleField.RISK_FLAG, RuleField.RISK_FLAGS}

# Widest withinDays window (about a century); anything larger evaluates False
MAX_WITHIN_DAYS = 36500

_COMPARATORS = {
    RuleOperator.EQ: operator.eq,
    RuleOperator.NE: operator.ne,
    RuleOperator.GT: operator.gt,
    RuleOperator.GE: operator.ge,
    RuleOperator.LT: operator.lt,
    RuleOperator.LE: operator.le,
}

RuleNode = Union[Condition, RuleGroup]


def resolve_field(customer: Customer, field: RuleField) -> Any:
    """Customer value for a rule field, or None when nothing is on file"""
    return getattr(customer, field.value, None)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return None


def _same(left: Any, right: Any) -> bool:
    # bool is an int subclass; never let True match 1.
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _membership(field_value: Any, field_type: FieldType, value: Any) -> bool:
    candidates = value if isinstance(value, list) else [value]
    if field_type == FieldType.SET:
        return any(_same(item, c) for item in field_value for c in candidates)
    return any(_same(field_value, c) for c in candidates)


def evaluate_condition(
    customer: Customer,
    condition: Condition,
    now: Optional[datetime] = None,
) -> bool:
    """Evaluate a single condition against a customer"""
    field_value = resolve_field(customer, condition.field)
    field_type = FIELD_TYPES.get(condition.field)
    if field_value is None or field_type is None:
        return False

    op = condition.op
    value = condition.value

    if op == RuleOperator.IN:
        return _membership(field_value, field_type, value)

    if field_type == FieldType.STRING:
        if not isinstance(value, str) or op not in (RuleOperator.EQ, RuleOperator.NE):
            return False
        return _COMPARATORS[op](field_value, value)

    if field_type == FieldType.BOOLEAN:
        expected = _as_bool(value)
        if expected is None or op not in (RuleOperator.EQ, RuleOperator.NE):
            return False
        return _COMPARATORS[op](field_value, expected)

    if field_type == FieldType.NUMBER:
        expected = _as_number(value)
        comparator = _COMPARATORS.get(op)
        if expected is None or comparator is None:
            return False
        return comparator(float(field_value), expected)

    if field_type == FieldType.DATE:
        days = _as_number(value)
        if op != RuleOperator.WITHIN_DAYS or days is None or abs(days) > MAX_WITHIN_DAYS:
            return False
        cutoff = as_utc(now or utc_now()) + timedelta(days=days)
        return field_value <= cutoff

    if field_type == FieldType.SET:
        if op != RuleOperator.CONTAINS or isinstance(value, list):
            return False
        return any(_same(item, value) for item in field_value)

    return False


def evaluate(
    customer: Customer,
    expr: RuleNode,
    now: Optional[datetime] = None,
) -> bool:
    """Evaluate a rule tree; empty AND is true, empty OR is false"""
    if isinstance(expr, Condition):
        return evaluate_condition(customer, expr, now)

    results = (evaluate(customer, child, now) for child in expr.rules)
    if expr.op == GroupOperator.AND:
        return all(results)
    return any(results)


def count_conditions(expr: RuleNode) -> int:
    """Number of leaf conditions in a rule tree"""
    if isinstance(expr, Condition):
        return 1
    return sum(count_conditions(child) for child in expr.rules)


def check_eligibility(
    customer: Customer,
    audience: AudienceConfig,
    now: Optional[datetime] = None,
) -> EligibilityVerdict:
    """Inclusion tree first, then exclusions; any matching exclusion suppresses"""
    if not evaluate(customer, audience.rules, now):
        return EligibilityVerdict(eligible=False, reason_codes=[NO_AUDIENCE_MATCH])

    for exclusion in audience.exclusions:
        if evaluate_condition(customer, exclusion, now):
            code = SUPPRESSED_RISK_FLAG if exclusion.field in RISK_FIELDS else EXCLUDED_BY_RULE
            return EligibilityVerdict(eligible=False, reason_codes=[code])

    return EligibilityVerdict(eligible=True, reason_codes=[AUDIENCE_MATCH])


def size_audience(
    customers: Iterable[Customer],
    audience: AudienceConfig,
    sample_size: int = 20,
    now: Optional[datetime] = None,
) -> Tuple[int, List[str]]:
    """Scan every customer once; returns (matching count, first matching ids)"""
    size = 0
    sample: List[str] = []
    for customer in customers:
        if check_eligibility(customer, audience, now).eligible:
            size += 1
            if len(sample) < sample_size:
                sample.append(customer.customer_id)
    return size, sample


__all__ = [
    "AUDIENCE_MATCH",
    "NO_AUDIENCE_MATCH",
    "SUPPRESSED_RISK_FLAG",
    "EXCLUDED_BY_RULE",
    "FieldType",
    "FIELD_TYPES",
    "resolve_field",
    "evaluate_condition",
    "evaluate",
    "count_conditions",
    "check_eligibility",
    "size_audience",
]
