"""
Routing rule conditions, parsed once into a small AST.

A condition set maps a ticket field name to what it must match:
  "billing"                 -> Equals("billing")
  ["billing", "account"]    -> OneOf(...)
  {"gt": 3, "lte": 10}      -> Range(gt=3, lte=10)
  {"ne": "low"}             -> NotEquals("low")
Operator keys may carry a leading "$" ({"$gt": 3}). A dict mixing range keys
with "ne" yields two matchers on the same field.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from ticketai.errors import RuleConditionError

RANGE_OPS = ("gt", "gte", "lt", "lte")
SUPPORTED_OPS = RANGE_OPS + ("ne",)


@dataclass(frozen=True)
class Equals:
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual == self.value


@dataclass(frozen=True)
class OneOf:
    values: tuple

    def matches(self, actual: Any) -> bool:
        return any(actual == v for v in self.values)


@dataclass(frozen=True)
class NotEquals:
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual != self.value


@dataclass(frozen=True)
class Range:
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None

    def matches(self, actual: Any) -> bool:
        if actual is None:
            return False
        try:
            if self.gt is not None and not actual > self.gt:
                return False
            if self.gte is not None and not actual >= self.gte:
                return False
            if self.lt is not None and not actual < self.lt:
                return False
            if self.lte is not None and not actual <= self.lte:
                return False
        except TypeError:
            # e.g. comparing a string field against a number
            return False
        return True


Matcher = Union[Equals, OneOf, NotEquals, Range]


@dataclass(frozen=True)
class FieldCondition:
    field: str
    matcher: Matcher


def _parse_operator_dict(field: str, operators: dict) -> list[Matcher]:
    ops: dict[str, Any] = {}
    for raw_key, operand in operators.items():
        key = str(raw_key).lstrip("$")
        if key not in SUPPORTED_OPS:
            raise RuleConditionError(f"Unsupported operator {raw_key!r} for field {field!r}")
        if key in ops:
            raise RuleConditionError(f"Duplicate operator {key!r} for field {field!r}")
        if key in RANGE_OPS and (operand is None or isinstance(operand, (dict, list, bool))):
            raise RuleConditionError(f"Operator {raw_key!r} on {field!r} needs a scalar operand")
        ops[key] = operand
    if not ops:
        raise RuleConditionError(f"Empty operator set for field {field!r}")

    matchers: list[Matcher] = []
    range_ops = {k: v for k, v in ops.items() if k in RANGE_OPS}
    if range_ops:
        matchers.append(Range(**range_ops))
    if "ne" in ops:
        matchers.append(NotEquals(ops["ne"]))
    return matchers


def parse_conditions(conditions: Optional[dict]) -> Optional[tuple[FieldCondition, ...]]:
    """
    Parse a raw condition set. None stays None (a rule that never matches);
    an empty dict parses to an empty tuple (matches every ticket).
    Raises RuleConditionError on unsupported operators.
    """
    if conditions is None:
        return None
    if not isinstance(conditions, dict):
        raise RuleConditionError("Rule conditions must be a mapping of field -> matcher")
    parsed: list[FieldCondition] = []
    for field, expected in conditions.items():
        if isinstance(expected, (list, tuple)):
            parsed.append(FieldCondition(field, OneOf(tuple(expected))))
        elif isinstance(expected, dict):
            for m in _parse_operator_dict(field, expected):
                parsed.append(FieldCondition(field, m))
        else:
            parsed.append(FieldCondition(field, Equals(expected)))
    return tuple(parsed)


def evaluate(
    parsed: Optional[tuple[FieldCondition, ...]],
    lookup: Callable[[str], Any],
) -> bool:
    """True when every condition holds for the values returned by `lookup(field)`."""
    if parsed is None:
        return False
    return all(c.matcher.matches(lookup(c.field)) for c in parsed)
