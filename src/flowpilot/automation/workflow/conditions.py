"""Condition evaluation against a trigger context.

Clauses are pure: a missing path or a type mismatch makes the clause false,
never raises.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Final

from .models import ConditionClause, ConditionLogic, ConditionOperator, LogicType


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Resolve ``order.total`` style paths; returns MISSING when absent."""

    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, str | bytes):
            if not part.isdigit() or int(part) >= len(current):
                return MISSING
            current = current[int(part)]
        else:
            return MISSING
    return current


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _strict_equals(left: object, right: object) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False


def evaluate_clause(clause: ConditionClause, context: Mapping[str, Any]) -> bool:
    left = resolve_path(context, clause.left)
    right = clause.right

    if clause.op is ConditionOperator.EQUALS:
        return _strict_equals(left, right)
    if clause.op is ConditionOperator.CONTAINS:
        return isinstance(left, str) and isinstance(right, str) and right in left
    if clause.op is ConditionOperator.GREATER_THAN:
        return _is_number(left) and _is_number(right) and left > right  # type: ignore[operator]
    if clause.op is ConditionOperator.LESS_THAN:
        return _is_number(left) and _is_number(right) and left < right  # type: ignore[operator]
    return False


def evaluate_condition(logic: ConditionLogic, context: Mapping[str, Any]) -> bool:
    results = (evaluate_clause(clause, context) for clause in logic.clauses)
    if logic.type is LogicType.AND:
        return all(results)
    return any(results)
