"""
Transition Conditions
=====================

Rule trees that gate workflow transitions, and the pure evaluator that scores
them against an entity context snapshot.

A rule is a tagged union discriminated by ``type``:

    {"type": "condition", "field": "data.severity", "operator": "equals", "value": "CRITICAL"}
    {"type": "group", "logic": "OR", "conditions": [...]}

The evaluator holds no state and performs no I/O.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from src.core import MalformedRuleException


OperatorStr = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "greater_or_equal",
    "less_than",
    "less_or_equal",
    "in",
    "not_in",
    "exists",
    "matches",
]
LogicStr = Literal["AND", "OR"]

MAX_PATH_DEPTH = 8


class Condition(BaseModel):
    """Leaf rule: compare the value at ``field`` with ``value``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["condition"] = "condition"
    field: str = Field(..., min_length=1, description="Dot-separated path into the context")
    operator: OperatorStr
    value: Any = None
    label: Optional[str] = None

    @model_validator(mode="after")
    def validate_operand(self) -> "Condition":
        """Reject operands the operator can never evaluate, wherever the leaf sits in the tree."""
        if self.operator in ("in", "not_in") and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValueError(f"Operator '{self.operator}' requires a list value, got {self.value!r}")
        if self.operator == "matches":
            if not isinstance(self.value, str):
                raise ValueError(f"Operator 'matches' requires a pattern string, got {self.value!r}")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression '{self.value}': {e}") from e
        return self

    @property
    def display_label(self) -> str:
        if self.label:
            return self.label
        return f"{self.field} {self.operator} {self.value!r}"


class ConditionGroup(BaseModel):
    """Combines child rules under AND (default) or OR."""

    model_config = ConfigDict(frozen=True)

    type: Literal["group"] = "group"
    logic: LogicStr = "AND"
    conditions: List["Rule"] = Field(default_factory=list)
    label: Optional[str] = None

    @property
    def display_label(self) -> str:
        if self.label:
            return self.label
        return f"{self.logic} of {len(self.conditions)} conditions"


Rule = Annotated[Union[Condition, ConditionGroup], Field(discriminator="type")]

ConditionGroup.model_rebuild()

_rule_adapter = TypeAdapter(Rule)


def parse_rule(raw: Any) -> Optional[Union[Condition, ConditionGroup]]:
    """
    Parse a raw mapping into a rule model.

    ``None`` and empty mappings mean "no gate".

    Raises:
        MalformedRuleException: If the mapping is not a valid rule
    """
    if raw is None:
        return None
    if isinstance(raw, (Condition, ConditionGroup)):
        return raw
    if isinstance(raw, Mapping) and not raw:
        return None
    try:
        return _rule_adapter.validate_python(raw)
    except ValidationError as e:
        raise MalformedRuleException(f"Invalid condition rule: {e}") from e


class _Missing:
    """Sentinel for a path that does not resolve."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def resolve_path(context: Optional[Mapping[str, Any]], path: str) -> Any:
    """
    Resolve a dot-separated path against a plain mapping.

    An exact key match wins; otherwise each segment is looked up in turn.
    Any missing segment (or a non-mapping intermediate) yields ``MISSING``.
    """
    if not context:
        return MISSING
    if path in context:
        return context[path]

    segments = path.split(".")
    if len(segments) > MAX_PATH_DEPTH:
        raise MalformedRuleException(
            f"Field path '{path}' exceeds maximum depth of {MAX_PATH_DEPTH}"
        )

    current: Any = context
    for segment in segments:
        if not isinstance(current, Mapping) or segment not in current:
            return MISSING
        current = current[segment]
    return current


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise MalformedRuleException(f"Invalid regular expression '{pattern}': {e}") from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _as_collection(value: Any, operator: str) -> Union[list, tuple, set, frozenset]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return value
    raise MalformedRuleException(f"Operator '{operator}' requires a list value, got {value!r}")


@dataclass(frozen=True)
class ConditionStatus:
    """Whether one displayed condition is met."""
    label: str
    met: bool


class ConditionEvaluator:
    """
    Pure functions for rule evaluation.

    Stateless utility class: every method is deterministic and total for
    well-formed rules. A malformed rule raises ``MalformedRuleException``
    rather than silently evaluating to false.
    """

    @staticmethod
    def evaluate(rule: Any, context: Optional[Mapping[str, Any]]) -> bool:
        """
        Evaluate a rule tree against a context snapshot.

        Args:
            rule: Rule model, raw mapping, or None (no gate)
            context: Flattened entity snapshot; None behaves as empty

        Returns:
            True if the rule passes
        """
        parsed = parse_rule(rule)
        if parsed is None:
            return True
        return ConditionEvaluator._evaluate_node(parsed, context or {})

    @staticmethod
    def explain(rule: Any, context: Optional[Mapping[str, Any]]) -> List[ConditionStatus]:
        """
        Report per-condition status for display.

        A top-level group reports each of its children; a single condition
        reports itself; no rule reports nothing.
        """
        parsed = parse_rule(rule)
        if parsed is None:
            return []

        context = context or {}
        if parsed.type == "group":
            return [
                ConditionStatus(
                    label=child.display_label,
                    met=ConditionEvaluator._evaluate_node(child, context)
                )
                for child in parsed.conditions
            ]
        return [
            ConditionStatus(
                label=parsed.display_label,
                met=ConditionEvaluator._evaluate_node(parsed, context)
            )
        ]

    @staticmethod
    def _evaluate_node(node: Union[Condition, ConditionGroup], context: Mapping[str, Any]) -> bool:
        if node.type == "group":
            results = (ConditionEvaluator._evaluate_node(child, context) for child in node.conditions)
            if node.logic == "OR":
                return any(results)
            return all(results)
        if node.type == "condition":
            actual = resolve_path(context, node.field)
            return ConditionEvaluator.compare(node.operator, actual, node.value)
        raise MalformedRuleException(f"Unknown rule type '{node.type}'")

    @staticmethod
    def compare(operator: str, actual: Any, expected: Any) -> bool:
        """
        Apply one operator.

        ``actual`` is ``MISSING`` when the path did not resolve; ``None`` and
        ``MISSING`` are both "does not exist".
        """
        absent = actual is MISSING or actual is None

        if operator == "exists":
            want_exists = True if expected is None else bool(expected)
            return (not absent) == want_exists

        if operator == "equals":
            return not absent and actual == expected
        if operator == "not_equals":
            return absent or actual != expected

        if operator in ("greater_than", "greater_or_equal", "less_than", "less_or_equal"):
            if absent or not _is_number(actual) or not _is_number(expected):
                return False
            if operator == "greater_than":
                return actual > expected
            if operator == "greater_or_equal":
                return actual >= expected
            if operator == "less_than":
                return actual < expected
            return actual <= expected

        if operator == "in":
            options = _as_collection(expected, operator)
            return not absent and actual in options
        if operator == "not_in":
            options = _as_collection(expected, operator)
            return absent or actual not in options

        if operator == "matches":
            if not isinstance(expected, str):
                raise MalformedRuleException(f"Operator 'matches' requires a pattern string, got {expected!r}")
            pattern = _compile(expected)
            if absent or not isinstance(actual, str):
                return False
            return pattern.search(actual) is not None

        raise MalformedRuleException(f"Unknown operator '{operator}'")
