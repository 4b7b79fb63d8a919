"""Variable resolution and step condition evaluation for workflow executions."""

from __future__ import annotations

import json
import operator
import re
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from orchestrion.core.models.workflow import ConditionType, StepStatus

if TYPE_CHECKING:
    from orchestrion.core.models.workflow import (
        StepCondition,
        WorkflowContext,
        WorkflowExecution,
        WorkflowStep,
    )

logger = structlog.get_logger(__name__)

_REFERENCE = re.compile(r"^\$\{([^{}]+)\}$")
_COMPARISON = re.compile(r"^(?P<left>.+?)\s*(?P<op>==|!=|>=|<=|>|<)\s*(?P<right>.+)$")

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


class ExpressionSyntaxError(ValueError):
    """Raised for expressions the evaluator cannot parse."""


# ============================================================================
# Variable resolution
# ============================================================================


def resolve_path(path: str, namespace: dict[str, Any]) -> Any:
    """
    Navigate ``namespace`` by dot-separated segments.

    Integer segments index into lists. Missing segments yield None.
    """
    current: Any = namespace
    for part in path.strip().split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def resolve_value(value: Any, namespace: dict[str, Any]) -> Any:
    """Replace ``${path}`` strings, recursing into dicts and lists."""
    if isinstance(value, str):
        match = _REFERENCE.match(value)
        return resolve_path(match.group(1), namespace) if match else value
    if isinstance(value, dict):
        return {key: resolve_value(item, namespace) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, namespace) for item in value]
    return value


def resolve_parameters(parameters: dict[str, Any], context: WorkflowContext) -> dict[str, Any]:
    """
    Resolve step parameters against an execution context.

    Example:
        >>> ctx = WorkflowContext(variables={"x": 1}, step_outputs={"s1": {"y": 2}})
        >>> resolve_parameters({"a": "${stepOutputs.s1.y}", "b": "${nope}"}, ctx)
        {'a': 2, 'b': None}
    """
    return resolve_value(parameters, context.as_namespace())


# ============================================================================
# Expressions
# ============================================================================


def _parse_operand(text: str, namespace: dict[str, Any]) -> Any:
    text = text.strip()
    match = _REFERENCE.match(text)
    if match:
        return resolve_path(match.group(1), namespace)
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        raise ExpressionSyntaxError(f"Cannot parse operand: {text!r}") from None


def evaluate_expression(expression: str, namespace: dict[str, Any]) -> bool:
    """
    Evaluate a condition expression.

    Supported forms are a single operand, tested for truthiness, and
    ``left OP right`` with OP one of ``== != > >= < <=``. Operands are
    ``${path}`` references or JSON literals (single-quoted strings are
    accepted too). Ordering comparisons between incompatible types are
    False.

    Raises:
        ExpressionSyntaxError: If the expression cannot be parsed
    """
    text = expression.strip()
    if not text:
        raise ExpressionSyntaxError("Empty expression")

    match = _COMPARISON.match(text)
    if match is None:
        return bool(_parse_operand(text, namespace))

    left = _parse_operand(match.group("left"), namespace)
    right = _parse_operand(match.group("right"), namespace)
    try:
        return bool(_OPERATORS[match.group("op")](left, right))
    except TypeError:
        return False


# ============================================================================
# Conditions
# ============================================================================


def _condition_met(
    condition: StepCondition,
    execution: WorkflowExecution,
    namespace: dict[str, Any],
) -> bool:
    if condition.type == ConditionType.ALWAYS:
        return True

    statuses = []
    for dep in condition.depends_on:
        dep_execution = execution.step(dep)
        statuses.append(dep_execution.status if dep_execution else None)

    if condition.type == ConditionType.ON_SUCCESS:
        return all(status == StepStatus.COMPLETED for status in statuses)

    if condition.type == ConditionType.ON_FAILURE:
        return any(status == StepStatus.FAILED for status in statuses)

    if condition.type == ConditionType.EXPRESSION:
        try:
            return evaluate_expression(condition.expression or "", namespace)
        except ExpressionSyntaxError as e:
            logger.warning(
                "Unparseable condition expression, treating as true",
                expression=condition.expression,
                error=str(e),
            )
            return True

    return False


def should_execute_step(step: WorkflowStep, execution: WorkflowExecution) -> bool:
    """
    Decide whether a step runs.

    The first condition decides. A step without conditions does not run.
    """
    namespace = execution.context.as_namespace()
    for condition in step.conditions:
        return _condition_met(condition, execution, namespace)
    return False
