"""Workflow definition validation."""

from __future__ import annotations

from collections import Counter, deque
from typing import TYPE_CHECKING

import structlog

from orchestrion.core.models.workflow import (
    ConditionType,
    IssueType,
    ValidationIssue,
    ValidationResult,
    Workflow,
    WorkflowStep,
)

if TYPE_CHECKING:
    from orchestrion.core.interfaces.storage import IPersistence

logger = structlog.get_logger(__name__)


def build_dependency_graph(steps: list[WorkflowStep]) -> dict[str, list[str]]:
    """Map each step id to the ids it depends on (unknown ids are dropped)."""
    known = {step.id for step in steps}
    return {step.id: [dep for dep in step.dependencies if dep in known] for step in steps}


def find_cycles(graph: dict[str, list[str]]) -> list[list[str]]:
    """
    Find dependency cycles by depth-first search with a recursion stack.

    Each cycle is returned as a closed path, e.g. ``["a", "b", "a"]``.
    """
    cycles: list[list[str]] = []
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    def visit(node: str) -> None:
        visited.add(node)
        on_stack.add(node)
        path.append(node)
        for dep in graph.get(node, []):
            if dep in on_stack:
                idx = path.index(dep)
                cycles.append(path[idx:] + [dep])
            elif dep not in visited:
                visit(dep)
        path.pop()
        on_stack.discard(node)

    for node in graph:
        if node not in visited:
            visit(node)
    return cycles


def find_reachable(steps: list[WorkflowStep], graph: dict[str, list[str]]) -> set[str]:
    """
    Breadth-first search from steps without dependencies.

    When every step has a dependency the search starts at the first step
    in execution order.
    """
    if not steps:
        return set()

    dependents: dict[str, list[str]] = {step.id: [] for step in steps}
    for step_id, deps in graph.items():
        for dep in deps:
            dependents[dep].append(step_id)

    roots = [step.id for step in steps if not graph.get(step.id)]
    if not roots:
        roots = [min(steps, key=lambda s: s.step_order).id]

    reachable = set(roots)
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        for nxt in dependents[current]:
            if nxt not in reachable:
                reachable.add(nxt)
                queue.append(nxt)
    return reachable


class WorkflowValidator:
    """Checks a workflow definition against the targets known to the store."""

    def __init__(self, store: IPersistence) -> None:
        self._store = store

    async def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a workflow definition.

        Never raises: an unexpected failure is reported as a single
        ``invalid_parameters`` error.
        """
        try:
            return await self._validate(workflow)
        except Exception as e:
            logger.exception("Workflow validation failed", workflow_id=workflow.id)
            return ValidationResult(
                errors=[
                    ValidationIssue(
                        type=IssueType.INVALID_PARAMETERS,
                        message=f"Validation failed: {e}",
                    )
                ]
            )

    async def _validate(self, workflow: Workflow) -> ValidationResult:
        result = ValidationResult()
        steps = workflow.ordered_steps
        names = {step.id: step.name for step in steps}

        await self._check_targets(steps, result)
        self._check_conditions(steps, names, result)

        graph = build_dependency_graph(steps)
        for cycle in find_cycles(graph):
            result.errors.append(
                ValidationIssue(
                    type=IssueType.CIRCULAR_DEPENDENCY,
                    message="Circular dependency: " + " -> ".join(names[s] for s in cycle),
                    step_id=cycle[0],
                )
            )

        reachable = find_reachable(steps, graph)
        for step in steps:
            if step.id not in reachable:
                result.warnings.append(
                    ValidationIssue(
                        type=IssueType.UNREACHABLE_STEP,
                        message=f"Step '{step.name}' is not reachable",
                        step_id=step.id,
                    )
                )

        orders = Counter(step.step_order for step in steps)
        for order, count in sorted(orders.items()):
            if count > 1:
                result.warnings.append(
                    ValidationIssue(
                        type=IssueType.PERFORMANCE,
                        message=(
                            f"{count} steps share step_order {order}; "
                            "they run in declaration order"
                        ),
                    )
                )

        logger.debug(
            "Workflow validated",
            workflow_id=workflow.id,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    async def _check_targets(self, steps: list[WorkflowStep], result: ValidationResult) -> None:
        for step in steps:
            target = await self._store.get_target(step.target_id)
            if target is None:
                result.errors.append(
                    ValidationIssue(
                        type=IssueType.MISSING_AGENT,
                        message=f"Step '{step.name}' references unknown target {step.target_id}",
                        step_id=step.id,
                    )
                )
            elif not target.is_active:
                result.warnings.append(
                    ValidationIssue(
                        type=IssueType.MISSING_DEPENDENCY,
                        message=(
                            f"Step '{step.name}' target {step.target_id} "
                            f"is {target.status.value}"
                        ),
                        step_id=step.id,
                    )
                )

    @staticmethod
    def _check_conditions(
        steps: list[WorkflowStep],
        names: dict[str, str],
        result: ValidationResult,
    ) -> None:
        for step in steps:
            for condition in step.conditions:
                if condition.type == ConditionType.EXPRESSION and not condition.expression:
                    result.errors.append(
                        ValidationIssue(
                            type=IssueType.INVALID_CONDITION,
                            message=f"Step '{step.name}' has an expression condition without expression",
                            step_id=step.id,
                        )
                    )
                for dep in condition.depends_on:
                    if dep not in names:
                        result.errors.append(
                            ValidationIssue(
                                type=IssueType.INVALID_CONDITION,
                                message=f"Step '{step.name}' depends on unknown step {dep}",
                                step_id=step.id,
                            )
                        )
