"""Stateless condition evaluation and the shared transition-selection rule.

Evaluation never raises: unknown parameters, mismatched value types and NaN
all make a condition false. Callers that want to know *why* a condition was
false can pass a ``diagnostics`` callback.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Collection, Iterable, Literal, Mapping

from .graph import (
    BooleanValue,
    NumberValue,
    ParameterCondition,
    StateDurationCondition,
    StateGraph,
    StateTransition,
    StringValue,
    TransitionCondition,
)
from .schema import ComparisonOperator, ParameterValue

_LOGGER = logging.getLogger("statescore.conditions")

DiagnosticKind = Literal["unknown_parameter", "type_mismatch", "nan_comparison"]


@dataclass(frozen=True, slots=True)
class ConditionDiagnostic:
    kind: DiagnosticKind
    parameter_name: str
    message: str


Diagnostics = Callable[[ConditionDiagnostic], None]


def _report(
    diagnostics: Diagnostics | None,
    kind: DiagnosticKind,
    parameter_name: str,
    message: str,
) -> None:
    _LOGGER.debug("Condition on %s is false: %s", parameter_name, message)
    if diagnostics is not None:
        diagnostics(ConditionDiagnostic(kind=kind, parameter_name=parameter_name, message=message))


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare_numbers(left: float, operator: ComparisonOperator, right: float) -> bool:
    match operator:
        case ">":
            return left > right
        case "<":
            return left < right
        case ">=":
            return left >= right
        case "<=":
            return left <= right
        case "==":
            return left == right
    return False


def _evaluate_parameter(
    condition: ParameterCondition,
    snapshot: Mapping[str, ParameterValue],
    diagnostics: Diagnostics | None,
) -> bool:
    name = condition.parameter_name
    if name not in snapshot:
        _report(diagnostics, "unknown_parameter", name, "parameter has no value")
        return False
    live = snapshot[name]
    expected = condition.value

    match expected:
        case NumberValue(value=threshold):
            if not _is_number(live):
                _report(diagnostics, "type_mismatch", name, f"expected a number, got {live!r}")
                return False
            left = float(live)  # type: ignore[arg-type]
            if math.isnan(left) or math.isnan(threshold):
                _report(diagnostics, "nan_comparison", name, "NaN never compares")
                return False
            return _compare_numbers(left, condition.operator, threshold)
        case BooleanValue(value=flag):
            if not isinstance(live, bool):
                _report(diagnostics, "type_mismatch", name, f"expected a boolean, got {live!r}")
                return False
            return condition.operator == "==" and live is flag
        case StringValue(value=text):
            if not isinstance(live, str):
                _report(diagnostics, "type_mismatch", name, f"expected a string, got {live!r}")
                return False
            return condition.operator == "==" and live == text
    return False


def evaluate(
    condition: TransitionCondition,
    snapshot: Mapping[str, ParameterValue],
    state_elapsed_ms: float,
    *,
    diagnostics: Diagnostics | None = None,
) -> bool:
    """Evaluate one condition against a parameter snapshot."""

    if isinstance(condition, StateDurationCondition):
        return state_elapsed_ms >= condition.threshold_ms
    return _evaluate_parameter(condition, snapshot, diagnostics)


def evaluate_transition(
    transition: StateTransition,
    snapshot: Mapping[str, ParameterValue],
    state_elapsed_ms: float,
    *,
    diagnostics: Diagnostics | None = None,
) -> bool:
    """Combine a transition's conditions.

    AND over zero conditions is true (the transition is unconditional);
    OR over zero conditions is false.
    """

    results = (
        evaluate(condition, snapshot, state_elapsed_ms, diagnostics=diagnostics)
        for condition in transition.conditions
    )
    if transition.condition_logic == "AND":
        return all(results)
    return any(results)


def _selection_key(transition: StateTransition) -> tuple[int, str]:
    return (-transition.priority, transition.id)


def select_transition(
    candidates: Iterable[StateTransition],
    snapshot: Mapping[str, ParameterValue],
    state_elapsed_ms: float,
    *,
    blocked: Collection[str] = frozenset(),
    diagnostics: Diagnostics | None = None,
) -> StateTransition | None:
    """Pick the transition to fire: highest priority first, then lowest id."""

    for transition in sorted(candidates, key=_selection_key):
        if transition.id in blocked:
            continue
        if evaluate_transition(transition, snapshot, state_elapsed_ms, diagnostics=diagnostics):
            return transition
    return None


def outgoing_transitions(graph: StateGraph, state_id: str) -> tuple[StateTransition, ...]:
    return graph.transitions_from(state_id)
