"""Offline, deterministic simulation of a graph against a parameter trajectory.

The simulator applies exactly the same selection rule as the runtime engine
(see ``conditions.select_transition``) on a fixed time grid, so a timeline is
a faithful preview of what the engine would do when ticked at ``step_ms``.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Mapping, Sequence, Union

import numpy as np
from pydantic import BaseModel, ConfigDict

from .conditions import select_transition
from .config import SimulationConfig
from .errors import GraphValidationError
from .graph import StateGraph, validate_graph
from .schema import DEFAULT_SIMULATION_STEP_MS, ParameterValue

_LOGGER = logging.getLogger("statescore.simulator")

Keyframes = Sequence[tuple[float, ParameterValue]]
TrajectoryValue = Union[ParameterValue, Keyframes]
Trajectory = Mapping[str, TrajectoryValue]


class TimelinePoint(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    time: float
    state_id: str
    parameters: dict[str, ParameterValue]


class FiredTransition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    time: float
    transition_id: str
    from_state: str
    to_state: str


class Timeline(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    graph_id: str
    step_ms: float
    points: tuple[TimelinePoint, ...]
    transitions: tuple[FiredTransition, ...]
    states_visited: tuple[str, ...]

    def state_at(self, time_ms: float) -> str:
        """State recorded at the last point at or before ``time_ms``."""

        current = self.points[0].state_id
        for point in self.points:
            if point.time > time_ms:
                break
            current = point.state_id
        return current

    def to_dict(self) -> dict[str, Any]:
        return {
            "graphId": self.graph_id,
            "stepMs": self.step_ms,
            "timeline": [
                {"time": p.time, "state": p.state_id, "parameters": p.parameters}
                for p in self.points
            ],
            "transitions": [
                {
                    "time": t.time,
                    "transitionId": t.transition_id,
                    "from": t.from_state,
                    "to": t.to_state,
                }
                for t in self.transitions
            ],
            "statesVisited": list(self.states_visited),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _is_keyframes(value: object) -> bool:
    return isinstance(value, (list, tuple)) and not isinstance(value, str)


def _normalize_keyframes(name: str, value: Keyframes) -> list[tuple[float, ParameterValue]]:
    frames: list[tuple[float, ParameterValue]] = []
    for frame in value:
        if not isinstance(frame, (list, tuple)) or len(frame) != 2:
            raise ValueError(f"Keyframe for {name!r} must be a (time_ms, value) pair, got {frame!r}")
        frames.append((float(frame[0]), frame[1]))
    if not frames:
        raise ValueError(f"Trajectory for {name!r} has no keyframes")
    frames.sort(key=lambda frame: frame[0])
    return frames


def _sample(
    frames: list[tuple[float, ParameterValue]],
    time_ms: float,
    *,
    interpolate: bool,
) -> ParameterValue | None:
    numeric = all(
        isinstance(value, (int, float)) and not isinstance(value, bool) for _, value in frames
    )
    if interpolate and numeric:
        times = np.array([frame[0] for frame in frames], dtype=float)
        if time_ms < times[0]:
            return None
        values = np.array([frame[1] for frame in frames], dtype=float)
        return float(np.interp(time_ms, times, values))
    held: ParameterValue | None = None
    for frame_time, value in frames:
        if frame_time > time_ms:
            break
        held = value
    return held


def simulate(
    graph: StateGraph,
    trajectory: Trajectory,
    total_duration_ms: float,
    step_ms: float = DEFAULT_SIMULATION_STEP_MS,
    *,
    interpolate: bool = False,
    config: SimulationConfig | None = None,
) -> Timeline:
    """Run the graph on a fixed grid ``0, step, 2*step, ..., total`` (inclusive).

    The first point records the initial state with default parameters and no
    evaluation. At each later step the trajectory is applied (clamped like
    the engine does), the selection rule runs, and the point is recorded.
    A trajectory value is either a constant or ``(time_ms, value)`` keyframes
    held until the next keyframe (or linearly interpolated when
    ``interpolate`` is set and every value is numeric).
    """

    config = config or SimulationConfig()
    if step_ms <= 0:
        raise ValueError("step_ms must be positive")
    if total_duration_ms < 0:
        raise ValueError("total_duration_ms must not be negative")
    steps = int(math.floor(total_duration_ms / step_ms))
    if steps + 1 > config.max_steps:
        raise ValueError(
            f"Simulation needs {steps + 1} steps, more than the configured maximum {config.max_steps}"
        )

    validate_graph(graph)
    initial = graph.initial_state()
    if initial is None:
        raise GraphValidationError(f"Graph {graph.id!r} has no states to simulate")

    constants: dict[str, ParameterValue] = {}
    keyframes: dict[str, list[tuple[float, ParameterValue]]] = {}
    for name, value in trajectory.items():
        if _is_keyframes(value):
            keyframes[name] = _normalize_keyframes(name, value)  # type: ignore[arg-type]
        else:
            constants[name] = value  # type: ignore[assignment]

    parameters = graph.default_parameter_values()
    current = initial.id
    elapsed = 0.0
    cooldowns: dict[str, float] = {}

    points = [TimelinePoint(time=0.0, state_id=current, parameters=dict(parameters))]
    fired_log: list[FiredTransition] = []
    visited = [current]

    def _apply(name: str, value: ParameterValue) -> None:
        declared = graph.get_parameter(name)
        if declared is None:
            return
        parameters[name] = declared.clamp(value)

    for index in range(1, steps + 1):
        time_ms = index * step_ms
        for name, value in constants.items():
            _apply(name, value)
        for name, frames in keyframes.items():
            sampled = _sample(frames, time_ms, interpolate=interpolate)
            if sampled is not None:
                _apply(name, sampled)

        elapsed += step_ms
        for transition_id in list(cooldowns):
            cooldowns[transition_id] -= step_ms
            if cooldowns[transition_id] <= 0:
                del cooldowns[transition_id]

        fired = select_transition(
            graph.transitions_from(current),
            parameters,
            elapsed,
            blocked=cooldowns.keys(),
        )
        if fired is not None:
            fired_log.append(
                FiredTransition(
                    time=time_ms,
                    transition_id=fired.id,
                    from_state=fired.from_state_id,
                    to_state=fired.to_state_id,
                )
            )
            current = fired.to_state_id
            elapsed = 0.0
            if fired.cooldown_ms:
                cooldowns[fired.id] = fired.cooldown_ms
            if current not in visited:
                visited.append(current)
        points.append(TimelinePoint(time=time_ms, state_id=current, parameters=dict(parameters)))

    _LOGGER.debug(
        "Simulated graph %s for %.0f ms: %d transition(s)",
        graph.id,
        total_duration_ms,
        len(fired_log),
    )
    return Timeline(
        graph_id=graph.id,
        step_ms=step_ms,
        points=tuple(points),
        transitions=tuple(fired_log),
        states_visited=tuple(visited),
    )
