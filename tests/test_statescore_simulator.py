from __future__ import annotations

import json

import pytest

from statescore.config import SimulationConfig
from statescore.errors import GraphValidationError
from statescore.graph import (
    StateGraph,
    add_parameter,
    add_state,
    add_transition,
    create_empty_graph,
    parameter_condition,
)
from statescore.presets import create_graph_from_preset
from statescore.simulator import simulate


def _explore_combat(*, cooldown_ms: float | None = None) -> StateGraph:
    graph = create_empty_graph("Game", graph_id="game")
    graph = add_state(graph, id="explore", name="Explore", is_initial=True)
    graph = add_state(graph, id="combat", name="Combat")
    graph = add_parameter(graph, name="threat", default_value=0, min=0, max=100)
    graph = add_transition(
        graph,
        id="to_combat",
        from_state_id="explore",
        to_state_id="combat",
        conditions=[parameter_condition(graph, "threat", ">", 50)],
        cooldown_ms=cooldown_ms,
    )
    return add_transition(
        graph,
        id="to_explore",
        from_state_id="combat",
        to_state_id="explore",
        conditions=[parameter_condition(graph, "threat", "<", 10)],
    )


def test_point_count_includes_both_endpoints() -> None:
    timeline = simulate(_explore_combat(), {}, 1000, 100)
    assert len(timeline.points) == 11
    assert [p.time for p in timeline.points][:3] == [0.0, 100.0, 200.0]
    assert timeline.points[-1].time == 1000


def test_constant_trajectory_switches_at_first_step() -> None:
    timeline = simulate(_explore_combat(), {"threat": 80}, 1000, 100)
    assert timeline.points[0].state_id == "explore"
    assert all(p.state_id == "combat" for p in timeline.points[1:])
    assert timeline.state_at(100) == "combat"
    assert timeline.states_visited == ("explore", "combat")
    assert [(t.time, t.transition_id) for t in timeline.transitions] == [(100.0, "to_combat")]


def test_first_point_uses_defaults() -> None:
    timeline = simulate(_explore_combat(), {"threat": 80}, 200, 100)
    assert timeline.points[0].parameters == {"threat": 0.0}
    assert timeline.points[1].parameters == {"threat": 80}


def test_values_are_clamped_and_undeclared_ignored() -> None:
    timeline = simulate(_explore_combat(), {"threat": 150, "ghost": 3}, 100, 100)
    assert timeline.points[-1].parameters == {"threat": 100}


def test_keyframes_are_held_until_next_frame() -> None:
    trajectory = {"threat": [(0, 0), (300, 80), (600, 5)]}
    timeline = simulate(_explore_combat(), trajectory, 1000, 100)
    states = [p.state_id for p in timeline.points]
    assert states[:3] == ["explore"] * 3
    assert states[3:6] == ["combat"] * 3
    assert states[6:] == ["explore"] * 5


def test_interpolated_keyframes() -> None:
    trajectory = {"threat": [(0, 0), (1000, 100)]}
    timeline = simulate(_explore_combat(), trajectory, 1000, 100, interpolate=True)
    assert timeline.points[3].parameters["threat"] == pytest.approx(30)
    assert timeline.transitions[0].time == 600


def test_cooldown_is_honoured() -> None:
    trajectory = {"threat": [(0, 80), (200, 0), (300, 80)]}
    timeline = simulate(_explore_combat(cooldown_ms=1000), trajectory, 1500, 100)
    fired = [(t.time, t.transition_id) for t in timeline.transitions]
    assert fired[:2] == [(100.0, "to_combat"), (200.0, "to_explore")]
    assert fired[2] == (1100.0, "to_combat")


def test_invalid_arguments() -> None:
    graph = _explore_combat()
    with pytest.raises(ValueError):
        simulate(graph, {}, 1000, 0)
    with pytest.raises(ValueError):
        simulate(graph, {}, -1, 100)
    with pytest.raises(ValueError):
        simulate(graph, {}, 10_000, 1, config=SimulationConfig(max_steps=100))
    with pytest.raises(GraphValidationError):
        simulate(create_empty_graph("Empty"), {}, 100, 100)


def test_timeline_json_shape() -> None:
    timeline = simulate(_explore_combat(), {"threat": 80}, 200, 100)
    data = json.loads(timeline.to_json())
    assert data["statesVisited"] == ["explore", "combat"]
    assert data["timeline"][1] == {"time": 100.0, "state": "combat", "parameters": {"threat": 80}}


def test_simulation_is_deterministic() -> None:
    graph = create_graph_from_preset("day_night_cycle")
    trajectory = {"time_of_day": [(0, 12), (1000, 18), (2000, 21), (3000, 3)]}
    first = simulate(graph, trajectory, 4000, 100)
    second = simulate(graph, trajectory, 4000, 100)
    assert first.to_json() == second.to_json()
    assert first.states_visited == ("day", "sunset", "night")
