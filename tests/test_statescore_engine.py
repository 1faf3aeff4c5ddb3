from __future__ import annotations

import time

import pytest

from statescore.config import EngineConfig
from statescore.engine import (
    ParameterInbox,
    RecordingSink,
    RuntimeEngine,
    StateEnteredEvent,
    TransitionEvent,
)
from statescore.errors import EngineError
from statescore.graph import (
    StateGraph,
    add_parameter,
    add_state,
    add_transition,
    create_empty_graph,
    duration_condition,
    parameter_condition,
)
from statescore.mapping import create_mapping
from statescore.presets import create_graph_from_preset
from statescore.simulator import simulate


def _explore_combat(*, cooldown_ms: float | None = None) -> StateGraph:
    graph = create_empty_graph("Game", graph_id="game")
    graph = add_state(graph, id="explore", name="Explore", is_initial=True)
    graph = add_state(graph, id="combat", name="Combat")
    graph = add_parameter(graph, name="threat", default_value=0, min=0, max=100)
    graph = add_parameter(graph, name="alarm", type="boolean", default_value=False)
    graph = add_transition(
        graph,
        id="to_combat",
        from_state_id="explore",
        to_state_id="combat",
        conditions=[parameter_condition(graph, "threat", ">", 50)],
        cooldown_ms=cooldown_ms,
        on_start_event="combat_start",
    )
    return add_transition(
        graph,
        id="to_explore",
        from_state_id="combat",
        to_state_id="explore",
        conditions=[parameter_condition(graph, "threat", "<", 10)],
    )


def test_engine_rejects_graph_without_states() -> None:
    with pytest.raises(EngineError):
        RuntimeEngine(create_empty_graph("Empty"))


def test_engine_starts_in_initial_state() -> None:
    engine = RuntimeEngine(_explore_combat())
    assert engine.status == "idle"
    assert engine.current_state_id == "explore"
    assert engine.parameters == {"threat": 0.0, "alarm": False}


def test_transition_fires_and_notifies_sink() -> None:
    sink = RecordingSink()
    engine = RuntimeEngine(_explore_combat(), sink=sink)
    engine.set_parameter("threat", 80)
    fired = engine.tick(now_ms=0)
    assert fired is not None and fired.id == "to_combat"
    assert engine.current_state_id == "combat"
    assert [type(event) for event in sink.events] == [TransitionEvent, StateEnteredEvent]
    event = sink.transitions[0]
    assert (event.from_state, event.to_state, event.start_event) == ("explore", "combat", "combat_start")
    assert sink.entered[0].state_name == "Combat"
    with pytest.raises(TypeError):
        sink.entered[0].audio_config.layer_volumes["drums"] = 7.0  # type: ignore[index]
    assert engine.status == "idle"


def test_no_transition_when_conditions_false() -> None:
    engine = RuntimeEngine(_explore_combat())
    engine.set_parameter("threat", 20)
    assert engine.tick(now_ms=0) is None
    assert engine.current_state_id == "explore"


def test_set_parameter_clamps_to_declared_range() -> None:
    engine = RuntimeEngine(_explore_combat())
    engine.set_parameter("threat", 150)
    assert engine.parameters["threat"] == 100


def test_undeclared_parameter_is_ignored_by_conditions(caplog: pytest.LogCaptureFixture) -> None:
    graph = _explore_combat()
    engine = RuntimeEngine(graph)
    engine.set_parameter("mystery", 1)
    engine.set_parameter("mystery", 2)
    assert "mystery" not in engine.parameters
    warnings = [r for r in caplog.records if "mystery" in r.getMessage()]
    assert len(warnings) == 1


def _timer_graph() -> StateGraph:
    graph = create_empty_graph("Timer", graph_id="timer")
    graph = add_state(graph, id="a", name="A", is_initial=True)
    graph = add_state(graph, id="b", name="B")
    return add_transition(graph, id="wait", from_state_id="a", to_state_id="b", conditions=[duration_condition(100)])


def test_elapsed_time_accumulates_from_ticks() -> None:
    engine = RuntimeEngine(_timer_graph())
    assert engine.tick(now_ms=0) is None
    assert engine.tick(now_ms=50) is None
    assert engine.state_elapsed_ms == 50
    assert engine.tick(now_ms=100) is not None
    assert engine.current_state_id == "b"
    assert engine.state_elapsed_ms == 0


def test_first_tick_counts_time_since_construction() -> None:
    now = [5_000.0]
    engine = RuntimeEngine(_timer_graph(), clock=lambda: now[0])
    now[0] += 100
    assert engine.tick() is not None
    assert engine.current_state_id == "b"


def test_engine_agrees_with_simulator_on_duration_conditions() -> None:
    graph = _timer_graph()
    timeline = simulate(graph, {}, 300, 100)
    engine = RuntimeEngine(graph)
    seen: dict[float, str] = {}
    for time_ms in (100, 200, 300):
        engine.tick(now_ms=time_ms)
        seen[time_ms] = engine.current_state_id
    assert seen == {point.time: point.state_id for point in timeline.points[1:]}
    assert seen == {100: "b", 200: "b", 300: "b"}


def test_engine_replays_simulated_trajectory() -> None:
    graph = add_state(_explore_combat(cooldown_ms=300), id="rest", name="Rest")
    graph = add_transition(graph, id="calm_down", from_state_id="combat", to_state_id="rest", conditions=[duration_condition(400)])
    graph = add_transition(graph, id="rested", from_state_id="rest", to_state_id="explore", conditions=[duration_condition(100)])
    trajectory = {"threat": [(0, 0), (200, 80), (400, 30), (600, 90), (700, 5), (900, 80)]}
    timeline = simulate(graph, trajectory, 1500, 100)

    sink = RecordingSink()
    engine = RuntimeEngine(graph, sink=sink)
    states: list[tuple[float, str]] = []
    for point in timeline.points[1:]:
        for name, value in point.parameters.items():
            engine.set_parameter(name, value)
        engine.tick(now_ms=point.time)
        states.append((point.time, engine.current_state_id))

    assert states == [(point.time, point.state_id) for point in timeline.points[1:]]
    assert [(event.transition_id, event.at_ms) for event in sink.transitions] == [
        (fired.transition_id, fired.time) for fired in timeline.transitions
    ]
    assert len(timeline.transitions) >= 3


def test_cooldown_blocks_refire() -> None:
    engine = RuntimeEngine(_explore_combat(cooldown_ms=1000))
    engine.set_parameter("threat", 80)
    assert engine.tick(now_ms=0).id == "to_combat"
    engine.force_state("explore")
    assert engine.tick(now_ms=500) is None
    assert engine.cooldown_remaining("to_combat") == 500
    assert engine.tick(now_ms=1000).id == "to_combat"


def test_trigger_event_is_a_single_tick_pulse() -> None:
    graph = create_empty_graph("Pulse", graph_id="pulse")
    graph = add_state(graph, id="a", name="A", is_initial=True)
    graph = add_state(graph, id="b", name="B")
    graph = add_state(graph, id="c", name="C")
    graph = add_parameter(graph, name="boss", type="boolean", default_value=False)
    graph = add_transition(
        graph,
        id="a_b",
        from_state_id="a",
        to_state_id="b",
        conditions=[parameter_condition(graph, "boss", "==", True)],
    )
    graph = add_transition(
        graph,
        id="b_c",
        from_state_id="b",
        to_state_id="c",
        conditions=[parameter_condition(graph, "boss", "==", True)],
    )
    engine = RuntimeEngine(graph)
    engine.trigger_event("boss")
    assert engine.tick(now_ms=0).id == "a_b"
    assert engine.tick(now_ms=16) is None
    assert engine.current_state_id == "b"


def test_force_state_emits_forced_event() -> None:
    sink = RecordingSink()
    engine = RuntimeEngine(_explore_combat(), sink=sink)
    engine.force_state("combat")
    assert engine.current_state_id == "combat"
    assert sink.entered[0].forced is True
    with pytest.raises(EngineError):
        engine.force_state("missing")


def test_inbox_messages_apply_on_next_tick() -> None:
    inbox = ParameterInbox()
    engine = RuntimeEngine(_explore_combat(), inbox=inbox)
    inbox.set_parameter("threat", 90)
    assert engine.parameters["threat"] == 0
    assert engine.tick(now_ms=0).id == "to_combat"


def test_mapped_inputs_drive_parameters() -> None:
    mapping = create_mapping("Danger", "danger", "threat", expected_range=(0, 1))
    mapping = mapping.model_copy(update={"transform": mapping.transform.model_copy(update={"output_range": (0, 100)})})
    mapping = mapping.model_copy(update={"smoothing": mapping.smoothing.model_copy(update={"enabled": False})})
    engine = RuntimeEngine(_explore_combat(), mappings=[mapping])
    engine.set_input("danger", 0.9)
    fired = engine.tick(now_ms=0)
    assert engine.parameters["threat"] == pytest.approx(90)
    assert fired is not None and fired.id == "to_combat"


def test_snapshot_and_restore() -> None:
    engine = RuntimeEngine(_explore_combat(cooldown_ms=5000))
    engine.set_parameter("threat", 80)
    engine.tick(now_ms=0)
    snapshot = engine.snapshot()
    other = RuntimeEngine(_explore_combat(cooldown_ms=5000))
    other.restore(snapshot)
    assert other.current_state_id == "combat"
    assert other.parameters["threat"] == 80
    assert other.cooldown_remaining("to_combat") == 5000


def test_dispose_is_idempotent_and_stops_ticks() -> None:
    sink = RecordingSink()
    engine = RuntimeEngine(_explore_combat(), sink=sink)
    engine.dispose()
    engine.dispose()
    assert engine.status == "disposed"
    engine.set_parameter("threat", 80)
    assert engine.tick(now_ms=0) is None
    assert sink.events == []


def test_context_manager_disposes() -> None:
    with RuntimeEngine(_explore_combat()) as engine:
        assert engine.status == "idle"
    assert engine.status == "disposed"


def test_background_ticker_runs_and_stops() -> None:
    engine = RuntimeEngine(_explore_combat(), config=EngineConfig(tick_interval_ms=5))
    engine.start()
    try:
        engine.set_parameter("threat", 80)
        deadline = time.monotonic() + 2.0
        while engine.current_state_id != "combat" and time.monotonic() < deadline:
            time.sleep(0.01)
        assert engine.current_state_id == "combat"
    finally:
        engine.stop()
    assert engine.status == "idle"
    engine.stop()
    engine.dispose()


def test_preset_graph_runs_in_engine() -> None:
    engine = RuntimeEngine(create_graph_from_preset("combat_intensity"))
    engine.set_parameter("enemies_nearby", 3)
    assert engine.tick(now_ms=0).id == "enter_combat"
    engine.set_parameter("enemies_nearby", 0)
    assert engine.tick(now_ms=1000) is None
    assert engine.tick(now_ms=3000).id == "exit_combat"


class _DisposingSink(RecordingSink):
    def __init__(self) -> None:
        super().__init__()
        self.engine: RuntimeEngine | None = None
        self.status_during_callback: str | None = None

    def on_transition(self, event: TransitionEvent) -> None:
        super().on_transition(event)
        assert self.engine is not None
        self.status_during_callback = self.engine.status
        self.engine.dispose()


def test_dispose_from_sink_callback_ends_transition_silently() -> None:
    sink = _DisposingSink()
    engine = RuntimeEngine(_explore_combat(), sink=sink)
    sink.engine = engine
    engine.set_parameter("threat", 80)
    engine.tick(now_ms=0)
    assert sink.status_during_callback == "transitioning"
    assert [type(event) for event in sink.events] == [TransitionEvent]
    assert engine.status == "disposed"
    assert engine.tick(now_ms=16) is None
    assert len(sink.events) == 1


def test_stop_then_start_resumes_current_state() -> None:
    engine = RuntimeEngine(_explore_combat(), config=EngineConfig(tick_interval_ms=5))
    engine.set_parameter("threat", 80)
    assert engine.tick(now_ms=0).id == "to_combat"
    engine.start()
    engine.stop()
    assert engine.current_state_id == "combat"
    engine.start()
    try:
        assert engine.status == "running"
        assert engine.current_state_id == "combat"
        time.sleep(0.05)
        assert engine.current_state_id == "combat"
        assert engine.parameters["threat"] == 80
    finally:
        engine.dispose()


def test_each_run_gets_its_own_stop_event() -> None:
    engine = RuntimeEngine(_explore_combat(), config=EngineConfig(tick_interval_ms=5))
    engine.start()
    first = engine._stop_event
    engine.stop()
    engine.start()
    try:
        second = engine._stop_event
        assert first is not None and second is not None
        assert first is not second
        assert first.is_set()
        assert not second.is_set()
    finally:
        engine.dispose()
    assert second.is_set()
