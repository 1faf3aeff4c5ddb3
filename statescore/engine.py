"""Tick-driven runtime engine for an adaptive audio state graph.

The engine owns the live parameter values, the current state and the
per-transition cooldowns. Every ``tick`` it evaluates the transitions leaving
the current state and, when one fires, tells an ``AudioLayerSink`` which
layers to bring in. It never produces audio itself.

Example:
    sink = RecordingSink()
    with RuntimeEngine(graph, sink=sink) as engine:
        engine.set_parameter("threat", 80)
        engine.tick(now_ms=0)
        engine.tick(now_ms=16)
        print(engine.current_state_id)
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .conditions import Diagnostics, select_transition
from .config import EngineConfig
from .errors import EngineError, GraphValidationError
from .graph import AudioState, StateAudioConfig, StateGraph, StateTransition, validate_graph
from .logging_utils import OnceLogger
from .mapping import ParameterMapper, ParameterMapping
from .schema import EngineStatus, ParameterValue, TransitionType

_LOGGER = logging.getLogger("statescore.engine")

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


# -----------------------------------------------------------------------------
# Events and sinks
# -----------------------------------------------------------------------------


class TransitionEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    transition_id: str
    from_state: str
    to_state: str
    transition_type: TransitionType
    duration: float
    at_ms: float
    start_event: str | None = None
    complete_event: str | None = None


class StateEnteredEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    state_id: str
    state_name: str
    audio_config: StateAudioConfig
    at_ms: float
    forced: bool = False


class AudioLayerSink(Protocol):
    """Receives layer-level decisions; implementations own actual playback."""

    def on_transition(self, event: TransitionEvent) -> None: ...

    def on_state_entered(self, event: StateEnteredEvent) -> None: ...


class RecordingSink:
    """Sink that keeps every event, in order. Handy for previews and tests."""

    def __init__(self) -> None:
        self.events: list[TransitionEvent | StateEnteredEvent] = []

    def on_transition(self, event: TransitionEvent) -> None:
        self.events.append(event)

    def on_state_entered(self, event: StateEnteredEvent) -> None:
        self.events.append(event)

    @property
    def transitions(self) -> list[TransitionEvent]:
        return [event for event in self.events if isinstance(event, TransitionEvent)]

    @property
    def entered(self) -> list[StateEnteredEvent]:
        return [event for event in self.events if isinstance(event, StateEnteredEvent)]

    def clear(self) -> None:
        self.events.clear()


# -----------------------------------------------------------------------------
# Cross-thread parameter inbox
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InboxMessage:
    kind: Literal["parameter", "event", "input"]
    name: str
    value: ParameterValue = True


class ParameterInbox:
    """Thread-safe queue of parameter updates, drained at the start of each tick."""

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[InboxMessage] = queue.SimpleQueue()

    def set_parameter(self, name: str, value: ParameterValue) -> None:
        self._queue.put(InboxMessage("parameter", name, value))

    def set_input(self, name: str, value: ParameterValue) -> None:
        self._queue.put(InboxMessage("input", name, value))

    def trigger_event(self, name: str) -> None:
        self._queue.put(InboxMessage("event", name))

    def drain(self) -> list[InboxMessage]:
        messages: list[InboxMessage] = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages


# -----------------------------------------------------------------------------
# Snapshot
# -----------------------------------------------------------------------------


class EngineSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    graph_id: str
    state_id: str
    parameters: dict[str, ParameterValue] = Field(default_factory=dict)
    state_elapsed_ms: float = Field(default=0.0, ge=0)
    cooldowns: dict[str, float] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


class RuntimeEngine:
    def __init__(
        self,
        graph: StateGraph,
        *,
        mappings: Iterable[ParameterMapping] = (),
        sink: AudioLayerSink | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        diagnostics: Diagnostics | None = None,
        inbox: ParameterInbox | None = None,
    ) -> None:
        self._status: EngineStatus = "uninitialized"
        try:
            validate_graph(graph)
        except GraphValidationError as exc:
            raise EngineError(f"Cannot run an invalid graph: {exc}") from exc
        initial = graph.initial_state()
        if initial is None:
            raise EngineError(f"Graph {graph.id!r} has no states")

        self._graph = graph
        self._sink = sink
        self._config = config or EngineConfig()
        # Engine time is measured in ms from construction; explicit `now_ms`
        # values passed to `tick` use the same origin.
        self._clock = clock or monotonic_ms
        self._epoch = self._clock()
        self._diagnostics = diagnostics
        self._inbox = inbox

        self._parameters: dict[str, ParameterValue] = graph.default_parameter_values()
        self._undeclared: dict[str, ParameterValue] = {}
        self._unknown_warnings = OnceLogger(_LOGGER)
        self._pulses: set[str] = set()
        self._cooldowns: dict[str, float] = {}
        self._mapper = ParameterMapper(mappings, initial_values=self._parameters)

        self._current: AudioState = initial
        self._state_elapsed_ms = 0.0
        self._last_tick_ms = 0.0

        self._lock = threading.RLock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._status = "idle"
        _LOGGER.debug("Engine ready on graph %s, initial state %s", graph.id, initial.id)

    # -- properties -----------------------------------------------------------

    @property
    def graph(self) -> StateGraph:
        return self._graph

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def current_state_id(self) -> str:
        return self._current.id

    @property
    def current_state(self) -> AudioState:
        return self._current

    @property
    def state_elapsed_ms(self) -> float:
        return self._state_elapsed_ms

    @property
    def parameters(self) -> dict[str, ParameterValue]:
        with self._lock:
            return dict(self._parameters)

    @property
    def mapper(self) -> ParameterMapper:
        return self._mapper

    def _now(self) -> float:
        return self._clock() - self._epoch

    def cooldown_remaining(self, transition_id: str) -> float:
        return self._cooldowns.get(transition_id, 0.0)

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Tick on a background thread every ``tick_interval_ms``; resumes where ``stop`` left off."""

        with self._lock:
            if self._status != "idle":
                return
            self._status = "running"
            # Time spent stopped does not count toward state duration.
            self._last_tick_ms = max(self._last_tick_ms, self._now())
            # A thread that outlived stop()'s join keeps its own, already set, event.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=f"statescore-engine-{self._graph.id}",
                daemon=True,
            )
            self._thread.start()
        _LOGGER.debug("Engine started (tick %.1f ms)", self._config.tick_interval_ms)

    def _run(self, stop_event: threading.Event) -> None:
        interval = self._config.tick_interval_ms / 1000.0
        while not stop_event.wait(interval):
            try:
                self.tick()
            except Exception as exc:
                _LOGGER.warning("Engine tick failed: %s", exc, exc_info=True)

    def stop(self) -> None:
        with self._lock:
            if self._status not in ("running", "transitioning"):
                return
            self._status = "idle"
            if self._stop_event is not None:
                self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
            if thread.is_alive():
                _LOGGER.warning("Engine ticker thread did not stop within 1s")
        _LOGGER.debug("Engine stopped")

    def dispose(self) -> None:
        if self._status == "disposed":
            return
        self.stop()
        with self._lock:
            self._status = "disposed"
            self._sink = None
            self._inbox = None
            self._pulses.clear()
        _LOGGER.debug("Engine disposed")

    def __enter__(self) -> "RuntimeEngine":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.dispose()

    # -- inputs ---------------------------------------------------------------

    def set_parameter(self, name: str, value: ParameterValue) -> None:
        """Set a live parameter; numeric values are clamped to the declared bounds."""

        with self._lock:
            if self._status == "disposed":
                return
            self._apply_parameter(name, value)

    def _apply_parameter(self, name: str, value: ParameterValue) -> None:
        declared = self._graph.get_parameter(name)
        if declared is None:
            # Kept for inspection only; conditions never see undeclared names.
            self._undeclared[name] = value
            if self._config.warn_unknown_parameters:
                self._unknown_warnings.warning(
                    name, "Parameter %r is not declared on graph %s", name, self._graph.id
                )
            return
        self._parameters[name] = declared.clamp(value)

    def set_input(self, name: str, value: ParameterValue) -> None:
        """Feed a mapper input; mapped parameters change on the next tick."""

        with self._lock:
            if self._status == "disposed":
                return
            if not self._mapper.set_input(name, value):
                _LOGGER.debug("No mapping consumes input %r", name)

    def trigger_event(self, name: str) -> None:
        """Raise a momentary boolean pulse, visible to the next tick only."""

        with self._lock:
            if self._status == "disposed":
                return
            self._pulses.add(name)

    def force_state(self, state_id: str) -> None:
        with self._lock:
            if self._status == "disposed":
                return
            state = self._graph.get_state(state_id)
            if state is None:
                raise EngineError(f"Unknown state {state_id!r}")
            self._current = state
            self._state_elapsed_ms = 0.0
            self._emit_entered(state, self._last_tick_ms, forced=True)

    # -- ticking --------------------------------------------------------------

    def tick(self, now_ms: float | None = None) -> StateTransition | None:
        """Advance the engine one step; returns the transition that fired, if any.

        `now_ms` is engine time, in ms since the engine was built; it defaults to
        the clock. The state entered at construction has been active since time 0,
        so ticking at 100, 200, 300 matches `simulate(..., step_ms=100)` step for step.
        """

        with self._lock:
            if self._status in ("disposed", "uninitialized"):
                return None
            now = self._now() if now_ms is None else now_ms
            delta = max(0.0, now - self._last_tick_ms)
            self._last_tick_ms = now

            self._drain_inbox()
            for name, value in self._mapper.update(delta).items():
                self._apply_parameter(name, value)

            self._state_elapsed_ms += delta
            self._advance_cooldowns(delta)

            snapshot: dict[str, ParameterValue] = dict(self._parameters)
            for pulse in self._pulses:
                snapshot[pulse] = True
            try:
                fired = select_transition(
                    self._graph.transitions_from(self._current.id),
                    snapshot,
                    self._state_elapsed_ms,
                    blocked=self._cooldowns.keys(),
                    diagnostics=self._diagnostics,
                )
                if fired is not None:
                    self._execute(fired, now)
            finally:
                self._pulses.clear()
            return fired

    def _drain_inbox(self) -> None:
        if self._inbox is None:
            return
        for message in self._inbox.drain():
            match message.kind:
                case "parameter":
                    self._apply_parameter(message.name, message.value)
                case "input":
                    self._mapper.set_input(message.name, message.value)
                case "event":
                    self._pulses.add(message.name)

    def _advance_cooldowns(self, delta: float) -> None:
        for transition_id in list(self._cooldowns):
            remaining = self._cooldowns[transition_id] - delta
            if remaining <= 0:
                del self._cooldowns[transition_id]
            else:
                self._cooldowns[transition_id] = remaining

    def _execute(self, transition: StateTransition, now: float) -> None:
        target = self._graph.get_state(transition.to_state_id)
        if target is None:
            raise EngineError(f"Transition {transition.id!r} targets a missing state")
        previous_status = self._status
        self._status = "transitioning"
        _LOGGER.debug(
            "Transition %s: %s -> %s (%s, %.0f ms)",
            transition.id,
            transition.from_state_id,
            transition.to_state_id,
            transition.transition_type,
            transition.duration,
        )
        if self._sink is not None:
            self._sink.on_transition(
                TransitionEvent(
                    transition_id=transition.id,
                    from_state=transition.from_state_id,
                    to_state=transition.to_state_id,
                    transition_type=transition.transition_type,
                    duration=transition.duration,
                    at_ms=now,
                    start_event=transition.on_start_event,
                    complete_event=transition.on_complete_event,
                )
            )
        if transition.cooldown_ms:
            self._cooldowns[transition.id] = transition.cooldown_ms
        self._current = target
        self._state_elapsed_ms = 0.0
        self._emit_entered(target, now, forced=False)
        # dispose() from inside a sink callback ends the transition silently.
        if self._status == "transitioning":
            self._status = previous_status

    def _emit_entered(self, state: AudioState, at_ms: float, *, forced: bool) -> None:
        if self._sink is None:
            return
        self._sink.on_state_entered(
            StateEnteredEvent(
                state_id=state.id,
                state_name=state.name,
                audio_config=state.audio_config,
                at_ms=at_ms,
                forced=forced,
            )
        )

    # -- snapshots ------------------------------------------------------------

    def snapshot(self) -> EngineSnapshot:
        with self._lock:
            return EngineSnapshot(
                graph_id=self._graph.id,
                state_id=self._current.id,
                parameters=dict(self._parameters),
                state_elapsed_ms=self._state_elapsed_ms,
                cooldowns=dict(self._cooldowns),
            )

    def restore(self, snapshot: EngineSnapshot) -> None:
        with self._lock:
            if self._status == "disposed":
                raise EngineError("Cannot restore a disposed engine")
            state = self._graph.get_state(snapshot.state_id)
            if state is None:
                raise EngineError(f"Snapshot state {snapshot.state_id!r} is not in the graph")
            self._current = state
            self._parameters = self._graph.default_parameter_values()
            for name, value in snapshot.parameters.items():
                self._apply_parameter(name, value)
            self._state_elapsed_ms = snapshot.state_elapsed_ms
            self._cooldowns = {
                transition_id: remaining
                for transition_id, remaining in snapshot.cooldowns.items()
                if self._graph.get_transition(transition_id) is not None and remaining > 0
            }
            self._last_tick_ms = max(self._last_tick_ms, self._now())
            self._pulses.clear()
