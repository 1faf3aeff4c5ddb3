"""Adaptive audio state graph: data model and validated mutation operations.

A graph is a set of audio *states* (named layer configurations) connected by
parameter-driven *transitions*. All models are frozen pydantic values; every
mutation below takes a graph and returns a new, re-validated graph, so the
engine, the simulator and the compilers can hold a graph without worrying
about it changing underneath them.

Example:
    graph = create_empty_graph("Combat")
    graph = add_state(graph, id="explore", name="Explore", is_initial=True)
    graph = add_state(graph, id="combat", name="Combat")
    graph = add_parameter(graph, Parameter(name="threat", default_value=0, min=0, max=100))
    graph = add_transition(
        graph,
        from_state_id="explore",
        to_state_id="combat",
        conditions=[parameter_condition(graph, "threat", ">", 50)],
    )
"""

from __future__ import annotations

import logging
import math
import secrets
from collections import Counter
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Annotated, Any, Iterable, Literal, Mapping, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import GraphValidationError, UnknownEntityError
from .schema import (
    DEFAULT_TRANSITION_DURATION_MS,
    DEFAULT_TRANSITION_TYPE,
    ComparisonOperator,
    ConditionLogic,
    ParameterType,
    ParameterValue,
    SelectionMode,
    TransitionType,
)

_LOGGER = logging.getLogger("statescore.graph")

M = TypeVar("M", bound=BaseModel)


class WireModel(BaseModel):
    """Frozen model serialized with camelCase keys (``from_state_id`` -> ``fromStateId``)."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(4)}"


# -----------------------------------------------------------------------------
# Condition values
# -----------------------------------------------------------------------------


class NumberValue(WireModel):
    type: Literal["number"] = "number"
    value: float


class BooleanValue(WireModel):
    type: Literal["boolean"] = "boolean"
    value: bool


class StringValue(WireModel):
    type: Literal["string"] = "string"
    value: str


ConditionValue = Annotated[
    Union[NumberValue, BooleanValue, StringValue],
    Field(discriminator="type"),
]


def typed_value(value: ParameterValue, declared: ParameterType | None = None) -> ConditionValue:
    """Wrap a raw scalar in the tagged value matching *declared* (or its own type)."""

    kind = declared or infer_parameter_type(value)
    match kind:
        case "boolean":
            if not isinstance(value, bool):
                raise GraphValidationError(f"Expected a boolean value, got {value!r}")
            return BooleanValue(value=value)
        case "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise GraphValidationError(f"Expected a numeric value, got {value!r}")
            return NumberValue(value=float(value))
        case "string":
            if not isinstance(value, str):
                raise GraphValidationError(f"Expected a string value, got {value!r}")
            return StringValue(value=value)
    raise GraphValidationError(f"Unknown parameter type: {kind!r}")


def infer_parameter_type(value: object) -> ParameterType:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    raise GraphValidationError(f"Unsupported parameter value: {value!r}")


# -----------------------------------------------------------------------------
# Conditions
# -----------------------------------------------------------------------------


class ParameterCondition(WireModel):
    """Compare a live parameter against a threshold."""

    kind: Literal["parameter"] = "parameter"
    parameter_name: str = Field(min_length=1)
    operator: ComparisonOperator
    value: ConditionValue

    @field_validator("value", mode="before")
    @classmethod
    def _wrap_scalar(cls, value: object) -> object:
        if isinstance(value, (bool, int, float, str)):
            return typed_value(value)
        return value


class StateDurationCondition(WireModel):
    """True once the current state has been active for ``threshold_ms``."""

    kind: Literal["state_duration"] = "state_duration"
    threshold_ms: float = Field(ge=0)


TransitionCondition = Annotated[
    Union[ParameterCondition, StateDurationCondition],
    Field(discriminator="kind"),
]


# -----------------------------------------------------------------------------
# States, transitions, parameters
# -----------------------------------------------------------------------------


class StatePosition(WireModel):
    x: float = 0.0
    y: float = 0.0


class StateAudioConfig(WireModel):
    active_layers: tuple[str, ...] = ()
    # Read-only view; graphs share configs between copies and events.
    layer_volumes: Mapping[str, float] = Field(default_factory=dict, validate_default=True)
    master_volume: float = Field(default=1.0, ge=0.0, le=1.0)
    music_intensity: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("layer_volumes")
    @classmethod
    def _check_volumes(cls, value: Mapping[str, float]) -> Mapping[str, float]:
        for layer, volume in value.items():
            if not 0.0 <= volume <= 1.0:
                raise ValueError(f"Volume for layer {layer!r} must be within [0, 1]")
        return MappingProxyType(dict(sorted(value.items())))

    @field_serializer("layer_volumes")
    def _dump_volumes(self, value: Mapping[str, float]) -> dict[str, float]:
        return dict(value)

    def volume_for(self, layer: str) -> float:
        return self.layer_volumes.get(layer, 1.0)


class AudioState(WireModel):
    id: str = Field(min_length=1)
    name: str
    description: str = ""
    tags: tuple[str, ...] = ()
    is_initial: bool = False
    audio_config: StateAudioConfig = Field(default_factory=StateAudioConfig)
    position: StatePosition | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: object) -> object:
        # Tags behave as a set; a sorted tuple keeps serialized output stable.
        if isinstance(value, (set, frozenset, list, tuple)):
            return tuple(sorted({str(tag) for tag in value}))
        return value


class StateTransition(WireModel):
    id: str = Field(min_length=1)
    name: str = ""
    from_state_id: str
    to_state_id: str
    transition_type: TransitionType = DEFAULT_TRANSITION_TYPE
    duration: float = Field(default=DEFAULT_TRANSITION_DURATION_MS, ge=0)
    conditions: tuple[TransitionCondition, ...] = ()
    condition_logic: ConditionLogic = "AND"
    priority: int = 0
    cooldown_ms: float | None = Field(default=None, ge=0)
    on_start_event: str | None = None
    on_complete_event: str | None = None


class Parameter(WireModel):
    name: str = Field(min_length=1)
    type: ParameterType = "number"
    default_value: bool | float | str = 0.0
    min: float | None = None
    max: float | None = None
    description: str = ""

    @model_validator(mode="after")
    def _check_declaration(self) -> "Parameter":
        declared = infer_parameter_type(self.default_value)
        if declared != self.type:
            raise ValueError(
                f"Default value {self.default_value!r} does not match parameter type {self.type!r}"
            )
        if self.type != "number" and (self.min is not None or self.max is not None):
            raise ValueError("Only numeric parameters may declare min/max bounds")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"Parameter {self.name!r} has min > max")
        return self

    def clamp(self, value: ParameterValue) -> ParameterValue:
        """Clamp numeric values to the declared bounds; other values pass through."""

        if self.type != "number" or isinstance(value, bool) or not isinstance(value, (int, float)):
            return value
        result = float(value)
        if math.isnan(result):
            return result
        if self.min is not None:
            result = max(self.min, result)
        if self.max is not None:
            result = min(self.max, result)
        return result


class AudioSource(WireModel):
    id: str = Field(min_length=1)
    name: str = ""
    duration_ms: float = Field(default=0.0, ge=0)
    uri: str | None = None


class LayerDefinition(WireModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    source_ids: tuple[str, ...] = ()
    selection: SelectionMode = "sequential"
    weights: tuple[float, ...] = ()
    volume: float = Field(default=1.0, ge=0.0, le=1.0)
    loop: bool = True

    @model_validator(mode="after")
    def _check_weights(self) -> "LayerDefinition":
        if self.weights and len(self.weights) != len(self.source_ids):
            raise ValueError(f"Layer {self.name!r} needs one weight per source")
        if any(weight < 0 for weight in self.weights):
            raise ValueError(f"Layer {self.name!r} has a negative weight")
        return self

    def weight_for(self, index: int) -> float:
        if self.selection == "weighted" and self.weights:
            return self.weights[index]
        return 1.0


# -----------------------------------------------------------------------------
# Graph
# -----------------------------------------------------------------------------


class StateGraph(WireModel):
    id: str = Field(min_length=1)
    name: str
    description: str = ""
    states: tuple[AudioState, ...] = ()
    transitions: tuple[StateTransition, ...] = ()
    parameters: tuple[Parameter, ...] = ()
    layers: tuple[LayerDefinition, ...] = ()
    sources: tuple[AudioSource, ...] = ()
    default_transition_duration: float = Field(default=DEFAULT_TRANSITION_DURATION_MS, ge=0)
    default_transition_type: TransitionType = DEFAULT_TRANSITION_TYPE
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @model_validator(mode="after")
    def _check_invariants(self) -> "StateGraph":
        _check_invariants(self)
        return self

    def initial_state(self) -> AudioState | None:
        for state in self.states:
            if state.is_initial:
                return state
        return self.states[0] if self.states else None

    def get_state(self, state_id: str) -> AudioState | None:
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def get_transition(self, transition_id: str) -> StateTransition | None:
        for transition in self.transitions:
            if transition.id == transition_id:
                return transition
        return None

    def get_parameter(self, name: str) -> Parameter | None:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    def get_layer(self, layer_id: str) -> LayerDefinition | None:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def transitions_from(self, state_id: str) -> tuple[StateTransition, ...]:
        return tuple(t for t in self.transitions if t.from_state_id == state_id)

    def default_parameter_values(self) -> dict[str, ParameterValue]:
        return {parameter.name: parameter.default_value for parameter in self.parameters}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateGraph":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise GraphValidationError(f"Invalid graph data: {exc}") from exc


def _duplicates(values: Iterable[str]) -> list[str]:
    return sorted(value for value, count in Counter(values).items() if count > 1)


def _check_invariants(graph: StateGraph) -> None:
    state_ids = {state.id for state in graph.states}
    if dupes := _duplicates(state.id for state in graph.states):
        raise GraphValidationError(f"Duplicate state ids: {dupes}")
    initial = [state.id for state in graph.states if state.is_initial]
    if len(initial) > 1:
        raise GraphValidationError(f"More than one initial state: {initial}")

    if dupes := _duplicates(t.id for t in graph.transitions):
        raise GraphValidationError(f"Duplicate transition ids: {dupes}")
    pairs: set[tuple[str, str]] = set()
    for transition in graph.transitions:
        for endpoint in (transition.from_state_id, transition.to_state_id):
            if endpoint not in state_ids:
                raise GraphValidationError(
                    f"Transition {transition.id!r} references unknown state {endpoint!r}"
                )
        if transition.from_state_id == transition.to_state_id:
            raise GraphValidationError(f"Transition {transition.id!r} is a self transition")
        pair = (transition.from_state_id, transition.to_state_id)
        if pair in pairs:
            raise GraphValidationError(
                f"Duplicate transition from {pair[0]!r} to {pair[1]!r} ({transition.id!r})"
            )
        pairs.add(pair)

    if dupes := _duplicates(parameter.name for parameter in graph.parameters):
        raise GraphValidationError(f"Duplicate parameter names: {dupes}")

    if dupes := _duplicates(source.id for source in graph.sources):
        raise GraphValidationError(f"Duplicate source ids: {dupes}")
    source_ids = {source.id for source in graph.sources}
    if dupes := _duplicates(layer.id for layer in graph.layers):
        raise GraphValidationError(f"Duplicate layer ids: {dupes}")
    if dupes := _duplicates(layer.name for layer in graph.layers):
        raise GraphValidationError(f"Duplicate layer names: {dupes}")
    for layer in graph.layers:
        missing = [source_id for source_id in layer.source_ids if source_id not in source_ids]
        if missing:
            raise GraphValidationError(f"Layer {layer.name!r} references unknown sources {missing}")


def validate_graph(graph: StateGraph) -> StateGraph:
    """Re-check every structural invariant; returns the graph for chaining."""

    _check_invariants(graph)
    return graph


# -----------------------------------------------------------------------------
# Construction helpers
# -----------------------------------------------------------------------------


def create_empty_graph(
    name: str,
    *,
    description: str = "",
    graph_id: str | None = None,
) -> StateGraph:
    """Return a graph with zero states; add one before running an engine on it."""

    now = _now_iso()
    return StateGraph(
        id=graph_id or new_id("graph"),
        name=name,
        description=description,
        created_at=now,
        updated_at=now,
    )


def duplicate_graph(graph: StateGraph, *, name: str | None = None) -> StateGraph:
    now = _now_iso()
    return graph.model_copy(
        update={
            "id": new_id("graph"),
            "name": name if name is not None else f"{graph.name} (copy)",
            "created_at": now,
            "updated_at": now,
        }
    )


def parameter_condition(
    parameters: StateGraph | Iterable[Parameter],
    name: str,
    operator: ComparisonOperator,
    value: ParameterValue,
) -> ParameterCondition:
    """Build a parameter condition whose value is typed by the declared parameter.

    Undeclared names fall back to the Python type of *value*; such a condition
    is still valid and simply never matches until the parameter exists.
    """

    declared_params = parameters.parameters if isinstance(parameters, StateGraph) else parameters
    declared: ParameterType | None = None
    for parameter in declared_params:
        if parameter.name == name:
            declared = parameter.type
            break
    return ParameterCondition(
        parameter_name=name,
        operator=operator,
        value=typed_value(value, declared),
    )


def duration_condition(threshold_ms: float) -> StateDurationCondition:
    return StateDurationCondition(threshold_ms=threshold_ms)


# -----------------------------------------------------------------------------
# Mutations
# -----------------------------------------------------------------------------


def _field_keys(model_type: type[M], fields: Mapping[str, Any]) -> dict[str, Any]:
    """Accept camelCase wire keys alongside attribute names."""

    names = {to_camel(name): name for name in model_type.model_fields}
    return {names.get(key, key): value for key, value in fields.items()}


def _replace(model: M, changes: Mapping[str, Any]) -> M:
    try:
        return type(model).model_validate({**model.model_dump(), **_field_keys(type(model), changes)})
    except ValidationError as exc:
        raise GraphValidationError(f"Invalid {type(model).__name__} update: {exc}") from exc


def _build(model_type: type[M], fields: Mapping[str, Any]) -> M:
    try:
        return model_type.model_validate(_field_keys(model_type, fields))
    except ValidationError as exc:
        raise GraphValidationError(f"Invalid {model_type.__name__}: {exc}") from exc


def _commit(graph: StateGraph, **changes: Any) -> StateGraph:
    updated = graph.model_copy(update={**changes, "updated_at": _now_iso()})
    return validate_graph(updated)


def _demote_initial(states: Iterable[AudioState], keep_id: str) -> tuple[AudioState, ...]:
    return tuple(
        state.model_copy(update={"is_initial": False})
        if state.is_initial and state.id != keep_id
        else state
        for state in states
    )


def add_state(graph: StateGraph, state: AudioState | None = None, **fields: Any) -> StateGraph:
    if state is None:
        fields.setdefault("id", new_id("state"))
        state = _build(AudioState, fields)
    elif fields:
        raise TypeError("Pass either an AudioState or keyword fields, not both")
    if graph.get_state(state.id) is not None:
        raise GraphValidationError(f"State id {state.id!r} already exists")
    states = graph.states + (state,)
    if state.is_initial:
        states = _demote_initial(states, state.id)
    return _commit(graph, states=states)


def update_state(graph: StateGraph, state_id: str, **changes: Any) -> StateGraph:
    current = graph.get_state(state_id)
    if current is None:
        raise UnknownEntityError(f"Unknown state {state_id!r}")
    if "id" in changes and changes["id"] != state_id:
        raise GraphValidationError("State ids are immutable")
    updated = _replace(current, changes)
    states = tuple(updated if state.id == state_id else state for state in graph.states)
    if updated.is_initial:
        states = _demote_initial(states, state_id)
    return _commit(graph, states=states)


def delete_state(graph: StateGraph, state_id: str) -> StateGraph:
    if graph.get_state(state_id) is None:
        raise UnknownEntityError(f"Unknown state {state_id!r}")
    states = tuple(state for state in graph.states if state.id != state_id)
    transitions = tuple(
        t for t in graph.transitions if state_id not in (t.from_state_id, t.to_state_id)
    )
    removed = len(graph.transitions) - len(transitions)
    if removed:
        _LOGGER.debug("Deleting state %s removed %d transition(s)", state_id, removed)
    return _commit(graph, states=states, transitions=transitions)


def set_initial_state(graph: StateGraph, state_id: str) -> StateGraph:
    return update_state(graph, state_id, is_initial=True)


def add_transition(
    graph: StateGraph,
    transition: StateTransition | None = None,
    **fields: Any,
) -> StateGraph:
    """Add a transition; self transitions and duplicate pairs leave the graph unchanged."""

    if transition is None:
        fields = _field_keys(StateTransition, fields)
        fields.setdefault("id", new_id("trans"))
        fields.setdefault("duration", graph.default_transition_duration)
        fields.setdefault("transition_type", graph.default_transition_type)
        transition = _build(StateTransition, fields)
    elif fields:
        raise TypeError("Pass either a StateTransition or keyword fields, not both")

    for endpoint in (transition.from_state_id, transition.to_state_id):
        if graph.get_state(endpoint) is None:
            raise GraphValidationError(f"Transition references unknown state {endpoint!r}")
    if transition.from_state_id == transition.to_state_id:
        _LOGGER.debug("Ignoring self transition on %s", transition.from_state_id)
        return graph
    for existing in graph.transitions:
        if (existing.from_state_id, existing.to_state_id) == (
            transition.from_state_id,
            transition.to_state_id,
        ):
            _LOGGER.debug(
                "Ignoring duplicate transition %s -> %s",
                transition.from_state_id,
                transition.to_state_id,
            )
            return graph
    if graph.get_transition(transition.id) is not None:
        raise GraphValidationError(f"Transition id {transition.id!r} already exists")
    return _commit(graph, transitions=graph.transitions + (transition,))


def update_transition(graph: StateGraph, transition_id: str, **changes: Any) -> StateGraph:
    current = graph.get_transition(transition_id)
    if current is None:
        raise UnknownEntityError(f"Unknown transition {transition_id!r}")
    if "id" in changes and changes["id"] != transition_id:
        raise GraphValidationError("Transition ids are immutable")
    updated = _replace(current, changes)
    transitions = tuple(updated if t.id == transition_id else t for t in graph.transitions)
    return _commit(graph, transitions=transitions)


def delete_transition(graph: StateGraph, transition_id: str) -> StateGraph:
    if graph.get_transition(transition_id) is None:
        raise UnknownEntityError(f"Unknown transition {transition_id!r}")
    return _commit(
        graph,
        transitions=tuple(t for t in graph.transitions if t.id != transition_id),
    )


def add_parameter(graph: StateGraph, parameter: Parameter | None = None, **fields: Any) -> StateGraph:
    if parameter is None:
        parameter = _build(Parameter, fields)
    elif fields:
        raise TypeError("Pass either a Parameter or keyword fields, not both")
    if graph.get_parameter(parameter.name) is not None:
        raise GraphValidationError(f"Duplicate parameter name {parameter.name!r}")
    return _commit(graph, parameters=graph.parameters + (parameter,))


def update_parameter(graph: StateGraph, name: str, **changes: Any) -> StateGraph:
    current = graph.get_parameter(name)
    if current is None:
        raise UnknownEntityError(f"Unknown parameter {name!r}")
    if "name" in changes and changes["name"] != name:
        raise GraphValidationError("Parameter names are immutable")
    updated = _replace(current, changes)
    parameters = tuple(updated if p.name == name else p for p in graph.parameters)
    return _commit(graph, parameters=parameters)


def delete_parameter(graph: StateGraph, name: str) -> StateGraph:
    if graph.get_parameter(name) is None:
        raise UnknownEntityError(f"Unknown parameter {name!r}")
    return _commit(graph, parameters=tuple(p for p in graph.parameters if p.name != name))


def add_source(graph: StateGraph, source: AudioSource | None = None, **fields: Any) -> StateGraph:
    if source is None:
        fields.setdefault("id", new_id("src"))
        source = _build(AudioSource, fields)
    elif fields:
        raise TypeError("Pass either an AudioSource or keyword fields, not both")
    return _commit(graph, sources=graph.sources + (source,))


def delete_source(graph: StateGraph, source_id: str) -> StateGraph:
    if not any(source.id == source_id for source in graph.sources):
        raise UnknownEntityError(f"Unknown source {source_id!r}")
    layers: list[LayerDefinition] = []
    for layer in graph.layers:
        if source_id not in layer.source_ids:
            layers.append(layer)
            continue
        keep = [i for i, sid in enumerate(layer.source_ids) if sid != source_id]
        layers.append(
            layer.model_copy(
                update={
                    "source_ids": tuple(layer.source_ids[i] for i in keep),
                    "weights": tuple(layer.weights[i] for i in keep) if layer.weights else (),
                }
            )
        )
    return _commit(
        graph,
        sources=tuple(source for source in graph.sources if source.id != source_id),
        layers=tuple(layers),
    )


def add_layer(graph: StateGraph, layer: LayerDefinition | None = None, **fields: Any) -> StateGraph:
    if layer is None:
        fields.setdefault("id", new_id("layer"))
        layer = _build(LayerDefinition, fields)
    elif fields:
        raise TypeError("Pass either a LayerDefinition or keyword fields, not both")
    return _commit(graph, layers=graph.layers + (layer,))


def update_layer(graph: StateGraph, layer_id: str, **changes: Any) -> StateGraph:
    current = graph.get_layer(layer_id)
    if current is None:
        raise UnknownEntityError(f"Unknown layer {layer_id!r}")
    if "id" in changes and changes["id"] != layer_id:
        raise GraphValidationError("Layer ids are immutable")
    updated = _replace(current, changes)
    return _commit(
        graph,
        layers=tuple(updated if layer.id == layer_id else layer for layer in graph.layers),
    )


def delete_layer(graph: StateGraph, layer_id: str) -> StateGraph:
    if graph.get_layer(layer_id) is None:
        raise UnknownEntityError(f"Unknown layer {layer_id!r}")
    return _commit(graph, layers=tuple(layer for layer in graph.layers if layer.id != layer_id))


def rename_graph(graph: StateGraph, name: str, *, description: str | None = None) -> StateGraph:
    changes: dict[str, Any] = {"name": name}
    if description is not None:
        changes["description"] = description
    return _commit(graph, **changes)
