"""Shared lowering rules applied identically by every compile target.

Targets never look at raw names: they receive a ``LoweredGraph`` in which
every state, layer and parameter already carries its sanitized identifier,
so two targets compiled from the same graph always agree on naming.
"""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from ..config import CompileOptions
from ..errors import CompileError
from ..graph import AudioState, Parameter, StateGraph, StateTransition
from ..schema import CompileTarget, SelectionMode, TransitionType

_WORD_RE = re.compile(r"[A-Za-z0-9]+")
_PATH_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_\-]+")

# Fixed namespace so GUIDs depend only on the graph content.
_GUID_NAMESPACE = uuid.UUID("6f1d3c0e-8a52-4b6e-9d7a-53a7e5c2b901")

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def sanitize_identifier(name: str) -> str:
    """PascalCase identifier: non-alphanumerics dropped, words capitalized.

    ``"Combat - Low"`` -> ``"CombatLow"``, ``"2nd wave"`` -> ``"_2ndWave"``,
    and a name with no usable characters becomes ``"Unnamed"``.
    """

    words = _WORD_RE.findall(name)
    if not words:
        return "Unnamed"
    identifier = "".join(word[0].upper() + word[1:] for word in words)
    if identifier[0].isdigit():
        identifier = "_" + identifier
    return identifier


def sanitize_path_segment(name: str) -> str:
    segment = _PATH_UNSAFE_RE.sub("_", name.strip().replace(" ", "_")).strip("_")
    return segment or "Unnamed"


def stable_guid(graph_id: str, *parts: str) -> str:
    """Deterministic uppercase GUID for an object inside a graph."""

    key = "/".join((graph_id, *parts))
    return str(uuid.uuid5(_GUID_NAMESPACE, key)).upper()


def short_id(*parts: str) -> int:
    """32-bit FNV-1a hash, never zero (Wwise reserves ShortID 0)."""

    value = _FNV_OFFSET
    for byte in "/".join(parts).encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value or 1


def db_from_linear(linear: float) -> float:
    return round(20.0 * math.log10(max(1e-4, linear)), 2)


def format_number(value: float) -> str:
    """Render numbers without a trailing ``.0`` for whole values."""

    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


# -----------------------------------------------------------------------------
# Selection-mode tables
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WwiseSelection:
    random_or_sequence: int
    normal_or_shuffle: int


WWISE_SELECTION: Mapping[SelectionMode, WwiseSelection] = MappingProxyType(
    {
        "random": WwiseSelection(random_or_sequence=1, normal_or_shuffle=0),
        "shuffle": WwiseSelection(random_or_sequence=1, normal_or_shuffle=1),
        "weighted": WwiseSelection(random_or_sequence=1, normal_or_shuffle=0),
        "sequential": WwiseSelection(random_or_sequence=0, normal_or_shuffle=0),
        "round_robin": WwiseSelection(random_or_sequence=0, normal_or_shuffle=0),
    }
)
FMOD_SELECTION: Mapping[SelectionMode, str] = MappingProxyType(
    {
        "random": "random",
        "sequential": "sequential",
        "round_robin": "sequential",
        "shuffle": "shuffle",
        "weighted": "random",
    }
)
ENGINE_SELECTION: Mapping[SelectionMode, str] = MappingProxyType(
    {
        "random": "Random",
        "sequential": "Sequential",
        "round_robin": "RoundRobin",
        "weighted": "Weighted",
        "shuffle": "Shuffle",
    }
)
PURE_DATA_SELECTION: Mapping[SelectionMode, str] = MappingProxyType(
    {
        "random": "random",
        "shuffle": "random",
        "weighted": "random",
        "sequential": "counter",
        "round_robin": "counter",
    }
)
WEB_AUDIO_SELECTION: Mapping[SelectionMode, str] = MappingProxyType(
    {mode: mode for mode in ("random", "sequential", "round_robin", "weighted", "shuffle")}
)

_SELECTION_TABLES: Mapping[CompileTarget, Mapping[SelectionMode, object]] = MappingProxyType(
    {
        "wwise": WWISE_SELECTION,
        "fmod": FMOD_SELECTION,
        "unity": ENGINE_SELECTION,
        "unreal": ENGINE_SELECTION,
        "pure_data": PURE_DATA_SELECTION,
        "web_audio": WEB_AUDIO_SELECTION,
    }
)


def native_selection(target: CompileTarget, mode: SelectionMode) -> object:
    return _SELECTION_TABLES[target][mode]


def selection_weight(mode: SelectionMode, weights: tuple[float, ...], index: int) -> int:
    """Integer weight 0..100 per source, 100 unless the layer is weighted."""

    if mode == "weighted" and weights:
        return int(round(weights[index] * 100))
    return 100


# -----------------------------------------------------------------------------
# Transition-type tables
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WwiseTransitionRule:
    exit_sync: str
    entry_sync: str
    fade_out: bool
    fade_in: bool
    play_stinger: bool = False


WWISE_TRANSITIONS: Mapping[TransitionType, WwiseTransitionRule] = MappingProxyType(
    {
        "instant": WwiseTransitionRule("Immediate", "SameTime", fade_out=False, fade_in=False),
        "crossfade": WwiseTransitionRule("Immediate", "SameTime", fade_out=True, fade_in=True),
        "musical": WwiseTransitionRule("NextBar", "EntryMarker", fade_out=True, fade_in=True),
        "stinger": WwiseTransitionRule("NextBeat", "EntryMarker", fade_out=True, fade_in=False, play_stinger=True),
        "duck": WwiseTransitionRule("Immediate", "SameTime", fade_out=True, fade_in=False),
        "layer_in": WwiseTransitionRule("NextBeat", "SameTime", fade_out=False, fade_in=True),
        "layer_out": WwiseTransitionRule("NextBeat", "SameTime", fade_out=True, fade_in=False),
    }
)
FMOD_QUANTIZATION: Mapping[TransitionType, str] = MappingProxyType(
    {
        "instant": "none",
        "crossfade": "none",
        "musical": "bar",
        "stinger": "beat",
        "duck": "none",
        "layer_in": "beat",
        "layer_out": "beat",
    }
)
ENGINE_TRANSITIONS: Mapping[TransitionType, str] = MappingProxyType(
    {
        "instant": "Instant",
        "crossfade": "Crossfade",
        "musical": "Musical",
        "stinger": "Stinger",
        "duck": "Duck",
        "layer_in": "LayerIn",
        "layer_out": "LayerOut",
    }
)
# Pd patches have no musical clock, so beat-synced transitions cannot be lowered.
PURE_DATA_TRANSITIONS: Mapping[TransitionType, str] = MappingProxyType(
    {
        "instant": "cut",
        "crossfade": "line",
        "duck": "duck",
        "layer_in": "fadein",
        "layer_out": "fadeout",
        "stinger": "line",
    }
)
WEB_AUDIO_TRANSITIONS: Mapping[TransitionType, str] = MappingProxyType(
    {
        "instant": "instant",
        "crossfade": "crossfade",
        "musical": "crossfade",
        "stinger": "crossfade",
        "duck": "duck",
        "layer_in": "layer_in",
        "layer_out": "layer_out",
    }
)

_TRANSITION_TABLES: Mapping[CompileTarget, Mapping[TransitionType, object]] = MappingProxyType(
    {
        "wwise": WWISE_TRANSITIONS,
        "fmod": FMOD_QUANTIZATION,
        "unity": ENGINE_TRANSITIONS,
        "unreal": ENGINE_TRANSITIONS,
        "pure_data": PURE_DATA_TRANSITIONS,
        "web_audio": WEB_AUDIO_TRANSITIONS,
    }
)


def native_transition(target: CompileTarget, transition: StateTransition) -> object:
    table = _TRANSITION_TABLES[target]
    try:
        return table[transition.transition_type]
    except KeyError as exc:
        raise CompileError(
            f"{target} cannot express transition type {transition.transition_type!r} "
            f"(transition {transition.id!r})"
        ) from exc


# -----------------------------------------------------------------------------
# Lowered graph
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LoweredState:
    state: AudioState
    identifier: str


@dataclass(frozen=True, slots=True)
class LoweredLayer:
    id: str
    name: str
    identifier: str
    source_ids: tuple[str, ...]
    selection: SelectionMode
    weights: tuple[float, ...]
    volume: float
    loop: bool
    implicit: bool


@dataclass(frozen=True, slots=True)
class LoweredParameter:
    parameter: Parameter
    identifier: str

    @property
    def lower_bound(self) -> float | None:
        """Declared minimum of a number parameter; runtimes clamp only to declared bounds."""
        return self.parameter.min if self.parameter.type == "number" else None

    @property
    def upper_bound(self) -> float | None:
        return self.parameter.max if self.parameter.type == "number" else None

    @property
    def minimum(self) -> float:
        """Low end of the display range (RTPC, FMOD parameter); always covers the default."""
        if self.parameter.type != "number":
            return 0.0
        if self.parameter.min is not None:
            return self.parameter.min
        floor = min(0.0, self.initial)
        return floor if self.parameter.max is None else min(floor, self.parameter.max)

    @property
    def maximum(self) -> float:
        if self.parameter.type != "number":
            return 1.0
        if self.parameter.max is not None:
            return self.parameter.max
        ceiling = max(100.0, self.initial)
        return ceiling if self.parameter.min is None else max(ceiling, self.parameter.min)

    @property
    def initial(self) -> float:
        value = self.parameter.default_value
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        if isinstance(value, (int, float)):
            return float(value)
        return 0.0


@dataclass(frozen=True, slots=True)
class LoweredGraph:
    graph: StateGraph
    project: str
    states: tuple[LoweredState, ...]
    layers: tuple[LoweredLayer, ...]
    parameters: tuple[LoweredParameter, ...]
    transitions: tuple[StateTransition, ...]

    def state_identifier(self, state_id: str) -> str:
        for lowered in self.states:
            if lowered.state.id == state_id:
                return lowered.identifier
        raise CompileError(f"Unknown state {state_id!r}")

    def layer_by_name(self, name: str) -> LoweredLayer | None:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None

    @property
    def initial_identifier(self) -> str:
        initial = self.graph.initial_state()
        assert initial is not None
        return self.state_identifier(initial.id)


def _unique_identifiers(items: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Map ``key -> identifier`` with numeric suffixes on collisions.

    Keys are processed in sorted order so the suffixes do not depend on the
    order entities were added to the graph.
    """

    taken: set[str] = set()
    result: dict[str, str] = {}
    for key, name in sorted(items):
        base = sanitize_identifier(name)
        candidate = base
        counter = 2
        while candidate in taken:
            candidate = f"{base}{counter}"
            counter += 1
        taken.add(candidate)
        result[key] = candidate
    return result


def state_identifiers(graph: StateGraph) -> dict[str, str]:
    return _unique_identifiers((state.id, state.name) for state in graph.states)


def collect_layers(graph: StateGraph) -> tuple[LoweredLayer, ...]:
    """Declared layers first, then layers states mention but never declared."""

    declared_names = {layer.name for layer in graph.layers}
    implicit_names: set[str] = set()
    for state in graph.states:
        config = state.audio_config
        for name in (*config.active_layers, *config.layer_volumes):
            if name not in declared_names:
                implicit_names.add(name)

    entries: list[tuple[str, str, bool]] = [(layer.id, layer.name, False) for layer in graph.layers]
    entries.extend((name, name, True) for name in sorted(implicit_names))
    identifiers = _unique_identifiers((f"{index:05d}", name) for index, (_, name, _) in enumerate(entries))

    lowered: list[LoweredLayer] = []
    for index, (layer_id, name, implicit) in enumerate(entries):
        definition = None if implicit else graph.get_layer(layer_id)
        lowered.append(
            LoweredLayer(
                id=layer_id,
                name=name,
                identifier=identifiers[f"{index:05d}"],
                source_ids=definition.source_ids if definition else (),
                selection=definition.selection if definition else "sequential",
                weights=definition.weights if definition else (),
                volume=definition.volume if definition else 1.0,
                loop=definition.loop if definition else True,
                implicit=implicit,
            )
        )
    return tuple(lowered)


def lower(graph: StateGraph, options: CompileOptions | None = None) -> LoweredGraph:
    options = options or CompileOptions()
    state_ids = state_identifiers(graph)
    parameter_ids = _unique_identifiers((p.name, p.name) for p in graph.parameters)
    return LoweredGraph(
        graph=graph,
        project=sanitize_identifier(options.project_name or graph.name),
        states=tuple(LoweredState(state, state_ids[state.id]) for state in graph.states),
        layers=collect_layers(graph),
        parameters=tuple(LoweredParameter(p, parameter_ids[p.name]) for p in graph.parameters),
        transitions=tuple(sorted(graph.transitions, key=lambda t: t.id)),
    )
