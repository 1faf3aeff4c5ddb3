"""Pure Data patches: a main mixer, one sampler abstraction per layer, a state router."""

from __future__ import annotations

from ..config import CompileOptions
from ..graph import BooleanValue, NumberValue, ParameterCondition, StateDurationCondition
from ..schema import TARGET_LABELS
from .builders import PdPatch
from .lowering import (
    PURE_DATA_SELECTION,
    LoweredGraph,
    LoweredLayer,
    format_number,
    native_transition,
)
from .manifest import Artifact

_ROW = 30


def _layer_file(layer: LoweredLayer) -> str:
    return f"layer_{layer.identifier}.pd"


def _main(lowered: LoweredGraph) -> str:
    patch = PdPatch(width=900, height=120 + _ROW * (len(lowered.layers) + len(lowered.parameters)) * 2)
    patch.text(20, 10, f"{lowered.graph.name} - generated by statescore")
    patch.obj(20, 40, "state_router")
    dac = patch.obj(20, 80 + _ROW * 2 * len(lowered.layers), "dac~")
    master = patch.obj(20, 50 + _ROW * 2 * len(lowered.layers), "*~")
    patch.connect(master, 0, dac, 0)
    patch.connect(master, 0, dac, 1)

    y = 80
    for layer in lowered.layers:
        player = patch.obj(20, y, _layer_stem(layer))
        gain = patch.obj(220, y, "r", f"gain_{layer.identifier}")
        smoothing = patch.obj(220, y + _ROW // 2, "line~")
        scaled = patch.obj(20, y + _ROW, "*~")
        patch.connect(gain, 0, smoothing, 0)
        patch.connect(player, 0, scaled, 0)
        patch.connect(smoothing, 0, scaled, 1)
        patch.connect(scaled, 0, master, 0)
        y += _ROW * 2

    master_gain = patch.obj(420, 40, "r", "master_gain")
    master_line = patch.obj(420, 70, "line~")
    patch.connect(master_gain, 0, master_line, 0)
    patch.connect(master_line, 0, master, 1)

    y = 120
    for item in lowered.parameters:
        receive = patch.obj(620, y, "r", f"param_{item.identifier}")
        send = patch.obj(760, y + _ROW // 2, "s", "param_changed")
        # Only declared bounds are enforced, one [max]/[min] per bound.
        outlet = receive
        for column, (name, bound) in enumerate((("max", item.lower_bound), ("min", item.upper_bound))):
            if bound is None:
                continue
            limiter = patch.obj(620 + column * 60, y + _ROW // 2, name, bound)
            patch.connect(outlet, 0, limiter, 0)
            outlet = limiter
        patch.connect(outlet, 0, send, 0)
        y += _ROW
    loadbang = patch.obj(420, 100, "loadbang")
    initial = patch.msg(420, 130, f"state_{lowered.initial_identifier}")
    send_state = patch.obj(420, 160, "s", "set_state")
    patch.connect(loadbang, 0, initial, 0)
    patch.connect(initial, 0, send_state, 0)
    # [*~] with no argument starts at 0.
    full_gain = patch.msg(500, 130, 1)
    patch.connect(loadbang, 0, full_gain, 0)
    patch.connect(full_gain, 0, master_line, 0)
    return patch.render()


def _layer_stem(layer: LoweredLayer) -> str:
    return _layer_file(layer)[: -len(".pd")]


def _layer(lowered: LoweredGraph, layer: LoweredLayer) -> str:
    sources = {source.id: source for source in lowered.graph.sources}
    count = max(len(layer.source_ids), 1)
    patch = PdPatch(width=600, height=200 + _ROW * count)
    patch.text(20, 10, f"Layer {layer.name} ({layer.selection})")
    receive = patch.obj(20, 40, "r", f"play_{layer.identifier}")
    # trigger fires right to left: pick the file, then start playback.
    trigger = patch.obj(20, 55, "t", "b", "b")
    patch.connect(receive, 0, trigger, 0)
    if PURE_DATA_SELECTION[layer.selection] == "counter":
        counter = patch.obj(20, 70, "f")
        increment = patch.obj(60, 70, "+", 1)
        wrap = patch.obj(100, 70, "mod", count)
        patch.connect(trigger, 1, counter, 0)
        patch.connect(counter, 0, increment, 0)
        patch.connect(increment, 0, wrap, 0)
        patch.connect(wrap, 0, counter, 1)
        chooser = counter
    else:
        chooser = patch.obj(20, 70, "random", count)
        patch.connect(trigger, 1, chooser, 0)
    select = patch.obj(20, 100, "sel", *range(count))
    patch.connect(chooser, 0, select, 0)
    player = patch.obj(20, 160 + _ROW * count, "readsf~", 2)
    start = patch.msg(200, 160 + _ROW * count, 1)
    patch.connect(trigger, 0, start, 0)
    patch.connect(start, 0, player, 0)
    outlet = patch.obj(20, 190 + _ROW * count, "outlet~")
    patch.connect(player, 0, outlet, 0)
    if layer.loop:
        again = patch.obj(200, 190 + _ROW * count, "s", f"play_{layer.identifier}")
        patch.connect(player, 2, again, 0)

    for index, source_id in enumerate(layer.source_ids):
        source = sources.get(source_id)
        uri = source.uri if source and source.uri else f"{source_id}.wav"
        message = patch.msg(20 + 120 * (index % 4), 130 + _ROW * (index // 4), "open", uri)
        patch.connect(select, index, message, 0)
        patch.connect(message, 0, player, 0)
    return patch.render()


def _condition_atoms(condition: object) -> list[object]:
    if isinstance(condition, StateDurationCondition):
        return ["elapsed", ">=", condition.threshold_ms]
    assert isinstance(condition, ParameterCondition)
    match condition.value:
        case NumberValue(value=number):
            value: object = number
        case BooleanValue(value=flag):
            value = 1 if flag else 0
        case _:
            value = str(condition.value.value)
    return [condition.parameter_name, condition.operator, value]


def _router(lowered: LoweredGraph) -> str:
    patch = PdPatch(width=900, height=200 + _ROW * 3 * max(len(lowered.transitions), 1))
    patch.text(20, 10, "State router: messages go out on set_state and layer gains")
    receive = patch.obj(20, 40, "r", "set_state")
    route = patch.obj(20, 70, "route", *(f"state_{item.identifier}" for item in lowered.states))
    patch.connect(receive, 0, route, 0)

    for index, item in enumerate(lowered.states):
        config = item.state.audio_config
        x = 20 + 160 * index
        fanout = patch.obj(x, 110, "t", "b", "b")
        patch.connect(route, index, fanout, 0)
        master = patch.msg(x, 140, format_number(config.master_volume), lowered.graph.default_transition_duration)
        send_master = patch.obj(x, 170, "s", "master_gain")
        patch.connect(fanout, 0, master, 0)
        patch.connect(master, 0, send_master, 0)
        y = 200
        for layer in lowered.layers:
            level = config.volume_for(layer.name) if layer.name in config.active_layers else 0
            gain = patch.msg(x, y, level, lowered.graph.default_transition_duration)
            send_gain = patch.obj(x, y + _ROW // 2, "s", f"gain_{layer.identifier}")
            patch.connect(fanout, 1, gain, 0)
            patch.connect(gain, 0, send_gain, 0)
            y += _ROW

    y = 220 + _ROW * len(lowered.layers)
    for transition in lowered.transitions:
        curve = native_transition("pure_data", transition)
        atoms: list[object] = [
            transition.id,
            lowered.state_identifier(transition.from_state_id),
            lowered.state_identifier(transition.to_state_id),
            curve,
            transition.duration,
            "priority",
            transition.priority,
            transition.condition_logic,
        ]
        for condition in transition.conditions:
            atoms.extend(_condition_atoms(condition))
        patch.text(20, y, " ".join(str(atom) for atom in atoms))
        y += _ROW
    return patch.render()


def _readme(lowered: LoweredGraph) -> str:
    lines = [
        f"# {lowered.project} for {TARGET_LABELS['pure_data']}",
        "",
        "Open `main.pd`. Send `state_<Name>` to `set_state` to switch states,",
        "and float values to `param_<Name>` to drive parameters.",
        "",
        "States: " + ", ".join(f"`{item.identifier}`" for item in lowered.states),
        "",
    ]
    return "\n".join(lines)


def compile_pure_data(lowered: LoweredGraph, options: CompileOptions) -> list[Artifact]:
    project = lowered.project
    # Lower transitions first so an unsupported type fails before any patch is built.
    for transition in lowered.transitions:
        native_transition("pure_data", transition)
    artifacts = [
        Artifact(path=f"{project}/main.pd", content=_main(lowered), kind="code"),
        Artifact(path=f"{project}/state_router.pd", content=_router(lowered), kind="code"),
    ]
    artifacts.extend(
        Artifact(path=f"{project}/{_layer_file(layer)}", content=_layer(lowered, layer), kind="code")
        for layer in lowered.layers
    )
    if options.include_readme:
        artifacts.append(Artifact(path=f"{project}/README.md", content=_readme(lowered), kind="data"))
    return artifacts
