"""Unity C# scripts: state enum, ScriptableObject graph data, runtime controller."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from ..config import CompileOptions
from ..graph import (
    BooleanValue,
    NumberValue,
    ParameterCondition,
    StateDurationCondition,
    StateTransition,
    StringValue,
)
from ..schema import ComparisonOperator
from .builders import CodeWriter, comment_text, csharp_string, render_json
from .lowering import (
    ENGINE_SELECTION,
    LoweredGraph,
    db_from_linear,
    format_number,
    native_transition,
)
from .manifest import Artifact

_OPERATORS: Mapping[ComparisonOperator, str] = MappingProxyType(
    {
        ">": "Greater",
        "<": "Less",
        ">=": "GreaterOrEqual",
        "<=": "LessOrEqual",
        "==": "Equal",
    }
)


def _float(value: float) -> str:
    return f"{format_number(value)}f"


def _string_array(values: tuple[str, ...] | list[str]) -> str:
    return "new[] { " + ", ".join(csharp_string(value) for value in values) + " }" if values else "new string[0]"


def _float_array(values: tuple[float, ...] | list[float]) -> str:
    return "new[] { " + ", ".join(_float(value) for value in values) + " }" if values else "new float[0]"


def _states(lowered: LoweredGraph) -> str:
    writer = CodeWriter()
    writer.lines(f"// {comment_text(lowered.graph.name)}: audio states", "")
    with writer.block(f"public enum {lowered.project}State"):
        for item in lowered.states:
            writer.line(f"{item.identifier}, // {comment_text(item.state.name)}")
    writer.line()
    with writer.block(f"public static class {lowered.project}StateInfo"):
        writer.line(f"public const {lowered.project}State Initial = {lowered.project}State.{lowered.initial_identifier};")
        writer.line()
        with writer.block(f"public static string DisplayName({lowered.project}State state)"):
            with writer.block("switch (state)"):
                for item in lowered.states:
                    writer.line(
                        f"case {lowered.project}State.{item.identifier}: return {csharp_string(item.state.name)};"
                    )
                writer.line("default: return state.ToString();")
    return writer.render()


def _condition(condition: object) -> str:
    if isinstance(condition, ParameterCondition):
        op = f"ComparisonOperator.{_OPERATORS[condition.operator]}"
        name = csharp_string(condition.parameter_name)
        match condition.value:
            case NumberValue(value=number):
                return f"Condition.Number({name}, {op}, {_float(number)})"
            case BooleanValue(value=flag):
                return f"Condition.Boolean({name}, {op}, {'true' if flag else 'false'})"
            case StringValue(value=text):
                return f"Condition.Text({name}, {op}, {csharp_string(text)})"
    assert isinstance(condition, StateDurationCondition)
    return f"Condition.StateDuration({_float(condition.threshold_ms)})"


def _transition(lowered: LoweredGraph, transition: StateTransition) -> list[str]:
    state_enum = f"{lowered.project}State"
    conditions = ", ".join(_condition(condition) for condition in transition.conditions)
    return [
        "new TransitionDefinition {",
        f"    id = {csharp_string(transition.id)},",
        f"    from = {state_enum}.{lowered.state_identifier(transition.from_state_id)},",
        f"    to = {state_enum}.{lowered.state_identifier(transition.to_state_id)},",
        f"    type = TransitionType.{native_transition('unity', transition)},",
        f"    durationMs = {_float(transition.duration)},",
        f"    priority = {transition.priority},",
        f"    anyCondition = {'true' if transition.condition_logic == 'OR' else 'false'},",
        f"    cooldownMs = {_float(transition.cooldown_ms or 0)},",
        f"    conditions = new Condition[] {{ {conditions} }},",
        "},",
    ]


def _graph(lowered: LoweredGraph) -> str:
    project = lowered.project
    state_enum = f"{project}State"
    writer = CodeWriter()
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: graph data",
        "",
        "using System;",
        "using System.Collections.Generic;",
        "using UnityEngine;",
        "",
        f'[CreateAssetMenu(fileName = "{project}AudioGraph", menuName = "Audio/{project} Audio Graph")]',
    )
    with writer.block(f"public class {project}AudioGraph : ScriptableObject"):
        writer.line("public enum SelectionMode { Random, Sequential, RoundRobin, Weighted, Shuffle }")
        writer.line("public enum TransitionType { Instant, Crossfade, Musical, Stinger, Duck, LayerIn, LayerOut }")
        writer.line("public enum ComparisonOperator { Greater, Less, GreaterOrEqual, LessOrEqual, Equal }")
        writer.line("public enum ConditionKind { Number, Boolean, Text, StateDuration }")
        writer.line()
        writer.line("[Serializable]")
        with writer.block("public class Condition"):
            writer.lines(
                "public ConditionKind kind;",
                "public string parameter;",
                "public ComparisonOperator op;",
                "public float number;",
                "public bool flag;",
                "public string text;",
                "",
                "public static Condition Number(string p, ComparisonOperator o, float v) => "
                "new Condition { kind = ConditionKind.Number, parameter = p, op = o, number = v };",
                "public static Condition Boolean(string p, ComparisonOperator o, bool v) => "
                "new Condition { kind = ConditionKind.Boolean, parameter = p, op = o, flag = v };",
                "public static Condition Text(string p, ComparisonOperator o, string v) => "
                "new Condition { kind = ConditionKind.Text, parameter = p, op = o, text = v };",
                "public static Condition StateDuration(float ms) => "
                "new Condition { kind = ConditionKind.StateDuration, number = ms };",
            )
        writer.line()
        writer.line("[Serializable]")
        with writer.block("public class LayerDefinition"):
            writer.lines(
                "public string name;",
                "public SelectionMode selection;",
                "public float volume;",
                "public bool loop;",
                "public string[] sourceIds;",
                "public float[] weights;",
            )
        writer.line()
        writer.line("[Serializable]")
        with writer.block("public class ParameterDefinition"):
            writer.lines(
                "public string name;",
                "public bool isBoolean;",
                "public bool isText;",
                "public bool hasMin;",
                "public bool hasMax;",
                "public float min;",
                "public float max;",
                "public float defaultNumber;",
                "public string defaultText;",
            )
        writer.line()
        writer.line("[Serializable]")
        with writer.block("public class StateDefinition"):
            writer.lines(
                f"public {state_enum} state;",
                "public string displayName;",
                "public string[] activeLayers;",
                "public float[] layerVolumes;",
                "public float masterVolume;",
            )
        writer.line()
        writer.line("[Serializable]")
        with writer.block("public class TransitionDefinition"):
            writer.lines(
                "public string id;",
                f"public {state_enum} from;",
                f"public {state_enum} to;",
                "public TransitionType type;",
                "public float durationMs;",
                "public int priority;",
                "public bool anyCondition;",
                "public float cooldownMs;",
                "public Condition[] conditions;",
            )
        writer.line()
        writer.line(f"public {state_enum} initialState = {state_enum}.{lowered.initial_identifier};")
        writer.line()
        with writer.block("public List<LayerDefinition> layers = new List<LayerDefinition>", closer="};"):
            for layer in lowered.layers:
                writer.line(
                    f"new LayerDefinition {{ name = {csharp_string(layer.identifier)}, "
                    f"selection = SelectionMode.{ENGINE_SELECTION[layer.selection]}, "
                    f"volume = {_float(layer.volume)}, loop = {'true' if layer.loop else 'false'}, "
                    f"sourceIds = {_string_array(layer.source_ids)}, weights = {_float_array(layer.weights)} }},"
                )
        writer.line()
        with writer.block("public List<ParameterDefinition> parameters = new List<ParameterDefinition>", closer="};"):
            for item in lowered.parameters:
                parameter = item.parameter
                default_text = parameter.default_value if parameter.type == "string" else ""
                writer.line(
                    f"new ParameterDefinition {{ name = {csharp_string(parameter.name)}, "
                    f"isBoolean = {'true' if parameter.type == 'boolean' else 'false'}, "
                    f"isText = {'true' if parameter.type == 'string' else 'false'}, "
                    f"hasMin = {'true' if item.lower_bound is not None else 'false'}, "
                    f"hasMax = {'true' if item.upper_bound is not None else 'false'}, "
                    f"min = {_float(item.minimum)}, max = {_float(item.maximum)}, "
                    f"defaultNumber = {_float(item.initial)}, defaultText = {csharp_string(str(default_text))} }},"
                )
        writer.line()
        with writer.block("public List<StateDefinition> states = new List<StateDefinition>", closer="};"):
            for item in lowered.states:
                config = item.state.audio_config
                names = [lowered.layer_by_name(name) for name in config.active_layers]
                identifiers = [layer.identifier for layer in names if layer is not None]
                volumes = [config.volume_for(name) for name in config.active_layers]
                writer.line(
                    f"new StateDefinition {{ state = {state_enum}.{item.identifier}, "
                    f"displayName = {csharp_string(item.state.name)}, "
                    f"activeLayers = {_string_array(identifiers)}, layerVolumes = {_float_array(volumes)}, "
                    f"masterVolume = {_float(config.master_volume)} }},"
                )
        writer.line()
        with writer.block(
            "public List<TransitionDefinition> transitions = new List<TransitionDefinition>", closer="};"
        ):
            for transition in lowered.transitions:
                writer.lines(*_transition(lowered, transition))
    return writer.render()


def _controller(lowered: LoweredGraph) -> str:
    project = lowered.project
    graph_type = f"{project}AudioGraph"
    state_enum = f"{project}State"
    writer = CodeWriter()
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: runtime controller",
        "",
        "using System;",
        "using System.Collections.Generic;",
        "using System.Linq;",
        "using UnityEngine;",
        "",
    )
    with writer.block(f"public class {project}AudioController : MonoBehaviour"):
        writer.lines(
            f"public {graph_type} graph;",
            "",
            f"public event Action<{graph_type}.TransitionDefinition> OnTransition;",
            f"public event Action<{graph_type}.StateDefinition> OnStateEntered;",
            "",
            f"public {state_enum} CurrentState {{ get; private set; }}",
            "",
            "private readonly Dictionary<string, float> numbers = new Dictionary<string, float>();",
            "private readonly Dictionary<string, string> texts = new Dictionary<string, string>();",
            "private readonly HashSet<string> pulses = new HashSet<string>();",
            "private readonly Dictionary<string, float> cooldowns = new Dictionary<string, float>();",
            "private float stateElapsedMs;",
            "",
        )
        with writer.block("private void Awake()"):
            writer.line("CurrentState = graph.initialState;")
            with writer.block("foreach (var p in graph.parameters)"):
                writer.line("if (p.isText) texts[p.name] = p.defaultText; else numbers[p.name] = p.defaultNumber;")
        writer.line()
        with writer.block("public void SetParameter(string name, float value)"):
            writer.line("var p = graph.parameters.FirstOrDefault(x => x.name == name);")
            writer.line("if (p == null || p.isText) return;")
            writer.line("if (!p.isBoolean && p.hasMin) value = Mathf.Max(p.min, value);")
            writer.line("if (!p.isBoolean && p.hasMax) value = Mathf.Min(p.max, value);")
            writer.line("numbers[name] = value;")
        writer.line()
        with writer.block("public void SetParameter(string name, string value)"):
            writer.line("if (texts.ContainsKey(name)) texts[name] = value;")
        writer.line()
        writer.line("public void TriggerEvent(string name) => pulses.Add(name);")
        writer.line()
        with writer.block("private void Update()"):
            writer.line("float delta = Time.deltaTime * 1000f;")
            writer.line("stateElapsedMs += delta;")
            with writer.block("foreach (var key in cooldowns.Keys.ToList())"):
                writer.line("cooldowns[key] -= delta;")
                writer.line("if (cooldowns[key] <= 0f) cooldowns.Remove(key);")
            writer.line("var fired = graph.transitions")
            with writer.indented():
                writer.lines(
                    ".Where(t => t.from == CurrentState && !cooldowns.ContainsKey(t.id))",
                    ".OrderByDescending(t => t.priority)",
                    ".ThenBy(t => t.id, StringComparer.Ordinal)",
                    ".FirstOrDefault(Evaluate);",
                )
            writer.line("pulses.Clear();")
            writer.line("if (fired != null) Execute(fired);")
        writer.line()
        with writer.block(f"private bool Evaluate({graph_type}.TransitionDefinition t)"):
            writer.line("// AND over no conditions is true, OR over no conditions is false.")
            writer.line("return t.anyCondition ? t.conditions.Any(Check) : t.conditions.All(Check);")
        writer.line()
        with writer.block(f"private bool Check({graph_type}.Condition c)"):
            with writer.block("switch (c.kind)"):
                writer.line(f"case {graph_type}.ConditionKind.StateDuration:")
                writer.line("    return stateElapsedMs >= c.number;")
                writer.line(f"case {graph_type}.ConditionKind.Text:")
                writer.line(f"    return c.op == {graph_type}.ComparisonOperator.Equal")
                writer.line("        && texts.TryGetValue(c.parameter, out var s) && s == c.text;")
                writer.line(f"case {graph_type}.ConditionKind.Boolean:")
                writer.line("    if (pulses.Contains(c.parameter)) return c.flag;")
                writer.line(f"    return c.op == {graph_type}.ComparisonOperator.Equal")
                writer.line("        && numbers.TryGetValue(c.parameter, out var b) && (b != 0f) == c.flag;")
                writer.line("default:")
                writer.line("    if (!numbers.TryGetValue(c.parameter, out var v)) return false;")
                with writer.indented():
                    with writer.block("switch (c.op)"):
                        writer.lines(
                            f"case {graph_type}.ComparisonOperator.Greater: return v > c.number;",
                            f"case {graph_type}.ComparisonOperator.Less: return v < c.number;",
                            f"case {graph_type}.ComparisonOperator.GreaterOrEqual: return v >= c.number;",
                            f"case {graph_type}.ComparisonOperator.LessOrEqual: return v <= c.number;",
                            "default: return v == c.number;",
                        )
        writer.line()
        with writer.block(f"private void Execute({graph_type}.TransitionDefinition t)"):
            writer.line("OnTransition?.Invoke(t);")
            writer.line("if (t.cooldownMs > 0f) cooldowns[t.id] = t.cooldownMs;")
            writer.line("CurrentState = t.to;")
            writer.line("stateElapsedMs = 0f;")
            writer.line("OnStateEntered?.Invoke(graph.states.First(s => s.state == t.to));")
    return writer.render()


def _mixer_preset(lowered: LoweredGraph) -> str:
    data = {
        "mixer": f"{lowered.project}Mixer",
        "groups": [
            {"name": layer.identifier, "volumeDb": db_from_linear(layer.volume), "loop": layer.loop}
            for layer in lowered.layers
        ],
        "snapshots": [
            {
                "name": item.identifier,
                "masterVolumeDb": db_from_linear(item.state.audio_config.master_volume),
                "groups": {
                    layer.identifier: (
                        db_from_linear(item.state.audio_config.volume_for(layer.name))
                        if layer.name in item.state.audio_config.active_layers
                        else -80.0
                    )
                    for layer in lowered.layers
                },
            }
            for item in lowered.states
        ],
        "initialSnapshot": lowered.initial_identifier,
    }
    return render_json(data)


def compile_unity(lowered: LoweredGraph, options: CompileOptions) -> list[Artifact]:
    project = lowered.project
    return [
        Artifact(path=f"{project}/{project}States.cs", content=_states(lowered), kind="code"),
        Artifact(path=f"{project}/{project}AudioGraph.cs", content=_graph(lowered), kind="code"),
        Artifact(path=f"{project}/{project}AudioController.cs", content=_controller(lowered), kind="code"),
        Artifact(path=f"{project}/MixerPreset.json", content=_mixer_preset(lowered), kind="config"),
    ]
