"""FMOD Studio event/parameter model plus a Unity-side C# wrapper."""

from __future__ import annotations

from typing import Sequence

from ..config import CompileOptions
from ..schema import TARGET_LABELS
from .builders import CodeWriter, XmlNode, comment_text, csharp_string, render_xml
from .lowering import (
    FMOD_SELECTION,
    LoweredGraph,
    LoweredParameter,
    db_from_linear,
    format_number,
    native_transition,
    sanitize_identifier,
    selection_weight,
    stable_guid,
)
from .manifest import Artifact

SERIALIZATION_MODEL = "Studio.02.02.00"
STATE_PARAMETER = "State"


def _guid(lowered: LoweredGraph, *parts: str) -> str:
    return "{" + stable_guid(lowered.graph.id, "fmod", *parts).lower() + "}"


def _objects() -> XmlNode:
    return XmlNode.of("objects", serializationModel=SERIALIZATION_MODEL)


def _object(parent: XmlNode, cls: str, guid: str) -> XmlNode:
    return parent.add("object", **{"class": cls, "id": guid})


def _prop(node: XmlNode, name: str, *values: object) -> None:
    prop = node.add("property", name=name)
    for value in values:
        prop.add("value", _text(value))


def _relationship(node: XmlNode, name: str, destinations: Sequence[str]) -> None:
    relationship = node.add("relationship", name=name)
    for destination in destinations:
        relationship.add("destination", destination)


def _text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def event_path(lowered: LoweredGraph) -> str:
    return f"event:/{lowered.project}/Music"


def _parameters(lowered: LoweredGraph) -> str:
    root = _objects()
    state = _object(root, "ParameterPreset", _guid(lowered, "parameter", STATE_PARAMETER))
    _prop(state, "name", STATE_PARAMETER)
    _prop(state, "type", "labeled")
    _prop(state, "labels", *(item.identifier for item in lowered.states))
    _prop(state, "initialValue", lowered.initial_identifier)
    _prop(state, "isGlobal", False)

    for item in lowered.parameters:
        parameter = item.parameter
        if parameter.type == "string":
            root.comment(f"String parameter {parameter.name} is not exported")
            continue
        node = _object(root, "ParameterPreset", _guid(lowered, "parameter", parameter.name))
        _prop(node, "name", item.identifier)
        _prop(node, "type", "continuous" if parameter.type == "number" else "discrete")
        _prop(node, "minimum", item.minimum)
        _prop(node, "maximum", item.maximum)
        _prop(node, "initialValue", item.initial)
        if parameter.description:
            _prop(node, "description", parameter.description)
    return render_xml(root)


def _events(lowered: LoweredGraph) -> str:
    root = _objects()
    sources = {source.id: source for source in lowered.graph.sources}
    event = _object(root, "Event", _guid(lowered, "event"))
    _prop(event, "name", "Music")
    _prop(event, "path", event_path(lowered))

    instruments: list[str] = []
    for layer in lowered.layers:
        guid = _guid(lowered, "layer", layer.id)
        instruments.append(guid)
        multi = _object(root, "MultiSound", guid)
        _prop(multi, "name", layer.identifier)
        _prop(multi, "playlistMode", FMOD_SELECTION[layer.selection])
        _prop(multi, "looping", layer.loop)
        _prop(multi, "volume", db_from_linear(layer.volume))
        entries: list[str] = []
        for index, source_id in enumerate(layer.source_ids):
            entry_guid = _guid(lowered, "entry", layer.id, source_id)
            entries.append(entry_guid)
            entry = _object(root, "SingleSound", entry_guid)
            _prop(entry, "name", sources[source_id].name or source_id)
            _prop(entry, "audioFile", sources[source_id].uri or f"{source_id}.wav")
            _prop(entry, "playPercentage", selection_weight(layer.selection, layer.weights, index))
        _relationship(multi, "sounds", entries)
    _relationship(event, "instruments", instruments)

    snapshots: list[str] = []
    for item in lowered.states:
        config = item.state.audio_config
        guid = _guid(lowered, "snapshot", item.state.id)
        snapshots.append(guid)
        snapshot = _object(root, "Snapshot", guid)
        _prop(snapshot, "name", item.identifier)
        _prop(snapshot, "label", item.state.name)
        _prop(snapshot, "masterVolume", db_from_linear(config.master_volume))
        for layer in lowered.layers:
            active = layer.name in config.active_layers
            level = db_from_linear(config.volume_for(layer.name)) if active else -80
            _prop(snapshot, f"volume.{layer.identifier}", level)
    _relationship(event, "snapshots", snapshots)
    return render_xml(root)


def _transitions(lowered: LoweredGraph) -> str:
    root = _objects()
    for transition in lowered.transitions:
        quantization = native_transition("fmod", transition)
        marker = _object(root, "TransitionMarker", _guid(lowered, "transition", transition.id))
        _prop(marker, "name", sanitize_identifier(transition.name or transition.id))
        _prop(marker, "fromLabel", lowered.state_identifier(transition.from_state_id))
        _prop(marker, "toLabel", lowered.state_identifier(transition.to_state_id))
        _prop(marker, "quantization", quantization)
        _prop(marker, "fadeDuration", transition.duration)
        _prop(marker, "priority", transition.priority)
        _prop(marker, "conditionLogic", transition.condition_logic)
        if transition.cooldown_ms:
            _prop(marker, "cooldown", transition.cooldown_ms)
    return render_xml(root)


def _clamped(item: LoweredParameter) -> str:
    value = "value"
    if item.lower_bound is not None:
        value = f"Mathf.Max({format_number(item.lower_bound)}f, {value})"
    if item.upper_bound is not None:
        value = f"Mathf.Min({format_number(item.upper_bound)}f, {value})"
    return value


def _wrapper(lowered: LoweredGraph) -> str:
    project = lowered.project
    writer = CodeWriter()
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: FMOD Studio bindings",
        "",
        "using FMODUnity;",
        "using UnityEngine;",
        "",
    )
    with writer.block(f"public class {project}Audio : MonoBehaviour"):
        writer.line(f"public const string EventPath = {csharp_string(event_path(lowered))};")
        writer.line(f"public const string StateParameter = {csharp_string(STATE_PARAMETER)};")
        writer.line()
        with writer.block("public enum State"):
            for item in lowered.states:
                writer.line(f"{item.identifier},")
        writer.line()
        writer.line("private FMOD.Studio.EventInstance instance;")
        writer.line()
        with writer.block("private void Start()"):
            writer.line("instance = RuntimeManager.CreateInstance(EventPath);")
            writer.line(f"SetState(State.{lowered.initial_identifier});")
            writer.line("instance.start();")
        writer.line()
        with writer.block("public void SetState(State state)"):
            writer.line("instance.setParameterByNameWithLabel(StateParameter, state.ToString());")
        for item in lowered.parameters:
            if item.parameter.type == "string":
                continue
            writer.line()
            if item.parameter.type == "boolean":
                with writer.block(f"public void Set{item.identifier}(bool value)"):
                    writer.line(
                        f"instance.setParameterByName({csharp_string(item.identifier)}, value ? 1f : 0f);"
                    )
            else:
                with writer.block(f"public void Set{item.identifier}(float value)"):
                    writer.line(f"instance.setParameterByName({csharp_string(item.identifier)}, {_clamped(item)});")
        writer.line()
        with writer.block("private void OnDestroy()"):
            writer.line("instance.stop(FMOD.Studio.STOP_MODE.ALLOWFADEOUT);")
            writer.line("instance.release();")
    return writer.render()


def _readme(lowered: LoweredGraph) -> str:
    lines = [
        f"# {lowered.project} for {TARGET_LABELS['fmod']}",
        "",
        f"Generated from the state graph \"{lowered.graph.name}\".",
        "",
        f"- Event: `{event_path(lowered)}`",
        f"- Labeled parameter `{STATE_PARAMETER}`: "
        + ", ".join(f"`{item.identifier}`" for item in lowered.states),
        f"- Layers: {len(lowered.layers)} multi-instrument(s)",
        f"- Transitions: {len(lowered.transitions)} marker(s)",
        "",
        f"Drop `{lowered.project}Audio.cs` on a GameObject to drive the event from Unity.",
        "",
    ]
    return "\n".join(lines)


def compile_fmod(lowered: LoweredGraph, options: CompileOptions) -> list[Artifact]:
    project = lowered.project
    artifacts = [
        Artifact(path=f"{project}/Parameters.xml", content=_parameters(lowered), kind="config"),
        Artifact(path=f"{project}/Events.xml", content=_events(lowered), kind="config"),
        Artifact(path=f"{project}/Transitions.xml", content=_transitions(lowered), kind="config"),
        Artifact(path=f"{project}/{project}Audio.cs", content=_wrapper(lowered), kind="code"),
    ]
    if options.include_readme:
        artifacts.append(Artifact(path=f"{project}/README.md", content=_readme(lowered), kind="data"))
    return artifacts
