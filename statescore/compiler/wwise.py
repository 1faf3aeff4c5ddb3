"""Audiokinetic Wwise work units (hierarchical containers, state group, RTPCs)."""

from __future__ import annotations

from ..config import CompileOptions
from ..schema import TARGET_LABELS
from .builders import XmlNode, render_xml
from .lowering import (
    WWISE_SELECTION,
    LoweredGraph,
    WwiseTransitionRule,
    db_from_linear,
    format_number,
    native_transition,
    sanitize_identifier,
    selection_weight,
    short_id,
    stable_guid,
)
from .manifest import Artifact

SCHEMA_VERSION = 119

# Wwise action types.
_ACTION_PLAY = 1
_ACTION_STOP = 2
_ACTION_SET_STATE = 19


def _guid(lowered: LoweredGraph, *parts: str) -> str:
    return "{" + stable_guid(lowered.graph.id, "wwise", *parts) + "}"


def _short(lowered: LoweredGraph, *parts: str) -> int:
    return short_id(lowered.graph.id, "wwise", *parts)


def _property(parent: XmlNode, name: str, type_: str, value: object) -> None:
    properties = next((child for child in parent.children if child.tag == "PropertyList"), None)
    if properties is None:
        properties = parent.add("PropertyList")
    properties.add("Property", Name=name, Type=type_, Value=value)


def _document(lowered: LoweredGraph, category: str, suffix: str) -> tuple[XmlNode, XmlNode]:
    unit_id = _guid(lowered, "workunit", suffix)
    root = XmlNode.of("WwiseDocument", Type="WorkUnit", ID=unit_id, SchemaVersion=SCHEMA_VERSION)
    unit = root.add(category).add(
        "WorkUnit",
        Name=f"{lowered.project}_{suffix}",
        ID=unit_id,
        PersistMode="Standalone",
    )
    return root, unit.add("ChildrenList")


def state_group_name(lowered: LoweredGraph) -> str:
    return f"{lowered.project}State"


def _event_names(lowered: LoweredGraph) -> list[str]:
    names = [f"Play_{lowered.project}", f"Stop_{lowered.project}"]
    names.extend(f"SetState_{item.identifier}" for item in lowered.states)
    extra: set[str] = set()
    for transition in lowered.transitions:
        for event in (transition.on_start_event, transition.on_complete_event):
            if event:
                extra.add(sanitize_identifier(event))
    names.extend(sorted(extra))
    return names


def _states(lowered: LoweredGraph) -> str:
    root, children = _document(lowered, "States", "States")
    group_name = state_group_name(lowered)
    group = children.add(
        "StateGroup",
        Name=group_name,
        ID=_guid(lowered, "stategroup"),
        ShortID=_short(lowered, "stategroup"),
    )
    _property(group, "DefaultTransitionTime", "Real64", lowered.graph.default_transition_duration)
    states = group.add("ChildrenList")
    for item in lowered.states:
        node = states.add(
            "State",
            Name=item.identifier,
            ID=_guid(lowered, "state", item.state.id),
            ShortID=_short(lowered, "state", item.state.id),
        )
        node.comment(item.state.name)
    return render_xml(root)


def _game_parameters(lowered: LoweredGraph) -> str:
    root, children = _document(lowered, "GameParameters", "GameParameters")
    for item in lowered.parameters:
        parameter = item.parameter
        if parameter.type == "string":
            children.comment(f"String parameter {parameter.name} has no RTPC equivalent")
            continue
        node = children.add(
            "GameParameter",
            Name=item.identifier,
            ID=_guid(lowered, "rtpc", parameter.name),
            ShortID=_short(lowered, "rtpc", parameter.name),
        )
        if parameter.description:
            node.comment(parameter.description)
        _property(node, "InitialValue", "Real64", item.initial)
        _property(node, "Max", "Real64", item.maximum)
        _property(node, "Min", "Real64", item.minimum)
        _property(node, "SimulationValue", "Real64", item.initial)
    return render_xml(root)


def _containers(lowered: LoweredGraph) -> str:
    root, children = _document(lowered, "AudioObjects", "Containers")
    mixer = children.add(
        "ActorMixer",
        Name=lowered.project,
        ID=_guid(lowered, "actormixer"),
        ShortID=_short(lowered, "actormixer"),
    )
    mixer_children = mixer.add("ChildrenList")
    sources = {source.id: source for source in lowered.graph.sources}

    for layer in lowered.layers:
        selection = WWISE_SELECTION[layer.selection]
        container = mixer_children.add(
            "RandomSequenceContainer",
            Name=layer.identifier,
            ID=_guid(lowered, "layer", layer.id),
            ShortID=_short(lowered, "layer", layer.id),
        )
        _property(container, "RandomOrSequence", "int16", selection.random_or_sequence)
        _property(container, "NormalOrShuffle", "int16", selection.normal_or_shuffle)
        _property(container, "PlayMechanismLoop", "bool", layer.loop)
        _property(container, "Volume", "Real64", db_from_linear(layer.volume))
        if not layer.source_ids:
            container.comment(f"Layer {layer.name} has no sources yet")
            continue
        sounds = container.add("ChildrenList")
        for index, source_id in enumerate(layer.source_ids):
            source = sources[source_id]
            sound = sounds.add(
                "Sound",
                Name=sanitize_identifier(source.name or source.id),
                ID=_guid(lowered, "sound", layer.id, source_id),
                ShortID=_short(lowered, "sound", layer.id, source_id),
            )
            _property(sound, "Weight", "Real64", selection_weight(layer.selection, layer.weights, index))
            file_source = sound.add("ChildrenList").add(
                "AudioFileSource",
                Name=sanitize_identifier(source.name or source.id),
                ID=_guid(lowered, "file", source_id),
            )
            file_source.add("Language", "SFX")
            file_source.add("AudioFile", source.uri or f"{source.id}.wav")

    for item in lowered.states:
        config = item.state.audio_config
        blend = mixer_children.add(
            "BlendContainer",
            Name=f"{item.identifier}_Blend",
            ID=_guid(lowered, "blend", item.state.id),
            ShortID=_short(lowered, "blend", item.state.id),
        )
        _property(blend, "Volume", "Real64", db_from_linear(config.master_volume))
        references = blend.add("ReferenceList")
        for layer_name in config.active_layers:
            layer = lowered.layer_by_name(layer_name)
            if layer is None:
                continue
            reference = references.add("Reference", Name="BlendTrack")
            reference.add(
                "ObjectRef",
                Name=layer.identifier,
                ID=_guid(lowered, "layer", layer.id),
                Volume=db_from_linear(config.volume_for(layer_name)),
            )
    return render_xml(root)


def _action(
    lowered: LoweredGraph,
    event: XmlNode,
    key: str,
    action_type: int,
    target: str,
    target_key: tuple[str, ...],
) -> None:
    action = event.add("ActionList").add(
        "Action",
        Name="",
        ID=_guid(lowered, "action", key),
        ShortID=_short(lowered, "action", key),
    )
    _property(action, "ActionType", "int16", action_type)
    action.add("ReferenceList").add("Reference", Name="Target").add(
        "ObjectRef",
        Name=target,
        ID=_guid(lowered, *target_key),
    )


def _events(lowered: LoweredGraph) -> str:
    root, children = _document(lowered, "Events", "Events")
    project = lowered.project
    for name, action_type in ((f"Play_{project}", _ACTION_PLAY), (f"Stop_{project}", _ACTION_STOP)):
        event = children.add("Event", Name=name, ID=_guid(lowered, "event", name), ShortID=_short(lowered, "event", name))
        _action(lowered, event, name, action_type, project, ("actormixer",))
    for item in lowered.states:
        name = f"SetState_{item.identifier}"
        event = children.add("Event", Name=name, ID=_guid(lowered, "event", name), ShortID=_short(lowered, "event", name))
        _action(lowered, event, name, _ACTION_SET_STATE, item.identifier, ("state", item.state.id))
    for name in _event_names(lowered)[2 + len(lowered.states):]:
        event = children.add("Event", Name=name, ID=_guid(lowered, "event", name), ShortID=_short(lowered, "event", name))
        event.comment("Posted by transitions; attach actions in the authoring tool")
    return render_xml(root)


def _music_transitions(lowered: LoweredGraph) -> str:
    root, children = _document(lowered, "InteractiveMusic", "MusicTransitions")
    switch = children.add(
        "MusicSwitchContainer",
        Name=f"{lowered.project}_Music",
        ID=_guid(lowered, "musicswitch"),
        ShortID=_short(lowered, "musicswitch"),
    )
    _property(switch, "ContinuePlayback", "bool", True)
    switch.add("ReferenceList").add("Reference", Name="SwitchGroupOrStateGroup").add(
        "ObjectRef",
        Name=state_group_name(lowered),
        ID=_guid(lowered, "stategroup"),
    )
    rules = switch.add("TransitionList")
    for transition in lowered.transitions:
        rule = native_transition("wwise", transition)
        assert isinstance(rule, WwiseTransitionRule)
        node = rules.add(
            "MusicTransition",
            Name=sanitize_identifier(transition.name or transition.id),
            ID=_guid(lowered, "transition", transition.id),
        )
        node.comment(
            f"{transition.transition_type} over {format_number(transition.duration)} ms, "
            f"priority {transition.priority}"
        )
        info = node.add("TransitionInfo")
        source = info.add("Source")
        source.add("StateRef", Name=lowered.state_identifier(transition.from_state_id))
        source.add("ExitSync", Type=rule.exit_sync)
        destination = info.add("Destination")
        destination.add("StateRef", Name=lowered.state_identifier(transition.to_state_id))
        destination.add("EntrySync", Type=rule.entry_sync)
        fades = info.add("FadeParams")
        for tag, enabled in (("FadeOut", rule.fade_out), ("FadeIn", rule.fade_in)):
            fade = fades.add(tag)
            _property(fade, "FadeCurve", "int16", 4)
            _property(fade, "FadeTime", "Real64", transition.duration if enabled else 0)
        if rule.play_stinger:
            info.add("Stinger", Name=f"{sanitize_identifier(transition.name or transition.id)}_Stinger")
    return render_xml(root)


def _soundbank(lowered: LoweredGraph) -> str:
    root = XmlNode.of("SoundBanks", Version=3)
    bank = root.add("SoundBank", Name=f"{lowered.project}_Main", Language="SFX")
    events = bank.add("IncludedEvents")
    for name in _event_names(lowered):
        events.add("Event", Name=name)
    bank.add("IncludedBusses").add("Bus", Name="Master Audio Bus")
    rtpcs = bank.add("IncludedGameParameters")
    for item in lowered.parameters:
        if item.parameter.type != "string":
            rtpcs.add("GameParameter", Name=item.identifier)
    bank.add("IncludedStates").add("StateGroup", Name=state_group_name(lowered))
    return render_xml(root)


def _readme(lowered: LoweredGraph) -> str:
    project = lowered.project
    lines = [
        f"# {project} for {TARGET_LABELS['wwise']}",
        "",
        f"Generated from the state graph \"{lowered.graph.name}\".",
        "",
        "## Import",
        "",
        "1. Copy the `.wwu` work units into the matching folders of your Wwise project.",
        "2. Point each `AudioFileSource` at the rendered source files.",
        f"3. Generate the `{project}_Main` SoundBank.",
        "",
        "## States",
        "",
        f"State group `{state_group_name(lowered)}`:",
        "",
    ]
    lines.extend(f"- `{item.identifier}` ({item.state.name})" for item in lowered.states)
    lines.extend(["", "## Game parameters", "", "| RTPC | Min | Max | Default |", "|---|---|---|---|"])
    for item in lowered.parameters:
        if item.parameter.type == "string":
            continue
        lines.append(
            f"| {item.identifier} | {format_number(item.minimum)} | "
            f"{format_number(item.maximum)} | {format_number(item.initial)} |"
        )
    lines.extend(
        [
            "",
            "## Runtime",
            "",
            "```cpp",
            f'AK::SoundEngine::PostEvent("Play_{project}", gameObjectID);',
            f'AK::SoundEngine::SetState("{state_group_name(lowered)}", "{lowered.initial_identifier}");',
            "```",
            "",
        ]
    )
    return "\n".join(lines)


def compile_wwise(lowered: LoweredGraph, options: CompileOptions) -> list[Artifact]:
    project = lowered.project
    artifacts = [
        Artifact(path=f"{project}/States.wwu", content=_states(lowered), kind="config"),
        Artifact(path=f"{project}/GameParameters.wwu", content=_game_parameters(lowered), kind="config"),
        Artifact(path=f"{project}/Containers.wwu", content=_containers(lowered), kind="config"),
        Artifact(path=f"{project}/Events.wwu", content=_events(lowered), kind="config"),
        Artifact(path=f"{project}/MusicTransitions.wwu", content=_music_transitions(lowered), kind="config"),
        Artifact(path=f"{project}/SoundBank.xml", content=_soundbank(lowered), kind="config"),
    ]
    if options.include_readme:
        artifacts.append(Artifact(path=f"{project}/README.md", content=_readme(lowered), kind="data"))
    return artifacts
