from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from statescore.compiler import (
    lower,
    MANIFEST_FILENAME,
    TARGET_COMPILERS,
    compile_all,
    compile_graph,
    sanitize_identifier,
    state_identifiers,
)
from statescore.config import CompileOptions
from statescore.errors import CompileError, UnknownTargetError
from statescore.graph import (
    StateGraph,
    add_layer,
    add_parameter,
    add_source,
    add_state,
    add_transition,
    create_empty_graph,
    parameter_condition,
    update_transition,
)
from statescore.logging_utils import LOG_DIR_ENV
from statescore.presets import create_graph_from_preset
from statescore.schema import COMPILE_TARGETS

STAMP = "2024-01-01T00:00:00Z"

EXPECTED_FILES = {
    "wwise": {"States.wwu", "GameParameters.wwu", "Containers.wwu", "Events.wwu", "MusicTransitions.wwu", "SoundBank.xml"},
    "fmod": {"Parameters.xml", "Events.xml", "Transitions.xml", "GameAudio.cs"},
    "unity": {"GameStates.cs", "GameAudioGraph.cs", "GameAudioController.cs", "MixerPreset.json"},
    "unreal": {"GameAudioTypes.h", "GameAudioComponent.h", "GameAudioComponent.cpp", "MS_Game.metasound.json"},
    "pure_data": {"main.pd", "state_router.pd", "layer_Music.pd"},
    "web_audio": {"processor.js", "player.js", "types.d.ts"},
}


def _game_graph() -> StateGraph:
    graph = create_empty_graph("Game", graph_id="game")
    graph = add_source(graph, id="calm", name="Calm Loop", uri="audio/calm.wav")
    graph = add_source(graph, id="drums", name="Drums", uri="audio/drums.wav")
    graph = add_layer(graph, id="music", name="Music", source_ids=["calm", "drums"], selection="weighted", weights=[0.25, 0.75])
    graph = add_state(
        graph,
        id="explore",
        name="Explore",
        is_initial=True,
        audio_config={"active_layers": ["Music"], "layer_volumes": {"Music": 0.5}},
    )
    graph = add_state(graph, id="combat", name="Combat - High", audio_config={"active_layers": ["Music"]})
    graph = add_parameter(graph, name="threat", default_value=0, min=0, max=100)
    graph = add_parameter(graph, name="alarm", type="boolean", default_value=False)
    graph = add_transition(
        graph,
        id="to_combat",
        from_state_id="explore",
        to_state_id="combat",
        priority=2,
        conditions=[parameter_condition(graph, "threat", ">", 50)],
    )
    return add_transition(
        graph,
        id="to_explore",
        from_state_id="combat",
        to_state_id="explore",
        conditions=[parameter_condition(graph, "alarm", "==", False)],
    )


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Combat - High", "CombatHigh"),
        ("explore", "Explore"),
        ("2nd wave", "_2ndWave"),
        ("   ", "Unnamed"),
        ("", "Unnamed"),
    ],
)
def test_sanitize_identifier(name: str, expected: str) -> None:
    assert sanitize_identifier(name) == expected


def test_identifier_collisions_get_numeric_suffixes() -> None:
    graph = create_empty_graph("G")
    graph = add_state(graph, id="s2", name="boss-fight")
    graph = add_state(graph, id="s1", name="Boss Fight")
    assert state_identifiers(graph) == {"s1": "BossFight", "s2": "BossFight2"}


@pytest.mark.parametrize("target", COMPILE_TARGETS)
def test_each_target_writes_its_files_and_manifest(target: str) -> None:
    artifact_set = compile_graph(_game_graph(), target, compiled_at=STAMP)
    paths = set(artifact_set.files())
    expected = {f"Game/{name}" for name in EXPECTED_FILES[target]}
    assert expected <= paths
    assert f"Game/{MANIFEST_FILENAME}" in paths
    assert all(path.startswith("Game/") for path in paths)
    manifest = json.loads(artifact_set.manifest.content)
    assert manifest["target"] == target
    assert manifest["compiledAt"] == STAMP
    assert manifest["counts"]["states"] == 2


@pytest.mark.parametrize("target", COMPILE_TARGETS)
def test_compilation_is_deterministic(target: str) -> None:
    graph = _game_graph()
    first = compile_graph(graph, target, compiled_at="2024-01-01T00:00:00Z")
    second = compile_graph(graph, target, compiled_at="2025-06-30T12:00:00Z")
    assert first.content_digest() == second.content_digest()
    manifest_path = first.manifest.path
    first_files = {path: content for path, content in first.files().items() if path != manifest_path}
    second_files = {path: content for path, content in second.files().items() if path != manifest_path}
    assert first_files == second_files


def test_state_identifiers_agree_across_targets() -> None:
    graph = _game_graph()
    seen = set()
    for target in COMPILE_TARGETS:
        manifest = json.loads(compile_graph(graph, target, compiled_at=STAMP).manifest.content)
        seen.add(tuple((state["id"], state["identifier"]) for state in manifest["states"]))
    assert seen == {(("explore", "Explore"), ("combat", "CombatHigh"))}


def test_state_identifiers_appear_in_generated_code() -> None:
    graph = _game_graph()
    unity = compile_graph(graph, "unity", compiled_at=STAMP).files()["Game/GameStates.cs"]
    unreal = compile_graph(graph, "unreal", compiled_at=STAMP).files()["Game/GameAudioTypes.h"]
    wwise = compile_graph(graph, "wwise", compiled_at=STAMP).files()["Game/States.wwu"]
    for content in (unity, unreal, wwise):
        assert "CombatHigh" in content
        assert "Explore" in content


def test_unknown_target_raises() -> None:
    with pytest.raises(UnknownTargetError):
        compile_graph(_game_graph(), "godot")


def test_graph_without_states_cannot_compile() -> None:
    with pytest.raises(CompileError):
        compile_graph(create_empty_graph("Empty"), "unity")


def test_pure_data_rejects_musical_transitions() -> None:
    graph = update_transition(_game_graph(), "to_combat", transition_type="musical")
    with pytest.raises(CompileError):
        compile_graph(graph, "pure_data")


def test_compile_all_reports_partial_success(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path))
    graph = update_transition(_game_graph(), "to_combat", transition_type="musical")
    result = compile_all(graph, compiled_at=STAMP)
    logged = (tmp_path / "statescore.log").read_text(encoding="utf-8")
    assert "compile game for pure_data failed: CompileError" in logged
    assert "Traceback" in logged
    assert not result.ok
    assert [failure.target for failure in result.failures] == ["pure_data"]
    assert "musical" in result.failures[0].message
    assert {artifact_set.target for artifact_set in result.sets} == set(COMPILE_TARGETS) - {"pure_data"}
    files = result.files()
    assert "wwise/Game/States.wwu" in files
    assert "web_audio/Game/player.js" in files
    assert result.get("pure_data") is None
    assert result.get("unity").target == "unity"


def test_compile_all_parallel_matches_sequential() -> None:
    graph = _game_graph()
    sequential = compile_all(graph, compiled_at=STAMP)
    parallel = compile_all(graph, compiled_at=STAMP, parallel=True)
    assert sequential.ok and parallel.ok
    assert sequential.files() == parallel.files()
    assert set(TARGET_COMPILERS) == set(COMPILE_TARGETS)


def test_readme_is_optional() -> None:
    graph = _game_graph()
    with_readme = compile_graph(graph, "wwise", compiled_at=STAMP).files()
    without = compile_graph(graph, "wwise", options=CompileOptions(include_readme=False), compiled_at=STAMP).files()
    assert "Game/README.md" in with_readme
    assert "Game/README.md" not in without


def test_project_name_option_overrides_graph_name() -> None:
    files = compile_graph(_game_graph(), "unity", options=CompileOptions(project_name="my game"), compiled_at=STAMP).files()
    assert "MyGame/MyGameAudioController.cs" in files


def test_special_characters_are_escaped() -> None:
    graph = create_empty_graph("Game", graph_id="escapes")
    graph = add_state(graph, id="boss", name='Fight <Boss> & "Co"', is_initial=True)
    fmod = compile_graph(graph, "fmod", compiled_at=STAMP).files()
    assert "Fight &lt;Boss&gt; &amp;" in fmod["Game/Events.xml"]
    for path, content in fmod.items():
        if path.endswith(".xml"):
            ET.fromstring(content.encode("utf-8"))
    wwise = compile_graph(graph, "wwise", compiled_at=STAMP).files()
    for path, content in wwise.items():
        if path.endswith((".wwu", ".xml")):
            ET.fromstring(content.encode("utf-8"))
    unity = compile_graph(graph, "unity", compiled_at=STAMP).files()["Game/GameStates.cs"]
    assert '"Fight <Boss> & \\"Co\\""' in unity


def test_web_audio_embeds_graph_data() -> None:
    player = compile_graph(_game_graph(), "web_audio", compiled_at=STAMP).files()["Game/player.js"]
    assert "export class GamePlayer" in player
    assert '"initialState": "Explore"' in player
    assert '"url": "audio/drums.wav"' in player


def test_presets_compile_for_every_target() -> None:
    graph = create_graph_from_preset("combat_intensity")
    result = compile_all(graph, compiled_at=STAMP)
    assert result.ok
    manifest = json.loads(result.get("unity").manifest.content)
    assert [state["identifier"] for state in manifest["states"]] == ["Exploration", "CombatLow", "CombatHigh"]
    assert any(layer["implicit"] for layer in manifest["layers"])


def _weather_graph() -> StateGraph:
    graph = create_empty_graph("Weather", graph_id="weather")
    graph = add_state(graph, id="calm", name="Calm", is_initial=True)
    graph = add_state(graph, id="storm", name="Storm")
    graph = add_parameter(graph, name="temperature", default_value=-20)
    graph = add_parameter(graph, name="wind", default_value=5, min=0)
    graph = add_parameter(graph, name="lightning", type="boolean", default_value=False)
    return add_transition(
        graph,
        id="to_storm",
        from_state_id="calm",
        to_state_id="storm",
        conditions=[parameter_condition(graph, "lightning", "==", True)],
    )


def _embedded_graph(player: str) -> dict:
    data, _ = json.JSONDecoder().raw_decode(player.split("export const GRAPH = ", 1)[1])
    return data


def test_unbounded_parameters_are_not_clamped_by_generated_runtimes() -> None:
    graph = _weather_graph()

    parameters = _embedded_graph(compile_graph(graph, "web_audio", compiled_at=STAMP).files()["Weather/player.js"])["parameters"]
    assert parameters["temperature"]["default"] == -20
    assert (parameters["temperature"]["min"], parameters["temperature"]["max"]) == (None, None)
    assert (parameters["wind"]["min"], parameters["wind"]["max"]) == (0, None)

    fmod = compile_graph(graph, "fmod", compiled_at=STAMP).files()["Weather/WeatherAudio.cs"]
    assert "Mathf.Clamp" not in fmod
    assert 'setParameterByName("Temperature", value);' in fmod
    assert 'setParameterByName("Wind", Mathf.Max(0f, value));' in fmod

    unity = compile_graph(graph, "unity", compiled_at=STAMP).files()["Weather/WeatherAudioGraph.cs"]
    temperature = next(line for line in unity.splitlines() if 'name = "temperature"' in line)
    assert "hasMin = false, hasMax = false" in temperature

    unreal = compile_graph(graph, "unreal", compiled_at=STAMP).files()["Weather/WeatherAudioComponent.cpp"]
    assert unreal.count("MinBounds.Add(") == 1
    assert "MaxBounds.Add(" not in unreal

    pd = compile_graph(graph, "pure_data", compiled_at=STAMP).files()["Weather/main.pd"]
    assert " clip " not in pd
    assert " max 0;" in pd


def test_display_range_covers_the_default() -> None:
    lowered = lower(_weather_graph())
    temperature = next(item for item in lowered.parameters if item.parameter.name == "temperature")
    assert (temperature.lower_bound, temperature.upper_bound) == (None, None)
    assert temperature.minimum <= -20 <= temperature.maximum
    wind = next(item for item in lowered.parameters if item.parameter.name == "wind")
    assert (wind.lower_bound, wind.minimum) == (0, 0)
    lightning = next(item for item in lowered.parameters if item.parameter.name == "lightning")
    assert (lightning.lower_bound, lightning.minimum, lightning.maximum) == (None, 0.0, 1.0)


def test_pure_data_master_gain_takes_a_signal() -> None:
    pd = compile_graph(_game_graph(), "pure_data", compiled_at=STAMP).files()["Game/main.pd"]
    multipliers = [line for line in pd.splitlines() if line.startswith("#X obj") and " *~" in line]
    assert multipliers
    assert all(line.endswith(" *~;") for line in multipliers)


def test_web_audio_pulses_only_satisfy_equality() -> None:
    player = compile_graph(_weather_graph(), "web_audio", compiled_at=STAMP).files()["Weather/player.js"]
    pulse_line = next(line for line in player.splitlines() if "this.pulses.has(condition.parameter)" in line)
    assert "condition.operator === '=='" in pulse_line
    assert "condition.value === true" in pulse_line
