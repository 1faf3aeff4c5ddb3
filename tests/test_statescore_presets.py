from __future__ import annotations

import pytest

from statescore.errors import PresetNotFoundError
from statescore.graph import validate_graph
from statescore.presets import PRESET_GRAPHS, create_graph_from_preset, list_presets


def test_list_presets_in_declaration_order() -> None:
    keys = [key for key, _, _ in list_presets()]
    assert keys == ["combat_intensity", "day_night_cycle"]
    assert list_presets()[0][1] == "Combat Intensity"


@pytest.mark.parametrize("key", list(PRESET_GRAPHS))
def test_every_preset_is_a_valid_graph(key: str) -> None:
    graph = create_graph_from_preset(key)
    assert validate_graph(graph) is graph
    assert graph.initial_state() is not None
    assert graph.transitions


def test_lookup_by_index_and_display_name() -> None:
    by_index = create_graph_from_preset(1)
    by_name = create_graph_from_preset("day/night cycle")
    assert by_index.name == by_name.name == "Day/Night Cycle"
    assert [s.id for s in by_index.states] == ["day", "sunset", "night"]


def test_each_call_returns_a_fresh_graph() -> None:
    first = create_graph_from_preset("combat_intensity")
    second = create_graph_from_preset("combat_intensity", name="Arena")
    assert first.id != second.id
    assert second.name == "Arena"
    assert first.states == second.states


def test_combat_preset_shape() -> None:
    graph = create_graph_from_preset("combat_intensity")
    assert graph.initial_state().id == "exploration"
    assert {p.name for p in graph.parameters} == {"health", "enemies_nearby", "is_detected"}
    assert graph.get_parameter("is_detected").type == "boolean"


@pytest.mark.parametrize("preset", ["missing", 2, -1])
def test_unknown_preset(preset: object) -> None:
    with pytest.raises(PresetNotFoundError):
        create_graph_from_preset(preset)
