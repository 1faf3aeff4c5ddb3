from __future__ import annotations

import pytest

from statescore.errors import GraphValidationError, UnknownEntityError
from statescore.graph import (
    BooleanValue,
    NumberValue,
    Parameter,
    ParameterCondition,
    StateAudioConfig,
    StateGraph,
    add_layer,
    add_parameter,
    add_source,
    add_state,
    add_transition,
    create_empty_graph,
    delete_parameter,
    delete_source,
    delete_state,
    delete_transition,
    duplicate_graph,
    duration_condition,
    parameter_condition,
    rename_graph,
    set_initial_state,
    update_parameter,
    update_state,
    update_transition,
)


def _two_state_graph() -> StateGraph:
    graph = create_empty_graph("Test", graph_id="g1")
    graph = add_state(graph, id="a", name="A", is_initial=True)
    graph = add_state(graph, id="b", name="B")
    graph = add_parameter(graph, name="threat", default_value=0, min=0, max=100)
    return add_transition(
        graph,
        id="a_to_b",
        from_state_id="a",
        to_state_id="b",
        conditions=[parameter_condition(graph, "threat", ">", 50)],
    )


def test_empty_graph_has_no_states() -> None:
    graph = create_empty_graph("Empty")
    assert graph.states == ()
    assert graph.initial_state() is None
    assert graph.id.startswith("graph_")


def test_initial_state_falls_back_to_first_state() -> None:
    graph = create_empty_graph("G")
    graph = add_state(graph, id="x", name="X")
    graph = add_state(graph, id="y", name="Y")
    assert graph.initial_state().id == "x"


def test_add_initial_state_demotes_previous_initial() -> None:
    graph = _two_state_graph()
    graph = add_state(graph, id="c", name="C", is_initial=True)
    assert [s.id for s in graph.states if s.is_initial] == ["c"]
    graph = set_initial_state(graph, "b")
    assert graph.initial_state().id == "b"
    assert not graph.get_state("c").is_initial


def test_duplicate_state_id_rejected() -> None:
    graph = _two_state_graph()
    with pytest.raises(GraphValidationError):
        add_state(graph, id="a", name="Again")


def test_mutations_return_new_graphs() -> None:
    graph = _two_state_graph()
    updated = update_state(graph, "a", name="Renamed")
    assert graph.get_state("a").name == "A"
    assert updated.get_state("a").name == "Renamed"


def test_delete_state_cascades_to_transitions() -> None:
    graph = _two_state_graph()
    graph = add_transition(graph, id="b_to_a", from_state_id="b", to_state_id="a")
    graph = delete_state(graph, "b")
    assert [s.id for s in graph.states] == ["a"]
    assert graph.transitions == ()


def test_delete_unknown_state_raises() -> None:
    with pytest.raises(UnknownEntityError):
        delete_state(_two_state_graph(), "missing")


def test_add_transition_ignores_self_loop_and_duplicate_pair() -> None:
    graph = _two_state_graph()
    assert add_transition(graph, from_state_id="a", to_state_id="a") is graph
    assert add_transition(graph, from_state_id="a", to_state_id="b") is graph


def test_add_transition_rejects_unknown_endpoint() -> None:
    with pytest.raises(GraphValidationError):
        add_transition(_two_state_graph(), from_state_id="a", to_state_id="nowhere")


def test_add_transition_uses_graph_defaults() -> None:
    graph = _two_state_graph()
    graph = add_transition(graph, id="b_to_a", from_state_id="b", to_state_id="a")
    transition = graph.get_transition("b_to_a")
    assert transition.duration == graph.default_transition_duration
    assert transition.transition_type == graph.default_transition_type
    assert transition.condition_logic == "AND"
    assert transition.priority == 0


def test_update_and_delete_transition() -> None:
    graph = _two_state_graph()
    graph = update_transition(graph, "a_to_b", priority=7, transitionType="musical")
    transition = graph.get_transition("a_to_b")
    assert transition.priority == 7
    assert transition.transition_type == "musical"
    graph = delete_transition(graph, "a_to_b")
    assert graph.transitions == ()
    with pytest.raises(UnknownEntityError):
        delete_transition(graph, "a_to_b")


def test_parameter_condition_is_typed_by_declaration() -> None:
    graph = _two_state_graph()
    graph = add_parameter(graph, name="alert", type="boolean", default_value=False)
    numeric = parameter_condition(graph, "threat", ">", 5)
    flag = parameter_condition(graph, "alert", "==", True)
    assert numeric.value == NumberValue(value=5.0)
    assert flag.value == BooleanValue(value=True)
    with pytest.raises(GraphValidationError):
        parameter_condition(graph, "threat", ">", "high")


def test_condition_wraps_raw_scalar_values() -> None:
    condition = ParameterCondition.model_validate(
        {"parameterName": "x", "operator": "==", "value": "rain"}
    )
    assert condition.value.type == "string"


def test_duplicate_parameter_name_rejected() -> None:
    with pytest.raises(GraphValidationError):
        add_parameter(_two_state_graph(), name="threat", default_value=1)


def test_parameter_declaration_checks() -> None:
    with pytest.raises(ValueError):
        Parameter(name="flag", type="boolean", default_value=True, min=0)
    with pytest.raises(ValueError):
        Parameter(name="n", default_value=0, min=10, max=1)
    with pytest.raises(ValueError):
        Parameter(name="n", type="number", default_value="zero")


def test_parameter_clamp() -> None:
    parameter = Parameter(name="n", default_value=0, min=0, max=100)
    assert parameter.clamp(150) == 100
    assert parameter.clamp(-3) == 0
    assert parameter.clamp(42) == 42


def test_update_parameter_keeps_name_immutable() -> None:
    graph = _two_state_graph()
    graph = update_parameter(graph, "threat", max=10)
    assert graph.get_parameter("threat").max == 10
    with pytest.raises(GraphValidationError):
        update_parameter(graph, "threat", name="danger")
    graph = delete_parameter(graph, "threat")
    assert graph.parameters == ()


def test_layers_must_reference_declared_sources() -> None:
    graph = _two_state_graph()
    with pytest.raises(GraphValidationError):
        add_layer(graph, id="l1", name="drums", source_ids=["missing"])


def test_delete_source_drops_it_from_layers() -> None:
    graph = _two_state_graph()
    graph = add_source(graph, id="s1", name="Kick")
    graph = add_source(graph, id="s2", name="Snare")
    graph = add_layer(graph, id="l1", name="drums", source_ids=["s1", "s2"], selection="weighted", weights=[0.3, 0.7])
    graph = delete_source(graph, "s1")
    layer = graph.get_layer("l1")
    assert layer.source_ids == ("s2",)
    assert layer.weights == (0.7,)


def test_round_trip_through_wire_dict() -> None:
    graph = _two_state_graph()
    graph = update_transition(graph, "a_to_b", conditions=[duration_condition(250)])
    data = graph.to_dict()
    assert "fromStateId" in data["transitions"][0]
    assert data["states"][0]["isInitial"] is True
    assert StateGraph.from_dict(data) == graph


def test_from_dict_wraps_validation_errors() -> None:
    with pytest.raises(GraphValidationError):
        StateGraph.from_dict({"id": "g", "name": "G", "states": [{"id": "a"}]})


def test_graph_constructor_rejects_dangling_transition() -> None:
    with pytest.raises(GraphValidationError):
        StateGraph.model_validate(
            {
                "id": "g",
                "name": "G",
                "states": [{"id": "a", "name": "A"}],
                "transitions": [{"id": "t", "fromStateId": "a", "toStateId": "b"}],
            }
        )


def test_duplicate_and_rename_graph() -> None:
    graph = _two_state_graph()
    copy = duplicate_graph(graph)
    assert copy.id != graph.id
    assert copy.name == "Test (copy)"
    assert copy.states == graph.states
    renamed = rename_graph(graph, "Other", description="desc")
    assert (renamed.name, renamed.description) == ("Other", "desc")


def test_layer_volumes_cannot_be_changed_in_place() -> None:
    graph = add_state(
        create_empty_graph("Mix", graph_id="mix"),
        id="a",
        name="A",
        is_initial=True,
        audio_config={"active_layers": ["drums"], "layer_volumes": {"drums": 0.5}},
    )
    copy = duplicate_graph(graph)
    volumes = copy.get_state("a").audio_config.layer_volumes
    with pytest.raises(TypeError):
        volumes["drums"] = 7.0  # type: ignore[index]
    with pytest.raises(TypeError):
        del volumes["drums"]  # type: ignore[attr-defined]
    assert graph.get_state("a").audio_config.volume_for("drums") == 0.5
    assert copy.get_state("a").audio_config.layer_volumes == {"drums": 0.5}


def test_layer_volumes_serialize_as_plain_dict() -> None:
    graph = add_state(
        create_empty_graph("Mix", graph_id="mix"),
        id="a",
        name="A",
        audio_config={"layer_volumes": {"pads": 0.2, "drums": 0.5}},
    )
    config = graph.to_dict()["states"][0]["audioConfig"]
    assert config["layerVolumes"] == {"drums": 0.5, "pads": 0.2}
    assert type(config["layerVolumes"]) is dict
    assert StateGraph.from_dict(graph.to_dict()) == graph
    assert type(StateAudioConfig().layer_volumes) is not dict
