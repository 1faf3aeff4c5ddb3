from __future__ import annotations

import pytest

from statescore.errors import GraphNotFoundError, GraphValidationError
from statescore.repository import InMemoryGraphRepository
from statescore.service import ALL_TARGETS, GraphService


@pytest.fixture()
def service() -> GraphService:
    return GraphService()


def _game(service: GraphService) -> str:
    graph = service.create_graph("Game", description="test graph")
    graph_id = graph.id
    service.add_state(graph_id, id="explore", name="Explore", isInitial=True)
    service.add_state(graph_id, id="combat", name="Combat")
    service.add_parameter(graph_id, name="threat", defaultValue=0, min=0, max=100)
    service.add_transition(
        graph_id,
        id="to_combat",
        fromStateId="explore",
        toStateId="combat",
        conditions=[{"kind": "parameter", "parameterName": "threat", "operator": ">", "value": 50}],
    )
    return graph_id


def test_mutations_return_and_store_the_updated_graph(service: GraphService) -> None:
    graph_id = _game(service)
    graph = service.update_state(graph_id, "combat", name="Battle")
    assert graph.get_state("combat").name == "Battle"
    assert service.get_graph(graph_id) == graph
    graph = service.update_transition(graph_id, "to_combat", priority=3)
    assert graph.get_transition("to_combat").priority == 3
    graph = service.update_parameter(graph_id, "threat", max=50)
    assert graph.get_parameter("threat").max == 50


def test_deletes_cascade(service: GraphService) -> None:
    graph_id = _game(service)
    graph = service.delete_state(graph_id, "combat")
    assert graph.transitions == ()
    graph = service.delete_parameter(graph_id, "threat")
    assert graph.parameters == ()


def test_invalid_mutation_leaves_stored_graph_untouched(service: GraphService) -> None:
    graph_id = _game(service)
    before = service.get_graph(graph_id)
    with pytest.raises(GraphValidationError):
        service.add_state(graph_id, id="explore", name="Again")
    assert service.get_graph(graph_id) == before


def test_graph_lifecycle(service: GraphService) -> None:
    graph_id = _game(service)
    copy = service.duplicate_graph(graph_id)
    renamed = service.rename_graph(graph_id, "Renamed")
    assert renamed.name == "Renamed"
    assert {g.id for g in service.list_graphs()} == {graph_id, copy.id}
    service.delete_graph(copy.id)
    with pytest.raises(GraphNotFoundError):
        service.get_graph(copy.id)
    with pytest.raises(GraphNotFoundError):
        service.delete_graph(copy.id)


def test_import_and_preset(service: GraphService) -> None:
    preset = service.create_from_preset("day_night_cycle", name="Days")
    imported = service.import_graph({**preset.to_dict(), "id": "imported"})
    assert imported.id == "imported"
    assert service.get_graph("imported").name == "Days"


def test_compile_single_target(service: GraphService) -> None:
    graph_id = _game(service)
    result = service.compile(graph_id, "unity")
    assert "Game/GameAudioController.cs" in result["files"]


def test_compile_all_partial_success(service: GraphService) -> None:
    graph_id = _game(service)
    service.update_transition(graph_id, "to_combat", transitionType="musical")
    result = service.compile(graph_id, ALL_TARGETS)
    assert [failure["target"] for failure in result["failures"]] == ["pure_data"]
    assert "pure_data" not in result["targets"]
    assert "wwise/Game/States.wwu" in result["targets"]["wwise"]["files"]


def test_simulate_shape(service: GraphService) -> None:
    graph_id = _game(service)
    result = service.simulate(graph_id, {"threat": 80}, 300, 100)
    assert result["statesVisited"] == ["explore", "combat"]
    assert [point["state"] for point in result["timeline"]] == ["explore", "combat", "combat", "combat"]


def test_unknown_graph(service: GraphService) -> None:
    with pytest.raises(GraphNotFoundError):
        service.add_state("nope", id="a", name="A")


def test_shared_repository() -> None:
    repository = InMemoryGraphRepository()
    first = GraphService(repository)
    second = GraphService(repository)
    graph = first.create_graph("Shared")
    assert second.get_graph(graph.id) == graph
    assert graph.id in repository
    assert len(repository) == 1
