"""Request-shaped API over a graph repository.

Every mutating call loads the graph, applies one validated operation from
``statescore.graph``, stores the result and returns the full updated graph.
Field dictionaries may use either the camelCase wire names (``fromStateId``)
or the Python attribute names (``from_state_id``).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from . import graph as graph_ops
from .compiler import compile_all, compile_graph
from .config import CompileOptions
from .graph import StateGraph
from .presets import create_graph_from_preset
from .repository import GraphRepository, InMemoryGraphRepository
from .simulator import Trajectory, simulate

_LOGGER = logging.getLogger("statescore.service")

ALL_TARGETS = "all"


class GraphService:
    def __init__(self, repository: GraphRepository | None = None) -> None:
        self._repository = repository if repository is not None else InMemoryGraphRepository()

    @property
    def repository(self) -> GraphRepository:
        return self._repository

    def _apply(self, graph_id: str, operation: Callable[..., StateGraph], *args: Any, **kwargs: Any) -> StateGraph:
        updated = operation(self._repository.get(graph_id), *args, **kwargs)
        self._repository.put(updated)
        return updated

    # -- graphs --------------------------------------------------------------

    def get_graph(self, graph_id: str) -> StateGraph:
        return self._repository.get(graph_id)

    def list_graphs(self) -> list[StateGraph]:
        return [self._repository.get(graph_id) for graph_id in self._repository.list_ids()]

    def create_graph(self, name: str, *, description: str = "") -> StateGraph:
        graph = graph_ops.create_empty_graph(name, description=description)
        self._repository.put(graph)
        _LOGGER.info("Created graph %s (%s)", graph.id, name)
        return graph

    def create_from_preset(self, preset: str | int, *, name: str | None = None) -> StateGraph:
        graph = create_graph_from_preset(preset, name=name)
        self._repository.put(graph)
        _LOGGER.info("Created graph %s from preset %s", graph.id, preset)
        return graph

    def import_graph(self, data: Mapping[str, Any]) -> StateGraph:
        graph = StateGraph.from_dict(data)
        self._repository.put(graph)
        return graph

    def duplicate_graph(self, graph_id: str, *, name: str | None = None) -> StateGraph:
        copy = graph_ops.duplicate_graph(self._repository.get(graph_id), name=name)
        self._repository.put(copy)
        return copy

    def rename_graph(self, graph_id: str, name: str, *, description: str | None = None) -> StateGraph:
        return self._apply(graph_id, graph_ops.rename_graph, name, description=description)

    def delete_graph(self, graph_id: str) -> None:
        self._repository.delete(graph_id)
        _LOGGER.info("Deleted graph %s", graph_id)

    # -- states --------------------------------------------------------------

    def add_state(self, graph_id: str, **fields: Any) -> StateGraph:
        return self._apply(graph_id, graph_ops.add_state, **fields)

    def update_state(self, graph_id: str, state_id: str, **changes: Any) -> StateGraph:
        return self._apply(graph_id, graph_ops.update_state, state_id, **changes)

    def delete_state(self, graph_id: str, state_id: str) -> StateGraph:
        return self._apply(graph_id, graph_ops.delete_state, state_id)

    # -- transitions ---------------------------------------------------------

    def add_transition(self, graph_id: str, **fields: Any) -> StateGraph:
        return self._apply(graph_id, graph_ops.add_transition, **fields)

    def update_transition(self, graph_id: str, transition_id: str, **changes: Any) -> StateGraph:
        return self._apply(graph_id, graph_ops.update_transition, transition_id, **changes)

    def delete_transition(self, graph_id: str, transition_id: str) -> StateGraph:
        return self._apply(graph_id, graph_ops.delete_transition, transition_id)

    # -- parameters ----------------------------------------------------------

    def add_parameter(self, graph_id: str, **fields: Any) -> StateGraph:
        return self._apply(graph_id, graph_ops.add_parameter, **fields)

    def update_parameter(self, graph_id: str, name: str, **changes: Any) -> StateGraph:
        return self._apply(graph_id, graph_ops.update_parameter, name, **changes)

    def delete_parameter(self, graph_id: str, name: str) -> StateGraph:
        return self._apply(graph_id, graph_ops.delete_parameter, name)

    # -- compile / simulate --------------------------------------------------

    def compile(
        self,
        graph_id: str,
        target: str,
        *,
        options: CompileOptions | None = None,
    ) -> dict[str, Any]:
        """``{"files": {...}}`` for one target; per-target results plus failures for ``"all"``."""

        graph = self._repository.get(graph_id)
        if target == ALL_TARGETS:
            batch = compile_all(graph, options=options)
            return {
                "targets": {artifact_set.target: {"files": artifact_set.files()} for artifact_set in batch.sets},
                "failures": [failure.model_dump() for failure in batch.failures],
            }
        return {"files": compile_graph(graph, target, options=options).files()}

    def simulate(
        self,
        graph_id: str,
        parameters: Trajectory,
        duration: float,
        step_ms: float = 100,
    ) -> dict[str, Any]:
        timeline = simulate(self._repository.get(graph_id), parameters, duration, step_ms)
        data = timeline.to_dict()
        return {"timeline": data["timeline"], "statesVisited": data["statesVisited"]}
