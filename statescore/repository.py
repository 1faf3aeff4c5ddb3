from __future__ import annotations

import logging
import threading
from typing import Protocol

from .errors import GraphNotFoundError
from .graph import StateGraph

_LOGGER = logging.getLogger("statescore.repository")


class GraphRepository(Protocol):
    def get(self, graph_id: str) -> StateGraph:
        ...

    def put(self, graph: StateGraph) -> None:
        ...

    def delete(self, graph_id: str) -> None:
        ...

    def list_ids(self) -> list[str]:
        ...


class InMemoryGraphRepository:
    """Dict-backed store; graphs are frozen so no copies are taken."""

    def __init__(self, graphs: list[StateGraph] | None = None) -> None:
        self._graphs: dict[str, StateGraph] = {}
        self._lock = threading.Lock()
        for graph in graphs or []:
            self.put(graph)

    def get(self, graph_id: str) -> StateGraph:
        with self._lock:
            graph = self._graphs.get(graph_id)
        if graph is None:
            raise GraphNotFoundError(f"Graph not found: {graph_id}")
        return graph

    def put(self, graph: StateGraph) -> None:
        with self._lock:
            self._graphs[graph.id] = graph
        _LOGGER.debug("Stored graph %s (%s)", graph.id, graph.name)

    def delete(self, graph_id: str) -> None:
        with self._lock:
            if self._graphs.pop(graph_id, None) is None:
                raise GraphNotFoundError(f"Graph not found: {graph_id}")

    def list_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._graphs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._graphs)

    def __contains__(self, graph_id: object) -> bool:
        with self._lock:
            return graph_id in self._graphs
