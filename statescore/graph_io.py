from __future__ import annotations

import json
import logging
from pathlib import Path, PurePosixPath
from typing import Iterable

from .compiler import Artifact, ArtifactSet, BatchCompileResult
from .errors import GraphValidationError
from .graph import StateGraph

_LOGGER = logging.getLogger("statescore.io")


def load_graph(path: str | Path) -> StateGraph:
    source = Path(path)
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise GraphValidationError(f"{source} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise GraphValidationError(f"{source} must contain a JSON object")
    graph = StateGraph.from_dict(data)
    _LOGGER.debug("Loaded graph %s from %s", graph.id, source)
    return graph


def save_graph(graph: StateGraph, path: str | Path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(graph.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    _LOGGER.debug("Saved graph %s to %s", graph.id, target)
    return target


def _safe_relative(path: str) -> PurePosixPath:
    relative = PurePosixPath(path)
    if relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"Refusing to write artifact outside the output directory: {path!r}")
    return relative


def write_artifacts(artifacts: ArtifactSet | BatchCompileResult, out_dir: str | Path) -> list[Path]:
    """Write every artifact below *out_dir*; returns the written paths in order."""

    items: Iterable[Artifact]
    if isinstance(artifacts, BatchCompileResult):
        items = [artifact for artifact_set in artifacts.sets for artifact in artifact_set.artifacts]
    else:
        items = artifacts.artifacts

    root = Path(out_dir)
    written: list[Path] = []
    for artifact in items:
        target = root.joinpath(*_safe_relative(artifact.path).parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(artifact.content, encoding="utf-8")
        written.append(target)
    _LOGGER.info("Wrote %d file(s) to %s", len(written), root)
    return written
