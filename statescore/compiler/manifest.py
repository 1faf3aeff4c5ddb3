from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from ..schema import ArtifactKind, CompileTarget
from .builders import render_json
from .lowering import LoweredGraph

MANIFEST_FILENAME = "AssetManifest.json"
GENERATOR = "statescore"


class Artifact(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    content: str
    kind: ArtifactKind


class ArtifactSet(BaseModel):
    """Everything one target produced for one graph."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: CompileTarget
    graph_id: str
    compiled_at: str
    artifacts: tuple[Artifact, ...]

    def files(self) -> dict[str, str]:
        return {artifact.path: artifact.content for artifact in self.artifacts}

    def get(self, path: str) -> Artifact | None:
        for artifact in self.artifacts:
            if artifact.path == path:
                return artifact
        return None

    @property
    def manifest(self) -> Artifact:
        for artifact in self.artifacts:
            if artifact.kind == "asset_manifest":
                return artifact
        raise LookupError(f"Artifact set for {self.target} has no manifest")

    def prefixed(self, prefix: str) -> "ArtifactSet":
        return self.model_copy(
            update={
                "artifacts": tuple(
                    artifact.model_copy(update={"path": f"{prefix}{artifact.path}"})
                    for artifact in self.artifacts
                )
            }
        )

    def content_digest(self) -> str:
        """SHA-256 over every artifact, ignoring the manifest's ``compiledAt``."""

        digest = hashlib.sha256()
        for artifact in sorted(self.artifacts, key=lambda item: item.path):
            content = artifact.content
            if artifact.kind == "asset_manifest":
                data = json.loads(content)
                data.pop("compiledAt", None)
                content = render_json(data)
            digest.update(artifact.path.encode("utf-8"))
            digest.update(b"\0")
            digest.update(content.encode("utf-8"))
            digest.update(b"\0")
        return digest.hexdigest()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_manifest(
    lowered: LoweredGraph,
    target: CompileTarget,
    artifacts: list[Artifact],
    compiled_at: str,
) -> Artifact:
    """Target-independent asset manifest; asset pipelines parse this file."""

    graph = lowered.graph
    data = {
        "compiledAt": compiled_at,
        "generator": GENERATOR,
        "target": target,
        "project": lowered.project,
        "graph": {"id": graph.id, "name": graph.name},
        "sources": [
            {
                "id": source.id,
                "name": source.name,
                "durationMs": source.duration_ms,
                "uri": source.uri,
            }
            for source in graph.sources
        ],
        "layers": [
            {
                "id": layer.id,
                "name": layer.name,
                "identifier": layer.identifier,
                "sourceIds": list(layer.source_ids),
                "selection": layer.selection,
                "implicit": layer.implicit,
            }
            for layer in lowered.layers
        ],
        "states": [
            {"id": item.state.id, "name": item.state.name, "identifier": item.identifier}
            for item in lowered.states
        ],
        "counts": {
            "states": len(graph.states),
            "transitions": len(graph.transitions),
            "parameters": len(graph.parameters),
            "layers": len(lowered.layers),
            "sources": len(graph.sources),
        },
        "files": sorted(artifact.path for artifact in artifacts),
    }
    return Artifact(
        path=f"{lowered.project}/{MANIFEST_FILENAME}",
        content=render_json(data),
        kind="asset_manifest",
    )
