"""Compile a state graph into middleware / engine / browser project files.

Every target goes through the same pipeline: validate the graph, lower it to
target-neutral identifiers (``lowering.lower``), let the target render its
artifacts, then append the shared ``AssetManifest.json``. Identical graphs and
options always produce identical file contents apart from ``compiledAt``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Callable, Mapping

from pydantic import BaseModel, ConfigDict

from ..config import CompileOptions
from ..errors import CompileError, UnknownTargetError
from ..graph import StateGraph, validate_graph
from ..logging_utils import log_target_failure
from ..schema import COMPILE_TARGETS, CompileTarget, is_compile_target
from .fmod import compile_fmod
from .lowering import LoweredGraph, lower, sanitize_identifier, state_identifiers
from .manifest import MANIFEST_FILENAME, Artifact, ArtifactSet, build_manifest, now_iso
from .pure_data import compile_pure_data
from .unity import compile_unity
from .unreal import compile_unreal
from .web_audio import compile_web_audio
from .wwise import compile_wwise

_LOGGER = logging.getLogger("statescore.compiler")

TargetCompiler = Callable[[LoweredGraph, CompileOptions], list[Artifact]]

TARGET_COMPILERS: Mapping[CompileTarget, TargetCompiler] = MappingProxyType(
    {
        "wwise": compile_wwise,
        "fmod": compile_fmod,
        "unity": compile_unity,
        "unreal": compile_unreal,
        "pure_data": compile_pure_data,
        "web_audio": compile_web_audio,
    }
)


class CompileFailure(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    target: CompileTarget
    message: str


class BatchCompileResult(BaseModel):
    """Outcome of compiling one graph for every target.

    ``sets`` holds the targets that succeeded (paths prefixed ``<target>/``);
    ``failures`` lists the rest. A batch with failures is still usable.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sets: tuple[ArtifactSet, ...]
    failures: tuple[CompileFailure, ...]

    @property
    def ok(self) -> bool:
        return not self.failures

    def files(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for artifact_set in self.sets:
            merged.update(artifact_set.files())
        return merged

    def get(self, target: CompileTarget) -> ArtifactSet | None:
        for artifact_set in self.sets:
            if artifact_set.target == target:
                return artifact_set
        return None


def compile_graph(
    graph: StateGraph,
    target: str,
    *,
    options: CompileOptions | None = None,
    compiled_at: str | None = None,
) -> ArtifactSet:
    if not is_compile_target(target):
        raise UnknownTargetError(f"Unknown compile target {target!r}; expected one of {', '.join(COMPILE_TARGETS)}")
    options = options or CompileOptions()
    validate_graph(graph)
    if not graph.states:
        raise CompileError(f"Graph {graph.id!r} has no states to compile")

    lowered = lower(graph, options)
    artifacts = TARGET_COMPILERS[target](lowered, options)
    timestamp = compiled_at or now_iso()
    artifacts.append(build_manifest(lowered, target, artifacts, timestamp))
    _LOGGER.info("Compiled %s for %s (%d files)", graph.id, target, len(artifacts))
    return ArtifactSet(
        target=target,
        graph_id=graph.id,
        compiled_at=timestamp,
        artifacts=tuple(artifacts),
    )


def compile_all(
    graph: StateGraph,
    *,
    options: CompileOptions | None = None,
    compiled_at: str | None = None,
    parallel: bool = False,
) -> BatchCompileResult:
    """Compile every target; one target failing does not stop the others."""

    timestamp = compiled_at or now_iso()

    def run(target: CompileTarget) -> ArtifactSet | CompileFailure:
        try:
            artifact_set = compile_graph(graph, target, options=options, compiled_at=timestamp)
        except CompileError as exc:
            log_target_failure(_LOGGER, graph.id, target, exc)
            return CompileFailure(target=target, message=str(exc))
        return artifact_set.prefixed(f"{target}/")

    if parallel:
        with ThreadPoolExecutor(max_workers=len(COMPILE_TARGETS)) as pool:
            outcomes = list(pool.map(run, COMPILE_TARGETS))
    else:
        outcomes = [run(target) for target in COMPILE_TARGETS]

    sets = tuple(outcome for outcome in outcomes if isinstance(outcome, ArtifactSet))
    failures = tuple(outcome for outcome in outcomes if isinstance(outcome, CompileFailure))
    _LOGGER.info("Compiled %s: %d target(s) ok, %d failed", graph.id, len(sets), len(failures))
    return BatchCompileResult(sets=sets, failures=failures)


__all__ = [
    "MANIFEST_FILENAME",
    "TARGET_COMPILERS",
    "Artifact",
    "ArtifactSet",
    "BatchCompileResult",
    "CompileFailure",
    "compile_all",
    "compile_graph",
    "lower",
    "sanitize_identifier",
    "state_identifiers",
]
