from __future__ import annotations

from .compiler import ArtifactSet, BatchCompileResult, CompileFailure, compile_all, compile_graph
from .conditions import evaluate, evaluate_transition, select_transition
from .config import CompileOptions, EngineConfig, SimulationConfig
from .engine import (
    AudioLayerSink,
    EngineSnapshot,
    ParameterInbox,
    RecordingSink,
    RuntimeEngine,
    StateEnteredEvent,
    TransitionEvent,
)
from .errors import (
    CompileError,
    EngineError,
    GraphNotFoundError,
    GraphValidationError,
    InvalidConfigError,
    InvalidMappingError,
    PresetNotFoundError,
    StateScoreError,
    UnknownEntityError,
    UnknownTargetError,
)
from .graph import (
    AudioSource,
    AudioState,
    LayerDefinition,
    Parameter,
    ParameterCondition,
    StateAudioConfig,
    StateDurationCondition,
    StateGraph,
    StateTransition,
    add_layer,
    add_parameter,
    add_source,
    add_state,
    add_transition,
    create_empty_graph,
    delete_layer,
    delete_parameter,
    delete_source,
    delete_state,
    delete_transition,
    duplicate_graph,
    duration_condition,
    parameter_condition,
    update_parameter,
    update_state,
    update_transition,
    validate_graph,
)
from .graph_io import load_graph, save_graph, write_artifacts
from .logging_utils import configure_logging as _configure_logging
from .mapping import ParameterMapper, ParameterMapping, create_mapping, create_mapping_from_preset
from .presets import create_graph_from_preset, list_presets
from .repository import GraphRepository, InMemoryGraphRepository
from .service import GraphService
from .simulator import Timeline, simulate

__version__ = "0.1.0"

__all__ = [
    "ArtifactSet",
    "AudioLayerSink",
    "AudioSource",
    "AudioState",
    "BatchCompileResult",
    "CompileError",
    "CompileFailure",
    "CompileOptions",
    "EngineConfig",
    "EngineError",
    "EngineSnapshot",
    "GraphNotFoundError",
    "GraphRepository",
    "GraphService",
    "GraphValidationError",
    "InMemoryGraphRepository",
    "InvalidConfigError",
    "InvalidMappingError",
    "LayerDefinition",
    "Parameter",
    "ParameterCondition",
    "ParameterInbox",
    "ParameterMapper",
    "ParameterMapping",
    "PresetNotFoundError",
    "RecordingSink",
    "RuntimeEngine",
    "SimulationConfig",
    "StateAudioConfig",
    "StateDurationCondition",
    "StateEnteredEvent",
    "StateGraph",
    "StateScoreError",
    "StateTransition",
    "Timeline",
    "TransitionEvent",
    "UnknownEntityError",
    "UnknownTargetError",
    "add_layer",
    "add_parameter",
    "add_source",
    "add_state",
    "add_transition",
    "compile_all",
    "compile_graph",
    "create_empty_graph",
    "create_graph_from_preset",
    "create_mapping",
    "create_mapping_from_preset",
    "delete_layer",
    "delete_parameter",
    "delete_source",
    "delete_state",
    "delete_transition",
    "duplicate_graph",
    "duration_condition",
    "evaluate",
    "evaluate_transition",
    "list_presets",
    "load_graph",
    "parameter_condition",
    "save_graph",
    "select_transition",
    "simulate",
    "update_parameter",
    "update_state",
    "update_transition",
    "validate_graph",
    "write_artifacts",
]

_configure_logging()
