"""Shared literal types and constant tables for adaptive audio graphs.

Every module that needs an enumeration imports it from here so the graph
model, the engine and each compiler target agree on the same closed sets.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Literal, Mapping, get_args

TransitionType = Literal[
    "instant",
    "crossfade",
    "musical",
    "stinger",
    "duck",
    "layer_in",
    "layer_out",
]
ConditionLogic = Literal["AND", "OR"]
ComparisonOperator = Literal[">", "<", ">=", "<=", "=="]
ParameterType = Literal["number", "boolean", "string"]
SelectionMode = Literal["random", "sequential", "round_robin", "weighted", "shuffle"]
CompileTarget = Literal["wwise", "fmod", "unity", "unreal", "pure_data", "web_audio"]
ArtifactKind = Literal["code", "config", "data", "asset_manifest"]
EngineStatus = Literal["uninitialized", "idle", "running", "transitioning", "disposed"]

ParameterValue = float | bool | str

TRANSITION_TYPES: tuple[TransitionType, ...] = get_args(TransitionType)
SELECTION_MODES: tuple[SelectionMode, ...] = get_args(SelectionMode)
COMPILE_TARGETS: tuple[CompileTarget, ...] = get_args(CompileTarget)
COMPARISON_OPERATORS: tuple[ComparisonOperator, ...] = get_args(ComparisonOperator)

DEFAULT_TRANSITION_DURATION_MS = 500
DEFAULT_TRANSITION_TYPE: TransitionType = "crossfade"
DEFAULT_TICK_INTERVAL_MS = 16
DEFAULT_SIMULATION_STEP_MS = 100

# Human-readable labels used in generated READMEs and comments.
TARGET_LABELS: Mapping[CompileTarget, str] = MappingProxyType(
    {
        "wwise": "Audiokinetic Wwise",
        "fmod": "FMOD Studio",
        "unity": "Unity (C#)",
        "unreal": "Unreal Engine (C++)",
        "pure_data": "Pure Data",
        "web_audio": "Web Audio AudioWorklet",
    }
)


def is_compile_target(value: str) -> bool:
    return value in COMPILE_TARGETS
