"""Built-in preset graphs.

Presets are stored as plain data and validated into a fresh ``StateGraph``
(new id, new timestamps) each time one is requested.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping

from .errors import PresetNotFoundError
from .graph import StateGraph, create_empty_graph

_LOGGER = logging.getLogger("statescore.presets")

_COMBAT_INTENSITY: Mapping[str, Any] = MappingProxyType(
    {
        "name": "Combat Intensity",
        "description": "3-level combat intensity system",
        "states": [
            {
                "id": "exploration",
                "name": "Exploration",
                "is_initial": True,
                "tags": ["calm"],
                "position": {"x": 100, "y": 200},
                "audio_config": {
                    "active_layers": ["ambience", "music_calm"],
                    "layer_volumes": {"ambience": 0.8, "music_calm": 0.6},
                    "master_volume": 0.8,
                    "music_intensity": 0.2,
                },
            },
            {
                "id": "combat_low",
                "name": "Combat - Low",
                "tags": ["combat"],
                "position": {"x": 300, "y": 100},
                "audio_config": {
                    "active_layers": ["ambience", "music_tension", "combat_layer"],
                    "layer_volumes": {"ambience": 0.4, "music_tension": 0.7, "combat_layer": 0.3},
                    "master_volume": 0.9,
                    "music_intensity": 0.5,
                },
            },
            {
                "id": "combat_high",
                "name": "Combat - High",
                "tags": ["combat", "intense"],
                "position": {"x": 500, "y": 200},
                "audio_config": {
                    "active_layers": ["music_intense", "combat_layer", "percussion"],
                    "layer_volumes": {"music_intense": 0.9, "combat_layer": 0.7, "percussion": 0.6},
                    "master_volume": 1.0,
                    "music_intensity": 1.0,
                },
            },
        ],
        "transitions": [
            {
                "id": "enter_combat",
                "name": "Enter Combat",
                "from_state_id": "exploration",
                "to_state_id": "combat_low",
                "transition_type": "crossfade",
                "duration": 2000,
                "conditions": [
                    {"kind": "parameter", "parameter_name": "enemies_nearby", "operator": ">", "value": 0.0},
                ],
                "condition_logic": "AND",
                "priority": 10,
            },
            {
                "id": "intensify_combat",
                "name": "Intensify Combat",
                "from_state_id": "combat_low",
                "to_state_id": "combat_high",
                "transition_type": "layer_in",
                "duration": 1500,
                "conditions": [
                    {"kind": "parameter", "parameter_name": "health", "operator": "<", "value": 50.0},
                ],
                "condition_logic": "OR",
                "priority": 5,
            },
            {
                "id": "exit_combat",
                "name": "Exit Combat",
                "from_state_id": "combat_low",
                "to_state_id": "exploration",
                "transition_type": "crossfade",
                "duration": 5000,
                "conditions": [
                    {"kind": "parameter", "parameter_name": "enemies_nearby", "operator": "==", "value": 0.0},
                    {"kind": "state_duration", "threshold_ms": 3000},
                ],
                "condition_logic": "AND",
                "priority": 5,
                "cooldown_ms": 10000,
            },
        ],
        "parameters": [
            {"name": "health", "type": "number", "default_value": 100.0, "min": 0, "max": 100},
            {"name": "enemies_nearby", "type": "number", "default_value": 0.0, "min": 0, "max": 10},
            {"name": "is_detected", "type": "boolean", "default_value": False},
        ],
    }
)

_DAY_NIGHT_CYCLE: Mapping[str, Any] = MappingProxyType(
    {
        "name": "Day/Night Cycle",
        "description": "Time-of-day ambient audio system",
        "states": [
            {
                "id": "day",
                "name": "Day",
                "is_initial": True,
                "tags": ["day", "outdoor"],
                "position": {"x": 150, "y": 100},
                "audio_config": {
                    "active_layers": ["birds", "wind_light", "insects_day"],
                    "layer_volumes": {"birds": 0.7, "wind_light": 0.4, "insects_day": 0.5},
                    "master_volume": 0.8,
                },
            },
            {
                "id": "sunset",
                "name": "Sunset",
                "tags": ["transition", "outdoor"],
                "position": {"x": 350, "y": 100},
                "audio_config": {
                    "active_layers": ["birds_evening", "wind_calm", "crickets"],
                    "layer_volumes": {"birds_evening": 0.5, "wind_calm": 0.3, "crickets": 0.6},
                    "master_volume": 0.75,
                },
            },
            {
                "id": "night",
                "name": "Night",
                "tags": ["night", "outdoor"],
                "position": {"x": 550, "y": 100},
                "audio_config": {
                    "active_layers": ["owls", "wind_night", "crickets_loud"],
                    "layer_volumes": {"owls": 0.4, "wind_night": 0.5, "crickets_loud": 0.7},
                    "master_volume": 0.7,
                },
            },
        ],
        "transitions": [
            {
                "id": "day_to_sunset",
                "name": "Day to Sunset",
                "from_state_id": "day",
                "to_state_id": "sunset",
                "duration": 10000,
                "conditions": [
                    {"kind": "parameter", "parameter_name": "time_of_day", "operator": ">=", "value": 17.0},
                ],
                "priority": 5,
            },
            {
                "id": "sunset_to_night",
                "name": "Sunset to Night",
                "from_state_id": "sunset",
                "to_state_id": "night",
                "duration": 10000,
                "conditions": [
                    {"kind": "parameter", "parameter_name": "time_of_day", "operator": ">=", "value": 20.0},
                ],
                "priority": 5,
            },
            {
                "id": "night_to_day",
                "name": "Night to Day",
                "from_state_id": "night",
                "to_state_id": "day",
                "duration": 15000,
                "conditions": [
                    {"kind": "parameter", "parameter_name": "time_of_day", "operator": "<", "value": 6.0},
                ],
                "priority": 5,
            },
        ],
        "parameters": [
            {
                "name": "time_of_day",
                "type": "number",
                "default_value": 12.0,
                "min": 0,
                "max": 24,
                "description": "Hour of day (0-24)",
            },
            {
                "name": "weather",
                "type": "string",
                "default_value": "clear",
                "description": "Current weather",
            },
        ],
    }
)

PRESET_GRAPHS: Mapping[str, Mapping[str, Any]] = MappingProxyType(
    {
        "combat_intensity": _COMBAT_INTENSITY,
        "day_night_cycle": _DAY_NIGHT_CYCLE,
    }
)


def list_presets() -> list[tuple[str, str, str]]:
    """Return ``(key, name, description)`` for every preset, in declaration order."""

    return [(key, data["name"], data["description"]) for key, data in PRESET_GRAPHS.items()]


def _resolve(preset: str | int) -> Mapping[str, Any]:
    if isinstance(preset, int):
        keys = list(PRESET_GRAPHS)
        if not 0 <= preset < len(keys):
            raise PresetNotFoundError(f"Preset index {preset} out of range (0-{len(keys) - 1})")
        return PRESET_GRAPHS[keys[preset]]
    if preset in PRESET_GRAPHS:
        return PRESET_GRAPHS[preset]
    for data in PRESET_GRAPHS.values():
        if data["name"].lower() == preset.lower():
            return data
    raise PresetNotFoundError(f"Unknown preset: {preset!r}")


def create_graph_from_preset(preset: str | int, *, name: str | None = None) -> StateGraph:
    """Instantiate a preset by key, display name or index."""

    data = _resolve(preset)
    shell = create_empty_graph(name or data["name"], description=data["description"])
    graph = StateGraph.model_validate(
        {
            **shell.model_dump(),
            "states": data["states"],
            "transitions": data["transitions"],
            "parameters": data["parameters"],
        }
    )
    _LOGGER.debug("Created graph %s from preset %s", graph.id, data["name"])
    return graph
