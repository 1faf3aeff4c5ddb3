"""Map external continuous inputs (health, speed, time of day) onto graph parameters.

A mapping normalizes an input against ``transform.input_range``, shapes it
with a curve, rescales it into ``transform.output_range`` and finally eases
the live value towards that target with optional smoothing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Annotated, Any, Iterable, Literal, Mapping, Union

import numpy as np
from pydantic import Field, ValidationError, model_validator

from .errors import InvalidMappingError, PresetNotFoundError
from .graph import WireModel, new_id
from .schema import ParameterValue

_LOGGER = logging.getLogger("statescore.mapping")

_SETTLE_EPSILON = 1e-4
_DEFAULT_SPRING_TENSION = 100.0
_DEFAULT_SPRING_DAMPING = 10.0


# -----------------------------------------------------------------------------
# Curves
# -----------------------------------------------------------------------------


class LinearCurve(WireModel):
    type: Literal["linear"] = "linear"


class ExponentialCurve(WireModel):
    type: Literal["exponential"] = "exponential"
    exponent: float = Field(default=2.0, gt=0)


class LogarithmicCurve(WireModel):
    type: Literal["logarithmic"] = "logarithmic"
    base: float = Field(default=10.0, gt=1)


class SCurve(WireModel):
    type: Literal["s_curve"] = "s_curve"
    steepness: float = Field(default=6.0, gt=0)


class StepCurve(WireModel):
    type: Literal["step"] = "step"
    steps: tuple[float, ...] = Field(min_length=1)


class CurvePoint(WireModel):
    x: float = Field(ge=0.0, le=1.0)
    y: float
    smooth: bool = False


class CustomCurve(WireModel):
    type: Literal["custom"] = "custom"
    points: tuple[CurvePoint, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_order(self) -> "CustomCurve":
        xs = [point.x for point in self.points]
        if xs != sorted(xs):
            raise ValueError("Custom curve points must be sorted by x")
        return self


MappingCurve = Annotated[
    Union[LinearCurve, ExponentialCurve, LogarithmicCurve, SCurve, StepCurve, CustomCurve],
    Field(discriminator="type"),
]


# -----------------------------------------------------------------------------
# Mapping definition
# -----------------------------------------------------------------------------


class MappingSource(WireModel):
    name: str = Field(min_length=1)
    expected_range: tuple[float, float] = (0.0, 1.0)
    description: str = ""


class ValueTransform(WireModel):
    input_range: tuple[float, float] = (0.0, 1.0)
    output_range: tuple[float, float] = (0.0, 1.0)
    clamp: bool = True
    invert: bool = False
    deadzone: tuple[float, float] | None = None
    scale: float | None = None
    offset: float | None = None

    @model_validator(mode="after")
    def _check_ranges(self) -> "ValueTransform":
        low, high = self.input_range
        if low == high:
            raise ValueError("input_range must not be empty")
        if self.deadzone is not None and self.deadzone[0] > self.deadzone[1]:
            raise ValueError("deadzone low bound exceeds high bound")
        return self


class SmoothingConfig(WireModel):
    enabled: bool = True
    type: Literal["linear", "exponential", "spring"] = "exponential"
    rise_time_ms: float = Field(default=500.0, gt=0)
    fall_time_ms: float = Field(default=500.0, gt=0)
    spring_tension: float | None = Field(default=None, gt=0)
    spring_damping: float | None = Field(default=None, ge=0)


class ParameterMapping(WireModel):
    id: str = Field(min_length=1)
    name: str
    description: str = ""
    source: MappingSource
    target_parameter: str = Field(min_length=1)
    curve: MappingCurve = Field(default_factory=LinearCurve)
    transform: ValueTransform = Field(default_factory=ValueTransform)
    smoothing: SmoothingConfig = Field(default_factory=SmoothingConfig)
    enabled: bool = True


# -----------------------------------------------------------------------------
# Pure mapping
# -----------------------------------------------------------------------------


def _as_number(value: ParameterValue) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return float(value)


def _sigmoid(x: float, steepness: float) -> float:
    return 1.0 / (1.0 + math.exp(-steepness * (x - 0.5)))


def apply_curve(x: float, curve: MappingCurve) -> float:
    """Shape a normalized input; every built-in curve maps 0 -> 0 and 1 -> 1."""

    match curve:
        case LinearCurve():
            return x
        case ExponentialCurve(exponent=exponent):
            return float(np.power(max(x, 0.0), exponent))
        case LogarithmicCurve(base=base):
            return math.log(max(1.0 + x * (base - 1.0), 1e-12)) / math.log(base)
        case SCurve(steepness=steepness):
            # Rescaled sigmoid so both endpoints are exact.
            low = _sigmoid(0.0, steepness)
            high = _sigmoid(1.0, steepness)
            return (_sigmoid(x, steepness) - low) / (high - low)
        case StepCurve(steps=steps):
            index = int(math.floor(x * len(steps)))
            return steps[min(max(index, 0), len(steps) - 1)]
        case CustomCurve(points=points):
            return _interpolate_points(x, points)
    return x


def _interpolate_points(x: float, points: tuple[CurvePoint, ...]) -> float:
    if len(points) == 1:
        return points[0].y
    xs = np.array([point.x for point in points], dtype=float)
    ys = np.array([point.y for point in points], dtype=float)
    if x <= xs[0]:
        return float(ys[0])
    if x >= xs[-1]:
        return float(ys[-1])
    index = int(np.searchsorted(xs, x, side="right")) - 1
    left, right = points[index], points[index + 1]
    span = right.x - left.x
    t = 0.0 if span == 0 else (x - left.x) / span
    if left.smooth:
        t = t * t * (3.0 - 2.0 * t)
    return left.y + (right.y - left.y) * t


def map_value(value: ParameterValue, mapping: ParameterMapping) -> float:
    """Map a raw input through transform and curve (no smoothing)."""

    transform = mapping.transform
    in_low, in_high = transform.input_range
    out_low, out_high = transform.output_range

    normalized = (_as_number(value) - in_low) / (in_high - in_low)

    if transform.deadzone is not None:
        dead_low, dead_high = transform.deadzone
        if dead_low <= normalized <= dead_high:
            return (out_low + out_high) / 2.0

    if transform.clamp:
        normalized = float(np.clip(normalized, 0.0, 1.0))
    if transform.invert:
        normalized = 1.0 - normalized

    output = out_low + apply_curve(normalized, mapping.curve) * (out_high - out_low)
    if transform.scale is not None:
        output *= transform.scale
    if transform.offset is not None:
        output += transform.offset
    return float(output)


# -----------------------------------------------------------------------------
# Stateful mapper
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _Channel:
    mapping: ParameterMapping
    current: float
    target: float
    velocity: float = 0.0


def _smooth(channel: _Channel, delta_ms: float) -> float:
    config = channel.mapping.smoothing
    current, target = channel.current, channel.target
    rising = target > current
    time_ms = config.rise_time_ms if rising else config.fall_time_ms

    match config.type:
        case "linear":
            step = delta_ms / time_ms
            return target if abs(target - current) <= step else current + (step if rising else -step)
        case "exponential":
            factor = 1.0 - math.exp(-delta_ms / (time_ms * 0.3))
            return current + (target - current) * factor
        case "spring":
            tension = config.spring_tension or _DEFAULT_SPRING_TENSION
            damping = config.spring_damping if config.spring_damping is not None else _DEFAULT_SPRING_DAMPING
            seconds = delta_ms / 1000.0
            acceleration = (target - current) * tension - channel.velocity * damping
            channel.velocity += acceleration * seconds
            return current + channel.velocity * seconds
    return target


class ParameterMapper:
    """Holds mappings plus their smoothing state.

    ``set_input`` recomputes targets for every mapping fed by an input;
    ``update`` eases live values towards them and returns the graph
    parameters whose value changed.
    """

    def __init__(
        self,
        mappings: Iterable[ParameterMapping] = (),
        *,
        initial_values: Mapping[str, ParameterValue] | None = None,
    ) -> None:
        self._initial = dict(initial_values or {})
        self._channels: dict[str, _Channel] = {}
        self._inputs: dict[str, ParameterValue] = {}
        for mapping in mappings:
            self.add_mapping(mapping)

    def add_mapping(self, mapping: ParameterMapping) -> None:
        seed = self._initial.get(mapping.target_parameter, 0.0)
        start = _as_number(seed)
        self._channels[mapping.id] = _Channel(mapping=mapping, current=start, target=start)

    def remove_mapping(self, mapping_id: str) -> None:
        self._channels.pop(mapping_id, None)

    @property
    def mappings(self) -> tuple[ParameterMapping, ...]:
        return tuple(channel.mapping for channel in self._channels.values())

    def inputs(self) -> dict[str, ParameterValue]:
        return dict(self._inputs)

    def set_input(self, name: str, value: ParameterValue) -> bool:
        """Record an input; returns True when at least one mapping consumes it."""

        self._inputs[name] = value
        consumed = False
        for channel in self._channels.values():
            mapping = channel.mapping
            if not mapping.enabled or mapping.source.name != name:
                continue
            channel.target = map_value(value, mapping)
            consumed = True
        return consumed

    def update(self, delta_ms: float) -> dict[str, float]:
        changes: dict[str, float] = {}
        for channel in self._channels.values():
            mapping = channel.mapping
            if not mapping.enabled:
                continue
            if abs(channel.current - channel.target) < _SETTLE_EPSILON:
                continue
            if not mapping.smoothing.enabled:
                value = channel.target
            elif delta_ms <= 0:
                continue
            else:
                value = _smooth(channel, delta_ms)
            if abs(value - channel.target) < _SETTLE_EPSILON:
                value = channel.target
                channel.velocity = 0.0
            if value != channel.current:
                channel.current = value
                changes[mapping.target_parameter] = value
        return changes

    def current_value(self, mapping_id: str) -> float:
        return self._channels[mapping_id].current

    def target_value(self, mapping_id: str) -> float:
        return self._channels[mapping_id].target

    def reset(self) -> None:
        for channel in self._channels.values():
            start = _as_number(self._initial.get(channel.mapping.target_parameter, 0.0))
            channel.current = start
            channel.target = start
            channel.velocity = 0.0
        self._inputs.clear()


# -----------------------------------------------------------------------------
# Presets
# -----------------------------------------------------------------------------

PRESET_MAPPINGS: Mapping[str, Mapping[str, Any]] = MappingProxyType(
    {
        "health_to_intensity": {
            "name": "Health to Music Intensity",
            "description": "Lower health = more intense music",
            "source": {"name": "health", "expected_range": (0, 100)},
            "target_parameter": "music_intensity",
            "curve": {"type": "exponential", "exponent": 2},
            "transform": {"input_range": (0, 100), "output_range": (1, 0)},
            "smoothing": {"type": "exponential", "rise_time_ms": 2000, "fall_time_ms": 5000},
        },
        "speed_to_wind": {
            "name": "Speed to Wind Volume",
            "description": "Player speed affects wind whoosh volume",
            "source": {"name": "player_speed", "expected_range": (0, 100)},
            "target_parameter": "wind_volume",
            "curve": {"type": "s_curve", "steepness": 6},
            "transform": {"input_range": (0, 100), "output_range": (0, 1), "deadzone": (0, 0.1)},
            "smoothing": {
                "type": "spring",
                "rise_time_ms": 500,
                "fall_time_ms": 1000,
                "spring_tension": 150,
                "spring_damping": 15,
            },
        },
        "time_to_ambience": {
            "name": "Time of Day to Ambience",
            "description": "Day/night affects ambient mix",
            "source": {"name": "time_of_day", "expected_range": (0, 24)},
            "target_parameter": "night_blend",
            "curve": {
                "type": "custom",
                "points": [
                    {"x": 0, "y": 1, "smooth": True},
                    {"x": 0.25, "y": 0.5, "smooth": True},
                    {"x": 0.33, "y": 0, "smooth": True},
                    {"x": 0.5, "y": 0, "smooth": True},
                    {"x": 0.67, "y": 0, "smooth": True},
                    {"x": 0.75, "y": 0.5, "smooth": True},
                    {"x": 1, "y": 1, "smooth": True},
                ],
            },
            "transform": {"input_range": (0, 24), "output_range": (0, 1)},
            "smoothing": {"type": "linear", "rise_time_ms": 30000, "fall_time_ms": 30000},
        },
        "distance_to_tension": {
            "name": "Distance to Enemy - Tension",
            "description": "Closer enemies = more muffled mix",
            "source": {"name": "nearest_enemy_distance", "expected_range": (0, 100)},
            "target_parameter": "lowpass_frequency",
            "curve": {"type": "logarithmic", "base": 10},
            "transform": {"input_range": (0, 100), "output_range": (2000, 20000)},
            "smoothing": {"type": "exponential", "rise_time_ms": 1000, "fall_time_ms": 3000},
        },
        "danger_to_reverb": {
            "name": "Danger Level to Reverb",
            "description": "Higher danger = more reverb for tension",
            "source": {"name": "danger_level", "expected_range": (0, 100)},
            "target_parameter": "reverb_mix",
            "curve": {"type": "exponential", "exponent": 1.5},
            "transform": {"input_range": (0, 100), "output_range": (0.1, 0.5)},
            "smoothing": {"type": "exponential", "rise_time_ms": 2000, "fall_time_ms": 4000},
        },
    }
)


def create_mapping(
    name: str,
    source: MappingSource | str,
    target_parameter: str,
    *,
    expected_range: tuple[float, float] = (0.0, 1.0),
) -> ParameterMapping:
    """Linear mapping from the source's expected range onto 0..1 with light smoothing."""

    if isinstance(source, str):
        source = MappingSource(name=source, expected_range=expected_range)
    return ParameterMapping(
        id=new_id("mapping"),
        name=name,
        source=source,
        target_parameter=target_parameter,
        transform=ValueTransform(input_range=source.expected_range, output_range=(0.0, 1.0)),
        smoothing=SmoothingConfig(type="exponential", rise_time_ms=500, fall_time_ms=500),
    )


def create_mapping_from_preset(
    preset: str,
    *,
    name: str | None = None,
    target_parameter: str | None = None,
) -> ParameterMapping:
    data = PRESET_MAPPINGS.get(preset)
    if data is None:
        raise PresetNotFoundError(f"Unknown mapping preset: {preset!r}")
    fields = {**data, "id": new_id("mapping")}
    if name is not None:
        fields["name"] = name
    if target_parameter is not None:
        fields["target_parameter"] = target_parameter
    try:
        return ParameterMapping.model_validate(fields)
    except ValidationError as exc:
        raise InvalidMappingError(f"Mapping preset {preset!r} is invalid: {exc}") from exc
