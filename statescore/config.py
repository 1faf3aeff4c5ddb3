from __future__ import annotations

import logging
import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidConfigError
from .schema import DEFAULT_SIMULATION_STEP_MS, DEFAULT_TICK_INTERVAL_MS

_LOGGER = logging.getLogger("statescore.config")

TICK_MS_ENV = "STATESCORE_TICK_MS"


class EngineConfig(BaseModel):
    """Runtime engine settings.

    Example:
        config = EngineConfig(tick_interval_ms=33)
        engine = RuntimeEngine(graph, config=config)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tick_interval_ms: float = Field(default=DEFAULT_TICK_INTERVAL_MS, gt=0)
    warn_unknown_parameters: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        raw = env.get(TICK_MS_ENV, "").strip()
        if not raw:
            return cls()
        try:
            return cls(tick_interval_ms=float(raw))
        except (ValueError, ValidationError) as exc:
            raise InvalidConfigError(f"{TICK_MS_ENV} must be a positive number, got {raw!r}") from exc


class CompileOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # None means "derive from the graph name".
    project_name: str | None = None
    include_readme: bool = True


class SimulationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    step_ms: float = Field(default=DEFAULT_SIMULATION_STEP_MS, gt=0)
    max_steps: int = Field(default=100_000, gt=0)
