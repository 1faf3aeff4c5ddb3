from __future__ import annotations

import pytest
from pydantic import ValidationError

from statescore.config import TICK_MS_ENV, CompileOptions, EngineConfig, SimulationConfig
from statescore.errors import InvalidConfigError


def test_engine_config_defaults() -> None:
    config = EngineConfig()
    assert config.tick_interval_ms == 16
    assert config.warn_unknown_parameters is True


def test_engine_config_from_env() -> None:
    assert EngineConfig.from_env({}) == EngineConfig()
    assert EngineConfig.from_env({TICK_MS_ENV: " 33 "}).tick_interval_ms == 33


@pytest.mark.parametrize("raw", ["fast", "0", "-5"])
def test_engine_config_from_env_rejects_bad_values(raw: str) -> None:
    with pytest.raises(InvalidConfigError):
        EngineConfig.from_env({TICK_MS_ENV: raw})


def test_engine_config_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(TICK_MS_ENV, "50")
    assert EngineConfig.from_env().tick_interval_ms == 50


def test_configs_are_strict() -> None:
    with pytest.raises(ValidationError):
        EngineConfig(tick_ms=10)
    with pytest.raises(ValidationError):
        SimulationConfig(step_ms=0)
    assert CompileOptions().include_readme is True
    assert CompileOptions().project_name is None
