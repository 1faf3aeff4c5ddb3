from __future__ import annotations

import argparse
import io
import json
from pathlib import Path

import pytest

from statescore import cli
from statescore.graph_io import load_graph, save_graph
from statescore.logging_utils import LOG_DIR_ENV
from statescore.presets import create_graph_from_preset


@pytest.fixture(autouse=True)
def _log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv(LOG_DIR_ENV, str(log_dir))
    return log_dir


def _run(*argv: str) -> tuple[int, str]:
    stream = io.StringIO()
    code = cli.main(list(argv), stream=stream)
    return code, stream.getvalue()


def _preset_file(tmp_path: Path) -> Path:
    return save_graph(create_graph_from_preset("combat_intensity", name="Arena"), tmp_path / "arena.json")


def test_parse_assignment() -> None:
    assert cli._parse_assignment("threat=80") == ("threat", 80.0)
    assert cli._parse_assignment("alarm=true") == ("alarm", True)
    assert cli._parse_assignment("weather=rain") == ("weather", "rain")
    assert cli._parse_assignment("threat=0:0,500:80") == ("threat", [(0.0, 0.0), (500.0, 80.0)])
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_assignment("threat")
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_assignment("threat=soon:5")


def test_presets_command() -> None:
    code, output = _run("presets")
    assert code == 0
    assert "combat_intensity" in output
    assert "day_night_cycle" in output


def test_new_command_writes_graph(tmp_path: Path) -> None:
    target = tmp_path / "night.json"
    code, output = _run("new", "Night Ride", "--preset", "day_night_cycle", "--output", str(target))
    assert code == 0
    assert "Wrote graph" in output
    graph = load_graph(target)
    assert graph.name == "Night Ride"
    assert len(graph.states) == 3


def test_validate_command(tmp_path: Path) -> None:
    code, output = _run("validate", str(_preset_file(tmp_path)))
    assert code == 0
    assert "Arena" in output
    assert "Exploration" in output


def test_simulate_json(tmp_path: Path) -> None:
    code, output = _run(
        "simulate",
        str(_preset_file(tmp_path)),
        "--set",
        "enemies_nearby=3",
        "--duration",
        "500",
        "--json",
    )
    assert code == 0
    data = json.loads(output)
    assert len(data["timeline"]) == 6
    assert data["statesVisited"][0] == "exploration"
    assert len(data["statesVisited"]) >= 2


def test_simulate_table(tmp_path: Path) -> None:
    code, output = _run("simulate", str(_preset_file(tmp_path)), "--set", "enemies_nearby=3", "--duration", "500")
    assert code == 0
    assert "Visited: Exploration" in output


def test_compile_single_target(tmp_path: Path) -> None:
    out = tmp_path / "build"
    code, output = _run("compile", str(_preset_file(tmp_path)), "--target", "unity", "--out", str(out))
    assert code == 0
    assert (out / "Arena" / "ArenaAudioController.cs").is_file()
    assert "file(s)" in output


def test_compile_all_targets(tmp_path: Path) -> None:
    out = tmp_path / "build"
    code, _ = _run(
        "compile",
        str(_preset_file(tmp_path)),
        "--out",
        str(out),
        "--project-name",
        "Shooter",
        "--no-readme",
    )
    assert code == 0
    assert (out / "fmod" / "Shooter" / "Events.xml").is_file()
    assert (out / "web_audio" / "Shooter" / "processor.js").is_file()
    assert not (out / "wwise" / "Shooter" / "README.md").exists()


def test_errors_are_reported_and_logged(tmp_path: Path, _log_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    missing = tmp_path / "missing.json"
    code, _ = _run("validate", str(missing))
    assert code == 1
    assert "statescore CLI failed" in capsys.readouterr().err
    assert "FileNotFoundError" in (_log_dir / "statescore.log").read_text(encoding="utf-8")


def test_invalid_graph_file_fails(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2]", encoding="utf-8")
    code, _ = _run("validate", str(broken))
    assert code == 1
    assert "GraphValidationError" in capsys.readouterr().err
