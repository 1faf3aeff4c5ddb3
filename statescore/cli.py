from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import IO

from rich.markup import escape

from .compiler import compile_all, compile_graph
from .config import CompileOptions
from .console import make_console, render_error, render_table, status
from .graph import create_empty_graph
from .graph_io import load_graph, save_graph, write_artifacts
from .logging_utils import DEBUG_ENV, configure_logging, log_exception
from .presets import create_graph_from_preset, list_presets
from .schema import COMPILE_TARGETS, ParameterValue
from .simulator import Trajectory, TrajectoryValue, simulate

_LOGGER = logging.getLogger("statescore.cli")


def _scalar(text: str) -> ParameterValue:
    lowered = text.strip().lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    try:
        return float(text)
    except ValueError:
        return text


def _parse_assignment(raw: str) -> tuple[str, TrajectoryValue]:
    """``name=value`` or ``name=t:value,t:value`` keyframes."""

    name, sep, value = raw.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {raw!r}")
    if ":" not in value:
        return name, _scalar(value)
    keyframes: list[tuple[float, ParameterValue]] = []
    for chunk in value.split(","):
        time_text, sep, item = chunk.partition(":")
        try:
            time_ms = float(time_text)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"Bad keyframe time in {raw!r}") from exc
        keyframes.append((time_ms, _scalar(item)))
    return name, keyframes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="statescore")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("presets", help="List built-in preset graphs.")

    new = sub.add_parser("new", help="Create a graph file, empty or from a preset.")
    new.add_argument("name", type=str)
    new.add_argument("--preset", type=str, default=None)
    new.add_argument("--output", type=str, default=None)

    validate = sub.add_parser("validate", help="Validate a graph JSON file.")
    validate.add_argument("graph", type=str)

    sim = sub.add_parser("simulate", help="Run a graph offline against a parameter trajectory.")
    sim.add_argument("graph", type=str)
    sim.add_argument("--set", dest="assignments", action="append", default=[], type=_parse_assignment)
    sim.add_argument("--duration", type=float, default=1000.0)
    sim.add_argument("--step", type=float, default=100.0)
    sim.add_argument("--interpolate", action="store_true")
    sim.add_argument("--json", action="store_true", help="Print the timeline as JSON.")

    comp = sub.add_parser("compile", help="Compile a graph for one target or all of them.")
    comp.add_argument("graph", type=str)
    comp.add_argument("--target", choices=[*COMPILE_TARGETS, "all"], default="all")
    comp.add_argument("--out", type=str, default="build")
    comp.add_argument("--project-name", type=str, default=None)
    comp.add_argument("--no-readme", action="store_true")
    return parser


def _run(args: argparse.Namespace, stream: IO[str]) -> int:
    console = make_console(stream)

    match args.command:
        case "presets":
            render_table(console, "Presets", ["Key", "Name", "Description"], list_presets())
            return 0

        case "new":
            if args.preset:
                graph = create_graph_from_preset(args.preset, name=args.name)
            else:
                graph = create_empty_graph(args.name)
            output = Path(args.output or f"{args.name.lower().replace(' ', '_')}.json")
            save_graph(graph, output)
            console.print(f"Wrote graph {graph.id} to {output}")
            return 0

        case "validate":
            graph = load_graph(args.graph)
            initial = graph.initial_state()
            render_table(
                console,
                graph.name,
                ["States", "Transitions", "Parameters", "Layers", "Initial"],
                [
                    (
                        len(graph.states),
                        len(graph.transitions),
                        len(graph.parameters),
                        len(graph.layers),
                        initial.name if initial else "-",
                    )
                ],
            )
            return 0

        case "simulate":
            graph = load_graph(args.graph)
            trajectory: Trajectory = dict(args.assignments)
            timeline = simulate(graph, trajectory, args.duration, args.step, interpolate=args.interpolate)
            if args.json:
                console.print(timeline.to_json(), markup=False, emoji=False)
                return 0
            names = {state.id: state.name for state in graph.states}
            render_table(
                console,
                "Transitions",
                ["Time (ms)", "From", "To"],
                [(t.time, names[t.from_state], names[t.to_state]) for t in timeline.transitions],
            )
            visited = ", ".join(names[state_id] for state_id in timeline.states_visited)
            console.print(f"Visited: {visited}")
            return 0

        case "compile":
            graph = load_graph(args.graph)
            options = CompileOptions(project_name=args.project_name, include_readme=not args.no_readme)
            with status(console, f"Compiling {graph.name}"):
                if args.target == "all":
                    batch = compile_all(graph, options=options)
                    written = write_artifacts(batch, args.out)
                    for failure in batch.failures:
                        console.print(f"[yellow]{failure.target}[/]: {escape(failure.message)}")
                else:
                    written = write_artifacts(compile_graph(graph, args.target, options=options), args.out)
            console.print(f"Wrote {len(written)} file(s) to {args.out}")
            return 0

    return 1


def main(argv: list[str] | None = None, *, stream: IO[str] | None = None) -> int:
    configure_logging()
    try:
        args = build_parser().parse_args(argv)
        return _run(args, stream or sys.stdout)
    except Exception as exc:
        debug = bool(os.environ.get(DEBUG_ENV))
        _LOGGER.warning("statescore CLI failed: %s", exc, exc_info=debug)
        log_exception("statescore CLI", exc)
        render_error("statescore CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
