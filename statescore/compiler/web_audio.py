"""Browser playback: an AudioWorklet mixer, a state-machine player and typings."""

from __future__ import annotations

from typing import Any

from ..config import CompileOptions
from ..graph import StateDurationCondition
from .builders import CodeWriter, comment_text, js_string, render_json
from .lowering import (
    WEB_AUDIO_SELECTION,
    LoweredGraph,
    native_transition,
    selection_weight,
)
from .manifest import Artifact


def processor_name(lowered: LoweredGraph) -> str:
    return f"{lowered.project.lower()}-processor"


def _graph_data(lowered: LoweredGraph) -> dict[str, Any]:
    sources = {source.id: source for source in lowered.graph.sources}
    transitions = []
    for transition in lowered.transitions:
        conditions: list[dict[str, Any]] = []
        for condition in transition.conditions:
            if isinstance(condition, StateDurationCondition):
                conditions.append({"kind": "state_duration", "thresholdMs": condition.threshold_ms})
            else:
                conditions.append(
                    {
                        "kind": "parameter",
                        "parameter": condition.parameter_name,
                        "operator": condition.operator,
                        "type": condition.value.type,
                        "value": condition.value.value,
                    }
                )
        transitions.append(
            {
                "id": transition.id,
                "from": lowered.state_identifier(transition.from_state_id),
                "to": lowered.state_identifier(transition.to_state_id),
                "type": native_transition("web_audio", transition),
                "durationMs": transition.duration,
                "priority": transition.priority,
                "logic": transition.condition_logic,
                "cooldownMs": transition.cooldown_ms or 0,
                "conditions": conditions,
                "onStart": transition.on_start_event,
                "onComplete": transition.on_complete_event,
            }
        )
    return {
        "initialState": lowered.initial_identifier,
        "parameters": {
            item.parameter.name: {
                "type": item.parameter.type,
                "default": item.parameter.default_value,
                "min": item.lower_bound,
                "max": item.upper_bound,
            }
            for item in lowered.parameters
        },
        "layers": [
            {
                "name": layer.identifier,
                "selection": WEB_AUDIO_SELECTION[layer.selection],
                "volume": layer.volume,
                "loop": layer.loop,
                "sources": [
                    {
                        "id": source_id,
                        "url": (sources[source_id].uri if source_id in sources else None) or f"{source_id}.wav",
                        "weight": selection_weight(layer.selection, layer.weights, index),
                    }
                    for index, source_id in enumerate(layer.source_ids)
                ],
            }
            for layer in lowered.layers
        ],
        "states": {
            item.identifier: {
                "name": item.state.name,
                "masterVolume": item.state.audio_config.master_volume,
                "layers": {
                    layer.identifier: item.state.audio_config.volume_for(layer.name)
                    for layer in lowered.layers
                    if layer.name in item.state.audio_config.active_layers
                },
            }
            for item in lowered.states
        },
        "transitions": transitions,
    }


def _processor(lowered: LoweredGraph) -> str:
    writer = CodeWriter(indent="  ")
    writer.lines(f"// {comment_text(lowered.graph.name)}: AudioWorklet mixer", "")
    with writer.block(f"class {lowered.project}Processor extends AudioWorkletProcessor"):
        with writer.block("constructor()"):
            writer.lines(
                "super();",
                "this.layers = new Map();",
                "this.master = { gain: 1, target: 1, step: 0 };",
                "this.playing = false;",
                "this.port.onmessage = (event) => this.handle(event.data);",
            )
        writer.line()
        with writer.block("handle(message)"):
            with writer.block("switch (message.type)"):
                writer.lines(
                    "case 'play': this.playing = true; break;",
                    "case 'stop': this.playing = false; break;",
                    "case 'buffer':",
                    "  this.layers.set(message.layer, {",
                    "    channels: message.channels, playhead: 0, loop: message.loop,",
                    "    gain: 0, target: 0, step: 0,",
                    "  });",
                    "  break;",
                    "case 'gains': this.ramp(message.gains, message.master, message.durationMs); break;",
                )
        writer.line()
        with writer.block("ramp(gains, master, durationMs)"):
            writer.line("const frames = Math.max(1, (durationMs / 1000) * sampleRate);")
            with writer.block("for (const [name, layer] of this.layers)"):
                writer.line("layer.target = gains[name] ?? 0;")
                writer.line("layer.step = (layer.target - layer.gain) / frames;")
            writer.line("this.master.target = master;")
            writer.line("this.master.step = (master - this.master.gain) / frames;")
        writer.line()
        with writer.block("static approach(node)"):
            writer.line("if (node.step === 0) return;")
            writer.line("node.gain += node.step;")
            with writer.block("if ((node.step > 0 && node.gain >= node.target) || (node.step < 0 && node.gain <= node.target))"):
                writer.line("node.gain = node.target;")
                writer.line("node.step = 0;")
        writer.line()
        with writer.block("process(inputs, outputs)"):
            writer.line("const output = outputs[0];")
            writer.line("if (!this.playing || output.length === 0) return true;")
            with writer.block("for (let i = 0; i < output[0].length; i++)"):
                writer.line(f"{lowered.project}Processor.approach(this.master);")
                with writer.block("for (const layer of this.layers.values())"):
                    writer.line(f"{lowered.project}Processor.approach(layer);")
                    writer.line("const length = layer.channels[0].length;")
                    writer.line("if (layer.playhead >= length) { if (!layer.loop) continue; layer.playhead = 0; }")
                    with writer.block("for (let c = 0; c < output.length; c++)"):
                        writer.line("const source = layer.channels[Math.min(c, layer.channels.length - 1)];")
                        writer.line("output[c][i] += source[layer.playhead] * layer.gain * this.master.gain;")
                    writer.line("layer.playhead += 1;")
            writer.line("return true;")
    writer.line()
    writer.line(f"registerProcessor({js_string(processor_name(lowered))}, {lowered.project}Processor);")
    return writer.render()


def _player(lowered: LoweredGraph) -> str:
    project = lowered.project
    graph_json = render_json(_graph_data(lowered)).rstrip("\n").replace("</", "<\\/")
    writer = CodeWriter(indent="  ")
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: state machine player",
        "",
        f"export const GRAPH = {graph_json};",
        "",
        "const COMPARE = {",
        "  '>': (a, b) => a > b,",
        "  '<': (a, b) => a < b,",
        "  '>=': (a, b) => a >= b,",
        "  '<=': (a, b) => a <= b,",
        "  '==': (a, b) => a === b,",
        "};",
        "",
    )
    with writer.block(f"export class {project}Player"):
        with writer.block("constructor()"):
            writer.lines(
                "this.context = null;",
                "this.node = null;",
                "this.state = GRAPH.initialState;",
                "this.stateElapsedMs = 0;",
                "this.values = Object.fromEntries(",
                "  Object.entries(GRAPH.parameters).map(([name, p]) => [name, p.default]),",
                ");",
                "this.pulses = new Set();",
                "this.cooldowns = new Map();",
                "this.counters = new Map();",
                "this.listeners = [];",
            )
        writer.line()
        with writer.block("async init(context = new AudioContext())"):
            writer.lines(
                "this.context = context;",
                "await context.audioWorklet.addModule(new URL('./processor.js', import.meta.url));",
                f"this.node = new AudioWorkletNode(context, {js_string(processor_name(lowered))}, "
                "{ outputChannelCount: [2] });",
                "this.node.connect(context.destination);",
            )
            with writer.block("for (const layer of GRAPH.layers)"):
                writer.line("const source = this.selectSource(layer);")
                writer.line("if (!source) continue;")
                writer.line("const response = await fetch(source.url);")
                writer.line("const buffer = await context.decodeAudioData(await response.arrayBuffer());")
                writer.line("const channels = [];")
                writer.line("for (let c = 0; c < buffer.numberOfChannels; c++) channels.push(buffer.getChannelData(c));")
                writer.line("this.node.port.postMessage({ type: 'buffer', layer: layer.name, channels, loop: layer.loop });")
            writer.line("this.applyState(0);")
        writer.line()
        with writer.block("selectSource(layer)"):
            writer.line("const sources = layer.sources;")
            writer.line("if (sources.length === 0) return null;")
            writer.line("const count = this.counters.get(layer.name) ?? 0;")
            writer.line("this.counters.set(layer.name, count + 1);")
            with writer.block("switch (layer.selection)"):
                writer.lines(
                    "case 'sequential':",
                    "case 'round_robin':",
                    "  return sources[count % sources.length];",
                    "case 'weighted': {",
                    "  const total = sources.reduce((sum, s) => sum + s.weight, 0);",
                    "  let pick = Math.random() * total;",
                    "  for (const s of sources) { pick -= s.weight; if (pick <= 0) return s; }",
                    "  return sources[sources.length - 1];",
                    "}",
                    "default:",
                    "  return sources[Math.floor(Math.random() * sources.length)];",
                )
        writer.line()
        with writer.block("onTransition(listener)"):
            writer.line("this.listeners.push(listener);")
        writer.line()
        with writer.block("play()"):
            writer.line("if (this.context.state === 'suspended') this.context.resume();")
            writer.line("this.node.port.postMessage({ type: 'play' });")
        writer.line()
        with writer.block("stop()"):
            writer.line("this.node.port.postMessage({ type: 'stop' });")
        writer.line()
        with writer.block("setParameter(name, value)"):
            writer.line("const param = GRAPH.parameters[name];")
            writer.line("if (!param) return;")
            writer.line("if (param.type !== 'number') { this.values[name] = value; return; }")
            writer.line("let clamped = value;")
            writer.line("if (param.min !== null) clamped = Math.max(param.min, clamped);")
            writer.line("if (param.max !== null) clamped = Math.min(param.max, clamped);")
            writer.line("this.values[name] = clamped;")
        writer.line()
        with writer.block("triggerEvent(name)"):
            writer.line("this.pulses.add(name);")
        writer.line()
        with writer.block("check(condition)"):
            writer.line("if (condition.kind === 'state_duration') return this.stateElapsedMs >= condition.thresholdMs;")
            writer.line("if (this.pulses.has(condition.parameter)) return condition.operator === '==' && condition.value === true;")
            writer.line("const current = this.values[condition.parameter];")
            writer.line("if (typeof current !== typeof condition.value) return false;")
            writer.line("if (condition.type !== 'number' && condition.operator !== '==') return false;")
            writer.line("return COMPARE[condition.operator](current, condition.value);")
        writer.line()
        with writer.block("evaluate(transition)"):
            writer.line("// AND over no conditions is true, OR over no conditions is false.")
            writer.line("const results = transition.conditions.map((c) => this.check(c));")
            writer.line("return transition.logic === 'OR' ? results.some(Boolean) : results.every(Boolean);")
        writer.line()
        with writer.block("tick(deltaMs)"):
            writer.line("this.stateElapsedMs += deltaMs;")
            with writer.block("for (const [id, remaining] of this.cooldowns)"):
                writer.line("if (remaining - deltaMs <= 0) this.cooldowns.delete(id);")
                writer.line("else this.cooldowns.set(id, remaining - deltaMs);")
            writer.line("const fired = GRAPH.transitions")
            writer.line("  .filter((t) => t.from === this.state && !this.cooldowns.has(t.id) && this.evaluate(t))")
            writer.line("  .sort((a, b) => b.priority - a.priority || (a.id < b.id ? -1 : a.id > b.id ? 1 : 0))[0];")
            writer.line("this.pulses.clear();")
            writer.line("if (!fired) return null;")
            writer.line("if (fired.cooldownMs > 0) this.cooldowns.set(fired.id, fired.cooldownMs);")
            writer.line("const from = this.state;")
            writer.line("this.state = fired.to;")
            writer.line("this.stateElapsedMs = 0;")
            writer.line("this.applyState(fired.type === 'instant' ? 0 : fired.durationMs);")
            writer.line("for (const listener of this.listeners) listener({ transition: fired, from, to: fired.to });")
            writer.line("return fired;")
        writer.line()
        with writer.block("applyState(durationMs)"):
            writer.line("const state = GRAPH.states[this.state];")
            writer.line("if (!this.node) return;")
            writer.line(
                "this.node.port.postMessage({ type: 'gains', gains: state.layers, "
                "master: state.masterVolume, durationMs });"
            )
        writer.line()
        with writer.block("dispose()"):
            writer.line("if (this.node) this.node.disconnect();")
            writer.line("this.node = null;")
            writer.line("this.listeners = [];")
    writer.line()
    writer.line(f"export default {project}Player;")
    return writer.render()


def _types(lowered: LoweredGraph) -> str:
    project = lowered.project
    states = " | ".join(js_string(item.identifier) for item in lowered.states) or "never"
    writer = CodeWriter(indent="  ")
    writer.lines(f"// {comment_text(lowered.graph.name)}: type declarations", "")
    writer.line(f"export type {project}State = {states};")
    writer.line()
    with writer.block(f"export interface {project}Parameters"):
        for item in lowered.parameters:
            ts_type = {"number": "number", "boolean": "boolean", "string": "string"}[item.parameter.type]
            writer.line(f"{js_string(item.parameter.name)}: {ts_type};")
    writer.line()
    with writer.block(f"export interface {project}TransitionEvent"):
        writer.lines(
            "transition: { id: string; type: string; durationMs: number };",
            f"from: {project}State;",
            f"to: {project}State;",
        )
    writer.line()
    with writer.block(f"export declare class {project}Player"):
        writer.lines(
            f"readonly state: {project}State;",
            "init(context?: AudioContext): Promise<void>;",
            "play(): void;",
            "stop(): void;",
            f"setParameter<K extends keyof {project}Parameters>(name: K, value: {project}Parameters[K]): void;",
            "triggerEvent(name: string): void;",
            f"onTransition(listener: (event: {project}TransitionEvent) => void): void;",
            "tick(deltaMs: number): unknown;",
            "dispose(): void;",
        )
    writer.line()
    writer.line(f"export default {project}Player;")
    return writer.render()


def compile_web_audio(lowered: LoweredGraph, options: CompileOptions) -> list[Artifact]:
    project = lowered.project
    return [
        Artifact(path=f"{project}/processor.js", content=_processor(lowered), kind="code"),
        Artifact(path=f"{project}/player.js", content=_player(lowered), kind="code"),
        Artifact(path=f"{project}/types.d.ts", content=_types(lowered), kind="code"),
    ]
