"""Unreal Engine C++ actor component plus a MetaSound graph description."""

from __future__ import annotations

from ..config import CompileOptions
from ..graph import BooleanValue, NumberValue, ParameterCondition, StateDurationCondition, StateTransition
from ..schema import TARGET_LABELS
from .builders import CodeWriter, comment_text, cpp_string, render_json
from .lowering import (
    ENGINE_SELECTION,
    LoweredGraph,
    db_from_linear,
    format_number,
    native_transition,
    selection_weight,
)
from .manifest import Artifact

_OPERATORS = {">": "Greater", "<": "Less", ">=": "GreaterOrEqual", "<=": "LessOrEqual", "==": "Equal"}


def _float(value: float) -> str:
    return f"{format_number(value)}f"


def _text(value: str) -> str:
    return f"TEXT({cpp_string(value)})"


def _types(lowered: LoweredGraph) -> str:
    project = lowered.project
    writer = CodeWriter()
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: audio state types",
        "",
        "#pragma once",
        "",
        '#include "CoreMinimal.h"',
        f'#include "{project}AudioTypes.generated.h"',
        "",
        "UENUM(BlueprintType)",
    )
    with writer.block(f"enum class E{project}State : uint8", closer="};"):
        for item in lowered.states:
            writer.line(f'{item.identifier} UMETA(DisplayName = {cpp_string(item.state.name)}),')
    writer.line()
    writer.line("UENUM(BlueprintType)")
    with writer.block(f"enum class E{project}TransitionType : uint8", closer="};"):
        for name in ("Instant", "Crossfade", "Musical", "Stinger", "Duck", "LayerIn", "LayerOut"):
            writer.line(f"{name},")
    writer.line()
    writer.line("UENUM(BlueprintType)")
    with writer.block(f"enum class E{project}Comparison : uint8", closer="};"):
        writer.line("Greater, Less, GreaterOrEqual, LessOrEqual, Equal, StateDuration")
    writer.line()
    writer.line("USTRUCT(BlueprintType)")
    with writer.block(f"struct F{project}Condition", closer="};"):
        writer.lines(
            "GENERATED_BODY()",
            "",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) FName Parameter;",
            f"UPROPERTY(EditAnywhere, BlueprintReadWrite) E{project}Comparison Operator = E{project}Comparison::Equal;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) float Value = 0.f;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) FString Text;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) bool bIsText = false;",
        )
    writer.line()
    writer.line("USTRUCT(BlueprintType)")
    with writer.block(f"struct F{project}Transition", closer="};"):
        writer.lines(
            "GENERATED_BODY()",
            "",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) FName Id;",
            f"UPROPERTY(EditAnywhere, BlueprintReadWrite) E{project}State From = E{project}State::{lowered.initial_identifier};",
            f"UPROPERTY(EditAnywhere, BlueprintReadWrite) E{project}State To = E{project}State::{lowered.initial_identifier};",
            f"UPROPERTY(EditAnywhere, BlueprintReadWrite) E{project}TransitionType Type = E{project}TransitionType::Crossfade;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) float DurationMs = 0.f;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) int32 Priority = 0;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) bool bAnyCondition = false;",
            "UPROPERTY(EditAnywhere, BlueprintReadWrite) float CooldownMs = 0.f;",
            f"UPROPERTY(EditAnywhere, BlueprintReadWrite) TArray<F{project}Condition> Conditions;",
        )
    return writer.render()


def _header(lowered: LoweredGraph) -> str:
    project = lowered.project
    state_enum = f"E{project}State"
    writer = CodeWriter()
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: runtime component",
        "",
        "#pragma once",
        "",
        '#include "CoreMinimal.h"',
        '#include "Components/ActorComponent.h"',
        f'#include "{project}AudioTypes.h"',
        f'#include "{project}AudioComponent.generated.h"',
        "",
        f"DECLARE_DYNAMIC_MULTICAST_DELEGATE_TwoParams(F{project}StateChanged, {state_enum}, From, {state_enum}, To);",
        "",
        "UCLASS(ClassGroup = (Audio), meta = (BlueprintSpawnableComponent))",
    )
    with writer.block(f"class U{project}AudioComponent : public UActorComponent", closer="};"):
        writer.lines(
            "GENERATED_BODY()",
            "",
            "public:",
            f"U{project}AudioComponent();",
            "",
            "virtual void TickComponent(float DeltaTime, ELevelTick TickType, "
            "FActorComponentTickFunction* ThisTickFunction) override;",
            "",
            'UFUNCTION(BlueprintCallable, Category = "Audio") void SetFloatParameter(FName Name, float Value);',
            'UFUNCTION(BlueprintCallable, Category = "Audio") void SetBoolParameter(FName Name, bool Value);',
            'UFUNCTION(BlueprintCallable, Category = "Audio") void SetTextParameter(FName Name, const FString& Value);',
            'UFUNCTION(BlueprintCallable, Category = "Audio") void TriggerEvent(FName Name);',
            f'UFUNCTION(BlueprintCallable, Category = "Audio") void ForceState({state_enum} State);',
            f'UFUNCTION(BlueprintPure, Category = "Audio") {state_enum} GetCurrentState() const {{ return CurrentState; }}',
            "",
            f'UPROPERTY(BlueprintAssignable, Category = "Audio") F{project}StateChanged OnStateChanged;',
            "",
            'UPROPERTY(EditAnywhere, Category = "Audio")',
            f"TArray<F{project}Transition> Transitions;",
            "",
            "private:",
            f"bool Check(const F{project}Condition& Condition) const;",
            f"bool Evaluate(const F{project}Transition& Transition) const;",
            "",
            f"{state_enum} CurrentState;",
            "float StateElapsedMs = 0.f;",
            "TMap<FName, float> Numbers;",
            "TMap<FName, float> MinBounds;",
            "TMap<FName, float> MaxBounds;",
            "TMap<FName, FString> Texts;",
            "TSet<FName> Pulses;",
            "TMap<FName, float> Cooldowns;",
        )
    return writer.render()


def _condition(project: str, condition: object) -> str:
    if isinstance(condition, StateDurationCondition):
        return (
            f"{{ NAME_None, E{project}Comparison::StateDuration, {_float(condition.threshold_ms)}, "
            f"FString(), false }}"
        )
    assert isinstance(condition, ParameterCondition)
    name = f"FName({_text(condition.parameter_name)})"
    op = f"E{project}Comparison::{_OPERATORS[condition.operator]}"
    match condition.value:
        case NumberValue(value=number):
            return f"{{ {name}, {op}, {_float(number)}, FString(), false }}"
        case BooleanValue(value=flag):
            return f"{{ {name}, {op}, {'1.f' if flag else '0.f'}, FString(), false }}"
        case _:
            return f"{{ {name}, {op}, 0.f, FString({_text(str(condition.value.value))}), true }}"


def _transition(lowered: LoweredGraph, transition: StateTransition, writer: CodeWriter) -> None:
    project = lowered.project
    with writer.block(""):
        writer.lines(
            f"F{project}Transition T;",
            f"T.Id = FName({_text(transition.id)});",
            f"T.From = E{project}State::{lowered.state_identifier(transition.from_state_id)};",
            f"T.To = E{project}State::{lowered.state_identifier(transition.to_state_id)};",
            f"T.Type = E{project}TransitionType::{native_transition('unreal', transition)};",
            f"T.DurationMs = {_float(transition.duration)};",
            f"T.Priority = {transition.priority};",
            f"T.bAnyCondition = {'true' if transition.condition_logic == 'OR' else 'false'};",
            f"T.CooldownMs = {_float(transition.cooldown_ms or 0)};",
        )
        for condition in transition.conditions:
            writer.line(f"T.Conditions.Add({_condition(project, condition)});")
        writer.line("Transitions.Add(T);")


def _source(lowered: LoweredGraph) -> str:
    project = lowered.project
    component = f"U{project}AudioComponent"
    writer = CodeWriter()
    writer.lines(
        f"// {comment_text(lowered.graph.name)}: runtime component",
        "",
        f'#include "{project}AudioComponent.h"',
        "",
    )
    with writer.block(f"{component}::{component}()"):
        writer.line("PrimaryComponentTick.bCanEverTick = true;")
        writer.line(f"CurrentState = E{project}State::{lowered.initial_identifier};")
        for item in lowered.parameters:
            parameter = item.parameter
            name = f"FName({_text(parameter.name)})"
            if parameter.type == "string":
                writer.line(f"Texts.Add({name}, {_text(str(parameter.default_value))});")
                continue
            writer.line(f"Numbers.Add({name}, {_float(item.initial)});")
            if item.lower_bound is not None:
                writer.line(f"MinBounds.Add({name}, {_float(item.lower_bound)});")
            if item.upper_bound is not None:
                writer.line(f"MaxBounds.Add({name}, {_float(item.upper_bound)});")
        for transition in lowered.transitions:
            _transition(lowered, transition, writer)
    writer.line()
    with writer.block(f"void {component}::SetFloatParameter(FName Name, float Value)"):
        writer.line("if (!Numbers.Contains(Name)) return;")
        writer.line("if (const float* Min = MinBounds.Find(Name)) Value = FMath::Max(*Min, Value);")
        writer.line("if (const float* Max = MaxBounds.Find(Name)) Value = FMath::Min(*Max, Value);")
        writer.line("Numbers[Name] = Value;")
    writer.line()
    with writer.block(f"void {component}::SetBoolParameter(FName Name, bool Value)"):
        writer.line("if (Numbers.Contains(Name)) Numbers[Name] = Value ? 1.f : 0.f;")
    writer.line()
    with writer.block(f"void {component}::SetTextParameter(FName Name, const FString& Value)"):
        writer.line("if (Texts.Contains(Name)) Texts[Name] = Value;")
    writer.line()
    with writer.block(f"void {component}::TriggerEvent(FName Name)"):
        writer.line("Pulses.Add(Name);")
    writer.line()
    with writer.block(f"void {component}::ForceState(E{project}State State)"):
        writer.line(f"const E{project}State Previous = CurrentState;")
        writer.line("CurrentState = State;")
        writer.line("StateElapsedMs = 0.f;")
        writer.line("OnStateChanged.Broadcast(Previous, State);")
    writer.line()
    with writer.block(f"bool {component}::Check(const F{project}Condition& C) const"):
        writer.line(f"if (C.Operator == E{project}Comparison::StateDuration) return StateElapsedMs >= C.Value;")
        with writer.block("if (C.bIsText)"):
            writer.line("const FString* Current = Texts.Find(C.Parameter);")
            writer.line(f"return C.Operator == E{project}Comparison::Equal && Current && *Current == C.Text;")
        writer.line("if (Pulses.Contains(C.Parameter)) return C.Value != 0.f;")
        writer.line("const float* V = Numbers.Find(C.Parameter);")
        writer.line("if (!V) return false;")
        with writer.block("switch (C.Operator)"):
            writer.lines(
                f"case E{project}Comparison::Greater: return *V > C.Value;",
                f"case E{project}Comparison::Less: return *V < C.Value;",
                f"case E{project}Comparison::GreaterOrEqual: return *V >= C.Value;",
                f"case E{project}Comparison::LessOrEqual: return *V <= C.Value;",
                "default: return *V == C.Value;",
            )
    writer.line()
    with writer.block(f"bool {component}::Evaluate(const F{project}Transition& T) const"):
        writer.line("// AND over no conditions is true, OR over no conditions is false.")
        with writer.block("if (T.bAnyCondition)"):
            writer.line("for (const auto& C : T.Conditions) { if (Check(C)) return true; }")
            writer.line("return false;")
        writer.line("for (const auto& C : T.Conditions) { if (!Check(C)) return false; }")
        writer.line("return true;")
    writer.line()
    with writer.block(
        f"void {component}::TickComponent(float DeltaTime, ELevelTick TickType, "
        "FActorComponentTickFunction* ThisTickFunction)"
    ):
        writer.line("Super::TickComponent(DeltaTime, TickType, ThisTickFunction);")
        writer.line("const float DeltaMs = DeltaTime * 1000.f;")
        writer.line("StateElapsedMs += DeltaMs;")
        with writer.block("for (auto It = Cooldowns.CreateIterator(); It; ++It)"):
            writer.line("It.Value() -= DeltaMs;")
            writer.line("if (It.Value() <= 0.f) It.RemoveCurrent();")
        writer.line(f"const F{project}Transition* Fired = nullptr;")
        with writer.block("for (const auto& T : Transitions)"):
            writer.line("if (T.From != CurrentState || Cooldowns.Contains(T.Id) || !Evaluate(T)) continue;")
            writer.line("if (!Fired || T.Priority > Fired->Priority ||")
            writer.line("    (T.Priority == Fired->Priority && T.Id.LexicalLess(Fired->Id))) Fired = &T;")
        writer.line("Pulses.Reset();")
        writer.line("if (!Fired) return;")
        writer.line("if (Fired->CooldownMs > 0.f) Cooldowns.Add(Fired->Id, Fired->CooldownMs);")
        writer.line("ForceState(Fired->To);")
    return writer.render()


def _metasound(lowered: LoweredGraph) -> str:
    sources = {source.id: source for source in lowered.graph.sources}
    data = {
        "name": f"MS_{lowered.project}",
        "inputs": [
            {
                "name": item.identifier,
                "type": {"number": "Float", "boolean": "Bool", "string": "String"}[item.parameter.type],
                "default": item.parameter.default_value,
            }
            for item in lowered.parameters
        ]
        + [{"name": "State", "type": "Int32", "default": 0}],
        "layers": [
            {
                "name": layer.identifier,
                "node": "WavePlayer",
                "selection": ENGINE_SELECTION[layer.selection],
                "loop": layer.loop,
                "gainDb": db_from_linear(layer.volume),
                "waves": [
                    {
                        "source": source_id,
                        "uri": sources[source_id].uri if source_id in sources else None,
                        "weight": selection_weight(layer.selection, layer.weights, index),
                    }
                    for index, source_id in enumerate(layer.source_ids)
                ],
            }
            for layer in lowered.layers
        ],
        "states": [
            {
                "index": index,
                "name": item.identifier,
                "masterGainDb": db_from_linear(item.state.audio_config.master_volume),
                "layerGains": {
                    name: item.state.audio_config.volume_for(name)
                    for name in item.state.audio_config.active_layers
                },
            }
            for index, item in enumerate(lowered.states)
        ],
        "output": {"channels": "Stereo", "label": TARGET_LABELS["unreal"]},
    }
    return render_json(data)


def compile_unreal(lowered: LoweredGraph, options: CompileOptions) -> list[Artifact]:
    project = lowered.project
    return [
        Artifact(path=f"{project}/{project}AudioTypes.h", content=_types(lowered), kind="code"),
        Artifact(path=f"{project}/{project}AudioComponent.h", content=_header(lowered), kind="code"),
        Artifact(path=f"{project}/{project}AudioComponent.cpp", content=_source(lowered), kind="code"),
        Artifact(path=f"{project}/MS_{project}.metasound.json", content=_metasound(lowered), kind="config"),
    ]
