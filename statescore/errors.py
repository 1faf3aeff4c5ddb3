from __future__ import annotations


class StateScoreError(Exception):
    """Base error for the statescore library."""


class GraphValidationError(StateScoreError):
    """Raised when a graph (or a mutation of one) breaks a structural invariant."""


class UnknownEntityError(GraphValidationError):
    """Raised when an update or delete names an id that is not in the graph."""


class EngineError(StateScoreError):
    """Raised when a runtime engine cannot be constructed or driven."""


class CompileError(StateScoreError):
    """Raised when a target cannot express part of a graph."""


class UnknownTargetError(CompileError):
    """Raised when a compile request names a target that does not exist."""


class GraphNotFoundError(StateScoreError):
    """Raised when a repository has no graph for the requested id."""


class PresetNotFoundError(StateScoreError):
    """Raised when a preset graph or mapping cannot be found."""


class InvalidConfigError(StateScoreError):
    """Raised when configuration values (or their environment overrides) are invalid."""


class InvalidMappingError(StateScoreError):
    """Raised when a parameter mapping definition cannot be built."""
