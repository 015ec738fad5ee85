"""Adapter layer for rule evaluation and source retrieval."""

from .rule_engine import (
    EvaluationCancelled,
    PatternRuleEngine,
    RuleEngineAdapter,
    RuleEvaluationError,
    detector_error,
)
from .source_loader import RetrievalError, SourceLoader

__all__ = [
    "EvaluationCancelled",
    "PatternRuleEngine",
    "RetrievalError",
    "RuleEngineAdapter",
    "RuleEvaluationError",
    "SourceLoader",
    "detector_error",
]
