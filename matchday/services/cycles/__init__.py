"""Cycle resolution and slip evaluation."""

from matchday.services.cycles.entities import (
    CycleEntity,
    Market,
    Pick,
    Selection,
    parse_cycle_entities,
)
from matchday.services.cycles.evaluator import EvaluationSummary, SlipEvaluator
from matchday.services.cycles.resolver import (
    CycleResolver,
    CycleState,
    ReadinessReport,
    assess_cycle,
    get_resolution_status,
)

__all__ = [
    "CycleEntity",
    "CycleResolver",
    "CycleState",
    "EvaluationSummary",
    "Market",
    "Pick",
    "ReadinessReport",
    "Selection",
    "SlipEvaluator",
    "assess_cycle",
    "get_resolution_status",
    "parse_cycle_entities",
]
