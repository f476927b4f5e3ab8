"""
Orchestration

The run state machine and the run_analysis() entry point.
"""

from .graph import (
    ALLOWED_TRANSITIONS,
    AnalysisState,
    CancellationToken,
    InstrumentRecord,
    OrchestrationGraph,
    RunResult,
    RunState,
    show_agent_reasoning,
)
from .runner import run_analysis

__all__ = [
    'ALLOWED_TRANSITIONS',
    'AnalysisState',
    'CancellationToken',
    'InstrumentRecord',
    'OrchestrationGraph',
    'RunResult',
    'RunState',
    'show_agent_reasoning',
    'run_analysis',
]
