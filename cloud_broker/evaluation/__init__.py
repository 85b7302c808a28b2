"""Evaluation and analysis modules."""

from .metrics import (
    SimulationAnalyzer,
    MetricsCalculator,
    binding_metrics,
    jobs_to_dataframe,
    summarize_run,
)

__all__ = [
    "SimulationAnalyzer",
    "MetricsCalculator",
    "binding_metrics",
    "jobs_to_dataframe",
    "summarize_run",
]
