# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Redundancy and reachability analysis for source trees."""

from .config import Config, ConfigurationError
from .context import AnalysisCancelled, AnalysisContext, CancellationToken, ExtractionCache
from .engine import AnalysisEngine
from .graph_builder import GraphInconsistencyError
from .models import (
    Action,
    ActionGroup,
    ActionType,
    CleanupPlan,
    DependencyGraph,
    DuplicateCluster,
    RemovalCandidate,
)
from .report import read_report, write_report
from .scanner import ScanError
from .verification import SimulationConflict, VerificationFailure

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ActionGroup",
    "ActionType",
    "AnalysisCancelled",
    "AnalysisContext",
    "AnalysisEngine",
    "CancellationToken",
    "CleanupPlan",
    "Config",
    "ConfigurationError",
    "DependencyGraph",
    "DuplicateCluster",
    "ExtractionCache",
    "GraphInconsistencyError",
    "RemovalCandidate",
    "ScanError",
    "SimulationConflict",
    "VerificationFailure",
    "read_report",
    "write_report",
]
