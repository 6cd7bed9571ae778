# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""AnalysisEngine - service layer owning one analysis run end to end.

Pipeline:
    scan -> extract -> build graph -> {duplicates, reachability} -> plan -> gate

Error policy:
- ScanError and AnalysisCancelled propagate; there is nothing to report.
- Any fatal error after scanning (graph inconsistency, a failing stage)
  yields an incomplete plan carrying whatever was computed before it.
- Per-file and per-group failures never stop the run; they are recorded in
  the file counts and group statuses.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from prunegraph.context import AnalysisCancelled, AnalysisContext
from prunegraph.duplicates import DuplicateDetector
from prunegraph.entry_points import discover_entry_points, merge_entry_points
from prunegraph.extractor import SymbolExtractor
from prunegraph.graph_builder import GraphBuilder, GraphInconsistencyError
from prunegraph.models import CleanupPlan, DependencyGraph, FileExtraction, SourceFile
from prunegraph.planner import PlanGenerator
from prunegraph.profiles import ProfileRegistry, default_registry
from prunegraph.reachability import ReachabilityAnalyzer, ReachabilityResult, collect_roots
from prunegraph.scanner import UNKNOWN_LANGUAGE, SourceScanner
from prunegraph.verification import (
    CommandVerifier,
    FileSystemApplier,
    GroupOutcome,
    VerificationGate,
    Verifier,
)

logger = logging.getLogger(__name__)


@dataclass
class RunArtifacts:
    """Intermediate results of the most recent run, kept for inspection."""

    files: List[SourceFile] = field(default_factory=list)
    extractions: List[FileExtraction] = field(default_factory=list)
    graph: Optional[DependencyGraph] = None
    roots: Dict[str, str] = field(default_factory=dict)
    reachability: Optional[ReachabilityResult] = None
    outcomes: List[GroupOutcome] = field(default_factory=list)


def tree_fingerprint(files: List[SourceFile], settings: Dict[str, Any]) -> str:
    """Hash over every file's path and content hash plus the analysis settings."""
    digest = hashlib.sha256()
    for source_file in sorted(files, key=lambda f: f.path):
        digest.update(f"{source_file.path}\0{source_file.content_hash}\n".encode("utf-8"))
    digest.update(json.dumps(settings, sort_keys=True).encode("utf-8"))
    return digest.hexdigest()


class AnalysisEngine:
    """Runs the analysis pipeline with an explicit per-run context.

    Usage:
        engine = AnalysisEngine(AnalysisContext(config=config))
        plan = engine.run(Path("/path/to/project"))
    """

    def __init__(self, context: AnalysisContext, registry: Optional[ProfileRegistry] = None):
        """Initialize the engine.

        Args:
            context: Run context (configuration, cancellation token, cache).
            registry: Profile registry (default: built-in profiles).
        """
        self.context = context
        self.registry = registry or default_registry()
        self.last_run = RunArtifacts()

    def run(
        self,
        root: Path,
        apply: bool = False,
        verifier: Optional[Verifier] = None,
    ) -> CleanupPlan:
        """Analyze a tree and produce a cleanup plan.

        Args:
            root: Project root.
            apply: Apply auto-applicable groups that pass simulation.
            verifier: External success signal for applied groups. If None and
                a verify command is configured, that command is used.

        Returns:
            The plan; plan.complete is False when a stage failed after the scan.

        Raises:
            ScanError: If root cannot be scanned.
            AnalysisCancelled: If the run was cancelled or timed out.
        """
        from prunegraph import __version__

        config = self.context.config
        token = self.context.token
        root = Path(root).resolve()
        started = datetime.now(timezone.utc)
        self.last_run = artifacts = RunArtifacts()

        scanner = SourceScanner(
            registry=self.registry,
            ignore_patterns=set(config.ignore_patterns),
            max_file_size_bytes=config.max_file_size_bytes,
            max_workers=config.max_workers,
            token=token,
        )
        files = scanner.scan(root)
        artifacts.files = files

        settings = config.snapshot()
        plan = CleanupPlan(
            root=str(root),
            generated_at=started.isoformat(),
            fingerprint=tree_fingerprint(files, settings),
            file_counts=self._file_counts(scanner, files, []),
            settings=dict(settings, tool_version=__version__),
        )

        try:
            self._analyze(root, plan, scanner, files, apply, verifier)
        except AnalysisCancelled:
            raise
        except GraphInconsistencyError as e:
            logger.error(f"Graph inconsistency, plan is incomplete: {e}")
            plan.complete = False
            plan.errors.append(f"GraphInconsistencyError: {e}")
        except Exception as e:
            logger.error(f"Analysis failed after scanning, plan is incomplete: {e}", exc_info=True)
            plan.complete = False
            plan.errors.append(f"{type(e).__name__}: {e}")

        elapsed = (datetime.now(timezone.utc) - started).total_seconds()
        logger.info(
            f"Analysis of {root} finished in {elapsed:.2f}s: {len(plan.actions)} actions, "
            f"complete={plan.complete}"
        )
        return plan

    def _analyze(
        self,
        root: Path,
        plan: CleanupPlan,
        scanner: SourceScanner,
        files: List[SourceFile],
        apply: bool,
        verifier: Optional[Verifier],
    ) -> None:
        config = self.context.config
        token = self.context.token
        artifacts = self.last_run

        extractor = SymbolExtractor(
            registry=self.registry, languages=config.languages, cache=self.context.cache
        )
        extractions = extractor.extract_all(files, max_workers=config.max_workers, token=token)
        artifacts.extractions = extractions
        plan.file_counts = self._file_counts(scanner, files, extractions)

        builder = GraphBuilder(registry=self.registry, unique_entry_points=config.unique_entry_points)
        for extraction in extractions:
            builder.add_extraction(extraction)
        graph = builder.build()
        artifacts.graph = graph
        token.raise_if_cancelled()

        entry_points = list(config.entry_points)
        if config.discover_entry_points:
            entry_points = merge_entry_points(entry_points, discover_entry_points(root))
        roots = collect_roots(graph, extractions, entry_points, config.exports_are_roots)
        artifacts.roots = roots

        result = ReachabilityAnalyzer().analyze(graph, roots)
        artifacts.reachability = result
        plan.candidates = result.candidates
        token.raise_if_cancelled()

        bodies: Dict[str, str] = {}
        for extraction in extractions:
            bodies.update(extraction.bodies)
        detector = DuplicateDetector(
            similarity_threshold=config.similarity_threshold,
            shingle_size=config.shingle_size,
            min_tokens=config.min_duplicate_tokens,
            max_workers=config.max_workers,
            token=token,
        )
        plan.clusters = detector.detect(graph, bodies)

        plan.actions, plan.groups = PlanGenerator().generate(graph, plan.clusters, result)
        token.raise_if_cancelled()

        if apply and verifier is None and config.verify_command:
            verifier = CommandVerifier(
                config.verify_command, cwd=root, timeout_seconds=config.verify_timeout_seconds
            )
        if apply and verifier is None:
            logger.warning("⚠️ Apply requested without a verify command, leaving the plan pending")
            plan.errors.append("apply skipped: no verify command configured")
            apply = False

        gate = VerificationGate(graph, roots)
        applier = FileSystemApplier(root, graph) if apply else None
        artifacts.outcomes = gate.run(plan, apply=apply, applier=applier, verifier=verifier)

    def _file_counts(
        self,
        scanner: SourceScanner,
        files: List[SourceFile],
        extractions: List[FileExtraction],
    ) -> Dict[str, Any]:
        failed = sorted(e.path for e in extractions if e.error_message is not None)
        return {
            "total": len(files),
            "by_language": scanner.count_by_language(files),
            "opaque": sum(1 for e in extractions if e.is_opaque),
            "unknown_language": sum(1 for f in files if f.language == UNKNOWN_LANGUAGE),
            "failed": len(failed),
            "failed_files": failed,
            "skipped": [{"path": path, "reason": reason} for path, reason in scanner.skipped],
        }
