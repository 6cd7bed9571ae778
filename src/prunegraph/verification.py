# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Verification gate for action groups.

Each group is first simulated on a copy of the graph: applicable actions are
played against the copy and reachability is recomputed. A node that becomes
unreachable-certain without already being part of the plan means the group
would orphan something unexpectedly; the group is marked needs-revision and
never applied.

Groups that pass simulation and are applied for real must then be confirmed
by an external success signal (the verify command). On a negative signal the
group, and only that group, is reverted from the applier's byte snapshots.

Groups are applied one at a time, so a revert never has to undo work from a
later group.
"""

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from prunegraph.models import (
    Action,
    ActionType,
    CleanupPlan,
    DependencyGraph,
    GroupStatus,
    ReachabilityState,
    Symbol,
)
from prunegraph.planner import AUTO_APPLICABLE_TYPES, group_is_auto_applicable
from prunegraph.reachability import ReachabilityAnalyzer

logger = logging.getLogger(__name__)

TRASH_DIRNAME = ".prunegraph/trash"

# Signature of an external success signal: () -> (succeeded, detail)
Verifier = Callable[[], Tuple[bool, str]]


class SimulationConflict(Exception):
    """Raised when simulating a group orphans nodes the plan does not cover."""

    def __init__(self, group_id: str, orphaned: Sequence[str]):
        self.group_id = group_id
        self.orphaned = list(orphaned)
        preview = ", ".join(self.orphaned[:5])
        more = f" (+{len(self.orphaned) - 5} more)" if len(self.orphaned) > 5 else ""
        super().__init__(f"Group {group_id} would orphan {preview}{more}")


class VerificationFailure(Exception):
    """Raised when the external success signal is negative for an applied group."""

    def __init__(self, group_id: str, detail: str):
        self.group_id = group_id
        self.detail = detail
        super().__init__(f"Verification failed for group {group_id}: {detail}")


@dataclass
class GroupOutcome:
    """What happened to one group during a gate run."""

    group_id: str
    status: str
    applied: bool = False
    message: Optional[str] = None


class CommandVerifier:
    """Runs a shell-free command in the project root; exit status 0 is success."""

    def __init__(self, command: str, cwd: Path, timeout_seconds: float = 600):
        self.argv = shlex.split(command)
        if not self.argv:
            raise ValueError("verify command is empty")
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def __call__(self) -> Tuple[bool, str]:
        started = time.time()
        try:
            proc = subprocess.run(
                self.argv,
                cwd=str(self.cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return False, f"'{self.argv[0]}' timed out after {self.timeout_seconds}s"
        except OSError as e:
            return False, f"could not run '{self.argv[0]}': {e}"

        duration_ms = int((time.time() - started) * 1000)
        logger.info(f"Verify command exited {proc.returncode} in {duration_ms}ms")
        if proc.returncode == 0:
            return True, "exit status 0"
        tail = (proc.stderr or proc.stdout or "").strip().splitlines()[-3:]
        detail = f"exit status {proc.returncode}"
        if tail:
            detail += ": " + " | ".join(tail)
        return False, detail


class FileSystemApplier:
    """Applies remove/archive actions to files and can undo them exactly.

    Whole-file subjects are moved into a timestamped trash directory under the
    root; symbol subjects have their declaration span deleted in place. The
    bytes of every touched file are snapshotted before the first change, and
    revert() writes those bytes back. Snapshots of committed groups are kept
    for the applier's lifetime so revert_all() can undo the whole run.

    Span line numbers refer to the analyzed tree. Lines removed by committed
    groups are tracked so later groups still hit the right spans.
    """

    def __init__(self, root: Path, graph: DependencyGraph, trash_root: Optional[Path] = None):
        self.root = root
        self.graph = graph
        stamp = time.strftime("%Y%m%d-%H%M%S")
        self.trash_root = trash_root or (root / TRASH_DIRNAME / stamp)
        self._snapshots: Dict[str, Dict[str, bytes]] = {}  # group -> path -> bytes
        self._moved: Dict[str, List[Tuple[str, Path]]] = {}  # group -> (path, trash path)
        self._pending_removed: Dict[str, Dict[str, List[Tuple[int, int]]]] = {}
        self._removed_lines: Dict[str, List[Tuple[int, int]]] = {}  # committed spans

    def apply(self, group_id: str, actions: Sequence[Action]) -> None:
        """Apply a group's auto-applicable actions.

        Raises:
            OSError: If a file cannot be read, written or moved. Changes made
                before the error stay snapshotted, so revert() still works.
        """
        whole_files: Set[str] = set()
        spans: Dict[str, List[Symbol]] = {}
        for action in actions:
            if action.action_type not in AUTO_APPLICABLE_TYPES:
                continue
            for subject in action.subjects:
                if not self.graph.has_node(subject):
                    continue
                symbol = self.graph.get_node(subject)
                if symbol.is_module:
                    whole_files.add(symbol.path)
                else:
                    spans.setdefault(symbol.path, []).append(symbol)

        snapshots = self._snapshots.setdefault(group_id, {})
        moved = self._moved.setdefault(group_id, [])
        removed = self._pending_removed.setdefault(group_id, {})

        for path in sorted(set(spans) | whole_files):
            file_path = self.root / path
            if file_path.exists() and path not in snapshots:
                snapshots[path] = file_path.read_bytes()

        for path, symbols in sorted(spans.items()):
            if path in whole_files:
                continue
            ranges = [(s.line_start, s.line_end) for s in symbols]
            self._delete_spans(self.root / path, path, ranges)
            removed[path] = ranges

        for path in sorted(whole_files):
            source = self.root / path
            if not source.exists():
                logger.warning(f"⚠️ {path} no longer exists, nothing to move")
                continue
            destination = self.trash_root / group_id / path
            destination.parent.mkdir(parents=True, exist_ok=True)
            source.replace(destination)
            moved.append((path, destination))
            logger.info(f"Moved {path} to {destination}")

    def commit(self, group_id: str) -> None:
        """Accept a group; later groups see its line removals."""
        for path, ranges in self._pending_removed.pop(group_id, {}).items():
            self._removed_lines.setdefault(path, []).extend(ranges)

    def revert(self, group_id: str) -> None:
        """Restore every file the group touched to its pre-apply bytes."""
        for path, trash_path in self._moved.pop(group_id, []):
            if trash_path.exists():
                trash_path.unlink()
        for path, content in sorted(self._snapshots.pop(group_id, {}).items()):
            target = self.root / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            logger.info(f"Restored {path}")
        self._pending_removed.pop(group_id, None)

    def revert_all(self) -> List[str]:
        """Undo every group applied so far, committed or not, newest first.

        Returns:
            The reverted group ids in the order they were undone.
        """
        reverted: List[str] = []
        for group_id in reversed(list(self._snapshots)):
            self.revert(group_id)
            reverted.append(group_id)
        self._removed_lines.clear()
        return reverted

    def _delete_spans(self, file_path: Path, path: str, ranges: List[Tuple[int, int]]) -> None:
        lines = file_path.read_bytes().splitlines(keepends=True)
        doomed: Set[int] = set()
        for start, end in ranges:
            for line in range(start, end + 1):
                doomed.add(self._current_line(path, line))
        kept = [line for index, line in enumerate(lines, start=1) if index not in doomed]
        file_path.write_bytes(b"".join(kept))
        logger.info(f"Removed {len(doomed)} lines from {path}")

    def _current_line(self, path: str, line: int) -> int:
        shift = sum(end - start + 1 for start, end in self._removed_lines.get(path, []) if end < line)
        return line - shift


class VerificationGate:
    """Simulates, applies and confirms the groups of a cleanup plan.

    Usage:
        gate = VerificationGate(graph, roots)
        outcomes = gate.run(plan, applier=applier, verifier=verifier)
    """

    def __init__(
        self,
        graph: DependencyGraph,
        roots: Dict[str, str],
        analyzer: Optional[ReachabilityAnalyzer] = None,
    ):
        """Initialize the gate.

        Args:
            graph: Graph the plan was generated from. Never mutated.
            roots: Traversal roots used for the plan.
            analyzer: Reachability analyzer to re-run on simulated graphs.
        """
        self.graph = graph
        self.roots = roots
        self.analyzer = analyzer or ReachabilityAnalyzer()
        self._baseline: Optional[Dict[str, str]] = None

    def simulate(self, group_id: str, actions: Sequence[Action], planned: Set[str]) -> DependencyGraph:
        """Play a group's actions on a copy of the graph.

        Args:
            group_id: Group being simulated (for error reporting).
            actions: The group's actions.
            planned: Node ids the plan already accounts for.

        Returns:
            The simulated graph.

        Raises:
            SimulationConflict: If a node outside the plan becomes
                unreachable-certain.
        """
        if self._baseline is None:
            self._baseline = self.analyzer.analyze(self.graph, self.roots).states
        before = self._baseline
        simulated = self.apply_to_graph(self.graph, actions)
        after = self.analyzer.analyze(simulated, self.roots).states

        orphaned = sorted(
            node_id
            for node_id, state in after.items()
            if state == ReachabilityState.UNREACHABLE_CERTAIN
            and before.get(node_id) != ReachabilityState.UNREACHABLE_CERTAIN
            and node_id not in planned
            and simulated.owner_of(node_id) not in planned
        )
        if orphaned:
            raise SimulationConflict(group_id, orphaned)
        return simulated

    @staticmethod
    def apply_to_graph(graph: DependencyGraph, actions: Sequence[Action]) -> DependencyGraph:
        """Graph copy with the structural effect of the actions applied.

        Removals and archives delete their subjects; merges move the
        subjects' inbound edges to the canonical member and then delete the
        subjects. Flags and parameterize actions change nothing.
        """
        simulated = graph.copy()
        for action in actions:
            if action.action_type in AUTO_APPLICABLE_TYPES:
                simulated.remove_nodes(action.subjects)
            elif action.action_type == ActionType.MERGE and action.target is not None:
                for subject in action.subjects:
                    if simulated.has_node(subject) and simulated.has_node(action.target):
                        simulated.retarget_edges(subject, action.target)
                simulated.remove_nodes(action.subjects)
        return simulated

    def run(
        self,
        plan: CleanupPlan,
        apply: bool = False,
        applier: Optional[FileSystemApplier] = None,
        verifier: Optional[Verifier] = None,
    ) -> List[GroupOutcome]:
        """Gate every group of the plan, updating group statuses in place.

        In dry-run mode groups are only simulated. With apply=True, groups
        made entirely of auto-applicable actions are applied through the
        applier and confirmed by the verifier; everything else stays pending.

        Args:
            plan: Plan to gate.
            apply: Apply passing auto-applicable groups.
            applier: Performs and reverts the file changes.
            verifier: External success signal; required when apply is True.

        Returns:
            One GroupOutcome per group, in plan order.
        """
        if apply and (applier is None or verifier is None):
            raise ValueError("apply mode needs both an applier and a verifier")

        planned = plan.planned_subjects()
        outcomes: List[GroupOutcome] = []
        for group in plan.groups:
            actions = plan.actions_in_group(group.group_id)
            try:
                self.simulate(group.group_id, actions, planned)
            except SimulationConflict as e:
                group.status = GroupStatus.NEEDS_REVISION
                group.message = str(e)
                logger.warning(f"⚠️ {e}")
                outcomes.append(GroupOutcome(group.group_id, group.status, message=group.message))
                continue

            if not (apply and group_is_auto_applicable(actions)):
                outcomes.append(GroupOutcome(group.group_id, group.status))
                continue

            assert applier is not None and verifier is not None
            try:
                self._apply_group(group.group_id, actions, applier, verifier)
            except VerificationFailure as e:
                group.status = GroupStatus.ROLLED_BACK
                group.message = str(e)
                logger.error(f"{e}; group reverted")
                outcomes.append(GroupOutcome(group.group_id, group.status, True, group.message))
                continue
            except OSError as e:
                applier.revert(group.group_id)
                group.status = GroupStatus.ROLLED_BACK
                group.message = f"Could not apply group {group.group_id}: {e}"
                logger.error(f"{group.message}; group reverted")
                outcomes.append(GroupOutcome(group.group_id, group.status, True, group.message))
                continue

            group.status = GroupStatus.COMMITTED
            outcomes.append(GroupOutcome(group.group_id, group.status, applied=True))

        return outcomes

    def _apply_group(
        self,
        group_id: str,
        actions: Sequence[Action],
        applier: FileSystemApplier,
        verifier: Verifier,
    ) -> None:
        applier.apply(group_id, actions)
        succeeded, detail = verifier()
        if not succeeded:
            applier.revert(group_id)
            raise VerificationFailure(group_id, detail)
        applier.commit(group_id)
        self.graph = self.apply_to_graph(self.graph, actions)
        self._baseline = None
        logger.info(f"Committed group {group_id} ({detail})")
