# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Reachability analysis over certain edges.

Roots:
- configured entry points (file globs, node ids or "path::symbol")
- discovered entry points (pyproject.toml scripts, package.json main/bin)
- explicitly exported symbols, when exports count as roots
- files with a script marker, plus named script symbols (Go "main")
- entry files (test modules, __main__.py, main.rs, ...) and their symbols
- opaque nodes, which cannot be analyzed and are always kept

Traversal is a breadth-first search with an explicit deque and visited set
over certain edges only. Visiting a symbol also visits its owning module,
since a symbol cannot be used without loading its file.

Unvisited nodes are classified by their inbound heuristic edges: any such
edge makes the node unreachable-heuristic; otherwise it is
unreachable-certain. Symbols inside an unreachable module carry the reason
"owner-unreachable" and inherit a heuristic classification from it.
"""

import fnmatch
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Set

from prunegraph.models import (
    Confidence,
    DependencyGraph,
    FileExtraction,
    ReachabilityState,
    RemovalCandidate,
    Visibility,
)

logger = logging.getLogger(__name__)

# Reason strings recorded on removal candidates
REASON_NO_REFERENCES = "no-inbound-references"
REASON_UNREACHABLE_REFERRERS = "only-unreachable-referrers"
REASON_OWNER_UNREACHABLE = "owner-unreachable"
REASON_OWNER_HEURISTIC = "owner-heuristic"
REASON_HEURISTIC_MEMBER = "heuristic-member"
MAX_HEURISTIC_REASONS = 5


@dataclass
class ReachabilityResult:
    """Classification of every node of one graph snapshot."""

    states: Dict[str, str]
    candidates: List[RemovalCandidate] = field(default_factory=list)
    roots: Dict[str, str] = field(default_factory=dict)  # node id -> root reason

    def state_of(self, node_id: str) -> str:
        return self.states[node_id]

    def unreachable(self, state: Optional[str] = None) -> List[str]:
        """Node ids not reached, optionally of one state only."""
        return sorted(
            node_id
            for node_id, node_state in self.states.items()
            if node_state != ReachabilityState.REACHABLE
            and (state is None or node_state == state)
        )

    def get_candidate(self, node_id: str) -> Optional[RemovalCandidate]:
        for candidate in self.candidates:
            if candidate.node_id == node_id:
                return candidate
        return None


def collect_roots(
    graph: DependencyGraph,
    extractions: Iterable[FileExtraction] = (),
    entry_points: Sequence[str] = (),
    exports_are_roots: bool = True,
) -> Dict[str, str]:
    """Collect traversal roots with the reason each one is a root.

    Args:
        graph: Graph whose nodes are candidates for rooting.
        extractions: Per-file extraction results (script and entry markers).
        entry_points: Configured and discovered entry specs.
        exports_are_roots: Whether public symbols seed the traversal.

    Returns:
        Node id -> reason, only for nodes present in graph.
    """
    roots: Dict[str, str] = {}

    def add(node_id: str, reason: str) -> None:
        if graph.has_node(node_id) and node_id not in roots:
            roots[node_id] = reason

    for spec in entry_points:
        matched = resolve_entry_spec(graph, spec)
        if not matched:
            logger.warning(f"⚠️ Entry point '{spec}' matches no file or symbol")
        for node_id in matched:
            add(node_id, f"entry-point:{spec}")

    for extraction in extractions:
        path = extraction.path
        if extraction.is_entry_file:
            add(path, "entry-file")
            for symbol in extraction.symbols[1:]:
                add(symbol.node_id, "entry-file")
        if extraction.is_script:
            add(path, "script-marker")
        for name in extraction.script_symbols:
            symbol = extraction.get_symbol(name)
            if symbol is not None:
                add(symbol.node_id, "script-marker")

    for symbol in graph.nodes():
        if symbol.opaque:
            add(symbol.node_id, "opaque")
        elif exports_are_roots and symbol.visibility == Visibility.PUBLIC:
            add(symbol.node_id, "public-export")

    return roots


def resolve_entry_spec(graph: DependencyGraph, spec: str) -> List[str]:
    """Resolve one entry spec to node ids.

    Accepted forms: an exact node id ("pkg/cli.py" or "pkg/cli.py::main"),
    "glob::symbol", or a file glob ("scripts/*.py").
    """
    spec = spec.strip()
    if not spec:
        return []
    if graph.has_node(spec):
        return [spec]

    if "::" in spec:
        path_glob, _, name = spec.rpartition("::")
        return sorted(
            s.node_id
            for s in graph.nodes()
            if not s.is_module and s.name == name and fnmatch.fnmatch(s.path, path_glob)
        )

    return sorted(s.node_id for s in graph.nodes() if s.is_module and fnmatch.fnmatch(s.path, spec))


class ReachabilityAnalyzer:
    """Classifies graph nodes as reachable or unreachable from a root set.

    The analyzer never mutates the graph, so the verification gate can run it
    on simulated copies.
    """

    def analyze(self, graph: DependencyGraph, roots: Dict[str, str]) -> ReachabilityResult:
        """Traverse certain edges from roots and classify every node.

        Args:
            graph: Graph snapshot.
            roots: Node id -> root reason; ids missing from graph are ignored.

        Returns:
            ReachabilityResult with states for all nodes and candidates for
            the unreachable ones.
        """
        visited = self.traverse(graph, (r for r in roots if graph.has_node(r)))

        states: Dict[str, str] = {}
        for symbol in graph.nodes():
            if symbol.node_id in visited:
                states[symbol.node_id] = ReachabilityState.REACHABLE
            elif graph.inbound(symbol.node_id, Confidence.HEURISTIC):
                states[symbol.node_id] = ReachabilityState.UNREACHABLE_HEURISTIC
            else:
                states[symbol.node_id] = ReachabilityState.UNREACHABLE_CERTAIN

        # A module holding a possibly-used symbol is itself only possibly dead
        for symbol in graph.nodes():
            owner = graph.owner_of(symbol.node_id)
            if (
                owner is not None
                and states[symbol.node_id] == ReachabilityState.UNREACHABLE_HEURISTIC
                and states[owner] == ReachabilityState.UNREACHABLE_CERTAIN
            ):
                states[owner] = ReachabilityState.UNREACHABLE_HEURISTIC

        # Code inside a possibly-loaded module may be called by whoever loads it
        for symbol in graph.nodes():
            owner = graph.owner_of(symbol.node_id)
            if owner is not None and states[owner] == ReachabilityState.UNREACHABLE_HEURISTIC:
                states[symbol.node_id] = ReachabilityState.UNREACHABLE_HEURISTIC

        candidates = [
            RemovalCandidate(
                node_id=node_id,
                state=states[node_id],
                reasons=self._reasons(graph, node_id, states),
            )
            for node_id in sorted(states)
            if states[node_id] != ReachabilityState.REACHABLE
        ]

        logger.info(
            f"Reachability: {len(visited)} of {len(graph)} nodes reachable from "
            f"{len(roots)} roots, {len(candidates)} candidates"
        )
        return ReachabilityResult(states=states, candidates=candidates, roots=dict(roots))

    @staticmethod
    def traverse(graph: DependencyGraph, roots: Iterable[str]) -> Set[str]:
        """Breadth-first search over certain edges; returns the visited set."""
        visited: Set[str] = set()
        queue: Deque[str] = deque()

        def visit(node_id: str) -> None:
            if node_id in visited:
                return
            visited.add(node_id)
            queue.append(node_id)
            owner = graph.owner_of(node_id)
            if owner is not None:
                visit(owner)

        for root in sorted(roots):
            visit(root)

        while queue:
            node_id = queue.popleft()
            for edge in graph.outbound(node_id, Confidence.CERTAIN):
                visit(edge.target)
        return visited

    @staticmethod
    def _reasons(graph: DependencyGraph, node_id: str, states: Dict[str, str]) -> List[str]:
        reasons: List[str] = []
        owner = graph.owner_of(node_id)
        if owner is not None and states[owner] != ReachabilityState.REACHABLE:
            reasons.append(REASON_OWNER_UNREACHABLE)
            if states[owner] == ReachabilityState.UNREACHABLE_HEURISTIC:
                reasons.append(REASON_OWNER_HEURISTIC)

        if graph.inbound(node_id, Confidence.CERTAIN):
            reasons.append(REASON_UNREACHABLE_REFERRERS)
        elif not graph.inbound(node_id):
            reasons.append(REASON_NO_REFERENCES)

        heuristic = graph.inbound(node_id, Confidence.HEURISTIC)
        heuristic_state = states[node_id] == ReachabilityState.UNREACHABLE_HEURISTIC
        if owner is None and heuristic_state and not heuristic:
            reasons.append(REASON_HEURISTIC_MEMBER)
        for edge in heuristic[:MAX_HEURISTIC_REASONS]:
            reasons.append(f"heuristic-{edge.kind}:{edge.source}:{edge.line_number}")
        if len(heuristic) > MAX_HEURISTIC_REASONS:
            reasons.append(f"heuristic-references:+{len(heuristic) - MAX_HEURISTIC_REASONS}")
        return reasons
