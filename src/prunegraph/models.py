# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core data models for redundancy and reachability analysis.

This module defines the data structures shared by every analysis stage:
- SourceFile: A scanned file with its language tag and content hash
- Symbol: A declared symbol (function, class, exported constant, module)
- ReferenceEdge: A directed reference between two graph nodes
- RawReference: An unresolved reference produced by the extractor
- FileExtraction: All symbols and raw references for one file
- DependencyGraph: Directed graph over file and symbol nodes
- DuplicateCluster: A set of equivalent or near-equivalent symbol bodies
- RemovalCandidate: A node the reachability pass could not account for
- Action / ActionGroup / CleanupPlan: The emitted cleanup plan

Enumerations are class constants (not Enum) so every value is a plain,
JSON-compatible string; the string values are part of the report format.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class SymbolKind:
    """Kinds of graph nodes."""

    FUNCTION = "function"
    CLASS = "class"
    EXPORTED_CONSTANT = "exported-constant"
    MODULE = "module"  # one per file; node id is the file path


class Visibility:
    """Symbol visibility as far as the language profile can tell."""

    PUBLIC = "public"  # explicitly exported (__all__, export, pub)
    PRIVATE = "private"
    UNKNOWN = "unknown"


class ReferenceKind:
    """Kinds of reference edges."""

    IMPORT = "import"
    CALL = "call"
    STRING_MENTION = "string-mention"
    DYNAMIC_REFERENCE = "dynamic-reference"


class Confidence:
    """Confidence of a reference edge."""

    CERTAIN = "certain"  # unambiguous static syntax
    HEURISTIC = "heuristic"  # string match or dynamic-loading pattern


class ReachabilityState:
    """Reachability classification of a node."""

    REACHABLE = "reachable"
    UNREACHABLE_CERTAIN = "unreachable-certain"
    UNREACHABLE_HEURISTIC = "unreachable-heuristic"


class DuplicateKind:
    """Classification of a duplicate cluster."""

    EXACT = "exact"
    NEAR = "near"


class ActionType:
    """Cleanup action types.

    Only REMOVE and ARCHIVE may be applied automatically; merges and the
    other two always wait for a human.
    """

    REMOVE = "remove"
    MERGE = "merge"
    ARCHIVE = "archive"
    FLAG_FOR_REVIEW = "flag-for-review"
    PARAMETERIZE = "parameterize"  # near duplicates with differing signatures

    ORDER = (REMOVE, ARCHIVE, MERGE, PARAMETERIZE, FLAG_FOR_REVIEW)


class GroupStatus:
    """Lifecycle status of a transaction group."""

    PENDING = "pending"
    NEEDS_REVISION = "needs-revision"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


def symbol_node_id(path: str, name: str) -> str:
    """Build the node id of a non-module symbol."""
    return f"{path}::{name}"


@dataclass(frozen=True)
class SourceFile:
    """A scanned source file.

    Immutable once scanned; a re-scan produces a new record that replaces the
    previous one wholesale.
    """

    path: str  # project-relative POSIX path
    abs_path: str
    language: str
    content_hash: str  # sha256 of the raw bytes
    lines: Tuple[str, ...]

    @property
    def text(self) -> str:
        """Full file text."""
        return "\n".join(self.lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize metadata (lines are omitted)."""
        return {
            "path": self.path,
            "language": self.language,
            "content_hash": self.content_hash,
            "line_count": len(self.lines),
        }


@dataclass(frozen=True)
class Symbol:
    """A node of the dependency graph.

    Every file contributes one MODULE symbol whose node id is the file path;
    all other symbols are top-level declarations inside that file.
    """

    node_id: str
    path: str  # owning file
    kind: str  # SymbolKind value
    name: str
    line_start: int
    line_end: int  # inclusive
    visibility: str = Visibility.UNKNOWN
    parameters: Optional[Tuple[str, ...]] = None  # None when not extractable
    opaque: bool = False  # module node of an unprofiled or failed file

    @property
    def is_module(self) -> bool:
        return self.kind == SymbolKind.MODULE

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: Dict[str, Any] = {
            "node_id": self.node_id,
            "path": self.path,
            "kind": self.kind,
            "name": self.name,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "visibility": self.visibility,
        }
        if self.parameters is not None:
            result["parameters"] = list(self.parameters)
        if self.opaque:
            result["opaque"] = True
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Symbol":
        """Deserialize from JSON-compatible dict."""
        parameters = data.get("parameters")
        return cls(
            node_id=data["node_id"],
            path=data["path"],
            kind=data["kind"],
            name=data["name"],
            line_start=data["line_start"],
            line_end=data["line_end"],
            visibility=data.get("visibility", Visibility.UNKNOWN),
            parameters=tuple(parameters) if parameters is not None else None,
            opaque=data.get("opaque", False),
        )


@dataclass(frozen=True)
class ReferenceEdge:
    """A directed reference between two nodes of the same graph snapshot."""

    source: str  # node id
    target: str  # node id
    kind: str  # ReferenceKind value
    confidence: str  # Confidence value
    line_number: int = 0

    @property
    def is_certain(self) -> bool:
        return self.confidence == Confidence.CERTAIN

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "source": self.source,
            "target": self.target,
            "kind": self.kind,
            "confidence": self.confidence,
            "line_number": self.line_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferenceEdge":
        """Deserialize from JSON-compatible dict."""
        return cls(
            source=data["source"],
            target=data["target"],
            kind=data["kind"],
            confidence=data["confidence"],
            line_number=data.get("line_number", 0),
        )


@dataclass(frozen=True)
class RawReference:
    """An unresolved reference found by the extractor.

    Resolution into ReferenceEdges happens in the graph builder, which is the
    only stage that sees every file.
    """

    kind: str  # ReferenceKind value
    name: str  # identifier, import specifier, or string literal content
    line_number: int
    source: str  # node id of the innermost enclosing symbol (or the module)
    qualifier: Optional[str] = None  # "mod" for mod.name, "" for an unnamed receiver
    imported_names: Tuple[Tuple[str, str], ...] = ()  # (name, local alias) pairs
    alias: Optional[str] = None  # local binding of an imported module
    is_wildcard: bool = False  # import *, or a dynamic lookup with a computed target
    relative_level: int = 0
    loads_modules: bool = False  # computed lookup that may load other modules


@dataclass
class FileExtraction:
    """Symbols and raw references of a single file.

    Flow: SourceFile -> FileExtraction -> DependencyGraph
    """

    source_file: SourceFile
    symbols: List[Symbol]  # module symbol first
    references: List[RawReference]
    is_opaque: bool = False
    error_message: Optional[str] = None
    is_script: bool = False  # carries a script/main entry marker
    is_entry_file: bool = False  # test module, __main__.py, main.rs, ...
    script_symbols: List[str] = field(default_factory=list)  # e.g. Go "main"
    dynamic_pattern_types: List[str] = field(default_factory=list)
    bodies: Dict[str, str] = field(default_factory=dict)  # node id -> comment-free body

    @property
    def path(self) -> str:
        return self.source_file.path

    @property
    def module_symbol(self) -> Symbol:
        return self.symbols[0]

    def get_symbol(self, name: str) -> Optional[Symbol]:
        """Look up a top-level symbol by name."""
        for symbol in self.symbols[1:]:
            if symbol.name == name:
                return symbol
        return None


class DependencyGraph:
    """Directed graph over file and symbol nodes.

    Maintains indices for efficient queries:
    - outbound: node -> indices of edges leaving it
    - inbound: node -> indices of edges entering it
    - owned: module node -> symbol node ids it contains

    Invariant: every edge endpoint resolves to a node present in this
    snapshot. Parallel edges are kept because multiplicity matters for
    removal safety.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, Symbol] = {}
        self._edges: List[ReferenceEdge] = []
        self._outbound: Dict[str, List[int]] = {}
        self._inbound: Dict[str, List[int]] = {}
        self._owned: Dict[str, List[str]] = {}
        self._files: Dict[str, SourceFile] = {}

    # -- construction -----------------------------------------------------

    def add_node(self, symbol: Symbol) -> None:
        """Add a node. Re-adding an id replaces the symbol record."""
        self._nodes[symbol.node_id] = symbol
        self._outbound.setdefault(symbol.node_id, [])
        self._inbound.setdefault(symbol.node_id, [])
        if not symbol.is_module:
            owned = self._owned.setdefault(symbol.path, [])
            if symbol.node_id not in owned:
                owned.append(symbol.node_id)

    def add_file(self, source_file: SourceFile) -> None:
        """Record the SourceFile backing a module node."""
        self._files[source_file.path] = source_file

    def add_edge(self, edge: ReferenceEdge) -> None:
        """Add an edge and update indices.

        Raises:
            KeyError: If either endpoint is not a node of this graph.
        """
        if edge.source not in self._nodes:
            raise KeyError(f"Edge source {edge.source!r} is not a node of the graph")
        if edge.target not in self._nodes:
            raise KeyError(f"Edge target {edge.target!r} is not a node of the graph")
        index = len(self._edges)
        self._edges.append(edge)
        self._outbound[edge.source].append(index)
        self._inbound[edge.target].append(index)

    # -- queries ----------------------------------------------------------

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Symbol:
        return self._nodes[node_id]

    def nodes(self) -> List[Symbol]:
        """All nodes sorted by node id."""
        return [self._nodes[key] for key in sorted(self._nodes)]

    def node_ids(self) -> Set[str]:
        return set(self._nodes)

    def edges(self) -> List[ReferenceEdge]:
        return list(self._edges)

    def files(self) -> List[SourceFile]:
        return [self._files[key] for key in sorted(self._files)]

    def get_file(self, path: str) -> Optional[SourceFile]:
        return self._files.get(path)

    def inbound(self, node_id: str, confidence: Optional[str] = None) -> List[ReferenceEdge]:
        """Edges entering node_id, optionally filtered by confidence."""
        edges = [self._edges[i] for i in self._inbound.get(node_id, [])]
        if confidence is not None:
            edges = [e for e in edges if e.confidence == confidence]
        return edges

    def outbound(self, node_id: str, confidence: Optional[str] = None) -> List[ReferenceEdge]:
        """Edges leaving node_id, optionally filtered by confidence."""
        edges = [self._edges[i] for i in self._outbound.get(node_id, [])]
        if confidence is not None:
            edges = [e for e in edges if e.confidence == confidence]
        return edges

    def owner_of(self, node_id: str) -> Optional[str]:
        """Module node owning a symbol, None for module nodes."""
        symbol = self._nodes.get(node_id)
        if symbol is None or symbol.is_module:
            return None
        return symbol.path

    def owned_symbols(self, module_id: str) -> List[str]:
        return list(self._owned.get(module_id, []))

    def symbols_named(self, name: str) -> List[Symbol]:
        """All non-module symbols with the given name."""
        return [s for s in self.nodes() if not s.is_module and s.name == name]

    def __len__(self) -> int:
        return len(self._nodes)

    # -- snapshots and edits ----------------------------------------------

    def copy(self) -> "DependencyGraph":
        """Independent snapshot; edits to the copy never reach the original."""
        clone = DependencyGraph()
        clone._nodes = dict(self._nodes)
        clone._edges = list(self._edges)
        clone._outbound = {k: list(v) for k, v in self._outbound.items()}
        clone._inbound = {k: list(v) for k, v in self._inbound.items()}
        clone._owned = copy.deepcopy(self._owned)
        clone._files = dict(self._files)
        return clone

    def remove_nodes(self, node_ids: Iterable[str]) -> None:
        """Remove nodes (and the symbols owned by removed modules) with their edges."""
        doomed: Set[str] = set()
        for node_id in node_ids:
            if node_id not in self._nodes:
                continue
            doomed.add(node_id)
            doomed.update(self._owned.get(node_id, []))
        if not doomed:
            return
        kept = [e for e in self._edges if e.source not in doomed and e.target not in doomed]
        for node_id in doomed:
            symbol = self._nodes.pop(node_id)
            if symbol.is_module:
                self._owned.pop(node_id, None)
                self._files.pop(node_id, None)
            elif symbol.path in self._owned:
                self._owned[symbol.path] = [n for n in self._owned[symbol.path] if n != node_id]
        self._reindex(kept)

    def retarget_edges(self, old_target: str, new_target: str) -> int:
        """Point every edge entering old_target at new_target.

        Returns:
            Number of edges retargeted.
        """
        if new_target not in self._nodes:
            raise KeyError(f"Retarget destination {new_target!r} is not a node of the graph")
        moved = 0
        rebuilt: List[ReferenceEdge] = []
        for edge in self._edges:
            if edge.target == old_target:
                edge = ReferenceEdge(
                    source=edge.source,
                    target=new_target,
                    kind=edge.kind,
                    confidence=edge.confidence,
                    line_number=edge.line_number,
                )
                moved += 1
            rebuilt.append(edge)
        self._reindex(rebuilt)
        return moved

    def _reindex(self, edges: List[ReferenceEdge]) -> None:
        self._edges = []
        self._outbound = {node_id: [] for node_id in self._nodes}
        self._inbound = {node_id: [] for node_id in self._nodes}
        for edge in edges:
            self.add_edge(edge)

    def validate(self) -> Tuple[bool, List[str]]:
        """Check the endpoint invariant and index consistency.

        Returns:
            Tuple of (is_valid, error_messages).
        """
        errors: List[str] = []
        for index, edge in enumerate(self._edges):
            if edge.source not in self._nodes:
                errors.append(f"Dangling edge source: {edge.source} -> {edge.target}")
            elif index not in self._outbound.get(edge.source, []):
                errors.append(f"Index inconsistency: {edge.source} missing outbound edge {index}")
            if edge.target not in self._nodes:
                errors.append(f"Dangling edge target: {edge.source} -> {edge.target}")
            elif index not in self._inbound.get(edge.target, []):
                errors.append(f"Index inconsistency: {edge.target} missing inbound edge {index}")
        for module_id, owned in self._owned.items():
            for node_id in owned:
                if node_id not in self._nodes:
                    errors.append(f"Owned symbol {node_id} of {module_id} is not a node")
        if errors:
            logger.error(f"Graph validation found {len(errors)} errors: {errors}")
        return (len(errors) == 0, errors)

    def to_dict(self) -> Dict[str, Any]:
        """Export graph to a JSON-compatible dict."""
        return {
            "nodes": [s.to_dict() for s in self.nodes()],
            "edges": [e.to_dict() for e in self._edges],
        }


@dataclass
class DuplicateCluster:
    """A set of two or more symbols judged equivalent or near-equivalent.

    Membership is a connected component under the similarity threshold, so
    two members may score below the threshold against each other when they
    are chained through a third.
    """

    cluster_id: str
    members: List[str]  # node ids, sorted
    similarity: float
    kind: str  # DuplicateKind value
    signatures_differ: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "members": list(self.members),
            "similarity": round(self.similarity, 6),
            "kind": self.kind,
            "signatures_differ": self.signatures_differ,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DuplicateCluster":
        return cls(
            cluster_id=data["cluster_id"],
            members=list(data["members"]),
            similarity=data["similarity"],
            kind=data["kind"],
            signatures_differ=data.get("signatures_differ", False),
        )


@dataclass
class RemovalCandidate:
    """A node the certain-edge traversal could not account for."""

    node_id: str
    state: str  # ReachabilityState value
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"node_id": self.node_id, "state": self.state, "reasons": list(self.reasons)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemovalCandidate":
        return cls(node_id=data["node_id"], state=data["state"], reasons=list(data["reasons"]))


@dataclass
class Action:
    """One atomic cleanup action."""

    action_id: str
    action_type: str  # ActionType value
    subjects: List[str]  # node ids acted on
    confidence: str  # ReachabilityState or DuplicateKind value
    auto_apply: bool
    target: Optional[str] = None  # canonical node for merges
    cluster_id: Optional[str] = None
    group_id: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)  # action ids in the same group
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "action_id": self.action_id,
            "action_type": self.action_type,
            "subjects": list(self.subjects),
            "confidence": self.confidence,
            "auto_apply": self.auto_apply,
            "group_id": self.group_id,
            "depends_on": list(self.depends_on),
            "reason": self.reason,
        }
        if self.target is not None:
            result["target"] = self.target
        if self.cluster_id is not None:
            result["cluster_id"] = self.cluster_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        return cls(
            action_id=data["action_id"],
            action_type=data["action_type"],
            subjects=list(data["subjects"]),
            confidence=data["confidence"],
            auto_apply=data["auto_apply"],
            target=data.get("target"),
            cluster_id=data.get("cluster_id"),
            group_id=data.get("group_id"),
            depends_on=list(data.get("depends_on", [])),
            reason=data.get("reason", ""),
        )


@dataclass
class ActionGroup:
    """Actions that must apply or roll back together."""

    group_id: str
    action_ids: List[str]
    status: str = GroupStatus.PENDING
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "group_id": self.group_id,
            "action_ids": list(self.action_ids),
            "status": self.status,
        }
        if self.message is not None:
            result["message"] = self.message
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionGroup":
        return cls(
            group_id=data["group_id"],
            action_ids=list(data["action_ids"]),
            status=data.get("status", GroupStatus.PENDING),
            message=data.get("message"),
        )


@dataclass
class CleanupPlan:
    """Ordered cleanup actions plus the analysis results that justify them."""

    root: str
    generated_at: str
    fingerprint: str  # hash over file content hashes and analysis settings
    file_counts: Dict[str, Any]
    clusters: List[DuplicateCluster] = field(default_factory=list)
    candidates: List[RemovalCandidate] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    groups: List[ActionGroup] = field(default_factory=list)
    complete: bool = True
    errors: List[str] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    def get_action(self, action_id: str) -> Optional[Action]:
        for action in self.actions:
            if action.action_id == action_id:
                return action
        return None

    def get_group(self, group_id: str) -> Optional[ActionGroup]:
        for group in self.groups:
            if group.group_id == group_id:
                return group
        return None

    def actions_in_group(self, group_id: str) -> List[Action]:
        group = self.get_group(group_id)
        if group is None:
            return []
        return [a for a in self.actions if a.action_id in group.action_ids]

    def actions_of_type(self, action_type: str) -> List[Action]:
        return [a for a in self.actions if a.action_type == action_type]

    def planned_subjects(self) -> Set[str]:
        """Node ids that some action already accounts for."""
        subjects: Set[str] = set()
        for action in self.actions:
            subjects.update(action.subjects)
        for candidate in self.candidates:
            subjects.add(candidate.node_id)
        return subjects

    def signature(self) -> List[Tuple[str, Tuple[str, ...], str, Optional[str]]]:
        """Order-sensitive summary used to compare plans across runs."""
        return [
            (a.action_type, tuple(a.subjects), a.confidence, a.target) for a in self.actions
        ]

    @property
    def has_pending_actions(self) -> bool:
        return bool(self.actions)
