# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Cleanup plan generation.

Turns duplicate clusters and reachability candidates into ordered actions:

- unreachable-certain, no certain inbound edges   -> remove (auto-applicable)
- unreachable-certain, certain inbound edges only
  from other unreachable nodes                     -> archive (auto-applicable)
- unreachable-heuristic                            -> flag-for-review
- duplicate cluster, equal signatures              -> merge onto the canonical member
- duplicate cluster, differing signatures          -> parameterize

Symbols inside an unreachable module are covered by the module's action and
get none of their own.

Actions whose application would change the inbound edges of another action's
subject are linked with union-find into one transaction group; a group is
applied or rolled back as a whole, and only groups made entirely of
auto-applicable actions are ever applied without a human.

Ordering is deterministic: group, then action type, then first subject.
"""

import hashlib
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from prunegraph.duplicates import UnionFind
from prunegraph.models import (
    Action,
    ActionGroup,
    ActionType,
    Confidence,
    DependencyGraph,
    DuplicateCluster,
    ReachabilityState,
    RemovalCandidate,
)
from prunegraph.reachability import REASON_OWNER_UNREACHABLE, ReachabilityResult

logger = logging.getLogger(__name__)

AUTO_APPLICABLE_TYPES = (ActionType.REMOVE, ActionType.ARCHIVE)


def action_id_for(action_type: str, subjects: Sequence[str]) -> str:
    """Deterministic id derived from type and subjects."""
    digest = hashlib.sha256(f"{action_type}|{','.join(sorted(subjects))}".encode("utf-8"))
    return f"{action_type}-{digest.hexdigest()[:12]}"


def choose_canonical(graph: DependencyGraph, members: Sequence[str]) -> str:
    """Pick the merge target of a cluster.

    Most certain inbound edges wins; ties go to the earliest file path, then
    the earliest start line.
    """

    def key(node_id: str) -> Tuple[int, str, int, str]:
        symbol = graph.get_node(node_id)
        certain_inbound = len(graph.inbound(node_id, Confidence.CERTAIN))
        return (-certain_inbound, symbol.path, symbol.line_start, node_id)

    return min(members, key=key)


def group_is_auto_applicable(actions: Sequence[Action]) -> bool:
    return bool(actions) and all(a.auto_apply for a in actions)


class PlanGenerator:
    """Generates ordered, grouped cleanup actions.

    Usage:
        actions, groups = PlanGenerator().generate(graph, clusters, result)
    """

    def generate(
        self,
        graph: DependencyGraph,
        clusters: Sequence[DuplicateCluster],
        result: ReachabilityResult,
    ) -> Tuple[List[Action], List[ActionGroup]]:
        """Build actions and transaction groups.

        Args:
            graph: Graph the analysis ran on.
            clusters: Duplicate clusters.
            result: Reachability result for graph.

        Returns:
            Tuple of (ordered actions, ordered groups).
        """
        actions: List[Action] = []
        planned_removals: Set[str] = set()

        for candidate in result.candidates:
            action = self._candidate_action(graph, candidate)
            if action is not None:
                actions.append(action)
                planned_removals.update(action.subjects)

        for cluster in clusters:
            action = self._cluster_action(graph, cluster, result, planned_removals)
            if action is not None:
                actions.append(action)

        groups = self._group(graph, actions)
        actions = self._order(actions)
        for action in actions:
            action.depends_on = self._dependencies(graph, action, actions)

        logger.info(
            f"Plan: {len(actions)} actions in {len(groups)} groups "
            f"({sum(1 for a in actions if a.auto_apply)} auto-applicable)"
        )
        return actions, groups

    # -- actions ----------------------------------------------------------

    def _candidate_action(
        self, graph: DependencyGraph, candidate: RemovalCandidate
    ) -> Optional[Action]:
        if REASON_OWNER_UNREACHABLE in candidate.reasons:
            return None
        subjects = [candidate.node_id]

        if candidate.state == ReachabilityState.UNREACHABLE_HEURISTIC:
            heuristic = graph.inbound(candidate.node_id, Confidence.HEURISTIC)
            sources = sorted({e.source for e in heuristic})
            return Action(
                action_id=action_id_for(ActionType.FLAG_FOR_REVIEW, subjects),
                action_type=ActionType.FLAG_FOR_REVIEW,
                subjects=subjects,
                confidence=ReachabilityState.UNREACHABLE_HEURISTIC,
                auto_apply=False,
                reason=(
                    "Not reachable through certain references; possibly used via "
                    f"{', '.join(sorted({e.kind for e in heuristic})) or 'a symbol it contains'}"
                    + (f" from {', '.join(sources[:3])}" if sources else "")
                ),
            )

        certain_inbound = graph.inbound(candidate.node_id, Confidence.CERTAIN)
        if not certain_inbound:
            return Action(
                action_id=action_id_for(ActionType.REMOVE, subjects),
                action_type=ActionType.REMOVE,
                subjects=subjects,
                confidence=ReachabilityState.UNREACHABLE_CERTAIN,
                auto_apply=True,
                reason="No references from anywhere in the tree",
            )

        referrers = sorted({e.source for e in certain_inbound})
        return Action(
            action_id=action_id_for(ActionType.ARCHIVE, subjects),
            action_type=ActionType.ARCHIVE,
            subjects=subjects,
            confidence=ReachabilityState.UNREACHABLE_CERTAIN,
            auto_apply=True,
            reason=f"Only referenced by unreachable code: {', '.join(referrers[:3])}",
        )

    def _cluster_action(
        self,
        graph: DependencyGraph,
        cluster: DuplicateCluster,
        result: ReachabilityResult,
        planned_removals: Set[str],
    ) -> Optional[Action]:
        live = [
            m
            for m in cluster.members
            if m not in planned_removals and not self._inside_unreachable_module(graph, m, result)
        ]
        if len(live) < 2:
            return None
        canonical = choose_canonical(graph, live)

        if cluster.signatures_differ:
            return Action(
                action_id=action_id_for(ActionType.PARAMETERIZE, live),
                action_type=ActionType.PARAMETERIZE,
                subjects=sorted(live),
                confidence=cluster.kind,
                auto_apply=False,
                target=canonical,
                cluster_id=cluster.cluster_id,
                reason=(
                    f"{cluster.kind.capitalize()} duplicates (similarity "
                    f"{cluster.similarity:.2f}) with differing parameters"
                ),
            )

        others = sorted(m for m in live if m != canonical)
        return Action(
            action_id=action_id_for(ActionType.MERGE, others + [canonical]),
            action_type=ActionType.MERGE,
            subjects=others,
            confidence=cluster.kind,
            auto_apply=False,
            target=canonical,
            cluster_id=cluster.cluster_id,
            reason=(
                f"{cluster.kind.capitalize()} duplicate of {canonical} "
                f"(similarity {cluster.similarity:.2f})"
            ),
        )

    @staticmethod
    def _inside_unreachable_module(
        graph: DependencyGraph, node_id: str, result: ReachabilityResult
    ) -> bool:
        owner = graph.owner_of(node_id)
        return owner is not None and result.states.get(owner) != ReachabilityState.REACHABLE

    # -- grouping and ordering --------------------------------------------

    @staticmethod
    def touched_nodes(action: Action) -> List[str]:
        """Nodes an action names: its subjects and merge target."""
        nodes = list(action.subjects)
        if action.target is not None:
            nodes.append(action.target)
        return nodes

    @staticmethod
    def affected_nodes(graph: DependencyGraph, action: Action) -> Set[str]:
        """Nodes whose inbound edges change if the action is applied.

        Flags count as if accepted, so they share a group with whatever their
        removal would disturb.
        """
        affected: Set[str] = set(PlanGenerator.touched_nodes(action))
        if action.action_type == ActionType.PARAMETERIZE:
            return affected
        removed: Set[str] = set(action.subjects)
        for subject in action.subjects:
            removed.update(graph.owned_symbols(subject))
        affected.update(removed)
        for node_id in removed:
            if graph.has_node(node_id):
                affected.update(e.target for e in graph.outbound(node_id))
        return affected

    def _group(self, graph: DependencyGraph, actions: List[Action]) -> List[ActionGroup]:
        by_node: Dict[str, List[str]] = {}
        for action in actions:
            for node_id in self.touched_nodes(action):
                by_node.setdefault(node_id, []).append(action.action_id)

        union_find = UnionFind()
        for action in actions:
            union_find.find(action.action_id)
            for node_id in self.affected_nodes(graph, action):
                for other in by_node.get(node_id, []):
                    union_find.union(action.action_id, other)

        by_id = {a.action_id: a for a in actions}
        members = [
            sorted(ids, key=lambda i: self._sort_key(by_id[i]))
            for ids in union_find.groups().values()
        ]
        members.sort(key=lambda ids: self._sort_key(by_id[ids[0]]))

        groups: List[ActionGroup] = []
        for index, action_ids in enumerate(members, start=1):
            group_id = f"group-{index:04d}"
            for action_id in action_ids:
                by_id[action_id].group_id = group_id
            groups.append(ActionGroup(group_id=group_id, action_ids=list(action_ids)))
        return groups

    @staticmethod
    def _sort_key(action: Action) -> Tuple[int, str, str]:
        return (
            ActionType.ORDER.index(action.action_type),
            action.subjects[0] if action.subjects else "",
            action.action_id,
        )

    def _order(self, actions: List[Action]) -> List[Action]:
        return sorted(actions, key=lambda a: (a.group_id or "",) + self._sort_key(a))

    @staticmethod
    def _dependencies(graph: DependencyGraph, action: Action, actions: List[Action]) -> List[str]:
        """Same-group actions whose subjects reference this action's subjects."""
        referrers: Set[str] = set()
        for subject in action.subjects:
            if graph.has_node(subject):
                referrers.update(e.source for e in graph.inbound(subject, Confidence.CERTAIN))
        depends = []
        for other in actions:
            if other.action_id == action.action_id or other.group_id != action.group_id:
                continue
            owned = set(other.subjects)
            for subject in other.subjects:
                owned.update(graph.owned_symbols(subject))
            if owned & referrers:
                depends.append(other.action_id)
        return sorted(depends)
