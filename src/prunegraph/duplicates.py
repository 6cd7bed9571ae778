# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Duplicate detection over symbol bodies.

Two passes:
1. Exact: bodies are normalized (comments already stripped by the extractor,
   whitespace differences removed, case preserved) and hashed with sha256.
   Equal hashes form exact clusters.
2. Near: remaining bodies become sets of token shingles. Candidate pairs come
   from prefix filtering: each set's shingles are ordered by ascending
   document frequency, and two sets can reach Jaccard similarity t only if
   their first |s| - ceil(t * |s|) + 1 shingles overlap. Candidates are
   verified on a worker pool; verified pairs are merged in one union-find
   afterwards, strongest first, so a cluster's similarity is the weakest
   edge that joined it.

Module nodes are never compared, and bodies shorter than min_tokens are
ignored.
"""

import hashlib
import logging
import math
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Set, Tuple

from prunegraph.context import CancellationToken
from prunegraph.models import DependencyGraph, DuplicateCluster, DuplicateKind

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"[A-Za-z_$][\w$]*|\d[\w.]*|[^\w\s]")

# Verified pairs are handed to workers in chunks of this size
PAIR_CHUNK_SIZE = 2048

Shingle = Tuple[str, ...]


def tokenize(body: str) -> List[str]:
    """Split a body into identifier, number and punctuation tokens."""
    return TOKEN_RE.findall(body)


def normalize_body(body: str) -> str:
    """Whitespace-insensitive, case-preserving canonical form of a body."""
    return " ".join(tokenize(body))


def body_hash(body: str) -> str:
    return hashlib.sha256(normalize_body(body).encode("utf-8")).hexdigest()


def shingles(tokens: Sequence[str], size: int) -> Set[Shingle]:
    """Contiguous token windows of the given size."""
    if len(tokens) <= size:
        return {tuple(tokens)}
    return {tuple(tokens[i : i + size]) for i in range(len(tokens) - size + 1)}


def jaccard(set_a: Set[Shingle], set_b: Set[Shingle]) -> float:
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def prefix_length(set_size: int, threshold: float) -> int:
    """Number of leading (rarest) shingles that must be indexed."""
    return set_size - int(math.ceil(threshold * set_size - 1e-9)) + 1


class UnionFind:
    """Disjoint sets over string keys; the smaller key becomes the root."""

    def __init__(self) -> None:
        self._parent: Dict[str, str] = {}

    def find(self, key: str) -> str:
        self._parent.setdefault(key, key)
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[key] != root:
            self._parent[key], key = root, self._parent[key]
        return root

    def union(self, a: str, b: str) -> bool:
        """Merge the sets of a and b; returns False if already joined."""
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if root_b < root_a:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        return True

    def groups(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        for key in self._parent:
            result.setdefault(self.find(key), []).append(key)
        return result


def cluster_id_for(members: Sequence[str]) -> str:
    digest = hashlib.sha256("\n".join(sorted(members)).encode("utf-8")).hexdigest()
    return f"dup-{digest[:12]}"


class DuplicateDetector:
    """Finds exact and near-duplicate symbol bodies.

    Usage:
        detector = DuplicateDetector(similarity_threshold=0.8, shingle_size=5)
        clusters = detector.detect(graph, bodies)
    """

    def __init__(
        self,
        similarity_threshold: float = 0.8,
        shingle_size: int = 5,
        min_tokens: int = 8,
        max_workers: int = 1,
        token: Optional[CancellationToken] = None,
    ):
        """Initialize the detector.

        Args:
            similarity_threshold: Minimum Jaccard similarity for near pairs.
            shingle_size: Tokens per shingle.
            min_tokens: Bodies with fewer tokens are not compared.
            max_workers: Pool size for pair verification.
            token: Cancellation token checked between chunks.
        """
        if not 0.0 < similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be in (0, 1], got {similarity_threshold}")
        if shingle_size < 1:
            raise ValueError(f"shingle_size must be positive, got {shingle_size}")
        self.similarity_threshold = similarity_threshold
        self.shingle_size = shingle_size
        self.min_tokens = min_tokens
        self.max_workers = max(1, max_workers)
        self.token = token or CancellationToken()

    def detect(self, graph: DependencyGraph, bodies: Dict[str, str]) -> List[DuplicateCluster]:
        """Detect duplicate clusters among the graph's non-module symbols.

        Args:
            graph: Dependency graph (used for membership and signatures).
            bodies: Node id -> comment-free body text.

        Returns:
            Clusters sorted by their first member.

        Raises:
            AnalysisCancelled: If the token is cancelled mid-run.
        """
        tokens_by_node: Dict[str, List[str]] = {}
        for node_id in sorted(bodies):
            if not graph.has_node(node_id) or graph.get_node(node_id).is_module:
                continue
            tokens = tokenize(bodies[node_id])
            if len(tokens) >= self.min_tokens:
                tokens_by_node[node_id] = tokens

        clusters = self._exact_clusters(tokens_by_node)
        exact_members = {m for c in clusters for m in c.members}
        remaining = {k: v for k, v in tokens_by_node.items() if k not in exact_members}
        clusters.extend(self._near_clusters(remaining))

        for cluster in clusters:
            cluster.signatures_differ = self._signatures_differ(graph, cluster.members)

        clusters.sort(key=lambda c: (c.members[0], c.cluster_id))
        logger.info(
            f"Found {len(clusters)} duplicate clusters "
            f"({sum(1 for c in clusters if c.kind == DuplicateKind.EXACT)} exact) "
            f"among {len(tokens_by_node)} bodies"
        )
        return clusters

    def _exact_clusters(self, tokens_by_node: Dict[str, List[str]]) -> List[DuplicateCluster]:
        by_hash: Dict[str, List[str]] = {}
        for node_id, tokens in tokens_by_node.items():
            digest = hashlib.sha256(" ".join(tokens).encode("utf-8")).hexdigest()
            by_hash.setdefault(digest, []).append(node_id)

        clusters = []
        for members in by_hash.values():
            if len(members) < 2:
                continue
            members = sorted(members)
            clusters.append(
                DuplicateCluster(
                    cluster_id=cluster_id_for(members),
                    members=members,
                    similarity=1.0,
                    kind=DuplicateKind.EXACT,
                )
            )
        return clusters

    def _near_clusters(self, tokens_by_node: Dict[str, List[str]]) -> List[DuplicateCluster]:
        node_ids = sorted(tokens_by_node)
        sets = [shingles(tokens_by_node[n], self.shingle_size) for n in node_ids]
        pairs = self.candidate_pairs(sets)
        logger.debug(f"Prefix filtering produced {len(pairs)} candidate pairs from {len(sets)} bodies")

        verified = self._verify(sets, pairs)

        # Strongest pairs first: each component's similarity is then the
        # weakest edge of its maximum spanning tree
        verified.sort(key=lambda item: (-item[2], item[0], item[1]))
        union_find = UnionFind()
        weakest: Dict[str, float] = {}
        for i, j, similarity in verified:
            a, b = node_ids[i], node_ids[j]
            root_a, root_b = union_find.find(a), union_find.find(b)
            if root_a == root_b:
                continue
            floor = min(
                similarity, weakest.pop(root_a, similarity), weakest.pop(root_b, similarity)
            )
            union_find.union(a, b)
            weakest[union_find.find(a)] = floor

        clusters = []
        for root, members in union_find.groups().items():
            if len(members) < 2:
                continue
            members = sorted(members)
            clusters.append(
                DuplicateCluster(
                    cluster_id=cluster_id_for(members),
                    members=members,
                    similarity=weakest[root],
                    kind=DuplicateKind.NEAR,
                )
            )
        return clusters

    def candidate_pairs(self, sets: List[Set[Shingle]]) -> List[Tuple[int, int]]:
        """Candidate index pairs (i < j) whose rare-shingle prefixes overlap."""
        frequency: Dict[Shingle, int] = {}
        for shingle_set in sets:
            for shingle in shingle_set:
                frequency[shingle] = frequency.get(shingle, 0) + 1

        index: Dict[Shingle, List[int]] = {}
        pairs: Set[Tuple[int, int]] = set()
        threshold = self.similarity_threshold
        for i, shingle_set in enumerate(sets):
            ordered = sorted(shingle_set, key=lambda s: (frequency[s], s))
            for shingle in ordered[: prefix_length(len(ordered), threshold)]:
                for j in index.get(shingle, []):
                    # Size filter: J(x, y) <= min/max of the sizes
                    small, large = sorted((len(sets[j]), len(shingle_set)))
                    if small >= threshold * large:
                        pairs.add((j, i))
                index.setdefault(shingle, []).append(i)
        return sorted(pairs)

    def _verify(
        self, sets: List[Set[Shingle]], pairs: List[Tuple[int, int]]
    ) -> List[Tuple[int, int, float]]:
        threshold = self.similarity_threshold
        token = self.token

        def verify_chunk(chunk: List[Tuple[int, int]]) -> List[Tuple[int, int, float]]:
            if token.is_cancelled():
                return []
            found = []
            for i, j in chunk:
                similarity = jaccard(sets[i], sets[j])
                if similarity >= threshold:
                    found.append((i, j, similarity))
            return found

        chunks = [pairs[k : k + PAIR_CHUNK_SIZE] for k in range(0, len(pairs), PAIR_CHUNK_SIZE)]
        verified: List[Tuple[int, int, float]] = []
        if chunks:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                for result in executor.map(verify_chunk, chunks):
                    verified.extend(result)
        token.raise_if_cancelled()
        return verified

    @staticmethod
    def _signatures_differ(graph: DependencyGraph, members: Sequence[str]) -> bool:
        signatures = {graph.get_node(m).parameters for m in members}
        return len(signatures) > 1
