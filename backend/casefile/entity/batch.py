"""Candidate clustering of surface forms before alias grouping.

Runs the pairwise compare_names() over all name pairs of one entity type
(with first-letter blocking for large inputs) and groups names connected
by a plausible match into clusters using networkx connected components.
Only multi-name clusters are worth sending to the language model; a
singleton has nothing to group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations

import networkx as nx

from casefile.entity.pairwise import compare_names, normalize_name, score_to_confidence

logger = logging.getLogger(__name__)

# Below this many names every pair is compared.
BLOCKING_MIN_NAMES = 1000


@dataclass
class CandidatePair:
    name_a: str
    name_b: str
    score: float
    confidence: str
    match_type: str


@dataclass
class ClusterResult:
    """Result of clustering a batch of names.

    Attributes
    ----------
    clusters : list[list[str]]
        Groups of two or more names, largest first; names inside a
        cluster keep their input order.
    pairs : list[CandidatePair]
        Every pair at or above the threshold, sorted by score descending.
    total_comparisons : int
        Number of pairwise comparisons performed.
    """

    clusters: list[list[str]] = field(default_factory=list)
    pairs: list[CandidatePair] = field(default_factory=list)
    total_comparisons: int = 0


def _blocking_key(name: str, entity_type: str) -> str:
    """First letter of the last word of the normalized name.

    Surnames survive abbreviation ("J. Epstein"), so blocking on them keeps
    short forms next to their full names.
    """
    normalized = normalize_name(name, entity_type)
    return normalized.split()[-1][0] if normalized else ""


def cluster_names(
    names: list[str],
    entity_type: str,
    threshold: float = 0.6,
    use_blocking: bool = True,
) -> ClusterResult:
    """Cluster names that plausibly refer to the same entity.

    Parameters
    ----------
    names : list[str]
        Surface forms of one entity type. Duplicates are ignored.
    entity_type : str
        Type shared by all names.
    threshold : float
        Minimum pairwise score that joins two names.
    use_blocking : bool
        Compare only names sharing a blocking key. Ignored for inputs
        under BLOCKING_MIN_NAMES names.

    Returns
    -------
    ClusterResult
    """
    unique = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
    if len(unique) < 2:
        return ClusterResult()

    if use_blocking and len(unique) >= BLOCKING_MIN_NAMES:
        blocks: dict[str, list[str]] = {}
        for name in unique:
            blocks.setdefault(_blocking_key(name, entity_type), []).append(name)
        candidate_pairs = [
            pair for block in blocks.values() for pair in combinations(block, 2)
        ]
        logger.info(
            "Clustering %d %s names in %d blocks, %d candidate pairs",
            len(unique), entity_type, len(blocks), len(candidate_pairs),
        )
    else:
        candidate_pairs = list(combinations(unique, 2))

    graph = nx.Graph()
    graph.add_nodes_from(unique)
    pairs: list[CandidatePair] = []
    for name_a, name_b in candidate_pairs:
        result = compare_names(name_a, name_b, entity_type=entity_type)
        if result.score >= threshold:
            graph.add_edge(name_a, name_b)
            pairs.append(CandidatePair(
                name_a=name_a,
                name_b=name_b,
                score=round(result.score, 4),
                confidence=score_to_confidence(result.score),
                match_type=result.match_type,
            ))

    order = {name: i for i, name in enumerate(unique)}
    clusters = [
        sorted(component, key=order.__getitem__)
        for component in nx.connected_components(graph)
        if len(component) > 1
    ]
    clusters.sort(key=lambda c: (-len(c), order[c[0]]))
    pairs.sort(key=lambda p: p.score, reverse=True)

    return ClusterResult(
        clusters=clusters,
        pairs=pairs,
        total_comparisons=len(candidate_pairs),
    )
