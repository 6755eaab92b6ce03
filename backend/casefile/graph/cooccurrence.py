"""Entity co-occurrence graph built from document memberships.

Two entities are adjacent when both are linked to the same document.
The graph is rebuilt in process from ``document_entities`` on each pass;
nothing is persisted besides the derived columns on ``entities``.
"""

from __future__ import annotations

import logging
from itertools import combinations, groupby
from typing import Iterable

import networkx as nx

from casefile.db.repositories import EntityRepo

logger = logging.getLogger(__name__)


def build_cooccurrence_graph(
    memberships: Iterable[tuple[int, int]],
    entity_ids: Iterable[int] = (),
) -> nx.Graph:
    """Build an undirected graph from (document_id, entity_id) pairs.

    Parameters
    ----------
    memberships : iterable of (document_id, entity_id)
        Must be ordered by document_id.
    entity_ids : iterable of int
        Entities to include as nodes even without any membership.

    Returns
    -------
    networkx.Graph
        Nodes are entity ids; each node's ``documents`` attribute is the
        set of documents it appears in. Edge ``weight`` counts shared
        documents.
    """
    graph = nx.Graph()
    for entity_id in entity_ids:
        graph.add_node(entity_id, documents=set())
    for document_id, rows in groupby(memberships, key=lambda pair: pair[0]):
        members = sorted({entity_id for _, entity_id in rows})
        for entity_id in members:
            if entity_id not in graph:
                graph.add_node(entity_id, documents=set())
            graph.nodes[entity_id]["documents"].add(document_id)
        for a, b in combinations(members, 2):
            if graph.has_edge(a, b):
                graph[a][b]["weight"] += 1
            else:
                graph.add_edge(a, b, weight=1)
    return graph


def load_cooccurrence_graph(entities: EntityRepo) -> nx.Graph:
    """Snapshot the current memberships into a co-occurrence graph."""
    return build_cooccurrence_graph(entities.document_memberships(), entities.all_ids())


def refresh_entity_stats(entities: EntityRepo, graph: nx.Graph | None = None) -> int:
    """Set document_count and connection_count for every entity. Returns the entity count."""
    if graph is None:
        graph = load_cooccurrence_graph(entities)
    stats = {
        node: (len(data["documents"]), graph.degree(node))
        for node, data in graph.nodes(data=True)
    }
    entities.write_stats(stats)
    logger.info(
        "Entity stats refreshed: %d entities, %d co-occurrence edges",
        graph.number_of_nodes(), graph.number_of_edges(),
    )
    return len(stats)
