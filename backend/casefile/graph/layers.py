"""Layer classification: graph distance of every entity from the root.

Layer 0 is the root, layer 1 its co-occurrence neighbours, layer 2 the
neighbours of layer 1, and layer 3 everything else (including entities
unreachable from the root). Every run recomputes all layers from the
current memberships and writes them in one transaction, so repeated
runs on the same graph give the same labels.
"""

from __future__ import annotations

import logging
from collections import Counter

import networkx as nx

from casefile.config import Settings
from casefile.db.repositories import EntityRepo
from casefile.errors import RootEntityMissing
from casefile.graph.cooccurrence import load_cooccurrence_graph

logger = logging.getLogger(__name__)

MAX_LAYER = 3


def classify_layers(graph: nx.Graph, root_id: int) -> dict[int, int]:
    """Return {entity_id: layer} for every node, capped at MAX_LAYER."""
    distances = nx.single_source_shortest_path_length(graph, root_id, cutoff=MAX_LAYER - 1)
    return {node: distances.get(node, MAX_LAYER) for node in graph.nodes}


class LayerClassifier:
    """Assigns layers 0-3 to all canonical entities."""

    def __init__(self, entities: EntityRepo, settings: Settings) -> None:
        self._entities = entities
        self._root_name = settings.ROOT_ENTITY_NAME
        self._root_type = settings.ROOT_ENTITY_TYPE

    def run(self, graph: nx.Graph | None = None) -> dict[int, int]:
        """Classify and persist. Returns the number of entities per layer.

        Raises
        ------
        RootEntityMissing
            The root entity has not been seeded.
        """
        root = self._entities.get_by_name(self._root_name, self._root_type)
        if root is None:
            raise RootEntityMissing(
                f"Root entity ({self._root_name!r}, {self._root_type}) not found; "
                "run 'init' first"
            )
        if graph is None:
            graph = load_cooccurrence_graph(self._entities)
        if root["id"] not in graph:
            graph.add_node(root["id"], documents=set())

        layers = classify_layers(graph, root["id"])
        self._entities.write_layers(layers)

        counts = dict(sorted(Counter(layers.values()).items()))
        logger.info("Layers assigned: %s", ", ".join(f"L{k}={v}" for k, v in counts.items()))
        return counts
