"""Tests for casefile.graph — co-occurrence graph, entity stats and layers."""

from pathlib import Path

import networkx as nx
import pytest

from casefile.config import Settings
from casefile.db.repositories import DocumentRepo, EntityRepo
from casefile.db.sqlite import SQLiteDB
from casefile.errors import RootEntityMissing
from casefile.graph.cooccurrence import (
    build_cooccurrence_graph,
    load_cooccurrence_graph,
    refresh_entity_stats,
)
from casefile.graph.layers import MAX_LAYER, LayerClassifier, classify_layers


@pytest.fixture
def db(tmp_path: Path) -> SQLiteDB:
    return SQLiteDB(str(tmp_path / "test.db"))


@pytest.fixture
def entities(db: SQLiteDB) -> EntityRepo:
    return EntityRepo(db)


@pytest.fixture
def documents(db: SQLiteDB) -> DocumentRepo:
    return DocumentRepo(db)


@pytest.fixture
def settings() -> Settings:
    return Settings(ROOT_ENTITY_NAME="R", ROOT_ENTITY_TYPE="person")


def _link_all(entities: EntityRepo, documents: DocumentRepo, doc_id: str, *entity_ids: int) -> int:
    document_id = documents.insert(doc_id, 1, full_text="t")
    for entity_id in entity_ids:
        entities.link_document(entity_id, document_id)
    return document_id


@pytest.fixture
def chain(entities: EntityRepo, documents: DocumentRepo) -> dict[str, int]:
    """R-A share d1, A-B share d2, B-C share d3, D is isolated."""
    ids = {
        "R": entities.seed_root("R", "person"),
        "A": entities.upsert("A", "person"),
        "B": entities.upsert("B", "organization"),
        "C": entities.upsert("C", "location"),
        "D": entities.upsert("D", "person"),
    }
    _link_all(entities, documents, "EFTA00000001", ids["R"], ids["A"])
    _link_all(entities, documents, "EFTA00000002", ids["A"], ids["B"])
    _link_all(entities, documents, "EFTA00000003", ids["B"], ids["C"])
    return ids


class TestCooccurrenceGraph:
    def test_clique_per_document(self):
        graph = build_cooccurrence_graph([(1, 10), (1, 11), (1, 12), (2, 10)])
        assert graph.number_of_edges() == 3
        assert graph.nodes[10]["documents"] == {1, 2}

    def test_shared_documents_weight_edges(self):
        graph = build_cooccurrence_graph([(1, 10), (1, 11), (2, 10), (2, 11)])
        assert graph[10][11]["weight"] == 2

    def test_isolated_entities_included(self):
        graph = build_cooccurrence_graph([(1, 10)], entity_ids=[10, 20, 30])
        assert set(graph.nodes) == {10, 20, 30}
        assert graph.nodes[20]["documents"] == set()
        assert graph.nodes[30]["documents"] is not graph.nodes[20]["documents"]

    def test_loaded_from_memberships(self, entities, chain):
        graph = load_cooccurrence_graph(entities)
        assert graph.has_edge(chain["R"], chain["A"])
        assert not graph.has_edge(chain["R"], chain["B"])
        assert chain["D"] in graph


class TestEntityStats:
    def test_document_and_connection_counts(self, entities, documents, chain):
        _link_all(entities, documents, "EFTA00000004", chain["A"], chain["C"])
        refresh_entity_stats(entities)
        a = entities.get(chain["A"])
        assert a["document_count"] == 3
        assert a["connection_count"] == 3  # R, B, C
        d = entities.get(chain["D"])
        assert (d["document_count"], d["connection_count"]) == (0, 0)


class TestClassifyLayers:
    def test_bfs_capped(self):
        graph = nx.path_graph(6)
        assert classify_layers(graph, 0) == {0: 0, 1: 1, 2: 2, 3: 3, 4: 3, 5: 3}

    def test_first_assignment_wins(self):
        """A node adjacent to both the root and a layer-1 node stays at layer 1."""
        graph = nx.Graph([(0, 1), (0, 2), (1, 2)])
        assert classify_layers(graph, 0) == {0: 0, 1: 1, 2: 1}


class TestLayerClassifier:
    def test_root_a_b_c_layers(self, entities, settings, chain):
        counts = LayerClassifier(entities, settings).run()
        layers = {name: entities.get(i)["layer"] for name, i in chain.items()}
        assert layers == {"R": 0, "A": 1, "B": 2, "C": 3, "D": 3}
        assert counts == {0: 1, 1: 1, 2: 1, 3: 2}

    def test_no_entity_left_unlabeled(self, entities, settings, chain):
        LayerClassifier(entities, settings).run()
        assert all(0 <= entities.get(i)["layer"] <= MAX_LAYER for i in chain.values())

    def test_idempotent(self, entities, settings, chain):
        classifier = LayerClassifier(entities, settings)
        classifier.run()
        first = {i: entities.get(i)["layer"] for i in chain.values()}
        classifier.run()
        assert {i: entities.get(i)["layer"] for i in chain.values()} == first

    def test_recompute_reflects_new_edges(self, entities, documents, settings, chain):
        classifier = LayerClassifier(entities, settings)
        classifier.run()
        _link_all(entities, documents, "EFTA00000009", chain["R"], chain["C"])
        classifier.run()
        assert entities.get(chain["C"])["layer"] == 1
        assert entities.get(chain["B"])["layer"] == 2

    def test_root_without_documents(self, entities, settings):
        root_id = entities.seed_root("R", "person")
        other = entities.upsert("X", "person")
        LayerClassifier(entities, settings).run()
        assert entities.get(root_id)["layer"] == 0
        assert entities.get(other)["layer"] == 3

    def test_missing_root_raises(self, entities, settings):
        entities.upsert("A", "person")
        with pytest.raises(RootEntityMissing):
            LayerClassifier(entities, settings).run()
