import sqlite3

import numpy as np
import pytest

from general.db import VectorStore, add_entry, count_rows, get_entry, init_db, select_all_with_embeddings
from pocket_embed.embedder import Embedding
from pocket_embed.errors import ErrorKind
from pocket_embed.search_engine import SearchEngine


@pytest.fixture
def store(tmp_path):
    with VectorStore(tmp_path / "search.db") as s:
        yield s


def test_init_db_creates_empty_table(tmp_path):
    con = init_db(tmp_path / "a.db")
    assert count_rows(con) == 0
    assert select_all_with_embeddings(con) == []
    con.close()


def test_add_and_read_back(store):
    new_id = add_entry(store.con, "apples are red", np.array([0.5, 0.25], dtype=np.float32), entry_id=7)
    assert new_id == 7
    entry = get_entry(store.con, 7)
    assert entry.text == "apples are red"
    assert entry.embedding == "[0.5, 0.25]"
    assert store.get_entry(99) is None


def test_rows_without_embedding_are_excluded(store):
    add_entry(store.con, "kept", [1.0, 0.0], entry_id=1)
    store.con.execute("INSERT INTO docs(id, text, embed) VALUES (2, 'null', NULL)")
    store.con.execute("INSERT INTO docs(id, text, embed) VALUES (3, 'empty', '')")
    store.con.commit()
    assert store.count_rows() == 3
    assert [e.id for e in store.select_all_with_embeddings()] == [1]


def test_ingesting_same_source_replaces_row(store):
    add_entry(store.con, "v1", [1.0], source="a.txt")
    add_entry(store.con, "v2", [2.0], source="a.txt")
    assert store.count_rows() == 1
    assert store.select_all_with_embeddings()[0].text == "v2"


def _seed(store):
    add_entry(store.con, "same direction", [1.0, 0.0], entry_id=2)
    add_entry(store.con, "also same", [2.0, 0.0], entry_id=1)
    add_entry(store.con, "orthogonal", [0.0, 1.0], entry_id=3)
    store.con.execute("INSERT INTO docs(id, text, embed) VALUES (4, 'broken', '[1,2,')")
    store.con.commit()


def test_query_end_to_end(manager, session_factory, store):
    session_factory.session.output = np.array([[1.0, 0.0]], dtype=np.float32)
    assert manager.initialize().is_ok
    _seed(store)

    result = SearchEngine(manager, store).query("hello", k=2)
    assert result.is_ok
    resp = result.value
    assert [(r.id, r.score) for r in resp.results] == [(1, pytest.approx(1.0)), (2, pytest.approx(1.0))]
    assert resp.malformed == 1
    assert resp.corpus_size == 4
    assert resp.embedding.dim == 2


def test_query_before_initialize(manager, store):
    result = SearchEngine(manager, store).query("hello")
    assert result.kind is ErrorKind.EMBEDDING_UNAVAILABLE


def test_empty_corpus_is_not_an_error(manager, store):
    assert manager.initialize().is_ok
    result = SearchEngine(manager, store).query("hello")
    assert result.is_ok
    assert result.value.results == []


def test_storage_errors_are_typed(manager, store):
    engine = SearchEngine(manager, store)
    store.close()
    emb = Embedding(vector=np.ones(2, dtype=np.float32), elapsed_ms=0.0, model_label="m")
    result = engine.rank_vector(emb)
    assert result.kind is ErrorKind.STORAGE_UNAVAILABLE
    assert engine.corpus_size().kind is ErrorKind.STORAGE_UNAVAILABLE


def test_corpus_size(manager, store):
    _seed(store)
    assert SearchEngine(manager, store).corpus_size().value == 4


def test_sqlite_error_type_is_what_closed_connections_raise(tmp_path):
    con = init_db(tmp_path / "b.db")
    con.close()
    with pytest.raises(sqlite3.Error):
        count_rows(con)
