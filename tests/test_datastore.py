from __future__ import annotations

import sqlite3
import threading

import pytest

from forum_bbcodes.datastore import DataStore


def test_schema_is_created(tmp_path):
    store = DataStore(tmp_path / "nested" / "data")
    try:
        assert store.db_path.exists()
        assert store.count_bbcodes() == 0
        assert store.list_bbcodes() == []
    finally:
        store.close()


def test_build_array_insert():
    fragment, params = DataStore.build_array("INSERT", {"bbcode_id": 13, "bbcode_tag": "quote"})
    assert fragment == "(bbcode_id, bbcode_tag) VALUES (?, ?)"
    assert params == [13, "quote"]


def test_build_array_update():
    fragment, params = DataStore.build_array("UPDATE", {"bbcode_tag": "quote", "bbcode_order": 2})
    assert fragment == "bbcode_tag = ?, bbcode_order = ?"
    assert params == ["quote", 2]


def test_build_array_select():
    fragment, params = DataStore.build_array("SELECT", {"bbcode_tag": "quote", "display_on_posting": 1})
    assert fragment == "bbcode_tag = ? AND display_on_posting = ?"
    assert params == ["quote", 1]


@pytest.mark.parametrize(
    "query_type, data",
    [
        ("DELETE", {"bbcode_id": 1}),
        ("INSERT", {}),
        ("UPDATE", {"bbcode_tag; DROP TABLE bbcodes": "x"}),
    ],
)
def test_build_array_rejects_bad_input(query_type, data):
    with pytest.raises(ValueError):
        DataStore.build_array(query_type, data)


def test_query_outside_transaction_commits(datastore, insert_raw):
    insert_raw(13, "quote")

    other = sqlite3.connect(datastore.db_path)
    try:
        assert other.execute("SELECT COUNT(*) FROM bbcodes").fetchone()[0] == 1
    finally:
        other.close()


def test_fetchrow_walks_result(datastore, insert_raw):
    insert_raw(13, "a")
    insert_raw(14, "b")

    cursor = datastore.query("SELECT bbcode_tag FROM bbcodes ORDER BY bbcode_id")
    tags = []
    row = datastore.fetchrow(cursor)
    while row is not None:
        tags.append(row["bbcode_tag"])
        row = datastore.fetchrow(cursor)
    datastore.free_result(cursor)

    assert tags == ["a", "b"]


def test_transaction_commits(datastore, insert_raw):
    insert_raw(13, "quote")

    with datastore.transaction():
        assert datastore.in_transaction
        datastore.query("UPDATE bbcodes SET bbcode_order = 9 WHERE bbcode_id = 13")

    assert not datastore.in_transaction
    assert datastore.get_bbcode(13)["bbcode_order"] == 9


def test_transaction_rolls_back_on_error(datastore, insert_raw):
    insert_raw(13, "quote")

    with pytest.raises(RuntimeError):
        with datastore.transaction():
            datastore.query("UPDATE bbcodes SET bbcode_order = 9 WHERE bbcode_id = 13")
            raise RuntimeError("boom")

    assert not datastore.in_transaction
    assert datastore.get_bbcode(13)["bbcode_order"] == 0


def test_nested_transaction_joins_outer(datastore, insert_raw):
    insert_raw(13, "quote")

    with pytest.raises(RuntimeError):
        with datastore.transaction():
            with datastore.transaction():
                datastore.query("UPDATE bbcodes SET bbcode_order = 4 WHERE bbcode_id = 13")
            assert datastore.in_transaction
            raise RuntimeError("boom")

    assert datastore.get_bbcode(13)["bbcode_order"] == 0


def test_tag_is_unique_case_insensitively(datastore, insert_raw):
    insert_raw(13, "Quote")
    with pytest.raises(sqlite3.IntegrityError):
        insert_raw(14, "QUOTE")


def test_get_missing_bbcode(datastore):
    assert datastore.get_bbcode(99) is None


def test_transaction_state_is_per_thread(datastore, insert_raw):
    insert_raw(13, "quote")
    seen = {}

    def _writer():
        seen["in_transaction"] = datastore.in_transaction
        insert_raw(14, "spoiler")
        datastore.close()

    with datastore.transaction():
        assert datastore.in_transaction
        thread = threading.Thread(target=_writer)
        thread.start()
        thread.join()

    assert seen["in_transaction"] is False
    other = sqlite3.connect(datastore.db_path)
    try:
        assert other.execute("SELECT COUNT(*) FROM bbcodes").fetchone()[0] == 2
    finally:
        other.close()
