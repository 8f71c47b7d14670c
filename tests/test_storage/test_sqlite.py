"""Tests for the SQLite reference store.

Covers:
- Store initialization and schema checks
- Opening missing, empty, and corrupt repositories
- Listing and deleting references
- Lock contention from a concurrent writer
- Compaction of unreachable objects
"""

import sqlite3

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from nsprune.exceptions import (
    LockContentionError,
    ReferenceDeleteError,
    RepositoryNotFoundError,
    StorageReadError,
)
from nsprune.models.reference import RefName
from nsprune.storage.engine import (
    SCHEMA_VERSION,
    check_schema,
    create_store_engine,
    init_db,
    init_store,
)
from nsprune.storage.repositories import RepositoryHandle
from nsprune.storage.sqlite import hash_object
from tests.conftest import SCENARIO_REFS, make_sqlite_repo


class TestSchema:
    def test_all_tables_exist(self):
        engine = create_store_engine()
        init_db(engine)
        tables = set(inspect(engine).get_table_names())
        assert {"objects", "object_links", "refs", "_store_meta"} <= tables

    def test_object_columns(self):
        engine = create_store_engine()
        init_db(engine)
        columns = {c["name"] for c in inspect(engine).get_columns("objects")}
        assert columns == {"object_hash", "kind", "payload"}

    def test_check_schema_returns_version(self, tmp_path):
        db_file = init_store(tmp_path / "repo")
        engine = create_store_engine(db_file)
        try:
            assert check_schema(engine) == SCHEMA_VERSION
        finally:
            engine.dispose()

    def test_check_schema_rejects_empty_database(self, tmp_path):
        engine = create_store_engine(tmp_path / "empty.db")
        try:
            with pytest.raises(StorageReadError, match="missing tables"):
                check_schema(engine)
        finally:
            engine.dispose()

    def test_check_schema_rejects_other_version(self, tmp_path):
        db_file = init_store(tmp_path / "repo")
        conn = sqlite3.connect(db_file)
        try:
            conn.execute("UPDATE _store_meta SET value = '1' WHERE key = 'schema_version'")
            conn.commit()
        finally:
            conn.close()
        engine = create_store_engine(db_file)
        try:
            with pytest.raises(StorageReadError, match="Unsupported store schema version"):
                check_schema(engine)
        finally:
            engine.dispose()

    def test_locked_store_is_retryable(self, tmp_path, monkeypatch):
        db_file = init_store(tmp_path / "repo")
        engine = create_store_engine(db_file)

        def locked(_engine):
            raise OperationalError(
                "PRAGMA main.table_info", None, sqlite3.OperationalError("database is locked")
            )

        monkeypatch.setattr("nsprune.storage.engine.inspect", locked)
        try:
            with pytest.raises(StorageReadError) as exc_info:
                check_schema(engine)
        finally:
            engine.dispose()
        assert exc_info.value.retryable

    def test_init_db_is_idempotent(self):
        engine = create_store_engine()
        init_db(engine)
        init_db(engine)
        assert check_schema(engine) == SCHEMA_VERSION


class TestHashObject:
    def test_deterministic(self):
        assert hash_object("commit", b"x") == hash_object("commit", b"x")

    def test_kind_is_part_of_the_hash(self):
        assert hash_object("commit", b"x") != hash_object("tree", b"x")

    def test_hex_sha256(self):
        digest = hash_object("blob", b"")
        assert len(digest) == 64
        int(digest, 16)


class TestOpen:
    def test_missing_repository(self, sqlite_storage, storage_root):
        with pytest.raises(RepositoryNotFoundError):
            sqlite_storage.open(storage_root, "missing")

    def test_directory_without_store(self, sqlite_storage, storage_root):
        (storage_root / "bare").mkdir()
        with pytest.raises(RepositoryNotFoundError, match="no reference store"):
            sqlite_storage.open(storage_root, "bare")

    def test_corrupt_store_file(self, sqlite_storage, storage_root):
        repo = storage_root / "corrupt"
        repo.mkdir()
        (repo / "store.db").write_bytes(b"this is not a database" * 64)
        with pytest.raises(StorageReadError) as exc_info:
            sqlite_storage.open(storage_root, "corrupt")
        assert not exc_info.value.retryable

    def test_wrong_handle_type_rejected(self, sqlite_storage, tmp_path):
        with pytest.raises(TypeError):
            list(sqlite_storage.list_references(RepositoryHandle("rid", tmp_path)))


class TestReferences:
    def test_list_returns_every_ref(self, sqlite_storage, storage_root):
        targets = make_sqlite_repo(storage_root, "rid", SCENARIO_REFS)
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            refs = {str(r.name): r.target for r in sqlite_storage.list_references(handle)}
        finally:
            sqlite_storage.close(handle)
        assert refs == targets

    def test_delete_removes_only_that_ref(self, sqlite_storage, storage_root):
        targets = make_sqlite_repo(storage_root, "rid", SCENARIO_REFS)
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            sqlite_storage.delete_reference(handle, RefName.parse("namespaces/p1/heads/main"))
            assert sqlite_storage.get_reference(handle, "namespaces/p1/heads/main") is None
            assert (
                sqlite_storage.get_reference(handle, "namespaces/p2/heads/main")
                == targets["namespaces/p2/heads/main"]
            )
        finally:
            sqlite_storage.close(handle)

    def test_delete_missing_ref(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", SCENARIO_REFS)
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            with pytest.raises(ReferenceDeleteError, match="does not exist"):
                sqlite_storage.delete_reference(handle, RefName.parse("refs/heads/nope"))
        finally:
            sqlite_storage.close(handle)

    def test_update_reference_moves_target(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", ["refs/heads/master"])
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            other = sqlite_storage.write_object(handle, "commit", b"another")
            sqlite_storage.update_reference(handle, "refs/heads/master", other)
            assert sqlite_storage.get_reference(handle, "refs/heads/master") == other
        finally:
            sqlite_storage.close(handle)

    def test_corrupt_ref_name_is_read_error(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", ["refs/heads/master"])
        conn = sqlite3.connect(storage_root / "rid" / "store.db")
        try:
            conn.execute(
                "INSERT INTO refs (ref_name, target_hash) VALUES (?, ?)",
                ("refs/heads/bad..name", "0" * 64),
            )
            conn.commit()
        finally:
            conn.close()

        handle = sqlite_storage.open(storage_root, "rid")
        try:
            with pytest.raises(StorageReadError, match="Corrupt reference"):
                list(sqlite_storage.list_references(handle))
        finally:
            sqlite_storage.close(handle)


class TestLocking:
    def test_delete_under_writer_lock(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", SCENARIO_REFS)
        handle = sqlite_storage.open(storage_root, "rid")
        writer = sqlite3.connect(storage_root / "rid" / "store.db", isolation_level=None)
        try:
            writer.execute("BEGIN IMMEDIATE")
            with pytest.raises(LockContentionError):
                sqlite_storage.delete_reference(
                    handle, RefName.parse("namespaces/p1/heads/main")
                )
            writer.execute("ROLLBACK")

            sqlite_storage.delete_reference(handle, RefName.parse("namespaces/p1/heads/main"))
            assert sqlite_storage.get_reference(handle, "namespaces/p1/heads/main") is None
        finally:
            writer.close()
            sqlite_storage.close(handle)


class TestCompact:
    def test_removes_only_unreachable_objects(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", SCENARIO_REFS)
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            # shared root + one commit per ref
            assert sqlite_storage.count_objects(handle) == 4
            sqlite_storage.delete_reference(handle, RefName.parse("namespaces/p1/heads/main"))

            stats = sqlite_storage.compact(handle)

            assert stats.objects_removed == 1
            assert stats.bytes_reclaimed is not None and stats.bytes_reclaimed >= 0
            assert sqlite_storage.count_objects(handle) == 3
        finally:
            sqlite_storage.close(handle)

    def test_shared_objects_survive_until_last_ref_goes(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", ["refs/heads/a", "refs/heads/b"])
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            sqlite_storage.delete_reference(handle, RefName.parse("refs/heads/a"))
            assert sqlite_storage.compact(handle).objects_removed == 1
            sqlite_storage.delete_reference(handle, RefName.parse("refs/heads/b"))
            assert sqlite_storage.compact(handle).objects_removed == 2
            assert sqlite_storage.count_objects(handle) == 0
        finally:
            sqlite_storage.close(handle)

    def test_nothing_to_remove(self, sqlite_storage, storage_root):
        make_sqlite_repo(storage_root, "rid", SCENARIO_REFS)
        handle = sqlite_storage.open(storage_root, "rid")
        try:
            assert sqlite_storage.compact(handle).objects_removed == 0
            assert sqlite_storage.count_objects(handle) == 4
        finally:
            sqlite_storage.close(handle)
