import threading

import pytest

from db import create_db_and_tables, make_engine
from entry_form import Draft, build_submission
from errors import StorageUnavailable
from repository import EntryRepository, import_snapshot, load_collections
from schemas import Snapshot
from storage import LocalStore, RemoteStore, StorageAdapter


class FlakyStore(StorageAdapter):
    """In-memory store whose writes fail for chosen students."""

    name = "flaky"
    assigns_ids = True
    concurrent_writes = True

    def __init__(self, failing=(), error=RuntimeError):
        self.failing = set(failing)
        self.error = error
        self.records = []
        self.threads = set()
        self._lock = threading.Lock()

    def create(self, collection, record):
        self.threads.add(threading.get_ident())
        if record["student_id"] in self.failing:
            raise self.error("write failed")
        with self._lock:
            self.records.append(record)
            return str(len(self.records))


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'store.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


def payloads_for(*student_ids):
    drafts = {s: Draft(type="Class", zone_id="z1") for s in student_ids}
    return build_submission("2024-01-15", 4, list(student_ids), drafts)


def test_local_append_assigns_ids_and_timestamps(engine):
    store = LocalStore(engine)

    count = EntryRepository(store).append_entries(payloads_for("s1", "s2", "s3"))

    assert count == 3
    entries = store.list("entries")
    assert [e["student_id"] for e in entries] == ["s1", "s2", "s3"]
    stamps = {e["id"].split("-")[0] for e in entries}
    assert len(stamps) == 1
    assert [e["id"].split("-")[1] for e in entries] == ["0", "1", "2"]
    assert all(e["created_at"] for e in entries)
    assert all(e["day"] == "Monday" for e in entries)


def test_remote_append_uses_store_ids(engine):
    store = RemoteStore(engine, "teacher-1")

    count = EntryRepository(store, max_workers=2).append_entries(payloads_for("s1", "s2"))

    assert count == 2
    entries = store.list("entries")
    assert sorted(e["student_id"] for e in entries) == ["s1", "s2"]
    assert all("-" not in e["id"] for e in entries)
    assert all(e["created_at"] for e in entries)


def test_partial_failure_keeps_successful_writes():
    store = FlakyStore(failing={"s2"})

    count = EntryRepository(store, max_workers=3).append_entries(payloads_for("s1", "s2", "s3"))

    assert count == 2
    assert sorted(r["student_id"] for r in store.records) == ["s1", "s3"]


def test_all_writes_unreachable_raises():
    store = FlakyStore(failing={"s1", "s2"}, error=StorageUnavailable)
    with pytest.raises(StorageUnavailable):
        EntryRepository(store).append_entries(payloads_for("s1", "s2"))


def test_all_writes_rejected_returns_zero():
    store = FlakyStore(failing={"s1"})
    assert EntryRepository(store).append_entries(payloads_for("s1")) == 0


def test_nothing_to_append():
    assert EntryRepository(FlakyStore()).append_entries([]) == 0


def test_load_collections_falls_back_to_local(engine, tmp_path):
    local = LocalStore(engine)
    local.create("students", {"name": "Alice"})
    broken = RemoteStore(make_engine(f"sqlite:///{tmp_path / 'nope' / 'remote.db'}"), "teacher-1")

    students, zones, entries = load_collections(broken, fallback=local)

    assert [s.name for s in students] == ["Alice"]
    assert zones == []
    assert entries == []


def test_load_collections_without_fallback_raises(tmp_path):
    broken = LocalStore(make_engine(f"sqlite:///{tmp_path / 'nope' / 'local.db'}"))
    with pytest.raises(StorageUnavailable):
        load_collections(broken, fallback=broken)


def test_import_snapshot_replaces_existing_data(engine):
    """Importing over a non-empty store leaves exactly the snapshot."""
    store = LocalStore(engine)
    store.create("students", {"name": "Old Student"})
    store.create("zones", {"name": "Old Zone"})
    EntryRepository(store).append_entries(payloads_for("s9"))

    snapshot = Snapshot(entries=[], students=[{"id": "s1", "name": "Alice"}], zones=[])
    import_snapshot(store, snapshot)

    assert store.list("entries") == []
    assert store.list("students") == [{"id": "s1", "name": "Alice"}]
    assert store.list("zones") == []


def test_import_entries_only_keeps_roster(engine):
    store = LocalStore(engine)
    store.create("students", {"name": "Alice"})

    import_snapshot(store, Snapshot(entries=[{"id": "e1", "date": "2024-01-15"}]), replace=("entries",))

    assert [s["name"] for s in store.list("students")] == ["Alice"]
    assert store.list("entries") == [{"id": "e1", "date": "2024-01-15"}]


def test_seed_database_runs_once(engine):
    from seed import seed_database

    store = LocalStore(engine)

    assert seed_database(store) == 4
    assert len(store.list("students")) == 4
    assert len(store.list("zones")) == 3
    assert seed_database(store) == 0


def test_local_batches_in_the_same_millisecond_get_distinct_ids(engine, monkeypatch):
    """A second batch on the same clock reading must not reuse the first batch's ids."""
    import repository
    from datetime import UTC, datetime

    class FrozenClock(datetime):
        @classmethod
        def now(cls, tz=None):
            return datetime(2024, 1, 15, 9, 0, tzinfo=UTC)

    monkeypatch.setattr(repository, "datetime", FrozenClock)
    store = LocalStore(engine)
    repo = EntryRepository(store)

    repo.append_entries(payloads_for("s1"))
    repo.append_entries(payloads_for("s2"))

    ids = [e["id"] for e in store.list("entries")]
    assert len(set(ids)) == 2

    store.delete("entries", ids[0])
    assert [e["student_id"] for e in store.list("entries")] == ["s2"]
