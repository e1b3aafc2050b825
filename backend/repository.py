"""Entry persistence plus collection loading and snapshot import on top of a storage adapter."""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

from errors import StorageUnavailable
from schemas import Entry, EntryPayload, Snapshot, Student, Zone
from storage import StorageAdapter, local_id

logger = logging.getLogger(__name__)


class EntryRepository:
    """Appends validated entries to a store, one independent write per entry."""

    def __init__(self, store: StorageAdapter, max_workers: int = 4):
        self.store = store
        self.max_workers = max(1, max_workers)

    def _prepare(self, payloads: list[EntryPayload]) -> list[dict]:
        records = [p.model_dump() for p in payloads]
        if self.store.assigns_ids:
            return records
        # Client-assigned ids and timestamps: one clock reading for the whole batch
        now = datetime.now(UTC)
        for index, record in enumerate(records):
            record["id"] = local_id(index, now)
            record["created_at"] = now.isoformat()
        return records

    def _write(self, record: dict) -> Exception | None:
        try:
            self.store.create("entries", record)
        except Exception as e:
            logger.warning(f"Entry write failed for student {record.get('student_id')}: {str(e)}")
            return e
        return None

    def append_entries(self, payloads: list[EntryPayload]) -> int:
        """Write every payload and return how many writes succeeded.

        Writes run concurrently when the store supports it. A failed write does
        not undo the others. Raises StorageUnavailable only when every write
        failed because the store could not be reached.
        """
        if not payloads:
            return 0
        records = self._prepare(payloads)

        if self.store.concurrent_writes and len(records) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(records))) as pool:
                errors = list(pool.map(self._write, records))
        else:
            errors = [self._write(record) for record in records]

        failures = [e for e in errors if e is not None]
        count = len(records) - len(failures)
        if count == 0 and all(isinstance(e, StorageUnavailable) for e in failures):
            raise StorageUnavailable()

        logger.info(f"Saved {count} of {len(records)} entries to {self.store.name} store")
        return count


def load_collections(store: StorageAdapter, fallback: StorageAdapter | None = None):
    """Read students, zones and entries, falling back to ``fallback`` if ``store`` is unreachable."""
    try:
        students = store.list("students")
        zones = store.list("zones")
        entries = store.list("entries")
    except StorageUnavailable:
        if fallback is None or fallback is store:
            raise
        logger.warning(f"{store.name} store unavailable, reading from {fallback.name} store")
        return load_collections(fallback)

    return (
        [Student.model_validate(s) for s in students],
        [Zone.model_validate(z) for z in zones],
        [Entry.model_validate(e) for e in entries],
    )


def import_snapshot(store: StorageAdapter, snapshot: Snapshot, replace: tuple = ("entries", "students", "zones")):
    """Replace the named collections with the snapshot's records in one transaction."""
    collections = {name: getattr(snapshot, name) for name in replace}
    store.replace_all(collections)
    summary = ", ".join(f"{len(records)} {name}" for name, records in collections.items())
    logger.info(f"Imported snapshot into {store.name} store: {summary}")
