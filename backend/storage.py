"""Storage adapters for the students, zones and entries collections.

Two interchangeable variants share one interface:

* ``LocalStore`` keeps each collection as a JSON blob under its collection
  key, like a device key-value store. Single account, serialized writes.
* ``RemoteStore`` keeps every record as its own document scoped to an
  account. Ids and entry timestamps are assigned by the store and writes may
  be issued concurrently.

``select_store`` picks one per request from the presence of an account id.
"""
from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, delete, select

from errors import RecordNotFound, StorageUnavailable
from models import Document, LocalBlob
from schemas import COLLECTIONS

logger = logging.getLogger(__name__)

# Collections listed alphabetically; entries keep insertion order
NAME_ORDERED = {"students", "zones"}


def local_id(index: int = 0, now: datetime | None = None) -> str:
    """Client-side id: ``{epoch_ms}-{index}``."""
    epoch_ms = int((now or datetime.now(UTC)).timestamp() * 1000)
    return f"{epoch_ms}-{index}"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()



def _free_local_id(taken: set, index: int) -> str:
    """First ``local_id`` at or after ``index`` that no record in the collection uses."""
    record_id = local_id(index)
    while record_id in taken:
        index += 1
        record_id = local_id(index)
    return record_id


def _check_collection(collection: str):
    if collection not in COLLECTIONS:
        raise ValueError(f"Collection must be one of: {COLLECTIONS}")


@contextmanager
def storage_errors(action: str):
    """Translate database failures into StorageUnavailable."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during {action}: {str(e)}")
        raise StorageUnavailable() from e


class StorageAdapter:
    """Interface shared by the local and remote stores."""

    name = "base"
    # Store assigns record ids and entry created_at itself
    assigns_ids = False
    # Independent writes may run at the same time
    concurrent_writes = False

    def list(self, collection: str) -> list[dict]:
        raise NotImplementedError

    def create(self, collection: str, record: dict) -> str:
        raise NotImplementedError

    def update(self, collection: str, record_id: str, partial: dict) -> None:
        raise NotImplementedError

    def delete(self, collection: str, record_id: str) -> None:
        raise NotImplementedError

    def replace_all(self, collections: dict[str, list[dict]]) -> None:
        """Replace whole collections in one transaction."""
        raise NotImplementedError


class LocalStore(StorageAdapter):
    name = "local"

    def __init__(self, engine):
        self.engine = engine
        self._lock = threading.Lock()

    def _read(self, session: Session, collection: str) -> list[dict]:
        blob = session.get(LocalBlob, collection)
        if blob is None:
            return []
        try:
            records = json.loads(blob.value)
        except ValueError:
            logger.warning(f"Local blob '{collection}' is not valid JSON, treating as empty")
            return []
        return records if isinstance(records, list) else []

    def _write(self, session: Session, collection: str, records: list[dict]):
        blob = session.get(LocalBlob, collection)
        if blob is None:
            blob = LocalBlob(key=collection)
        blob.value = json.dumps(records)
        blob.updated_at = datetime.now(UTC)
        session.add(blob)

    def list(self, collection: str) -> list[dict]:
        _check_collection(collection)
        with storage_errors(f"list {collection}"), Session(self.engine) as session:
            records = self._read(session, collection)
        if collection in NAME_ORDERED:
            records.sort(key=lambda r: str(r.get("name") or "").casefold())
        return records

    def create(self, collection: str, record: dict) -> str:
        _check_collection(collection)
        with self._lock, storage_errors(f"create {collection}"), Session(self.engine) as session:
            records = self._read(session, collection)
            new_record = dict(record)
            taken = {str(r.get("id")) for r in records}
            if not new_record.get("id") or str(new_record["id"]) in taken:
                new_record["id"] = _free_local_id(taken, len(records))
            records.append(new_record)
            self._write(session, collection, records)
            session.commit()
        return str(new_record["id"])

    def update(self, collection: str, record_id: str, partial: dict) -> None:
        _check_collection(collection)
        with self._lock, storage_errors(f"update {collection}"), Session(self.engine) as session:
            records = self._read(session, collection)
            for i, record in enumerate(records):
                if str(record.get("id")) == str(record_id):
                    records[i] = {**record, **partial, "id": record["id"]}
                    break
            else:
                raise RecordNotFound(f"{collection[:-1].capitalize()} {record_id} not found")
            self._write(session, collection, records)
            session.commit()

    def delete(self, collection: str, record_id: str) -> None:
        _check_collection(collection)
        with self._lock, storage_errors(f"delete {collection}"), Session(self.engine) as session:
            records = self._read(session, collection)
            for i, record in enumerate(records):
                if str(record.get("id")) == str(record_id):
                    del records[i]
                    break
            else:
                raise RecordNotFound(f"{collection[:-1].capitalize()} {record_id} not found")
            self._write(session, collection, records)
            session.commit()

    def replace_all(self, collections: dict[str, list[dict]]) -> None:
        for collection in collections:
            _check_collection(collection)
        with self._lock, storage_errors("replace"), Session(self.engine) as session:
            for collection, records in collections.items():
                self._write(session, collection, list(records))
            session.commit()


class RemoteStore(StorageAdapter):
    name = "remote"
    assigns_ids = True
    concurrent_writes = True

    def __init__(self, engine, account_id: str):
        if not account_id:
            raise ValueError("RemoteStore requires an account id")
        self.engine = engine
        self.account_id = account_id

    def _query(self, collection: str):
        return (
            select(Document)
            .where(Document.account_id == self.account_id)
            .where(Document.collection == collection)
        )

    def _get(self, session: Session, collection: str, record_id: str) -> Document:
        doc = session.exec(self._query(collection).where(Document.key == str(record_id))).first()
        if doc is None:
            raise RecordNotFound(f"{collection[:-1].capitalize()} {record_id} not found")
        return doc

    def _new_document(self, collection: str, record: dict) -> Document:
        data = dict(record)
        key = data.pop("id", None)
        doc = Document(
            account_id=self.account_id,
            collection=collection,
            name=data.get("name"),
            data=data,
        )
        if key:
            doc.key = str(key)
        return doc

    def list(self, collection: str) -> list[dict]:
        _check_collection(collection)
        stmt = self._query(collection)
        if collection in NAME_ORDERED:
            stmt = stmt.order_by(Document.name, Document.seq)
        else:
            stmt = stmt.order_by(Document.seq)
        with storage_errors(f"list {collection}"), Session(self.engine) as session:
            docs = session.exec(stmt).all()
            return [{**doc.data, "id": doc.key} for doc in docs]

    def create(self, collection: str, record: dict) -> str:
        _check_collection(collection)
        record = {k: v for k, v in record.items() if k != "id"}
        if collection == "entries":
            # Server time, not the client's clock
            record["created_at"] = utc_now_iso()
        with storage_errors(f"create {collection}"), Session(self.engine) as session:
            doc = self._new_document(collection, record)
            session.add(doc)
            session.commit()
            return doc.key

    def update(self, collection: str, record_id: str, partial: dict) -> None:
        _check_collection(collection)
        with storage_errors(f"update {collection}"), Session(self.engine) as session:
            doc = self._get(session, collection, record_id)
            data = {**doc.data, **{k: v for k, v in partial.items() if k != "id"}}
            doc.data = data
            doc.name = data.get("name")
            session.add(doc)
            session.commit()

    def delete(self, collection: str, record_id: str) -> None:
        _check_collection(collection)
        with storage_errors(f"delete {collection}"), Session(self.engine) as session:
            doc = self._get(session, collection, record_id)
            session.delete(doc)
            session.commit()

    def replace_all(self, collections: dict[str, list[dict]]) -> None:
        for collection in collections:
            _check_collection(collection)
        with storage_errors("replace"), Session(self.engine) as session:
            try:
                for collection, records in collections.items():
                    session.exec(
                        delete(Document)
                        .where(Document.account_id == self.account_id)
                        .where(Document.collection == collection)
                    )
                    session.add_all(self._new_document(collection, r) for r in records)
                session.commit()
            except Exception:
                session.rollback()
                raise


def select_store(account_id: str | None, local: StorageAdapter, remote_engine) -> StorageAdapter:
    """Remote store for an authenticated account, local store otherwise."""
    if account_id:
        return RemoteStore(remote_engine, account_id)
    return local
