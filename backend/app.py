import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from aggregation import filter_entries, sort_entries_newest_first, summarize
from db import WRITE_WORKERS, create_db_and_tables, local_engine, remote_engine
from entry_form import apply_fields, build_submission
from errors import (
    ImportFormatError,
    RecordNotFound,
    StorageUnavailable,
    TrackerError,
    ValidationFailure,
)
from export import parse_snapshot, to_csv, to_snapshot_json
from repository import EntryRepository, import_snapshot, load_collections
from schemas import (
    DataResponse,
    Entry,
    FilterCriteria,
    ImportResponse,
    Student,
    StudentCreate,
    StudentUpdate,
    SubmitRequest,
    SubmitResponse,
    Zone,
    ZoneCreate,
    ZoneUpdate,
)
from storage import LocalStore, StorageAdapter, select_store

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_local_store = LocalStore(local_engine)

ERROR_STATUS = {
    ValidationFailure: 400,
    ImportFormatError: 422,
    RecordNotFound: 404,
    StorageUnavailable: 503,
}


def http_error(e: TrackerError) -> HTTPException:
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(e, cls)), 500)
    return HTTPException(status_code=status, detail=e.message)


def get_local_store() -> StorageAdapter:
    return _local_store


def get_remote_engine():
    return remote_engine


def get_store(
    x_account_id: str | None = Header(None),
    local: StorageAdapter = Depends(get_local_store),
    engine=Depends(get_remote_engine),
) -> StorageAdapter:
    """Pick the account's remote store, or the local store when signed out."""
    return select_store(x_account_id, local, engine)


def _parse_day(value: str | None, name: str) -> date | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        logger.error(f"Invalid date format for {name}: {value}")
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD") from e


def get_criteria(
    student_id: str = Query(None, description="Only this student's entries"),
    day: str = Query(None, description="Weekday name or 'All'"),
    period: str = Query(None, description="Period 4-8 or 'All'"),
    all_time: bool = Query(True, description="Ignore the date range"),
    date_from: str = Query(None, description="Start date filter (YYYY-MM-DD)"),
    date_to: str = Query(None, description="End date filter (YYYY-MM-DD)"),
) -> FilterCriteria:
    return FilterCriteria(
        student_id=student_id or None,
        day=day or None,
        period=period or None,
        all_time=all_time,
        date_from=_parse_day(date_from, "date_from"),
        date_to=_parse_day(date_to, "date_to"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize both stores on startup."""
    create_db_and_tables()
    logger.info("Database initialized")
    yield


# Create FastAPI app
app = FastAPI(title="Classroom Zone Tracker API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins in development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Students & zones ──────────────────────────────────────────────────────


def _list_records(store: StorageAdapter, local: StorageAdapter, collection: str, model):
    try:
        return [model.model_validate(r) for r in store.list(collection)]
    except StorageUnavailable as e:
        if store is local:
            logger.error(f"Error listing {collection}: {e.message}")
            raise http_error(e) from e
        logger.warning(f"Remote store unavailable, listing local {collection}")
        return _list_records(local, local, collection, model)


def _create_record(store: StorageAdapter, collection: str, record: dict, model):
    logger.info(f"Create {collection[:-1]} request: {record.get('name')} ({store.name} store)")
    try:
        record_id = store.create(collection, record)
    except TrackerError as e:
        logger.error(f"Error creating {collection[:-1]}: {e.message}")
        raise http_error(e) from e
    return model(id=record_id, **record)


def _update_record(store: StorageAdapter, collection: str, record_id: str, partial: dict):
    logger.info(f"Update {collection[:-1]} request for ID: {record_id}")
    try:
        store.update(collection, record_id, partial)
    except TrackerError as e:
        logger.error(f"Error updating {collection[:-1]} {record_id}: {e.message}")
        raise http_error(e) from e
    return {"ok": True}


def _delete_record(store: StorageAdapter, collection: str, record_id: str):
    logger.info(f"Delete {collection[:-1]} request for ID: {record_id}")
    try:
        store.delete(collection, record_id)
    except TrackerError as e:
        logger.error(f"Error deleting {collection[:-1]} {record_id}: {e.message}")
        raise http_error(e) from e
    logger.info(f"Successfully deleted {collection[:-1]} {record_id}")
    return {"ok": True, "message": f"{collection[:-1].capitalize()} deleted successfully"}


@app.get("/students", response_model=list[Student])
def list_students(
    store: StorageAdapter = Depends(get_store),
    local: StorageAdapter = Depends(get_local_store),
):
    """Students ordered by name."""
    return _list_records(store, local, "students", Student)


@app.post("/students", response_model=Student)
def create_student(request: StudentCreate, store: StorageAdapter = Depends(get_store)):
    return _create_record(store, "students", request.model_dump(), Student)


@app.patch("/students/{student_id}")
def update_student(student_id: str, request: StudentUpdate, store: StorageAdapter = Depends(get_store)):
    return _update_record(store, "students", student_id, request.model_dump(exclude_unset=True))


@app.delete("/students/{student_id}")
def delete_student(student_id: str, store: StorageAdapter = Depends(get_store)):
    """Delete a student. Their historical entries are kept."""
    return _delete_record(store, "students", student_id)


@app.get("/zones", response_model=list[Zone])
def list_zones(
    store: StorageAdapter = Depends(get_store),
    local: StorageAdapter = Depends(get_local_store),
):
    """Zones ordered by name."""
    return _list_records(store, local, "zones", Zone)


@app.post("/zones", response_model=Zone)
def create_zone(request: ZoneCreate, store: StorageAdapter = Depends(get_store)):
    return _create_record(store, "zones", request.model_dump(), Zone)


@app.patch("/zones/{zone_id}")
def update_zone(zone_id: str, request: ZoneUpdate, store: StorageAdapter = Depends(get_store)):
    return _update_record(store, "zones", zone_id, request.model_dump(exclude_unset=True))


@app.delete("/zones/{zone_id}")
def delete_zone(zone_id: str, store: StorageAdapter = Depends(get_store)):
    """Delete a zone. Entries that used it keep the raw zone id."""
    return _delete_record(store, "zones", zone_id)


# ── Entries ───────────────────────────────────────────────────────────────


@app.post("/entries/submit", response_model=SubmitResponse)
def submit_entries(request: SubmitRequest, store: StorageAdapter = Depends(get_store)):
    """Validate the session's drafts and save one entry per complete draft."""
    entry_date = request.date or date.today().isoformat()
    logger.info(
        f"Submit request: date={entry_date}, period={request.period}, "
        f"drafts={len(request.drafts)} ({store.name} store)"
    )

    try:
        drafts = {student_id: apply_fields(None, fields) for student_id, fields in request.drafts.items()}
        students = [Student.model_validate(s) for s in store.list("students")]
        payloads = build_submission(entry_date, request.period, students, drafts)
        if not payloads:
            raise ValidationFailure()

        count = EntryRepository(store, max_workers=WRITE_WORKERS).append_entries(payloads)
    except TrackerError as e:
        logger.error(f"Error in submit: {e.message}")
        raise http_error(e) from e

    return SubmitResponse(ok=count > 0, count=count)


@app.get("/entries", response_model=list[Entry])
def get_entries(
    criteria: FilterCriteria = Depends(get_criteria),
    store: StorageAdapter = Depends(get_store),
    local: StorageAdapter = Depends(get_local_store),
):
    """Entries matching the filters, newest first."""
    logger.info(f"Entries request - {criteria.model_dump(exclude_none=True)}")
    try:
        _, _, entries = load_collections(store, fallback=local)
    except TrackerError as e:
        logger.error(f"Error getting entries: {e.message}")
        raise http_error(e) from e
    return sort_entries_newest_first(filter_entries(entries, criteria))


@app.delete("/entries/{entry_id}")
def delete_entry(entry_id: str, store: StorageAdapter = Depends(get_store)):
    """Delete a specific entry by ID."""
    return _delete_record(store, "entries", entry_id)


@app.get("/data", response_model=DataResponse)
def get_data(
    criteria: FilterCriteria = Depends(get_criteria),
    store: StorageAdapter = Depends(get_store),
    local: StorageAdapter = Depends(get_local_store),
):
    """Filtered entries with zone and zone-category usage counts for charts."""
    logger.info(f"Data request - {criteria.model_dump(exclude_none=True)}")
    try:
        _, zones, entries = load_collections(store, fallback=local)
    except TrackerError as e:
        logger.error(f"Error getting data: {e.message}")
        raise http_error(e) from e
    data = summarize(entries, zones, criteria)
    logger.info(f"Found {len(data.entries)} entries of {len(entries)}")
    return data


# ── Export & import ───────────────────────────────────────────────────────


@app.get("/export/csv")
def export_csv(
    criteria: FilterCriteria = Depends(get_criteria),
    store: StorageAdapter = Depends(get_store),
    local: StorageAdapter = Depends(get_local_store),
):
    """Download the filtered entries as CSV."""
    try:
        students, zones, entries = load_collections(store, fallback=local)
    except TrackerError as e:
        logger.error(f"Error exporting CSV: {e.message}")
        raise http_error(e) from e
    rows = sort_entries_newest_first(filter_entries(entries, criteria))
    filename = f"classroom-entries-{date.today().isoformat()}.csv"
    logger.info(f"Exporting {len(rows)} entries to {filename}")
    return Response(
        content=to_csv(rows, students, zones),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/export/json")
def export_json(
    store: StorageAdapter = Depends(get_store),
    local: StorageAdapter = Depends(get_local_store),
):
    """Download every collection as a snapshot for backup."""
    try:
        students, zones, entries = load_collections(store, fallback=local)
    except TrackerError as e:
        logger.error(f"Error exporting snapshot: {e.message}")
        raise http_error(e) from e
    filename = f"classroom-backup-{date.today().isoformat()}.json"
    return Response(
        content=to_snapshot_json(entries, students, zones),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/import", response_model=ImportResponse)
def import_backup(payload: Any = Body(...), store: StorageAdapter = Depends(get_store)):
    """Replace stored collections with an uploaded snapshot (never merges)."""
    logger.info(f"Import request ({store.name} store)")
    try:
        snapshot, replaced = parse_snapshot(payload)
        import_snapshot(store, snapshot, replace=replaced)
    except TrackerError as e:
        logger.error(f"Error importing snapshot: {e.message}")
        raise http_error(e) from e

    return ImportResponse(
        ok=True,
        entries=len(snapshot.entries),
        students=len(snapshot.students),
        zones=len(snapshot.zones),
    )


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "Classroom Zone Tracker API", "docs": "/docs"}
