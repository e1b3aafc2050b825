"""CSV export and JSON snapshot export/import."""
import csv
import io
import json
import logging
from typing import List

from pydantic import ValidationError

from errors import ImportFormatError
from schemas import Entry, Snapshot, Student, Zone, weekday_name

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Date",
    "Day",
    "Period",
    "Student",
    "Type",
    "Zone",
    "Zone Category",
    "Used Study Planner",
    "Action",
    "Notes",
    "Timestamp",
]


def _text(value) -> str:
    return "" if value is None else str(value)


def _planner_cell(entry: Entry) -> str:
    if entry.type != "Study":
        return "N/A"
    return "Yes" if entry.used_study_planner else "No"


def to_csv(entries: List[Entry], students: List[Student], zones: List[Zone]) -> str:
    """Render entries as CSV, one row per entry in the given order.

    Student and zone ids resolve to names, falling back to the raw id when
    the record no longer exists. Every field is quoted.
    """
    student_names = {s.id: s.name for s in students}
    zones_by_id = {z.id: z for z in zones}

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        zone = zones_by_id.get(entry.zone_id) if entry.zone_id else None
        notes = " ".join(_text(entry.notes).splitlines())
        writer.writerow(
            [
                _text(entry.date),
                weekday_name(entry.date) or _text(entry.day),
                _text(entry.period),
                student_names.get(entry.student_id, _text(entry.student_id)),
                _text(entry.type),
                zone.name if zone else _text(entry.zone_id),
                _text(zone.category) if zone else "",
                _planner_cell(entry),
                _text(entry.action),
                notes,
                _text(entry.created_at),
            ]
        )
    return buffer.getvalue()


def to_snapshot(entries: List[Entry], students: List[Student], zones: List[Zone]) -> dict:
    """The full backup payload: all three collections as plain records."""
    return {
        "entries": [e.model_dump() for e in entries],
        "students": [s.model_dump() for s in students],
        "zones": [z.model_dump() for z in zones],
    }


def to_snapshot_json(entries: List[Entry], students: List[Student], zones: List[Zone]) -> str:
    return json.dumps(to_snapshot(entries, students, zones), indent=2)


def _check_records(name: str, records, model) -> list[dict]:
    if not isinstance(records, list):
        raise ImportFormatError(f"'{name}' must be a list")
    seen = set()
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise ImportFormatError(f"{name}[{index}] is not an object")
        try:
            validated = model.model_validate(record)
        except ValidationError as e:
            raise ImportFormatError(f"{name}[{index}] is invalid: {e.errors()[0]['msg']}") from e
        # Ids are compared as text; 1 and "1" name the same record
        if validated.id in seen:
            raise ImportFormatError(f"{name}[{index}] repeats id '{validated.id}'")
        seen.add(validated.id)
    return records


def parse_snapshot(payload) -> tuple[Snapshot, tuple]:
    """Validate an uploaded backup before anything is written.

    Accepts a snapshot object ``{entries, students, zones}`` or a bare list of
    entries from an entries-only export. Returns the snapshot and the names of
    the collections it replaces.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ImportFormatError("File is not valid JSON") from e

    if isinstance(payload, list):
        entries = _check_records("entries", payload, Entry)
        return Snapshot(entries=entries), ("entries",)

    if isinstance(payload, dict) and any(k in payload for k in ("entries", "students", "zones")):
        snapshot = Snapshot(
            entries=_check_records("entries", payload.get("entries", []), Entry),
            students=_check_records("students", payload.get("students", []), Student),
            zones=_check_records("zones", payload.get("zones", []), Zone),
        )
        return snapshot, ("entries", "students", "zones")

    logger.warning(f"Rejected import payload of type {type(payload).__name__}")
    raise ImportFormatError()
