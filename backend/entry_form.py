"""Per-student drafts for one logging session and the rules that tie their fields together."""
import logging
from datetime import date as date_type

from pydantic import BaseModel, ConfigDict, Field

from errors import ValidationFailure
from schemas import (
    ACTIONS,
    DEFAULT_ACTION,
    ENTRY_TYPES,
    PERIODS,
    ZONELESS_TYPES,
    EntryPayload,
    parse_date,
    weekday_name,
)

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ("type", "zone_id", "used_study_planner", "action", "notes")

# Apply "type" last so its clearing rules win over values set in the same batch
FIELD_ORDER = ("zone_id", "used_study_planner", "action", "notes", "type")


class Draft(BaseModel):
    """Unsaved form state for one student."""

    model_config = ConfigDict(frozen=True)

    type: str = ""
    zone_id: str = ""
    used_study_planner: bool = False
    action: str = DEFAULT_ACTION
    notes: str = ""


def _normalize_value(field: str, value):
    if field == "used_study_planner":
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1", "on")
        return bool(value)
    text = "" if value is None else str(value)
    if field == "type" and text not in ENTRY_TYPES:
        return ""
    if field == "action" and text not in ACTIONS:
        return ""
    return text


def apply_field_change(draft: Draft | None, field: str, value) -> Draft:
    """Return a new draft with ``field`` set to ``value`` and dependent fields normalized.

    Never raises: unknown fields leave the draft as is, unknown type values
    become empty and unknown actions fall back to the default.
    """
    draft = draft or Draft()
    if field not in DRAFT_FIELDS:
        logger.debug(f"Ignoring unknown draft field: {field}")
        return draft

    changes = {field: _normalize_value(field, value)}
    merged = {**draft.model_dump(), **changes}

    if not merged["action"]:
        merged["action"] = DEFAULT_ACTION

    if field == "type":
        new_type = merged["type"]
        if new_type != "Study":
            merged["used_study_planner"] = False
        if new_type == "Enrichment":
            merged["zone_id"] = ""
        if new_type == "Absent":
            merged["zone_id"] = ""
            merged["used_study_planner"] = False
            merged["notes"] = ""

    return Draft(**merged)


def apply_fields(draft: Draft | None, fields: dict) -> Draft:
    """Apply several field changes in a stable order."""
    draft = draft or Draft()
    for field in FIELD_ORDER:
        if field in fields:
            draft = apply_field_change(draft, field, fields[field])
    return draft


def _student_id(student) -> str:
    if isinstance(student, dict):
        return str(student.get("id"))
    return str(getattr(student, "id", student))


def build_submission(entry_date: str, period, students: list, drafts: dict[str, Draft]) -> list[EntryPayload]:
    """Turn drafts into entry payloads, one per student with a complete draft.

    Students are visited in the given order. Drafts without a type, or
    Class/Study drafts without a zone, produce nothing. An empty result means
    nothing was logged; the caller decides how to report that.
    """
    if parse_date(entry_date) is None:
        raise ValidationFailure(f"Invalid date '{entry_date}'. Use YYYY-MM-DD")
    try:
        period = int(period)
    except (TypeError, ValueError):
        raise ValidationFailure(f"Invalid period '{period}'") from None
    if period not in PERIODS:
        raise ValidationFailure(f"Period must be one of: {PERIODS}")

    day = weekday_name(entry_date)
    payloads = []
    for student in students:
        student_id = _student_id(student)
        draft = drafts.get(student_id)
        if draft is None or not draft.type:
            continue
        if draft.type not in ZONELESS_TYPES and not draft.zone_id:
            logger.info(f"Skipping student {student_id}: zone required for type {draft.type}")
            continue

        payloads.append(
            EntryPayload(
                date=entry_date,
                day=day,
                period=period,
                student_id=student_id,
                type=draft.type,
                zone_id="" if draft.type in ZONELESS_TYPES else draft.zone_id,
                used_study_planner=draft.used_study_planner if draft.type == "Study" else False,
                action=DEFAULT_ACTION if draft.type == "Absent" else draft.action,
                notes="" if draft.type == "Absent" else draft.notes,
            )
        )
    return payloads


class EntryForm(BaseModel):
    """Drafts for one date/period. Every change returns a new form."""

    model_config = ConfigDict(frozen=True)

    date: str = Field(default_factory=lambda: date_type.today().isoformat())
    period: int = PERIODS[0]
    drafts: dict[str, Draft] = Field(default_factory=dict)

    def set_field(self, student_id: str, field: str, value) -> "EntryForm":
        draft = apply_field_change(self.drafts.get(student_id), field, value)
        return self.model_copy(update={"drafts": {**self.drafts, student_id: draft}})

    def set_fields(self, student_id: str, fields: dict) -> "EntryForm":
        draft = apply_fields(self.drafts.get(student_id), fields)
        return self.model_copy(update={"drafts": {**self.drafts, student_id: draft}})

    def build_submission(self, students: list) -> list[EntryPayload]:
        return build_submission(self.date, self.period, students, self.drafts)
