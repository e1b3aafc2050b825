from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PERIODS = (4, 5, 6, 7, 8)
ENTRY_TYPES = ("Class", "Study", "Enrichment", "Absent")
ZONELESS_TYPES = {"Enrichment", "Absent"}
ACTIONS = (
    "Self-Directed",
    "Coached",
    "Redirected",
    "Conduct 1",
    "Conduct 2",
    "Conduct 3",
    "Need Attention",
)
DEFAULT_ACTION = "Self-Directed"
BASE_CATEGORIES = ("Focus", "Semi-Collaborative", "Collaborative")
UNKNOWN_CATEGORY = "Unknown"
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
ALL = "All"

COLLECTIONS = ("students", "zones", "entries")


def parse_date(value) -> date | None:
    """Parse a YYYY-MM-DD string (or date) into a date; None if missing or malformed."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def weekday_name(value) -> str | None:
    """Weekday name of a calendar date, e.g. '2024-01-15' -> 'Monday'."""
    parsed = parse_date(value)
    return WEEKDAYS[parsed.weekday()] if parsed else None


def _as_text(v):
    if v is None:
        return None
    return str(v)


class Student(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_text(v)


class Zone(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    category: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_text(v)


class Entry(BaseModel):
    """A stored entry as read back from a store or an import.

    Stored data is not trusted to be well formed: dates may be unparseable and
    references may dangle, so every field except ``id`` is optional.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    date: str | None = None
    day: str | None = None
    period: int | None = None
    student_id: str | None = None
    type: str | None = None
    zone_id: str | None = None
    used_study_planner: bool = False
    action: str | None = None
    notes: str | None = None
    created_at: str | None = None

    @field_validator("id", "date", "student_id", "zone_id", "created_at", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _as_text(v)

    @field_validator("period", mode="before")
    @classmethod
    def coerce_period(cls, v):
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("used_study_planner", mode="before")
    @classmethod
    def coerce_flag(cls, v):
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1")
        return bool(v)


class EntryPayload(BaseModel):
    """A validated entry ready to be written; produced by the entry form."""

    date: str  # YYYY-MM-DD format
    day: str
    period: int
    student_id: str
    type: str
    zone_id: str = ""
    used_study_planner: bool = False
    action: str = DEFAULT_ACTION
    notes: str = ""

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        if parse_date(v) is None:
            raise ValueError("Date must be in YYYY-MM-DD format")
        return v

    @field_validator("period")
    @classmethod
    def validate_period(cls, v):
        if v not in PERIODS:
            raise ValueError(f"Period must be one of: {PERIODS}")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in ENTRY_TYPES:
            raise ValueError(f"Type must be one of: {ENTRY_TYPES}")
        return v

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if v not in ACTIONS:
            raise ValueError(f"Action must be one of: {ACTIONS}")
        return v

    @model_validator(mode="after")
    def validate_dependencies(self):
        if self.day != weekday_name(self.date):
            raise ValueError("Day must be the weekday of the entry date")
        if self.type in ZONELESS_TYPES and self.zone_id:
            raise ValueError(f"Zone must be empty for type '{self.type}'")
        if self.type not in ZONELESS_TYPES and not self.zone_id:
            raise ValueError(f"Zone is required for type '{self.type}'")
        if self.type != "Study" and self.used_study_planner:
            raise ValueError("Study planner usage only applies to Study entries")
        if self.type == "Absent" and self.notes:
            raise ValueError("Absent entries carry no notes")
        return self


class StudentCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class StudentUpdate(BaseModel):
    name: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        # Only runs when a name was sent; null or blank would blank out the record
        if v is None or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()


class ZoneCreate(BaseModel):
    name: str
    category: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class ZoneUpdate(BaseModel):
    name: str | None = None
    category: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is None or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()


class SubmitRequest(BaseModel):
    date: str | None = None  # defaults to local today
    period: int
    drafts: dict[str, dict] = Field(default_factory=dict)


class SubmitResponse(BaseModel):
    ok: bool
    count: int


class FilterCriteria(BaseModel):
    student_id: str | None = None
    day: str | None = None
    period: int | str | None = None
    all_time: bool = True
    date_from: date | None = None
    date_to: date | None = None


class UsageCount(BaseModel):
    key: str
    label: str
    count: int


class DataResponse(BaseModel):
    entries: list[Entry]
    zone_usage: list[UsageCount]
    category_usage: list[UsageCount]


class Snapshot(BaseModel):
    entries: list[dict] = Field(default_factory=list)
    students: list[dict] = Field(default_factory=list)
    zones: list[dict] = Field(default_factory=list)


class ImportResponse(BaseModel):
    ok: bool
    entries: int
    students: int
    zones: int
