import pytest

from entry_form import Draft, EntryForm, apply_field_change, apply_fields, build_submission
from errors import ValidationFailure


def test_absent_clears_zone_planner_and_notes():
    """Setting type to Absent always clears zone, planner flag and notes."""
    draft = Draft(type="Study", zone_id="z1", used_study_planner=True, action="Coached", notes="Worked hard")

    result = apply_field_change(draft, "type", "Absent")

    assert result.type == "Absent"
    assert result.zone_id == ""
    assert result.used_study_planner is False
    assert result.notes == ""
    assert result.action == "Coached"


def test_change_returns_new_draft():
    """The original draft is never modified."""
    draft = Draft(type="Class", zone_id="z1")

    result = apply_field_change(draft, "zone_id", "z2")

    assert draft.zone_id == "z1"
    assert result.zone_id == "z2"
    assert result is not draft


def test_enrichment_clears_zone():
    draft = Draft(type="Class", zone_id="z1", notes="keep me")
    result = apply_field_change(draft, "type", "Enrichment")
    assert result.zone_id == ""
    assert result.notes == "keep me"


def test_leaving_study_clears_planner():
    draft = apply_field_change(Draft(), "type", "Study")
    draft = apply_field_change(draft, "used_study_planner", True)
    assert draft.used_study_planner is True

    draft = apply_field_change(draft, "type", "Class")
    assert draft.used_study_planner is False


def test_action_defaults_to_self_directed():
    """Empty or unknown actions fall back to Self-Directed."""
    assert apply_field_change(None, "notes", "hi").action == "Self-Directed"
    assert apply_field_change(Draft(action="Coached"), "action", "").action == "Self-Directed"
    assert apply_field_change(Draft(), "action", "Dancing").action == "Self-Directed"


def test_invalid_input_is_normalized_not_raised():
    draft = Draft(type="Class", zone_id="z1")
    assert apply_field_change(draft, "colour", "blue") == draft
    assert apply_field_change(draft, "type", "Recess").type == ""
    assert apply_field_change(draft, "notes", None).notes == ""


def test_apply_fields_lets_type_win():
    """A batch that sets notes and Absent together ends with no notes."""
    draft = apply_fields(None, {"notes": "left early", "zone_id": "z1", "type": "Absent"})
    assert draft.type == "Absent"
    assert draft.notes == ""
    assert draft.zone_id == ""


def test_form_set_field_only_touches_one_student():
    form = EntryForm(date="2024-01-15", period=5)
    form = form.set_field("s1", "type", "Class")
    updated = form.set_field("s2", "type", "Absent")

    assert updated.drafts["s1"] == form.drafts["s1"]
    assert updated.drafts["s2"].type == "Absent"
    assert "s2" not in form.drafts


def test_submission_skips_class_without_zone_keeps_enrichment():
    """Class needs a zone, Enrichment does not."""
    drafts = {
        "s1": Draft(type="Class"),
        "s2": Draft(type="Enrichment"),
    }

    payloads = build_submission("2024-01-15", 4, ["s1", "s2"], drafts)

    assert [p.student_id for p in payloads] == ["s2"]
    assert payloads[0].zone_id == ""


def test_submission_derives_day_from_date():
    """Day comes from the entry date, never from today."""
    payloads = build_submission("2024-01-15", 6, ["s1"], {"s1": Draft(type="Class", zone_id="z1")})
    assert payloads[0].day == "Monday"

    payloads = build_submission("2024-01-20", 6, ["s1"], {"s1": Draft(type="Class", zone_id="z1")})
    assert payloads[0].day == "Saturday"


def test_submission_follows_student_order_and_skips_untyped():
    drafts = {
        "s3": Draft(type="Absent"),
        "s1": Draft(type="Study", zone_id="z1", used_study_planner=True),
        "s2": Draft(notes="no type yet"),
    }

    payloads = build_submission("2024-01-16", 7, [{"id": "s1"}, {"id": "s2"}, {"id": "s3"}, {"id": "s4"}], drafts)

    assert [p.student_id for p in payloads] == ["s1", "s3"]
    assert payloads[0].used_study_planner is True
    assert payloads[1].action == "Self-Directed"
    assert payloads[1].notes == ""


def test_submission_forces_planner_off_outside_study():
    drafts = {"s1": Draft(type="Class", zone_id="z1", used_study_planner=True)}
    payloads = build_submission("2024-01-15", 4, ["s1"], drafts)
    assert payloads[0].used_study_planner is False


def test_empty_submission():
    assert build_submission("2024-01-15", 4, ["s1"], {}) == []


@pytest.mark.parametrize("entry_date, period", [("15/01/2024", 4), ("2024-01-15", 3), ("2024-01-15", "x")])
def test_submission_rejects_bad_date_or_period(entry_date, period):
    with pytest.raises(ValidationFailure):
        build_submission(entry_date, period, ["s1"], {"s1": Draft(type="Absent")})
