import pytest

from exceptions import AuthorizationError, ConfigurationError
from models import db, Log, Subject, StudentMark
from submissions import (DATA_NOT_OBJECT, MISSING_ROLL_NO, NOT_ASSIGNED, build_marks_template, clean_record_data,
                         parse_marks_csv, preview_attainment, submit_marks)

R1_DATA = {"MST_Q1": "8", "MST_Q2_P1": "4", "MST_Q2_P2": "3"}


def _subject(seeded):
    return db.session.get(Subject, seeded["subject"])


def test_submission_stores_calculated_attainment(seeded, app_ctx):
    result = submit_marks(_subject(seeded), seeded["cc"], "MST", [{"roll_no": "R1", "data": R1_DATA}])

    assert result == {"saved": ["R1"], "skipped": [], "errors": []}
    mark = StudentMark.query.filter_by(roll_no="R1").one()
    assert mark.instructor_id == seeded["cc"]
    assert mark.data == R1_DATA
    assert mark.clo_marks == {"CLO1": 3.6, "CLO2": 0.9}
    assert mark.clo_totals == {"CLO1": 4.5, "CLO2": 1.5}
    assert mark.total_marks == 15.0
    assert mark.total_marks_weighted == 4.5
    assert Log.query.filter_by(action="SUBMIT_MARKS").count() == 1


def test_students_of_other_instructors_are_skipped(seeded, app_ctx):
    records = [
        {"roll_no": "R2", "data": {"MST_Q1": "5"}},
        {"roll_no": "R4", "data": {"MST_Q1": "9"}},
        {"roll_no": " ", "data": {"MST_Q1": "1"}},
    ]
    result = submit_marks(_subject(seeded), seeded["cc"], "MST", records)

    assert result["saved"] == ["R2"]
    assert result["skipped"] == [
        {"roll_no": "R4", "reason": NOT_ASSIGNED},
        {"roll_no": "", "reason": MISSING_ROLL_NO},
    ]
    assert StudentMark.query.count() == 1


def test_record_with_non_object_data_is_skipped(seeded, app_ctx):
    records = [
        {"roll_no": "R1", "data": R1_DATA},
        {"roll_no": "R2", "data": ["8"]},
        {"roll_no": "R3", "data": "8"},
    ]
    result = submit_marks(_subject(seeded), seeded["cc"], "MST", records)

    assert result["saved"] == ["R1"]
    assert result["skipped"] == [
        {"roll_no": "R2", "reason": DATA_NOT_OBJECT},
        {"roll_no": "R3", "reason": DATA_NOT_OBJECT},
    ]
    assert result["errors"] == []
    assert StudentMark.query.count() == 1


def test_resubmission_updates_the_same_row(seeded, app_ctx):
    subject = _subject(seeded)
    submit_marks(subject, seeded["cc"], "MST", [{"roll_no": "R1", "data": R1_DATA}])
    submit_marks(subject, seeded["cc"], "MST", [{"roll_no": "R1", "data": dict(R1_DATA, MST_Q1="10")}])

    marks = StudentMark.query.filter_by(roll_no="R1").all()
    assert len(marks) == 1
    assert marks[0].data["MST_Q1"] == "10"
    assert marks[0].total_marks == 17.0


def test_identical_resubmission_changes_nothing_but_the_timestamp(seeded, app_ctx):
    subject = _subject(seeded)
    submit_marks(subject, seeded["cc"], "MST", [{"roll_no": "R1", "data": R1_DATA}])
    first = StudentMark.query.one().to_dict()
    submit_marks(subject, seeded["cc"], "MST", [{"roll_no": "R1", "data": R1_DATA}])
    second = StudentMark.query.one().to_dict()

    first.pop("updated_at")
    second.pop("updated_at")
    assert first == second


def test_preview_matches_what_is_stored(seeded, app_ctx):
    subject = _subject(seeded)
    records = [{"roll_no": "R3", "data": {"MST_Q1": "7.5", "MST_Q2_P1": "AB", "MST_Q2_P2": "2"}}]

    preview = preview_attainment(subject, seeded["cc"], "MST", records)
    assert StudentMark.query.count() == 0

    submit_marks(subject, seeded["cc"], "MST", records)
    stored = StudentMark.query.one()
    result = preview["results"][0]
    assert result["clo_marks"] == stored.clo_marks
    assert result["clo_totals"] == stored.clo_totals
    assert result["total_marks"] == stored.total_marks


def test_only_the_criterion_cells_are_stored(seeded, app_ctx):
    data = dict(R1_DATA, **{"Student Name": "Student 1", "EST_Q1": "30", "MST_Q1_Weightage": "2.4", "CLO1": "9"})
    submit_marks(_subject(seeded), seeded["cc"], "MST", [{"roll_no": "R1", "data": data}])

    assert StudentMark.query.one().data == dict(R1_DATA, **{"Student Name": "Student 1"})


def test_clean_record_data_stringifies_values():
    cleaned = clean_record_data({"MST_Q1": 8, "MST_Q2_P1": None, "EST_Q1": 3}, "MST")
    assert cleaned == {"MST_Q1": "8", "MST_Q2_P1": ""}


def test_unassigned_instructor_is_refused(seeded, app_ctx):
    with pytest.raises(AuthorizationError):
        submit_marks(_subject(seeded), seeded["outsider"], "MST", [{"roll_no": "R1", "data": R1_DATA}])


def test_unknown_criterion_is_refused(seeded, app_ctx):
    with pytest.raises(ConfigurationError) as exc:
        submit_marks(_subject(seeded), seeded["cc"], "EST", [{"roll_no": "R1", "data": {"EST_Q1": "4"}}])
    assert exc.value.message == "Evaluation criterion EST not found in schema"


def test_parse_marks_csv_handles_bom_and_blank_rows():
    text = "\ufeffRollNo,Student Name,MST_Q1,MST_Q2_P1\nR1,Student 1, 8 ,4\n,,,\nR2,Student 2,,5\n"
    assert parse_marks_csv(text) == [
        {"roll_no": "R1", "data": {"Student Name": "Student 1", "MST_Q1": "8", "MST_Q2_P1": "4"}},
        {"roll_no": "R2", "data": {"Student Name": "Student 2", "MST_Q1": "", "MST_Q2_P1": "5"}},
    ]


def test_parse_marks_csv_requires_roll_no_column():
    with pytest.raises(ConfigurationError):
        parse_marks_csv("Name,MST_Q1\nA,4\n")


def test_template_lists_assigned_students(seeded, app_ctx):
    headers, rows = build_marks_template(_subject(seeded), seeded["other"], "MST")

    assert headers == ["RollNo", "Student Name", "MST_Q1", "MST_Q2_P1", "MST_Q2_P2",
                       "MST_Q1_Weightage", "MST_Q2_P1_Weightage", "MST_Q2_P2_Weightage",
                       "TotalMarks", "TotalMarks_Weightage", "CLO1", "CLO2"]
    assert [row[:2] for row in rows] == [["R4", "Student 4"], ["R5", "Student 5"], ["R6", "Student 6"]]
    assert all(len(row) == len(headers) for row in rows)
