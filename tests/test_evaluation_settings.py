import copy

import pytest

from evaluation_settings import set_evaluation_settings, serialize_evaluation_settings
from exceptions import AuthorizationError, ConfigurationError
from models import db, Log, Subject
from submissions import submit_marks
from conftest import MST_SETTINGS


def _subject(seeded):
    return db.session.get(Subject, seeded["subject"])


def test_serialized_settings_match_what_was_stored(seeded, app_ctx):
    settings = serialize_evaluation_settings(_subject(seeded))

    assert settings["subject_code"] == "CS101"
    assert settings["clos"] == MST_SETTINGS["clos"]
    assert settings["evaluation_schema"] == MST_SETTINGS["evaluation_schema"]
    assert settings["clo_question_mappings"] == MST_SETTINGS["clo_question_mappings"]
    assert settings["warnings"] == []


def test_non_coordinator_is_refused(seeded, app_ctx):
    with pytest.raises(AuthorizationError) as exc:
        set_evaluation_settings(_subject(seeded), {"clos": []}, is_coordinator=False)
    assert exc.value.status_code == 403
    assert exc.value.message == "Forbidden: Only the CC can update settings"


def test_every_problem_is_reported_and_nothing_changes(seeded, app_ctx):
    bad = {
        "clos": [{"clo_number": "x", "clo_statement": ""}],
        "evaluation_schema": {
            "MST": {"total_marks": -5, "weightage": 150,
                    "questions": [{"question_no": 1.5, "max_marks": 10, "parts": []}]}
        },
    }
    with pytest.raises(ConfigurationError) as exc:
        set_evaluation_settings(_subject(seeded), bad, is_coordinator=True)

    errors = exc.value.errors
    assert exc.value.status_code == 400
    assert "CLO #1 clo_number must be a positive integer, got 'x'" in errors
    assert "CLO #1 clo_statement is required" in errors
    assert "MST total_marks must be a non-negative number, got -5" in errors
    assert "MST weightage must be between 0 and 100, got 150" in errors
    assert "MST question #1 question_no must be a positive integer, got 1.5" in errors

    assert serialize_evaluation_settings(_subject(seeded))["clos"] == MST_SETTINGS["clos"]


@pytest.mark.parametrize("settings, message", [
    ({"clos": [{"clo_number": 1, "clo_statement": "a"}, {"clo_number": 1, "clo_statement": "b"}]},
     "CLO1 is defined more than once"),
    ({"evaluation_schema": {"MST": {"total_marks": 10, "weightage": 10, "questions": [
        {"question_no": 1, "max_marks": 5}, {"question_no": 1, "max_marks": 5}]}}},
     "MST has more than one question 1"),
    ({"clo_question_mappings": [{"clo_number": 1, "mappings": [{"criteria": "MST", "question_no": 0}]}]},
     "Mapping #1 entry #1 question_no must be a positive integer, got 0"),
    ({"evaluation_schema": ["MST"]}, "evaluation_schema must be an object keyed by criterion name"),
    ({"evaluation_schema": {"MST": {"total_marks": "1e1000000", "weightage": 10, "questions": [
        {"question_no": 1, "max_marks": 5}]}}},
     "MST total_marks must be between 0 and 99999999.99, got '1e1000000'"),
])
def test_structural_validation(seeded, app_ctx, settings, message):
    with pytest.raises(ConfigurationError) as exc:
        set_evaluation_settings(_subject(seeded), settings, is_coordinator=True)
    assert message in exc.value.errors


def test_only_provided_fields_are_replaced(seeded, app_ctx):
    clos = [{"clo_number": 1, "clo_statement": "Recall definitions"},
            {"clo_number": 2, "clo_statement": "Apply methods"},
            {"clo_number": 3, "clo_statement": "Design solutions"}]
    updated = set_evaluation_settings(_subject(seeded), {"clos": clos}, is_coordinator=True)

    assert [c["clo_number"] for c in updated["clos"]] == [1, 2, 3]
    assert updated["evaluation_schema"] == MST_SETTINGS["evaluation_schema"]
    assert updated["clo_question_mappings"] == MST_SETTINGS["clo_question_mappings"]
    assert Log.query.filter_by(action="UPDATE_EVALUATION_SETTINGS").count() == 2


def test_duplicate_mapping_entries_are_stored_once(seeded, app_ctx):
    mappings = [{"clo_number": 1, "mappings": [{"criteria": "MST", "question_no": 1, "part_no": None},
                                               {"criteria": "MST", "question_no": 1, "part_no": None}]}]
    updated = set_evaluation_settings(_subject(seeded), {"clo_question_mappings": mappings}, is_coordinator=True)
    assert updated["clo_question_mappings"] == [
        {"clo_number": 1, "mappings": [{"criteria": "MST", "question_no": 1, "part_no": None}]}
    ]


def test_consistency_problems_are_warnings_only(seeded, app_ctx):
    settings = copy.deepcopy(MST_SETTINGS)
    settings["evaluation_schema"]["MST"]["total_marks"] = 25
    settings["evaluation_schema"]["MST"]["questions"][1]["parts"][1]["max_marks"] = 4
    settings["clo_question_mappings"].append(
        {"clo_number": 7, "mappings": [{"criteria": "EST", "question_no": 1, "part_no": None}]})

    updated = set_evaluation_settings(_subject(seeded), settings, is_coordinator=True)
    warnings = updated["warnings"]

    assert "MST: questions add up to 20 but total marks is 25" in warnings
    assert "MST Q2: parts add up to 9 but the question is worth 10" in warnings
    assert "EST_Q1 is mapped to undefined CLO7" in warnings
    assert "CLO7 is mapped to EST_Q1, which is not in the schema" in warnings


def _submit_one(seeded):
    subject = _subject(seeded)
    submit_marks(subject, seeded["cc"], "MST",
                 [{"roll_no": "R1", "data": {"MST_Q1": "8", "MST_Q2_P1": "4", "MST_Q2_P2": "3"}}])
    return subject


def test_criterion_with_marks_cannot_change(seeded, app_ctx):
    subject = _submit_one(seeded)
    settings = copy.deepcopy(MST_SETTINGS)
    settings["evaluation_schema"]["MST"]["questions"][0]["max_marks"] = 12

    with pytest.raises(ConfigurationError) as exc:
        set_evaluation_settings(subject, settings, is_coordinator=True)
    assert exc.value.errors == ["Criterion MST has submitted marks and its definition cannot change"]

    with pytest.raises(ConfigurationError) as exc:
        set_evaluation_settings(subject, {"evaluation_schema": {}}, is_coordinator=True)
    assert exc.value.errors == ["Criterion MST has submitted marks and cannot be removed"]


def test_new_criterion_can_be_added_next_to_a_locked_one(seeded, app_ctx):
    subject = _submit_one(seeded)
    settings = copy.deepcopy(MST_SETTINGS)
    settings["evaluation_schema"]["EST"] = {
        "total_marks": 40, "weightage": 70,
        "questions": [{"question_no": 1, "max_marks": 40, "parts": []}]
    }

    updated = set_evaluation_settings(subject, settings, is_coordinator=True)
    assert list(updated["evaluation_schema"]) == ["MST", "EST"]


def test_locked_criterion_can_change_when_edits_are_allowed(app, seeded, app_ctx):
    subject = _submit_one(seeded)
    app.config["ALLOW_SCHEMA_EDITS_WITH_MARKS"] = True
    settings = copy.deepcopy(MST_SETTINGS)
    settings["evaluation_schema"]["MST"]["weightage"] = 40

    updated = set_evaluation_settings(subject, settings, is_coordinator=True)
    assert updated["evaluation_schema"]["MST"]["weightage"] == 40
