from decimal import Decimal
from types import SimpleNamespace

import pytest

from attainment import (ColumnKey, compute_attainment, parse_column_key, column_key_header, parse_mark,
                        unit_column_keys, weighted_value)


def criterion(weightage, questions):
    return SimpleNamespace(weightage=weightage, questions=questions)


def question(number, max_marks, parts=()):
    return SimpleNamespace(number=number, max_marks=max_marks,
                           parts=[SimpleNamespace(number=n, max_marks=m) for n, m in parts])


def mapping(clo_number, criteria, question_no, part_no=None):
    return SimpleNamespace(clo_number=clo_number, criteria=criteria, question_no=question_no, part_no=part_no)


def clos(*numbers):
    return [SimpleNamespace(number=n) for n in numbers]


def test_scenario_a_single_question_scaled_by_weightage():
    schema = criterion(30, [question(1, 20)])
    result = compute_attainment(schema, [mapping(1, "MST", 1)], clos(1), "MST", {"MST_Q1": "15"})

    assert result["clo_marks"] == {"CLO1": 4.5}
    assert result["clo_totals"] == {"CLO1": 6.0}
    assert result["total_marks_achieved"] == 15.0
    assert result["total_marks_weighted"] == 4.5


def test_scenario_b_parts_feed_separate_clos():
    schema = criterion(100, [question(1, 10, parts=[(1, 5), (2, 5)])])
    mappings = [mapping(1, "MST", 1, 1), mapping(2, "MST", 1, 2)]
    result = compute_attainment(schema, mappings, clos(1, 2), "MST", {"MST_Q1_P1": "5", "MST_Q1_P2": "3"})

    assert result["clo_marks"] == {"CLO1": 5.0, "CLO2": 3.0}
    assert result["clo_totals"] == {"CLO1": 5.0, "CLO2": 5.0}
    assert result["total_marks_achieved"] == 8.0


def test_scenario_c_missing_raw_data_keeps_totals():
    schema = criterion(50, [question(1, 10), question(2, 6)])
    mappings = [mapping(1, "EST", 1), mapping(2, "EST", 2)]
    result = compute_attainment(schema, mappings, clos(1, 2), "EST", {"EST_Q1": "8"})

    assert result["clo_marks"] == {"CLO1": 4.0, "CLO2": 0.0}
    assert result["clo_totals"] == {"CLO1": 5.0, "CLO2": 3.0}
    assert result["total_marks_achieved"] == 8.0


def test_same_inputs_give_identical_output():
    schema = criterion(33.33, [question(1, 7, parts=[(1, 3.5), (2, 3.5)]), question(2, 9)])
    mappings = [mapping(1, "MST", 1, 1), mapping(1, "MST", 2), mapping(2, "MST", 1, 2)]
    raw = {"MST_Q1_P1": "2.75", "MST_Q1_P2": "1.1", "MST_Q2": "8.2"}

    first = compute_attainment(schema, mappings, clos(1, 2), "MST", raw)
    second = compute_attainment(schema, mappings, clos(1, 2), "MST", dict(raw))
    assert repr(first) == repr(second)


def test_output_covers_exactly_the_defined_clos():
    schema = criterion(100, [question(1, 10)])
    # CLO9 is mapped but not defined, CLO3 is defined but unmapped
    mappings = [mapping(1, "MST", 1), mapping(9, "MST", 1)]
    result = compute_attainment(schema, mappings, clos(1, 2, 3), "MST", {"MST_Q1": "4"})

    assert list(result["clo_marks"]) == ["CLO1", "CLO2", "CLO3"]
    assert list(result["clo_totals"]) == ["CLO1", "CLO2", "CLO3"]
    assert result["clo_marks"]["CLO3"] == 0.0
    assert result["clo_totals"]["CLO3"] == 0.0


def test_no_clos_gives_empty_maps():
    result = compute_attainment(criterion(100, [question(1, 10)]), [], [], "MST", {"MST_Q1": "4"})
    assert result["clo_marks"] == {}
    assert result["clo_totals"] == {}
    assert result["total_marks_achieved"] == 4.0


@pytest.mark.parametrize("raw", [{}, {"MST_Q1": ""}, {"MST_Q2_P1": "absent"}, {"other": "9"}])
def test_missing_or_unparseable_columns_count_as_zero(raw):
    schema = criterion(100, [question(1, 10), question(2, 10, parts=[(1, 5), (2, 5)])])
    mappings = [mapping(1, "MST", 1), mapping(1, "MST", 2, 1), mapping(2, "MST", 2, 2)]
    result = compute_attainment(schema, mappings, clos(1, 2), "MST", raw)

    assert result["total_marks_achieved"] == 0.0
    assert result["clo_marks"] == {"CLO1": 0.0, "CLO2": 0.0}
    assert result["clo_totals"] == {"CLO1": 15.0, "CLO2": 5.0}


def test_question_claimed_by_two_clos_counts_fully_for_both():
    schema = criterion(50, [question(1, 10)])
    mappings = [mapping(1, "MST", 1), mapping(2, "MST", 1)]
    result = compute_attainment(schema, mappings, clos(1, 2), "MST", {"MST_Q1": "8"})

    assert result["clo_marks"] == {"CLO1": 4.0, "CLO2": 4.0}
    assert result["clo_totals"] == {"CLO1": 5.0, "CLO2": 5.0}


def test_whole_question_mapping_never_matches_a_part():
    schema = criterion(100, [question(1, 10, parts=[(1, 5), (2, 5)])])
    # Question-level mapping on a parted question matches nothing
    result = compute_attainment(schema, [mapping(1, "MST", 1)], clos(1), "MST",
                                {"MST_Q1": "10", "MST_Q1_P1": "5", "MST_Q1_P2": "5"})
    assert result["clo_marks"] == {"CLO1": 0.0}
    assert result["clo_totals"] == {"CLO1": 0.0}
    assert result["total_marks_achieved"] == 10.0


def test_part_mapping_never_matches_a_whole_question():
    schema = criterion(100, [question(1, 10)])
    result = compute_attainment(schema, [mapping(1, "MST", 1, 1)], clos(1), "MST", {"MST_Q1": "7"})
    assert result["clo_marks"] == {"CLO1": 0.0}
    assert result["clo_totals"] == {"CLO1": 0.0}


def test_mapping_to_other_criterion_or_removed_question_is_ignored():
    schema = criterion(100, [question(1, 10)])
    mappings = [mapping(1, "EST", 1), mapping(1, "MST", 5)]
    result = compute_attainment(schema, mappings, clos(1), "MST", {"MST_Q1": "7", "MST_Q5": "3"})
    assert result["clo_marks"] == {"CLO1": 0.0}
    assert result["total_marks_achieved"] == 7.0


def test_duplicate_mapping_entries_count_once():
    schema = criterion(100, [question(1, 10)])
    mappings = [mapping(1, "MST", 1), mapping(1, "MST", 1)]
    result = compute_attainment(schema, mappings, clos(1), "MST", {"MST_Q1": "6"})
    assert result["clo_marks"] == {"CLO1": 6.0}
    assert result["clo_totals"] == {"CLO1": 10.0}


def test_missing_weightage_means_full_weight_and_zero_means_zero():
    full = compute_attainment(criterion(None, [question(1, 10)]), [mapping(1, "MST", 1)], clos(1), "MST",
                              {"MST_Q1": "6"})
    zero = compute_attainment(criterion(0, [question(1, 10)]), [mapping(1, "MST", 1)], clos(1), "MST",
                              {"MST_Q1": "6"})

    assert full["clo_marks"] == {"CLO1": 6.0}
    assert full["total_marks_weighted"] == 6.0
    assert zero["clo_marks"] == {"CLO1": 0.0}
    assert zero["clo_totals"] == {"CLO1": 0.0}
    assert zero["total_marks_achieved"] == 6.0
    assert zero["total_marks_weighted"] == 0.0


def test_negative_marks_pass_through():
    result = compute_attainment(criterion(100, [question(1, 10)]), [mapping(1, "MST", 1)], clos(1), "MST",
                                {"MST_Q1": "-2"})
    assert result["clo_marks"] == {"CLO1": -2.0}


def test_decimal_arithmetic_avoids_float_drift():
    schema = criterion(10, [question(1, 1), question(2, 1), question(3, 1)])
    mappings = [mapping(1, "MST", n) for n in (1, 2, 3)]
    result = compute_attainment(schema, mappings, clos(1), "MST", {"MST_Q1": "0.1", "MST_Q2": "0.2", "MST_Q3": "0.3"})
    assert result["clo_marks"] == {"CLO1": 0.06}
    assert result["total_marks_achieved"] == 0.6


def test_out_of_range_mark_counts_as_zero():
    result = compute_attainment(criterion(30, [question(1, 10), question(2, 10)]),
                                [mapping(1, "MST", 1), mapping(1, "MST", 2)], clos(1), "MST",
                                {"MST_Q1": "1e1000000", "MST_Q2": "5"})
    assert result["clo_marks"] == {"CLO1": 1.5}
    assert result["total_marks_achieved"] == 5.0
    assert weighted_value("1e1000000", criterion(30, [])) == 0.0


@pytest.mark.parametrize("value, expected", [
    ("8", Decimal("8")),
    (" 7.5 ", Decimal("7.5")),
    ("9abc", Decimal("9")),
    (".5", Decimal("0.5")),
    (3, Decimal("3")),
    ("", Decimal("0")),
    ("AB", Decimal("0")),
    ("NaN", Decimal("0")),
    (None, Decimal("0")),
    (True, Decimal("0")),
    ("1e1000000", Decimal("0")),
    ("-1e1000000", Decimal("0")),
    ("1e-1000000", Decimal("0")),
    ("1e3", Decimal("1000")),
])
def test_parse_mark(value, expected):
    assert parse_mark(value) == expected


@pytest.mark.parametrize("header, expected", [
    ("MST_Q1", ColumnKey("MST", 1, None)),
    ("MST_Q12_P3", ColumnKey("MST", 12, 3)),
    ("Quiz_1_Q2", ColumnKey("Quiz_1", 2, None)),
    (" EST_Q4 ", ColumnKey("EST", 4, None)),
    ("MST_Q0", None),
    ("MST_Q1_Weightage", None),
    ("CLO1", None),
    ("RollNo", None),
])
def test_parse_column_key(header, expected):
    assert parse_column_key(header) == expected


def test_column_key_header_serializes_both_forms():
    assert column_key_header(ColumnKey("MST", 2, None)) == "MST_Q2"
    assert column_key_header(ColumnKey("MST", 2, 1)) == "MST_Q2_P1"


def test_unit_column_keys_follow_schema_order():
    schema = criterion(100, [question(2, 10), question(1, 10, parts=[(2, 5), (1, 5)])])
    assert unit_column_keys(schema, "MST") == ["MST_Q2", "MST_Q1_P2", "MST_Q1_P1"]


def test_weighted_value_keeps_empty_cells_empty():
    schema = criterion(30, [])
    assert weighted_value("", schema) == ""
    assert weighted_value(None, schema) == ""
    assert weighted_value("10", schema) == 3.0
    assert weighted_value("abs", schema) == 0.0
