"""
CLO attainment calculation.

Turns the raw per-question marks of one student into scaled CLO marks and
CLO totals for one evaluation criterion. Every unit (a partless question or a
single part) contributes ``raw * weightage / 100`` to each CLO that claims it
and ``max_marks * weightage / 100`` to that CLO's total. A unit claimed by two
CLOs counts in full for both.

The functions here never touch the database: the criterion, questions, parts,
CLOs and mapping rows are read through their attributes only, so ORM rows and
plain objects work alike.
"""

import logging
import re
from collections import namedtuple, OrderedDict
from decimal import Decimal, InvalidOperation

HUNDRED = Decimal('100')
ZERO = Decimal('0')
# Marks outside 1e-15..1e15 in magnitude count as blank
MAX_MARK_EXPONENT = 15

# Structured form of "{criteria}_Q{n}" / "{criteria}_Q{n}_P{m}"; part_no is None for a whole question
ColumnKey = namedtuple('ColumnKey', ['criteria', 'question_no', 'part_no'])

_COLUMN_KEY_PATTERN = re.compile(r'^(?P<criteria>.+)_Q(?P<question>[1-9]\d*)(?:_P(?P<part>[1-9]\d*))?$')
_LEADING_NUMBER_PATTERN = re.compile(r'^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?')

WEIGHTAGE_SUFFIX = '_Weightage'
TOTAL_MARKS_COLUMN = 'TotalMarks'
TOTAL_MARKS_WEIGHTAGE_COLUMN = 'TotalMarks_Weightage'
ROLL_NO_COLUMN = 'RollNo'
STUDENT_NAME_COLUMN = 'Student Name'


def column_key_header(key):
    """Serialize a ColumnKey back to its wire form"""
    if key.part_no is None:
        return f"{key.criteria}_Q{key.question_no}"
    return f"{key.criteria}_Q{key.question_no}_P{key.part_no}"


def parse_column_key(header):
    """Parse a unit column header, returning None for any other column"""
    if not isinstance(header, str):
        return None
    match = _COLUMN_KEY_PATTERN.match(header.strip())
    if not match:
        return None
    part = match.group('part')
    return ColumnKey(match.group('criteria'), int(match.group('question')), int(part) if part else None)


def clo_key(clo_number):
    return f"CLO{clo_number}"


def to_decimal(value, default=ZERO):
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def parse_mark(value):
    """
    Read a raw mark the way a lenient leading-number parse does.

    "8", " 7.5 " and "9abc" give 8, 7.5 and 9. Empty strings, None, "AB",
    "NaN" and anything else without a leading number give 0. So does a
    number too large or too small to be a mark, such as "1e1000000".
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, (int, float, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        return ZERO
    match = _LEADING_NUMBER_PATTERN.match(value)
    if not match:
        return ZERO
    try:
        number = Decimal(match.group(0).strip())
    except InvalidOperation:
        return ZERO
    if not number.is_finite() or number.is_zero():
        return ZERO
    if not -MAX_MARK_EXPONENT <= number.adjusted() <= MAX_MARK_EXPONENT:
        return ZERO
    return number


def weightage_fraction(criterion):
    """Criterion weightage as a fraction; a missing weightage counts as 100%"""
    weightage = getattr(criterion, 'weightage', None)
    if weightage is None:
        return Decimal('1')
    return to_decimal(weightage, HUNDRED) / HUNDRED


def iter_units(criterion, eval_criteria_key):
    """
    Yield (ColumnKey, max_marks) for every markable unit of a criterion, in schema order.

    A question with parts yields one unit per part and never itself.
    """
    for question in criterion.questions or []:
        parts = getattr(question, 'parts', None) or []
        if parts:
            for part in parts:
                yield ColumnKey(eval_criteria_key, question.number, part.number), to_decimal(part.max_marks)
        else:
            yield ColumnKey(eval_criteria_key, question.number, None), to_decimal(question.max_marks)


def unit_column_keys(criterion, eval_criteria_key):
    """Unit column headers of a criterion in schema order"""
    return [column_key_header(key) for key, _ in iter_units(criterion, eval_criteria_key)]


def build_mapping_index(clo_mappings):
    """
    Index mapping rows by the unit they claim.

    Returns {ColumnKey: [clo_number, ...]}. A CLO claiming the same unit twice
    is listed once.
    """
    index = {}
    for mapping in clo_mappings or []:
        part_no = mapping.part_no
        key = ColumnKey(mapping.criteria, int(mapping.question_no), int(part_no) if part_no is not None else None)
        claiming = index.setdefault(key, [])
        if mapping.clo_number not in claiming:
            claiming.append(mapping.clo_number)
    return index


def index_raw_marks(raw_data):
    """Convert a {header: value} mapping into {ColumnKey: value}, dropping non-unit columns"""
    indexed = {}
    for header, value in (raw_data or {}).items():
        key = header if isinstance(header, ColumnKey) else parse_column_key(header)
        if key is not None:
            indexed[key] = value
    return indexed


def compute_attainment(criterion, clo_mappings, clos, eval_criteria_key, raw_data):
    """
    Compute one student's CLO attainment for one evaluation criterion.

    Parameters:
    - criterion: object with ``weightage`` and ordered ``questions`` (each with
      ``number``, ``max_marks`` and ordered ``parts`` carrying ``number`` and ``max_marks``)
    - clo_mappings: rows with ``clo_number``, ``criteria``, ``question_no`` and ``part_no``
    - clos: the subject's CLOs (objects with ``number``); exactly these appear in the result
    - eval_criteria_key: the criterion name used in column keys, e.g. "MST"
    - raw_data: {column header: raw value}; missing or unparseable values count as 0

    Returns a dict with ``clo_marks``, ``clo_totals``, ``total_marks_achieved``
    and ``total_marks_weighted``. Equal inputs always give equal outputs.
    """
    fraction = weightage_fraction(criterion)
    mapping_index = build_mapping_index(clo_mappings)
    raw_marks = index_raw_marks(raw_data)
    defined = [clo.number for clo in clos or []]
    defined_set = set(defined)

    clo_marks = {}
    clo_totals = {}
    total_achieved = ZERO

    for key, max_marks in iter_units(criterion, eval_criteria_key):
        raw_mark = parse_mark(raw_marks.get(key))
        total_achieved += raw_mark
        scaled_mark = raw_mark * fraction
        scaled_max = max_marks * fraction

        for clo_number in mapping_index.get(key, []):
            if clo_number not in defined_set:
                logging.debug(f"Ignoring mapping of {column_key_header(key)} to undefined CLO{clo_number}")
                continue
            clo_marks[clo_number] = clo_marks.get(clo_number, ZERO) + scaled_mark
            clo_totals[clo_number] = clo_totals.get(clo_number, ZERO) + scaled_max

    # Every defined CLO is reported, unclaimed ones with zero
    result_marks = OrderedDict()
    result_totals = OrderedDict()
    for clo_number in defined:
        result_marks[clo_key(clo_number)] = float(clo_marks.get(clo_number, ZERO))
        result_totals[clo_key(clo_number)] = float(clo_totals.get(clo_number, ZERO))

    return {
        'clo_marks': dict(result_marks),
        'clo_totals': dict(result_totals),
        'total_marks_achieved': float(total_achieved),
        'total_marks_weighted': float(total_achieved * fraction)
    }


def weighted_value(raw_value, criterion):
    """Raw cell scaled by the criterion weightage, or '' when the cell is empty"""
    if raw_value is None or (isinstance(raw_value, str) and raw_value.strip() == ''):
        return ''
    return float(parse_mark(raw_value) * weightage_fraction(criterion))
