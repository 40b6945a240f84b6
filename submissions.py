"""
Submission of instructor marks.

Marks arrive as records ``{roll_no, data}`` where ``data`` maps column keys
such as ``MST_Q1`` or ``MST_Q2_P1`` to raw values. Records for students that
are not assigned to the submitting instructor are dropped and reported, the
rest are run through the attainment calculator and upserted one by one.
"""

import csv
import io
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from aggregation import export_headers
from attainment import ROLL_NO_COLUMN, STUDENT_NAME_COLUMN, compute_attainment, parse_column_key
from evaluation_settings import serialize_evaluation_settings
from exceptions import AuthorizationError, ConfigurationError
from models import db, Log, Student, StudentMark

NOT_ASSIGNED = 'not assigned to this instructor'
MISSING_ROLL_NO = 'missing roll number'
DATA_NOT_OBJECT = 'data must be an object'


def _assignment_for(subject, instructor_id):
    assignment = subject.get_instructor_assignment(instructor_id)
    if assignment is None:
        raise AuthorizationError("Not authorized to submit marks for this subject")
    return assignment


def _criterion_for(subject, eval_criteria):
    criterion = subject.get_criterion(eval_criteria) if eval_criteria else None
    if criterion is None:
        raise ConfigurationError(f"Evaluation criterion {eval_criteria} not found in schema")
    return criterion


def _roll_no(record):
    if not isinstance(record, dict):
        return ''
    value = record.get('roll_no')
    return str(value).strip() if value is not None else ''


def clean_record_data(data, eval_criteria):
    """
    Keep the unit cells of one criterion (plus the student name) as strings.

    Cells of other criteria and derived columns are not stored; they are
    recomputed or re-rendered from the schema.
    """
    cleaned = {}
    for header, value in (data or {}).items():
        if header == STUDENT_NAME_COLUMN:
            cleaned[header] = '' if value is None else str(value).strip()
            continue
        key = parse_column_key(header)
        if key is None or key.criteria != eval_criteria:
            continue
        cleaned[header.strip()] = '' if value is None else str(value).strip()
    return cleaned


def filter_assigned_records(assignment, records):
    """Split records into those the instructor may mark and the skipped ones"""
    allowed = assignment.roll_nos
    kept = []
    skipped = []
    for record in records or []:
        roll_no = _roll_no(record)
        if not roll_no:
            skipped.append({'roll_no': roll_no, 'reason': MISSING_ROLL_NO})
        elif roll_no not in allowed:
            skipped.append({'roll_no': roll_no, 'reason': NOT_ASSIGNED})
        elif record.get('data') is not None and not isinstance(record['data'], dict):
            skipped.append({'roll_no': roll_no, 'reason': DATA_NOT_OBJECT})
        else:
            kept.append((roll_no, record.get('data') or {}))
    return kept, skipped


def _attainment_result(subject, criterion, eval_criteria, roll_no, data):
    result = compute_attainment(criterion, subject.clo_mappings, subject.clos, eval_criteria, data)
    return {
        'roll_no': roll_no,
        'data': data,
        'clo_marks': result['clo_marks'],
        'clo_totals': result['clo_totals'],
        'total_marks': result['total_marks_achieved'],
        'total_marks_weighted': result['total_marks_weighted']
    }


def preview_attainment(subject, instructor_id, eval_criteria, records):
    """
    Compute what a submission would store, without persisting anything.

    Returns ``{results: [...], skipped: [...]}``.
    """
    assignment = _assignment_for(subject, instructor_id)
    criterion = _criterion_for(subject, eval_criteria)
    kept, skipped = filter_assigned_records(assignment, records)

    results = []
    for roll_no, data in kept:
        cleaned = clean_record_data(data, eval_criteria)
        results.append(_attainment_result(subject, criterion, eval_criteria, roll_no, cleaned))
    return {'results': results, 'skipped': skipped}


def _upsert_mark(subject, instructor_id, eval_criteria, result):
    mark = StudentMark.query.filter_by(subject_id=subject.id, roll_no=result['roll_no'],
                                       instructor_id=instructor_id, eval_criteria=eval_criteria).first()
    if mark is None:
        mark = StudentMark(subject_id=subject.id, roll_no=result['roll_no'], instructor_id=instructor_id,
                           eval_criteria=eval_criteria)
        db.session.add(mark)
    mark.data = result['data']
    mark.clo_marks = result['clo_marks']
    mark.clo_totals = result['clo_totals']
    mark.total_marks = result['total_marks']
    mark.total_marks_weighted = result['total_marks_weighted']
    mark.updated_at = datetime.now()
    return mark


def submit_marks(subject, instructor_id, eval_criteria, records):
    """
    Calculate and upsert marks for the instructor's assigned students.

    Every record is committed on its own: a failure on one record is reported
    in ``errors`` and never undoes the records saved before it.

    Returns ``{saved: [roll_no], skipped: [{roll_no, reason}], errors: [{row, roll_no, message}]}``.
    """
    preview = preview_attainment(subject, instructor_id, eval_criteria, records)

    saved = []
    errors = []
    for row, result in enumerate(preview['results'], start=1):
        try:
            _upsert_mark(subject, instructor_id, eval_criteria, result)
            db.session.commit()
            saved.append(result['roll_no'])
        except SQLAlchemyError as e:
            db.session.rollback()
            logging.error(f"Error saving {eval_criteria} marks for {result['roll_no']}: {e}")
            errors.append({'row': row, 'roll_no': result['roll_no'], 'message': str(e)})

    for skipped in preview['skipped']:
        logging.info(f"Skipped {eval_criteria} marks for '{skipped['roll_no']}': {skipped['reason']}")

    if saved:
        try:
            log = Log(action="SUBMIT_MARKS",
                      description=f"Instructor {instructor_id} submitted {eval_criteria} marks for "
                                  f"{len(saved)} student(s) in subject: {subject.subject_code}")
            db.session.add(log)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logging.error(f"Error writing submission log entry: {e}")

    logging.info(f"Marks submission for {subject.subject_code}/{eval_criteria}: saved {len(saved)}, "
                 f"skipped {len(preview['skipped'])}, errors {len(errors)}")
    return {'saved': saved, 'skipped': preview['skipped'], 'errors': errors}


def parse_marks_csv(text):
    """
    Read an uploaded marks sheet into submission records.

    The ``RollNo`` column becomes ``roll_no``; every other non-empty column is
    passed on in ``data``. Rows without a roll number are dropped.
    """
    if text.startswith('\ufeff'):
        text = text[1:]
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames or ROLL_NO_COLUMN not in [h.strip() for h in reader.fieldnames if h]:
        raise ConfigurationError(f"CSV must have a {ROLL_NO_COLUMN} column")

    records = []
    for row in reader:
        row = {(k or '').strip(): v for k, v in row.items() if k}
        roll_no = (row.pop(ROLL_NO_COLUMN, '') or '').strip()
        if not roll_no:
            continue
        data = {k: (v or '').strip() for k, v in row.items() if k}
        records.append({'roll_no': roll_no, 'data': data})
    return records


def build_marks_template(subject, instructor_id, eval_criteria):
    """Header row plus one blank row per student assigned to the instructor"""
    assignment = _assignment_for(subject, instructor_id)
    criterion = _criterion_for(subject, eval_criteria)
    headers = export_headers(subject, criterion)

    roll_nos = sorted(assignment.roll_nos)
    names = {s.roll_no: s.name for s in Student.query.filter(Student.roll_no.in_(roll_nos)).all()} if roll_nos else {}
    rows = [[roll_no, names.get(roll_no) or 'Unknown'] + [''] * (len(headers) - 2) for roll_no in roll_nos]
    return headers, rows


def instructor_subject_data(subject, instructor_id):
    """Subject settings together with the instructor's own submitted marks"""
    _assignment_for(subject, instructor_id)
    marks = StudentMark.query.filter_by(subject_id=subject.id, instructor_id=instructor_id)\
        .order_by(StudentMark.eval_criteria, StudentMark.roll_no).all()
    return {
        'subject': subject.to_dict(),
        'settings': serialize_evaluation_settings(subject),
        'marks': [m.to_dict() for m in marks]
    }
