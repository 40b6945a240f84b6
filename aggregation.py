"""
Aggregation of submitted marks across instructors.

All StudentMark rows of one (subject, criterion) are grouped by roll number.
A roll number marked by exactly one instructor resolves to that row; one
marked by several instructors is reported as a conflict instead of being
silently overwritten.
"""

import logging
from collections import namedtuple

from attainment import (ROLL_NO_COLUMN, STUDENT_NAME_COLUMN, TOTAL_MARKS_COLUMN, TOTAL_MARKS_WEIGHTAGE_COLUMN,
                        WEIGHTAGE_SUFFIX, clo_key, unit_column_keys, weighted_value)
from exceptions import ConfigurationError, NotFoundError
from models import Student, StudentMark

ResolvedRow = namedtuple('ResolvedRow', ['roll_no', 'mark'])
Conflict = namedtuple('Conflict', ['roll_no', 'instructor_ids'])


def reduce_by_roll_no(marks):
    """
    Group marks by roll number.

    Returns a list of ResolvedRow and Conflict values sorted by roll number.
    """
    grouped = {}
    for mark in marks:
        grouped.setdefault(mark.roll_no, []).append(mark)

    reduced = []
    for roll_no in sorted(grouped):
        group = grouped[roll_no]
        instructor_ids = sorted({m.instructor_id for m in group})
        if len(instructor_ids) > 1:
            reduced.append(Conflict(roll_no, instructor_ids))
        else:
            # One row per instructor is guaranteed by the unique key
            reduced.append(ResolvedRow(roll_no, group[0]))
    return reduced


def export_headers(subject, criterion):
    units = unit_column_keys(criterion, criterion.name)
    return ([ROLL_NO_COLUMN, STUDENT_NAME_COLUMN] + units + [f"{u}{WEIGHTAGE_SUFFIX}" for u in units] +
            [TOTAL_MARKS_COLUMN, TOTAL_MARKS_WEIGHTAGE_COLUMN] + [clo_key(clo.number) for clo in subject.clos])


def render_row(subject, criterion, mark, student_names=None):
    """
    Project a stored mark onto the export column set.

    Raw cells come from the stored data ('' when missing), weightage cells are
    rendered from them with the criterion's current weightage, totals and CLO
    marks are the values stored at submission (CLO marks default to 0).
    """
    data = mark.data or {}
    units = unit_column_keys(criterion, criterion.name)
    name = data.get(STUDENT_NAME_COLUMN) or (student_names or {}).get(mark.roll_no) or ''

    row = [mark.roll_no, name]
    raw_cells = []
    for unit in units:
        value = data.get(unit)
        raw_cells.append('' if value is None else value)
    row.extend(raw_cells)
    row.extend(weighted_value(value, criterion) for value in raw_cells)
    row.append(mark.total_marks if mark.total_marks is not None else '')
    row.append(mark.total_marks_weighted if mark.total_marks_weighted is not None else '')

    clo_marks = mark.clo_marks or {}
    row.extend(clo_marks.get(clo_key(clo.number), 0) for clo in subject.clos)
    return row


def _student_names(roll_nos):
    if not roll_nos:
        return {}
    students = Student.query.filter(Student.roll_no.in_(list(roll_nos))).all()
    return {s.roll_no: s.name for s in students}


def _criterion_for(subject, eval_criteria):
    criterion = subject.get_criterion(eval_criteria) if eval_criteria else None
    if criterion is None:
        raise ConfigurationError(f"Evaluation criterion {eval_criteria} not defined for this subject")
    return criterion


def aggregate(subject, eval_criteria):
    """
    Aggregate every instructor's marks for one criterion.

    Returns ``{headers, rows, conflicts}``; ``conflicts`` lists
    ``{roll_no, instructor_ids}`` for roll numbers that more than one
    instructor submitted, and those roll numbers have no row.
    """
    criterion = _criterion_for(subject, eval_criteria)
    marks = StudentMark.query.filter_by(subject_id=subject.id, eval_criteria=eval_criteria).all()
    if not marks:
        raise NotFoundError("No submissions found for this criterion")

    reduced = reduce_by_roll_no(marks)
    names = _student_names({m.roll_no for m in marks})

    rows = []
    conflicts = []
    for item in reduced:
        if isinstance(item, Conflict):
            conflicts.append({'roll_no': item.roll_no, 'instructor_ids': item.instructor_ids})
        else:
            rows.append(render_row(subject, criterion, item.mark, names))

    if conflicts:
        logging.warning(f"Aggregation of {subject.subject_code}/{eval_criteria} found "
                        f"{len(conflicts)} roll number(s) marked by more than one instructor")
    return {'headers': export_headers(subject, criterion), 'rows': rows, 'conflicts': conflicts}


def instructor_submissions(subject, eval_criteria):
    """Submission status of every instructor assigned to the subject"""
    submissions = []
    for assignment in subject.instructors:
        query = StudentMark.query.filter_by(subject_id=subject.id, instructor_id=assignment.instructor_id)
        if eval_criteria:
            query = query.filter_by(eval_criteria=eval_criteria)
        marks = query.all()
        last_updated = max((m.updated_at for m in marks if m.updated_at), default=None)
        submissions.append({
            'instructor_id': assignment.instructor_id,
            'instructor_name': assignment.instructor.name if assignment.instructor else None,
            'assigned_students': len(assignment.students),
            'has_submitted': bool(marks),
            'row_count': len(marks),
            'last_updated': last_updated.isoformat() if last_updated else None
        })
    return submissions


def instructor_submission(subject, instructor_id, eval_criteria):
    """One instructor's rows for a criterion, in the export column set"""
    criterion = _criterion_for(subject, eval_criteria)
    marks = StudentMark.query.filter_by(subject_id=subject.id, instructor_id=instructor_id,
                                        eval_criteria=eval_criteria).order_by(StudentMark.roll_no).all()
    if not marks:
        raise NotFoundError("No submission found for this instructor and criterion")

    names = _student_names({m.roll_no for m in marks})
    return {
        'headers': export_headers(subject, criterion),
        'rows': [render_row(subject, criterion, mark, names) for mark in marks]
    }
