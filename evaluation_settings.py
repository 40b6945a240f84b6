"""
Evaluation settings of a subject: criteria, questions, parts, CLOs and CLO mappings.

Settings arrive as plain JSON-like data, are validated here in one pass (every
problem is collected before anything is refused) and replace the stored rows
field by field. Only the subject's course coordinator may change them.
"""

import logging
from decimal import Decimal, InvalidOperation

from flask import current_app

from attainment import column_key_header, iter_units, to_decimal
from exceptions import AuthorizationError, ConfigurationError
from models import (db, CLOMapping, CourseLearningOutcome, EvaluationCriterion, Log, Question,
                    QuestionPart, StudentMark)

SETTINGS_FIELDS = ('clos', 'evaluation_schema', 'clo_question_mappings')
# Largest value the Numeric(10, 2) marks columns hold
MAX_MARKS = Decimal('99999999.99')


def _number(value):
    """Render a Decimal as int when integral, float otherwise"""
    value = to_decimal(value)
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _positive_int(value, label, errors):
    if isinstance(value, bool) or value is None:
        errors.append(f"{label} must be a positive integer")
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        errors.append(f"{label} must be a positive integer, got {value!r}")
        return None
    if not number.is_finite() or number != number.to_integral_value():
        errors.append(f"{label} must be a positive integer, got {value!r}")
        return None
    if number < 1:
        errors.append(f"{label} must be a positive integer, got {value!r}")
        return None
    return int(number)


def _non_negative(value, label, errors, maximum=None):
    if isinstance(value, bool) or value is None:
        errors.append(f"{label} is required")
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        errors.append(f"{label} must be a number, got {value!r}")
        return None
    if not number.is_finite() or number < 0:
        errors.append(f"{label} must be a non-negative number, got {value!r}")
        return None
    if maximum is not None and number > maximum:
        errors.append(f"{label} must be between 0 and {maximum}, got {value!r}")
        return None
    return number


def validate_clos(raw_clos, errors):
    """Validate a CLO list, returning [(number, statement)]"""
    if not isinstance(raw_clos, list):
        errors.append("clos must be a list")
        return []
    clos = []
    seen = set()
    for index, raw in enumerate(raw_clos, start=1):
        if not isinstance(raw, dict):
            errors.append(f"CLO #{index} must be an object")
            continue
        number = _positive_int(raw.get('clo_number'), f"CLO #{index} clo_number", errors)
        statement = raw.get('clo_statement')
        statement = statement.strip() if isinstance(statement, str) else ''
        if not statement:
            errors.append(f"CLO #{index} clo_statement is required")
        if number is None:
            continue
        if number in seen:
            errors.append(f"CLO{number} is defined more than once")
            continue
        seen.add(number)
        if statement:
            clos.append((number, statement))
    return clos


def _validate_parts(raw_parts, label, errors):
    if raw_parts is None:
        return []
    if not isinstance(raw_parts, list):
        errors.append(f"{label} parts must be a list")
        return []
    parts = []
    seen = set()
    for index, raw in enumerate(raw_parts, start=1):
        if not isinstance(raw, dict):
            errors.append(f"{label} part #{index} must be an object")
            continue
        number = _positive_int(raw.get('part_no'), f"{label} part #{index} part_no", errors)
        max_marks = _non_negative(raw.get('max_marks'), f"{label} part #{index} max_marks", errors,
                                  maximum=MAX_MARKS)
        if number is not None and number in seen:
            errors.append(f"{label} has more than one part {number}")
            continue
        if number is not None:
            seen.add(number)
        if number is not None and max_marks is not None:
            parts.append({'part_no': number, 'max_marks': max_marks})
    return parts


def validate_evaluation_schema(raw_schema, errors):
    """
    Validate an evaluation schema mapping criterion names to definitions.

    Returns an ordered list of criterion dicts with Decimal marks.
    """
    if not isinstance(raw_schema, dict):
        errors.append("evaluation_schema must be an object keyed by criterion name")
        return []
    criteria = []
    for raw_name, raw in raw_schema.items():
        name = raw_name.strip() if isinstance(raw_name, str) else ''
        if not name:
            errors.append("Criterion names must be non-empty strings")
            continue
        if not isinstance(raw, dict):
            errors.append(f"Criterion {name} must be an object")
            continue
        total_marks = _non_negative(raw.get('total_marks'), f"{name} total_marks", errors, maximum=MAX_MARKS)
        weightage = _non_negative(raw.get('weightage'), f"{name} weightage", errors, maximum=Decimal('100'))

        raw_questions = raw.get('questions') or []
        if not isinstance(raw_questions, list):
            errors.append(f"{name} questions must be a list")
            raw_questions = []
        questions = []
        seen = set()
        for index, raw_question in enumerate(raw_questions, start=1):
            if not isinstance(raw_question, dict):
                errors.append(f"{name} question #{index} must be an object")
                continue
            number = _positive_int(raw_question.get('question_no'), f"{name} question #{index} question_no", errors)
            max_marks = _non_negative(raw_question.get('max_marks'), f"{name} question #{index} max_marks",
                                      errors, maximum=MAX_MARKS)
            label = f"{name} Q{number}" if number is not None else f"{name} question #{index}"
            parts = _validate_parts(raw_question.get('parts'), label, errors)
            if number is not None and number in seen:
                errors.append(f"{name} has more than one question {number}")
                continue
            if number is not None:
                seen.add(number)
            if number is not None and max_marks is not None:
                questions.append({'question_no': number, 'max_marks': max_marks, 'parts': parts})

        if total_marks is not None and weightage is not None:
            criteria.append({'name': name, 'total_marks': total_marks, 'weightage': weightage,
                             'questions': questions})
    return criteria


def validate_clo_mappings(raw_mappings, errors):
    """Validate CLO mappings, returning de-duplicated (clo_number, criteria, question_no, part_no) tuples"""
    if not isinstance(raw_mappings, list):
        errors.append("clo_question_mappings must be a list")
        return []
    entries = []
    seen = set()
    for index, raw in enumerate(raw_mappings, start=1):
        if not isinstance(raw, dict):
            errors.append(f"Mapping #{index} must be an object")
            continue
        clo_number = _positive_int(raw.get('clo_number'), f"Mapping #{index} clo_number", errors)
        raw_entries = raw.get('mappings') or []
        if not isinstance(raw_entries, list):
            errors.append(f"Mapping #{index} mappings must be a list")
            continue
        for entry_index, entry in enumerate(raw_entries, start=1):
            label = f"Mapping #{index} entry #{entry_index}"
            if not isinstance(entry, dict):
                errors.append(f"{label} must be an object")
                continue
            criteria = entry.get('criteria')
            criteria = criteria.strip() if isinstance(criteria, str) else ''
            if not criteria:
                errors.append(f"{label} criteria is required")
            question_no = _positive_int(entry.get('question_no'), f"{label} question_no", errors)
            part_no = entry.get('part_no')
            if part_no is not None:
                part_no = _positive_int(part_no, f"{label} part_no", errors)
                if part_no is None:
                    continue
            if clo_number is None or question_no is None or not criteria:
                continue
            key = (clo_number, criteria, question_no, part_no)
            if key not in seen:
                seen.add(key)
                entries.append(key)
    return entries


def _criterion_signature(name, total_marks, weightage, questions):
    """Comparable form of a criterion definition"""
    return (
        name,
        to_decimal(total_marks),
        to_decimal(weightage),
        tuple(
            (q['question_no'], to_decimal(q['max_marks']),
             tuple((p['part_no'], to_decimal(p['max_marks'])) for p in q['parts']))
            for q in questions
        )
    )


def _stored_signature(criterion):
    questions = [
        {
            'question_no': q.number,
            'max_marks': q.max_marks,
            'parts': [{'part_no': p.number, 'max_marks': p.max_marks} for p in q.parts]
        }
        for q in criterion.questions
    ]
    return _criterion_signature(criterion.name, criterion.total_marks, criterion.weightage, questions)


def criteria_with_marks(subject):
    rows = db.session.query(StudentMark.eval_criteria).filter_by(subject_id=subject.id).distinct().all()
    return {row[0] for row in rows}


def _locked_criteria_errors(subject, new_criteria):
    """Structural edits of criteria that already have submitted marks"""
    locked = criteria_with_marks(subject)
    if not locked:
        return []
    new_by_name = {c['name']: c for c in new_criteria}
    errors = []
    for name in sorted(locked):
        stored = subject.get_criterion(name)
        proposed = new_by_name.get(name)
        if stored is None:
            continue
        if proposed is None:
            errors.append(f"Criterion {name} has submitted marks and cannot be removed")
        elif _stored_signature(stored) != _criterion_signature(
                proposed['name'], proposed['total_marks'], proposed['weightage'], proposed['questions']):
            errors.append(f"Criterion {name} has submitted marks and its definition cannot change")
    return errors


def consistency_warnings(subject):
    """Soft checks reported back to the coordinator, never enforced"""
    warnings = []
    units = set()
    for criterion in subject.criteria:
        question_total = sum((to_decimal(q.max_marks) for q in criterion.questions), Decimal('0'))
        if question_total != to_decimal(criterion.total_marks):
            warnings.append(
                f"{criterion.name}: questions add up to {_number(question_total)} "
                f"but total marks is {_number(criterion.total_marks)}")
        for question in criterion.questions:
            if question.parts:
                part_total = sum((to_decimal(p.max_marks) for p in question.parts), Decimal('0'))
                if part_total != to_decimal(question.max_marks):
                    warnings.append(
                        f"{criterion.name} Q{question.number}: parts add up to {_number(part_total)} "
                        f"but the question is worth {_number(question.max_marks)}")
        units.update(key for key, _ in iter_units(criterion, criterion.name))

    clo_numbers = {clo.number for clo in subject.clos}
    for mapping in subject.clo_mappings:
        header = column_key_header(mapping)
        if mapping.clo_number not in clo_numbers:
            warnings.append(f"{header} is mapped to undefined CLO{mapping.clo_number}")
        if (mapping.criteria, mapping.question_no, mapping.part_no) not in units:
            warnings.append(f"CLO{mapping.clo_number} is mapped to {header}, which is not in the schema")
    return warnings


def set_evaluation_settings(subject, settings, is_coordinator):
    """
    Replace the provided top-level settings of a subject.

    Fields absent from ``settings`` keep their stored value. The whole request
    is refused when the caller is not the subject's coordinator or when any
    provided field is invalid.
    """
    if not is_coordinator:
        raise AuthorizationError("Forbidden: Only the CC can update settings")
    if not isinstance(settings, dict):
        raise ConfigurationError("Settings must be an object")

    errors = []
    clos = criteria = mappings = None
    if settings.get('clos') is not None:
        clos = validate_clos(settings['clos'], errors)
    if settings.get('evaluation_schema') is not None:
        criteria = validate_evaluation_schema(settings['evaluation_schema'], errors)
    if settings.get('clo_question_mappings') is not None:
        mappings = validate_clo_mappings(settings['clo_question_mappings'], errors)

    if criteria is not None and not errors and not current_app.config.get('ALLOW_SCHEMA_EDITS_WITH_MARKS'):
        errors.extend(_locked_criteria_errors(subject, criteria))

    if errors:
        logging.warning(f"Rejected evaluation settings for {subject.subject_code}: {errors}")
        raise ConfigurationError("Invalid evaluation settings", errors=errors)

    try:
        if clos is not None:
            subject.clos.clear()
            db.session.flush()
            for number, statement in clos:
                subject.clos.append(CourseLearningOutcome(number=number, statement=statement))

        if criteria is not None:
            subject.criteria.clear()
            db.session.flush()
            for position, c in enumerate(criteria):
                criterion = EvaluationCriterion(name=c['name'], total_marks=c['total_marks'],
                                                weightage=c['weightage'], position=position)
                for q_position, q in enumerate(c['questions']):
                    question = Question(number=q['question_no'], max_marks=q['max_marks'], position=q_position)
                    for p_position, p in enumerate(q['parts']):
                        question.parts.append(QuestionPart(number=p['part_no'], max_marks=p['max_marks'],
                                                           position=p_position))
                    criterion.questions.append(question)
                subject.criteria.append(criterion)

        if mappings is not None:
            subject.clo_mappings.clear()
            db.session.flush()
            for clo_number, criteria_name, question_no, part_no in mappings:
                subject.clo_mappings.append(CLOMapping(clo_number=clo_number, criteria=criteria_name,
                                                       question_no=question_no, part_no=part_no))

        updated = [field for field in SETTINGS_FIELDS if settings.get(field) is not None]
        log = Log(action="UPDATE_EVALUATION_SETTINGS",
                  description=f"Updated {', '.join(updated) or 'nothing'} for subject: {subject.subject_code}")
        db.session.add(log)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logging.info(f"Evaluation settings updated for {subject.subject_code}")
    return serialize_evaluation_settings(subject)


def serialize_evaluation_settings(subject):
    """Current settings in the same shape set_evaluation_settings accepts"""
    grouped = {}
    for mapping in subject.clo_mappings:
        grouped.setdefault(mapping.clo_number, []).append({
            'criteria': mapping.criteria,
            'question_no': mapping.question_no,
            'part_no': mapping.part_no
        })

    return {
        'subject_id': subject.id,
        'subject_code': subject.subject_code,
        'clos': [{'clo_number': clo.number, 'clo_statement': clo.statement} for clo in subject.clos],
        'evaluation_schema': {
            criterion.name: {
                'total_marks': _number(criterion.total_marks),
                'weightage': _number(criterion.weightage),
                'questions': [
                    {
                        'question_no': q.number,
                        'max_marks': _number(q.max_marks),
                        'parts': [{'part_no': p.number, 'max_marks': _number(p.max_marks)} for p in q.parts]
                    }
                    for q in criterion.questions
                ]
            }
            for criterion in subject.criteria
        },
        'clo_question_mappings': [
            {'clo_number': number, 'mappings': entries} for number, entries in sorted(grouped.items())
        ],
        'warnings': consistency_warnings(subject)
    }
