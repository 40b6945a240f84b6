from flask import Blueprint, request, jsonify, g
from app import db
from models import Subject, Student, SubjectInstructor
from auth import login_required, is_coordinator_of
from exceptions import ConfigurationError, NotFoundError, AuthorizationError
from evaluation_settings import serialize_evaluation_settings
from submissions import (submit_marks, preview_attainment, parse_marks_csv, build_marks_template,
                         instructor_subject_data)
from routes.utility_routes import export_to_excel_csv, uploaded_text
import logging

subject_bp = Blueprint('subject', __name__, url_prefix='/api/subjects')


def get_subject_or_404(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        raise NotFoundError("Subject not found")
    return subject


def _marks_request():
    """eval_criteria and marks records from a JSON body"""
    payload = request.get_json(silent=True) or {}
    eval_criteria = payload.get('eval_criteria')
    records = payload.get('marks_data')
    if not eval_criteria:
        raise ConfigurationError("eval_criteria is required")
    if not isinstance(records, list):
        raise ConfigurationError("marks_data must be a list of {roll_no, data} records")
    return eval_criteria, records


@subject_bp.route('', methods=['GET'])
@login_required
def list_subjects():
    """Subjects filtered by department or code"""
    query = Subject.query
    if request.args.get('department'):
        query = query.filter_by(department=request.args['department'])
    if request.args.get('subject_code'):
        query = query.filter_by(subject_code=request.args['subject_code'])
    subjects = query.order_by(Subject.subject_code).all()
    return jsonify([s.to_dict() for s in subjects])


@subject_bp.route('/instructor-subjects', methods=['GET'])
@login_required
def instructor_subjects():
    """Subjects the caller teaches or coordinates, with their own student count"""
    user_id = g.identity.user_id
    subjects = Subject.query.outerjoin(SubjectInstructor)\
        .filter(db.or_(Subject.coordinator_id == user_id, SubjectInstructor.instructor_id == user_id))\
        .distinct().order_by(Subject.subject_code).all()

    result = []
    for subject in subjects:
        assignment = subject.get_instructor_assignment(user_id)
        data = subject.to_dict()
        data['students_count'] = len(assignment.students) if assignment else 0
        data['is_coordinator'] = is_coordinator_of(g.identity, subject)
        result.append(data)
    return jsonify(result)


@subject_bp.route('/<int:subject_id>/students', methods=['GET'])
@login_required
def subject_students(subject_id):
    """Students of a subject: all of them for admins and the coordinator, otherwise the caller's own"""
    subject = get_subject_or_404(subject_id)
    identity = g.identity
    sees_all = identity.role == 'admin' or is_coordinator_of(identity, subject)
    own = subject.get_instructor_assignment(identity.user_id)
    if not sees_all and own is None:
        raise AuthorizationError("Not authorized to access this subject")

    assignments = subject.instructors if sees_all else [own]
    tagged = [(s.roll_no, a.instructor_id) for a in assignments for s in a.students]
    registry = {s.roll_no: s for s in Student.query.filter(Student.roll_no.in_([r for r, _ in tagged])).all()} \
        if tagged else {}

    students = []
    for roll_no, instructor_id in sorted(tagged):
        student = registry.get(roll_no)
        data = student.to_dict() if student else {'roll_no': roll_no, 'name': 'Unknown', 'department': 'Unknown',
                                                    'batch_id': None}
        data['instructor_id'] = instructor_id
        students.append(data)
    return jsonify(students)


@subject_bp.route('/<int:subject_id>/settings', methods=['GET'])
@login_required
def subject_settings(subject_id):
    subject = get_subject_or_404(subject_id)
    identity = g.identity
    if identity.role != 'admin' and not is_coordinator_of(identity, subject) \
            and subject.get_instructor_assignment(identity.user_id) is None:
        raise AuthorizationError("Not authorized to view this subject")
    return jsonify(serialize_evaluation_settings(subject))


@subject_bp.route('/<int:subject_id>/instructor-data', methods=['GET'])
@login_required
def instructor_data(subject_id):
    subject = get_subject_or_404(subject_id)
    return jsonify(instructor_subject_data(subject, g.identity.user_id))


@subject_bp.route('/<int:subject_id>/submit-marks', methods=['POST'])
@login_required
def submit_instructor_marks(subject_id):
    """Calculate and store marks for the caller's students"""
    subject = get_subject_or_404(subject_id)
    eval_criteria, records = _marks_request()
    outcome = submit_marks(subject, g.identity.user_id, eval_criteria, records)
    return jsonify({
        'success': not outcome['errors'],
        'message': 'Marks submitted successfully' if not outcome['errors'] else 'Some marks could not be saved',
        **outcome
    })


@subject_bp.route('/<int:subject_id>/calculate-clo-realtime', methods=['POST'])
@login_required
def calculate_clo_realtime(subject_id):
    """Live CLO preview; nothing is stored"""
    subject = get_subject_or_404(subject_id)
    eval_criteria, records = _marks_request()
    preview = preview_attainment(subject, g.identity.user_id, eval_criteria, records)
    return jsonify({'success': True, **preview})


@subject_bp.route('/<int:subject_id>/template', methods=['GET'])
@login_required
def marks_template(subject_id):
    """Blank marks sheet for the caller's students"""
    subject = get_subject_or_404(subject_id)
    eval_criteria = request.args.get('eval_criteria')
    headers, rows = build_marks_template(subject, g.identity.user_id, eval_criteria)
    return export_to_excel_csv(rows, f"{subject.subject_code}_{eval_criteria}_template", headers)


@subject_bp.route('/<int:subject_id>/upload-marks', methods=['POST'])
@login_required
def upload_marks(subject_id):
    """Submit marks from an uploaded CSV sheet"""
    subject = get_subject_or_404(subject_id)
    eval_criteria = request.args.get('eval_criteria') or request.form.get('eval_criteria')
    if not eval_criteria:
        raise ConfigurationError("eval_criteria is required")

    records = parse_marks_csv(uploaded_text())
    logging.info(f"Marks upload for {subject.subject_code}/{eval_criteria} with {len(records)} row(s)")
    outcome = submit_marks(subject, g.identity.user_id, eval_criteria, records)
    return jsonify({
        'success': not outcome['errors'],
        'message': 'Marks uploaded successfully' if not outcome['errors'] else 'Some marks could not be saved',
        **outcome
    })
