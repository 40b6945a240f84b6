from flask import Blueprint, request, jsonify, g, url_for
from auth import coordinator_required, is_coordinator_of
from exceptions import AuthorizationError, ConfigurationError, ConflictError
from evaluation_settings import set_evaluation_settings, serialize_evaluation_settings
from aggregation import aggregate, instructor_submissions, instructor_submission
from routes.subject_routes import get_subject_or_404
from routes.utility_routes import export_to_excel_csv

cc_bp = Blueprint('cc', __name__, url_prefix='/api/cc')


def _coordinated_subject(subject_id, action):
    subject = get_subject_or_404(subject_id)
    if not is_coordinator_of(g.identity, subject):
        raise AuthorizationError(f"Forbidden: Only the CC can {action}")
    return subject


def _eval_criteria():
    eval_criteria = request.args.get('eval_criteria')
    if not eval_criteria:
        raise ConfigurationError("eval_criteria is required")
    return eval_criteria


@cc_bp.route('/subjects/<int:subject_id>/evaluation', methods=['PUT'])
@coordinator_required
def update_evaluation_settings(subject_id):
    """Replace the provided evaluation settings of the coordinated subject"""
    subject = get_subject_or_404(subject_id)
    settings = request.get_json(silent=True)
    if settings is None:
        raise ConfigurationError("Request body must be JSON")
    updated = set_evaluation_settings(subject, settings, is_coordinator_of(g.identity, subject))
    return jsonify({'success': True, 'message': 'Evaluation settings updated successfully', 'settings': updated})


@cc_bp.route('/subjects/<int:subject_id>/evaluation', methods=['GET'])
@coordinator_required
def get_evaluation_settings(subject_id):
    subject = _coordinated_subject(subject_id, "view settings")
    return jsonify(serialize_evaluation_settings(subject))


@cc_bp.route('/subjects/<int:subject_id>/instructor-submissions', methods=['GET'])
@coordinator_required
def list_instructor_submissions(subject_id):
    """Per-instructor submission status for one criterion"""
    subject = _coordinated_subject(subject_id, "view submissions")
    eval_criteria = _eval_criteria()
    submissions = instructor_submissions(subject, eval_criteria)
    for entry in submissions:
        entry['file_url'] = url_for('cc.view_submission', subject_id=subject.id,
                                    instructor_id=entry['instructor_id'],
                                    eval_criteria=eval_criteria) if entry['has_submitted'] else None
    return jsonify(submissions)


@cc_bp.route('/subjects/<int:subject_id>/view-submission', methods=['GET'])
@coordinator_required
def view_submission(subject_id):
    """One instructor's submission as CSV"""
    subject = _coordinated_subject(subject_id, "view submissions")
    eval_criteria = _eval_criteria()
    instructor_id = request.args.get('instructor_id', type=int)
    if instructor_id is None:
        raise ConfigurationError("instructor_id is required")
    table = instructor_submission(subject, instructor_id, eval_criteria)
    return export_to_excel_csv(table['rows'], f"{eval_criteria}_submission_{instructor_id}", table['headers'])


@cc_bp.route('/subjects/<int:subject_id>/aggregate', methods=['GET'])
@coordinator_required
def aggregate_json(subject_id):
    """Aggregated rows and conflicts as JSON"""
    subject = _coordinated_subject(subject_id, "aggregate submissions")
    result = aggregate(subject, _eval_criteria())
    return jsonify({'success': not result['conflicts'], **result})


@cc_bp.route('/subjects/<int:subject_id>/aggregate-submissions', methods=['GET'])
@coordinator_required
def aggregate_csv(subject_id):
    """Aggregated marks as CSV; refused while any student is marked by two instructors"""
    subject = _coordinated_subject(subject_id, "aggregate submissions")
    eval_criteria = _eval_criteria()
    result = aggregate(subject, eval_criteria)
    if result['conflicts']:
        raise ConflictError("Some students were marked by more than one instructor",
                            errors=result['conflicts'])
    return export_to_excel_csv(result['rows'], f"{subject.subject_code}_{eval_criteria}_aggregated",
                               result['headers'])
