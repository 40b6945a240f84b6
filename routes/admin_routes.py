from flask import Blueprint, request, jsonify, current_app
from app import db
from models import (Department, Subject, Student, Batch, User, SubjectInstructor, InstructorStudent, StudentMark,
                    Log)
from auth import admin_only, hash_password, ROLES
from exceptions import ConfigurationError, NotFoundError, AuthorizationError
from routes.utility_routes import export_to_excel_csv, uploaded_text
from datetime import datetime
import logging
import csv
import io

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

TAGGING_HEADERS = ['RollNo', 'SubjectCode', 'InstructorId']


def _payload():
    return request.get_json(silent=True) or {}


def _get_subject(subject_id):
    try:
        subject = db.session.get(Subject, int(subject_id))
    except (TypeError, ValueError):
        subject = None
    if subject is None:
        raise NotFoundError("Subject not found")
    return subject


def _subject_by_code(subject_code):
    subject = Subject.query.filter_by(subject_code=subject_code).first() if subject_code else None
    if subject is None:
        raise NotFoundError(f"Subject {subject_code} not found")
    return subject


def _get_instructor(instructor_id):
    try:
        instructor = db.session.get(User, int(instructor_id))
    except (TypeError, ValueError):
        instructor = None
    if instructor is None or instructor.role != 'instructor':
        raise NotFoundError(f"Instructor {instructor_id} not found or invalid")
    return instructor


def _other_assignment(subject, roll_no, instructor_id):
    """Assignment of another instructor of the subject that already holds the roll number"""
    for assignment in subject.instructors:
        if assignment.instructor_id != instructor_id and roll_no in assignment.roll_nos:
            return assignment
    return None


def _ensure_assignment(subject, instructor):
    assignment = subject.get_instructor_assignment(instructor.id)
    if assignment is None:
        assignment = SubjectInstructor(instructor_id=instructor.id)
        subject.instructors.append(assignment)
    return assignment


def _require_assignment(subject, instructor):
    assignment = subject.get_instructor_assignment(instructor.id)
    if assignment is None:
        raise AuthorizationError(f"Instructor {instructor.name} not assigned to {subject.subject_code}")
    return assignment


def set_coordinator(subject, user):
    """Make user the subject's coordinator (None clears it), keeping both sides in sync"""
    previous = subject.coordinator
    if previous is not None and (user is None or previous.id != user.id):
        previous.coordinator_for = None
    if user is not None:
        # A user coordinates one subject at a time
        if user.coordinator_for and user.coordinator_for != subject.subject_code:
            other = Subject.query.filter_by(subject_code=user.coordinator_for).first()
            if other is not None and other.coordinator_id == user.id:
                other.coordinator_id = None
        user.coordinator_for = subject.subject_code
        subject.coordinator_id = user.id
    else:
        subject.coordinator_id = None


# ---------------------------------------------------------------- teachers

@admin_bp.route('/teachers', methods=['GET'])
@admin_only
def list_teachers():
    """List all instructors"""
    teachers = User.query.filter_by(role='instructor').order_by(User.name).all()
    return jsonify([t.to_dict() for t in teachers])


@admin_bp.route('/instructors', methods=['GET'])
@admin_only
def instructors_by_department():
    department = request.args.get('department')
    query = User.query.filter_by(role='instructor')
    if department:
        query = query.filter_by(department=department)
    return jsonify([u.to_dict() for u in query.order_by(User.name).all()])


@admin_bp.route('/teachers', methods=['POST'])
@admin_only
def add_teacher():
    """Add a teacher with the default password"""
    data = _payload()
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    role = (data.get('role') or 'instructor').strip().lower()
    department = (data.get('department') or '').strip() or None

    if not name or not email or not department:
        raise ConfigurationError("Name, email and department are required")
    if role not in ROLES:
        raise ConfigurationError(f"Role must be one of: {', '.join(ROLES)}")
    if User.query.filter_by(email=email).first():
        raise ConfigurationError("Email already exists")

    try:
        teacher = User(name=name, email=email, role=role, department=department,
                       password_hash=hash_password(data.get('password') or current_app.config['DEFAULT_TEACHER_PASSWORD']))
        db.session.add(teacher)

        log = Log(action="ADD_TEACHER", description=f"Added teacher: {name} <{email}>")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error adding teacher: {str(e)}")
        raise

    return jsonify({'success': True, 'teacher': teacher.to_dict()}), 201


@admin_bp.route('/teachers/<int:teacher_id>', methods=['PUT'])
@admin_only
def update_teacher(teacher_id):
    """Update a teacher's profile, role or coordinated subject"""
    teacher = db.session.get(User, teacher_id)
    if teacher is None:
        raise NotFoundError("Teacher not found")
    data = _payload()

    if data.get('name'):
        teacher.name = data['name'].strip()
    if data.get('department'):
        teacher.department = data['department'].strip()
    if data.get('role'):
        role = data['role'].strip().lower()
        if role not in ROLES:
            raise ConfigurationError(f"Role must be one of: {', '.join(ROLES)}")
        teacher.role = role
    if data.get('password'):
        teacher.password_hash = hash_password(data['password'])

    try:
        if 'coordinator_for' in data:
            if data['coordinator_for']:
                set_coordinator(_subject_by_code(data['coordinator_for']), teacher)
            elif teacher.coordinator_for:
                coordinated = Subject.query.filter_by(subject_code=teacher.coordinator_for).first()
                if coordinated is not None and coordinated.coordinator_id == teacher.id:
                    set_coordinator(coordinated, None)
                teacher.coordinator_for = None
        teacher.updated_at = datetime.now()

        log = Log(action="EDIT_TEACHER", description=f"Edited teacher: {teacher.name} <{teacher.email}>")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error updating teacher {teacher_id}: {str(e)}")
        raise

    return jsonify({'success': True, 'message': 'Teacher updated successfully', 'teacher': teacher.to_dict()})


@admin_bp.route('/teachers/<int:teacher_id>', methods=['DELETE'])
@admin_only
def delete_teacher(teacher_id):
    """Delete a teacher together with their assignments and submitted marks"""
    teacher = db.session.get(User, teacher_id)
    if teacher is None:
        raise NotFoundError("Teacher not found")
    if teacher.role == 'admin':
        raise ConfigurationError("Administrators cannot be deleted here")

    try:
        for subject in Subject.query.filter_by(coordinator_id=teacher.id).all():
            subject.coordinator_id = None
        StudentMark.query.filter_by(instructor_id=teacher.id).delete(synchronize_session='fetch')

        log = Log(action="DELETE_TEACHER", description=f"Deleted teacher: {teacher.name} <{teacher.email}>")
        db.session.add(log)
        db.session.delete(teacher)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error deleting teacher {teacher_id}: {str(e)}")
        raise

    return jsonify({'success': True, 'message': 'Teacher deleted successfully'})


# ---------------------------------------------------------------- departments

@admin_bp.route('/departments', methods=['GET'])
@admin_only
def list_departments():
    departments = Department.query.order_by(Department.name).all()
    return jsonify([d.name for d in departments])


@admin_bp.route('/departments', methods=['POST'])
@admin_only
def add_department():
    name = (_payload().get('name') or '').strip()
    if not name:
        raise ConfigurationError("Department name is required")
    if Department.query.filter_by(name=name).first():
        raise ConfigurationError("Department already exists")

    try:
        db.session.add(Department(name=name))
        db.session.add(Log(action="ADD_DEPARTMENT", description=f"Added department: {name}"))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error adding department: {str(e)}")
        raise

    return jsonify({'success': True, 'name': name}), 201


@admin_bp.route('/departments/<name>', methods=['DELETE'])
@admin_only
def delete_department(name):
    """Delete a department and its subjects; users keep their account with no department"""
    department = Department.query.filter_by(name=name).first()
    if department is None:
        raise NotFoundError("Department not found")

    try:
        subjects = Subject.query.filter_by(department=name).all()
        codes = [s.subject_code for s in subjects]
        if codes:
            User.query.filter(User.coordinator_for.in_(codes)).update({'coordinator_for': None},
                                                                       synchronize_session='fetch')
        for subject in subjects:
            db.session.delete(subject)
        User.query.filter_by(department=name).update({'department': None}, synchronize_session='fetch')
        db.session.delete(department)

        log = Log(action="DELETE_DEPARTMENT",
                  description=f"Deleted department: {name} with {len(subjects)} subject(s)")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error deleting department {name}: {str(e)}")
        raise

    return jsonify({'success': True, 'message': 'Department and its subjects deleted successfully'})


# ---------------------------------------------------------------- subjects

@admin_bp.route('/subjects', methods=['POST'])
@admin_only
def add_subject():
    data = _payload()
    subject_name = (data.get('subject_name') or '').strip()
    subject_code = (data.get('subject_code') or '').strip()
    department = (data.get('department') or '').strip()

    if not subject_name or not subject_code or not department:
        raise ConfigurationError("All fields are required")
    if Subject.query.filter_by(subject_code=subject_code).first():
        raise ConfigurationError("Subject code already exists")

    try:
        subject = Subject(subject_name=subject_name, subject_code=subject_code, department=department)
        db.session.add(subject)
        db.session.add(Log(action="ADD_SUBJECT", description=f"Added subject: {subject_code} - {subject_name}"))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error adding subject: {str(e)}")
        raise

    return jsonify({'success': True, 'subject': subject.to_dict()}), 201


@admin_bp.route('/subjects/<int:subject_id>', methods=['DELETE'])
@admin_only
def delete_subject(subject_id):
    """Delete a subject with its schema, assignments and submitted marks"""
    subject = _get_subject(subject_id)
    code = subject.subject_code

    try:
        marks_count = StudentMark.query.filter_by(subject_id=subject.id).count()
        User.query.filter_by(coordinator_for=code).update({'coordinator_for': None}, synchronize_session='fetch')

        log = Log(action="DELETE_SUBJECT",
                  description=f"Deleted subject: {code} - {subject.subject_name} with {marks_count} mark record(s)")
        db.session.add(log)
        db.session.delete(subject)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error deleting subject {code}: {str(e)}")
        raise

    return jsonify({'success': True, 'message': 'Subject deleted successfully'})


@admin_bp.route('/assign', methods=['POST'])
@admin_only
def assign_subject():
    """Assign a subject to a teacher, optionally as its coordinator"""
    data = _payload()
    if not data.get('teacher_id') or not data.get('subject_code'):
        raise ConfigurationError("Teacher ID and Subject Code are required")

    teacher = _get_instructor(data['teacher_id'])
    subject = _subject_by_code(data['subject_code'])
    is_coordinator = data.get('is_coordinator')

    try:
        _ensure_assignment(subject, teacher)
        if is_coordinator:
            set_coordinator(subject, teacher)
        elif is_coordinator is not None and subject.coordinator_id == teacher.id:
            set_coordinator(subject, None)

        log = Log(action="ASSIGN_SUBJECT",
                  description=f"Assigned {subject.subject_code} to {teacher.name}"
                              f"{' as coordinator' if is_coordinator else ''}")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error assigning subject: {str(e)}")
        raise

    return jsonify({'success': True, 'message': 'Subject assigned successfully.', 'subject': subject.to_dict()})


# ---------------------------------------------------------------- tagging

@admin_bp.route('/assign-students', methods=['POST'])
@admin_only
def assign_students():
    """Replace the set of students an instructor marks for a subject"""
    data = _payload()
    subject = _get_subject(data.get('subject_id'))
    instructor = _get_instructor(data.get('instructor_id'))
    roll_nos = data.get('roll_nos')
    if not isinstance(roll_nos, list):
        raise ConfigurationError("roll_nos must be a list")
    roll_nos = sorted({str(r).strip() for r in roll_nos if str(r).strip()})

    errors = []
    for roll_no in roll_nos:
        other = _other_assignment(subject, roll_no, instructor.id)
        if other is not None:
            errors.append(f"Student {roll_no} already assigned to another instructor for {subject.subject_code}")
    if errors:
        raise ConfigurationError("Some students are already assigned", errors=errors)

    try:
        assignment = _ensure_assignment(subject, instructor)
        assignment.students.clear()
        db.session.flush()
        for roll_no in roll_nos:
            assignment.students.append(InstructorStudent(roll_no=roll_no))

        log = Log(action="ASSIGN_STUDENTS",
                  description=f"Assigned {len(roll_nos)} student(s) to {instructor.name} for {subject.subject_code}")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error assigning students: {str(e)}")
        raise

    return jsonify({'success': True, 'message': 'Students assigned successfully', 'subject': subject.to_dict()})


@admin_bp.route('/assign-batch', methods=['POST'])
@admin_only
def assign_batch():
    """Tag every student of a batch to an instructor; students held by another instructor are skipped"""
    data = _payload()
    if not data.get('batch_id') or not data.get('subject_code') or not data.get('instructor_id'):
        raise ConfigurationError("Missing required fields")

    batch = Batch.query.filter_by(batch_id=data['batch_id']).first()
    if batch is None:
        raise NotFoundError(f"Batch {data['batch_id']} not found")
    subject = _subject_by_code(data['subject_code'])
    instructor = _get_instructor(data['instructor_id'])
    assignment = _require_assignment(subject, instructor)

    added = []
    skipped = []
    try:
        current = assignment.roll_nos
        for student in batch.students:
            if student.roll_no in current:
                continue
            if _other_assignment(subject, student.roll_no, instructor.id) is not None:
                skipped.append(student.roll_no)
                continue
            assignment.students.append(InstructorStudent(roll_no=student.roll_no))
            added.append(student.roll_no)

        log = Log(action="ASSIGN_BATCH",
                  description=f"Assigned batch {batch.batch_id} ({len(added)} student(s)) to {instructor.name} "
                              f"for {subject.subject_code}")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error assigning batch: {str(e)}")
        raise

    return jsonify({
        'success': True,
        'message': f"Batch {batch.batch_id} assigned to {instructor.name} for {subject.subject_code}",
        'added': added,
        'skipped': skipped
    })


@admin_bp.route('/assign-student', methods=['POST'])
@admin_only
def assign_student():
    data = _payload()
    roll_no = str(data.get('roll_no') or '').strip()
    if not roll_no or not data.get('subject_code') or not data.get('instructor_id'):
        raise ConfigurationError("Missing required fields")

    subject = _subject_by_code(data['subject_code'])
    instructor = _get_instructor(data['instructor_id'])
    assignment = _require_assignment(subject, instructor)
    if _other_assignment(subject, roll_no, instructor.id) is not None:
        raise ConfigurationError(f"Student {roll_no} already assigned to another instructor for {subject.subject_code}")

    try:
        if roll_no not in assignment.roll_nos:
            assignment.students.append(InstructorStudent(roll_no=roll_no))
            db.session.add(Log(action="ASSIGN_STUDENT",
                               description=f"Assigned {roll_no} to {instructor.name} for {subject.subject_code}"))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error assigning student: {str(e)}")
        raise

    return jsonify({'success': True,
                    'message': f"Student {roll_no} assigned to {instructor.name} for {subject.subject_code}"})


@admin_bp.route('/remove-student', methods=['POST'])
@admin_only
def remove_student():
    data = _payload()
    roll_no = str(data.get('roll_no') or '').strip()
    if not roll_no or not data.get('subject_code') or not data.get('instructor_id'):
        raise ConfigurationError("Missing required fields")

    subject = _subject_by_code(data['subject_code'])
    try:
        instructor_id = int(data['instructor_id'])
    except (TypeError, ValueError):
        raise ConfigurationError("Invalid instructor id")
    assignment = subject.get_instructor_assignment(instructor_id)
    if assignment is None:
        raise NotFoundError(f"Instructor {instructor_id} not assigned to {subject.subject_code}")
    tagged = next((s for s in assignment.students if s.roll_no == roll_no), None)
    if tagged is None:
        raise NotFoundError(f"Student {roll_no} not assigned to this instructor for {subject.subject_code}")

    try:
        assignment.students.remove(tagged)
        db.session.add(Log(action="REMOVE_STUDENT",
                           description=f"Removed {roll_no} from instructor {instructor_id} for {subject.subject_code}"))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error removing student assignment: {str(e)}")
        raise

    return jsonify({'success': True,
                    'message': f"Student {roll_no} removed from {subject.subject_code} under instructor {instructor_id}"})


@admin_bp.route('/generate-tagging-template', methods=['GET'])
@admin_only
def tagging_template():
    """CSV with one row per known student and the tagging columns left blank"""
    students = Student.query.order_by(Student.roll_no).all()
    rows = ([s.roll_no, '', ''] for s in students)
    return export_to_excel_csv(rows, "student_tagging_template", TAGGING_HEADERS)


def apply_tagging_rows(rows):
    """
    Apply tagging rows ``{RollNo, SubjectCode, InstructorId}``.

    Every row is checked on its own; valid rows are applied and every bad
    row is reported. Returns (applied, errors).
    """
    applied = []
    errors = []
    claimed = {}

    for index, row in enumerate(rows, start=1):
        roll_no = str(row.get('RollNo') or '').strip()
        subject_code = str(row.get('SubjectCode') or '').strip()
        instructor_ref = str(row.get('InstructorId') or '').strip()

        if not roll_no or not subject_code or not instructor_ref:
            errors.append(f"Row {index}: Missing required fields (RollNo, SubjectCode, InstructorId)")
            continue
        if Student.query.filter_by(roll_no=roll_no).first() is None:
            errors.append(f"Row {index}: Student {roll_no} not found")
            continue
        subject = Subject.query.filter_by(subject_code=subject_code).first()
        if subject is None:
            errors.append(f"Row {index}: Subject {subject_code} not found")
            continue
        try:
            instructor = _get_instructor(instructor_ref)
        except NotFoundError:
            errors.append(f"Row {index}: Instructor {instructor_ref} not found or invalid")
            continue
        assignment = subject.get_instructor_assignment(instructor.id)
        if assignment is None:
            errors.append(f"Row {index}: Instructor {instructor.name} not assigned to {subject_code}")
            continue

        key = (subject.id, roll_no)
        if _other_assignment(subject, roll_no, instructor.id) is not None or \
                claimed.get(key, instructor.id) != instructor.id:
            errors.append(f"Row {index}: Student {roll_no} already assigned to another instructor for {subject_code}")
            continue
        claimed[key] = instructor.id

        if roll_no not in assignment.roll_nos:
            assignment.students.append(InstructorStudent(roll_no=roll_no))
        applied.append({'roll_no': roll_no, 'subject_code': subject_code, 'instructor_id': instructor.id})

    return applied, errors


@admin_bp.route('/upload-tagging', methods=['POST'])
@admin_only
def upload_tagging():
    """Tag students from a CSV file or a JSON list of rows"""
    payload = request.get_json(silent=True) if request.is_json else None
    if payload is not None:
        rows = payload.get('csv_data')
        if not isinstance(rows, list):
            raise ConfigurationError("Invalid or empty CSV data")
    else:
        text = uploaded_text()
        reader = csv.DictReader(io.StringIO(text))
        rows = [{(k or '').strip(): v for k, v in row.items() if k} for row in reader]
    if not rows:
        raise ConfigurationError("Invalid or empty CSV data")

    try:
        applied, errors = apply_tagging_rows(rows)
        if applied:
            db.session.add(Log(action="UPLOAD_TAGGING",
                               description=f"Tagged {len(applied)} student(s) from upload, {len(errors)} row error(s)"))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error uploading student tagging: {str(e)}")
        raise

    if errors:
        logging.warning(f"Tagging upload rejected {len(errors)} row(s)")
    return jsonify({
        'success': not errors,
        'message': 'Students tagged successfully' if not errors else 'CSV contains errors',
        'applied': applied,
        'errors': errors
    })
