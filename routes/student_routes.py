from flask import Blueprint, request, jsonify
from app import db
from models import Batch, Student, Log
from auth import login_required, admin_only
from exceptions import ConfigurationError
from routes.utility_routes import export_to_excel_csv, decode_upload
import logging
import re

student_bp = Blueprint('student', __name__, url_prefix='/api/students')

HEADER_WORDS = {'rollno', 'roll no', 'roll_no', 'roll number'}


def detect_delimiter(data):
    """Most frequent of tab, semicolon and comma, falling back to tab"""
    delimiters = {
        '\t': data.count('\t'),
        ';': data.count(';'),
        ',': data.count(',')
    }
    return max(delimiters.items(), key=lambda x: x[1])[0] if any(delimiters.values()) else '\t'


def parse_student_lines(student_data):
    """
    Parse "roll number, name" lines into (students, errors).

    A header line starting with RollNo is skipped; duplicate roll numbers
    within the data are reported.
    """
    delimiter = detect_delimiter(student_data)
    logging.info(f"Detected delimiter: {repr(delimiter)}")

    students = []
    errors = []
    seen = set()
    for i, line in enumerate(student_data.strip().splitlines(), 1):
        if not line.strip():
            continue

        parts = [p.strip() for p in line.split(delimiter)]
        if len([p for p in parts if p]) < 2:
            # Fall back to whitespace separated "ROLL Name Surname"
            parts = re.split(r'\s+', line.strip(), maxsplit=1)

        roll_no = parts[0].replace('\t', '').strip() if parts else ''
        name = " ".join(p for p in parts[1:] if p).strip()

        if i == 1 and roll_no.lower() in HEADER_WORDS:
            continue
        if not roll_no:
            errors.append(f"Line {i}: Empty roll number")
            continue
        if roll_no in seen:
            errors.append(f"Line {i}: Duplicate roll number {roll_no} in import data")
            continue
        seen.add(roll_no)
        students.append({'roll_no': roll_no, 'name': name or None})
    return students, errors


@student_bp.route('', methods=['GET'])
@login_required
def list_students():
    """All students with their batch id"""
    query = Student.query
    if request.args.get('batch_id'):
        query = query.join(Batch).filter(Batch.batch_id == request.args['batch_id'])
    students = query.order_by(Student.roll_no).all()
    return jsonify([s.to_dict() for s in students])


@student_bp.route('/batches', methods=['GET'])
@login_required
def list_batches():
    batches = Batch.query.order_by(Batch.batch_id).all()
    return jsonify([b.to_dict() for b in batches])


@student_bp.route('/batches/<batch_id>/import', methods=['POST'])
@admin_only
def import_students(batch_id):
    """Import students into a batch from an uploaded file or pasted text, creating the batch if needed"""
    if 'student_file' in request.files and request.files['student_file'].filename:
        student_data = decode_upload(request.files['student_file'].read())
    else:
        payload = request.get_json(silent=True) or {}
        student_data = payload.get('student_data') or request.form.get('student_data', '')
    if not student_data or not student_data.strip():
        raise ConfigurationError("No student data provided")

    department = request.args.get('department') or (request.get_json(silent=True) or {}).get('department')
    parsed, errors = parse_student_lines(student_data)

    added = []
    updated = []
    try:
        batch = Batch.query.filter_by(batch_id=batch_id).first()
        if batch is None:
            batch = Batch(batch_id=batch_id, department=department)
            db.session.add(batch)
            db.session.flush()

        for entry in parsed:
            student = Student.query.filter_by(roll_no=entry['roll_no']).first()
            if student is None:
                batch.students.append(Student(roll_no=entry['roll_no'], name=entry['name'],
                                              department=department or batch.department))
                added.append(entry['roll_no'])
            elif student.batch_pk != batch.id:
                errors.append(f"Student {entry['roll_no']} already belongs to batch {student.batch.batch_id}")
            else:
                if entry['name']:
                    student.name = entry['name']
                updated.append(entry['roll_no'])

        log = Log(action="IMPORT_STUDENTS",
                  description=f"Imported {len(added)} new and {len(updated)} existing student(s) into batch {batch_id}")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error importing students into batch {batch_id}: {str(e)}")
        raise

    return jsonify({
        'success': not errors,
        'added': added,
        'updated': updated,
        'errors': errors
    })


@student_bp.route('/export', methods=['GET'])
@admin_only
def export_students():
    """Export all students to a CSV file"""
    students = Student.query.order_by(Student.roll_no).all()
    headers = ['RollNo', 'Student Name', 'Department', 'Batch']

    data = [
        {
            'RollNo': s.roll_no,
            'Student Name': s.name or '',
            'Department': s.department or '',
            'Batch': s.batch.batch_id if s.batch else ''
        }
        for s in students
    ]
    return export_to_excel_csv(data, "students", headers)
