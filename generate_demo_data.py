import random
import logging
from faker import Faker

# Import the models
from models import (db, Department, User, Subject, SubjectInstructor, InstructorStudent, Batch, Student, Log)
from auth import hash_password
from evaluation_settings import set_evaluation_settings

DEPARTMENTS = {'CSE': 'CS', 'ECE': 'ECE', 'ME': 'ME'}
ADMIN_EMAIL = 'admin@example.com'
ADMIN_PASSWORD = 'admin123'
TEACHER_PASSWORD = 'teacher123'

# Two-criterion schema given to the first subject of every department
DEMO_SETTINGS = {
    'clos': [
        {'clo_number': 1, 'clo_statement': 'Explain the core concepts of the subject.'},
        {'clo_number': 2, 'clo_statement': 'Apply the concepts to solve standard problems.'},
        {'clo_number': 3, 'clo_statement': 'Analyse and design solutions for open-ended problems.'}
    ],
    'evaluation_schema': {
        'MST': {
            'total_marks': 20, 'weightage': 30,
            'questions': [
                {'question_no': 1, 'max_marks': 10, 'parts': []},
                {'question_no': 2, 'max_marks': 10, 'parts': [
                    {'part_no': 1, 'max_marks': 5},
                    {'part_no': 2, 'max_marks': 5}
                ]}
            ]
        },
        'EST': {
            'total_marks': 40, 'weightage': 70,
            'questions': [
                {'question_no': 1, 'max_marks': 20, 'parts': []},
                {'question_no': 2, 'max_marks': 20, 'parts': []}
            ]
        }
    },
    'clo_question_mappings': [
        {'clo_number': 1, 'mappings': [{'criteria': 'MST', 'question_no': 1, 'part_no': None},
                                       {'criteria': 'EST', 'question_no': 1, 'part_no': None}]},
        {'clo_number': 2, 'mappings': [{'criteria': 'MST', 'question_no': 2, 'part_no': 1},
                                       {'criteria': 'EST', 'question_no': 2, 'part_no': None}]},
        {'clo_number': 3, 'mappings': [{'criteria': 'MST', 'question_no': 2, 'part_no': 2}]}
    ]
}


def _get_or_create_user(name, email, role, department, password):
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name, email=email, role=role, department=department,
                    password_hash=hash_password(password))
        db.session.add(user)
        return user, True
    return user, False


def seed_demo_data(teachers_per_department=3, subjects_per_department=2, batches_per_department=1,
                   students_per_batch=12, seed=None):
    """
    Insert demo departments, teachers, subjects, batches and tagging.

    Must run inside an application context. Rows that already exist (by
    email, code, batch id or roll number) are left alone, so running it twice
    adds nothing the second time. Returns the number of rows created per kind.
    """
    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)

    created = {'departments': 0, 'users': 0, 'subjects': 0, 'batches': 0, 'students': 0, 'tagged': 0}

    try:
        _, is_new = _get_or_create_user('Admin User', ADMIN_EMAIL, 'admin', 'Administration', ADMIN_PASSWORD)
        created['users'] += int(is_new)

        teacher_counter = 1
        configured = []
        for dept, prefix in DEPARTMENTS.items():
            if Department.query.filter_by(name=dept).first() is None:
                db.session.add(Department(name=dept))
                created['departments'] += 1

            teachers = []
            for _ in range(teachers_per_department):
                teacher, is_new = _get_or_create_user(fake.name(), f"teacher{teacher_counter}@example.com",
                                                      'instructor', dept, TEACHER_PASSWORD)
                teachers.append(teacher)
                created['users'] += int(is_new)
                teacher_counter += 1
            db.session.flush()

            batches = []
            for b in range(1, batches_per_department + 1):
                batch_id = f"{dept.lower()}{b}"
                batch = Batch.query.filter_by(batch_id=batch_id).first()
                if batch is None:
                    batch = Batch(batch_id=batch_id, department=dept)
                    db.session.add(batch)
                    created['batches'] += 1
                for s in range(1, students_per_batch + 1):
                    roll_no = f"{batch_id}-{s}"
                    if Student.query.filter_by(roll_no=roll_no).first() is None:
                        batch.students.append(Student(roll_no=roll_no, name=fake.name(), department=dept))
                        created['students'] += 1
                batches.append(batch)
            db.session.flush()

            for i in range(1, subjects_per_department + 1):
                code = f"{prefix}{100 + i}"
                if Subject.query.filter_by(subject_code=code).first() is not None:
                    continue
                subject = Subject(subject_name=f"{dept} Subject {i}", subject_code=code, department=dept)
                db.session.add(subject)
                created['subjects'] += 1

                # Coordinator plus one more instructor, coordinators kept distinct within the department
                coordinator = teachers[(i - 1) % len(teachers)]
                if coordinator.coordinator_for is None:
                    subject.coordinator = coordinator
                    coordinator.coordinator_for = code
                    if i == 1:
                        configured.append((subject, coordinator))
                others = [t for t in teachers if t is not coordinator]
                instructors = [coordinator] + rng.sample(others, min(1, len(others)))

                assignments = []
                for teacher in instructors:
                    assignment = SubjectInstructor(instructor=teacher)
                    subject.instructors.append(assignment)
                    assignments.append(assignment)

                # Split the department's students between the subject's instructors
                roll_nos = [s.roll_no for batch in batches for s in batch.students]
                for index, roll_no in enumerate(roll_nos):
                    assignments[index % len(assignments)].students.append(InstructorStudent(roll_no=roll_no))
                    created['tagged'] += 1

        db.session.add(Log(action="SEED_DEMO_DATA", description=f"Inserted demo data: {created}"))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error generating demo data: {str(e)}")
        raise

    for subject, coordinator in configured:
        set_evaluation_settings(subject, DEMO_SETTINGS, is_coordinator=True)

    logging.info(f"Demo data generation complete: {created}")
    return created


if __name__ == "__main__":
    from app import create_app

    app = create_app()
    with app.app_context():
        summary = seed_demo_data()

    print("\n--- Demo Data Generation Summary ---")
    for kind, count in summary.items():
        print(f"  - {count} {kind}")
    print(f"\nLog in as {ADMIN_EMAIL} / {ADMIN_PASSWORD}; teachers use {TEACHER_PASSWORD}.")
