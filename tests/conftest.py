import pytest

from app import create_app
from models import db, User, Subject, SubjectInstructor, InstructorStudent, Batch, Student
from auth import create_access_token, hash_password
from evaluation_settings import set_evaluation_settings

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "JWT_SECRET_KEY": "test-secret",
    "DEFAULT_TEACHER_PASSWORD": "default123",
    "ALLOW_SCHEMA_EDITS_WITH_MARKS": False,
    "LOG_LEVEL": "ERROR",
    "LOG_FILE": "",
}

MST_SETTINGS = {
    "clos": [
        {"clo_number": 1, "clo_statement": "Recall definitions"},
        {"clo_number": 2, "clo_statement": "Apply methods"},
    ],
    "evaluation_schema": {
        "MST": {
            "total_marks": 20,
            "weightage": 30,
            "questions": [
                {"question_no": 1, "max_marks": 10, "parts": []},
                {"question_no": 2, "max_marks": 10, "parts": [
                    {"part_no": 1, "max_marks": 5},
                    {"part_no": 2, "max_marks": 5},
                ]},
            ],
        }
    },
    "clo_question_mappings": [
        {"clo_number": 1, "mappings": [{"criteria": "MST", "question_no": 1, "part_no": None},
                                       {"criteria": "MST", "question_no": 2, "part_no": 1}]},
        {"clo_number": 2, "mappings": [{"criteria": "MST", "question_no": 2, "part_no": 2}]},
    ],
}


@pytest.fixture()
def app():
    app = create_app(dict(TEST_CONFIG))
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def app_ctx(app):
    with app.app_context():
        yield app


def make_user(name, email, role="instructor", department="CSE", password="secret"):
    user = User(name=name, email=email, role=role, department=department, password_hash=hash_password(password))
    db.session.add(user)
    return user


@pytest.fixture()
def seeded(app):
    """
    One subject (CS101) with the MST schema, a coordinator who also teaches
    it, a second instructor, an admin and six students split between the two
    instructors. Returns plain ids so tests can use them outside the app context.
    """
    with app.app_context():
        admin = make_user("Admin", "admin@example.com", role="admin", department="Administration")
        cc = make_user("Cora Coordinator", "cc@example.com")
        other = make_user("Ian Instructor", "ian@example.com")
        outsider = make_user("Olga Outsider", "olga@example.com")

        batch = Batch(batch_id="cse1", department="CSE")
        for n in range(1, 7):
            batch.students.append(Student(roll_no=f"R{n}", name=f"Student {n}", department="CSE"))
        db.session.add(batch)

        subject = Subject(subject_name="Data Structures", subject_code="CS101", department="CSE")
        db.session.add(subject)
        db.session.flush()

        subject.coordinator_id = cc.id
        cc.coordinator_for = subject.subject_code
        cc_assignment = SubjectInstructor(instructor_id=cc.id)
        other_assignment = SubjectInstructor(instructor_id=other.id)
        subject.instructors.extend([cc_assignment, other_assignment])
        for roll_no in ("R1", "R2", "R3"):
            cc_assignment.students.append(InstructorStudent(roll_no=roll_no))
        for roll_no in ("R4", "R5", "R6"):
            other_assignment.students.append(InstructorStudent(roll_no=roll_no))
        db.session.commit()

        set_evaluation_settings(subject, MST_SETTINGS, is_coordinator=True)

        ids = {
            "admin": admin.id,
            "cc": cc.id,
            "other": other.id,
            "outsider": outsider.id,
            "subject": subject.id,
        }
    return ids


@pytest.fixture()
def auth_header(app):
    """Build an Authorization header for a user id"""
    def _header(user_id):
        with app.app_context():
            token = create_access_token(db.session.get(User, user_id))
        return {"Authorization": f"Bearer {token}"}
    return _header
