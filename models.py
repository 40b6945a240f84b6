from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Index # Import Index explicitly

# Create a db instance to be initialized later
db = SQLAlchemy()


class User(db.Model):
    """User model for admins and instructors"""
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='instructor', index=True) # 'admin' or 'instructor'
    department = db.Column(db.String(100), nullable=True, index=True)
    coordinator_for = db.Column(db.String(20), nullable=True) # Subject code when the user is its CC
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    assignments = db.relationship('SubjectInstructor', backref='instructor', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'department': self.department,
            'coordinator_for': self.coordinator_for,
            'assigned_subjects': [
                {
                    'subject_code': a.subject.subject_code,
                    'is_coordinator': a.subject.coordinator_id == self.id
                }
                for a in self.assignments
            ]
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


class Department(db.Model):
    """Department model"""
    __tablename__ = 'department'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f"<Department {self.name}>"


class Batch(db.Model):
    """Batch model grouping the students of a cohort"""
    __tablename__ = 'batch'
    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.String(20), nullable=False, unique=True, index=True) # e.g. "b1", "b2"
    department = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    students = db.relationship('Student', backref='batch', lazy=True, cascade="all, delete-orphan",
                               order_by='Student.roll_no')

    def to_dict(self):
        return {
            'id': self.id,
            'batch_id': self.batch_id,
            'department': self.department,
            'students': [s.to_dict() for s in self.students]
        }

    def __repr__(self):
        return f"<Batch {self.batch_id}>"


class Student(db.Model):
    """Student model"""
    __tablename__ = 'student'
    id = db.Column(db.Integer, primary_key=True)
    roll_no = db.Column(db.String(30), nullable=False, unique=True, index=True)
    name = db.Column(db.String(100), nullable=True)
    department = db.Column(db.String(100), nullable=True)
    batch_pk = db.Column(db.Integer, db.ForeignKey('batch.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK

    def to_dict(self):
        return {
            'roll_no': self.roll_no,
            'name': self.name,
            'department': self.department,
            'batch_id': self.batch.batch_id if self.batch else None
        }

    def __repr__(self):
        return f"<Student {self.roll_no}: {self.name}>"


class Subject(db.Model):
    """Subject model owning the evaluation schema, CLOs and CLO mappings"""
    __tablename__ = 'subject'
    id = db.Column(db.Integer, primary_key=True)
    subject_name = db.Column(db.String(150), nullable=False)
    subject_code = db.Column(db.String(20), nullable=False, unique=True, index=True)
    department = db.Column(db.String(100), nullable=False, index=True)
    coordinator_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    coordinator = db.relationship('User', foreign_keys=[coordinator_id])
    criteria = db.relationship('EvaluationCriterion', backref='subject', lazy=True, cascade="all, delete-orphan",
                               order_by='EvaluationCriterion.position')
    clos = db.relationship('CourseLearningOutcome', backref='subject', lazy=True, cascade="all, delete-orphan",
                           order_by='CourseLearningOutcome.number')
    clo_mappings = db.relationship('CLOMapping', backref='subject', lazy=True, cascade="all, delete-orphan",
                                   order_by='CLOMapping.id')
    instructors = db.relationship('SubjectInstructor', backref='subject', lazy=True, cascade="all, delete-orphan")
    marks = db.relationship('StudentMark', backref='subject', lazy=True, cascade="all, delete-orphan")

    def get_criterion(self, name):
        for criterion in self.criteria:
            if criterion.name == name:
                return criterion
        return None

    def get_instructor_assignment(self, instructor_id):
        for assignment in self.instructors:
            if assignment.instructor_id == instructor_id:
                return assignment
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'subject_name': self.subject_name,
            'subject_code': self.subject_code,
            'department': self.department,
            'coordinator': {'id': self.coordinator.id, 'name': self.coordinator.name} if self.coordinator else None,
            'instructors': [a.to_dict() for a in self.instructors]
        }

    def __repr__(self):
        return f"<Subject {self.subject_code}: {self.subject_name}>"


class EvaluationCriterion(db.Model):
    """EvaluationCriterion model, e.g. MST or EST"""
    __tablename__ = 'evaluation_criterion'
    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    name = db.Column(db.String(50), nullable=False)
    total_marks = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    weightage = db.Column(db.Numeric(5, 2), nullable=False, default=100)
    position = db.Column(db.Integer, nullable=False, default=0)

    questions = db.relationship('Question', backref='criterion', lazy=True, cascade="all, delete-orphan",
                                order_by='Question.position')

    __table_args__ = (
        db.UniqueConstraint('subject_id', 'name', name='_subject_criterion_uc'),
    )

    def __repr__(self):
        return f"<EvaluationCriterion {self.name} for Subject {self.subject_id}>"


class Question(db.Model):
    """Question model"""
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    criterion_id = db.Column(db.Integer, db.ForeignKey('evaluation_criterion.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    number = db.Column(db.Integer, nullable=False)
    max_marks = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False, default=0)

    parts = db.relationship('QuestionPart', backref='question', lazy=True, cascade="all, delete-orphan",
                            order_by='QuestionPart.position')

    __table_args__ = (
        Index('idx_question_criterion_number', 'criterion_id', 'number'),
    )

    def __repr__(self):
        return f"<Question {self.number} for Criterion {self.criterion_id}>"


class QuestionPart(db.Model):
    """QuestionPart model for the sub-parts of a question"""
    __tablename__ = 'question_part'
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    number = db.Column(db.Integer, nullable=False)
    max_marks = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<QuestionPart {self.number} for Question {self.question_id}>"


class CourseLearningOutcome(db.Model):
    """CourseLearningOutcome model"""
    __tablename__ = 'course_learning_outcome'
    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    number = db.Column(db.Integer, nullable=False)
    statement = db.Column(db.Text, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('subject_id', 'number', name='_subject_clo_number_uc'),
    )

    def __repr__(self):
        return f"<CourseLearningOutcome CLO{self.number} for Subject {self.subject_id}>"


class CLOMapping(db.Model):
    """One (criteria, question, part) entry claimed by a CLO"""
    __tablename__ = 'clo_mapping'
    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    clo_number = db.Column(db.Integer, nullable=False)
    criteria = db.Column(db.String(50), nullable=False)
    question_no = db.Column(db.Integer, nullable=False)
    part_no = db.Column(db.Integer, nullable=True) # NULL maps the whole question

    __table_args__ = (
        Index('idx_clo_mapping_lookup', 'subject_id', 'criteria', 'question_no', 'part_no'),
    )

    def __repr__(self):
        part = f"_P{self.part_no}" if self.part_no is not None else ""
        return f"<CLOMapping CLO{self.clo_number} -> {self.criteria}_Q{self.question_no}{part}>"


class SubjectInstructor(db.Model):
    """Assignment of an instructor to a subject together with the students they mark"""
    __tablename__ = 'subject_instructor'
    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    instructor_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    created_at = db.Column(db.DateTime, default=datetime.now)

    students = db.relationship('InstructorStudent', backref='assignment', lazy=True, cascade="all, delete-orphan",
                               order_by='InstructorStudent.roll_no')

    __table_args__ = (
        db.UniqueConstraint('subject_id', 'instructor_id', name='_subject_instructor_uc'),
    )

    @property
    def roll_nos(self):
        return {s.roll_no for s in self.students}

    def to_dict(self):
        return {
            'instructor_id': self.instructor_id,
            'instructor_name': self.instructor.name if self.instructor else None,
            'students': [{'roll_no': s.roll_no} for s in self.students]
        }

    def __repr__(self):
        return f"<SubjectInstructor {self.instructor_id} for Subject {self.subject_id}>"


class InstructorStudent(db.Model):
    """A roll number tagged to an instructor for a subject"""
    __tablename__ = 'instructor_student'
    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey('subject_instructor.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    roll_no = db.Column(db.String(30), nullable=False, index=True)

    __table_args__ = (
        db.UniqueConstraint('assignment_id', 'roll_no', name='_assignment_roll_no_uc'),
    )

    def __repr__(self):
        return f"<InstructorStudent {self.roll_no}>"


class StudentMark(db.Model):
    """Marks submitted by one instructor for one student under one criterion"""
    __tablename__ = 'student_mark'
    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    roll_no = db.Column(db.String(30), nullable=False, index=True)
    instructor_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    eval_criteria = db.Column(db.String(50), nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict) # e.g. {"MST_Q1": "8", "MST_Q2_P1": "4"}
    clo_marks = db.Column(db.JSON, nullable=False, default=dict) # e.g. {"CLO1": 4.5}
    clo_totals = db.Column(db.JSON, nullable=False, default=dict) # e.g. {"CLO1": 6.0}
    total_marks = db.Column(db.Float, nullable=False, default=0.0)
    total_marks_weighted = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now)

    instructor = db.relationship('User', foreign_keys=[instructor_id])

    __table_args__ = (
        db.UniqueConstraint('subject_id', 'roll_no', 'instructor_id', 'eval_criteria', name='_student_mark_uc'),
        Index('idx_student_mark_subject_criteria', 'subject_id', 'eval_criteria'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'subject_id': self.subject_id,
            'roll_no': self.roll_no,
            'instructor_id': self.instructor_id,
            'eval_criteria': self.eval_criteria,
            'data': dict(self.data or {}),
            'clo_marks': dict(self.clo_marks or {}),
            'clo_totals': dict(self.clo_totals or {}),
            'total_marks': self.total_marks,
            'total_marks_weighted': self.total_marks_weighted,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f"<StudentMark {self.roll_no} {self.eval_criteria} by Instructor {self.instructor_id}>"


class Log(db.Model):
    """Log model"""
    __tablename__ = 'log'
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, index=True) # Indexed
    description = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.now, index=True) # Indexed

    def __repr__(self):
        return f"<Log {self.action} at {self.timestamp}>"
