from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from sitrack import db

EMAIL_DOMAIN = 'sitrack.gov.id'


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Profile(db.Model, UserMixin):
    __tablename__ = 'profiles'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)  # username, huruf dan angka saja
    full_name = db.Column(db.String(100), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='Staff')  # Admin, TU, Koordinator, Staff
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)
    last_login = db.Column(db.DateTime, nullable=True)

    reports = db.relationship('Report', backref='creator', lazy=True,
                              foreign_keys='Report.created_by')
    assignments = db.relationship('TaskAssignment', backref='staff', lazy=True,
                                  foreign_keys='TaskAssignment.staff_id')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        return self.full_name or self.name

    @property
    def email(self):
        return f"{self.name.lower().replace(' ', '.')}@{EMAIL_DOMAIN}"

    def __repr__(self):
        return f'<Profile {self.name} ({self.role})>'


class Report(db.Model):
    __tablename__ = 'reports'
    id = db.Column(db.Integer, primary_key=True)
    no_surat = db.Column(db.String(100), unique=True, nullable=False)
    hal = db.Column(db.Text, nullable=False)
    layanan = db.Column(db.String(100), nullable=False)
    dari = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(30), nullable=False, default='draft')
    created_by = db.Column(db.Integer, db.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True)
    current_holder = db.Column(db.Integer, db.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True)
    document_verification = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)

    holder = db.relationship('Profile', foreign_keys=[current_holder])
    task_assignments = db.relationship('TaskAssignment', backref='report', lazy=True,
                                       cascade='all, delete-orphan',
                                       order_by='TaskAssignment.id')
    workflow_history = db.relationship('WorkflowHistory', backref='report', lazy=True,
                                       cascade='all, delete-orphan',
                                       order_by='WorkflowHistory.created_at, WorkflowHistory.id')
    attachments = db.relationship('FileAttachment', backref='report', lazy=True,
                                  cascade='all, delete-orphan',
                                  order_by='FileAttachment.created_at')

    def __repr__(self):
        return f'<Report {self.no_surat} [{self.status}]>'


class TaskAssignment(db.Model):
    __tablename__ = 'task_assignments'
    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey('reports.id'), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    coordinator_id = db.Column(db.Integer, db.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True)
    todo_list = db.Column(db.JSON, nullable=False, default=list)
    completed_tasks = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    revision_notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=False, default='in-progress')  # in-progress, revision-required, completed
    progress = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    coordinator = db.relationship('Profile', foreign_keys=[coordinator_id])

    @property
    def all_todos_done(self):
        return all(item in (self.completed_tasks or []) for item in (self.todo_list or []))


class WorkflowHistory(db.Model):
    __tablename__ = 'workflow_history'
    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey('reports.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True)
    action = db.Column(db.String(150), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship('Profile')

    @property
    def actor_name(self):
        return self.user.display_name if self.user else 'Sistem'


class FileAttachment(db.Model):
    __tablename__ = 'file_attachments'
    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey('reports.id'), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    stored_name = db.Column(db.String(255), unique=True, nullable=False)
    mime_type = db.Column(db.String(100), nullable=True)
    uploaded_by = db.Column(db.Integer, db.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    uploader = db.relationship('Profile')

    @property
    def uploader_name(self):
        return self.uploader.display_name if self.uploader else 'Sistem'
