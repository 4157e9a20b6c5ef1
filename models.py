from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, date, UTC
from flask_login import UserMixin
import uuid

db = SQLAlchemy()


def _uuid_str():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(UTC)


class CertificateStatus:
    PENDING = 'PENDING'
    ISSUED = 'ISSUED'
    REVOKED = 'REVOKED'
    EXPIRED = 'EXPIRED'

    ALL = (PENDING, ISSUED, REVOKED, EXPIRED)
    # Forward-only ordering; EXPIRED shares the terminal rank with REVOKED.
    RANK = {PENDING: 0, ISSUED: 1, REVOKED: 2, EXPIRED: 2}


class UserRole:
    ADMIN = 'ADMIN'
    INSTITUTION = 'INSTITUTION'
    USER = 'USER'

    ALL = (ADMIN, INSTITUTION, USER)


class LogAction:
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    ISSUE = 'ISSUE'
    REVOKE = 'REVOKE'
    VERIFY = 'VERIFY'
    DOWNLOAD = 'DOWNLOAD'
    LOGIN = 'LOGIN'
    LOGOUT = 'LOGOUT'
    ANCHOR = 'ANCHOR'


class LogCategory:
    CERTIFICATE = 'CERTIFICATE'
    VERIFICATION = 'VERIFICATION'
    AUTH = 'AUTH'
    ANCHOR = 'ANCHOR'


class LogStatus:
    SUCCESS = 'SUCCESS'
    FAILURE = 'FAILURE'
    INFO = 'INFO'
    WARNING = 'WARNING'


class User(UserMixin, db.Model):
    __tablename__ = 'user'

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=UserRole.USER)
    created_at = db.Column(db.DateTime, default=_utcnow)

    memberships = db.relationship('InstitutionUser', backref='user', lazy=True, cascade='all, delete-orphan')

    def get_id(self):
        return str(self.user_id)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def primary_institution_id(self):
        if self.memberships:
            return self.memberships[0].institution_id
        return None


class Institution(db.Model):
    __tablename__ = 'institution'

    institution_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(120))
    website = db.Column(db.String(255))
    # URL or data URL, used by the image renderer when no logo override is given
    logo = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=_utcnow)

    members = db.relationship('InstitutionUser', backref='institution', lazy=True, cascade='all, delete-orphan')
    certificates = db.relationship('Certificate', backref='institution', lazy=True)

    def getInfo(self):
        return {
            'institution_id': self.institution_id,
            'name': self.name,
            'email': self.email,
            'website': self.website,
        }


class InstitutionUser(db.Model):
    __tablename__ = 'institution_user'
    __table_args__ = (db.UniqueConstraint('user_id', 'institution_id', name='uq_institution_user'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    institution_id = db.Column(db.Integer, db.ForeignKey('institution.institution_id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='STAFF')


class StoredFile(db.Model):
    __tablename__ = 'stored_file'

    file_id = db.Column(db.String(36), primary_key=True, default=_uuid_str)
    name = db.Column(db.String(255), nullable=False)
    content_type = db.Column(db.String(100), nullable=False, default='application/octet-stream')
    size = db.Column(db.Integer, nullable=False)
    folder = db.Column(db.String(100), nullable=False, default='general')
    # set for institution-owned files such as saved design templates
    institution_id = db.Column(db.Integer, db.ForeignKey('institution.institution_id'), nullable=True)
    data = db.Column(db.LargeBinary, nullable=False)
    uploaded_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (db.Index('ix_stored_file_folder_institution', 'folder', 'institution_id'),)


class Certificate(db.Model):
    __tablename__ = 'certificate'

    id = db.Column(db.String(36), primary_key=True, default=_uuid_str)
    verification_id = db.Column(db.String(32), unique=True, nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    recipient_name = db.Column(db.String(255), nullable=False)
    recipient_email = db.Column(db.String(120), nullable=False)
    institution_id = db.Column(db.Integer, db.ForeignKey('institution.institution_id'), nullable=False, index=True)
    certificate_type = db.Column(db.String(100))
    status = db.Column(db.String(20), nullable=False, default=CertificateStatus.ISSUED)
    issue_date = db.Column(db.Date, nullable=False)
    expiry_date = db.Column(db.Date, nullable=True)

    # Integrity
    content_hash = db.Column(db.String(64), nullable=False, index=True)
    anchor_receipt = db.Column(db.String(130))
    anchor_network = db.Column(db.String(50))

    # Artifact: inline bytes for generated documents, file pointer for uploads
    artifact_kind = db.Column(db.String(20), nullable=False)
    artifact_content_type = db.Column(db.String(100), nullable=False)
    artifact_data = db.Column(db.LargeBinary, nullable=True)
    artifact_file_id = db.Column(db.String(36), db.ForeignKey('stored_file.file_id'), nullable=True)
    design_data = db.Column(db.Text)

    issued_by_user_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow)

    issued_by = db.relationship('User', foreign_keys=[issued_by_user_id])
    artifact_file = db.relationship('StoredFile', foreign_keys=[artifact_file_id])

    def effective_status(self, today=None):
        """Status as seen by verifiers; ISSUED past its expiry date reads as EXPIRED."""
        today = today or date.today()
        if self.status == CertificateStatus.ISSUED and self.expiry_date and today > self.expiry_date:
            return CertificateStatus.EXPIRED
        return self.status

    def artifact_bytes(self):
        if self.artifact_data is not None:
            return self.artifact_data
        if self.artifact_file is not None:
            return self.artifact_file.data
        return None


class ActivityLog(db.Model):
    __tablename__ = 'activity_log'

    log_id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(30), nullable=False)
    category = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=LogStatus.SUCCESS)
    details = db.Column(db.Text)
    meta = db.Column(db.JSON)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    # Plain columns, not FKs: log rows outlive what they describe
    user_id = db.Column(db.Integer, index=True)
    institution_id = db.Column(db.Integer, index=True)
    certificate_id = db.Column(db.String(36), index=True)
    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.log_id,
            'action': self.action,
            'category': self.category,
            'status': self.status,
            'details': self.details,
            'metadata': self.meta,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'user_id': self.user_id,
            'institution_id': self.institution_id,
            'certificate_id': self.certificate_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
