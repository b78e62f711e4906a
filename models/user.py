from extensions import db
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
import secrets

ROLES = ('candidate', 'recruiter', 'admin')
MONITORING_ROLES = ('recruiter', 'admin')

class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100))
    company = db.Column(db.String(100))
    role = db.Column(db.String(20), default='candidate', nullable=False)  # candidate, recruiter, admin
    is_active = db.Column(db.Boolean, default=True)
    last_login = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    jobs = db.relationship('Job', backref='owner', lazy='dynamic', cascade='all, delete-orphan')
    sessions = db.relationship('UserSession', backref='user', lazy='dynamic', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def can_monitor(self):
        """Recruiters and admins may watch proctoring sessions"""
        return self.role in MONITORING_ROLES

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'company': self.company,
            'role': self.role,
            'last_login': self.last_login.isoformat() if self.last_login else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def to_summary(self):
        """Short form embedded in proctoring reports"""
        return {'id': self.id, 'name': self.name, 'email': self.email}


class UserSession(db.Model):
    __tablename__ = 'user_sessions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    session_token = db.Column(db.String(500), unique=True, nullable=False, index=True)
    device_info = db.Column(db.String(255))  # Browser, OS, device type
    ip_address = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, default=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    last_activity = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __init__(self, user_id, device_info=None, ip_address=None, expires_at=None):
        self.user_id = user_id
        self.session_token = secrets.token_urlsafe(64)
        self.device_info = device_info
        self.ip_address = ip_address
        self.is_active = True
        self.expires_at = expires_at or datetime.utcnow() + timedelta(days=1)

    def is_valid(self):
        """Check if session is still valid"""
        return self.is_active and self.expires_at > datetime.utcnow()

    def revoke(self):
        """Revoke this session"""
        self.is_active = False
