from extensions import db
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey('attempts.id'), nullable=True, index=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)  # proctoring_init, proctoring_auto_submit, proctoring_end
    ip_address = db.Column(db.String(50))
    user_agent = db.Column(db.String(255))
    status = db.Column(db.String(20))  # success, failure, warning
    details = db.Column(db.Text)  # JSON string with additional details
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'attempt_id': self.attempt_id,
            'event_type': self.event_type,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'status': self.status,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    @staticmethod
    def record(user_id, event_type, status, attempt_id=None, request=None, details=None):
        """
        Add an audit entry to the current unit of work.

        The caller commits; the entry lands atomically with the change it
        describes.
        """
        log = AuditLog(
            user_id=user_id,
            attempt_id=attempt_id,
            event_type=event_type,
            ip_address=request.remote_addr if request else None,
            user_agent=request.headers.get('User-Agent', 'Unknown') if request else None,
            status=status,
            details=details
        )
        db.session.add(log)
        logger.info(f"Audit: {event_type} ({status}) user={user_id} attempt={attempt_id}")
        return log
