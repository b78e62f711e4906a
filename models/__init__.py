from models.user import User, UserSession
from models.job import Job
from models.attempt import Attempt
from models.proctoring_session import ProctoringSession, ProctoringViolation, ProctoringSnapshot
from models.audit_log import AuditLog
from models.notification import Notification

__all__ = [
    'User', 'UserSession', 'Job', 'Attempt',
    'ProctoringSession', 'ProctoringViolation', 'ProctoringSnapshot',
    'AuditLog', 'Notification'
]
