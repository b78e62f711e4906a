"""
Proctoring Session Models
Authoritative ledger of one assessment attempt: violations, score, strikes,
audit snapshots and session start/end.
"""

from extensions import db
from datetime import datetime

def _iso(value):
    return value.isoformat() if value else None


class ProctoringSession(db.Model):
    __tablename__ = 'proctoring_sessions'

    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey('attempts.id'), nullable=False, unique=True)
    candidate_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id'), nullable=False, index=True)

    integrity_score = db.Column(db.Integer, nullable=False, default=100)  # 0-100
    strike_count = db.Column(db.Integer, nullable=False, default=0)  # 0-3
    auto_submitted = db.Column(db.Boolean, nullable=False, default=False)
    auto_submit_reason = db.Column(db.String(255))
    webcam_enabled = db.Column(db.Boolean, nullable=False, default=False)

    # Attention counters, derived from the violation log
    total_looking_away = db.Column(db.Float, nullable=False, default=0.0)  # seconds
    tab_switch_count = db.Column(db.Integer, nullable=False, default=0)
    copy_paste_count = db.Column(db.Integer, nullable=False, default=0)
    multiple_faces_count = db.Column(db.Integer, nullable=False, default=0)
    phone_detected_count = db.Column(db.Integer, nullable=False, default=0)

    session_start = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    session_end = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    violations = db.relationship(
        'ProctoringViolation', backref='session', lazy='select',
        order_by='ProctoringViolation.id', cascade='all, delete-orphan'
    )
    snapshots = db.relationship(
        'ProctoringSnapshot', backref='session', lazy='select',
        order_by='ProctoringSnapshot.id', cascade='all, delete-orphan'
    )
    attempt = db.relationship('Attempt', foreign_keys=[attempt_id])
    candidate = db.relationship('User', foreign_keys=[candidate_id])
    job = db.relationship('Job', foreign_keys=[job_id])

    __table_args__ = (
        db.Index('idx_proctoring_candidate_job', 'candidate_id', 'job_id'),
    )

    @property
    def attention_data(self):
        return {
            'totalLookingAway': self.total_looking_away or 0,
            'tabSwitchCount': self.tab_switch_count or 0,
            'copyPasteCount': self.copy_paste_count or 0,
            'multipleFacesCount': self.multiple_faces_count or 0,
            'phoneDetectedCount': self.phone_detected_count or 0,
        }

    def duration_seconds(self, now=None):
        """Elapsed session time; runs to `now` while the session is active"""
        end = self.session_end or now or datetime.utcnow()
        return max(0.0, (end - self.session_start).total_seconds())

    def to_dict(self, include_violations=True, include_snapshots=False):
        data = {
            'id': self.id,
            'attemptId': self.attempt_id,
            'candidateId': self.candidate_id,
            'jobId': self.job_id,
            'integrityScore': self.integrity_score,
            'strikeCount': self.strike_count,
            'autoSubmitted': self.auto_submitted,
            'autoSubmitReason': self.auto_submit_reason,
            'webcamEnabled': self.webcam_enabled,
            'attentionData': self.attention_data,
            'violationCount': len(self.violations),
            'snapshotCount': len(self.snapshots),
            'sessionStart': _iso(self.session_start),
            'sessionEnd': _iso(self.session_end),
            'isActive': self.is_active,
        }

        if include_violations:
            data['violations'] = [v.to_dict() for v in self.violations]
        if include_snapshots:
            data['frameSnapshots'] = [s.to_dict() for s in self.snapshots]

        return data


class ProctoringViolation(db.Model):
    __tablename__ = 'proctoring_violations'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('proctoring_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)  # see services.integrity_engine.ViolationType
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    details = db.Column(db.Text)
    duration = db.Column(db.Float, nullable=False, default=0.0)  # seconds, continuous conditions only
    penalty = db.Column(db.Integer, nullable=False, default=0)
    frame_snapshot = db.Column(db.Text)  # optional encoded image
    client_event_id = db.Column(db.String(64))  # idempotency key for retried reports
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('session_id', 'client_event_id', name='uq_violation_client_event'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'timestamp': _iso(self.timestamp),
            'details': self.details,
            'duration': self.duration,
            'penalty': self.penalty,
            'hasFrame': bool(self.frame_snapshot),
        }


class ProctoringSnapshot(db.Model):
    __tablename__ = 'proctoring_snapshots'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('proctoring_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    image = db.Column(db.Text, nullable=False)  # low-res JPEG data URL

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': _iso(self.timestamp),
            'image': self.image,
        }
