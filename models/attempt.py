from extensions import db
from datetime import datetime

class Attempt(db.Model):
    """One candidate's sitting of a job's assessment"""
    __tablename__ = 'attempts'

    id = db.Column(db.Integer, primary_key=True)
    candidate_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id'), nullable=False, index=True)
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    submitted_at = db.Column(db.DateTime)
    score = db.Column(db.Float, default=0.0)

    # Proctoring fields
    integrity_score = db.Column(db.Integer, default=100)
    proctoring_enabled = db.Column(db.Boolean, default=False)
    integrity_violation = db.Column(db.Boolean, default=False)  # three-strike auto-submit

    candidate = db.relationship('User', foreign_keys=[candidate_id])

    __table_args__ = (
        db.Index('idx_attempt_candidate_job', 'candidate_id', 'job_id'),
    )

    def to_summary(self):
        return {
            'id': self.id,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'score': self.score
        }
