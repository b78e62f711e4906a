from extensions import db
from datetime import datetime

class Job(db.Model):
    """Read-only view of a job posting; postings are managed by the hiring platform"""
    __tablename__ = 'jobs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)  # owning recruiter
    title = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), default='active')  # active, closed, draft
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    attempts = db.relationship('Attempt', backref='job', lazy='dynamic', cascade='all, delete-orphan')

    def is_owned_by(self, user):
        return user is not None and (user.is_admin or self.user_id == user.id)

    def to_summary(self):
        return {'id': self.id, 'title': self.title}
