"""
Session Ledger
Server-authoritative log of proctoring sessions. Every write is serialized
per attempt and recomputes score, strikes and attention counters from the
full violation log; client-submitted totals are never trusted.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.exc import IntegrityError
from extensions import db, session_lock, cache_get, cache_set, cache_delete
from models.attempt import Attempt
from models.job import Job
from models.audit_log import AuditLog
from models.notification import Notification, unread_count_cache_key
from models.proctoring_session import ProctoringSession, ProctoringViolation, ProctoringSnapshot
from services.errors import NotFound, Forbidden, ValidationError
from services.integrity_engine import (
    ViolationType, VIOLATION_PENALTIES, MAX_STRIKES, AUTO_SUBMIT_REASON,
    parse_violation_type, recompute,
)
from services.heatmap import build_heatmap, attention_summary, DEFAULT_BUCKETS
from utils.monitoring import performance_monitor
import json
import logging

logger = logging.getLogger(__name__)

DEFAULT_LOOKING_AWAY_SECONDS = 5


def job_sessions_cache_key(job_id):
    return f"proctoring_sessions:job:{job_id}"


@dataclass
class ViolationResult:
    session: ProctoringSession
    penalty: int
    auto_submit: bool
    violation: ProctoringViolation = None
    duplicate: bool = False
    client_event_id: str = None

    def to_dict(self):
        return {
            'integrityScore': self.session.integrity_score,
            'strikeCount': self.session.strike_count,
            'autoSubmit': self.auto_submit,
            'autoSubmitted': self.session.auto_submitted,
            'penalty': self.penalty,
            'violationCount': len(self.session.violations),
            'clientEventId': self.client_event_id,
            'duplicate': self.duplicate,
        }


def _parse_timestamp(value):
    """Client clock timestamp (ISO 8601) as naive UTC; server time when absent or unreadable"""
    if not value:
        return datetime.utcnow()
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Unreadable violation timestamp {value!r}, using server time")
        return datetime.utcnow()
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class SessionLedger:

    def __init__(self, snapshot_capacity=60, max_snapshot_bytes=256 * 1024,
                 lock_timeout=10, lock_wait=5, list_cache_ttl=5):
        self.snapshot_capacity = snapshot_capacity
        self.max_snapshot_bytes = max_snapshot_bytes
        self.lock_timeout = lock_timeout
        self.lock_wait = lock_wait
        self.list_cache_ttl = list_cache_ttl

    @classmethod
    def from_config(cls, config):
        return cls(
            snapshot_capacity=config.get('PROCTORING_SNAPSHOT_CAPACITY', 60),
            max_snapshot_bytes=config.get('PROCTORING_MAX_SNAPSHOT_BYTES', 256 * 1024),
            lock_timeout=config.get('PROCTORING_LOCK_TIMEOUT', 10),
            lock_wait=config.get('PROCTORING_LOCK_WAIT', 5),
            list_cache_ttl=config.get('PROCTORING_LIST_CACHE_TTL', 5),
        )

    def _lock(self, attempt_id):
        return session_lock(attempt_id, timeout=self.lock_timeout, wait=self.lock_wait)

    # ------------------------------------------------------------------
    # Lookups and access rules
    # ------------------------------------------------------------------

    def _load_session(self, attempt_id):
        session = ProctoringSession.query.populate_existing().filter_by(attempt_id=attempt_id).first()
        if not session:
            raise NotFound('Proctoring session not found')
        return session

    def _load_owned_session(self, caller, attempt_id):
        session = self._load_session(attempt_id)
        if session.candidate_id != caller.id:
            raise Forbidden('Not authorized')
        return session

    def _check_read_access(self, caller, session):
        if session.candidate_id == caller.id:
            return
        if caller.can_monitor and session.job and session.job.is_owned_by(caller):
            return
        raise Forbidden('Not authorized')

    def _check_snapshot_size(self, image, field='image'):
        if len(image.encode('utf-8')) > self.max_snapshot_bytes:
            raise ValidationError(f'{field} exceeds {self.max_snapshot_bytes} bytes')

    # ------------------------------------------------------------------
    # Candidate writes
    # ------------------------------------------------------------------

    def init_session(self, caller, attempt_id, webcam_enabled=False, request=None):
        """Create the session for an attempt, or return the existing one. Returns (session, created)"""
        attempt = db.session.get(Attempt, attempt_id)
        if not attempt:
            raise NotFound('Attempt not found')
        if attempt.candidate_id != caller.id:
            raise Forbidden('Not authorized')

        with self._lock(attempt_id):
            existing = ProctoringSession.query.filter_by(attempt_id=attempt_id).first()
            if existing:
                return existing, False

            session = ProctoringSession(
                attempt_id=attempt_id,
                candidate_id=caller.id,
                job_id=attempt.job_id,
                webcam_enabled=bool(webcam_enabled),
                session_start=datetime.utcnow(),
            )
            db.session.add(session)
            attempt.proctoring_enabled = True
            AuditLog.record(caller.id, 'proctoring_init', 'success', attempt_id=attempt_id,
                            request=request, details=json.dumps({'webcam_enabled': bool(webcam_enabled)}))
            try:
                db.session.commit()
            except IntegrityError:
                # Another worker created it first
                db.session.rollback()
                return ProctoringSession.query.filter_by(attempt_id=attempt_id).first(), False

        cache_delete(job_sessions_cache_key(session.job_id))
        logger.info(f"Proctoring session started for attempt {attempt_id} (webcam={bool(webcam_enabled)})")
        return session, True

    def report_violation(self, caller, attempt_id, violation_type, details=None, duration=0,
                         timestamp=None, client_event_id=None, frame_snapshot=None, request=None):
        """Append one violation and recompute the authoritative state from the full log"""
        vtype = parse_violation_type(violation_type)
        try:
            duration = float(duration or 0)
        except (TypeError, ValueError):
            raise ValidationError('duration must be a number of seconds') from None
        if duration < 0:
            raise ValidationError('duration must not be negative')
        if frame_snapshot:
            self._check_snapshot_size(frame_snapshot, 'frameSnapshot')

        with self._lock(attempt_id):
            session = self._load_owned_session(caller, attempt_id)

            if client_event_id:
                seen = ProctoringViolation.query.filter_by(
                    session_id=session.id, client_event_id=client_event_id
                ).first()
                if seen:
                    logger.info(f"Duplicate violation report {client_event_id} for attempt {attempt_id}")
                    performance_monitor.record_event('duplicate_reports')
                    return ViolationResult(session=session, penalty=seen.penalty, auto_submit=False,
                                           violation=seen, duplicate=True, client_event_id=client_event_id)

            violation = ProctoringViolation(
                type=vtype.value,
                details=details,
                duration=duration,
                penalty=VIOLATION_PENALTIES[vtype],
                timestamp=_parse_timestamp(timestamp),
                frame_snapshot=frame_snapshot or None,
                client_event_id=client_event_id,
            )
            session.violations.append(violation)
            db.session.flush()

            log = db.session.query(ProctoringViolation.type, ProctoringViolation.duration) \
                .filter_by(session_id=session.id) \
                .order_by(ProctoringViolation.id).all()

            state = recompute(row.type for row in log)
            session.integrity_score = state.score
            session.strike_count = state.strikes
            self._apply_attention(session, log)
            session.attempt.integrity_score = state.score

            auto_submit = state.strikes >= MAX_STRIKES and not session.auto_submitted
            if auto_submit:
                self._mark_auto_submitted(session, request)
            elif session.auto_submitted:
                logger.info(f"Violation {vtype.value} logged after auto-submit for attempt {attempt_id}")

            db.session.commit()

        performance_monitor.record_event('violations_recorded')
        cache_delete(job_sessions_cache_key(session.job_id))
        if auto_submit:
            performance_monitor.record_event('auto_submits')
            if session.job:
                cache_delete(unread_count_cache_key(session.job.user_id))
        logger.warning(
            f"[ATTEMPT {attempt_id}] Violation: {vtype.value} | Penalty: {violation.penalty} | "
            f"Score: {session.integrity_score} | Strikes: {session.strike_count}"
        )
        return ViolationResult(session=session, penalty=violation.penalty, auto_submit=auto_submit,
                               violation=violation, client_event_id=client_event_id)

    def _apply_attention(self, session, log):
        counts = {}
        looking_away = 0.0
        for row in log:
            counts[row.type] = counts.get(row.type, 0) + 1
            if row.type == ViolationType.LOOKING_AWAY.value:
                looking_away += row.duration or DEFAULT_LOOKING_AWAY_SECONDS

        session.total_looking_away = looking_away
        session.tab_switch_count = counts.get(ViolationType.TAB_SWITCH.value, 0)
        session.copy_paste_count = counts.get(ViolationType.COPY_PASTE.value, 0)
        session.multiple_faces_count = counts.get(ViolationType.MULTIPLE_FACES.value, 0)
        session.phone_detected_count = counts.get(ViolationType.PHONE_DETECTED.value, 0)

    def _mark_auto_submitted(self, session, request=None):
        session.auto_submitted = True
        session.auto_submit_reason = AUTO_SUBMIT_REASON
        session.attempt.integrity_violation = True

        AuditLog.record(session.candidate_id, 'proctoring_auto_submit', 'warning',
                        attempt_id=session.attempt_id, request=request,
                        details=json.dumps({'reason': AUTO_SUBMIT_REASON, 'strikes': session.strike_count}))

        job = session.job
        if job:
            candidate_name = session.candidate.name if session.candidate else f"Candidate {session.candidate_id}"
            db.session.add(Notification(
                user_id=job.user_id,
                type='proctoring_auto_submit',
                title='Assessment auto-submitted',
                message=f"{candidate_name}'s assessment for {job.title} was auto-submitted: {AUTO_SUBMIT_REASON}.",
                related_type='attempt',
                related_id=session.attempt_id,
                action_url=f"/dashboard/proctoring/{session.attempt_id}"
            ))

        logger.critical(f"[CRITICAL] Attempt {session.attempt_id} auto-submitted: {AUTO_SUBMIT_REASON}")

    def save_snapshot(self, caller, attempt_id, image):
        """Append to the bounded snapshot buffer, evicting the oldest entries first"""
        if not image or not isinstance(image, str):
            raise ValidationError('image is required')
        self._check_snapshot_size(image)

        with self._lock(attempt_id):
            session = self._load_owned_session(caller, attempt_id)

            snapshot = ProctoringSnapshot(timestamp=datetime.utcnow(), image=image)
            session.snapshots.append(snapshot)

            overflow = len(session.snapshots) - self.snapshot_capacity
            if overflow > 0:
                for oldest in list(session.snapshots[:overflow]):
                    session.snapshots.remove(oldest)

            db.session.commit()

        return session, snapshot

    def end_session(self, caller, attempt_id, request=None):
        """Close the session; ending an already-ended session changes nothing. Returns (session, ended_now)"""
        with self._lock(attempt_id):
            session = self._load_owned_session(caller, attempt_id)
            if not session.is_active:
                return session, False

            session.session_end = datetime.utcnow()
            session.is_active = False
            AuditLog.record(caller.id, 'proctoring_end', 'success', attempt_id=attempt_id, request=request,
                            details=json.dumps({'violations': len(session.violations),
                                                'integrity_score': session.integrity_score}))
            db.session.commit()

        cache_delete(job_sessions_cache_key(session.job_id))
        logger.info(f"Proctoring session ended for attempt {attempt_id}")
        return session, True

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    def get_report(self, caller, attempt_id):
        session = ProctoringSession.query.filter_by(attempt_id=attempt_id).first()
        if not session:
            raise NotFound('Proctoring report not found')
        self._check_read_access(caller, session)
        return session

    def _load_monitored_job(self, caller, job_id):
        job = db.session.get(Job, job_id)
        if not job:
            raise NotFound('Job not found')
        if not caller.can_monitor or not job.is_owned_by(caller):
            raise Forbidden('Not authorized')
        return job

    def get_job_sessions(self, caller, job_id):
        """All sessions for a job, active first, then newest first"""
        self._load_monitored_job(caller, job_id)

        cache_key = job_sessions_cache_key(job_id)
        cached = cache_get(cache_key)
        if cached is not None:
            return cached

        sessions = ProctoringSession.query.filter_by(job_id=job_id).order_by(
            ProctoringSession.is_active.desc(),
            ProctoringSession.session_start.desc()
        ).all()
        data = [serialize_listing(s) for s in sessions]

        cache_set(cache_key, data, expire=self.list_cache_ttl)
        return data

    def job_logs_query(self, caller, job_id):
        """Query of all sessions for a job, newest first, for paginated listings"""
        self._load_monitored_job(caller, job_id)
        return ProctoringSession.query.filter_by(job_id=job_id).order_by(ProctoringSession.session_start.desc())

    def get_heatmap(self, caller, attempt_id, bucket_count=DEFAULT_BUCKETS, now=None):
        session = self.get_report(caller, attempt_id)
        total = session.duration_seconds(now)
        heatmap = build_heatmap(session.violations, total, bucket_count)

        data = heatmap.to_dict()
        data['attemptId'] = attempt_id
        data['attention'] = attention_summary(session.total_looking_away, total)
        data['integrityScore'] = session.integrity_score
        return data


def serialize_listing(session):
    """Monitoring dashboard row: session without the violation and snapshot bodies"""
    data = session.to_dict(include_violations=False)
    data['candidate'] = session.candidate.to_summary() if session.candidate else None
    data['attempt'] = session.attempt.to_summary() if session.attempt else None
    return data


def serialize_report(session):
    data = session.to_dict(include_violations=True, include_snapshots=True)
    data['candidate'] = session.candidate.to_summary() if session.candidate else None
    data['job'] = session.job.to_summary() if session.job else None
    return data
