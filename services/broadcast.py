"""
Live Broadcast Fan-out
Relays ledger events to Socket.IO rooms:
  attempt:<attempt_id>  joined by the candidate taking that attempt
  monitor:<job_id>      joined by the recruiter owning the job (or an admin)

Delivery is best-effort. The ledger is the source of truth and monitoring
views poll it, so a failed emit is logged and dropped.
"""

from datetime import datetime
from flask import request
from flask_socketio import join_room, leave_room
from flask_jwt_extended import decode_token
from extensions import db, socketio
from models.user import User
from models.job import Job
from models.attempt import Attempt
import logging
import threading

logger = logging.getLogger(__name__)

# sid -> {'user_id', 'role'}
_connections = {}
_connections_guard = threading.Lock()


def attempt_room(attempt_id):
    return f"attempt:{attempt_id}"


def monitor_room(job_id):
    return f"monitor:{job_id}"


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _get(model, value):
    pk = _as_int(value)
    return db.session.get(model, pk) if pk is not None else None


def _identity():
    with _connections_guard:
        return _connections.get(request.sid)


def _emit(event, payload, room):
    try:
        socketio.emit(event, payload, to=room)
    except Exception as e:
        logger.warning(f"Broadcast {event} to {room} failed: {e}")


def broadcast_violation(result):
    """Push an authoritative post-write state to monitors and to the candidate"""
    session = result.session
    violation = result.violation
    _emit('candidate-violation', {
        'candidateId': session.candidate_id,
        'attemptId': session.attempt_id,
        'violation': violation.to_dict() if violation else None,
        'integrityScore': session.integrity_score,
        'strikeCount': session.strike_count,
        'timestamp': datetime.utcnow().isoformat(),
    }, monitor_room(session.job_id))

    _emit('integrity-update', {
        'attemptId': session.attempt_id,
        'integrityScore': session.integrity_score,
        'strikeCount': session.strike_count,
        'autoSubmitted': session.auto_submitted,
        'attentionData': session.attention_data,
        'violationCount': len(session.violations),
        'clientEventId': result.client_event_id,
    }, attempt_room(session.attempt_id))

    if result.auto_submit:
        broadcast_auto_submit(session)


def broadcast_auto_submit(session):
    payload = {
        'candidateId': session.candidate_id,
        'attemptId': session.attempt_id,
        'reason': session.auto_submit_reason,
        'timestamp': datetime.utcnow().isoformat(),
    }
    _emit('candidate-auto-submitted', payload, monitor_room(session.job_id))
    _emit('auto-submitted', payload, attempt_room(session.attempt_id))


def broadcast_snapshot(session, snapshot):
    _emit('candidate-snapshot', {
        'candidateId': session.candidate_id,
        'attemptId': session.attempt_id,
        'frame': snapshot.image,
        'timestamp': snapshot.timestamp.isoformat(),
    }, monitor_room(session.job_id))


def broadcast_session_ended(session):
    _emit('candidate-session-ended', {
        'candidateId': session.candidate_id,
        'attemptId': session.attempt_id,
        'integrityScore': session.integrity_score,
        'strikeCount': session.strike_count,
        'sessionEnd': session.session_end.isoformat() if session.session_end else None,
    }, monitor_room(session.job_id))


@socketio.on('connect')
def on_connect(auth=None):
    token = auth.get('token') if isinstance(auth, dict) else None
    if not token:
        logger.info(f"Socket {request.sid} refused: authentication required")
        return False
    try:
        decoded = decode_token(token)
    except Exception as e:
        logger.info(f"Socket {request.sid} refused: invalid token ({e})")
        return False

    user = _get(User, decoded.get('sub'))
    if not user or not user.is_active:
        return False

    with _connections_guard:
        _connections[request.sid] = {'user_id': user.id, 'role': user.role}
    logger.info(f"Socket connected: {request.sid} (user: {user.id})")


@socketio.on('disconnect')
def on_disconnect(reason=None):
    with _connections_guard:
        _connections.pop(request.sid, None)
    logger.info(f"Socket disconnected: {request.sid}")


@socketio.on('join-assessment')
def on_join_assessment(attempt_id):
    identity = _identity()
    if not identity:
        return
    attempt = _get(Attempt, attempt_id)
    if not attempt or attempt.candidate_id != identity['user_id']:
        return
    join_room(attempt_room(attempt.id))
    logger.info(f"User {identity['user_id']} joined attempt room: {attempt.id}")


@socketio.on('join-monitoring')
def on_join_monitoring(job_id):
    # Unauthorized joins are ignored without a reply
    identity = _identity()
    if not identity or identity['role'] not in ('recruiter', 'admin'):
        return
    job = _get(Job, job_id)
    if not job:
        return
    if identity['role'] != 'admin' and job.user_id != identity['user_id']:
        return
    join_room(monitor_room(job.id))
    logger.info(f"Recruiter {identity['user_id']} monitoring job: {job.id}")


@socketio.on('leave-monitoring')
def on_leave_monitoring(job_id):
    job_id = _as_int(job_id)
    if job_id is not None and _identity():
        leave_room(monitor_room(job_id))
