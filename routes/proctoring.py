"""
Proctoring Routes
Candidate writes to the session ledger and recruiter read projections
"""

from flask import Blueprint, request, jsonify, current_app
from middleware.auth import require_session, require_role
from extensions import db
from services.errors import LedgerBusy, ProctoringError, ValidationError
from services.session_ledger import SessionLedger, serialize_listing, serialize_report
from services import broadcast
from utils.pagination import paginate, paginate_response
from utils.monitoring import performance_monitor
import logging

logger = logging.getLogger(__name__)

proctoring_bp = Blueprint('proctoring', __name__)


def _ledger():
    return SessionLedger.from_config(current_app.config)


def _attempt_id(data):
    try:
        return int(data.get('attemptId'))
    except (TypeError, ValueError):
        raise ValidationError('attemptId is required') from None


def _error_response(error):
    if isinstance(error, LedgerBusy):
        logger.warning(f"Ledger busy: {error.message}")
        performance_monitor.record_event('ledger_busy')
    return jsonify(error.to_dict()), error.status_code


# Candidate endpoints

@proctoring_bp.route('/init', methods=['POST'])
@require_session()
@require_role('candidate')
def init_proctoring():
    """Start (or resume) proctoring for an attempt"""
    try:
        data = request.get_json(silent=True) or {}
        attempt_id = _attempt_id(data)

        session, created = _ledger().init_session(
            request.current_user, attempt_id,
            webcam_enabled=bool(data.get('webcamEnabled', False)),
            request=request
        )

        return jsonify({'session': session.to_dict()}), 201 if created else 200

    except ProctoringError as e:
        db.session.rollback()
        return _error_response(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Init proctoring error: {e}")
        return jsonify({'error': 'Failed to start proctoring session'}), 500


@proctoring_bp.route('/violation', methods=['POST'])
@require_session()
@require_role('candidate')
def log_violation():
    """
    Record a violation and return the authoritative post-update state.
    Only type/details/duration are taken from the client; score and strikes
    are recomputed from the full log.
    """
    try:
        data = request.get_json(silent=True) or {}
        attempt_id = _attempt_id(data)
        if not data.get('type'):
            raise ValidationError('type is required')

        result = _ledger().report_violation(
            request.current_user, attempt_id,
            violation_type=data.get('type'),
            details=data.get('details'),
            duration=data.get('duration') or 0,
            timestamp=data.get('timestamp'),
            client_event_id=data.get('clientEventId'),
            frame_snapshot=data.get('frameSnapshot'),
            request=request
        )

        if not result.duplicate:
            broadcast.broadcast_violation(result)

        return jsonify(result.to_dict()), 200

    except ProctoringError as e:
        db.session.rollback()
        return _error_response(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Log violation error: {e}")
        return jsonify({'error': 'Failed to log violation'}), 500


@proctoring_bp.route('/snapshot', methods=['POST'])
@require_session()
@require_role('candidate')
def save_snapshot():
    """Periodic audit frame, kept in a bounded buffer"""
    try:
        data = request.get_json(silent=True) or {}
        attempt_id = _attempt_id(data)

        session, snapshot = _ledger().save_snapshot(request.current_user, attempt_id, data.get('image'))
        broadcast.broadcast_snapshot(session, snapshot)

        return jsonify({
            'message': 'Snapshot saved',
            'snapshotCount': len(session.snapshots)
        }), 200

    except ProctoringError as e:
        db.session.rollback()
        return _error_response(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Save snapshot error: {e}")
        return jsonify({'error': 'Failed to save snapshot'}), 500


@proctoring_bp.route('/end', methods=['POST'])
@require_session()
@require_role('candidate')
def end_proctoring():
    try:
        data = request.get_json(silent=True) or {}
        attempt_id = _attempt_id(data)

        session, ended_now = _ledger().end_session(request.current_user, attempt_id, request=request)
        if ended_now:
            broadcast.broadcast_session_ended(session)

        return jsonify({
            'message': 'Proctoring session ended' if ended_now else 'Proctoring session already ended',
            'session': session.to_dict(include_violations=False)
        }), 200

    except ProctoringError as e:
        db.session.rollback()
        return _error_response(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"End proctoring error: {e}")
        return jsonify({'error': 'Failed to end proctoring session'}), 500


# Read endpoints

@proctoring_bp.route('/report/<int:attempt_id>', methods=['GET'])
@require_session()
def get_proctoring_report(attempt_id):
    """
    Full session for audit. Recruiters see sessions of their own jobs;
    a candidate sees only their own session.
    """
    try:
        session = _ledger().get_report(request.current_user, attempt_id)
        return jsonify({'session': serialize_report(session)}), 200

    except ProctoringError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Get proctoring report error: {e}")
        return jsonify({'error': 'Failed to get proctoring report'}), 500


@proctoring_bp.route('/heatmap/<int:attempt_id>', methods=['GET'])
@require_session()
def get_heatmap(attempt_id):
    try:
        buckets = request.args.get('buckets', current_app.config.get('PROCTORING_HEATMAP_BUCKETS', 60), type=int)
        if buckets is None or buckets <= 0 or buckets > 1440:
            raise ValidationError('buckets must be between 1 and 1440')

        data = _ledger().get_heatmap(request.current_user, attempt_id, buckets)
        return jsonify(data), 200

    except ProctoringError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Get heat map error: {e}")
        return jsonify({'error': 'Failed to build heat map'}), 500


@proctoring_bp.route('/active/<int:job_id>', methods=['GET'])
@require_session()
@require_role('recruiter', 'admin')
def get_active_sessions(job_id):
    """All sessions for a job (active first) for the monitoring dashboard"""
    try:
        sessions = _ledger().get_job_sessions(request.current_user, job_id)
        return jsonify({
            'sessions': sessions,
            'total': len(sessions),
            'pollInterval': current_app.config.get('PROCTORING_MONITOR_POLL_SECONDS', 15)
        }), 200

    except ProctoringError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Get active sessions error: {e}")
        return jsonify({'error': 'Failed to get proctoring sessions'}), 500


@proctoring_bp.route('/logs/<int:job_id>', methods=['GET'])
@require_session()
@require_role('recruiter', 'admin')
def get_job_proctoring_logs(job_id):
    try:
        query = _ledger().job_logs_query(request.current_user, job_id)
        result = paginate(query)
        return jsonify(paginate_response(result, serializer=serialize_listing)), 200

    except ProctoringError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Get proctoring logs error: {e}")
        return jsonify({'error': 'Failed to get proctoring logs'}), 500
