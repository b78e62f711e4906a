from flask import Blueprint, request, jsonify
from middleware.auth import require_session
from models.notification import Notification, unread_count_cache_key
from extensions import db, cache_get, cache_set, cache_delete
import logging

notifications_bp = Blueprint('notifications', __name__)
logger = logging.getLogger(__name__)


@notifications_bp.route('', methods=['GET'])
@require_session()
def get_notifications():
    """Get notifications for the current user, newest first"""
    try:
        user_id = request.current_user.id

        unread_only = request.args.get('unread_only', 'false').lower() == 'true'
        limit = max(1, min(request.args.get('limit', 50, type=int), 200))
        offset = max(0, request.args.get('offset', 0, type=int))

        query = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            query = query.filter_by(is_read=False)

        notifications = query.order_by(Notification.created_at.desc(), Notification.id.desc()) \
            .limit(limit).offset(offset).all()

        # Unread count is polled by dashboards; cache it briefly
        unread_count = cache_get(unread_count_cache_key(user_id))
        if unread_count is None:
            unread_count = Notification.query.filter_by(user_id=user_id, is_read=False).count()
            cache_set(unread_count_cache_key(user_id), unread_count, expire=10)

        return jsonify({
            'notifications': [n.to_dict() for n in notifications],
            'total': len(notifications),
            'unread_count': unread_count
        }), 200

    except Exception as e:
        logger.error(f"Get notifications error: {str(e)}")
        return jsonify({'error': 'Failed to get notifications'}), 500


@notifications_bp.route('/<int:notification_id>/read', methods=['PUT'])
@require_session()
def mark_as_read(notification_id):
    """Mark a notification as read"""
    try:
        user_id = request.current_user.id

        notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()

        if not notification:
            return jsonify({'error': 'Notification not found'}), 404

        if not notification.is_read:
            notification.mark_read()
            db.session.commit()
            cache_delete(unread_count_cache_key(user_id))

        return jsonify({
            'message': 'Notification marked as read',
            'notification': notification.to_dict()
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Mark as read error: {str(e)}")
        return jsonify({'error': 'Failed to update notification'}), 500
