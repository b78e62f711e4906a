from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_socketio import SocketIO
from contextlib import contextmanager
from services.errors import LedgerBusy
import redis
import json
import logging
import threading

logger = logging.getLogger(__name__)

db = SQLAlchemy()
jwt = JWTManager()
socketio = SocketIO()

# Redis client
redis_client = None

# Process-local per-attempt locks, used when Redis is not configured.
# key -> [lock, holders and waiters]
_local_locks = {}
_local_locks_guard = threading.Lock()

def init_redis(app):
    """Initialize Redis connection"""
    global redis_client
    if not app.config.get('REDIS_ENABLED', True):
        redis_client = None
        logger.info("Redis disabled, using process-local session locks")
        return
    try:
        redis_client = redis.Redis(
            host=app.config['REDIS_HOST'],
            port=app.config['REDIS_PORT'],
            db=app.config['REDIS_DB'],
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        # Test connection
        redis_client.ping()
        logger.info("Redis connected successfully")
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}")
        logger.warning("Application will continue without caching and with process-local locks")
        redis_client = None

def cache_set(key, value, expire=300):
    """Set cache with JSON serialization"""
    if redis_client:
        try:
            redis_client.setex(key, expire, json.dumps(value))
            return True
        except Exception as e:
            logger.warning(f"Cache set error: {e}")
    return False

def cache_get(key):
    """Get cache with JSON deserialization"""
    if redis_client:
        try:
            data = redis_client.get(key)
            return json.loads(data) if data else None
        except Exception as e:
            logger.warning(f"Cache get error: {e}")
    return None

def cache_delete(key):
    """Delete cache key"""
    if redis_client:
        try:
            redis_client.delete(key)
            return True
        except Exception as e:
            logger.warning(f"Cache delete error: {e}")
    return False

def _acquire_local_entry(key):
    """Return the [lock, users] entry for key, counting the caller as a user"""
    with _local_locks_guard:
        entry = _local_locks.get(key)
        if entry is None:
            entry = [threading.Lock(), 0]
            _local_locks[key] = entry
        entry[1] += 1
        return entry

def _release_local_entry(key, entry):
    # Drop the entry once nobody holds or waits on it
    with _local_locks_guard:
        entry[1] -= 1
        if entry[1] == 0 and _local_locks.get(key) is entry:
            del _local_locks[key]

@contextmanager
def session_lock(attempt_id, timeout=10, wait=5):
    """
    Serialize ledger writes for one attempt.

    Uses a Redis lock when Redis is available so that several workers agree,
    otherwise a per-process lock. Locks are keyed by attempt, so different
    attempts proceed in parallel. Raises LedgerBusy if the lock cannot be
    acquired within `wait` seconds.
    """
    key = f"proctoring_lock:{attempt_id}"

    if redis_client:
        lock = redis_client.lock(key, timeout=timeout, blocking_timeout=wait)
        if not lock.acquire():
            raise LedgerBusy(f"Proctoring session {attempt_id} is busy, retry shortly")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                # Lock expired while held; the next writer recomputes from the full log
                logger.warning(f"Lock for attempt {attempt_id} expired before release: {e}")
        return

    entry = _acquire_local_entry(key)
    lock = entry[0]
    try:
        if not lock.acquire(timeout=wait):
            raise LedgerBusy(f"Proctoring session {attempt_id} is busy, retry shortly")
        try:
            yield
        finally:
            lock.release()
    finally:
        _release_local_entry(key, entry)
