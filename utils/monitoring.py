"""
Logging setup and request logging middleware
"""
from flask import request, g
import logging
import time
import json
import threading

logger = logging.getLogger(__name__)

# Fields never written to logs; images are large and tokens are secrets
REDACTED_FIELDS = {'password', 'token', 'secret', 'image', 'frameSnapshot'}

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def configure_logging(app):
    """Configure root logging once from LOG_LEVEL"""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
    # Socket.IO/engine.io are chatty at INFO
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)


class PerformanceMonitor:
    """Track request performance and ledger activity"""

    def __init__(self):
        self._lock = threading.Lock()
        self.metrics = {
            'total_requests': 0,
            'slow_requests': 0,
            'failed_requests': 0,
            'endpoint_stats': {}
        }
        # violations_recorded, duplicate_reports, auto_submits, ledger_busy
        self.ledger_events = {}

    def record_event(self, name: str):
        with self._lock:
            self.ledger_events[name] = self.ledger_events.get(name, 0) + 1

    def record_request(self, endpoint: str, duration: float, status_code: int):
        """Record request metrics"""
        with self._lock:
            self.metrics['total_requests'] += 1

            stats = self.metrics['endpoint_stats'].setdefault(endpoint, {
                'count': 0,
                'total_time': 0,
                'avg_time': 0,
                'slow_count': 0
            })
            stats['count'] += 1
            stats['total_time'] += duration
            stats['avg_time'] = stats['total_time'] / stats['count']

            # Track slow requests (> 1 second)
            if duration > 1.0:
                self.metrics['slow_requests'] += 1
                stats['slow_count'] += 1

            if status_code >= 400:
                self.metrics['failed_requests'] += 1

    def get_stats(self):
        """Get current metrics"""
        with self._lock:
            return {
                'total_requests': self.metrics['total_requests'],
                'slow_requests': self.metrics['slow_requests'],
                'failed_requests': self.metrics['failed_requests'],
                'ledger': dict(self.ledger_events),
            }


# Global monitor instance
performance_monitor = PerformanceMonitor()


def _safe_body(body):
    if not isinstance(body, dict):
        return body
    return {k: '***' if k in REDACTED_FIELDS else v for k, v in body.items()}


def request_logger_middleware(app):
    """
    Middleware to log all requests
    """
    @app.before_request
    def before_request():
        g.start_time = time.time()

        logger.info(
            f"Incoming: {request.method} {request.path} | "
            f"IP: {request.remote_addr}"
        )

        # Log request body for POST/PUT (excluding sensitive and bulky data)
        if request.method in ['POST', 'PUT', 'PATCH'] and request.is_json:
            body = request.get_json(silent=True)
            logger.debug(f"Request body: {json.dumps(_safe_body(body))}")

    @app.after_request
    def after_request(response):
        if hasattr(g, 'start_time'):
            duration = time.time() - g.start_time

            logger.info(
                f"Response: {request.method} {request.path} | "
                f"Status: {response.status_code} | "
                f"Duration: {duration:.3f}s"
            )

            # Add performance header
            response.headers['X-Response-Time'] = f"{duration:.3f}s"

            performance_monitor.record_request(
                endpoint=request.endpoint or request.path,
                duration=duration,
                status_code=response.status_code
            )

            if duration > 1.0:
                logger.warning(
                    f"SLOW REQUEST: {request.method} {request.path} took {duration:.3f}s"
                )

        return response
