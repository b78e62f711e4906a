"""
HTTP client for the proctoring ledger
"""

import logging

import requests

from services.errors import ProctoringError, TransportFailure

logger = logging.getLogger(__name__)


class LedgerRejected(ProctoringError):
    """The ledger refused the request (4xx); retrying will not help"""
    status_code = 400


class LedgerClient:

    def __init__(self, base_url, access_token, session_token, timeout=10.0, http=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update({
            'Authorization': f'Bearer {access_token}',
            'X-Session-Token': session_token,
        })

    def _request(self, method, path, payload=None, params=None):
        url = f"{self.base_url}/api/proctoring{path}"
        try:
            response = self.http.request(method, url, json=payload, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportFailure(f"{method} {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get('error') if isinstance(body, dict) else None

        if response.status_code >= 500:
            # 503 (session busy) included: the write did not happen and can be retried
            raise TransportFailure(message or f"{method} {path} returned {response.status_code}",
                                   status_code=response.status_code)
        if response.status_code >= 400:
            raise LedgerRejected(message or f"{method} {path} returned {response.status_code}",
                                 status_code=response.status_code)
        return body

    def init_session(self, attempt_id, webcam_enabled=False):
        return self._request('POST', '/init', {'attemptId': attempt_id, 'webcamEnabled': bool(webcam_enabled)})

    def report_violation(self, attempt_id, violation):
        """`violation` is a RecordedViolation payload (type, details, duration, timestamp, clientEventId)"""
        return self._request('POST', '/violation', {'attemptId': attempt_id, **violation})

    def save_snapshot(self, attempt_id, image):
        return self._request('POST', '/snapshot', {'attemptId': attempt_id, 'image': image})

    def end_session(self, attempt_id):
        return self._request('POST', '/end', {'attemptId': attempt_id})

    def get_report(self, attempt_id):
        return self._request('GET', f'/report/{attempt_id}')

    def close(self):
        self.http.close()
