"""
Single-writer violation reporter
Delivers locally recorded violations to the ledger in order, from one
background thread. Transport failures are retried with capped exponential
backoff since a lost violation would corrupt the score; reports the ledger
rejects (4xx) are dropped from the local mirror. A report that finds no
proctoring session re-runs init and is retried.
"""

import logging
import queue
import threading
import time

from services.errors import TransportFailure
from proctor_client.api import LedgerRejected

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('integrityScore', 'strikeCount')


class ViolationReporter:

    _STOP = object()

    def __init__(self, api, attempt_id, engine, on_confirmed=None, on_session_started=None,
                 base_delay=0.5, max_delay=30.0, flush_attempts=3):
        self.api = api
        self.attempt_id = attempt_id
        self.engine = engine
        self.on_confirmed = on_confirmed
        self.on_session_started = on_session_started
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.flush_attempts = flush_attempts

        # Set once the ledger has a session for this attempt
        self.session_ready = False
        self.webcam_enabled = False

        self._queue = queue.Queue()
        self._stopping = threading.Event()
        self._submit_lock = threading.Lock()
        self._thread = None
        self.delivered = 0
        self.dropped = 0
        self.lost = 0

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f'violation-reporter-{self.attempt_id}', daemon=True)
        self._thread.start()

    def submit(self, violation):
        """Queue a violation; returns False once stop() has begun"""
        with self._submit_lock:
            if self._stopping.is_set():
                logger.warning(
                    f"Violation {violation.client_event_id} ({violation.type.value}) submitted after stop, not sent"
                )
                return False
            self._queue.put(violation)
            return True

    def stop(self, timeout=10.0):
        """Deliver what is queued (bounded retries), then stop the thread"""
        with self._submit_lock:
            self._stopping.set()
            self._queue.put(self._STOP)
        thread = self._thread
        if thread is None:
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning(f"Violation reporter for attempt {self.attempt_id} did not stop within {timeout}s")
        self._thread = None

    def backoff(self, attempt):
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def _run(self):
        while True:
            item = self._queue.get()
            if item is self._STOP:
                return
            try:
                self._deliver(item)
            except Exception:
                logger.exception(f"Delivery of violation {item.client_event_id} failed")

    def ensure_session(self):
        """Run ledger init unless a session is known to exist"""
        if self.session_ready:
            return
        self.api.init_session(self.attempt_id, webcam_enabled=self.webcam_enabled)
        self.session_ready = True
        logger.info(f"Proctoring session ready for attempt {self.attempt_id}")
        if self.on_session_started:
            self.on_session_started()

    def _wait(self, delay):
        if self._stopping.is_set():
            # Short pauses while flushing at shutdown
            time.sleep(min(delay, 0.5))
        else:
            self._stopping.wait(delay)

    def _deliver(self, violation):
        attempt = 0
        reinitialized = False
        while True:
            try:
                self.ensure_session()
                response = self.api.report_violation(self.attempt_id, violation.to_payload())
                missing = [f for f in REQUIRED_FIELDS if not isinstance(response, dict) or response.get(f) is None]
                if missing:
                    raise TransportFailure(f"Ledger response missing {', '.join(missing)}")
            except LedgerRejected as e:
                if e.status_code == 404 and self.session_ready and not reinitialized:
                    # The ledger has no session for this attempt; init again and resend
                    logger.warning(f"No proctoring session on the ledger for attempt {self.attempt_id}, re-running init")
                    self.session_ready = False
                    reinitialized = True
                    continue
                self.dropped += 1
                logger.warning(f"Ledger rejected {violation.type.value} ({e.status_code}): {e.message}")
                self.engine.discard(violation.client_event_id)
                return
            except TransportFailure as e:
                attempt += 1
                if self._stopping.is_set() and attempt >= self.flush_attempts:
                    self.lost += 1
                    logger.error(
                        f"Violation {violation.client_event_id} ({violation.type.value}) not delivered "
                        f"after {attempt} attempts at shutdown: {e.message}"
                    )
                    return
                delay = self.backoff(attempt - 1)
                logger.warning(f"Violation report failed ({e.message}), retrying in {delay:.1f}s")
                self._wait(delay)
                continue

            self.delivered += 1
            self.engine.confirm(
                violation.client_event_id,
                response['integrityScore'],
                response['strikeCount'],
                response.get('autoSubmitted', False),
                response.get('violationCount'),
            )
            if self.on_confirmed:
                try:
                    self.on_confirmed(violation, response)
                except Exception:
                    logger.exception("Violation confirmation handler failed")
            return
