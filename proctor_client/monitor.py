"""
ProctoringMonitor
Client-side orchestrator for one assessment attempt: camera, detector,
tamper signals, the local integrity mirror, the ledger reporter and the
live socket. Degrades to tamper-signal-only proctoring when the camera or
the detection model is unavailable, and always releases the camera on stop.
"""

from dataclasses import dataclass, field
from typing import List
import logging
import threading
import time

from services.errors import DeviceUnavailable, ProctoringError
from services.integrity_engine import (
    IntegrityEngine, LookAwayTracker, ViolationType,
    AUTO_SUBMIT_GRACE_SECONDS, LOOKING_AWAY_THRESHOLD,
)
from proctor_client.camera import encode_snapshot
from proctor_client.detection import DetectionAdapter
from proctor_client.reporter import ViolationReporter
from proctor_client.signals import SignalMonitor

logger = logging.getLogger(__name__)

DETECTION_INTERVAL = 3.0
SNAPSHOT_INTERVAL = 30.0


@dataclass
class MonitorStatus:
    webcam_active: bool = False
    model_loaded: bool = False
    ledger_connected: bool = False
    reasons: List[str] = field(default_factory=list)

    @property
    def degraded(self):
        """Face/phone detection is not running; only tamper signals are watched"""
        return not (self.webcam_active and self.model_loaded)

    def to_dict(self):
        return {
            'webcamActive': self.webcam_active,
            'modelLoaded': self.model_loaded,
            'ledgerConnected': self.ledger_connected,
            'degraded': self.degraded,
            'reasons': list(self.reasons),
        }


class IntervalTask:
    """Calls `fn` every `interval` seconds on its own thread until stopped"""

    def __init__(self, interval, fn, name):
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout=5.0):
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.fn()
            except Exception:
                logger.exception(f"{self.name} tick failed")


class ProctoringMonitor:

    def __init__(self, attempt_id, job_id=None, api=None, on_auto_submit=None,
                 camera=None, detector=None, signal_source=None, socket=None,
                 on_warning=None, on_status=None,
                 detection_interval=DETECTION_INTERVAL, snapshot_interval=SNAPSHOT_INTERVAL,
                 grace_delay=AUTO_SUBMIT_GRACE_SECONDS, looking_away_threshold=LOOKING_AWAY_THRESHOLD,
                 clock=time.monotonic, timer_factory=threading.Timer, snapshot_encoder=encode_snapshot):
        self.attempt_id = attempt_id
        self.job_id = job_id
        self.api = api
        self.camera = camera
        self.detector = detector
        self.socket = socket
        self.on_auto_submit = on_auto_submit
        self.on_status = on_status
        self.clock = clock
        self.snapshot_encoder = snapshot_encoder

        # With a ledger, the server's autoSubmit decides termination
        self.engine = IntegrityEngine(
            on_warning=on_warning,
            on_auto_submit=self._fire_auto_submit,
            grace_delay=grace_delay,
            require_confirmation=api is not None,
            timer_factory=timer_factory,
        )
        self.look_away = LookAwayTracker(looking_away_threshold)
        self.adapter = DetectionAdapter(detector)
        self.signals = SignalMonitor(signal_source, self.record) if signal_source is not None else None
        self.reporter = ViolationReporter(api, attempt_id, self.engine, on_confirmed=self._on_confirmed,
                                          on_session_started=self._on_session_started) \
            if api is not None else None

        self._detection_task = IntervalTask(detection_interval, self.detection_tick, f'detection-{attempt_id}')
        self._snapshot_task = IntervalTask(snapshot_interval, self.snapshot_tick, f'snapshot-{attempt_id}')

        self.status = MonitorStatus()
        self.last_classification = None
        self.auto_submit_reason = None
        # Reentrant so a warning handler may stop the monitor from inside record()
        self._lock = threading.RLock()
        self._started = False
        self._stopped = False

    @property
    def state(self):
        return self.engine.state

    @property
    def active(self):
        return self._started and not self._stopped

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        with self._lock:
            if self._started:
                return self.status
            self._started = True

        self._open_camera()
        self._load_detector()

        if self.api is not None:
            # The reporter re-runs init before its next delivery if this one fails
            self.reporter.webcam_enabled = self.status.webcam_active
            try:
                self.api.init_session(self.attempt_id, webcam_enabled=self.status.webcam_active)
                self.reporter.session_ready = True
                self.status.ledger_connected = True
            except ProctoringError as e:
                logger.warning(f"Proctoring init failed for attempt {self.attempt_id}: {e.message}")
                self.status.reasons.append(f"Ledger unavailable: {e.message}")
            self.reporter.start()

        if self.signals is not None:
            self.signals.start()

        self._join_socket()

        if self.status.webcam_active:
            self._snapshot_task.start()
            if self.status.model_loaded:
                self._detection_task.start()

        if self.status.degraded:
            logger.warning(
                f"Proctoring degraded for attempt {self.attempt_id}: {'; '.join(self.status.reasons)}"
            )
        self._publish_status()
        return self.status

    def _open_camera(self):
        if self.camera is None:
            self.status.reasons.append('No camera configured')
            return
        try:
            self.camera.open()
            self.status.webcam_active = True
        except DeviceUnavailable as e:
            self.status.reasons.append(e.message)

    def _load_detector(self):
        if self.detector is None:
            self.status.reasons.append('No detection model configured')
            return
        try:
            load = getattr(self.detector, 'load', None)
            if load is not None:
                load()
            self.status.model_loaded = True
        except DeviceUnavailable as e:
            self.status.reasons.append(e.message)

    def _join_socket(self):
        if self.socket is None:
            return
        try:
            self.socket.on('integrity-update', self._on_integrity_update)
            self.socket.on('auto-submitted', self._on_auto_submitted)
            self.socket.emit('join-assessment', self.attempt_id)
        except Exception as e:
            logger.warning(f"Socket join failed for attempt {self.attempt_id}: {e}")

    def _publish_status(self):
        if self.on_status is None:
            return
        try:
            self.on_status(self.status)
        except Exception:
            logger.exception("Status handler failed")

    def stop(self):
        """Stop timers and signals, release the camera, flush reports, end the session. Safe to call twice."""
        with self._lock:
            if not self._started or self._stopped:
                return
            self._stopped = True

        try:
            self._detection_task.stop()
            self._snapshot_task.stop()
            if self.signals is not None:
                self.signals.stop()
        finally:
            if self.camera is not None:
                try:
                    self.camera.release()
                except Exception:
                    logger.exception(f"Camera release failed for attempt {self.attempt_id}")
            self.status.webcam_active = False

            if self.reporter is not None:
                self.reporter.stop()

            if self.api is not None:
                try:
                    self.api.end_session(self.attempt_id)
                except ProctoringError as e:
                    logger.warning(f"Proctoring end not delivered for attempt {self.attempt_id}: {e.message}")

            if self.socket is not None:
                try:
                    self.socket.disconnect()
                except Exception as e:
                    logger.warning(f"Socket disconnect failed: {e}")

        logger.info(f"Proctoring stopped for attempt {self.attempt_id}")

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    def record(self, violation_type, details='', duration=0.0):
        """Apply a violation to the local mirror and queue it for the ledger"""
        with self._lock:
            if self._stopped:
                logger.debug(f"Ignoring {violation_type} after stop")
                return None
            violation, transition = self.engine.apply(violation_type, details, duration)
            if self.reporter is not None:
                self.reporter.submit(violation)
            return transition

    def detection_tick(self):
        frame = self.camera.read() if self.camera is not None else None
        result = self.adapter.classify(frame)
        if result is None:
            return None
        self.last_classification = result

        if result.multiple_faces:
            self.record(ViolationType.MULTIPLE_FACES, f"{result.face_count} people detected in frame")

        away = self.look_away.observe(result.face_count, self.clock())
        if away is not None:
            self.record(ViolationType.LOOKING_AWAY, f"Looking away for {round(away)} seconds", away)

        if result.phone_detected:
            self.record(ViolationType.PHONE_DETECTED, 'Mobile phone/device detected in frame')
        return result

    def snapshot_tick(self):
        frame = self.camera.read() if self.camera is not None else None
        image = self.snapshot_encoder(frame) if frame is not None else None
        if image is None or self.api is None:
            return None
        try:
            self.api.save_snapshot(self.attempt_id, image)
        except ProctoringError as e:
            logger.warning(f"Snapshot not saved for attempt {self.attempt_id}: {e.message}")
            return None
        return image

    # ------------------------------------------------------------------
    # Reconciliation with the ledger
    # ------------------------------------------------------------------

    def report(self):
        """Rebuild the mirror from the ledger's report; returns the session payload"""
        session = self.api.get_report(self.attempt_id)['session']
        self.engine.reconcile(session['integrityScore'], session['strikeCount'],
                              session['autoSubmitted'], session.get('violationCount'))
        if session['autoSubmitted']:
            self.engine.schedule_auto_submit(session.get('autoSubmitReason'))
        return session

    def _on_session_started(self):
        if self.status.ledger_connected:
            return
        self.status.ledger_connected = True
        self.status.reasons = [r for r in self.status.reasons if not r.startswith('Ledger unavailable')]
        logger.info(f"Ledger connected late for attempt {self.attempt_id}")
        self._publish_status()

    def _on_confirmed(self, violation, response):
        if response.get('autoSubmit') or response.get('autoSubmitted'):
            self.engine.schedule_auto_submit()

    def _on_integrity_update(self, data):
        if str(data.get('attemptId')) != str(self.attempt_id):
            return
        self.engine.reconcile(data['integrityScore'], data['strikeCount'],
                              data.get('autoSubmitted', False), data.get('violationCount'))
        if data.get('autoSubmitted'):
            self.engine.schedule_auto_submit()

    def _on_auto_submitted(self, data):
        if str(data.get('attemptId')) == str(self.attempt_id):
            self.engine.schedule_auto_submit(data.get('reason'))

    def _fire_auto_submit(self, reason):
        self.auto_submit_reason = reason
        logger.critical(f"Auto-submitting attempt {self.attempt_id}: {reason}")
        if self.on_auto_submit is not None:
            self.on_auto_submit(reason)
