"""
Integrity Engine
Converts typed proctoring violations into penalties, a bounded integrity
score, a three-strike count and the one-way auto-submit transition.

The transition function is pure and is run on both sides: the ledger
recomputes authoritative values from the full violation log on every write,
and the client agent keeps a responsive local mirror with IntegrityEngine.
"""

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

from services.errors import ValidationError

logger = logging.getLogger(__name__)


class ViolationType(str, Enum):
    MULTIPLE_FACES = 'multiple_faces'
    PHONE_DETECTED = 'phone_detected'
    TAB_SWITCH = 'tab_switch'
    COPY_PASTE = 'copy_paste'
    LOOKING_AWAY = 'looking_away'
    RIGHT_CLICK = 'right_click'
    SCREENSHOT_ATTEMPT = 'screenshot_attempt'
    MOUSE_LEAVE = 'mouse_leave'


# Points deducted per violation (authoritative)
VIOLATION_PENALTIES = {
    ViolationType.MULTIPLE_FACES: 15,
    ViolationType.PHONE_DETECTED: 20,
    ViolationType.TAB_SWITCH: 10,
    ViolationType.COPY_PASTE: 15,
    ViolationType.LOOKING_AWAY: 5,
    ViolationType.RIGHT_CLICK: 5,
    ViolationType.SCREENSHOT_ATTEMPT: 10,
    ViolationType.MOUSE_LEAVE: 5,
}

STRIKE_TYPES = frozenset({
    ViolationType.MULTIPLE_FACES,
    ViolationType.PHONE_DETECTED,
    ViolationType.TAB_SWITCH,
    ViolationType.COPY_PASTE,
    ViolationType.SCREENSHOT_ATTEMPT,
})

VIOLATION_LABELS = {
    ViolationType.MULTIPLE_FACES: 'Multiple Faces',
    ViolationType.PHONE_DETECTED: 'Phone Detected',
    ViolationType.TAB_SWITCH: 'Tab Switch',
    ViolationType.COPY_PASTE: 'Copy/Paste',
    ViolationType.LOOKING_AWAY: 'Looking Away',
    ViolationType.RIGHT_CLICK: 'Right Click',
    ViolationType.SCREENSHOT_ATTEMPT: 'Screenshot',
    ViolationType.MOUSE_LEAVE: 'Mouse Left',
}

INITIAL_SCORE = 100
MAX_STRIKES = 3
LOOKING_AWAY_THRESHOLD = 5.0  # seconds without a detected face
AUTO_SUBMIT_GRACE_SECONDS = 2.0
AUTO_SUBMIT_REASON = 'Three integrity violations detected'


def parse_violation_type(value) -> ViolationType:
    """Return the ViolationType for `value`, rejecting anything outside the penalty table"""
    if isinstance(value, ViolationType):
        return value
    try:
        return ViolationType(value)
    except ValueError:
        raise ValidationError(f'Unknown violation type: {value!r}') from None


def penalty_for(violation_type) -> int:
    return VIOLATION_PENALTIES[parse_violation_type(violation_type)]


def is_strike(violation_type) -> bool:
    return parse_violation_type(violation_type) in STRIKE_TYPES


@dataclass(frozen=True)
class IntegrityState:
    score: int = INITIAL_SCORE
    strikes: int = 0
    auto_submitted: bool = False

    def to_dict(self):
        return {
            'integrityScore': self.score,
            'strikeCount': self.strikes,
            'autoSubmitted': self.auto_submitted,
        }


@dataclass(frozen=True)
class Transition:
    violation_type: ViolationType
    penalty: int
    strike: bool
    before: IntegrityState
    after: IntegrityState

    @property
    def crossed_threshold(self) -> bool:
        """True only for the transition that first reaches MAX_STRIKES"""
        return self.after.auto_submitted and not self.before.auto_submitted


def apply_violation(state: IntegrityState, violation_type) -> Transition:
    """Pure transition: one violation applied to one state"""
    vtype = parse_violation_type(violation_type)
    penalty = VIOLATION_PENALTIES[vtype]
    strike = vtype in STRIKE_TYPES

    strikes = min(MAX_STRIKES, state.strikes + 1) if strike else state.strikes
    after = IntegrityState(
        score=max(0, state.score - penalty),
        strikes=strikes,
        auto_submitted=state.auto_submitted or strikes >= MAX_STRIKES,
    )
    return Transition(vtype, penalty, strike, state, after)


def recompute(violation_types: Iterable, start: IntegrityState = None) -> IntegrityState:
    """Fold a violation log into a state; equals max(0, 100 - sum) and min(3, strike count)"""
    state = start or IntegrityState()
    for violation_type in violation_types:
        state = apply_violation(state, violation_type).after
    return state


@dataclass(frozen=True)
class IntegrityWarning:
    """What the candidate UI shows for a strike-worthy violation"""
    violation_type: ViolationType
    details: str
    strike_count: int
    terminated: bool = False

    @property
    def label(self):
        return VIOLATION_LABELS[self.violation_type]

    @property
    def blocking(self):
        # The 3rd strike notice cannot be dismissed
        return self.terminated

    def to_dict(self):
        return {
            'type': self.violation_type.value,
            'label': self.label,
            'details': self.details,
            'strikeCount': self.strike_count,
            'maxStrikes': MAX_STRIKES,
            'terminated': self.terminated,
        }


class LookAwayTracker:
    """
    Debounces the continuous "no face in frame" condition.

    Emits the elapsed away-duration once it exceeds the threshold, then
    restarts the timer so an ongoing absence is reported about every
    `threshold` seconds instead of on every detection tick.
    """

    def __init__(self, threshold=LOOKING_AWAY_THRESHOLD):
        self.threshold = threshold
        self._away_since = None
        self.looking_away = False

    def observe(self, face_count: int, now: float) -> Optional[float]:
        if face_count > 0:
            self._away_since = None
            self.looking_away = False
            return None

        if self._away_since is None:
            self._away_since = now
            return None

        elapsed = now - self._away_since
        if elapsed > self.threshold:
            self.looking_away = True
            self._away_since = now
            return elapsed
        return None

    def reset(self):
        self._away_since = None
        self.looking_away = False


@dataclass
class RecordedViolation:
    """A violation as observed by the client, before or after server confirmation"""
    type: ViolationType
    details: str
    duration: float
    penalty: int
    timestamp: datetime = field(default_factory=datetime.utcnow)
    client_event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    confirmed: bool = False

    def to_payload(self):
        return {
            'type': self.type.value,
            'details': self.details,
            'duration': self.duration,
            'timestamp': self.timestamp.isoformat(),
            'clientEventId': self.client_event_id,
        }


class IntegrityEngine:
    """
    Client-side mirror of the integrity state machine.

    Transitions are serialized with a lock. Unconfirmed violations are kept
    in order; whenever the ledger returns authoritative values the mirror is
    rebased on them and the still-pending violations are re-applied, so the
    displayed state never trusts the local running total.
    """

    def __init__(
        self,
        on_warning: Callable[[IntegrityWarning], None] = None,
        on_auto_submit: Callable[[str], None] = None,
        grace_delay: float = AUTO_SUBMIT_GRACE_SECONDS,
        require_confirmation: bool = False,
        timer_factory=threading.Timer,
    ):
        self.on_warning = on_warning
        self.on_auto_submit = on_auto_submit
        self.grace_delay = grace_delay
        self.require_confirmation = require_confirmation
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = IntegrityState()
        self._confirmed = IntegrityState()
        self._confirmed_count = 0
        self._violations: List[RecordedViolation] = []
        self._pending = OrderedDict()
        self._auto_submit_scheduled = False
        self._auto_submit_fired = False
        self._timer = None

    @property
    def state(self) -> IntegrityState:
        with self._lock:
            return self._state

    @property
    def violations(self) -> List[RecordedViolation]:
        with self._lock:
            return list(self._violations)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def auto_submit_scheduled(self) -> bool:
        return self._auto_submit_scheduled

    def apply(self, violation_type, details='', duration=0.0, timestamp=None):
        """Apply one violation locally; returns (RecordedViolation, Transition)"""
        vtype = parse_violation_type(violation_type)

        with self._lock:
            transition = apply_violation(self._state, vtype)
            violation = RecordedViolation(
                type=vtype,
                details=details,
                duration=duration or 0.0,
                penalty=transition.penalty,
                timestamp=timestamp or datetime.utcnow(),
            )
            self._violations.append(violation)
            self._pending[violation.client_event_id] = violation
            self._state = transition.after

        if transition.strike and self.on_warning:
            self.on_warning(IntegrityWarning(
                violation_type=vtype,
                details=details,
                strike_count=transition.after.strikes,
                terminated=transition.crossed_threshold,
            ))

        if transition.crossed_threshold:
            logger.warning(f"Strike limit reached locally after {vtype.value}")
            if not self.require_confirmation:
                self.schedule_auto_submit()

        return violation, transition

    def confirm(self, client_event_id, score, strikes, auto_submitted, violation_count=None):
        """Rebase the mirror on the ledger's response for one reported violation"""
        with self._lock:
            violation = self._pending.pop(client_event_id, None)
            if violation is not None:
                violation.confirmed = True
            self._rebase(score, strikes, auto_submitted, violation_count)
            return self._state

    def reconcile(self, score, strikes, auto_submitted, violation_count=None):
        """Rebase the mirror on a full authoritative snapshot (poll or broadcast)"""
        with self._lock:
            self._rebase(score, strikes, auto_submitted, violation_count)
            return self._state

    def discard(self, client_event_id):
        """Forget a pending violation the ledger refused to record"""
        with self._lock:
            if self._pending.pop(client_event_id, None) is not None:
                self._state = recompute((v.type for v in self._pending.values()), self._confirmed)
            return self._state

    def _rebase(self, score, strikes, auto_submitted, violation_count):
        # Ignore responses older than what has already been applied
        if violation_count is not None:
            if violation_count < self._confirmed_count:
                return
            self._confirmed_count = violation_count
        self._confirmed = IntegrityState(int(score), int(strikes), bool(auto_submitted))
        self._state = recompute((v.type for v in self._pending.values()), self._confirmed)

    def schedule_auto_submit(self, reason=None) -> bool:
        """Schedule the auto-submit callback after the grace delay; at most once"""
        reason = reason or AUTO_SUBMIT_REASON
        with self._lock:
            if self._auto_submit_scheduled:
                return False
            self._auto_submit_scheduled = True
            self._timer = self._timer_factory(self.grace_delay, self._fire_auto_submit, args=(reason,))
            self._timer.daemon = True
            self._timer.start()
        logger.critical(f"Auto-submit scheduled in {self.grace_delay}s: {reason}")
        return True

    def _fire_auto_submit(self, reason):
        with self._lock:
            if self._auto_submit_fired:
                return
            self._auto_submit_fired = True

        if self.on_auto_submit is None:
            return
        try:
            self.on_auto_submit(reason)
        except Exception:
            logger.exception("Auto-submit callback failed")
