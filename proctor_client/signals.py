"""
Signal Monitor
Turns environment-tamper events (focus, clipboard, context menu, screenshot
shortcuts, pointer leaving the window) into violation candidates.

Platform hooks push SignalEvent objects into a SignalSource; the monitor
classifies each one and forwards matches immediately.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
import logging
import queue
import threading

from services.integrity_engine import ViolationType

logger = logging.getLogger(__name__)

# Focus targets where clipboard use is part of answering
TEXT_ENTRY_TARGETS = frozenset({'textarea', 'input'})

VISIBILITY = 'visibilitychange'
BLUR = 'blur'
COPY = 'copy'
CUT = 'cut'
PASTE = 'paste'
CONTEXT_MENU = 'contextmenu'
KEY_DOWN = 'keydown'
MOUSE_LEAVE = 'mouseleave'


@dataclass(frozen=True)
class SignalEvent:
    kind: str
    key: Optional[str] = None
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    target: Optional[str] = None  # tag/role of the focused control
    hidden: bool = False

    @property
    def command(self):
        return self.ctrl or self.meta


class SignalSource(ABC):
    """A stream of SignalEvent; delivers to a single subscriber"""

    @abstractmethod
    def subscribe(self, callback: Callable[[SignalEvent], None]):
        ...

    @abstractmethod
    def unsubscribe(self):
        ...


class QueueSignalSource(SignalSource):
    """
    Thread-safe source fed by push(); a daemon thread delivers events in
    arrival order. Platform hooks (GUI toolkits, OS listeners) call push().
    """

    _STOP = object()

    def __init__(self):
        self._queue = queue.Queue()
        self._callback = None
        self._thread = None

    def push(self, event: SignalEvent):
        self._queue.put(event)

    def subscribe(self, callback):
        if self._thread is not None:
            raise RuntimeError('Signal source already has a subscriber')
        self._callback = callback
        self._thread = threading.Thread(target=self._run, name='signal-source', daemon=True)
        self._thread.start()

    def unsubscribe(self, timeout=2.0):
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._queue.put(self._STOP)
        thread.join(timeout)
        self._callback = None

    def _run(self):
        while True:
            event = self._queue.get()
            if event is self._STOP:
                return
            callback = self._callback
            if callback is None:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(f"Signal handler failed for {event.kind}")


def _in_text_entry(event, text_entry_targets):
    return (event.target or '').lower() in text_entry_targets


def classify_signal(event: SignalEvent, text_entry_targets=TEXT_ENTRY_TARGETS) -> Optional[Tuple[ViolationType, str]]:
    """Map one event to (violation type, details), or None when it is not a violation"""
    kind = event.kind

    if kind == VISIBILITY:
        if event.hidden:
            return ViolationType.TAB_SWITCH, 'Switched to another tab or minimized window'
        return None

    if kind == BLUR:
        return ViolationType.TAB_SWITCH, 'Assessment window lost focus'

    if kind in (COPY, CUT, PASTE):
        if _in_text_entry(event, text_entry_targets):
            return None
        return ViolationType.COPY_PASTE, f'{kind.capitalize()} attempt detected'

    if kind == CONTEXT_MENU:
        return ViolationType.RIGHT_CLICK, 'Right-click/context menu attempt detected'

    if kind == MOUSE_LEAVE:
        return ViolationType.MOUSE_LEAVE, 'Mouse left the assessment window'

    if kind == KEY_DOWN and event.key:
        key = event.key.lower()
        if key == 'printscreen':
            return ViolationType.SCREENSHOT_ATTEMPT, 'Screenshot attempt (PrintScreen) detected'
        if event.command and event.shift and key == 's':
            return ViolationType.SCREENSHOT_ATTEMPT, 'Screenshot shortcut attempt detected'
        if event.command and key in ('c', 'v', 'x'):
            if _in_text_entry(event, text_entry_targets):
                return None
            return ViolationType.COPY_PASTE, f'Keyboard shortcut Ctrl+{key.upper()} detected outside input'

    return None


class SignalMonitor:
    """Subscribes to a SignalSource and forwards violation candidates"""

    def __init__(self, source: SignalSource, on_violation: Callable[[ViolationType, str], None],
                 text_entry_targets=TEXT_ENTRY_TARGETS):
        self.source = source
        self.on_violation = on_violation
        self.text_entry_targets = frozenset(t.lower() for t in text_entry_targets)
        self._running = False

    @property
    def running(self):
        return self._running

    def classify(self, event):
        return classify_signal(event, self.text_entry_targets)

    def handle(self, event: SignalEvent):
        match = self.classify(event)
        if match is None:
            return None
        violation_type, details = match
        self.on_violation(violation_type, details)
        return match

    def start(self):
        if self._running:
            return
        self.source.subscribe(self.handle)
        self._running = True

    def stop(self):
        if not self._running:
            return
        self._running = False
        self.source.unsubscribe()
