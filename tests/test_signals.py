"""
Test tamper signal classification
"""
import threading
import pytest
from services.integrity_engine import ViolationType
from proctor_client.signals import SignalEvent, SignalMonitor, QueueSignalSource, classify_signal


class TestClassify:
    """Test event to violation mapping"""

    @pytest.mark.parametrize('event, expected', [
        (SignalEvent('visibilitychange', hidden=True),
         (ViolationType.TAB_SWITCH, 'Switched to another tab or minimized window')),
        (SignalEvent('blur'), (ViolationType.TAB_SWITCH, 'Assessment window lost focus')),
        (SignalEvent('copy', target='div'), (ViolationType.COPY_PASTE, 'Copy attempt detected')),
        (SignalEvent('cut'), (ViolationType.COPY_PASTE, 'Cut attempt detected')),
        (SignalEvent('paste', target='body'), (ViolationType.COPY_PASTE, 'Paste attempt detected')),
        (SignalEvent('contextmenu'), (ViolationType.RIGHT_CLICK, 'Right-click/context menu attempt detected')),
        (SignalEvent('mouseleave'), (ViolationType.MOUSE_LEAVE, 'Mouse left the assessment window')),
        (SignalEvent('keydown', key='PrintScreen'),
         (ViolationType.SCREENSHOT_ATTEMPT, 'Screenshot attempt (PrintScreen) detected')),
        (SignalEvent('keydown', key='S', ctrl=True, shift=True),
         (ViolationType.SCREENSHOT_ATTEMPT, 'Screenshot shortcut attempt detected')),
        (SignalEvent('keydown', key='s', meta=True, shift=True),
         (ViolationType.SCREENSHOT_ATTEMPT, 'Screenshot shortcut attempt detected')),
        (SignalEvent('keydown', key='v', ctrl=True, target='div'),
         (ViolationType.COPY_PASTE, 'Keyboard shortcut Ctrl+V detected outside input')),
    ])
    def test_violations(self, event, expected):
        assert classify_signal(event) == expected

    @pytest.mark.parametrize('event', [
        SignalEvent('visibilitychange', hidden=False),
        SignalEvent('keydown', key='c'),
        SignalEvent('keydown', key='s', ctrl=True),
        SignalEvent('keydown', key='Enter'),
        SignalEvent('focus'),
    ])
    def test_not_violations(self, event):
        assert classify_signal(event) is None

    @pytest.mark.parametrize('event', [
        SignalEvent('copy', target='textarea'),
        SignalEvent('cut', target='INPUT'),
        SignalEvent('paste', target='input'),
        SignalEvent('keydown', key='c', ctrl=True, target='textarea'),
        SignalEvent('keydown', key='x', meta=True, target='input'),
        SignalEvent('keydown', key='V', ctrl=True, target='TEXTAREA'),
    ])
    def test_text_entry_allowlist(self, event):
        """Clipboard use inside answer fields is never penalized"""
        assert classify_signal(event) is None

    def test_screenshot_not_allowlisted(self):
        """The allowlist covers clipboard only"""
        event = SignalEvent('keydown', key='PrintScreen', target='textarea')
        assert classify_signal(event)[0] == ViolationType.SCREENSHOT_ATTEMPT

    def test_custom_allowlist(self):
        monitor = SignalMonitor(QueueSignalSource(), lambda *a: None, text_entry_targets=('code-editor',))
        assert monitor.classify(SignalEvent('paste', target='code-editor')) is None
        assert monitor.classify(SignalEvent('paste', target='textarea')) is not None


class TestSignalMonitor:
    """Test delivery through a queue-backed source"""

    def test_forwards_in_order(self):
        received = []
        done = threading.Event()

        def on_violation(vtype, details):
            received.append(vtype)
            if len(received) == 3:
                done.set()

        source = QueueSignalSource()
        monitor = SignalMonitor(source, on_violation)
        monitor.start()
        try:
            source.push(SignalEvent('blur'))
            source.push(SignalEvent('paste', target='textarea'))  # allowlisted
            source.push(SignalEvent('contextmenu'))
            source.push(SignalEvent('mouseleave'))
            assert done.wait(5)
        finally:
            monitor.stop()

        assert received == [ViolationType.TAB_SWITCH, ViolationType.RIGHT_CLICK, ViolationType.MOUSE_LEAVE]
        assert not monitor.running

    def test_handler_error_does_not_stop_delivery(self):
        received = []
        done = threading.Event()

        def on_violation(vtype, details):
            if not received:
                received.append('boom')
                raise RuntimeError('handler failed')
            received.append(vtype)
            done.set()

        source = QueueSignalSource()
        monitor = SignalMonitor(source, on_violation)
        monitor.start()
        try:
            source.push(SignalEvent('blur'))
            source.push(SignalEvent('contextmenu'))
            assert done.wait(5)
        finally:
            monitor.stop()
        assert received == ['boom', ViolationType.RIGHT_CLICK]

    def test_stop_is_idempotent(self):
        monitor = SignalMonitor(QueueSignalSource(), lambda *a: None)
        monitor.start()
        monitor.stop()
        monitor.stop()
        assert not monitor.running
