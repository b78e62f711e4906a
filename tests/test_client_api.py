"""
Test the ledger HTTP client and the violation reporter
"""
import pytest
import requests
from socketio.exceptions import ConnectionError as SocketConnectionError
from services.errors import TransportFailure
from services.integrity_engine import IntegrityEngine, ViolationType
from proctor_client.api import LedgerClient, LedgerRejected
from proctor_client.live import connect_live
from proctor_client.reporter import ViolationReporter


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self.body = body

    def json(self):
        if self.body is None:
            raise ValueError('No JSON object could be decoded')
        return self.body


class FakeHttp:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, url, json=None, params=None, timeout=None):
        self.calls.append((method, url, json, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


def make_client(*responses):
    return LedgerClient('http://ledger.test/', 'jwt-token', 'session-token', timeout=3, http=FakeHttp(responses))


class TestLedgerClient:
    """Test request building and status mapping"""

    def test_headers_and_url(self):
        client = make_client(FakeResponse(201, {'session': {'id': 1}}))
        assert client.init_session(5, webcam_enabled=True) == {'session': {'id': 1}}

        assert client.http.headers['Authorization'] == 'Bearer jwt-token'
        assert client.http.headers['X-Session-Token'] == 'session-token'
        method, url, payload, timeout = client.http.calls[0]
        assert (method, url) == ('POST', 'http://ledger.test/api/proctoring/init')
        assert payload == {'attemptId': 5, 'webcamEnabled': True}
        assert timeout == 3

    def test_report_violation_payload(self):
        client = make_client(FakeResponse(200, {'integrityScore': 90}))
        client.report_violation(5, {'type': 'tab_switch', 'clientEventId': 'e1'})
        assert client.http.calls[0][2] == {'attemptId': 5, 'type': 'tab_switch', 'clientEventId': 'e1'}

    def test_get_report(self):
        client = make_client(FakeResponse(200, {'session': {}}))
        client.get_report(9)
        assert client.http.calls[0][:2] == ('GET', 'http://ledger.test/api/proctoring/report/9')

    def test_client_error_rejected(self):
        client = make_client(FakeResponse(400, {'error': "Unknown violation type: 'x'"}))
        with pytest.raises(LedgerRejected) as exc:
            client.report_violation(5, {'type': 'x'})
        assert exc.value.status_code == 400
        assert 'Unknown violation type' in exc.value.message

    def test_forbidden_rejected(self):
        client = make_client(FakeResponse(403, {'error': 'Not your attempt'}))
        with pytest.raises(LedgerRejected) as exc:
            client.end_session(5)
        assert exc.value.status_code == 403

    def test_busy_is_transport_failure(self):
        client = make_client(FakeResponse(503, {'error': 'Proctoring session is busy'}))
        with pytest.raises(TransportFailure) as exc:
            client.save_snapshot(5, 'img')
        assert exc.value.status_code == 503

    def test_server_error_without_body(self):
        client = make_client(FakeResponse(502))
        with pytest.raises(TransportFailure) as exc:
            client.init_session(5)
        assert 'returned 502' in exc.value.message

    def test_connection_error(self):
        client = make_client(requests.ConnectionError('refused'))
        with pytest.raises(TransportFailure):
            client.init_session(5)

    def test_close(self):
        client = make_client()
        client.close()
        assert client.http.closed


class ScriptedApi:
    """report_violation plays back a script of exceptions, bodies and successes"""

    def __init__(self, script, init_script=()):
        self.script = list(script)
        self.init_script = list(init_script)
        self.delivered = []
        self.attempts = 0
        self.inits = 0

    def init_session(self, attempt_id, webcam_enabled=False):
        self.inits += 1
        step = self.init_script.pop(0) if self.init_script else None
        if isinstance(step, Exception):
            raise step
        return {'session': {'attemptId': attempt_id}}

    def report_violation(self, attempt_id, violation):
        self.attempts += 1
        step = self.script.pop(0) if self.script else 'ok'
        if isinstance(step, Exception):
            raise step
        if isinstance(step, dict):
            return step
        self.delivered.append(violation['type'])
        n = len(self.delivered)
        return {'integrityScore': 100 - 10 * n, 'strikeCount': min(3, n),
                'autoSubmitted': n >= 3, 'violationCount': n}


class DownApi:
    def init_session(self, attempt_id, webcam_enabled=False):
        raise TransportFailure('connection refused')

    def report_violation(self, attempt_id, violation):
        raise TransportFailure('connection refused')


class BrokenOnceEngine(IntegrityEngine):
    """confirm() raises the first time it is called"""

    confirm_calls = 0

    def confirm(self, *args, **kwargs):
        self.confirm_calls += 1
        if self.confirm_calls == 1:
            raise TypeError('int() argument must be a string or a number')
        return super().confirm(*args, **kwargs)


class TestViolationReporter:
    """Test ordered delivery with retries"""

    def test_backoff_capped(self):
        reporter = ViolationReporter(None, 1, None, base_delay=0.5, max_delay=4.0)
        assert [reporter.backoff(n) for n in range(5)] == [0.5, 1.0, 2.0, 4.0, 4.0]

    def test_retries_then_delivers_in_order(self):
        api = ScriptedApi([TransportFailure('timeout'), TransportFailure('timeout'), 'ok', 'ok'])
        engine = IntegrityEngine(require_confirmation=True)
        confirmed = []
        reporter = ViolationReporter(api, 1, engine, on_confirmed=lambda v, r: confirmed.append(r),
                                     base_delay=0.001, max_delay=0.01)
        reporter.start()
        for _ in range(2):
            violation, _ = engine.apply(ViolationType.TAB_SWITCH)
            reporter.submit(violation)
        reporter.stop()

        assert api.delivered == ['tab_switch', 'tab_switch']
        assert api.attempts == 4
        assert reporter.delivered == 2
        assert [r['violationCount'] for r in confirmed] == [1, 2]
        assert engine.pending_count == 0
        assert engine.state.score == 80

    def test_rejected_is_discarded(self):
        api = ScriptedApi([LedgerRejected('Attempt is closed', status_code=409)])
        engine = IntegrityEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine, base_delay=0.001)
        reporter.start()
        violation, _ = engine.apply(ViolationType.COPY_PASTE)
        reporter.submit(violation)
        reporter.stop()

        assert reporter.dropped == 1
        assert api.delivered == []
        assert engine.state.score == 100
        assert engine.state.strikes == 0

    def test_lost_after_bounded_flush(self):
        api = DownApi()
        engine = IntegrityEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine, base_delay=0.001, max_delay=0.001, flush_attempts=3)
        violation, _ = engine.apply(ViolationType.RIGHT_CLICK)
        reporter.submit(violation)
        reporter.start()
        reporter.stop()

        assert reporter.lost == 1
        assert reporter.delivered == 0
        assert not reporter.running

    def test_init_runs_before_first_report(self):
        api = ScriptedApi(['ok'], init_script=[TransportFailure('connection refused')])
        engine = IntegrityEngine(require_confirmation=True)
        started = []
        reporter = ViolationReporter(api, 1, engine, on_session_started=lambda: started.append(True),
                                     base_delay=0.001, max_delay=0.01)
        reporter.start()
        violation, _ = engine.apply(ViolationType.TAB_SWITCH)
        reporter.submit(violation)
        reporter.stop()

        assert api.inits == 2
        assert started == [True]
        assert reporter.session_ready
        assert api.delivered == ['tab_switch']
        assert engine.state.score == 90

    def test_missing_session_reinits_and_resends(self):
        api = ScriptedApi([LedgerRejected('Proctoring session not found', status_code=404), 'ok'])
        engine = IntegrityEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine, base_delay=0.001)
        reporter.session_ready = True
        reporter.start()
        violation, _ = engine.apply(ViolationType.TAB_SWITCH)
        reporter.submit(violation)
        reporter.stop()

        assert api.inits == 1
        assert api.attempts == 2
        assert reporter.dropped == 0
        assert api.delivered == ['tab_switch']
        assert engine.state.score == 90

    def test_missing_session_after_reinit_is_dropped(self):
        not_found = LedgerRejected('Proctoring session not found', status_code=404)
        api = ScriptedApi([not_found, not_found])
        engine = IntegrityEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine, base_delay=0.001)
        reporter.session_ready = True
        reporter.start()
        violation, _ = engine.apply(ViolationType.COPY_PASTE)
        reporter.submit(violation)
        reporter.stop()

        assert api.inits == 1
        assert reporter.dropped == 1
        assert engine.state.score == 100

    def test_malformed_response_is_retried(self):
        api = ScriptedApi([{}, {'integrityScore': 90}, 'ok'])
        engine = IntegrityEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine, base_delay=0.001, max_delay=0.01)
        reporter.start()
        violation, _ = engine.apply(ViolationType.TAB_SWITCH)
        reporter.submit(violation)
        reporter.stop()

        assert api.attempts == 3
        assert reporter.delivered == 1
        assert engine.pending_count == 0
        assert engine.state.score == 90

    def test_writer_survives_handler_error(self):
        api = ScriptedApi([])
        engine = BrokenOnceEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine, base_delay=0.001)
        reporter.start()
        for vtype in (ViolationType.TAB_SWITCH, ViolationType.RIGHT_CLICK):
            violation, _ = engine.apply(vtype)
            reporter.submit(violation)
        reporter.stop()

        assert api.delivered == ['tab_switch', 'right_click']
        assert engine.confirm_calls == 2
        assert engine.pending_count == 1

    def test_submit_after_stop_rejected(self):
        api = ScriptedApi([])
        engine = IntegrityEngine(require_confirmation=True)
        reporter = ViolationReporter(api, 1, engine)
        reporter.start()
        reporter.stop()

        violation, _ = engine.apply(ViolationType.TAB_SWITCH)
        assert reporter.submit(violation) is False
        assert api.attempts == 0


class FakeSocketClient:
    def __init__(self, error=None):
        self.error = error
        self.connected_with = None

    def connect(self, url, auth=None, wait_timeout=None):
        if self.error:
            raise self.error
        self.connected_with = (url, auth)


class TestConnectLive:
    """Test the live channel connector"""

    def test_passes_token_in_auth(self):
        fake = FakeSocketClient()
        assert connect_live('http://ledger.test', 'jwt-token', client=fake) is fake
        assert fake.connected_with == ('http://ledger.test', {'token': 'jwt-token'})

    def test_connection_error(self):
        fake = FakeSocketClient(error=SocketConnectionError('One or more namespaces failed to connect'))
        with pytest.raises(TransportFailure):
            connect_live('http://ledger.test', 'jwt-token', client=fake)
