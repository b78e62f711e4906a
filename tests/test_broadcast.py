"""
Test live broadcast fan-out over Socket.IO
"""


def events(socket, name):
    return [e['args'][0] for e in socket.get_received() if e['name'] == name]


def report(client, headers, attempt_id, vtype):
    return client.post('/api/proctoring/violation', json={
        'attemptId': attempt_id,
        'type': vtype,
        'details': f'{vtype} detected'
    }, headers=headers)


class TestConnect:
    """Test socket authentication"""

    def test_connect_with_token(self, socket_client, recruiter):
        socket = socket_client(recruiter)
        assert socket.is_connected()

    def test_connect_without_token_refused(self, socket_client):
        socket = socket_client(auth={})
        assert not socket.is_connected()

    def test_connect_with_bad_token_refused(self, socket_client):
        socket = socket_client(auth={'token': 'not-a-jwt'})
        assert not socket.is_connected()


class TestMonitoringRoom:
    """Test recruiter monitoring room"""

    def test_owner_receives_violation(self, client, socket_client, recruiter, job, started_session, candidate_headers):
        monitor = socket_client(recruiter)
        monitor.emit('join-monitoring', job.id)
        monitor.get_received()

        report(client, candidate_headers, started_session.id, 'phone_detected')

        received = events(monitor, 'candidate-violation')
        assert len(received) == 1
        payload = received[0]
        assert payload['attemptId'] == started_session.id
        assert payload['integrityScore'] == 80
        assert payload['strikeCount'] == 1
        assert payload['violation']['type'] == 'phone_detected'

    def test_other_recruiter_silently_ignored(self, client, socket_client, make_user, job, started_session,
                                              candidate_headers):
        outsider = socket_client(make_user('recruiter'))
        outsider.emit('join-monitoring', job.id)
        assert outsider.get_received() == []

        report(client, candidate_headers, started_session.id, 'tab_switch')
        assert outsider.get_received() == []

    def test_candidate_cannot_join_monitoring(self, client, socket_client, candidate, job, started_session,
                                              candidate_headers):
        socket = socket_client(candidate)
        socket.emit('join-monitoring', job.id)
        report(client, candidate_headers, started_session.id, 'tab_switch')
        assert events(socket, 'candidate-violation') == []

    def test_admin_may_monitor_any_job(self, client, socket_client, make_user, job, started_session,
                                       candidate_headers):
        admin = socket_client(make_user('admin'))
        admin.emit('join-monitoring', job.id)
        report(client, candidate_headers, started_session.id, 'right_click')
        assert len(events(admin, 'candidate-violation')) == 1

    def test_leave_monitoring(self, client, socket_client, recruiter, job, started_session, candidate_headers):
        monitor = socket_client(recruiter)
        monitor.emit('join-monitoring', job.id)
        monitor.emit('leave-monitoring', job.id)
        report(client, candidate_headers, started_session.id, 'tab_switch')
        assert events(monitor, 'candidate-violation') == []

    def test_auto_submit_snapshot_and_end_events(self, client, socket_client, recruiter, job, started_session,
                                                 candidate_headers):
        monitor = socket_client(recruiter)
        monitor.emit('join-monitoring', job.id)

        for vtype in ('phone_detected', 'multiple_faces', 'tab_switch'):
            report(client, candidate_headers, started_session.id, vtype)
        client.post('/api/proctoring/snapshot', json={'attemptId': started_session.id, 'image': 'img'},
                    headers=candidate_headers)
        client.post('/api/proctoring/end', json={'attemptId': started_session.id}, headers=candidate_headers)
        client.post('/api/proctoring/end', json={'attemptId': started_session.id}, headers=candidate_headers)

        received = monitor.get_received()
        names = [e['name'] for e in received]
        assert names.count('candidate-violation') == 3
        assert names.count('candidate-auto-submitted') == 1
        assert names.count('candidate-snapshot') == 1
        assert names.count('candidate-session-ended') == 1

        auto = [e['args'][0] for e in received if e['name'] == 'candidate-auto-submitted'][0]
        assert auto['reason'] == 'Three integrity violations detected'


class TestAttemptRoom:
    """Test the candidate's own attempt room"""

    def test_candidate_receives_integrity_update(self, client, socket_client, candidate, started_session,
                                                 candidate_headers):
        socket = socket_client(candidate)
        socket.emit('join-assessment', started_session.id)

        report(client, candidate_headers, started_session.id, 'copy_paste')

        updates = events(socket, 'integrity-update')
        assert len(updates) == 1
        assert updates[0]['integrityScore'] == 85
        assert updates[0]['strikeCount'] == 1
        assert updates[0]['autoSubmitted'] is False
        assert updates[0]['attentionData']['copyPasteCount'] == 1

    def test_other_candidate_cannot_join_attempt(self, client, socket_client, make_user, started_session,
                                                 candidate_headers):
        socket = socket_client(make_user('candidate'))
        socket.emit('join-assessment', started_session.id)
        report(client, candidate_headers, started_session.id, 'copy_paste')
        assert events(socket, 'integrity-update') == []

    def test_duplicate_report_not_rebroadcast(self, client, socket_client, recruiter, job, started_session,
                                              candidate_headers):
        monitor = socket_client(recruiter)
        monitor.emit('join-monitoring', job.id)
        for _ in range(2):
            client.post('/api/proctoring/violation', json={
                'attemptId': started_session.id, 'type': 'tab_switch', 'clientEventId': 'same'
            }, headers=candidate_headers)
        assert len(events(monitor, 'candidate-violation')) == 1
