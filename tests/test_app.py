"""Tests for the Flask API in app.py."""

import pytest

import app as app_module
from chroma_engine import COLOR_TIPS


@pytest.fixture
def client():
    app_module._active_sessions.clear()
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as c:
        yield c
    app_module._active_sessions.clear()


def _target(session_id):
    return app_module._active_sessions[session_id].game.current_round.target_index


def _start(client, session_id='s1'):
    return client.post('/api/chroma/start', json={'session_id': session_id})


class TestStart:
    def test_start(self, client):
        resp = _start(client)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['status'] == 'success'
        state = body['state']
        assert state['state'] == 'active'
        assert state['score'] == 0
        assert state['level'] == 1
        assert state['time_remaining'] == 30.0
        assert len(state['round']['cells']) == 25
        assert 'target_index' not in state['round']
        assert body['events'] == []
        assert 'tip' not in body

    def test_start_with_cookie_session(self, client):
        client.post('/api/chroma/start', json={})
        resp = client.get('/api/chroma/state')
        assert resp.status_code == 200
        assert resp.get_json()['state']['state'] == 'active'

    def test_restart_resets(self, client):
        _start(client)
        client.post('/api/chroma/select', json={'session_id': 's1', 'index': _target('s1')})
        body = _start(client).get_json()
        assert body['state']['score'] == 0


class TestSelect:
    def test_correct(self, client):
        _start(client)
        target = _target('s1')
        body = client.post('/api/chroma/select', json={'session_id': 's1', 'index': target}).get_json()
        assert body['state']['score'] == 1
        assert body['state']['level'] == 2
        assert body['state']['last_outcome'] == {'correct': True, 'index': target}

    def test_wrong_shakes(self, client):
        _start(client)
        wrong = (_target('s1') + 1) % 25
        body = client.post('/api/chroma/select', json={'session_id': 's1', 'index': wrong}).get_json()
        assert body['events'] == ['shake']
        assert body['state']['time_remaining'] == 25.0
        assert body['state']['last_outcome']['correct'] is False

    def test_tenth_correct_celebrates(self, client):
        _start(client)
        for i in range(10):
            body = client.post('/api/chroma/select', json={'session_id': 's1', 'index': _target('s1')}).get_json()
            expected = ['celebrate'] if i == 9 else []
            assert body['events'] == expected
        assert body['state']['score'] == 10

    def test_penalty_ends_game(self, client):
        _start(client)
        for _ in range(6):
            body = client.post(
                '/api/chroma/select', json={'session_id': 's1', 'index': (_target('s1') + 1) % 25}
            ).get_json()
        assert body['state']['state'] == 'ended'
        assert body['state']['round'] is None
        assert body['report']['mistakes'] == 6
        assert 's1' not in app_module._active_sessions
        assert body['tip'] in COLOR_TIPS

    @pytest.mark.parametrize('index', [25, -1, '3', 2.0, True, None])
    def test_bad_index(self, client, index):
        _start(client)
        resp = client.post('/api/chroma/select', json={'session_id': 's1', 'index': index})
        assert resp.status_code == 400
        assert resp.get_json()['status'] == 'error'

    def test_unknown_session(self, client):
        resp = client.post('/api/chroma/select', json={'session_id': 'nope', 'index': 0})
        assert resp.status_code == 404


class TestTick:
    def test_tick(self, client):
        _start(client)
        body = client.post('/api/chroma/tick', json={'session_id': 's1', 'dt': 0.1}).get_json()
        assert body['state']['time_remaining'] == 29.9
        assert body['state']['state'] == 'active'

    def test_tick_to_end(self, client):
        _start(client)
        body = client.post('/api/chroma/tick', json={'session_id': 's1', 'dt': 30}).get_json()
        assert body['state']['state'] == 'ended'
        assert body['state']['time_remaining'] == 0
        assert body['report']['score'] == 0
        assert body['report']['rank'] == 'Color Novice'
        assert body['report']['elapsed_seconds'] == 30.0

    def test_ended_session_is_dropped(self, client):
        _start(client)
        client.post('/api/chroma/tick', json={'session_id': 's1', 'dt': 30})
        assert 's1' not in app_module._active_sessions
        resp = client.post('/api/chroma/tick', json={'session_id': 's1', 'dt': 1})
        assert resp.status_code == 404

    @pytest.mark.parametrize('dt', [0, -1, 'x', None, True])
    def test_bad_dt(self, client, dt):
        _start(client)
        resp = client.post('/api/chroma/tick', json={'session_id': 's1', 'dt': dt})
        assert resp.status_code == 400

    def test_unknown_session(self, client):
        resp = client.post('/api/chroma/tick', json={'session_id': 'nope', 'dt': 0.1})
        assert resp.status_code == 404


class TestAbandonAndState:
    def test_abandon(self, client):
        _start(client)
        body = client.post('/api/chroma/abandon', json={'session_id': 's1'}).get_json()
        assert body['state']['state'] == 'idle'
        assert body['state']['round'] is None
        assert body['tip'] in COLOR_TIPS
        assert 's1' not in app_module._active_sessions

    def test_abandon_unknown(self, client):
        assert client.post('/api/chroma/abandon', json={'session_id': 'nope'}).status_code == 404

    def test_state_by_query(self, client):
        _start(client, 'abc')
        body = client.get('/api/chroma/state?session_id=abc').get_json()
        assert body['state']['state'] == 'active'

    def test_state_unknown(self, client):
        assert client.get('/api/chroma/state?session_id=nope').status_code == 404

    def test_tip(self, client):
        body = client.get('/api/chroma/tip').get_json()
        assert body['tip'] in COLOR_TIPS


class TestSessionRegistry:
    def test_finished_games_free_their_slots(self, client):
        for i in range(200):
            _start(client, f'player-{i}')
            client.post('/api/chroma/tick', json={'session_id': f'player-{i}', 'dt': 30})
        assert app_module._active_sessions == {}

    def test_restart_replaces_slot(self, client):
        _start(client)
        first = app_module._active_sessions['s1']
        _start(client)
        assert app_module._active_sessions['s1'] is not first
        assert len(app_module._active_sessions) == 1

    def test_idle_sessions_age_out(self, client, monkeypatch):
        _start(client, 'sleepy')
        now = app_module.time.monotonic()
        monkeypatch.setattr(app_module.time, 'monotonic', lambda: now + app_module.SESSION_TTL + 1)
        _start(client, 'fresh')
        assert set(app_module._active_sessions) == {'fresh'}

    def test_report_matches_ended_snapshot_after_restart(self):
        slot = app_module.SessionSlot()
        slot.game.start()
        _, snap, events, report = app_module._run(slot, slot.game.tick, 30.0)
        app_module._run(slot, slot.game.start)

        with app_module.app.test_request_context():
            body = app_module._payload(snap, events, report).get_json()
        assert body['state']['state'] == 'ended'
        assert body['report']['score'] == 0
        assert body['report']['elapsed_seconds'] == 30.0

    def test_report_only_for_ended_games(self):
        slot = app_module.SessionSlot()
        _, snap, _events, report = app_module._run(slot, slot.game.start)
        assert snap.state == 'active'
        assert report is None
