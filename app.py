from flask import Flask, jsonify, request, session
from flask_cors import CORS

import math
import os
import threading
import time
import uuid

from dotenv import load_dotenv

from chroma_engine import ACTIVE, ENDED, IDLE, GameSession, pick_tip

load_dotenv()

app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev_secret_key")

SESSION_TTL = float(os.getenv("CHROMA_SESSION_TTL", 600))
# Seconds a session may sit untouched before it is dropped from memory

CORS(app, supports_credentials=True)
# supports_credentials=True allows cookies/sessions to be sent cross-origin


class SessionSlot:
    """One hosted game plus the lock that serializes its events."""

    def __init__(self):
        self.game = GameSession()
        self.lock = threading.Lock()
        self.events = []
        self.game.subscribe(self.events.append)
        # celebrate/shake notifications are collected here and drained into each response
        self.last_seen = time.monotonic()


# Active game sessions stored in memory (keyed by session id)
_active_sessions = {}
_registry_lock = threading.Lock()


def _error(message, status):
    app.logger.warning("Rejected %s %s: %s", request.method, request.path, message)
    return jsonify({"status": "error", "message": message}), status


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _session_id(data):
    """Session id from the request, falling back to a per-browser id in the cookie."""
    session_id = data.get('session_id') or request.args.get('session_id')
    if session_id:
        return str(session_id)
    return session.setdefault('chroma_id', uuid.uuid4().hex)


def _get_slot(session_id):
    with _registry_lock:
        return _active_sessions.get(session_id)


def _evict(session_id, slot):
    """Drop a finished session, unless a newer slot already took its id."""
    with _registry_lock:
        if _active_sessions.get(session_id) is slot:
            del _active_sessions[session_id]


def _evict_stale():
    cutoff = time.monotonic() - SESSION_TTL
    with _registry_lock:
        stale = [sid for sid, slot in _active_sessions.items() if slot.last_seen < cutoff]
        for sid in stale:
            del _active_sessions[sid]
    if stale:
        app.logger.info("Dropped %d idle chroma sessions", len(stale))


def _run(slot, command, *args):
    """
    Run one engine command under the slot lock.

    Returns (previous state, snapshot, events, report); the report is taken
    under the same lock so it always describes the game in the snapshot.
    """
    with slot.lock:
        previous = slot.game.state
        slot.events.clear()
        snap = command(*args)
        events = list(slot.events)
        report = slot.game.final_report() if snap.state == ENDED else None
        slot.last_seen = time.monotonic()
    return previous, snap, events, report


def _payload(snap, events, report):
    body = {
        "status": "success",
        "state": snap.to_dict(),
        "events": events,
    }
    if report is not None:
        body["report"] = report
    if snap.state in (IDLE, ENDED):
        body["tip"] = pick_tip()
        # Start and game-over screens show a color tip
    return jsonify(body)


# ── Chroma Vision API Endpoints ───────────────────────────────

@app.route('/api/chroma/start', methods=['POST'])
def chroma_start():
    """Deal a fresh game for the caller, replacing any previous one."""
    data = _json_body()
    session_id = _session_id(data)

    _evict_stale()
    slot = SessionSlot()
    with _registry_lock:
        _active_sessions[session_id] = slot

    _, snap, events, report = _run(slot, slot.game.start)
    app.logger.info("Started chroma session %s", session_id)

    return _payload(snap, events, report)


@app.route('/api/chroma/tick', methods=['POST'])
def chroma_tick():
    """Advance the countdown by dt seconds."""
    data = _json_body()
    session_id = _session_id(data)

    dt = data.get('dt')
    if isinstance(dt, bool) or not isinstance(dt, (int, float)) or not math.isfinite(dt) or dt <= 0:
        return _error("dt must be a positive number", 400)

    slot = _get_slot(session_id)
    if slot is None:
        return _error("No active session", 404)

    previous, snap, events, report = _run(slot, slot.game.tick, dt)
    if snap.state == ENDED:
        if previous == ACTIVE:
            app.logger.info("Chroma session %s ran out of time at score %d", session_id, snap.score)
        _evict(session_id, slot)
        # The game-over payload is the last thing this session serves

    return _payload(snap, events, report)


@app.route('/api/chroma/select', methods=['POST'])
def chroma_select():
    """Select a grid cell by row-major index."""
    data = _json_body()
    session_id = _session_id(data)

    slot = _get_slot(session_id)
    if slot is None:
        return _error("No active session", 404)

    index = data.get('index')
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < slot.game.cell_count:
        return _error(f"index must be an integer in [0, {slot.game.cell_count})", 400)

    previous, snap, events, report = _run(slot, slot.game.select, index)
    if snap.state == ENDED:
        if previous == ACTIVE:
            app.logger.info("Chroma session %s ended on a penalty at score %d", session_id, snap.score)
        _evict(session_id, slot)

    return _payload(snap, events, report)


@app.route('/api/chroma/abandon', methods=['POST'])
def chroma_abandon():
    """Leave the current game and go back to the start screen."""
    data = _json_body()
    session_id = _session_id(data)

    slot = _get_slot(session_id)
    if slot is None:
        return _error("No active session", 404)

    _, snap, events, report = _run(slot, slot.game.abandon)
    _evict(session_id, slot)

    return _payload(snap, events, report)


@app.route('/api/chroma/state', methods=['GET'])
def chroma_state():
    """Return the current snapshot without changing anything."""
    session_id = _session_id({})

    slot = _get_slot(session_id)
    if slot is None:
        return _error("No active session", 404)

    _, snap, events, report = _run(slot, slot.game.snapshot)
    return _payload(snap, events, report)


@app.route('/api/chroma/tip', methods=['GET'])
def chroma_tip():
    return jsonify({"status": "success", "tip": pick_tip()})


if __name__ == '__main__':
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "1") == "1"

    app.run(debug=debug, host='0.0.0.0', port=port)
    # host='0.0.0.0' makes the server reachable from any network interface
