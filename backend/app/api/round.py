from flask import Blueprint, jsonify, request, current_app
import time

from app.services.round.engine import validate_wallet
from app.services.round.errors import RoundValidationError


round_api = Blueprint('round_api', __name__)

_last_click: dict[str, float] = {}
_DEBOUNCE_PRUNE_AT = 1024


def _prune_clicks(cutoff):
    for wallet in [w for w, at in _last_click.items() if at < cutoff]:
        del _last_click[wallet]


def _engine():
    return current_app.extensions['round_engine']


def _respond(outcome, key, failure_status=503):
    if outcome.failed:
        return jsonify({'status': outcome.status, 'error': outcome.reason}), failure_status
    payload = {'status': outcome.status, key: outcome.value}
    if outcome.reason:
        payload['reason'] = outcome.reason
    return jsonify(payload)


@round_api.errorhandler(RoundValidationError)
def handle_validation_error(exc):
    return jsonify({'error': str(exc)}), 400


@round_api.route('/phase', methods=['GET'])
def get_current_phase():
    outcome = _engine().current_phase()
    if outcome.failed:
        return jsonify({'status': outcome.status, 'error': outcome.reason}), 503
    return jsonify({'status': outcome.status, **outcome.value.to_dict()})


@round_api.route('/state', methods=['GET'])
def get_game_state():
    outcome = _engine().snapshot()
    if outcome.failed:
        return jsonify({'status': outcome.status, 'error': outcome.reason}), 503
    # Include phase durations so clients can show countdowns
    clock = _engine().clock
    payload = dict(outcome.value)
    payload['durations'] = {phase.value: ms for phase, ms in clock.durations.items()}
    return jsonify(payload)


@round_api.route('/click', methods=['POST'])
def handle_player_click():
    data = request.get_json(silent=True) or {}
    wallet = validate_wallet(data.get('wallet'))
    # Debounce
    try:
        debounce_ms = int(current_app.config.get('CLICK_DEBOUNCE_MS', 0))
    except (TypeError, ValueError):
        debounce_ms = 0
    if debounce_ms > 0:
        now = time.time() * 1000.0
        if len(_last_click) >= _DEBOUNCE_PRUNE_AT:
            _prune_clicks(now - debounce_ms)
        last = _last_click.get(wallet, 0)
        if now - last < debounce_ms:
            return jsonify({'status': 'empty', 'accepted': False, 'reason': 'debounced'}), 202
        _last_click[wallet] = now

    outcome = _engine().accept_click(wallet, data.get('timestamp'))
    if outcome.failed:
        return jsonify({'status': outcome.status, 'error': outcome.reason}), 503
    return jsonify({
        'status': outcome.status,
        'accepted': not outcome.is_empty,
        'player': outcome.value,
        'reason': outcome.reason,
    })


@round_api.route('/stake', methods=['POST'])
def stake():
    data = request.get_json(silent=True) or {}
    outcome = _engine().stake(data.get('wallet'), data.get('amount'))
    if outcome.failed:
        code = 503 if outcome.kind == 'storage' else 502
        return jsonify({'status': outcome.status, 'error': outcome.reason, 'kind': outcome.kind}), code
    return jsonify({'status': outcome.status, 'player': outcome.value}), 201


@round_api.route('/rewards/<int:round_id>', methods=['GET'])
def calculate_rewards(round_id):
    return _respond(_engine().calculate_rewards(round_id), 'rewards')


@round_api.route('/winners', methods=['GET'])
def list_winners():
    round_id = request.args.get('round', type=int)
    return _respond(_engine().winners(round_id), 'winners')


@round_api.route('/players/active', methods=['GET'])
def list_active_players():
    return _respond(_engine().active_players(), 'players')
