from flask_socketio import join_room, leave_room, emit
from flask import current_app

ROUND_ROOM = 'round'


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_round(data=None):
    join_room(ROUND_ROOM)
    emit('joined', {'room': ROUND_ROOM})
    # Send the current phase right away so clients can start their countdown
    outcome = current_app.extensions['round_engine'].current_phase()
    if outcome.succeeded:
        emit('state_update', outcome.value.to_dict())


def handle_leave_round(data=None):
    leave_room(ROUND_ROOM)
    emit('left', {'room': ROUND_ROOM})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from app import socketio

    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_round', handle_join_round, namespace='/ws')
    socketio.on_event('leave_round', handle_leave_round, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_round', handle_join_round, namespace='/')
        socketio.on_event('leave_round', handle_leave_round, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
