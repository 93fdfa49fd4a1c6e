import time

from app import socketio


def start_phase_ticker(app) -> bool:
    """Poll the phase clock in the background so phase changes get pushed.

    - No-ops in TESTING mode or when PHASE_TICK_SEC is 0
    - Advancement stays lazy; the ticker is just another caller
    """
    if app.config.get('TESTING'):
        return False
    try:
        interval = float(app.config.get('PHASE_TICK_SEC', 0))
    except (TypeError, ValueError):
        interval = 0
    if interval <= 0:
        return False

    def _worker(delay: float):
        app.logger.info(f"[ticker-start] interval={delay}s")
        while True:
            time.sleep(delay)
            with app.app_context():
                outcome = app.extensions['round_engine'].current_phase()
                if outcome.failed:
                    app.logger.warning(f"[ticker-miss] reason={outcome.reason}")

    socketio.start_background_task(_worker, interval)
    return True
