"""Round domain services: phase clock, settlement and stake submission.

Routes and socket handlers talk to a single ``RoundEngine`` built from the
app config; everything that decides phases or payouts lives here.
"""

from app.models import now_ms
from .clock import PhaseClock, PhaseReading, random_target
from .engine import RoundEngine
from .phases import Phase, durations_from_config
from .result import Outcome
from .rewards import RewardDistributor
from .stake_submitter import build_submitter


def build_engine(cfg, notify=None, now=now_ms) -> RoundEngine:
    width = int(cfg.get('ARENA_WIDTH', 1000))
    height = int(cfg.get('ARENA_HEIGHT', 1000))
    clock = PhaseClock(
        durations_from_config(cfg),
        now=now,
        target_factory=lambda: random_target(width, height),
    )
    distributor = RewardDistributor(
        curve=cfg.get('REWARD_CURVE', 'geometric'),
        ratio=float(cfg.get('REWARD_CURVE_RATIO', 0.5)),
        max_winners=int(cfg.get('MAX_WINNERS', 0)),
    )
    return RoundEngine(
        clock,
        distributor,
        reward_percentage=float(cfg.get('REWARD_PERCENTAGE', 0.9)),
        active_window_ms=int(cfg.get('ACTIVE_PLAYER_WINDOW_MS', 30000)),
        reset_on_rollover=bool(cfg.get('RESET_PLAYERS_ON_ROLLOVER', True)),
        submitter=build_submitter(cfg),
        notify=notify,
    )
