import random
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from flask import current_app

from app import db
from app.models import RoundRecord, now_ms
from . import storage
from .phases import Phase, next_phase


@dataclass(frozen=True)
class PhaseReading:
    phase: Phase
    end_time: int
    round_number: int
    started_at: int
    advanced: bool = False

    def to_dict(self):
        return {
            'phase': self.phase.value,
            'end_time': self.end_time,
            'round': self.round_number,
            'started_at': self.started_at,
        }


PhaseHook = Callable[[Phase, int], None]


def random_target(width: int = 1000, height: int = 1000) -> Dict[str, int]:
    return {'x': random.randint(0, width), 'y': random.randint(0, height)}


class PhaseClock:
    """Lazily advances the persisted round through its timed phases.

    Nothing runs on a timer: every call compares wall-clock time against the
    stored phase start and, when the current phase has run out, moves the
    round exactly one phase forward. The write is conditional on the phase
    start the caller observed, so concurrent callers crossing the same
    boundary produce a single advance.
    """

    def __init__(self, durations: Dict[Phase, int], now: Callable[[], int] = now_ms,
                 target_factory: Callable[[], Dict] = random_target):
        self.durations = dict(durations)
        self.now = now
        self.target_factory = target_factory

    def duration(self, phase: Phase) -> int:
        return self.durations[Phase(phase)]

    @property
    def cycle_ms(self) -> int:
        return sum(self.durations.values())

    def current_phase(self, game: Optional[RoundRecord], on_enter: Optional[PhaseHook] = None) -> PhaseReading:
        now = self.now()
        if game is None:
            game = self._start(now)

        phase = Phase(game.current_phase)
        end_time = game.phase_start_time + self.duration(phase)
        if now - game.phase_start_time < self.duration(phase):
            return PhaseReading(phase, end_time, game.round_number, game.phase_start_time)

        nxt = next_phase(phase)
        round_number = game.round_number
        values = {'current_phase': nxt.value, 'phase_start_time': now}
        if nxt is Phase.STAKING:
            round_number += 1
            values.update(
                round_number=round_number,
                round_end_time=now + self.cycle_ms,
                target_position=self.target_factory(),
            )

        try:
            won = storage.save_round(game.id, game.phase_start_time, values)
            if not won:
                db.session.rollback()
                current = storage.find_round()
                current_app.logger.info(
                    f"[phase-race] round={game.round_number} observed={phase.value}@{game.phase_start_time} "
                    f"stored={current.current_phase if current else None}"
                )
                return self._read_only(current, game)
            if on_enter is not None:
                on_enter(nxt, round_number)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"[phase-advance] round={round_number} {phase.value} -> {nxt.value} "
            f"late_by={now - end_time}ms"
        )
        return PhaseReading(nxt, now + self.duration(nxt), round_number, now, advanced=True)

    def _start(self, now: int) -> RoundRecord:
        created = storage.create_round(
            Phase.STAKING.value, now, now + self.cycle_ms, self.target_factory(),
        )
        if created is not None:
            current_app.logger.info(f"[round-init] round=1 phase={Phase.STAKING.value} start={now}")
            return created
        # Another caller created the round between our read and insert
        return storage.find_round()

    def _read_only(self, current: Optional[RoundRecord], observed: RoundRecord) -> PhaseReading:
        game = current or observed
        phase = Phase(game.current_phase)
        return PhaseReading(phase, game.phase_start_time + self.duration(phase), game.round_number,
                            game.phase_start_time)

