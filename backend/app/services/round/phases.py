from enum import Enum
from typing import Dict, Mapping


class Phase(str, Enum):
    STAKING = 'STAKING'
    GAMEPLAY = 'GAMEPLAY'
    WINNER_DECLARATION = 'WINNER_DECLARATION'


_NEXT = {
    Phase.STAKING: Phase.GAMEPLAY,
    Phase.GAMEPLAY: Phase.WINNER_DECLARATION,
    Phase.WINNER_DECLARATION: Phase.STAKING,
}


def next_phase(phase: Phase) -> Phase:
    """Closed cycle: STAKING -> GAMEPLAY -> WINNER_DECLARATION -> STAKING."""
    return _NEXT[Phase(phase)]


def durations_from_config(cfg: Mapping) -> Dict[Phase, int]:
    durations = {
        Phase.STAKING: int(cfg.get('STAKING_DURATION_MS', 30000)),
        Phase.GAMEPLAY: int(cfg.get('GAMEPLAY_DURATION_MS', 30000)),
        Phase.WINNER_DECLARATION: int(cfg.get('WINNER_DECLARATION_DURATION_MS', 10000)),
    }
    for phase, ms in durations.items():
        if ms <= 0:
            raise ValueError(f'{phase.value} duration must be positive, got {ms}')
    return durations
