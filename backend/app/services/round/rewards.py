"""Prize split for a settled round.

Pure functions only: no storage, no clock. The engine joins the returned
amounts against its score-ordered player list, so every curve must be
non-increasing.
"""

import math
from typing import Callable, Dict, List, Optional

# Payouts are floored to lamport precision so the split never exceeds the pool
LAMPORT = 1e-9


def geometric_weights(count: int, ratio: float = 0.5) -> List[float]:
    return [ratio ** i for i in range(count)]


def linear_weights(count: int, ratio: float = 0.5) -> List[float]:
    return [float(count - i) for i in range(count)]


def equal_weights(count: int, ratio: float = 0.5) -> List[float]:
    return [1.0] * count


CURVES: Dict[str, Callable[[int, float], List[float]]] = {
    'geometric': geometric_weights,
    'linear': linear_weights,
    'equal': equal_weights,
}


def _floor_lamports(amount: float) -> float:
    return math.floor(amount / LAMPORT) * LAMPORT


class RewardDistributor:
    """Split a prize pool across ranked winners using a configured curve."""

    def __init__(self, curve: str = 'geometric', ratio: float = 0.5, max_winners: Optional[int] = None):
        if curve not in CURVES:
            raise ValueError(f'Unknown reward curve {curve!r}; expected one of {sorted(CURVES)}')
        if not 0 < ratio <= 1:
            raise ValueError('Curve ratio must be in (0, 1]')
        self.curve = curve
        self.ratio = ratio
        self.max_winners = max_winners if max_winners and max_winners > 0 else None

    def distribute(self, prize_pool: float, eligible_count: int) -> List[float]:
        """Return payout amounts for ranks 1..n, n <= eligible_count.

        Amounts are non-negative, non-increasing and sum to at most
        ``prize_pool``.
        """
        if prize_pool < 0 or eligible_count < 0:
            raise ValueError('prize_pool and eligible_count must be non-negative')
        if prize_pool == 0 or eligible_count == 0:
            return []
        count = eligible_count
        if self.max_winners is not None:
            count = min(count, self.max_winners)
        weights = CURVES[self.curve](count, self.ratio)
        total = sum(weights)
        return [_floor_lamports(prize_pool * w / total) for w in weights]
