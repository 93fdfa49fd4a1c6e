from app import db
from dataclasses import dataclass
from typing import Any, Dict, Optional
import json
import time

# Fixed key of the singleton round row
ROUND_ID = 1


def now_ms() -> int:
    return int(time.time() * 1000)


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    wallet = db.Column(db.String(64), unique=True, nullable=False, index=True)
    staked_amount = db.Column(db.Float, default=0.0, nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    last_active = db.Column(db.BigInteger, nullable=True)  # epoch ms

    def to_dict(self):
        return {
            'wallet': self.wallet,
            'staked_amount': self.staked_amount,
            'score': self.score,
            'last_active': self.last_active,
        }


@dataclass(frozen=True)
class RoundRecord:
    """Immutable view of the round row as observed at read time.

    The phase clock compares ``phase_start_time`` against the stored value
    when it writes, so a stale record can never advance the round twice.
    """
    id: int
    round_number: int
    current_phase: str
    phase_start_time: int
    round_end_time: int
    target_position: Optional[Dict[str, Any]]


class Round(db.Model):
    __tablename__ = 'round'
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    round_number = db.Column(db.Integer, nullable=False, default=1)
    target_position = db.Column(db.Text, nullable=True)  # JSON-encoded {"x": .., "y": ..}
    current_phase = db.Column(db.String(32), nullable=False)
    phase_start_time = db.Column(db.BigInteger, nullable=False)  # epoch ms
    round_end_time = db.Column(db.BigInteger, nullable=False)  # epoch ms

    def to_record(self) -> RoundRecord:
        try:
            target = json.loads(self.target_position) if self.target_position else None
        except ValueError:
            target = None
        return RoundRecord(
            id=self.id,
            round_number=int(self.round_number or 1),
            current_phase=self.current_phase,
            phase_start_time=int(self.phase_start_time),
            round_end_time=int(self.round_end_time),
            target_position=target,
        )


class Winner(db.Model):
    __tablename__ = 'winner'
    __table_args__ = (db.UniqueConstraint('round', 'wallet', name='uq_winner_round_wallet'),)
    id = db.Column(db.Integer, primary_key=True)
    wallet = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    round = db.Column(db.Integer, nullable=False, index=True)
    created_at = db.Column(db.BigInteger, nullable=False, default=now_ms)

    def to_dict(self):
        return {
            'wallet': self.wallet,
            'amount': self.amount,
            'round': self.round,
        }
