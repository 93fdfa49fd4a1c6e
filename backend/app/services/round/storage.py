"""SQLAlchemy-backed storage for players, the round row and winners.

Increments are pushed into SQL so concurrent stakes and clicks never lose
updates, and the round row is only ever advanced with a conditional write.
Functions that take part in a phase advance (``save_round``,
``reset_scores``, ``release_stakes``, ``record_winners``) leave the
transaction open; the caller commits.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import FlushError

from app import db
from app.models import Player, Round, RoundRecord, Winner, ROUND_ID


def find_player(wallet: str) -> Optional[Player]:
    return Player.query.filter_by(wallet=wallet).first()


def find_players_where(*criteria) -> List[Player]:
    return Player.query.filter(*criteria).populate_existing().all()


def credit_stake(wallet: str, amount: float, at_ms: int) -> Player:
    """Atomically add ``amount`` to the wallet's stake, creating the player if needed."""
    stmt = (
        update(Player)
        .where(Player.wallet == wallet)
        .values(staked_amount=Player.staked_amount + amount, last_active=at_ms)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount == 0:
        db.session.add(Player(wallet=wallet, staked_amount=amount, score=0, last_active=at_ms))
        try:
            db.session.commit()
        except IntegrityError:
            # Lost the insert race; the row exists now
            db.session.rollback()
            db.session.execute(stmt)
            db.session.commit()
    else:
        db.session.commit()
    return find_player(wallet)


def increment_score(wallet: str, at_ms: int) -> Optional[Player]:
    """Add one point to a staked player. Returns None when the wallet is not eligible."""
    stmt = (
        update(Player)
        .where(Player.wallet == wallet, Player.staked_amount > 0)
        .values(score=Player.score + 1, last_active=at_ms)
        .execution_options(synchronize_session=False)
    )
    changed = db.session.execute(stmt).rowcount
    db.session.commit()
    if not changed:
        return None
    return find_player(wallet)


def reset_scores() -> int:
    stmt = (
        update(Player)
        .where(Player.score != 0)
        .values(score=0)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def release_stakes(settled: Dict[str, float]) -> int:
    """Take back the stake each wallet had when its round settled.

    Subtracts rather than zeroes, so stakes credited after the settlement
    read carry into the next round.
    """
    released = 0
    for wallet, amount in settled.items():
        stmt = (
            update(Player)
            .where(Player.wallet == wallet)
            .values(staked_amount=Player.staked_amount - amount)
            .execution_options(synchronize_session=False)
        )
        released += db.session.execute(stmt).rowcount
    return released


def find_round() -> Optional[RoundRecord]:
    game = db.session.get(Round, ROUND_ID, populate_existing=True)
    return game.to_record() if game else None


def create_round(phase: str, started_at: int, round_end_time: int,
                 target_position: Optional[Dict[str, Any]]) -> Optional[RoundRecord]:
    """Insert the singleton round row. Returns None if another caller created it first."""
    game = Round(
        id=ROUND_ID,
        round_number=1,
        current_phase=phase,
        phase_start_time=started_at,
        round_end_time=round_end_time,
        target_position=json.dumps(target_position) if target_position is not None else None,
    )
    db.session.add(game)
    try:
        db.session.commit()
    except (IntegrityError, FlushError):
        db.session.rollback()
        return None
    return game.to_record()


def save_round(round_id: int, expected_phase_start_time: int, values: Dict[str, Any]) -> bool:
    """Compare-and-swap write of the round row.

    Applies ``values`` only if the stored ``phase_start_time`` still equals
    the one the caller observed. Returns True when this caller won.
    """
    values = dict(values)
    if 'target_position' in values and values['target_position'] is not None:
        values['target_position'] = json.dumps(values['target_position'])
    stmt = (
        update(Round)
        .where(Round.id == round_id, Round.phase_start_time == expected_phase_start_time)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def record_winners(winners: Iterable[Dict[str, Any]], at_ms: int) -> int:
    count = 0
    for w in winners:
        db.session.add(Winner(wallet=w['wallet'], amount=w['amount'], round=w['round'], created_at=at_ms))
        count += 1
    db.session.flush()
    return count


def find_winners(round_number: Optional[int] = None) -> List[Winner]:
    if round_number is None:
        latest = db.session.query(db.func.max(Winner.round)).scalar()
        if latest is None:
            return []
        round_number = latest
    return Winner.query.filter_by(round=round_number).order_by(Winner.amount.desc(), Winner.wallet).all()
