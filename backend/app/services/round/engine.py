import math
from numbers import Real
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from solders.pubkey import Pubkey
from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.models import Player
from . import storage
from .clock import PhaseClock, PhaseReading
from .errors import RoundValidationError, StakeSubmitError
from .phases import Phase
from .result import Outcome
from .rewards import RewardDistributor

Notify = Callable[[str, Dict[str, Any]], None]


def validate_wallet(wallet) -> str:
    if not isinstance(wallet, str) or not wallet:
        raise RoundValidationError('wallet is required')
    try:
        Pubkey.from_string(wallet)
    except ValueError:
        raise RoundValidationError(f'Malformed wallet address: {wallet!r}')
    return wallet


def validate_amount(amount) -> float:
    if isinstance(amount, bool) or not isinstance(amount, Real):
        raise RoundValidationError('amount must be a number')
    amount = float(amount)
    if not math.isfinite(amount) or amount <= 0:
        raise RoundValidationError('amount must be positive')
    return amount


def rank_players(players: List[Player]) -> List[Player]:
    """Score descending; ties by larger stake, then wallet ascending."""
    return sorted(players, key=lambda p: (-p.score, -p.staked_amount, p.wallet))


class RoundEngine:
    """Phase-gated player actions and round settlement.

    Every call re-reads the round from storage; the engine keeps no round
    state of its own between calls.
    """

    def __init__(self, clock: PhaseClock, distributor: RewardDistributor, reward_percentage: float = 0.9,
                 active_window_ms: int = 30000, reset_on_rollover: bool = True, submitter=None,
                 notify: Optional[Notify] = None):
        self.clock = clock
        self.distributor = distributor
        self.reward_percentage = reward_percentage
        self.active_window_ms = active_window_ms
        self.reset_on_rollover = reset_on_rollover
        self.submitter = submitter
        self.notify = notify

    # ---- phase ----

    def current_phase(self) -> Outcome[PhaseReading]:
        try:
            reading = self.clock.current_phase(storage.find_round(), on_enter=self._enter_phase)
        except SQLAlchemyError as exc:
            return self._storage_failure('current_phase', exc)
        if reading.advanced:
            self._emit('state_update', {'phase': reading.phase.value, 'end_time': reading.end_time,
                                        'round': reading.round_number})
            if reading.phase is Phase.WINNER_DECLARATION:
                self._announce_winners(reading.round_number)
        return Outcome.of(reading)

    def _enter_phase(self, phase: Phase, round_number: int) -> None:
        # Runs inside the advancing transaction; raising rolls the advance back
        if phase is Phase.WINNER_DECLARATION:
            players = storage.find_players_where((Player.score > 0) | (Player.staked_amount > 0))
            winners = self._payouts(players, round_number)
            storage.record_winners(winners, self.clock.now())
            released = 0
            if self.reset_on_rollover:
                # Stakes credited after this read belong to the next round
                released = storage.release_stakes({p.wallet: p.staked_amount for p in players if p.staked_amount})
            current_app.logger.info(
                f"[settle] round={round_number} winners={len(winners)} "
                f"paid={sum(w['amount'] for w in winners):.9f} stakes_released={released}"
            )
        elif phase is Phase.STAKING and self.reset_on_rollover:
            reset = storage.reset_scores()
            current_app.logger.info(f"[rollover] round={round_number} scores_reset={reset}")

    def _announce_winners(self, round_number: int) -> None:
        try:
            winners = [w.to_dict() for w in storage.find_winners(round_number)]
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(f"[settle-announce-failed] round={round_number}")
            return
        self._emit('round_settled', {'round': round_number, 'winners': winners})

    # ---- player actions ----

    def accept_stake(self, wallet: str, amount: float) -> Outcome[Dict[str, Any]]:
        """Credit a stake to the registry. Allowed in every phase."""
        wallet = validate_wallet(wallet)
        amount = validate_amount(amount)
        try:
            player = storage.credit_stake(wallet, amount, self.clock.now())
        except SQLAlchemyError as exc:
            return self._storage_failure('accept_stake', exc)
        current_app.logger.info(f"[stake] wallet={wallet} amount={amount} total={player.staked_amount}")
        self._emit('state_update', {'wallet': wallet})
        return Outcome.of(player.to_dict())

    def stake(self, wallet: str, amount: float) -> Outcome[Dict[str, Any]]:
        """Move the stake on chain (when a submitter is configured), then credit it.

        The registry is only credited after the transfer is confirmed, so a
        failed or unconfirmed deposit can never be played.
        """
        wallet = validate_wallet(wallet)
        amount = validate_amount(amount)
        if self.submitter is None:
            return self.accept_stake(wallet, amount)

        try:
            signature = self.submitter.submit_stake(wallet, amount)
        except StakeSubmitError as exc:
            current_app.logger.warning(f"[stake-rejected] wallet={wallet} amount={amount} kind={exc.kind} error={exc}")
            return Outcome.failure(f'{exc.kind}: {exc}', kind=exc.kind)

        outcome = self.accept_stake(wallet, amount)
        if outcome.failed:
            current_app.logger.error(
                f"[stake-unrecorded] wallet={wallet} amount={amount} sig={signature} reason={outcome.reason}"
            )
            return outcome
        return Outcome.of({**outcome.value, 'signature': signature})

    def accept_click(self, wallet: str, timestamp: Optional[int] = None) -> Outcome[Dict[str, Any]]:
        """Score one point for a staked player during GAMEPLAY.

        ``timestamp`` is the client's claim and is only logged; activity is
        stamped with server time.
        """
        wallet = validate_wallet(wallet)
        reading = self.current_phase()
        if reading.failed:
            return reading
        if reading.value.phase is not Phase.GAMEPLAY:
            return Outcome.empty(f'clicks are closed during {reading.value.phase.value}')
        try:
            player = storage.increment_score(wallet, self.clock.now())
        except SQLAlchemyError as exc:
            return self._storage_failure('accept_click', exc)
        if player is None:
            return Outcome.empty('wallet has no stake this round')
        current_app.logger.debug(f"[click] wallet={wallet} score={player.score} client_ts={timestamp}")
        self._emit('state_update', {'wallet': wallet})
        return Outcome.of(player.to_dict())

    # ---- reads ----

    def snapshot(self) -> Outcome[Dict[str, Any]]:
        """Display snapshot. Phase, players and winners are separate reads."""
        reading = self.current_phase()
        if reading.failed:
            return reading
        phase = reading.value
        try:
            game = storage.find_round()
            players = storage.find_players_where(Player.staked_amount > 0)
            winners = storage.find_winners()
        except SQLAlchemyError as exc:
            return self._storage_failure('snapshot', exc)
        total_staked = sum(p.staked_amount for p in players)
        return Outcome.of({
            'round': phase.round_number,
            'target_position': game.target_position if game else None,
            'players': [p.to_dict() for p in players],
            'is_active': True,
            'current_round_end_time': game.round_end_time if game else None,
            'winners': [w.to_dict() for w in winners],
            'total_staked': total_staked,
            'prize_pool': total_staked * self.reward_percentage,
            'server_time': self.clock.now(),
            'current_phase': phase.phase.value,
            'phase_end_time': phase.end_time,
        })

    def settle_round(self, round_id: int) -> List[Dict[str, Any]]:
        """Payout list for the current scorers, best first. Empty when nobody scored."""
        return self._payouts(storage.find_players_where(Player.score > 0), round_id)

    def _payouts(self, players: List[Player], round_id: int) -> List[Dict[str, Any]]:
        ranked = rank_players([p for p in players if p.score > 0])
        if not ranked:
            return []
        total_staked = sum(p.staked_amount for p in ranked)
        amounts = self.distributor.distribute(total_staked * self.reward_percentage, len(ranked))
        return [
            {'wallet': p.wallet, 'amount': amount, 'round': round_id}
            for p, amount in zip(ranked, amounts)
        ]

    def calculate_rewards(self, round_id: int) -> Outcome[List[Dict[str, Any]]]:
        try:
            winners = self.settle_round(round_id)
        except SQLAlchemyError as exc:
            return self._storage_failure('calculate_rewards', exc)
        if not winners:
            return Outcome.empty('no player scored', value=[])
        return Outcome.of(winners)

    def active_players(self) -> Outcome[List[Dict[str, Any]]]:
        cutoff = self.clock.now() - self.active_window_ms
        try:
            players = storage.find_players_where(Player.last_active >= cutoff, Player.staked_amount > 0)
        except SQLAlchemyError as exc:
            return self._storage_failure('active_players', exc)
        return Outcome.of([p.to_dict() for p in players])

    def winners(self, round_id: Optional[int] = None) -> Outcome[List[Dict[str, Any]]]:
        try:
            rows = storage.find_winners(round_id)
        except SQLAlchemyError as exc:
            return self._storage_failure('winners', exc)
        if not rows:
            return Outcome.empty('no winners recorded', value=[])
        return Outcome.of([w.to_dict() for w in rows])

    # ---- helpers ----

    def _storage_failure(self, op: str, exc: SQLAlchemyError) -> Outcome:
        db.session.rollback()
        current_app.logger.exception(f"[storage-error] op={op} error={exc.__class__.__name__}")
        return Outcome.failure(f'storage unavailable during {op}')

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.notify is not None:
            self.notify(event, payload)
