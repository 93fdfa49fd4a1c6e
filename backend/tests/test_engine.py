import threading

import pytest
from sqlalchemy.exc import OperationalError

from app import db
from app.models import Player, Winner
from app.services.round import storage
from app.services.round.errors import RoundValidationError, StakeSubmissionError
from app.services.round.phases import Phase
from conftest import new_wallet, seed_player, drive_to


def _score(wallet):
    return storage.find_player(wallet).score


# ---- staking ----

def test_stake_creates_and_accumulates(engine):
    wallet = new_wallet()
    first = engine.accept_stake(wallet, 1.5)
    assert first.status == 'ok'
    assert first.value['staked_amount'] == 1.5
    assert first.value['score'] == 0
    second = engine.accept_stake(wallet, 0.5)
    assert second.value['staked_amount'] == 2.0
    assert Player.query.filter_by(wallet=wallet).count() == 1


@pytest.mark.parametrize('phase', list(Phase))
def test_stake_is_open_in_every_phase(engine, clock, phase):
    drive_to(engine, clock, phase)
    assert engine.accept_stake(new_wallet(), 1).status == 'ok'


@pytest.mark.parametrize('amount', [0, -1, float('nan'), float('inf'), '3', None, True])
def test_stake_rejects_bad_amounts(engine, amount):
    with pytest.raises(RoundValidationError):
        engine.accept_stake(new_wallet(), amount)
    assert Player.query.count() == 0


@pytest.mark.parametrize('wallet', ['', 'not-a-wallet', None, 42])
def test_stake_rejects_malformed_wallets(engine, wallet):
    with pytest.raises(RoundValidationError):
        engine.accept_stake(wallet, 1)


def _stake_concurrently(app, wallet, n):
    engine = app.extensions['round_engine']
    barrier = threading.Barrier(n)
    errors = []

    def stake_once():
        try:
            with app.app_context():
                barrier.wait()
                outcome = engine.accept_stake(wallet, 1)
                assert outcome.status == 'ok'
        except Exception as exc:  # returned to the caller
            errors.append(exc)

    threads = [threading.Thread(target=stake_once) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_concurrent_stakes_lose_no_updates(file_app):
    wallet = new_wallet()
    with file_app.app_context():
        seed_player(wallet)

    assert _stake_concurrently(file_app, wallet, 12) == []
    with file_app.app_context():
        assert storage.find_player(wallet).staked_amount == 12


def test_concurrent_first_stakes_create_one_player(file_app):
    wallet = new_wallet()
    assert _stake_concurrently(file_app, wallet, 12) == []
    with file_app.app_context():
        assert Player.query.filter_by(wallet=wallet).count() == 1
        assert storage.find_player(wallet).staked_amount == 12


# ---- production stake flow ----

class FakeSubmitter:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def submit_stake(self, wallet, amount):
        self.calls.append((wallet, amount))
        if self.error:
            raise self.error
        return 'sig-123'


def test_stake_credits_after_confirmed_transfer(engine):
    engine.submitter = FakeSubmitter()
    wallet = new_wallet()
    outcome = engine.stake(wallet, 2)
    assert outcome.status == 'ok'
    assert outcome.value['signature'] == 'sig-123'
    assert outcome.value['staked_amount'] == 2
    assert engine.submitter.calls == [(wallet, 2.0)]


def test_failed_transfer_is_not_credited(engine):
    engine.submitter = FakeSubmitter(StakeSubmissionError('timed out waiting for confirmation'))
    wallet = new_wallet()
    outcome = engine.stake(wallet, 2)
    assert outcome.failed
    assert outcome.kind == 'submission'
    assert storage.find_player(wallet) is None


def test_stake_without_submitter_credits_directly(engine):
    engine.submitter = None
    assert engine.stake(new_wallet(), 1).value['staked_amount'] == 1


# ---- clicks ----

@pytest.mark.parametrize('phase', [Phase.STAKING, Phase.WINNER_DECLARATION])
def test_click_outside_gameplay_is_ignored(engine, clock, phase):
    wallet = new_wallet()
    seed_player(wallet, staked_amount=1)
    drive_to(engine, clock, phase)
    outcome = engine.accept_click(wallet, clock.t)
    assert outcome.is_empty
    assert outcome.value is None
    assert _score(wallet) == 0


def test_click_during_gameplay_scores_one(engine, clock, events):
    wallet = new_wallet()
    engine.accept_stake(wallet, 1)
    drive_to(engine, clock, Phase.GAMEPLAY)
    clock.advance(5)
    outcome = engine.accept_click(wallet, clock.t)
    assert outcome.status == 'ok'
    assert outcome.value['score'] == 1
    assert outcome.value['last_active'] == clock.t
    engine.accept_click(wallet, clock.t)
    assert _score(wallet) == 2
    assert ('state_update', {'wallet': wallet}) in events


def test_click_from_non_staker_is_ignored(engine, clock):
    unstaked = new_wallet()
    seed_player(unstaked, staked_amount=0)
    drive_to(engine, clock, Phase.GAMEPLAY)
    assert engine.accept_click(unstaked, clock.t).is_empty
    assert engine.accept_click(new_wallet(), clock.t).is_empty
    assert _score(unstaked) == 0


def test_click_with_malformed_wallet_is_invalid(engine, clock):
    drive_to(engine, clock, Phase.GAMEPLAY)
    with pytest.raises(RoundValidationError):
        engine.accept_click('???', clock.t)


# ---- settlement ----

def test_settle_round_orders_and_splits(engine):
    a, b = new_wallet(), new_wallet()
    seed_player(a, staked_amount=5, score=10)
    seed_player(b, staked_amount=5, score=5)
    winners = engine.settle_round(7)
    assert [w['wallet'] for w in winners] == [a, b]
    assert all(w['round'] == 7 for w in winners)
    assert sum(w['amount'] for w in winners) <= 9 + 1e-9
    assert winners[0]['amount'] >= winners[1]['amount']


def test_settle_round_only_counts_scorers(engine):
    scorer, idle = new_wallet(), new_wallet()
    seed_player(scorer, staked_amount=2, score=1)
    seed_player(idle, staked_amount=100, score=0)
    winners = engine.settle_round(1)
    assert [w['wallet'] for w in winners] == [scorer]
    assert winners[0]['amount'] == pytest.approx(1.8, abs=1e-8)


def test_settle_round_tie_break(engine):
    wallets = sorted(new_wallet() for _ in range(3))
    seed_player(wallets[2], staked_amount=1, score=4)
    seed_player(wallets[1], staked_amount=3, score=4)
    seed_player(wallets[0], staked_amount=1, score=4)
    winners = engine.settle_round(1)
    # Bigger stake first, then wallet order
    assert [w['wallet'] for w in winners] == [wallets[1], wallets[0], wallets[2]]


def test_settle_round_without_scorers_is_empty(engine):
    seed_player(new_wallet(), staked_amount=3, score=0)
    assert engine.settle_round(1) == []
    outcome = engine.calculate_rewards(1)
    assert outcome.is_empty
    assert outcome.value == []


def test_winner_declaration_records_winners_once(engine, clock, events):
    a, b = new_wallet(), new_wallet()
    engine.accept_stake(a, 5)
    engine.accept_stake(b, 5)
    drive_to(engine, clock, Phase.GAMEPLAY)
    for _ in range(3):
        engine.accept_click(a, clock.t)
    engine.accept_click(b, clock.t)

    reading = drive_to(engine, clock, Phase.WINNER_DECLARATION)
    assert Winner.query.filter_by(round=reading.round_number).count() == 2
    # Further polls inside the phase do not settle again
    engine.current_phase()
    engine.snapshot()
    assert Winner.query.count() == 2

    recorded = engine.winners(reading.round_number)
    assert [w['wallet'] for w in recorded.value] == [a, b]
    assert sum(w['amount'] for w in recorded.value) <= 9 + 1e-9
    settled = [payload for event, payload in events if event == 'round_settled']
    assert len(settled) == 1
    assert settled[0]['round'] == reading.round_number
    assert [w['wallet'] for w in settled[0]['winners']] == [a, b]


def test_rollover_resets_players(engine, clock):
    wallet = new_wallet()
    engine.accept_stake(wallet, 4)
    drive_to(engine, clock, Phase.GAMEPLAY)
    engine.accept_click(wallet, clock.t)
    drive_to(engine, clock, Phase.WINNER_DECLARATION)
    reading = drive_to(engine, clock, Phase.STAKING)
    assert reading.round_number == 2
    player = storage.find_player(wallet)
    assert (player.staked_amount, player.score) == (0, 0)
    # History survives the reset
    assert engine.winners(1).value[0]['wallet'] == wallet


def test_stake_during_declaration_carries_into_next_round(engine, clock):
    player, late = new_wallet(), new_wallet()
    engine.accept_stake(player, 4)
    drive_to(engine, clock, Phase.GAMEPLAY)
    engine.accept_click(player, clock.t)
    drive_to(engine, clock, Phase.WINNER_DECLARATION)

    # Settled stakes are released; new stakes accumulate for the next round
    assert storage.find_player(player).staked_amount == 0
    assert engine.accept_stake(late, 3).status == 'ok'
    assert engine.accept_stake(player, 1).value['staked_amount'] == 1
    assert engine.snapshot().value['total_staked'] == 4

    drive_to(engine, clock, Phase.STAKING)
    assert storage.find_player(late).staked_amount == 3
    assert (storage.find_player(player).staked_amount, _score(player)) == (1, 0)

    drive_to(engine, clock, Phase.GAMEPLAY)
    engine.accept_click(late, clock.t)
    reading = drive_to(engine, clock, Phase.WINNER_DECLARATION)
    paid = engine.winners(reading.round_number).value
    assert [w['wallet'] for w in paid] == [late]
    assert paid[0]['amount'] == pytest.approx(3 * 0.9)


def test_rollover_can_keep_players(engine, clock):
    engine.reset_on_rollover = False
    wallet = new_wallet()
    engine.accept_stake(wallet, 4)
    drive_to(engine, clock, Phase.GAMEPLAY)
    engine.accept_click(wallet, clock.t)
    drive_to(engine, clock, Phase.WINNER_DECLARATION)
    drive_to(engine, clock, Phase.STAKING)
    player = storage.find_player(wallet)
    assert (player.staked_amount, player.score) == (4, 1)


def test_winners_empty_before_any_settlement(engine):
    outcome = engine.winners()
    assert outcome.is_empty
    assert outcome.value == []


# ---- snapshot / active players ----

def test_snapshot(engine, clock):
    a, b = new_wallet(), new_wallet()
    engine.accept_stake(a, 2)
    engine.accept_stake(b, 8)
    seed_player(new_wallet(), staked_amount=0)
    outcome = engine.snapshot()
    state = outcome.value
    assert outcome.status == 'ok'
    assert state['current_phase'] == Phase.STAKING.value
    assert state['phase_end_time'] == clock.t + 30000
    assert state['round'] == 1
    assert {p['wallet'] for p in state['players']} == {a, b}
    assert state['total_staked'] == 10
    assert state['prize_pool'] == pytest.approx(9)
    assert state['server_time'] == clock.t
    assert state['winners'] == []
    assert state['target_position'] is not None


def test_active_players_window(engine, clock):
    stale, fresh = new_wallet(), new_wallet()
    engine.accept_stake(stale, 1)
    clock.advance(31000)
    engine.accept_stake(fresh, 1)
    outcome = engine.active_players()
    assert [p['wallet'] for p in outcome.value] == [fresh]


# ---- storage failures ----

def _broken(*args, **kwargs):
    raise OperationalError('SELECT 1', {}, Exception('database is gone'))


def test_storage_failure_is_reported_not_empty(engine, monkeypatch):
    monkeypatch.setattr(storage, 'find_round', _broken)
    outcome = engine.current_phase()
    assert outcome.failed
    assert outcome.kind == 'storage'
    assert engine.accept_click(new_wallet(), 0).failed
    assert engine.snapshot().failed


def test_stake_storage_failure(engine, monkeypatch):
    monkeypatch.setattr(storage, 'credit_stake', _broken)
    outcome = engine.accept_stake(new_wallet(), 1)
    assert outcome.failed
    assert 'accept_stake' in outcome.reason
    # Session is usable again afterwards
    assert db.session.query(Player).count() == 0
