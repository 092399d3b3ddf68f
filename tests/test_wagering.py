import pytest

from app.core.context import STATE_VERSION
from app.core.escrow import EscrowPurpose
from app.core.exceptions import EngineNotReady, NoActiveJackpot, PersistenceError
from app.core.store import JsonFileStore
from app.core.wagering import WagerSystem
from tests.fakes import MemoryLedger, MemoryStore, ScriptedRNG, build_context, build_system

INTERRUPTED_STATE = {
    "version": STATE_VERSION,
    "winners": [
        {
            "display_name": "Carol",
            "amount_won": 900,
            "win_chance": 55.5,
            "timestamp": "2024-01-01T08:00:00+00:00",
        }
    ],
    "escrow": [
        {"player_id": "alice", "amount": 50, "purpose": "duel", "created_at": "2024-01-01T11:59:00+00:00"},
        {"player_id": "bob", "amount": 50, "purpose": "duel", "created_at": "2024-01-01T11:59:00+00:00"},
        {"player_id": "carol", "amount": 300, "purpose": "jackpot", "created_at": "2024-01-01T11:00:00+00:00"},
    ],
}


@pytest.fixture
def ledger():
    return MemoryLedger({"alice": 450, "bob": 450, "carol": 200})


@pytest.fixture
def system(ledger):
    return build_system(ledger=ledger, store=MemoryStore(INTERRUPTED_STATE), rng=ScriptedRNG(choices=[1]))


def test_startup_refunds_interrupted_wagers(system, ledger):
    system.startup()

    assert ledger.balances == {"alice": 500, "bob": 500, "carol": 500}
    assert len(system.ctx.escrow) == 0
    assert sorted(e.player_id for e in system.last_recovery) == ["alice", "bob", "carol"]
    assert system.list_winners(0)[0].display_name == "Carol"
    assert system.ctx.store.state["escrow"] == []


def test_recovery_happens_once(system, ledger):
    system.startup()
    system.shutdown()

    restarted = build_system(ledger=ledger, store=system.ctx.store)
    restarted.startup()

    assert ledger.balances == {"alice": 500, "bob": 500, "carol": 500}
    assert restarted.last_recovery == []


def test_jackpot_opens_after_recovery(system):
    system.startup()

    status = system.query_jackpot_status()
    assert status["active"]
    assert status["pot"] == 0


def test_operations_refused_before_startup(system):
    with pytest.raises(EngineNotReady):
        system.create_duel_request("alice", "bob", 10)
    with pytest.raises(EngineNotReady):
        system.enter_jackpot("alice", 100)
    with pytest.raises(EngineNotReady):
        system.force_draw_jackpot()


def test_duel_round_trip_through_system(system, ledger):
    system.startup()
    system.create_duel_request("alice", "bob", 50)
    assert system.duel_requests_for("bob")["incoming"][0]["sender_id"] == "alice"
    assert system.duel_requests_for("alice")["outgoing"]["receiver_id"] == "bob"

    duel = system.accept_duel_request("bob")
    assert system.active_duels() == [duel]

    system.ctx.scheduler.advance(5)
    assert duel.winner == "bob"
    assert ledger.balances["alice"] == 450
    assert ledger.balances["bob"] == 550
    assert system.outstanding_escrow() == []


def test_shutdown_leaves_escrow_for_next_start(system, ledger):
    system.startup()
    system.enter_jackpot("carol", 200, display_name="Carol")
    system.create_duel_request("alice", "bob", 25)
    system.accept_duel_request("bob")

    system.shutdown()

    assert not system.started
    assert system.ctx.scheduler.pending() == []
    saved = {(e["purpose"], e["player_id"]): e["amount"] for e in system.ctx.store.state["escrow"]}
    assert saved == {("jackpot", "carol"): 200, ("duel", "alice"): 25, ("duel", "bob"): 25}

    restarted = build_system(ledger=ledger, store=system.ctx.store)
    restarted.startup()
    assert ledger.balances == {"alice": 500, "bob": 500, "carol": 500}


def test_save_failures_are_tolerated(system, ledger):
    system.startup()
    system.ctx.store.fail = True

    system.enter_jackpot("alice", 100)

    assert ledger.balances["alice"] == 400
    assert system.ctx.escrow.held("alice", EscrowPurpose.JACKPOT) == 100
    assert system.ctx.persist_failures >= 1


class UnreadableStore(MemoryStore):
    def load(self):
        raise PersistenceError("unreadable")


def test_unreadable_state_starts_empty(ledger):
    system = build_system(ledger=ledger, store=UnreadableStore())

    system.startup()

    assert system.started
    assert len(system.ctx.winners) == 0
    assert system.query_jackpot_status()["active"]


def test_force_draw_and_winner_pages(system):
    system.startup()
    system.enter_jackpot("carol", 400, display_name="Carol")

    record = system.force_draw_jackpot()

    assert record.amount_won == 400
    assert record.win_chance == 100.0
    assert [r.display_name for r in system.list_winners(0)] == ["Carol", "Carol"]
    assert system.list_winners(1) == []
    with pytest.raises(NoActiveJackpot):
        system.force_draw_jackpot()


def test_restart_in_place_refunds_round_once():
    ledger = MemoryLedger({"a": 1000, "b": 1000})
    system = build_system(ledger=ledger)
    system.startup()
    system.enter_jackpot("a", 100)
    system.enter_jackpot("b", 300)

    system.shutdown()
    system.startup()

    assert ledger.balances == {"a": 1000, "b": 1000}
    status = system.query_jackpot_status()
    assert status["active"]
    assert status["pot"] == 0
    assert len(system.ctx.scheduler.pending("jackpot-end")) == 1

    system.enter_jackpot("a", 100)
    system.enter_jackpot("b", 300)
    system.force_draw_jackpot()
    assert ledger.total("a", "b") == 2000
    assert system.ctx.escrow.total() == 0


def test_corrupt_state_that_cannot_be_moved_starts_empty(ledger, tmp_path, monkeypatch):
    path = tmp_path / "state.json"
    path.write_bytes(b"{broken")

    def refuse(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("app.core.store.os.replace", refuse)
    ctx = build_context(ledger=ledger, store=JsonFileStore(path))
    system = WagerSystem(ctx)

    system.startup()

    assert system.started
    assert system.query_jackpot_status()["active"]
