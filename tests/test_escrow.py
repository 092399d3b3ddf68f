from app.core.escrow import EscrowPurpose, EscrowRecoveryCache
from tests.fakes import MemoryLedger


def test_hold_sums_repeat_entries():
    saves = []
    escrow = EscrowRecoveryCache(on_change=lambda: saves.append(1))

    escrow.hold(EscrowPurpose.JACKPOT, "alice", 100)
    escrow.hold(EscrowPurpose.JACKPOT, "alice", 250)
    escrow.hold(EscrowPurpose.DUEL, "alice", 50)

    assert escrow.held("alice", EscrowPurpose.JACKPOT) == 350
    assert escrow.held("alice") == 400
    assert len(escrow) == 2
    assert len(saves) == 3


def test_release_partial_and_full():
    escrow = EscrowRecoveryCache()
    escrow.hold(EscrowPurpose.DUEL, "bob", 80)

    assert escrow.release(EscrowPurpose.DUEL, "bob", 30) == 30
    assert escrow.held("bob") == 50
    assert escrow.release(EscrowPurpose.DUEL, "bob") == 50
    assert escrow.held("bob") == 0
    assert escrow.release(EscrowPurpose.DUEL, "bob") == 0


def test_release_many_saves_once():
    saves = []
    escrow = EscrowRecoveryCache(on_change=lambda: saves.append(1))
    escrow.hold(EscrowPurpose.JACKPOT, "alice", 100)
    escrow.hold(EscrowPurpose.JACKPOT, "bob", 300)
    saves.clear()

    released = escrow.release_many(EscrowPurpose.JACKPOT, [("alice", 100), ("bob", 300)])

    assert released == 400
    assert escrow.total() == 0
    assert len(saves) == 1


def test_recover_credits_once_and_is_idempotent():
    ledger = MemoryLedger({"alice": 450, "bob": 450})
    escrow = EscrowRecoveryCache()
    escrow.load([
        {"player_id": "alice", "amount": 50, "purpose": "duel", "created_at": "2024-01-01T12:00:00+00:00"},
        {"player_id": "bob", "amount": 50, "purpose": "duel", "created_at": "2024-01-01T12:00:00+00:00"},
    ])

    recovered = escrow.recover_on_startup(ledger)
    assert sorted(e.player_id for e in recovered) == ["alice", "bob"]
    assert ledger.balances == {"alice": 500, "bob": 500}
    assert len(escrow) == 0

    assert escrow.recover_on_startup(ledger) == []
    assert ledger.balances == {"alice": 500, "bob": 500}


def test_recover_keeps_entry_when_credit_fails():
    ledger = MemoryLedger({"alice": 0, "bob": 0})
    ledger.failing_players.add("bob")
    escrow = EscrowRecoveryCache()
    escrow.hold(EscrowPurpose.JACKPOT, "alice", 100)
    escrow.hold(EscrowPurpose.JACKPOT, "bob", 200)

    escrow.recover_on_startup(ledger)

    assert ledger.balances["alice"] == 100
    assert escrow.held("bob") == 200
    assert escrow.held("alice") == 0

    ledger.failing_players.clear()
    escrow.recover_on_startup(ledger)
    assert ledger.balances["bob"] == 200
    assert len(escrow) == 0


def test_dump_and_load_preserve_entries():
    escrow = EscrowRecoveryCache()
    escrow.hold(EscrowPurpose.JACKPOT, "carol", 120)
    escrow.hold(EscrowPurpose.DUEL, "dave", 40)

    restored = EscrowRecoveryCache()
    restored.load(escrow.dump())

    assert restored.held("carol", EscrowPurpose.JACKPOT) == 120
    assert restored.held("dave", EscrowPurpose.DUEL) == 40
    assert restored.entries(EscrowPurpose.DUEL)[0].created_at == escrow.entries(EscrowPurpose.DUEL)[0].created_at
