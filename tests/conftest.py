import pytest

from tests.fakes import MemoryLedger, MemoryStore, ScriptedRNG, build_context


@pytest.fixture
def ledger():
    return MemoryLedger({"alice": 500, "bob": 500, "carol": 500, "dave": 2000})


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def rng():
    return ScriptedRNG()


@pytest.fixture
def ctx(ledger, store, rng):
    return build_context(ledger=ledger, store=store, rng=rng)


@pytest.fixture
def events(ctx):
    received = []
    ctx.subscribe(received.append)
    return received
