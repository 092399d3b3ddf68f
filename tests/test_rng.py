import pytest

from app.core.rng import WagerRNG


def test_seeded_draws_repeat():
    first = WagerRNG(seed=99)
    second = WagerRNG(seed=99)

    assert [first.random_below(1000) for _ in range(20)] == [second.random_below(1000) for _ in range(20)]


def test_bounds():
    rng = WagerRNG()
    for _ in range(200):
        assert 0 <= rng.random_below(3) < 3
        assert rng.random_choice(["a", "b"]) in ("a", "b")


def test_invalid_arguments():
    rng = WagerRNG(seed=1)
    with pytest.raises(ValueError):
        rng.random_below(0)
    with pytest.raises(IndexError):
        rng.random_choice([])
