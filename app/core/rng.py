import random
from typing import Optional, Sequence, TypeVar

T = TypeVar("T")


class WagerRNG:
    """
    Random source for duel flips and jackpot draws.

    Unseeded it draws from `random.SystemRandom` (os.urandom). With a seed it
    uses a private `random.Random`, so draws can be replayed in tests and
    when reproducing a reported outcome. Fairness is the requirement here,
    not unpredictability to an attacker.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._source = random.SystemRandom() if seed is None else random.Random(seed)

    def random_below(self, upper: int) -> int:
        """Returns a random integer in [0, upper)."""
        if upper <= 0:
            raise ValueError("upper must be positive")
        return self._source.randrange(upper)

    def random_choice(self, options: Sequence[T]) -> T:
        """Returns a random element from a non-empty sequence."""
        if not options:
            raise IndexError("Cannot choose from an empty sequence")
        return options[self._source.randrange(len(options))]
