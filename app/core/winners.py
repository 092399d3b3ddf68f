from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

DEFAULT_PAGE_SIZE = 6


@dataclass(frozen=True)
class WinnerRecord:
    """A settled jackpot: who won, how much, and their odds going in."""

    display_name: str
    amount_won: int
    win_chance: float
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "display_name": self.display_name,
            "amount_won": self.amount_won,
            "win_chance": self.win_chance,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WinnerRecord":
        return cls(
            display_name=data["display_name"],
            amount_won=int(data["amount_won"]),
            win_chance=float(data["win_chance"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class WinnerLog:
    """Append-only jackpot history, oldest first."""

    def __init__(self, on_change: Optional[Callable[[], None]] = None):
        self._records: List[WinnerRecord] = []
        self._on_change = on_change

    def append(self, record: WinnerRecord):
        self._records.append(record)
        if self._on_change is not None:
            self._on_change()

    def page(self, n: int, page_size: int = DEFAULT_PAGE_SIZE) -> List[WinnerRecord]:
        """The n-th (0-indexed) slice of `page_size` records; empty when out of range."""
        if n < 0 or page_size <= 0:
            return []
        start = n * page_size
        return self._records[start:start + page_size]

    def page_count(self, page_size: int = DEFAULT_PAGE_SIZE) -> int:
        return -(-len(self._records) // page_size)

    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def dump(self) -> List[dict]:
        return [record.to_dict() for record in self._records]

    def load(self, data: Iterable[dict]):
        self._records = [WinnerRecord.from_dict(raw) for raw in data or []]
