"""
Escrow recovery cache.

Every RP debited for a wager is recorded here until the wager's outcome has
been paid. The cache is persisted on every change, so an entry found at
startup means the debit happened and no matching credit did: startup
recovery credits it back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.core.exceptions import LedgerError
from app.core.logger import get_logger

logger = get_logger("escrow")


class EscrowPurpose(str, Enum):
    DUEL = "duel"
    JACKPOT = "jackpot"


@dataclass
class EscrowEntry:
    player_id: str
    amount: int
    purpose: EscrowPurpose
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "amount": self.amount,
            "purpose": self.purpose.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscrowEntry":
        return cls(
            player_id=str(data["player_id"]),
            amount=int(data["amount"]),
            purpose=EscrowPurpose(data["purpose"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class EscrowRecoveryCache:
    def __init__(
        self,
        on_change: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = None,
    ):
        self._entries: Dict[Tuple[EscrowPurpose, str], EscrowEntry] = {}
        self._on_change = on_change
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def hold(self, purpose: EscrowPurpose, player_id: str, amount: int) -> EscrowEntry:
        """Record `amount` RP taken from a player for a wager of `purpose`."""
        key = (purpose, player_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = EscrowEntry(player_id, amount, purpose, created_at=self._clock())
            self._entries[key] = entry
        else:
            entry.amount += amount
        self._changed()
        return entry

    def release(self, purpose: EscrowPurpose, player_id: str, amount: int = None) -> int:
        """
        Drop `amount` RP (default: all of it) from a player's entry once it
        has been paid out. Returns the amount actually released.
        """
        released = self._release(purpose, player_id, amount)
        if released:
            self._changed()
        return released

    def release_many(self, purpose: EscrowPurpose, items: Iterable[Tuple[str, int]]) -> int:
        """Release several (player_id, amount) pairs with a single save."""
        released = sum(self._release(purpose, player_id, amount) for player_id, amount in items)
        if released:
            self._changed()
        return released

    def _release(self, purpose, player_id, amount) -> int:
        key = (purpose, player_id)
        entry = self._entries.get(key)
        if entry is None:
            return 0
        if amount is None or amount >= entry.amount:
            del self._entries[key]
            return entry.amount
        entry.amount -= amount
        return amount

    def held(self, player_id: str, purpose: EscrowPurpose = None) -> int:
        return sum(
            e.amount
            for e in self._entries.values()
            if e.player_id == player_id and (purpose is None or e.purpose == purpose)
        )

    def entries(self, purpose: EscrowPurpose = None) -> List[EscrowEntry]:
        return [e for e in self._entries.values() if purpose is None or e.purpose == purpose]

    def total(self) -> int:
        return sum(e.amount for e in self._entries.values())

    def __len__(self):
        return len(self._entries)

    def recover_on_startup(self, ledger) -> List[EscrowEntry]:
        """
        Refund every outstanding entry to its player and delete it.

        Runs before either engine accepts new activity. Each entry is removed
        and saved right after its credit, so a second run (or a crash half
        way) never credits the same entry twice. An entry whose credit fails
        stays for the next pass.
        """
        recovered = []
        for key, entry in list(self._entries.items()):
            try:
                ledger.credit(entry.player_id, entry.amount)
            except LedgerError:
                logger.exception(
                    f"Could not refund {entry.amount} RP {entry.purpose.value} escrow "
                    f"to {entry.player_id}; will retry on next startup",
                    extra={"player_id": entry.player_id, "amount": entry.amount, "purpose": entry.purpose.value},
                )
                continue
            del self._entries[key]
            self._changed()
            recovered.append(entry)
            logger.warning(
                f"Recovered {entry.amount} RP interrupted {entry.purpose.value} "
                f"wager for {entry.player_id}",
                extra={"player_id": entry.player_id, "amount": entry.amount, "purpose": entry.purpose.value},
            )
        return recovered

    def dump(self) -> List[dict]:
        return [entry.to_dict() for entry in self._entries.values()]

    def load(self, data: Iterable[dict]):
        """Replace the cache contents with persisted entries (no save)."""
        self._entries.clear()
        for raw in data or []:
            entry = EscrowEntry.from_dict(raw)
            key = (entry.purpose, entry.player_id)
            if key in self._entries:
                self._entries[key].amount += entry.amount
            else:
                self._entries[key] = entry

    def _changed(self):
        if self._on_change is not None:
            self._on_change()
