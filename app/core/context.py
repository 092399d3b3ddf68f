"""
Shared context handed to every engine.

Holds the collaborators (ledger, store, scheduler, RNG, clock), the
configuration, and the two pieces of state the engines share: the escrow
cache and the winner log. Engines keep only their own requests, duels and
rounds.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.config import WagerConfig
from app.core.escrow import EscrowRecoveryCache
from app.core.exceptions import PersistenceError
from app.core.ledger import EconomyLedger
from app.core.logger import get_logger
from app.core.rng import WagerRNG
from app.core.store import PersistentStore
from app.core.winners import WinnerLog

logger = get_logger("context")

STATE_VERSION = 1

EventListener = Callable[[dict], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WagerContext:
    def __init__(
        self,
        settings: WagerConfig,
        ledger: EconomyLedger,
        store: PersistentStore,
        scheduler,
        rng: Optional[WagerRNG] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.ledger = ledger
        self.store = store
        self.scheduler = scheduler
        self.rng = rng or WagerRNG(settings.rng_seed)
        self.clock = clock
        self.escrow = EscrowRecoveryCache(on_change=self.persist, clock=clock)
        self.winners = WinnerLog(on_change=self.persist)
        self.persist_failures = 0
        self._listeners: List[EventListener] = []

    def now(self) -> datetime:
        return self.clock()

    # ==================== Persistence ====================

    def snapshot(self) -> dict:
        return {
            "version": STATE_VERSION,
            "winners": self.winners.dump(),
            "escrow": self.escrow.dump(),
        }

    def persist(self) -> bool:
        """
        Save the shared state. A failure is logged and swallowed: the engine
        keeps running in memory but an interrupted wager can no longer be
        refunded at the next startup until a later save succeeds.
        """
        try:
            self.store.save(self.snapshot())
        except PersistenceError as e:
            self.persist_failures += 1
            logger.error(
                f"State save failed, crash recovery is degraded until the next successful save: {e}",
                extra={"persist_failures": self.persist_failures},
            )
            return False
        return True

    def restore(self, state: Optional[dict]):
        if not state:
            return
        version = state.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            logger.warning(f"Loading state version {version}, expected {STATE_VERSION}")
        self.winners.load(state.get("winners", []))
        self.escrow.load(state.get("escrow", []))
        logger.info(
            f"Restored {len(self.winners)} winner records and {len(self.escrow)} escrow entries"
        )

    # ==================== Events ====================

    def subscribe(self, listener: EventListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event_type: str, **payload):
        """Notify listeners. Presentation failures never interrupt money flow."""
        event = {"type": event_type, "timestamp": self.now().isoformat(), **payload}
        logger.debug(f"Event {event_type}", extra={"event": payload})
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed on {event_type}")
