"""
Wager system: wires the engines to one context and exposes the operations
the command and HTTP layers call.

Startup order matters: persisted state is loaded and every interrupted
wager is refunded before the jackpot opens or any request is accepted.
"""

from functools import wraps
from typing import Dict, List, Optional

from app.config import AppConfig
from app.core.context import WagerContext
from app.core.exceptions import EngineNotReady, PersistenceError
from app.core.games.duel import Duel, DuelEngine
from app.core.games.duel_requests import DuelRequest, RequestNegotiator
from app.core.games.jackpot import JackpotEngine
from app.core.ledger import SqliteLedger
from app.core.logger import get_logger
from app.core.rng import WagerRNG
from app.core.store import JsonFileStore
from app.core.winners import WinnerRecord

logger = get_logger("wagering")


def requires_startup(func):
    """Refuse engine operations until startup recovery has run."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if not self.started:
            raise EngineNotReady()
        return func(self, *args, **kwargs)

    return wrapper


class WagerSystem:
    def __init__(self, ctx: WagerContext):
        self.ctx = ctx
        self.duels = DuelEngine(ctx)
        self.requests = RequestNegotiator(ctx, self.duels)
        self.jackpot = JackpotEngine(ctx)
        self.started = False
        self.last_recovery = []

    @classmethod
    def from_settings(cls, settings: AppConfig, scheduler) -> "WagerSystem":
        """Production wiring: SQLite ledger, JSON state file."""
        ledger = SqliteLedger(
            settings.paths.get_ledger_path(),
            starting_balance=settings.economy.starting_balance,
        )
        store = JsonFileStore(settings.paths.get_state_path())
        ctx = WagerContext(
            settings=settings.wager,
            ledger=ledger,
            store=store,
            scheduler=scheduler,
            rng=WagerRNG(settings.wager.rng_seed),
        )
        return cls(ctx)

    # ==================== Lifecycle ====================

    def startup(self):
        if self.started:
            return
        try:
            state = self.ctx.store.load()
        except PersistenceError as e:
            logger.error(f"Could not load wager state, starting empty: {e}")
            state = None
        self.ctx.restore(state)

        self.last_recovery = self.ctx.escrow.recover_on_startup(self.ctx.ledger)
        if self.last_recovery:
            total = sum(entry.amount for entry in self.last_recovery)
            logger.warning(
                f"Refunded {total} RP across {len(self.last_recovery)} interrupted wagers"
            )
        if len(self.ctx.escrow):
            logger.error(f"{len(self.ctx.escrow)} escrow entries could not be refunded yet")

        self.started = True
        self.jackpot.start()
        logger.info("Wager system started")

    def shutdown(self):
        if not self.started:
            return
        self.requests.cancel_all()
        self.duels.cancel_all()
        self.jackpot.stop()
        self.ctx.persist()
        self.started = False
        if len(self.ctx.escrow):
            logger.warning(
                f"Shut down with {self.ctx.escrow.total()} RP in escrow; refunded on next startup"
            )
        logger.info("Wager system stopped")

    # ==================== Duels ====================

    @requires_startup
    def create_duel_request(self, sender_id: str, receiver_id: str, amount: int) -> DuelRequest:
        return self.requests.create_request(sender_id, receiver_id, amount)

    @requires_startup
    def accept_duel_request(self, receiver_id: str) -> Duel:
        return self.requests.accept_request(receiver_id)

    @requires_startup
    def deny_duel_request(self, receiver_id: str) -> DuelRequest:
        return self.requests.deny_request(receiver_id)

    @requires_startup
    def cancel_duel_request(self, sender_id: str) -> DuelRequest:
        return self.requests.cancel_request(sender_id)

    def duel_requests_for(self, player_id: str) -> Dict:
        outgoing = self.requests.outgoing(player_id)
        return {
            "outgoing": outgoing.to_dict() if outgoing else None,
            "incoming": [r.to_dict() for r in self.requests.incoming(player_id)],
        }

    def active_duels(self) -> List[Duel]:
        return self.duels.active_duels()

    # ==================== Jackpot ====================

    @requires_startup
    def enter_jackpot(self, player_id: str, amount: int, display_name: str = None) -> Dict:
        return self.jackpot.add_bet(player_id, amount, display_name)

    def query_jackpot_status(self) -> Dict:
        return self.jackpot.status()

    @requires_startup
    def force_draw_jackpot(self) -> Optional[WinnerRecord]:
        return self.jackpot.force_draw()

    def list_winners(self, page: int = 0) -> List[WinnerRecord]:
        return self.ctx.winners.page(page, self.ctx.settings.winners_page_size)

    def outstanding_escrow(self) -> List[Dict]:
        return self.ctx.escrow.dump()
