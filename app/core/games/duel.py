"""
Coin-flip duels between two players who agreed on a stake.

The winner is drawn the moment the duel starts; the countdown that follows
is presentational. Each tick is driven by a repeating timer calling
`DuelEngine.tick`, and all countdown state lives on the `Duel` itself.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Dict, List, Optional

from app.core.context import WagerContext
from app.core.escrow import EscrowPurpose
from app.core.exceptions import LedgerError
from app.core.logger import get_logger
from app.core.scheduler import TimerHandle

logger = get_logger("duel")


class DuelState(str, Enum):
    COUNTDOWN = "countdown"
    RESOLVED = "resolved"


@dataclass
class Duel:
    id: str
    participant_a: str
    participant_b: str
    stake_each: int
    winner: str
    ticks_remaining: int
    created_at: datetime
    state: DuelState = DuelState.COUNTDOWN
    timer: Optional[TimerHandle] = field(default=None, repr=False, compare=False)

    @property
    def pot(self) -> int:
        return self.stake_each * 2

    @property
    def loser(self) -> str:
        return self.participant_b if self.winner == self.participant_a else self.participant_a

    @property
    def participants(self):
        return (self.participant_a, self.participant_b)

    def involves(self, player_id: str) -> bool:
        return player_id in self.participants

    def to_dict(self, reveal: bool = False) -> dict:
        data = {
            "id": self.id,
            "participants": list(self.participants),
            "stake_each": self.stake_each,
            "pot": self.pot,
            "state": self.state.value,
            "ticks_remaining": self.ticks_remaining,
            "created_at": self.created_at.isoformat(),
        }
        if reveal or self.state == DuelState.RESOLVED:
            data["winner"] = self.winner
        return data


class DuelEngine:
    """Runs accepted duels: countdown, payout, escrow clearing."""

    def __init__(self, ctx: WagerContext):
        self.ctx = ctx
        self._active: Dict[str, Duel] = {}

    def is_in_duel(self, player_id: str) -> bool:
        return any(duel.involves(player_id) for duel in self._active.values())

    def get(self, duel_id: str) -> Optional[Duel]:
        return self._active.get(duel_id)

    def active_duels(self) -> List[Duel]:
        return list(self._active.values())

    def start_duel(self, player_a: str, player_b: str, stake_each: int) -> Duel:
        """
        Start the countdown for a duel whose stakes are already escrowed.

        The caller (the request negotiator) has debited both players and
        checked neither is in another duel.
        """
        settings = self.ctx.settings
        duel = Duel(
            id=uuid.uuid4().hex[:12],
            participant_a=player_a,
            participant_b=player_b,
            stake_each=stake_each,
            winner=self.ctx.rng.random_choice([player_a, player_b]),
            ticks_remaining=settings.duel_countdown_ticks,
            created_at=self.ctx.now(),
        )
        self._active[duel.id] = duel
        duel.timer = self.ctx.scheduler.call_every(
            settings.duel_tick_seconds, partial(self.tick, duel.id), name=f"duel-tick-{duel.id}"
        )

        logger.info(
            f"Duel {duel.id} started: {player_a} vs {player_b} for {duel.pot} RP"
        )
        self.ctx.emit(
            "duel_started",
            duel_id=duel.id,
            participants=[player_a, player_b],
            stake_each=stake_each,
            pot=duel.pot,
            count=duel.ticks_remaining,
        )
        return duel

    def tick(self, duel_id: str) -> Optional[Duel]:
        """Advance one countdown step; the last step pays out."""
        duel = self._active.get(duel_id)
        if duel is None or duel.state != DuelState.COUNTDOWN:
            return None

        duel.ticks_remaining -= 1
        if duel.ticks_remaining > 0:
            self.ctx.emit(
                "duel_count",
                duel_id=duel.id,
                participants=list(duel.participants),
                count=duel.ticks_remaining,
            )
            return duel

        self._resolve(duel)
        return duel

    def _resolve(self, duel: Duel):
        if duel.timer is not None:
            duel.timer.cancel()
        duel.state = DuelState.RESOLVED
        self._active.pop(duel.id, None)

        try:
            self.ctx.ledger.credit(duel.winner, duel.pot)
        except LedgerError:
            # Escrow stays: both stakes are refunded by the next recovery pass
            logger.error(
                f"Duel {duel.id}: paying {duel.pot} RP to {duel.winner} failed, "
                f"escrow kept for recovery",
                extra={"duel_id": duel.id, "player_id": duel.winner, "pot": duel.pot},
            )
            self.ctx.emit(
                "duel_payout_failed",
                duel_id=duel.id,
                participants=list(duel.participants),
                pot=duel.pot,
            )
            raise

        self.ctx.escrow.release_many(
            EscrowPurpose.DUEL,
            [(duel.participant_a, duel.stake_each), (duel.participant_b, duel.stake_each)],
        )
        logger.info(
            f"Duel {duel.id}: {duel.winner} won {duel.pot} RP from {duel.loser}",
            extra={"duel_id": duel.id, "player_id": duel.winner, "pot": duel.pot},
        )
        self.ctx.emit(
            "duel_won",
            duel_id=duel.id,
            participants=list(duel.participants),
            winner=duel.winner,
            loser=duel.loser,
            pot=duel.pot,
        )

    def cancel_all(self):
        """Stop every countdown. Escrow stays, so stakes are refunded on restart."""
        for duel in self._active.values():
            if duel.timer is not None:
                duel.timer.cancel()
        if self._active:
            logger.warning(f"Stopped {len(self._active)} duels mid-countdown")
        self._active.clear()
