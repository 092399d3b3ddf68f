"""
Jackpot - recurring weighted lottery.
Features:
- Timed entry window per round, then a weighted draw
- Win probability proportional to each player's share of the pot
- Repeat entries top up a player's contribution
- Admin force-draw that supersedes the round timer
- Automatic next round after a cooldown, with or without a winner
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from app.core.context import WagerContext
from app.core.escrow import EscrowPurpose
from app.core.exceptions import (
    AboveMaximum,
    BelowMinimum,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    NoActiveJackpot,
)
from app.core.logger import get_logger
from app.core.scheduler import TimerHandle
from app.core.winners import WinnerRecord

logger = get_logger("jackpot")


class RoundState(str, Enum):
    OPEN = "open"
    DRAWING = "drawing"
    SETTLED = "settled"


@dataclass
class JackpotRound:
    id: str
    opened_at: datetime
    end_at: datetime
    state: RoundState = RoundState.OPEN
    pot: int = 0
    # Insertion order is draw order
    contributions: Dict[str, int] = field(default_factory=dict)
    display_names: Dict[str, str] = field(default_factory=dict)

    def contribute(self, player_id: str, amount: int) -> int:
        """Add to a player's contribution without reordering. Returns the new total."""
        self.contributions[player_id] = self.contributions.get(player_id, 0) + amount
        self.pot += amount
        return self.contributions[player_id]

    def win_chance(self, player_id: str) -> float:
        """Player's share of the pot as a percentage."""
        if self.pot == 0:
            return 0.0
        return self.contributions.get(player_id, 0) / self.pot * 100

    def pick_winner(self, draw_value: int) -> Optional[str]:
        """
        First contributor whose running total exceeds `draw_value`.

        With `draw_value` uniform in [0, pot) each contributor covers a
        slice of the range as wide as their contribution.
        """
        running = 0
        for player_id, amount in self.contributions.items():
            running += amount
            if running > draw_value:
                return player_id
        return None

    def display_name(self, player_id: str) -> str:
        return self.display_names.get(player_id) or player_id


class JackpotEngine:
    """
    Owns the current round and its timers. At most one round is open; after
    settlement exactly one successor is scheduled.
    """

    def __init__(self, ctx: WagerContext):
        self.ctx = ctx
        self.current_round: Optional[JackpotRound] = None
        self.next_round_at: Optional[datetime] = None
        self.rounds_played = 0
        self._end_timer: Optional[TimerHandle] = None
        self._recycle_timer: Optional[TimerHandle] = None

    # ==================== Lifecycle ====================

    def start(self):
        """Open the first round unless one is already open or scheduled."""
        if self.current_round is None and self._recycle_timer is None:
            self.open_round()

    def open_round(self) -> JackpotRound:
        self._recycle_timer = None
        self.next_round_at = None

        duration = self.ctx.settings.jackpot_end_frequency_seconds
        now = self.ctx.now()
        jackpot_round = JackpotRound(
            id=uuid.uuid4().hex[:12],
            opened_at=now,
            end_at=now + timedelta(seconds=duration),
        )
        self.current_round = jackpot_round
        self._end_timer = self.ctx.scheduler.call_later(
            duration, self.end_round, name=f"jackpot-end-{jackpot_round.id}"
        )

        logger.info(f"Jackpot round {jackpot_round.id} opened, ends {jackpot_round.end_at.isoformat()}")
        self.ctx.emit(
            "jackpot_opened",
            round_id=jackpot_round.id,
            end_at=jackpot_round.end_at.isoformat(),
        )
        return jackpot_round

    def stop(self):
        """
        Cancel timers and drop the in-flight round for shutdown.

        Its bets stay in escrow for the next startup to refund; `start` then
        opens a fresh round.
        """
        for timer in (self._end_timer, self._recycle_timer):
            if timer is not None:
                timer.cancel()
        self._end_timer = None
        self._recycle_timer = None
        if self.current_round is not None:
            logger.warning(
                f"Jackpot round {self.current_round.id} stopped with {self.current_round.pot} RP in escrow",
                extra={"round_id": self.current_round.id, "pot": self.current_round.pot},
            )
        self.current_round = None
        self.next_round_at = None

    # ==================== Entries ====================

    def add_bet(self, player_id: str, amount: int, display_name: str = None) -> Dict:
        """
        Enter the open round.

        Args:
            player_id: Stable player id (the payout target)
            amount: RP to add to the player's contribution
            display_name: Name shown in the winner history

        Returns:
            Dict with the player's contribution, the pot and their win chance
        """
        jackpot_round = self.current_round
        if jackpot_round is None or jackpot_round.state != RoundState.OPEN:
            raise NoActiveJackpot()

        settings = self.ctx.settings
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(amount=amount)
        if amount < settings.minimum_jackpot_entry:
            raise BelowMinimum(
                f"Minimum entry is {settings.minimum_jackpot_entry} RP",
                minimum=settings.minimum_jackpot_entry,
            )
        if amount > settings.maximum_jackpot_entry:
            raise AboveMaximum(
                f"Maximum entry is {settings.maximum_jackpot_entry} RP",
                maximum=settings.maximum_jackpot_entry,
            )
        if not self.ctx.ledger.has_sufficient_funds(player_id, amount):
            raise InsufficientBalance(player_id=player_id, amount=amount)

        self.ctx.ledger.debit(player_id, amount)
        self.ctx.escrow.hold(EscrowPurpose.JACKPOT, player_id, amount)

        is_new = player_id not in jackpot_round.contributions
        previous = jackpot_round.contributions.get(player_id, 0)
        contribution = jackpot_round.contribute(player_id, amount)
        if display_name:
            jackpot_round.display_names[player_id] = display_name
        chance = jackpot_round.win_chance(player_id)

        logger.info(
            f"{player_id} bet {amount} RP in round {jackpot_round.id} "
            f"(pot {jackpot_round.pot}, chance {chance:.2f}%)",
            extra={"round_id": jackpot_round.id, "player_id": player_id, "amount": amount},
        )
        self.ctx.emit(
            "jackpot_bet",
            round_id=jackpot_round.id,
            player_id=player_id,
            new_entrant=is_new,
            previous_contribution=previous,
            contribution=contribution,
            pot=jackpot_round.pot,
            entrants=len(jackpot_round.contributions),
        )
        return {
            "round_id": jackpot_round.id,
            "player_id": player_id,
            "amount": amount,
            "contribution": contribution,
            "pot": jackpot_round.pot,
            "win_chance": chance,
            "entrants": len(jackpot_round.contributions),
        }

    def win_chance(self, player_id: str) -> float:
        if self.current_round is None:
            return 0.0
        return self.current_round.win_chance(player_id)

    # ==================== Draw ====================

    def draw_winner(self, jackpot_round: JackpotRound) -> Optional[str]:
        """Weighted pick over the round's contributions; None for an empty pot."""
        if jackpot_round.pot <= 0:
            return None
        return jackpot_round.pick_winner(self.ctx.rng.random_below(jackpot_round.pot))

    def force_draw(self) -> Optional[WinnerRecord]:
        """Privileged: end the open round now instead of at its scheduled time."""
        if self.current_round is None or self.current_round.state != RoundState.OPEN:
            raise NoActiveJackpot()
        logger.info(f"Force draw requested for round {self.current_round.id}")
        return self.end_round()

    def end_round(self) -> Optional[WinnerRecord]:
        """
        Draw, pay out and settle the open round, then schedule the next one.

        Shared by the round timer and force_draw; whichever runs first cancels
        the other, and a round that is no longer open is left alone.
        """
        jackpot_round = self.current_round
        if jackpot_round is None or jackpot_round.state != RoundState.OPEN:
            return None

        if self._end_timer is not None:
            self._end_timer.cancel()
            self._end_timer = None

        jackpot_round.state = RoundState.DRAWING
        try:
            return self._settle(jackpot_round)
        finally:
            jackpot_round.state = RoundState.SETTLED
            self.current_round = None
            self.rounds_played += 1
            self._schedule_next_round()

    def _settle(self, jackpot_round: JackpotRound) -> Optional[WinnerRecord]:
        winner_id = self.draw_winner(jackpot_round)
        if winner_id is None:
            logger.info(f"Jackpot round {jackpot_round.id} ended without entrants")
            self.ctx.emit("jackpot_no_winner", round_id=jackpot_round.id)
            return None

        pot = jackpot_round.pot
        chance = jackpot_round.win_chance(winner_id)
        try:
            self.ctx.ledger.credit(winner_id, pot)
        except LedgerError:
            # Escrow stays: every contributor is refunded at next startup
            logger.exception(
                f"Jackpot round {jackpot_round.id}: paying {pot} RP to {winner_id} failed, "
                f"escrow kept for recovery",
                extra={"round_id": jackpot_round.id, "player_id": winner_id, "pot": pot},
            )
            self.ctx.emit(
                "jackpot_payout_failed", round_id=jackpot_round.id, winner=winner_id, pot=pot
            )
            return None

        record = WinnerRecord(
            display_name=jackpot_round.display_name(winner_id),
            amount_won=pot,
            win_chance=chance,
            timestamp=self.ctx.now(),
        )
        self.ctx.winners.append(record)
        self.ctx.escrow.release_many(EscrowPurpose.JACKPOT, jackpot_round.contributions.items())

        logger.info(
            f"Jackpot round {jackpot_round.id}: {winner_id} won {pot} RP with {chance:.2f}% chance",
            extra={"round_id": jackpot_round.id, "player_id": winner_id, "pot": pot},
        )
        self.ctx.emit(
            "jackpot_won",
            round_id=jackpot_round.id,
            winner=winner_id,
            display_name=record.display_name,
            pot=pot,
            win_chance=round(record.win_chance, 2),
        )
        return record

    def _schedule_next_round(self):
        if self._recycle_timer is not None:
            logger.error("Next jackpot round already scheduled; not scheduling another")
            return
        cooldown = self.ctx.settings.jackpot_cooldown_seconds
        self.next_round_at = self.ctx.now() + timedelta(seconds=cooldown)
        self._recycle_timer = self.ctx.scheduler.call_later(
            cooldown, self.open_round, name="jackpot-recycle"
        )
        logger.info(f"Next jackpot round opens {self.next_round_at.isoformat()}")

    # ==================== Status ====================

    def status(self) -> Dict:
        jackpot_round = self.current_round
        if jackpot_round is None:
            return {
                "active": False,
                "round_id": None,
                "pot": 0,
                "entrants": 0,
                "remaining_seconds": None,
                "end_at": None,
                "next_round_at": self.next_round_at.isoformat() if self.next_round_at else None,
            }
        remaining = (jackpot_round.end_at - self.ctx.now()).total_seconds()
        return {
            "active": jackpot_round.state == RoundState.OPEN,
            "round_id": jackpot_round.id,
            "pot": jackpot_round.pot,
            "entrants": len(jackpot_round.contributions),
            "remaining_seconds": max(0, int(remaining)),
            "end_at": jackpot_round.end_at.isoformat(),
            "next_round_at": None,
        }
