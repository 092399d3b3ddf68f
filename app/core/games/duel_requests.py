"""
Duel request negotiation: send -> accept / deny / expire.

A sender may have one outstanding request. Several senders may target the
same receiver at once; accepting takes the oldest. Accepting escrows both
stakes and hands the pair to the duel engine.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Dict, List, Optional

from app.core.context import WagerContext
from app.core.escrow import EscrowPurpose
from app.core.exceptions import (
    AlreadyInDuel,
    AlreadyPendingRequest,
    AlreadySentRequest,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    NoPendingRequest,
    SelfDuel,
)
from app.core.games.duel import Duel, DuelEngine
from app.core.logger import get_logger
from app.core.scheduler import TimerHandle

logger = get_logger("duel_requests")


@dataclass
class DuelRequest:
    id: str
    sender_id: str
    receiver_id: str
    amount: int
    created_at: datetime
    expires_at: datetime
    timer: Optional[TimerHandle] = field(default=None, repr=False, compare=False)

    @property
    def pot(self) -> int:
        return self.amount * 2

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "amount": self.amount,
            "pot": self.pot,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class RequestNegotiator:
    def __init__(self, ctx: WagerContext, duels: DuelEngine):
        self.ctx = ctx
        self.duels = duels
        # sender_id -> request, in creation order
        self._requests: Dict[str, DuelRequest] = {}

    # ==================== Queries ====================

    def outgoing(self, sender_id: str) -> Optional[DuelRequest]:
        return self._requests.get(sender_id)

    def pending_for(self, receiver_id: str) -> Optional[DuelRequest]:
        """Oldest request addressed to `receiver_id`."""
        for request in self._requests.values():
            if request.receiver_id == receiver_id:
                return request
        return None

    def incoming(self, receiver_id: str) -> List[DuelRequest]:
        return [r for r in self._requests.values() if r.receiver_id == receiver_id]

    def __len__(self):
        return len(self._requests)

    # ==================== Operations ====================

    def create_request(self, sender_id: str, receiver_id: str, amount: int) -> DuelRequest:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(amount=amount)
        if sender_id == receiver_id:
            raise SelfDuel()

        balance = self.ctx.ledger.balance(sender_id)
        if balance < amount:
            raise InsufficientBalance(
                f"You cannot bet {amount} RP, you only have {balance} RP",
                player_id=sender_id,
                balance=balance,
                amount=amount,
            )
        if self.pending_for(sender_id) is not None:
            raise AlreadyPendingRequest(player_id=sender_id)
        if sender_id in self._requests:
            raise AlreadySentRequest(player_id=sender_id)
        if self.duels.is_in_duel(sender_id):
            raise AlreadyInDuel("You are already in a duel", player_id=sender_id)
        if self.duels.is_in_duel(receiver_id):
            raise AlreadyInDuel(f"{receiver_id} is already in a duel", player_id=receiver_id)

        now = self.ctx.now()
        duration = self.ctx.settings.duel_request_duration_seconds
        request = DuelRequest(
            id=uuid.uuid4().hex[:12],
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            created_at=now,
            expires_at=now + timedelta(seconds=duration),
        )
        request.timer = self.ctx.scheduler.call_later(
            duration, partial(self._expire, sender_id, request.id), name=f"duel-request-{request.id}"
        )
        self._requests[sender_id] = request

        logger.info(f"Duel request {request.id}: {sender_id} -> {receiver_id} for {amount} RP each")
        self.ctx.emit("duel_request_sent", **request.to_dict())
        return request

    def accept_request(self, receiver_id: str) -> Duel:
        """
        Accept the oldest request addressed to `receiver_id` and start the duel.

        Both stakes are debited and escrowed before the request is removed,
        all inside this call, so a second accept can never see the request.
        """
        request = self.pending_for(receiver_id)
        if request is None:
            raise NoPendingRequest(player_id=receiver_id)

        sender_id, amount = request.sender_id, request.amount
        for player_id in (receiver_id, sender_id):
            if self.duels.is_in_duel(player_id):
                raise AlreadyInDuel(f"{player_id} is already in a duel", player_id=player_id)
        for player_id in (receiver_id, sender_id):
            if not self.ctx.ledger.has_sufficient_funds(player_id, amount):
                raise InsufficientBalance(
                    f"{player_id} cannot cover the {amount} RP stake",
                    player_id=player_id,
                    amount=amount,
                )

        self._take_stake(receiver_id, amount)
        try:
            self._take_stake(sender_id, amount)
        except (InsufficientBalance, LedgerError):
            self._return_stake(receiver_id, amount)
            raise

        self._discard(request)
        self.ctx.emit("duel_request_accepted", **request.to_dict())
        return self.duels.start_duel(sender_id, receiver_id, amount)

    def deny_request(self, receiver_id: str) -> DuelRequest:
        request = self.pending_for(receiver_id)
        if request is None:
            raise NoPendingRequest(player_id=receiver_id)
        self._discard(request)
        logger.info(f"Duel request {request.id} denied by {receiver_id}")
        self.ctx.emit("duel_request_denied", **request.to_dict())
        return request

    def cancel_request(self, sender_id: str) -> DuelRequest:
        """Withdraw the sender's own outstanding request."""
        request = self._requests.get(sender_id)
        if request is None:
            raise NoPendingRequest("You have no outstanding request", player_id=sender_id)
        self._discard(request)
        logger.info(f"Duel request {request.id} withdrawn by {sender_id}")
        self.ctx.emit("duel_request_cancelled", **request.to_dict())
        return request

    def cancel_all(self):
        for request in list(self._requests.values()):
            self._discard(request)

    # ==================== Internals ====================

    def _take_stake(self, player_id: str, amount: int):
        self.ctx.ledger.debit(player_id, amount)
        self.ctx.escrow.hold(EscrowPurpose.DUEL, player_id, amount)

    def _return_stake(self, player_id: str, amount: int):
        try:
            self.ctx.ledger.credit(player_id, amount)
        except LedgerError:
            # Escrow entry stays and startup recovery refunds it
            logger.exception(f"Rollback credit of {amount} RP to {player_id} failed")
            return
        self.ctx.escrow.release(EscrowPurpose.DUEL, player_id, amount)
        logger.warning(f"Rolled back {amount} RP duel stake of {player_id}")

    def _discard(self, request: DuelRequest):
        if self._requests.get(request.sender_id) is request:
            del self._requests[request.sender_id]
        if request.timer is not None:
            request.timer.cancel()

    def _expire(self, sender_id: str, request_id: str):
        request = self._requests.get(sender_id)
        if request is None or request.id != request_id:
            return
        del self._requests[sender_id]
        logger.info(f"Duel request {request.id} from {sender_id} expired")
        self.ctx.emit("duel_request_expired", **request.to_dict())
