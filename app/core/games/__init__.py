"""Wager game engines: duel negotiation, duel resolution and the jackpot."""

from .duel import Duel, DuelEngine, DuelState
from .duel_requests import DuelRequest, RequestNegotiator
from .jackpot import JackpotEngine, JackpotRound, RoundState

__all__ = [
    "Duel",
    "DuelEngine",
    "DuelState",
    "DuelRequest",
    "RequestNegotiator",
    "JackpotEngine",
    "JackpotRound",
    "RoundState",
]
