from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field
from typing import Optional

from app.core.logger import get_logger
from app.core.wagering import WagerSystem
from app.core.winners import WinnerRecord

logger = get_logger("api")

router = APIRouter()

# ==================== Request Models ====================

class DuelRequestCreate(BaseModel):
    sender_id: str = Field(min_length=1)
    receiver_id: str = Field(min_length=1)
    amount: int


class DuelRequestResponse(BaseModel):
    receiver_id: str = Field(min_length=1)


class JackpotEntryRequest(BaseModel):
    player_id: str = Field(min_length=1)
    amount: int
    display_name: Optional[str] = None


# ==================== Helpers ====================

def get_wager(request: Request) -> WagerSystem:
    return request.app.state.wager


def display_chance(chance: float) -> float:
    """Win chances are kept exact and shown to two decimals."""
    return round(chance, 2)


def winner_to_dict(record: WinnerRecord) -> dict:
    return {**record.to_dict(), "win_chance": display_chance(record.win_chance)}


# ==================== Duels ====================

@router.post("/duels/requests")
async def create_duel_request(request: Request, data: DuelRequestCreate):
    wager = get_wager(request)
    duel_request = wager.create_duel_request(data.sender_id, data.receiver_id, data.amount)
    return {"success": True, "request": duel_request.to_dict()}


@router.delete("/duels/requests/{sender_id}")
async def cancel_duel_request(request: Request, sender_id: str):
    duel_request = get_wager(request).cancel_duel_request(sender_id)
    return {"success": True, "request": duel_request.to_dict()}


@router.post("/duels/requests/accept")
async def accept_duel_request(request: Request, data: DuelRequestResponse):
    duel = get_wager(request).accept_duel_request(data.receiver_id)
    return {"success": True, "duel": duel.to_dict()}


@router.post("/duels/requests/deny")
async def deny_duel_request(request: Request, data: DuelRequestResponse):
    duel_request = get_wager(request).deny_duel_request(data.receiver_id)
    return {"success": True, "request": duel_request.to_dict()}


@router.get("/duels/requests/{player_id}")
async def list_duel_requests(request: Request, player_id: str):
    return get_wager(request).duel_requests_for(player_id)


@router.get("/duels/active")
async def active_duels(request: Request):
    return {"duels": [duel.to_dict() for duel in get_wager(request).active_duels()]}


# ==================== Jackpot ====================

@router.post("/jackpot/enter")
async def enter_jackpot(request: Request, data: JackpotEntryRequest):
    result = get_wager(request).enter_jackpot(data.player_id, data.amount, data.display_name)
    return {"success": True, **result, "win_chance": display_chance(result["win_chance"])}


@router.get("/jackpot/status")
async def jackpot_status(request: Request):
    return get_wager(request).query_jackpot_status()


@router.get("/jackpot/winners")
async def jackpot_winners(request: Request, page: int = Query(0)):
    winners = get_wager(request).list_winners(page)
    return {"page": page, "winners": [winner_to_dict(record) for record in winners]}
