import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from app.config import settings
from app.core.logger import get_logger
from app.routers.api import get_wager, winner_to_dict

logger = get_logger("admin")


def require_admin(x_admin_key: str = Header(default="")):
    """Privileged routes need the configured admin key."""
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.security.admin_key):
        raise HTTPException(status_code=403, detail="Admin privileges required")


router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/jackpot/force-draw")
async def force_draw(request: Request):
    record = get_wager(request).force_draw_jackpot()
    logger.info("Admin forced a jackpot draw")
    return {
        "success": True,
        "winner": winner_to_dict(record) if record else None,
        "status": get_wager(request).query_jackpot_status(),
    }


@router.get("/escrow")
async def outstanding_escrow(request: Request):
    entries = get_wager(request).outstanding_escrow()
    return {
        "entries": entries,
        "total": sum(entry["amount"] for entry in entries),
    }
