# backend/tutorlink/routes/v1/points.py
"""
Points routes - API v1

Endpoints:
    GET /balance - The caller's current points balance
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import get_current_user, get_points_ledger
from ...core.exceptions import RepositoryException, raise_503_if_pool_exhaustion
from ...models.user import User
from ...schemas.tutoring_session import PointsBalanceResponse
from ...services.points_ledger import PointsLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["points-v1"])


@router.get("/balance", response_model=PointsBalanceResponse)
async def get_balance(
    current_user: User = Depends(get_current_user),
    ledger: PointsLedger = Depends(get_points_ledger),
) -> PointsBalanceResponse:
    try:
        balance = await asyncio.to_thread(ledger.get_balance, current_user.id)
    except RepositoryException as exc:
        raise_503_if_pool_exhaustion(exc)
        raise
    return PointsBalanceResponse(user_id=current_user.id, points_balance=balance)
