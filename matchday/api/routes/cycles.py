"""Cycle resolution status endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.api.dependencies import get_db
from matchday.services.cycles import get_resolution_status

router = APIRouter(prefix="/api/cycles", tags=["cycles"])


@router.get("/resolution-status")
async def resolution_status(
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Recent cycles with their resolution and evaluation state."""
    return await get_resolution_status(db, limit=limit)
