from fastapi import APIRouter, Query

from orderguard.models.decision import AttemptStats
from orderguard.services.attempt_log import AttemptLog

router = APIRouter(tags=["blocked-attempts"])


@router.get("/blocked-attempts")
async def list_blocked_attempts(limit: int = Query(20, ge=1, le=500)):
    """Most recent flagged or blocked checkout attempts."""
    return {"attempts": AttemptLog().recent(limit)}


@router.get("/blocked-attempts/stats", response_model=AttemptStats)
async def get_blocked_attempt_stats(
    days: int = Query(7, ge=1, le=30, description="Number of days to report, ending today"),
) -> AttemptStats:
    return AttemptLog().stats(days)
