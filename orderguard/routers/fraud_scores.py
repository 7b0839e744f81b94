import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from orderguard.database import get_connection, utcnow
from orderguard.errors import InvalidIdentifier, OrderNotFound
from orderguard.models.scoring import BatchJobState, BatchRequest, BatchStatus, FraudScoreResponse
from orderguard.services.fraud_scorer import FraudScoreAggregator
from orderguard.services.order_history import OrderHistory
from orderguard.services.settings_store import load_settings
from orderguard.services.signal_store import SignalStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["fraud-scores"])

BATCH_IDLE_TIMEOUT_SECONDS = 300


class BatchRunGuard:
    """Running flag held across every chunk of one batch run.

    While a run is active only its next chunk (the offset it returned) is
    accepted. A run idle for longer than the timeout counts as abandoned.
    """

    def __init__(self, idle_timeout_seconds: int = BATCH_IDLE_TIMEOUT_SECONDS):
        self.idle_timeout_seconds = idle_timeout_seconds
        self.reset()

    def reset(self) -> None:
        self.active = False
        self.next_offset = 0
        self.last_seen: Optional[datetime] = None

    def admits(self, offset: int, now: datetime) -> bool:
        if self.active and (now - self.last_seen).total_seconds() >= self.idle_timeout_seconds:
            logger.warning("Batch run idle at offset %d, treating it as abandoned", self.next_offset)
            self.reset()
        return not self.active or offset == self.next_offset

    def advance(self, state: BatchJobState, now: datetime) -> None:
        if state.completed:
            self.reset()
            return
        self.active = True
        self.next_offset = state.offset
        self.last_seen = now


batch_guard = BatchRunGuard()


def _aggregator() -> FraudScoreAggregator:
    conn = get_connection()
    return FraudScoreAggregator(SignalStore(conn), OrderHistory(conn), load_settings(conn))


@router.get("/fraud-scores/{phone}", response_model=FraudScoreResponse)
async def get_fraud_score(
    phone: str,
    order_id: Optional[int] = Query(None, description="Order to take order-level signals from"),
    force_refresh: bool = Query(False, description="Ignore a fresh cached score"),
) -> FraudScoreResponse:
    """Fraud score for a phone, served from cache while it is fresh."""
    try:
        return _aggregator().get_score(phone, order_id=order_id, force_refresh=force_refresh)
    except InvalidIdentifier as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except OrderNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/fraud-scores/batch", response_model=BatchStatus)
async def run_fraud_score_batch(request: BatchRequest) -> BatchStatus:
    """Score one chunk of orders. Call again with the returned state until completed."""
    now = utcnow()
    if not batch_guard.admits(request.offset, now):
        raise HTTPException(
            status_code=409,
            detail=f"Another batch run is active; its next chunk starts at offset {batch_guard.next_offset}",
        )

    state = BatchJobState(
        offset=request.offset,
        mode=request.mode,
        total_updated=request.total_updated,
        total_failed=request.total_failed,
        total_skipped=request.total_skipped,
        total_processed=request.total_processed,
    )
    result = _aggregator().run_batch(
        offset=request.offset,
        mode=request.mode,
        batch_size=request.batch_size,
        state=state,
        now=now,
    )
    batch_guard.advance(result, now)

    return BatchStatus(status="completed" if result.completed else "running", state=result)
