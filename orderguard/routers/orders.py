import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from orderguard.database import get_connection, utcnow
from orderguard.errors import InvalidIdentifier
from orderguard.models.orders import OrderPlacementResponse, OrderRequest
from orderguard.models.signals import IdentifierType, SimilarMatch
from orderguard.services.cooldown import CooldownDetector
from orderguard.services.fraud_scorer import FraudScoreAggregator
from orderguard.services.order_history import OrderHistory
from orderguard.services.settings_store import load_settings
from orderguard.services.signal_store import SignalStore
from orderguard.services.similarity import DuplicateDetector, fingerprint_from_order

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])

HOLD_STATUS = "on-hold"


@router.post("/orders", status_code=201, response_model=OrderPlacementResponse)
async def place_order(request: OrderRequest) -> OrderPlacementResponse:
    """Record a confirmed order: store it, start its cooldowns and score it."""
    conn = get_connection()
    settings = load_settings(conn)
    store = SignalStore(conn)
    history = OrderHistory(conn)

    order = history.add_order(request)
    cooldown = CooldownDetector(store, history)
    placed_at = utcnow()
    cooldown.record_order(IdentifierType.PHONE, order.phone, now=placed_at)
    if order.ip:
        cooldown.record_order(IdentifierType.IP, order.ip, now=placed_at)

    aggregator = FraudScoreAggregator(store, history, settings)
    try:
        score = aggregator.get_score(order.phone, order.id, force_refresh=True)
    except InvalidIdentifier as exc:
        logger.warning("Order %s was not scored: %s", order.id, exc)
        return OrderPlacementResponse(order=order)

    held = False
    threshold = settings.auto_block_threshold
    if threshold and score.score >= threshold:
        history.set_status(order.id, HOLD_STATUS)
        held = True
        logger.warning(
            "Order %s put on hold: fraud score %d (%s) reached threshold %d",
            order.id,
            score.score,
            score.risk_tier.value,
            threshold,
        )

    return OrderPlacementResponse(
        order=history.get_order(order.id),
        fraud_score=score.score,
        risk_tier=score.risk_tier.value,
        held=held,
    )


@router.get("/orders/{order_id}/similar", response_model=List[SimilarMatch])
async def get_similar_orders(
    order_id: int,
    window_hours: int = Query(24, ge=1, description="Look-back window in hours"),
    name_threshold: Optional[int] = Query(None, ge=0, le=100, description="Name similarity threshold"),
) -> List[SimilarMatch]:
    """Recent orders sharing this order's address or a similar customer name."""
    conn = get_connection()
    settings = load_settings(conn)
    history = OrderHistory(conn)
    order = history.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")

    threshold = settings.name_similarity_threshold if name_threshold is None else name_threshold
    return DuplicateDetector(history).find_similar(
        fingerprint_from_order(order),
        window_hours,
        threshold,
        limit=settings.recent_order_limit,
    )
