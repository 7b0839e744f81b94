import logging

from fastapi import APIRouter

from orderguard.database import get_connection
from orderguard.models.decision import Action, CheckoutRequest, Decision
from orderguard.services.attempt_log import AttemptLog
from orderguard.services.checkout_gate import CheckoutGate
from orderguard.services.order_history import OrderHistory
from orderguard.services.settings_store import load_settings
from orderguard.services.signal_store import SignalStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


@router.post("/checkout/evaluate", response_model=Decision)
async def evaluate_checkout(request: CheckoutRequest) -> Decision:
    """Decide whether a checkout attempt is allowed, flagged or blocked.

    Nothing is recorded against cooldowns here; that happens when the order
    is actually placed.
    """
    conn = get_connection()
    gate = CheckoutGate(SignalStore(conn), OrderHistory(conn), load_settings(conn))
    decision = gate.evaluate(
        phone=request.phone,
        ip=request.ip,
        address=request.address_1,
        name=request.customer_name,
        device_id=request.device_id,
        city=request.city,
        postcode=request.postcode,
    )

    if decision.action != Action.ALLOW:
        logger.info(
            "Checkout %s for phone=%s ip=%s: %s",
            decision.action.value,
            request.phone,
            request.ip,
            ", ".join(decision.reasons),
        )
        AttemptLog(conn).record(
            decision, phone=request.phone, ip=request.ip, customer_name=request.customer_name
        )
    return decision
