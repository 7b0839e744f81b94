from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from orderguard.database import get_connection
from orderguard.errors import InvalidIdentifier
from orderguard.models.signals import (
    BlocklistEntry,
    BlocklistMutationResponse,
    BlocklistRequest,
    IdentifierType,
)
from orderguard.services.blocklist import MAX_REVERSE_LOOKUP, BlocklistMatcher
from orderguard.services.normalize import normalize_identifier
from orderguard.services.order_history import OrderHistory
from orderguard.services.signal_store import SignalStore

router = APIRouter(tags=["blocklist"])


def _matcher() -> BlocklistMatcher:
    conn = get_connection()
    return BlocklistMatcher(SignalStore(conn), OrderHistory(conn))


@router.get("/blocklist")
async def list_blocklist(identifier_type: Optional[IdentifierType] = Query(None)):
    """List blocklist entries, newest first."""
    entries: List[BlocklistEntry] = _matcher().entries(identifier_type)
    return {"entries": entries}


@router.post("/blocklist", response_model=BlocklistMutationResponse)
async def add_to_blocklist(request: BlocklistRequest) -> BlocklistMutationResponse:
    """Add an identifier. Adding an existing entry reports already_exists."""
    try:
        outcome = _matcher().add(request.identifier_type, request.identifier_value, request.reason)
    except InvalidIdentifier as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return BlocklistMutationResponse(
        outcome=outcome,
        identifier_type=request.identifier_type,
        identifier_value=normalize_identifier(request.identifier_type, request.identifier_value),
    )


@router.delete(
    "/blocklist/{identifier_type}/{identifier_value}",
    response_model=BlocklistMutationResponse,
)
async def remove_from_blocklist(
    identifier_type: IdentifierType, identifier_value: str
) -> BlocklistMutationResponse:
    """Remove an identifier. Removing a missing entry reports not_found."""
    outcome = _matcher().remove(identifier_type, identifier_value)
    return BlocklistMutationResponse(
        outcome=outcome,
        identifier_type=identifier_type,
        identifier_value=normalize_identifier(identifier_type, identifier_value),
    )


@router.get("/blocklist/{identifier_type}/{identifier_value}/orders")
async def get_blocked_orders(
    identifier_type: IdentifierType,
    identifier_value: str,
    limit: int = Query(MAX_REVERSE_LOOKUP, ge=1, le=MAX_REVERSE_LOOKUP),
):
    """Orders that reference the identifier, newest first."""
    order_ids = _matcher().find_orders_for(identifier_type, identifier_value, limit)
    return {"order_ids": order_ids, "count": len(order_ids)}
