from typing import Optional

from fastapi import APIRouter, Query

from orderguard.database import get_connection
from orderguard.models.signals import CooldownStatus, IdentifierType
from orderguard.services.cooldown import CooldownDetector
from orderguard.services.settings_store import load_settings
from orderguard.services.signal_store import SignalStore

router = APIRouter(tags=["cooldowns"])


@router.get("/cooldowns/{identifier_type}/{identifier_value}", response_model=CooldownStatus)
async def get_cooldown(
    identifier_type: IdentifierType,
    identifier_value: str,
    window_hours: Optional[int] = Query(None, ge=1, le=720, description="Defaults to the configured window"),
) -> CooldownStatus:
    conn = get_connection()
    if window_hours is None:
        settings = load_settings(conn)
        window_hours = (
            settings.ip_cooldown_hours
            if identifier_type == IdentifierType.IP
            else settings.phone_cooldown_hours
        )
    return CooldownDetector(SignalStore(conn)).check_cooldown(
        identifier_type, identifier_value, window_hours
    )


@router.post("/cooldowns/prune")
async def prune_cooldowns():
    """Delete cooldown records older than the configured retention."""
    conn = get_connection()
    settings = load_settings(conn)
    removed = CooldownDetector(SignalStore(conn)).prune(settings.cooldown_retention_days)
    return {"removed": removed}
