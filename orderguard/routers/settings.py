from fastapi import APIRouter

from orderguard.models.settings import GuardSettings, SettingsUpdate
from orderguard.services.settings_store import load_settings, update_settings

router = APIRouter(tags=["settings"])


@router.get("/settings", response_model=GuardSettings)
async def get_settings() -> GuardSettings:
    return load_settings()


@router.put("/settings", response_model=GuardSettings)
async def put_settings(request: SettingsUpdate) -> GuardSettings:
    """Update the given settings; omitted fields keep their value."""
    return update_settings(request)
