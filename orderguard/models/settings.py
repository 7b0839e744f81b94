from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class GuardSettings(BaseModel):
    """Site-wide guard configuration, loaded once per request and passed explicitly."""

    phone_cooldown_enabled: bool = False
    phone_cooldown_hours: int = Field(default=24, ge=1, le=720)
    ip_cooldown_enabled: bool = False
    ip_cooldown_hours: int = Field(default=1, ge=1, le=720)
    address_detection_enabled: bool = False
    max_orders_per_address: int = Field(default=5, ge=1)
    address_window_hours: int = Field(default=24, ge=1)
    name_similarity_enabled: bool = False
    name_similarity_threshold: int = Field(default=80, ge=0, le=100)
    name_window_hours: int = Field(default=24, ge=1)
    recent_order_limit: int = Field(default=100, ge=1, le=1000)
    cache_ttl_seconds: int = Field(default=21600, ge=0)
    phone_validation_enabled: bool = False
    warn_only: bool = False
    blocklist_fail_closed: bool = False
    whitelist_enabled: bool = False
    whitelisted_phones: list[str] = Field(default_factory=list)
    whitelisted_ips: list[str] = Field(default_factory=list)
    cooldown_retention_days: int = Field(default=30, ge=1)
    auto_block_threshold: int = Field(default=0, ge=0, le=100)

    model_config = {"frozen": True}


class SettingsUpdate(BaseModel):
    """Partial update payload; omitted fields keep their stored value."""

    phone_cooldown_enabled: Optional[bool] = None
    phone_cooldown_hours: Optional[int] = Field(default=None, ge=1, le=720)
    ip_cooldown_enabled: Optional[bool] = None
    ip_cooldown_hours: Optional[int] = Field(default=None, ge=1, le=720)
    address_detection_enabled: Optional[bool] = None
    max_orders_per_address: Optional[int] = Field(default=None, ge=1)
    address_window_hours: Optional[int] = Field(default=None, ge=1)
    name_similarity_enabled: Optional[bool] = None
    name_similarity_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    name_window_hours: Optional[int] = Field(default=None, ge=1)
    recent_order_limit: Optional[int] = Field(default=None, ge=1, le=1000)
    cache_ttl_seconds: Optional[int] = Field(default=None, ge=0)
    phone_validation_enabled: Optional[bool] = None
    warn_only: Optional[bool] = None
    blocklist_fail_closed: Optional[bool] = None
    whitelist_enabled: Optional[bool] = None
    whitelisted_phones: Optional[list[str]] = None
    whitelisted_ips: Optional[list[str]] = None
    cooldown_retention_days: Optional[int] = Field(default=None, ge=1)
    auto_block_threshold: Optional[int] = Field(default=None, ge=0, le=100)
