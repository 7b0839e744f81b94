from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

INACTIVE_STATUSES = ("cancelled", "failed", "trash")
NEGATIVE_OUTCOME_STATUSES = ("cancelled", "failed", "refunded", "returned")


class OrderRequest(BaseModel):
    phone: str = Field(min_length=1)
    ip: str = ""
    device_id: str = ""
    first_name: str = ""
    last_name: str = ""
    address_1: str = ""
    city: str = ""
    postcode: str = ""
    status: str = "processing"
    created_at: Optional[datetime] = None

    @property
    def customer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class OrderRecord(BaseModel):
    id: int
    phone: str
    ip: str
    device_id: str
    customer_name: str
    name_key: str
    address_1: str
    city: str
    postcode: str
    address_key: str
    status: str
    created_at: datetime
    fraud_score: Optional[int] = None
    risk_tier: Optional[str] = None


class OrderFingerprint(BaseModel):
    """Normalized, comparable attributes of an order or checkout attempt."""

    phone: str
    address: str
    customer_name: str
    created_at: datetime
    order_id: Optional[int] = None


class OrderPlacementResponse(BaseModel):
    order: OrderRecord
    fraud_score: Optional[int] = None
    risk_tier: Optional[str] = None
    held: bool = False
