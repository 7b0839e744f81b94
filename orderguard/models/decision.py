from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel


class Action(str, Enum):
    ALLOW = "allow"
    FLAG = "flag"
    BLOCK = "block"

    @property
    def severity(self) -> int:
        return {"allow": 0, "flag": 1, "block": 2}[self.value]


class CheckoutRequest(BaseModel):
    phone: str = ""
    ip: str = ""
    device_id: str = ""
    first_name: str = ""
    last_name: str = ""
    address_1: str = ""
    city: str = ""
    postcode: str = ""

    @property
    def customer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Decision(BaseModel):
    action: Action
    reasons: List[str]


class BlockedAttempt(BaseModel):
    id: int
    action: Action
    reasons: List[str]
    phone: str
    ip: str
    customer_name: str
    created_at: datetime


class AttemptStats(BaseModel):
    total: int
    by_reason: Dict[str, int]
    by_day: Dict[str, int]
