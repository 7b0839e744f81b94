from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IdentifierType(str, Enum):
    PHONE = "phone"
    IP = "ip"
    DEVICE = "device"


class CooldownStatus(BaseModel):
    blocked: bool
    remaining_seconds: int = Field(ge=0)
    last_order_at: Optional[datetime] = None


class BlocklistEntry(BaseModel):
    identifier_type: IdentifierType
    identifier_value: str
    added_at: datetime
    reason: Optional[str] = None


class BlocklistOutcome(str, Enum):
    ADDED = "added"
    ALREADY_EXISTS = "already_exists"
    REMOVED = "removed"
    NOT_FOUND = "not_found"


class BlocklistRequest(BaseModel):
    identifier_type: IdentifierType
    identifier_value: str = Field(min_length=1)
    reason: Optional[str] = None


class BlocklistMutationResponse(BaseModel):
    outcome: BlocklistOutcome
    identifier_type: IdentifierType
    identifier_value: str


class MatchType(str, Enum):
    ADDRESS = "address"
    NAME = "name"


class SimilarMatch(BaseModel):
    order_id: int
    match_type: MatchType
    similarity: int = Field(ge=0, le=100)
