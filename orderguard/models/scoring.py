from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Literal

from pydantic import BaseModel, Field


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SignalKind(str, Enum):
    BLOCKLIST = "blocklist"
    COOLDOWN = "cooldown"
    DUPLICATE_ADDRESS = "duplicate_address"
    NAME_SIMILARITY = "name_similarity"
    REPUTATION = "reputation"


class Signal(BaseModel):
    kind: SignalKind
    contribution: int = Field(ge=0)
    detail: str


class FraudScoreCache(BaseModel):
    phone: str
    score: int = Field(ge=0, le=100)
    risk_tier: RiskTier
    computed_at: datetime
    signals_snapshot: Dict[SignalKind, int] = Field(default_factory=dict)


class FraudScoreResponse(BaseModel):
    phone: str
    score: int = Field(ge=0, le=100)
    risk_tier: RiskTier
    cached: bool
    computed_at: datetime
    signals: Dict[SignalKind, int] = Field(default_factory=dict)


class BatchMode(str, Enum):
    ALL = "all"
    MISSING_ONLY = "missing_only"


class BatchJobState(BaseModel):
    offset: int = Field(default=0, ge=0)
    mode: BatchMode = BatchMode.MISSING_ONLY
    total_updated: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    total_processed: int = 0
    completed: bool = False


class BatchRequest(BaseModel):
    offset: int = Field(default=0, ge=0)
    mode: BatchMode = BatchMode.MISSING_ONLY
    batch_size: int = Field(default=10, ge=1, le=100)
    total_updated: int = Field(default=0, ge=0)
    total_failed: int = Field(default=0, ge=0)
    total_skipped: int = Field(default=0, ge=0)
    total_processed: int = Field(default=0, ge=0)


class BatchStatus(BaseModel):
    status: Literal["running", "completed"]
    state: BatchJobState
