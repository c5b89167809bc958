from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from utils.case import dict_keys_to_camel


class LoanStatus(str, Enum):
    INITIALISED = "initialised"
    AI_PENDING = "ai_pending"
    PENDING = "pending"
    REJECTED = "rejected"


# Statuses the pipeline may still write evidence into
OPEN_STATUSES = (LoanStatus.INITIALISED, LoanStatus.AI_PENDING)
TERMINAL_STATUSES = (LoanStatus.PENDING, LoanStatus.REJECTED)


class GeoPoint(BaseModel):
    lat: float
    lng: float


class FileEntry(BaseModel):
    path: str
    uri: str
    location: Optional[GeoPoint] = None
    timestamp: Optional[str] = None
    content_type: Optional[str] = None

    model_config = {"frozen": True}


class LoanSnapshot(BaseModel):
    id: str
    user_id: str
    status: LoanStatus
    borrower_name: Optional[str] = None
    loan_amount: Optional[float] = None
    declared_asset_type: Optional[str] = None
    bill_data: Optional[FileEntry] = None
    asset_data: list[FileEntry] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    product_name: Optional[str] = None
    confidence_score: Optional[int] = None
    summary: Optional[str] = None
    extracted_amount: Optional[float] = None
    asset_type: Optional[str] = None
    is_handwritten: Optional[bool] = None
    is_duplicate: Optional[bool] = None
    verification_claimed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_bill(self) -> bool:
        return self.bill_data is not None

    @property
    def asset_count(self) -> int:
        return len(self.asset_data)

    def to_response(self) -> dict[str, Any]:
        """Serialize for the API with camelCase keys."""
        return dict_keys_to_camel(self.model_dump(mode="json"))
