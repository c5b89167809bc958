from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class StorageEvent(BaseModel):
    """Object-finalized notification from the storage bucket."""

    bucket: str = ""
    name: str
    content_type: Optional[str] = Field(None, alias="contentType")
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class Submission(BaseModel):
    """One uploaded file with its typed capture metadata."""

    file_path: str
    bucket: str = ""
    content_type: Optional[str] = None
    raw_metadata: dict[str, Any] = Field(default_factory=dict)
    user_id: str = Field(..., min_length=1)
    loan_id: str = Field(..., min_length=1)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    # Kept as sent; the gatekeeper owns timestamp parsing
    timestamp: Optional[str] = None
    is_bill: bool = False
    borrower_name: Optional[str] = None
    loan_amount: Optional[float] = Field(None, ge=0)
    selected_asset_type: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
