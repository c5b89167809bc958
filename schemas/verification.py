from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class Verdict(BaseModel):
    """Structured answer from the verification oracle."""

    confidence_score: int = Field(..., alias="confidenceScore", ge=0, le=100)
    summary: str
    product_name: Optional[str] = Field(None, alias="productName")
    extracted_amount: Optional[float] = Field(None, alias="extractedAmount")
    asset_type: Optional[str] = Field(None, alias="assetType")
    is_handwritten: bool = Field(False, alias="isHandwritten")
    is_duplicate: bool = Field(False, alias="isDuplicate")

    model_config = {"populate_by_name": True}

    @field_validator("extracted_amount", mode="before")
    @classmethod
    def _strip_currency(cls, v: Any) -> Any:
        # Models sometimes answer "$1,250.00" or "Rs. 4500"
        if isinstance(v, str):
            cleaned = re.sub(r"[^\d.\-]", "", v)
            return cleaned or None
        return v

    @field_validator("is_handwritten", "is_duplicate", mode="before")
    @classmethod
    def _null_flag_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class VerificationResult(BaseModel):
    ok: bool
    verdict: Optional[Verdict] = None
    diagnostic: Optional[str] = None

    @classmethod
    def success(cls, verdict: Verdict) -> "VerificationResult":
        return cls(ok=True, verdict=verdict)

    @classmethod
    def failure(cls, diagnostic: str) -> "VerificationResult":
        return cls(ok=False, diagnostic=diagnostic)
