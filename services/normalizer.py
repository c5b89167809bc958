"""
Turn a raw storage event into a typed Submission.

Client apps attach capture metadata as flat string maps, sometimes nested one
level down under a ``metadata`` key, and the key spelling has drifted between
app releases (``lat`` vs ``latitude``, ``borrowerName`` vs ``borrower_name``).
Everything is canonicalised here so the rest of the pipeline sees one shape.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from schemas.submission import StorageEvent, Submission
from utils.case import dict_keys_to_snake

logger = logging.getLogger(__name__)

# Canonical field -> accepted snake_case metadata keys, in priority order
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "latitude": ("lat", "latitude"),
    "longitude": ("lng", "longitude", "lon"),
    "timestamp": ("time", "timestamp"),
    "user_id": ("user_id",),
    "loan_id": ("loan_id",),
    "is_bill": ("is_bill",),
    "borrower_name": ("borrower_name",),
    "loan_amount": ("loan_amount",),
    "selected_asset_type": ("selected_asset_type", "asset_type"),
}

BILL_CONTENT_TYPES = {"application/pdf"}


class NormalizationError(ValueError):
    """The event cannot be attached to a loan; the run is a logged no-op."""

    def __init__(self, reason: str, *, user_id: Optional[str] = None, loan_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.user_id = user_id
        self.loan_id = loan_id


def unwrap_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Return the custom metadata map, whether flat or nested under ``metadata``."""
    nested = metadata.get("metadata")
    if isinstance(nested, dict) and nested:
        return nested
    return metadata


def _pick(meta: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for k in keys:
        v = meta.get(k)
        if isinstance(v, str):
            v = v.strip()
        if v is not None and v != "":
            return v
    return None


def _parse_flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("true", "1", "yes"):
        return True
    if s in ("false", "0", "no"):
        return False
    return None


def infer_is_bill(path: str, content_type: Optional[str]) -> bool:
    return "bill" in path.lower() or (content_type or "").lower() in BILL_CONTENT_TYPES


def normalize_event(event: StorageEvent) -> Submission:
    """
    Build a Submission from a storage event.

    Raises NormalizationError when the loan or user id is missing or a value
    does not fit the typed schema (e.g. non-numeric coordinates).
    """
    meta = dict_keys_to_snake(unwrap_metadata(event.metadata or {}))
    fields = {name: _pick(meta, keys) for name, keys in FIELD_ALIASES.items()}

    user_id = fields["user_id"]
    loan_id = fields["loan_id"]
    if not loan_id:
        raise NormalizationError("missing loanId", user_id=user_id)
    if not user_id:
        raise NormalizationError("missing userId", loan_id=loan_id)
    fields["user_id"] = user_id = str(user_id)
    fields["loan_id"] = loan_id = str(loan_id)

    is_bill = _parse_flag(fields.pop("is_bill"))
    if is_bill is None:
        is_bill = infer_is_bill(event.name, event.content_type)

    timestamp = fields.pop("timestamp")
    try:
        return Submission(
            file_path=event.name,
            bucket=event.bucket,
            content_type=event.content_type,
            raw_metadata=event.metadata or {},
            timestamp=str(timestamp) if timestamp is not None else None,
            is_bill=is_bill,
            **fields,
        )
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        logger.warning("Malformed metadata for %s: %s", event.name, problems)
        raise NormalizationError(f"malformed metadata ({problems})", user_id=user_id, loan_id=loan_id) from e
