from schemas.loan import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    FileEntry,
    GeoPoint,
    LoanSnapshot,
    LoanStatus,
)
from schemas.submission import StorageEvent, Submission
from schemas.verification import Verdict, VerificationResult

__all__ = [
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "FileEntry",
    "GeoPoint",
    "LoanSnapshot",
    "LoanStatus",
    "StorageEvent",
    "Submission",
    "Verdict",
    "VerificationResult",
]
