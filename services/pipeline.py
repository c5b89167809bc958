"""
One pipeline run per uploaded evidence file.

normalize -> terminal guard -> init/merge loan -> gatekeeper -> record the file
(bill slot, or geofenced compare-and-swap append) -> re-read -> readiness ->
claim the bundle -> verify -> reconcile the verdict onto the loan.

The file entry is committed before the oracle is called, so a run that dies
mid-verification never loses evidence; the loan is left in AI_PENDING and a
later re-trigger (re-delivered event or retry_verification) picks it up.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel

from config import Settings
from schemas.loan import OPEN_STATUSES, FileEntry, GeoPoint, LoanSnapshot, LoanStatus
from schemas.submission import StorageEvent, Submission
from schemas.verification import VerificationResult
from services.gatekeeper import check_submission
from services.geofence import find_location_mismatch
from services.loan_store import AppendStatus, LoanStore
from services.normalizer import NormalizationError, normalize_event
from services.readiness import is_bundle_ready
from services.verification import VerificationInvoker
from utils.case import dict_keys_to_camel

logger = logging.getLogger(__name__)

# Extra slack before a claim whose run never reported back may be taken over
CLAIM_GRACE_SECONDS = 60.0


class Action(str, Enum):
    IGNORED = "ignored"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    RECORDED = "recorded"
    VERIFIED = "verified"
    PARKED = "parked"


class PipelineOutcome(BaseModel):
    action: Action
    loan_id: Optional[str] = None
    status: Optional[LoanStatus] = None
    reason: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        return dict_keys_to_camel(self.model_dump(mode="json"))


class LoanNotFoundError(LookupError):
    pass


class VerificationNotAllowedError(RuntimeError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoanEvidencePipeline:
    def __init__(
        self,
        store: LoanStore,
        invoker: VerificationInvoker,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.invoker = invoker
        self.settings = settings
        self._clock = clock

    async def process_event(self, event: Union[StorageEvent, dict[str, Any]]) -> PipelineOutcome:
        if not isinstance(event, StorageEvent):
            event = StorageEvent.model_validate(event)

        try:
            submission = normalize_event(event)
        except NormalizationError as e:
            logger.warning("Discarding %s: %s", event.name, e.reason)
            await self.store.record_rejection(event.name, e.reason, user_id=e.user_id, loan_id=e.loan_id)
            return PipelineOutcome(action=Action.IGNORED, loan_id=e.loan_id, reason=e.reason)

        loan_id = submission.loan_id
        existing = await self.store.get(loan_id)
        if existing is not None:
            if existing.is_terminal:
                logger.info("Loan %s is %s, ignoring %s", loan_id, existing.status.value, submission.file_path)
                return PipelineOutcome(action=Action.SKIPPED, loan_id=loan_id, status=existing.status,
                                       reason=f"loan is {existing.status.value}")
            if existing.user_id != submission.user_id:
                reason = "loan belongs to a different user"
                logger.warning("Discarding %s for loan %s: %s", submission.file_path, loan_id, reason)
                await self.store.record_rejection(submission.file_path, reason,
                                                  user_id=submission.user_id, loan_id=loan_id)
                return PipelineOutcome(action=Action.IGNORED, loan_id=loan_id, reason=reason)

        merged = await self.store.upsert_merge(loan_id, {
            "user_id": submission.user_id,
            "borrower_name": submission.borrower_name,
            "loan_amount": submission.loan_amount,
            "declared_asset_type": submission.selected_asset_type,
        })
        if not merged:
            # Closed by a concurrent run after the guard above
            return await self._closed(loan_id, submission)

        decision = check_submission(
            submission,
            self._clock(),
            max_age_minutes=self.settings.max_photo_age_minutes,
            bill_requires_gps=self.settings.bill_requires_gps,
        )
        if not decision.passed:
            return await self._reject(loan_id, decision.reason, submission)

        entry = self._file_entry(submission, decision.captured_at)
        outcome = await self._record(loan_id, entry, submission)
        if outcome is not None:
            return outcome

        snapshot = await self.store.get(loan_id)
        if snapshot is None or not is_bundle_ready(snapshot, self.settings.bundle_size):
            status = snapshot.status if snapshot else None
            return PipelineOutcome(action=Action.RECORDED, loan_id=loan_id, status=status)
        return await self._verify(snapshot)

    async def retry_verification(self, loan_id: str) -> PipelineOutcome:
        """Re-run verification for a complete bundle that never got a verdict."""
        snapshot = await self.store.get(loan_id)
        if snapshot is None:
            raise LoanNotFoundError(loan_id)
        if snapshot.status not in OPEN_STATUSES:
            raise VerificationNotAllowedError(f"loan {loan_id} is {snapshot.status.value}")
        if not is_bundle_ready(snapshot, self.settings.bundle_size):
            raise VerificationNotAllowedError(
                f"loan {loan_id} bundle incomplete (bill={snapshot.has_bill}, assets={snapshot.asset_count})"
            )
        logger.info("Retrying verification for loan %s", loan_id)
        return await self._verify(snapshot)

    async def reconcile(self, loan_id: str, result: VerificationResult) -> PipelineOutcome:
        if not result.ok or result.verdict is None:
            diagnostic = result.diagnostic or "verification failed"
            await self.store.release_verification(loan_id, diagnostic)
            logger.warning("Loan %s parked in %s: %s", loan_id, LoanStatus.AI_PENDING.value, diagnostic)
            return PipelineOutcome(action=Action.PARKED, loan_id=loan_id,
                                   status=LoanStatus.AI_PENDING, reason=diagnostic)

        verdict = result.verdict
        # Scores only inform the human reviewer; nothing is auto-rejected here
        applied = await self.store.update(
            loan_id,
            {
                "status": LoanStatus.PENDING,
                "product_name": verdict.product_name,
                "confidence_score": verdict.confidence_score,
                "summary": verdict.summary,
                "extracted_amount": verdict.extracted_amount,
                "asset_type": verdict.asset_type,
                "is_handwritten": verdict.is_handwritten,
                "is_duplicate": verdict.is_duplicate,
                "verified_at": self._clock(),
            },
            expected_statuses=(LoanStatus.AI_PENDING,),
        )
        if not applied:
            current = await self.store.get(loan_id)
            status = current.status if current else None
            logger.warning("Loan %s left %s during verification, verdict dropped",
                           loan_id, LoanStatus.AI_PENDING.value)
            return PipelineOutcome(action=Action.SKIPPED, loan_id=loan_id, status=status,
                                   reason="loan no longer awaiting verification")
        logger.info("Loan %s verified: score=%s handwritten=%s duplicate=%s", loan_id,
                    verdict.confidence_score, verdict.is_handwritten, verdict.is_duplicate)
        return PipelineOutcome(action=Action.VERIFIED, loan_id=loan_id, status=LoanStatus.PENDING)

    async def _record(self, loan_id: str, entry: FileEntry, submission: Submission) -> Optional[PipelineOutcome]:
        """Write the file entry; returns an outcome only when the run should stop here."""
        if submission.is_bill:
            if not await self.store.set_bill(loan_id, entry):
                return await self._closed(loan_id, submission)
            logger.info("Recorded bill %s for loan %s", entry.path, loan_id)
            return None

        radius = self.settings.geofence_radius_meters
        point = entry.location

        def _geofence(recorded: list[FileEntry]) -> Optional[str]:
            return find_location_mismatch(point, [a.location for a in recorded if a.location], radius)

        result = await self.store.append_asset(loan_id, entry, self.settings.bundle_size, check=_geofence)
        if result.status == AppendStatus.REFUSED:
            return await self._reject(loan_id, result.reason, submission)
        if result.status in (AppendStatus.CLOSED, AppendStatus.NOT_FOUND):
            return await self._closed(loan_id, submission)
        if result.status == AppendStatus.FULL:
            logger.warning("Loan %s already has %s assets, %s not recorded",
                           loan_id, self.settings.bundle_size, entry.path)
            current = await self.store.get(loan_id)
            return PipelineOutcome(action=Action.SKIPPED, loan_id=loan_id,
                                   status=current.status if current else None, reason="bundle full")
        if result.status == AppendStatus.DUPLICATE:
            logger.info("Asset %s already recorded for loan %s (re-delivery)", entry.path, loan_id)
        else:
            logger.info("Recorded asset %s for loan %s", entry.path, loan_id)
        return None

    async def _verify(self, snapshot: LoanSnapshot) -> PipelineOutcome:
        loan_id = snapshot.id
        stale_before = self._clock() - timedelta(
            seconds=self.settings.verification_timeout_seconds + CLAIM_GRACE_SECONDS
        )
        if not await self.store.claim_verification(loan_id, self.settings.bundle_size, stale_before):
            logger.info("Bundle for loan %s already claimed by another run", loan_id)
            current = await self.store.get(loan_id)
            return PipelineOutcome(action=Action.RECORDED, loan_id=loan_id,
                                   status=current.status if current else None,
                                   reason="verification already claimed")
        claimed = await self.store.get(loan_id)
        result = await self.invoker.invoke(claimed)
        return await self.reconcile(loan_id, result)

    async def _reject(self, loan_id: str, reason: str, submission: Submission) -> PipelineOutcome:
        applied = await self.store.update(
            loan_id,
            {"status": LoanStatus.REJECTED, "rejection_reason": reason},
            expected_statuses=OPEN_STATUSES,
        )
        if not applied:
            return await self._closed(loan_id, submission)
        logger.warning("Rejected loan %s on %s: %s", loan_id, submission.file_path, reason)
        return PipelineOutcome(action=Action.REJECTED, loan_id=loan_id, status=LoanStatus.REJECTED, reason=reason)

    async def _closed(self, loan_id: str, submission: Submission) -> PipelineOutcome:
        current = await self.store.get(loan_id)
        status = current.status if current else None
        logger.info("Loan %s closed before %s could be recorded", loan_id, submission.file_path)
        return PipelineOutcome(action=Action.SKIPPED, loan_id=loan_id, status=status,
                               reason=f"loan is {status.value}" if status else "loan not found")

    def _file_entry(self, submission: Submission, captured_at: Optional[datetime]) -> FileEntry:
        if submission.bucket:
            uri = f"{self.settings.storage_uri_scheme}://{submission.bucket}/{submission.file_path}"
        else:
            uri = submission.file_path
        location = None
        if submission.has_location:
            location = GeoPoint(lat=submission.latitude, lng=submission.longitude)
        return FileEntry(
            path=submission.file_path,
            uri=uri,
            location=location,
            timestamp=captured_at.isoformat() if captured_at else submission.timestamp,
            content_type=submission.content_type,
        )
