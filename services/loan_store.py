"""
Loan record store on top of async SQLAlchemy.

Every method opens its own short transaction. Writes that must not race
(asset appends, claiming the verification slot) are single UPDATE statements
guarded by a WHERE clause, so the database acts as the compare-and-swap.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import Loan, SubmissionRejection
from schemas.loan import OPEN_STATUSES, FileEntry, LoanSnapshot, LoanStatus

logger = logging.getLogger(__name__)

# Fields that only the pipeline's dedicated writes may touch
PROTECTED_FIELDS = frozenset({
    "id", "status", "bill_data", "asset_data", "asset_count",
    "verification_claimed_at", "created_at",
})

APPEND_MAX_ATTEMPTS = 8
APPEND_BACKOFF_SECONDS = 0.02


class StoreContentionError(RuntimeError):
    """A compare-and-swap write kept losing to concurrent writers."""


class AppendStatus(str, Enum):
    APPENDED = "appended"
    DUPLICATE = "duplicate"
    FULL = "full"
    CLOSED = "closed"
    REFUSED = "refused"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class AppendResult:
    status: AppendStatus
    reason: Optional[str] = None

    @property
    def recorded(self) -> bool:
        return self.status in (AppendStatus.APPENDED, AppendStatus.DUPLICATE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _column_value(v: Any) -> Any:
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, BaseModel):
        return v.model_dump(mode="json")
    return v


def _status_values(statuses: Iterable[LoanStatus]) -> list[str]:
    return [s.value for s in statuses]


class LoanStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def upsert_merge(self, loan_id: str, fields: dict[str, Any]) -> bool:
        """
        Create the loan if absent, otherwise merge the given non-null fields.
        Status and evidence of an existing loan are never touched, and a loan
        that has left the open states is not written at all.

        Returns False when the existing loan is closed.
        """
        values = {k: _column_value(v) for k, v in fields.items() if v is not None}
        protected = PROTECTED_FIELDS & values.keys()
        if protected:
            raise ValueError(f"upsert_merge cannot write {sorted(protected)}")

        for _ in range(2):
            now = _utcnow()
            try:
                async with self._sessionmaker.begin() as session:
                    exists = await session.scalar(select(Loan.id).where(Loan.id == loan_id))
                    if exists is None:
                        session.add(Loan(
                            id=loan_id,
                            status=LoanStatus.INITIALISED.value,
                            bill_data=None,
                            asset_data=[],
                            asset_count=0,
                            created_at=now,
                            updated_at=now,
                            **values,
                        ))
                        logger.info("Initialised loan %s", loan_id)
                        merged = True
                    else:
                        result = await session.execute(
                            update(Loan)
                            .where(Loan.id == loan_id, Loan.status.in_(_status_values(OPEN_STATUSES)))
                            .values(**values, updated_at=now)
                            .execution_options(synchronize_session=False)
                        )
                        merged = result.rowcount == 1
                return merged
            except IntegrityError:
                # Another run created the row between our read and insert
                logger.debug("Concurrent creation of loan %s, merging instead", loan_id)
        raise StoreContentionError(f"could not upsert loan {loan_id}")

    async def get(self, loan_id: str) -> Optional[LoanSnapshot]:
        async with self._sessionmaker() as session:
            loan = await session.get(Loan, loan_id)
            if loan is None:
                return None
            return LoanSnapshot.model_validate(loan)

    async def update(
        self,
        loan_id: str,
        fields: dict[str, Any],
        expected_statuses: Optional[Iterable[LoanStatus]] = None,
    ) -> bool:
        """Overwrite the given fields. With expected_statuses, only while the loan is in one of them."""
        stmt = update(Loan).where(Loan.id == loan_id)
        if expected_statuses is not None:
            stmt = stmt.where(Loan.status.in_(_status_values(expected_statuses)))
        values = {k: _column_value(v) for k, v in fields.items()}
        values["updated_at"] = _utcnow()
        async with self._sessionmaker.begin() as session:
            result = await session.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def set_bill(self, loan_id: str, entry: FileEntry) -> bool:
        """Fill or replace the single bill slot while the loan is open."""
        return await self.update(loan_id, {"bill_data": entry}, expected_statuses=OPEN_STATUSES)

    async def append_asset(
        self,
        loan_id: str,
        entry: FileEntry,
        max_size: int,
        check: Optional[Callable[[list[FileEntry]], Optional[str]]] = None,
    ) -> AppendResult:
        """
        Append an asset entry without losing concurrent appends.

        The write only lands if asset_count still matches what was read, so
        ``check`` always sees the exact list the entry is appended to. A path
        already present is reported as DUPLICATE (re-delivered event).
        """
        for attempt in range(APPEND_MAX_ATTEMPTS):
            snapshot = await self.get(loan_id)
            if snapshot is None:
                return AppendResult(AppendStatus.NOT_FOUND)
            if snapshot.status not in OPEN_STATUSES:
                return AppendResult(AppendStatus.CLOSED)
            if any(a.path == entry.path for a in snapshot.asset_data):
                return AppendResult(AppendStatus.DUPLICATE)
            if snapshot.asset_count >= max_size:
                return AppendResult(AppendStatus.FULL)
            if check is not None:
                reason = check(snapshot.asset_data)
                if reason:
                    return AppendResult(AppendStatus.REFUSED, reason)

            assets = [_column_value(a) for a in snapshot.asset_data] + [_column_value(entry)]
            stmt = (
                update(Loan)
                .where(
                    Loan.id == loan_id,
                    Loan.asset_count == snapshot.asset_count,
                    Loan.status.in_(_status_values(OPEN_STATUSES)),
                )
                .values(asset_data=assets, asset_count=len(assets), updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            async with self._sessionmaker.begin() as session:
                result = await session.execute(stmt)
            if result.rowcount == 1:
                return AppendResult(AppendStatus.APPENDED)
            logger.debug("Append to loan %s lost a race (attempt %s), retrying", loan_id, attempt + 1)
            await asyncio.sleep(APPEND_BACKOFF_SECONDS * (attempt + 1))
        raise StoreContentionError(f"could not append asset to loan {loan_id}")

    async def claim_verification(self, loan_id: str, bundle_size: int, stale_before: datetime) -> bool:
        """
        Atomically mark a complete bundle as handed to the verifier.

        Succeeds for exactly one caller per complete bundle. A claim older
        than ``stale_before`` (its run died mid-flight) may be taken over.
        """
        now = _utcnow()
        stmt = (
            update(Loan)
            .where(
                Loan.id == loan_id,
                Loan.status.in_(_status_values(OPEN_STATUSES)),
                Loan.bill_data.is_not(None),
                Loan.asset_count == bundle_size,
                or_(
                    Loan.verification_claimed_at.is_(None),
                    Loan.verification_claimed_at < stale_before,
                ),
            )
            .values(
                status=LoanStatus.AI_PENDING.value,
                verification_claimed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._sessionmaker.begin() as session:
            result = await session.execute(stmt)
        return result.rowcount == 1

    async def release_verification(self, loan_id: str, summary: str) -> bool:
        """Park a claimed bundle back in AI_PENDING so it can be re-triggered."""
        return await self.update(
            loan_id,
            {
                "status": LoanStatus.AI_PENDING,
                "summary": summary,
                "verification_claimed_at": None,
            },
            expected_statuses=(LoanStatus.AI_PENDING,),
        )

    async def record_rejection(
        self,
        file_path: str,
        reason: str,
        user_id: Optional[str] = None,
        loan_id: Optional[str] = None,
    ) -> str:
        rejection_id = f"rej-{uuid.uuid4().hex[:12]}"
        async with self._sessionmaker.begin() as session:
            session.add(SubmissionRejection(
                id=rejection_id,
                user_id=user_id,
                loan_id=loan_id,
                file_path=file_path,
                reason=reason,
                created_at=_utcnow(),
            ))
        return rejection_id

    async def list_loans(self, status: Optional[LoanStatus] = None) -> list[LoanSnapshot]:
        stmt = select(Loan).order_by(Loan.updated_at.desc())
        if status is not None:
            stmt = stmt.where(Loan.status == status.value)
        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            return [LoanSnapshot.model_validate(loan) for loan in result.scalars().all()]

    async def list_rejections(self, user_id: Optional[str] = None, limit: int = 100) -> list[dict[str, Any]]:
        stmt = select(SubmissionRejection).order_by(SubmissionRejection.created_at.desc()).limit(limit)
        if user_id is not None:
            stmt = stmt.where(SubmissionRejection.user_id == user_id)
        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            return [
                {
                    "id": r.id,
                    "userId": r.user_id,
                    "loanId": r.loan_id,
                    "filePath": r.file_path,
                    "reason": r.reason,
                    "createdAt": r.created_at.isoformat() if r.created_at else None,
                }
                for r in result.scalars().all()
            ]
