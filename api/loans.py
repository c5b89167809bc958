from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_pipeline
from schemas.loan import LoanStatus
from services.pipeline import LoanEvidencePipeline, LoanNotFoundError, VerificationNotAllowedError

router = APIRouter(prefix="/api", tags=["loans"])


@router.get("/loans")
async def list_loans(status: Optional[LoanStatus] = None, pipeline: LoanEvidencePipeline = Depends(get_pipeline)):
    loans = await pipeline.store.list_loans(status)
    return [loan.to_response() for loan in loans]


@router.get("/loans/{loan_id}")
async def get_loan(loan_id: str, pipeline: LoanEvidencePipeline = Depends(get_pipeline)):
    loan = await pipeline.store.get(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan.to_response()


@router.post("/loans/{loan_id}/verify")
async def retry_verification(loan_id: str, pipeline: LoanEvidencePipeline = Depends(get_pipeline)):
    """Re-trigger verification for a complete bundle parked in ai_pending."""
    try:
        outcome = await pipeline.retry_verification(loan_id)
    except LoanNotFoundError:
        raise HTTPException(status_code=404, detail="Loan not found")
    except VerificationNotAllowedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return outcome.to_response()


@router.get("/rejections")
async def list_rejections(
    user_id: Optional[str] = None,
    limit: int = 100,
    pipeline: LoanEvidencePipeline = Depends(get_pipeline),
):
    return await pipeline.store.list_rejections(user_id=user_id, limit=min(max(limit, 1), 500))
