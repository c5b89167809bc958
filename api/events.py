from fastapi import APIRouter, Depends

from api.dependencies import get_pipeline
from schemas.submission import StorageEvent
from services.pipeline import LoanEvidencePipeline

router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("/storage")
async def storage_object_finalized(event: StorageEvent, pipeline: LoanEvidencePipeline = Depends(get_pipeline)):
    """
    Push endpoint for object-finalized notifications.
    Rejections and ignored uploads are normal outcomes and return 200.
    """
    outcome = await pipeline.process_event(event)
    return outcome.to_response()
