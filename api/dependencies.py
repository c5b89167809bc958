from fastapi import Request

from services.pipeline import LoanEvidencePipeline


def get_pipeline(request: Request) -> LoanEvidencePipeline:
    """Pipeline built once in the app lifespan."""
    return request.app.state.pipeline
