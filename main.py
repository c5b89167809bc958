import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from database import create_engine, create_sessionmaker, init_db
from api.events import router as events_router
from api.loans import router as loans_router
from services.loan_store import LoanStore
from services.pipeline import LoanEvidencePipeline
from services.verification import VerificationInvoker

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_oracle():
    if not settings.gemini_api_key:
        logger.warning("No GEMINI_API_KEY set; completed bundles will be parked unverified.")
        return None
    from services.gemini_oracle import GeminiOracle

    return GeminiOracle(
        settings.gemini_api_key,
        settings.gemini_model,
        storage_base_url=settings.storage_download_base_url,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = create_engine(settings)
    await init_db(engine)
    invoker = VerificationInvoker(build_oracle(), timeout_seconds=settings.verification_timeout_seconds)
    app.state.pipeline = LoanEvidencePipeline(LoanStore(create_sessionmaker(engine)), invoker, settings)
    yield
    await engine.dispose()
    logger.info("Database engine disposed")


app = FastAPI(
    title=settings.app_name,
    description="Collateral evidence validation and verification pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(events_router)
app.include_router(loans_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
