"""Shared builders for the pipeline tests: temp SQLite databases, events, fake oracles."""
import asyncio
import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from config import Settings
from database import create_engine, create_sessionmaker, init_db
from services.loan_store import LoanStore
from services.pipeline import LoanEvidencePipeline
from services.verification import VerificationInvoker

SITE = (12.9716, 77.5946)

GOOD_VERDICT = {
    "productName": "Honda Activa 6G",
    "confidenceScore": 85,
    "summary": "Bill is a printed dealer invoice; all three photos show the same scooter.",
    "extractedAmount": 78500,
    "assetType": "two-wheeler",
    "isHandwritten": False,
    "isDuplicate": False,
}


def iso_minutes_ago(minutes: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat()


def make_event(
    path: str,
    loan_id: str = "loan-1",
    user_id: str = "user-1",
    lat=SITE[0],
    lng=SITE[1],
    time=None,
    is_bill=None,
    content_type: str = "image/jpeg",
    bucket: str = "evidence-bucket",
    **extra,
) -> dict:
    metadata = {"userId": user_id, "loanId": loan_id}
    if lat is not None:
        metadata["lat"] = str(lat)
    if lng is not None:
        metadata["lng"] = str(lng)
    metadata["time"] = time if time is not None else iso_minutes_ago(1)
    if is_bill is not None:
        metadata["isBill"] = "true" if is_bill else "false"
    metadata.update(extra)
    return {"bucket": bucket, "name": path, "contentType": content_type, "metadata": metadata}


class FakeOracle:
    """Records requests; answers with a canned response, an error, or after a delay."""

    def __init__(self, response=None, error: Exception = None, delay: float = 0.0):
        self.response = json.dumps(GOOD_VERDICT) if response is None else response
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, request) -> str:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh SQLite file per test so concurrent sessions behave like a real store."""

    async def asyncSetUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.settings = Settings(
            _env_file=None,
            database_url=f"sqlite+aiosqlite:///{self._tmpdir.name}/loans.db",
            gemini_api_key="",
        )
        self.engine = create_engine(self.settings)
        await init_db(self.engine)
        self.store = LoanStore(create_sessionmaker(self.engine))

    async def asyncTearDown(self):
        await self.engine.dispose()
        self._tmpdir.cleanup()

    def make_pipeline(self, oracle=None, timeout_seconds: float = 5.0) -> LoanEvidencePipeline:
        invoker = VerificationInvoker(oracle, timeout_seconds=timeout_seconds)
        return LoanEvidencePipeline(self.store, invoker, self.settings)
