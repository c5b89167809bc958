"""
Hand a completed evidence bundle to the verification oracle and read back its verdict.

The invoker never raises for oracle trouble: timeouts, transport errors and
unreadable answers all come back as a failed VerificationResult carrying a
diagnostic, which the pipeline parks on the loan for a later re-trigger.
"""
from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

from pydantic import ValidationError

from schemas.loan import FileEntry, LoanSnapshot
from schemas.verification import Verdict, VerificationResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MIME_TYPE = "image/jpeg"

VERIFICATION_PROMPT = """You are a collateral verification auditor for a micro-loan lender.

You receive, in this order:
1. One photo or scan of a purchase bill / invoice for the asset being financed.
2. Several live photos of the physical asset, taken by the borrower at the same site.

TASKS
- Document authenticity: decide whether the bill is an official printed or digitally
  issued invoice. Handwritten, hand-edited or otherwise non-official bills must be flagged.
- Cross-object consistency: check that every asset photo shows the same physical item
  and that it matches the product described on the bill.
- Duplicate detection: flag photos that are identical, near-identical (crops, filters,
  re-photographed screens) or obviously taken from the internet.
- Category cross-check: compare what you see with the borrower's declared asset category.
- Amount extraction: read the total payable amount from the bill as a plain number.

Score your overall confidence that the evidence is genuine and consistent from 0 to 100.
Your score is advisory; a human reviewer makes the final decision.

OUTPUT
Return ONLY one JSON object with exactly these keys, no markdown, no commentary:

{
  "productName": "<product named on the bill or seen in the photos>",
  "confidenceScore": <integer 0-100>,
  "summary": "<two or three sentences explaining the score>",
  "extractedAmount": <number or null>,
  "assetType": "<category of the asset you see>",
  "isHandwritten": <true | false>,
  "isDuplicate": <true | false>
}
"""


class VerdictParseError(ValueError):
    """The oracle answered, but not with a usable verdict."""


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class FilePart:
    uri: str
    mime_type: str


RequestPart = Union[TextPart, FilePart]


@dataclass
class VerificationRequest:
    loan_id: str
    parts: list[RequestPart] = field(default_factory=list)

    @property
    def file_uris(self) -> list[str]:
        return [p.uri for p in self.parts if isinstance(p, FilePart)]


class VerificationOracle(Protocol):
    async def generate(self, request: VerificationRequest) -> str:
        ...


def _mime_type(entry: FileEntry) -> str:
    if entry.content_type:
        return entry.content_type
    guessed, _ = mimetypes.guess_type(entry.path)
    return guessed or DEFAULT_MIME_TYPE


def _file_part(entry: FileEntry) -> FilePart:
    return FilePart(uri=entry.uri, mime_type=_mime_type(entry))


def build_prompt(snapshot: LoanSnapshot) -> str:
    context = [
        f"Declared asset category: {snapshot.declared_asset_type or 'not provided'}",
        f"Borrower name: {snapshot.borrower_name or 'not provided'}",
        f"Requested loan amount: {snapshot.loan_amount if snapshot.loan_amount is not None else 'not provided'}",
        f"Number of asset photos: {snapshot.asset_count}",
    ]
    return VERIFICATION_PROMPT + "\nAPPLICATION CONTEXT\n" + "\n".join(f"- {c}" for c in context) + "\n"


def build_request(snapshot: LoanSnapshot) -> VerificationRequest:
    """Prompt first, then the bill, then each asset in the order it was recorded."""
    if snapshot.bill_data is None:
        raise ValueError(f"loan {snapshot.id} has no bill to verify")
    parts: list[RequestPart] = [TextPart(build_prompt(snapshot)), _file_part(snapshot.bill_data)]
    parts.extend(_file_part(a) for a in snapshot.asset_data)
    return VerificationRequest(loan_id=snapshot.id, parts=parts)


def parse_verdict(raw: Optional[str]) -> Verdict:
    if not raw or not raw.strip():
        raise VerdictParseError("empty response")
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        m = re.search(r"```(?:json)?\s*([\s\S]*?)```", cleaned)
        if m:
            cleaned = m.group(1).strip()
    # If the model added any leading/trailing text, keep the outermost object
    if not cleaned.startswith("{"):
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end != -1 and end > start:
            cleaned = cleaned[start : end + 1].strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise VerdictParseError(f"not JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise VerdictParseError(f"expected a JSON object, got {type(data).__name__}")
    try:
        return Verdict.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise VerdictParseError(f"invalid fields: {fields}") from e


class VerificationInvoker:
    def __init__(self, oracle: Optional[VerificationOracle], timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self._oracle = oracle
        self._timeout = timeout_seconds

    @property
    def available(self) -> bool:
        return self._oracle is not None

    async def invoke(self, snapshot: LoanSnapshot) -> VerificationResult:
        if self._oracle is None:
            return VerificationResult.failure("verification service not configured")
        request = build_request(snapshot)
        logger.info("Submitting loan %s for verification with %s files", snapshot.id, len(request.file_uris))
        try:
            raw = await asyncio.wait_for(self._oracle.generate(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("Verification of loan %s timed out after %ss", snapshot.id, self._timeout)
            return VerificationResult.failure(f"verification timed out after {self._timeout:g}s")
        except Exception as e:
            logger.error("Verification call for loan %s failed: %s", snapshot.id, e)
            return VerificationResult.failure(f"verification call failed: {e}")

        try:
            verdict = parse_verdict(raw)
        except VerdictParseError as e:
            logger.warning("Unreadable verification response for loan %s: %s", snapshot.id, e)
            return VerificationResult.failure(f"verification response unreadable: {e}")
        return VerificationResult.success(verdict)
