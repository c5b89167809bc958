"""
Tests for request construction, verdict parsing and the invoker's result type.
No network: the oracle is a local fake.
"""
import json
import unittest

from schemas.loan import FileEntry, GeoPoint, LoanSnapshot, LoanStatus
from services.verification import (
    FilePart,
    TextPart,
    VerdictParseError,
    VerificationInvoker,
    build_prompt,
    build_request,
    parse_verdict,
)
from tests.support import GOOD_VERDICT, FakeOracle


def _entry(path, content_type="image/jpeg"):
    return FileEntry(
        path=path,
        uri=f"gs://evidence-bucket/{path}",
        location=GeoPoint(lat=1.0, lng=2.0),
        timestamp="2026-10-19T10:00:00+00:00",
        content_type=content_type,
    )


def _complete_snapshot():
    return LoanSnapshot(
        id="l1",
        user_id="u1",
        status=LoanStatus.AI_PENDING,
        borrower_name="Asha Rao",
        loan_amount=80000,
        declared_asset_type="two-wheeler",
        bill_data=_entry("loans/l1/bill.pdf", "application/pdf"),
        asset_data=[_entry("loans/l1/a1.jpg"), _entry("loans/l1/a2.jpg"), _entry("loans/l1/a3.png", None)],
    )


class TestBuildRequest(unittest.TestCase):
    def test_prompt_then_bill_then_assets_in_order(self):
        req = build_request(_complete_snapshot())
        self.assertIsInstance(req.parts[0], TextPart)
        self.assertTrue(all(isinstance(p, FilePart) for p in req.parts[1:]))
        self.assertEqual(req.file_uris, [
            "gs://evidence-bucket/loans/l1/bill.pdf",
            "gs://evidence-bucket/loans/l1/a1.jpg",
            "gs://evidence-bucket/loans/l1/a2.jpg",
            "gs://evidence-bucket/loans/l1/a3.png",
        ])

    def test_mime_types(self):
        req = build_request(_complete_snapshot())
        mimes = [p.mime_type for p in req.parts[1:]]
        # The last asset had no content type recorded; guessed from its extension
        self.assertEqual(mimes, ["application/pdf", "image/jpeg", "image/jpeg", "image/png"])

    def test_prompt_carries_declared_context(self):
        prompt = build_prompt(_complete_snapshot())
        self.assertIn("two-wheeler", prompt)
        self.assertIn("Asha Rao", prompt)
        self.assertIn("confidenceScore", prompt)
        self.assertIn("isHandwritten", prompt)

    def test_no_bill_is_a_programming_error(self):
        snap = _complete_snapshot().model_copy(update={"bill_data": None})
        with self.assertRaises(ValueError):
            build_request(snap)


class TestParseVerdict(unittest.TestCase):
    def test_plain_json(self):
        v = parse_verdict(json.dumps(GOOD_VERDICT))
        self.assertEqual(v.confidence_score, 85)
        self.assertEqual(v.product_name, "Honda Activa 6G")
        self.assertEqual(v.extracted_amount, 78500.0)
        self.assertFalse(v.is_handwritten)

    def test_code_fenced_json(self):
        raw = "```json\n" + json.dumps(GOOD_VERDICT) + "\n```"
        self.assertEqual(parse_verdict(raw).summary, GOOD_VERDICT["summary"])

    def test_leading_prose(self):
        raw = "Here is the audit result:\n" + json.dumps(GOOD_VERDICT) + "\nThanks."
        self.assertEqual(parse_verdict(raw).asset_type, "two-wheeler")

    def test_only_required_fields(self):
        v = parse_verdict('{"confidenceScore": 40, "summary": "Blurry bill."}')
        self.assertEqual(v.confidence_score, 40)
        self.assertIsNone(v.product_name)
        self.assertFalse(v.is_duplicate)

    def test_currency_amount_and_null_flags(self):
        v = parse_verdict('{"confidenceScore": 70, "summary": "ok", "extractedAmount": "$1,250.50", "isDuplicate": null}')
        self.assertEqual(v.extracted_amount, 1250.5)
        self.assertFalse(v.is_duplicate)

    def test_failures(self):
        for raw in ("", "not json at all", "[1, 2, 3]", '{"summary": "no score"}',
                    '{"confidenceScore": 140, "summary": "too high"}'):
            with self.subTest(raw=raw):
                with self.assertRaises(VerdictParseError):
                    parse_verdict(raw)


class TestVerificationInvoker(unittest.IsolatedAsyncioTestCase):
    async def test_success(self):
        oracle = FakeOracle()
        result = await VerificationInvoker(oracle).invoke(_complete_snapshot())
        self.assertTrue(result.ok)
        self.assertEqual(result.verdict.confidence_score, 85)
        self.assertEqual(len(oracle.calls), 1)
        self.assertEqual(oracle.calls[0].loan_id, "l1")

    async def test_unparseable_response_is_failure(self):
        result = await VerificationInvoker(FakeOracle(response="I could not open the files.")).invoke(_complete_snapshot())
        self.assertFalse(result.ok)
        self.assertIsNone(result.verdict)
        self.assertIn("unreadable", result.diagnostic)

    async def test_oracle_error_is_failure(self):
        oracle = FakeOracle(error=ConnectionError("503 Service Unavailable"))
        result = await VerificationInvoker(oracle).invoke(_complete_snapshot())
        self.assertFalse(result.ok)
        self.assertIn("503", result.diagnostic)

    async def test_timeout_is_failure(self):
        oracle = FakeOracle(delay=1.0)
        result = await VerificationInvoker(oracle, timeout_seconds=0.05).invoke(_complete_snapshot())
        self.assertFalse(result.ok)
        self.assertIn("timed out", result.diagnostic)

    async def test_unconfigured(self):
        invoker = VerificationInvoker(None)
        self.assertFalse(invoker.available)
        result = await invoker.invoke(_complete_snapshot())
        self.assertFalse(result.ok)
        self.assertIn("not configured", result.diagnostic)


if __name__ == "__main__":
    unittest.main()
