"""
Tests for metadata normalization: key variants, nesting, bill inference, input rejection.
Run from the repository root: python -m pytest tests/test_normalizer.py -v
"""
import unittest

from schemas.submission import StorageEvent
from services.normalizer import NormalizationError, normalize_event


def _event(metadata, name="loans/loan-1/asset_1.jpg", content_type="image/jpeg"):
    return StorageEvent(bucket="evidence-bucket", name=name, contentType=content_type, metadata=metadata)


class TestNormalizer(unittest.TestCase):
    def test_flat_metadata(self):
        sub = normalize_event(_event({
            "lat": "12.97", "lng": "77.59", "time": "2026-10-19T10:00:00Z",
            "userId": "u1", "loanId": "l1",
        }))
        self.assertEqual(sub.loan_id, "l1")
        self.assertEqual(sub.user_id, "u1")
        self.assertAlmostEqual(sub.latitude, 12.97)
        self.assertAlmostEqual(sub.longitude, 77.59)
        self.assertEqual(sub.timestamp, "2026-10-19T10:00:00Z")
        self.assertFalse(sub.is_bill)
        self.assertEqual(sub.bucket, "evidence-bucket")

    def test_nested_metadata_and_long_key_names(self):
        """Metadata nested under 'metadata' with latitude/longitude/timestamp spellings."""
        sub = normalize_event(_event({"metadata": {
            "latitude": "1.5", "longitude": "2.5", "timestamp": "1760868000000",
            "userId": "u1", "loanId": "l1",
        }}))
        self.assertEqual(sub.latitude, 1.5)
        self.assertEqual(sub.longitude, 2.5)
        self.assertEqual(sub.timestamp, "1760868000000")

    def test_borrower_fields_in_both_casings(self):
        camel = normalize_event(_event({
            "userId": "u1", "loanId": "l1",
            "borrowerName": "Asha Rao", "loanAmount": "50000", "selectedAssetType": "tractor",
        }))
        snake = normalize_event(_event({
            "userId": "u1", "loanId": "l1",
            "borrower_name": "Asha Rao", "loan_amount": "50000", "selectedAssetType": "tractor",
        }))
        for sub in (camel, snake):
            self.assertEqual(sub.borrower_name, "Asha Rao")
            self.assertEqual(sub.loan_amount, 50000.0)
            self.assertEqual(sub.selected_asset_type, "tractor")

    def test_is_bill_flag_string(self):
        sub = normalize_event(_event({"userId": "u1", "loanId": "l1", "isBill": "true"}))
        self.assertTrue(sub.is_bill)
        sub = normalize_event(_event({"userId": "u1", "loanId": "l1", "isBill": "false"}, name="bill_photo.jpg"))
        self.assertFalse(sub.is_bill)

    def test_is_bill_inferred_from_path_or_pdf(self):
        by_path = normalize_event(_event({"userId": "u1", "loanId": "l1"}, name="loans/l1/Bill.jpg"))
        by_type = normalize_event(_event({"userId": "u1", "loanId": "l1"}, name="invoice", content_type="application/pdf"))
        self.assertTrue(by_path.is_bill)
        self.assertTrue(by_type.is_bill)

    def test_missing_loan_id_is_input_rejection(self):
        with self.assertRaises(NormalizationError) as ctx:
            normalize_event(_event({"userId": "u1", "lat": "1", "lng": "2"}))
        self.assertIn("loanId", ctx.exception.reason)
        self.assertEqual(ctx.exception.user_id, "u1")

    def test_missing_user_id_is_input_rejection(self):
        with self.assertRaises(NormalizationError) as ctx:
            normalize_event(_event({"loanId": "l1", "userId": "  "}))
        self.assertIn("userId", ctx.exception.reason)
        self.assertEqual(ctx.exception.loan_id, "l1")

    def test_non_numeric_coordinates_rejected(self):
        with self.assertRaises(NormalizationError) as ctx:
            normalize_event(_event({"userId": "u1", "loanId": "l1", "lat": "north", "lng": "2"}))
        self.assertIn("latitude", ctx.exception.reason)

    def test_out_of_range_latitude_rejected(self):
        with self.assertRaises(NormalizationError):
            normalize_event(_event({"userId": "u1", "loanId": "l1", "lat": "123.0", "lng": "2"}))

    def test_empty_coordinates_are_missing_not_malformed(self):
        """Blank GPS is left for the gatekeeper to reject as 'GPS missing'."""
        sub = normalize_event(_event({"userId": "u1", "loanId": "l1", "lat": "", "lng": ""}))
        self.assertIsNone(sub.latitude)
        self.assertFalse(sub.has_location)


if __name__ == "__main__":
    unittest.main()
