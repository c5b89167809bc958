from models.loan import Loan, SubmissionRejection

__all__ = [
    "Loan",
    "SubmissionRejection",
]
