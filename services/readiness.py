from schemas.loan import LoanSnapshot

DEFAULT_BUNDLE_SIZE = 3


def is_bundle_ready(snapshot: LoanSnapshot, bundle_size: int = DEFAULT_BUNDLE_SIZE) -> bool:
    """A bundle is one bill plus exactly ``bundle_size`` asset photos."""
    return snapshot.has_bill and snapshot.asset_count == bundle_size
