from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text, func

from database import Base


class Loan(Base):
    __tablename__ = "loans"

    id = Column(String(128), primary_key=True, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="initialised", index=True)
    borrower_name = Column(String(256), nullable=True)
    loan_amount = Column(Float, nullable=True)
    declared_asset_type = Column(String(128), nullable=True)
    # FileEntry payloads; the bill is a single slot, assets are append-only
    bill_data = Column(JSON(none_as_null=True), nullable=True)
    asset_data = Column(JSON, nullable=False, default=list)
    # Mirrors len(asset_data); appends compare-and-swap on it
    asset_count = Column(Integer, nullable=False, default=0)
    rejection_reason = Column(Text, nullable=True)
    # Verdict from the verification oracle
    product_name = Column(String(256), nullable=True)
    confidence_score = Column(Integer, nullable=True)
    summary = Column(Text, nullable=True)
    extracted_amount = Column(Float, nullable=True)
    asset_type = Column(String(128), nullable=True)
    is_handwritten = Column(Boolean, nullable=True)
    is_duplicate = Column(Boolean, nullable=True)
    # Set once per completed bundle by the run that wins the claim
    verification_claimed_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class SubmissionRejection(Base):
    __tablename__ = "submission_rejections"

    id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(128), nullable=True, index=True)
    loan_id = Column(String(128), nullable=True, index=True)
    file_path = Column(String(1024), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
