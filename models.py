"""
Fundi SQLAlchemy Models
Jobs, the payment ledger and provider payout methods for the
service marketplace. Users live in the external identity provider; ids
here are the subject claims of their bearer tokens.
"""

import uuid

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import (
    Column, String, Float, Boolean, Text, DateTime, ForeignKey, JSON,
    CheckConstraint, Index, UniqueConstraint, inspect
)
from sqlalchemy.orm import deferred, relationship

from helpers import as_utc, isoformat, utcnow

db = SQLAlchemy()

# Job.status values
JOB_PENDING = "pending"
JOB_CONFIRMED = "confirmed"
JOB_IN_PROGRESS = "in_progress"
JOB_AWAITING_PAYMENT = "awaiting_payment"
JOB_COMPLETED = "completed"
JOB_CANCELLED = "cancelled"
JOB_DISPUTED = "disputed"

JOB_STATUSES = (
    JOB_PENDING, JOB_CONFIRMED, JOB_IN_PROGRESS, JOB_AWAITING_PAYMENT,
    JOB_COMPLETED, JOB_CANCELLED, JOB_DISPUTED,
)

# Payment status values, shared by Job.payment_status and Payment.status
PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_PARTIAL = "partial"
PAYMENT_DUPLICATE = "duplicate"
PAYMENT_DISPUTED = "disputed"

PAYMENT_STATUSES = (
    PAYMENT_PENDING, PAYMENT_PROCESSING, PAYMENT_COMPLETED, PAYMENT_FAILED,
    PAYMENT_REFUNDED, PAYMENT_PARTIAL, PAYMENT_DUPLICATE, PAYMENT_DISPUTED,
)


def generate_uuid():
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------
class Job(db.Model):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    customer_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(String(36), nullable=False, index=True)

    status = Column(String(30), nullable=False, default=JOB_PENDING)

    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)

    # Quote
    quote_total = Column(Float, nullable=True)
    quote_labor = Column(Float, nullable=True)
    quote_materials = Column(Float, nullable=True)
    quote_breakdown = Column(Text, nullable=True)
    quote_submitted_at = Column(DateTime(timezone=True), nullable=True)
    quote_accepted = Column(Boolean, nullable=False, default=False)
    quote_accepted_at = Column(DateTime(timezone=True), nullable=True)
    quote_locked = Column(Boolean, nullable=False, default=False)

    # Handshake. Plaintext codes are display copies only and are deferred
    # so that databases without those columns can still load jobs.
    start_code = deferred(Column(String(16), nullable=True))
    start_code_hash = Column(String(64), nullable=True)
    start_code_used = Column(Boolean, nullable=False, default=False)
    start_code_used_at = Column(DateTime(timezone=True), nullable=True)
    customer_code_expires_at = Column(DateTime(timezone=True), nullable=True)

    end_code = deferred(Column(String(16), nullable=True))
    end_code_hash = Column(String(64), nullable=True)
    end_code_used = Column(Boolean, nullable=False, default=False)
    end_code_used_at = Column(DateTime(timezone=True), nullable=True)
    provider_code_expires_at = Column(DateTime(timezone=True), nullable=True)

    job_start_time = Column(DateTime(timezone=True), nullable=True)
    job_end_time = Column(DateTime(timezone=True), nullable=True)

    # Payment
    payment_amount = Column(Float, nullable=True)
    payment_tip = Column(Float, nullable=True, default=0.0)
    payment_total = Column(Float, nullable=True)
    payment_method = Column(String(30), nullable=True)
    payment_status = Column(String(30), nullable=True)
    payment_reference = Column(String(100), nullable=True, index=True)
    payment_initiated_at = Column(DateTime(timezone=True), nullable=True)
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)
    is_partial_payment = Column(Boolean, nullable=False, default=False)
    partial_payment_reason = Column(Text, nullable=True)

    # Commission
    platform_commission_percent = Column(Float, nullable=True)
    platform_commission_amount = Column(Float, nullable=True)
    provider_payout = Column(Float, nullable=True)
    provider_payout_status = Column(String(30), nullable=True)

    # Dispute
    dispute_flagged = Column(Boolean, nullable=False, default=False)
    dispute_reason = Column(Text, nullable=True)
    dispute_flagged_at = Column(DateTime(timezone=True), nullable=True)
    dispute_flagged_by = Column(String(36), nullable=True)
    dispute_resolved = Column(Boolean, nullable=False, default=False)
    dispute_resolution = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    payments = relationship("Payment", back_populates="job", lazy="dynamic")

    __table_args__ = (
        Index("ix_jobs_status", "status"),
        CheckConstraint("quote_total IS NULL OR quote_total > 0", name="ck_jobs_quote_total_positive"),
    )

    def role_of(self, user_id):
        """Return 'customer', 'provider' or None for the given user."""
        if user_id and user_id == self.customer_id:
            return "customer"
        if user_id and user_id == self.provider_id:
            return "provider"
        return None

    def display_code(self, viewer_role):
        """Plaintext of the unused, unexpired code the viewer issues, if stored."""
        if viewer_role == "customer":
            code, used, expires_at = self.start_code, self.start_code_used, self.customer_code_expires_at
        elif viewer_role == "provider":
            code, used, expires_at = self.end_code, self.end_code_used, self.provider_code_expires_at
        else:
            return None
        if not code or used:
            return None
        if expires_at is not None and as_utc(expires_at) <= utcnow():
            return None
        return code

    def to_dict(self, viewer_role=None, include_codes=False):
        # Hashes never leave the service. A viewer only ever sees the
        # plaintext of the code they show to the other party.
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "address": self.address,
            "scheduled_at": isoformat(self.scheduled_at),
            "quote": {
                "total": self.quote_total,
                "labor": self.quote_labor,
                "materials": self.quote_materials,
                "breakdown": self.quote_breakdown,
                "submitted_at": isoformat(self.quote_submitted_at),
                "accepted": self.quote_accepted,
                "accepted_at": isoformat(self.quote_accepted_at),
                "locked": self.quote_locked,
            },
            "handshake": {
                "start_code_issued": self.start_code_hash is not None,
                "start_code_used": self.start_code_used,
                "start_code_used_at": isoformat(self.start_code_used_at),
                "end_code_issued": self.end_code_hash is not None,
                "end_code_used": self.end_code_used,
                "end_code_used_at": isoformat(self.end_code_used_at),
            },
            "job_start_time": isoformat(self.job_start_time),
            "job_end_time": isoformat(self.job_end_time),
            "payment": {
                "amount": self.payment_amount,
                "tip": self.payment_tip or 0.0,
                "total": self.payment_total,
                "method": self.payment_method,
                "status": self.payment_status,
                "reference": self.payment_reference,
                "initiated_at": isoformat(self.payment_initiated_at),
                "completed_at": isoformat(self.payment_completed_at),
                "is_partial": self.is_partial_payment,
                "partial_reason": self.partial_payment_reason,
            },
            "commission": {
                "percent": self.platform_commission_percent,
                "amount": self.platform_commission_amount,
                "provider_payout": self.provider_payout,
                "provider_payout_status": self.provider_payout_status,
            },
            "dispute": {
                "flagged": self.dispute_flagged,
                "reason": self.dispute_reason,
                "flagged_at": isoformat(self.dispute_flagged_at),
                "resolved": self.dispute_resolved,
                "resolution": self.dispute_resolution,
            },
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_codes:
            data["handshake"]["display_code"] = self.display_code(viewer_role)
        return data


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------
class Payment(db.Model):
    """One row per gateway transaction. A job can have several attempts."""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(String(36), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="KES")
    status = Column(String(30), nullable=False, default=PAYMENT_PENDING)
    payment_method = Column(String(30), nullable=False)
    payment_provider = Column(String(30), nullable=False, default="paystack")

    reference = Column(String(100), nullable=False, unique=True)
    paystack_transaction_id = Column(String(100), nullable=True)
    paystack_subaccount_id = Column(String(100), nullable=True)
    idempotency_key = Column(String(200), nullable=False, unique=True)
    client_idempotency_key = Column(String(200), nullable=True)
    authorization_url = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    job = relationship("Job", back_populates="payments")

    __table_args__ = (
        UniqueConstraint("job_id", "client_idempotency_key", name="uq_payments_job_client_key"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_provider": self.payment_provider,
            "reference": self.reference,
            "paystack_transaction_id": self.paystack_transaction_id,
            "subaccount_routing": bool(self.paystack_subaccount_id),
            "metadata": self.meta or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "completed_at": isoformat(self.completed_at),
        }


# ---------------------------------------------------------------------------
# PayoutMethod
# ---------------------------------------------------------------------------
class PayoutMethod(db.Model):
    __tablename__ = "payout_methods"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider_id = Column(String(36), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    label = Column(String(255), nullable=True)
    account_name = Column(String(255), nullable=True)
    account_number = Column(String(50), nullable=False)
    bank_code = Column(String(50), nullable=True)
    country = Column(String(2), nullable=False, default="KE")
    is_default = Column(Boolean, nullable=False, default=False)
    paystack_subaccount_id = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_payout_methods_provider_default", "provider_id", "is_default"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "type": self.type,
            "label": self.label,
            "account_name": self.account_name,
            "account_number": self.account_number,
            "bank_code": self.bank_code,
            "country": self.country,
            "is_default": self.is_default,
            "paystack_subaccount_id": self.paystack_subaccount_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


def plaintext_code_columns_present(engine):
    """True when the jobs table has the display-code columns."""
    columns = {column["name"] for column in inspect(engine).get_columns(Job.__tablename__)}
    return {"start_code", "end_code"} <= columns
