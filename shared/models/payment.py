import enum

from sqlalchemy import Column, String, DateTime, Integer, Numeric, ForeignKey, Text, UniqueConstraint
from .base import BaseModel


class PaymentStatus(str, enum.Enum):
    CREATED = "created"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class PaymentChannel(str, enum.Enum):
    GPAY = "gpay"
    PHONEPE = "phonepe"
    PAYTM = "paytm"
    AMAZONPAY = "amazonpay"
    BHIM = "bhim"
    OTHER = "other"


class PaymentIntent(BaseModel):
    __tablename__ = "payment_intents"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_payment_intents_user_idempotency"),
    )
    
    id = Column(String(36), primary_key=True)  # uuid4
    user_id = Column(String(64), index=True, nullable=False)
    plan_id = Column(String(50), ForeignKey("plans.id"), nullable=False)
    billing_cycle = Column(String, nullable=False)
    
    # Price snapshot taken at creation
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, default="INR", nullable=False)
    
    status = Column(String, nullable=False, index=True, default=PaymentStatus.CREATED.value)
    
    # UTR claimed by the user, globally unique once set
    external_reference = Column(String, unique=True, nullable=True)
    payment_channel = Column(String, nullable=True)
    proof_url = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=True)
    
    # Admin verification
    verification_notes = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    resolved_by = Column(String(64), nullable=True)
    
    # Timing
    expires_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    
    # Optimistic lock, bumped on every write
    version = Column(Integer, nullable=False, default=1)
    
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            PaymentStatus.VERIFIED.value,
            PaymentStatus.REJECTED.value,
            PaymentStatus.REFUNDED.value,
        )
