from sqlalchemy import Column, String, BigInteger, DateTime, Boolean, ForeignKey
from .base import BaseModel


class Subscription(BaseModel):
    """Quota ledger entry, one per user"""
    __tablename__ = "subscriptions"
    
    user_id = Column(String(64), unique=True, index=True, nullable=False)
    
    # Plan details
    plan_id = Column(String(50), ForeignKey("plans.id"), nullable=False)
    billing_cycle = Column(String, nullable=False, default="monthly")  # monthly, annual
    
    # Timing
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=True)
    last_payment_at = Column(DateTime, nullable=True)
    
    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    
    # Usage, only touched through QuotaService
    storage_used_bytes = Column(BigInteger, default=0, nullable=False)
    
    # Payment intent that produced the current plan
    source_intent_id = Column(String(36), nullable=True)
    
