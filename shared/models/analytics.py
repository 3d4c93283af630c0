from sqlalchemy import Column, String, JSON
from .base import BaseModel


class Event(BaseModel):
    __tablename__ = "analytics_events"
    
    user_id = Column(String(64), nullable=False, index=True)
    
    # Event data
    event_type = Column(String, nullable=False, index=True)  # payment.created, payment.verified, etc.
    intent_id = Column(String(36), nullable=True, index=True)  # For tracking payment flows
    
    # Data
    properties = Column(JSON, nullable=True)  # Additional event data
