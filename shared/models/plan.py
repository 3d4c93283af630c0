from sqlalchemy import Column, String, BigInteger, Boolean, Integer, Numeric, JSON
from .base import BaseModel

GB = 1024 ** 3
MB = 1024 ** 2


class Plan(BaseModel):
    __tablename__ = "plans"
    
    id = Column(String(50), primary_key=True)  # free, lite, basic, ...
    name = Column(String, nullable=False)
    
    # Limits
    storage_quota_bytes = Column(BigInteger, nullable=False)
    max_file_size_bytes = Column(BigInteger, nullable=False)
    
    # Pricing
    monthly_price = Column(Numeric(10, 2), nullable=False, default=0)
    annual_price = Column(Numeric(10, 2), nullable=False, default=0)
    
    # Catalog presentation
    features = Column(JSON, nullable=True)  # list of feature strings
    sort_order = Column(Integer, nullable=False, default=0)  # tier order, lowest first
    is_popular = Column(Boolean, default=False)
    sharing_enabled = Column(Boolean, default=True)
    priority_support = Column(Boolean, default=False)
    
    # Status
    is_active = Column(Boolean, default=True, nullable=False)

    def price_for(self, billing_cycle: str):
        return self.annual_price if billing_cycle == "annual" else self.monthly_price
