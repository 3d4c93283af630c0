from sqlalchemy import Column, String, Boolean
from .base import BaseModel


class User(BaseModel):
    """Identity record consumed by the API layer; authentication lives elsewhere"""
    __tablename__ = "users"
    
    id = Column(String(36), primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, default="user", nullable=False)  # user, admin
    api_token = Column(String, unique=True, index=True, nullable=True)
    is_active = Column(Boolean, default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
