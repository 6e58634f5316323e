from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from scan_gateway.database import Base


class AccessToken(Base):
    """Bearer token (stored as SHA-256) resolving to a user id"""
    __tablename__ = "access_tokens"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    token_hash = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
