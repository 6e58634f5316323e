from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from scan_gateway.database import Base


class SharedResult(Base):
    __tablename__ = "shared_results"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    share_token = Column(String, nullable=False, unique=True, index=True)
    result_json = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    expires_at = Column(DateTime, nullable=True, index=True)  # NULL = never expires
