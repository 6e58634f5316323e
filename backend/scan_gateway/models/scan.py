from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from scan_gateway.database import Base


class Scan(Base):
    __tablename__ = "scans"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String, nullable=True, index=True)
    product_name = Column(String, nullable=True)
    analysis_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
