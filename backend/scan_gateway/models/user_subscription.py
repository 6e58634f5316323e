from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from scan_gateway.database import Base


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String, nullable=False, unique=True, index=True)
    product_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default='inactive')
    current_period_end = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
