from sqlalchemy import Column, String, DateTime, Text, CheckConstraint
from sqlalchemy.sql import func
from scan_gateway.database import Base


class SystemConfig(Base):
    """Runtime override for a setting (retention windows read by the maintenance jobs)"""
    __tablename__ = "system_config"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)  # serialized according to data_type
    data_type = Column(String, nullable=False, default='string')
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "data_type IN ('string', 'integer', 'float', 'boolean', 'json')",
            name='check_config_data_type'
        ),
    )
