from sqlalchemy import Column, Integer, String, DateTime, Text, event
from sqlalchemy.sql import func
from scan_gateway.database import Base


class AdminAuditLog(Base):
    """Append-only record of administrative actions. Rows are never modified."""
    __tablename__ = "admin_audit_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String, nullable=False)
    details_json = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)


@event.listens_for(AdminAuditLog, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise PermissionError("admin_audit_log is append-only; rows cannot be updated")


@event.listens_for(AdminAuditLog, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise PermissionError("admin_audit_log is append-only; rows cannot be deleted")
