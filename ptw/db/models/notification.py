"""In-app notification model."""

import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from ptw.common.timeutil import utcnow
from ptw.db.base import Base


class Notification(Base):
    """
    A message for one user about one permit.

    Write-once except for the read flag.
    """
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=True, index=True)
    category = Column(String(50), nullable=False, index=True)  # NotificationCategory value
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    permit = relationship("Permit", back_populates="notifications")

    def __repr__(self) -> str:
        return f"<Notification {self.category} -> {self.user_id}>"
