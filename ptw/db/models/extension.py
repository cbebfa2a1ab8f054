"""Extension request model.

An extension carries its own approver slots, seeded from the permit's
assigned approvers when the request is made.
"""

import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Uuid, Index, text
from sqlalchemy.orm import relationship

from ptw.common.timeutil import utcnow
from ptw.core.lifecycle.engine import ExtensionSnapshot
from ptw.core.lifecycle.states import ExtensionStatus
from ptw.db.base import Base
from ptw.db.models.slots import ApproverSlotColumns


class ExtensionRequest(ApproverSlotColumns, Base):
    __tablename__ = "permit_extensions"
    __table_args__ = (
        # At most one outstanding request per permit
        Index(
            "uq_permit_extensions_one_pending",
            "permit_id",
            unique=True,
            sqlite_where=text("status = 'Pending'"),
            postgresql_where=text("status = 'Pending'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    original_end_time = Column(DateTime, nullable=False)
    new_end_time = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=False)

    status = Column(String(20), nullable=False, default=ExtensionStatus.PENDING.value, index=True)
    rejection_reason = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    permit = relationship("Permit", back_populates="extensions")

    def snapshot(self) -> ExtensionSnapshot:
        return ExtensionSnapshot(
            id=self.id,
            status=ExtensionStatus(self.status),
            original_end_time=self.original_end_time,
            new_end_time=self.new_end_time,
            reason=self.reason,
            requested_by=self.requested_by_user_id,
            slots=self.slots,
            rejection_reason=self.rejection_reason,
            decided_at=self.decided_at,
        )

    def apply(self, extension: ExtensionSnapshot) -> None:
        """Write an engine decision back onto the row."""
        self.set_slots(extension.slots)
        self.status = extension.status.value
        self.rejection_reason = extension.rejection_reason
        self.decided_at = extension.decided_at

    def __repr__(self) -> str:
        return f"<ExtensionRequest {self.permit_id} until {self.new_end_time} [{self.status}]>"
