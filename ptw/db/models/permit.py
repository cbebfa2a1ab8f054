"""Permit database models.

A permit row carries its aggregate status and the three approver slots.
Team members, hazards, PPE and checklist answers are written once at
creation; extensions, the closure record and history rows are appended
as the permit moves through its lifecycle.
"""

import uuid
from sqlalchemy import (
    Column, String, DateTime, JSON, ForeignKey, Text, Integer, Boolean, Uuid, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ptw.common.timeutil import utcnow
from ptw.core.lifecycle.engine import PermitSnapshot
from ptw.core.lifecycle.states import ExtensionStatus, PermitStatus
from ptw.db.base import Base
from ptw.db.models.slots import ApproverSlotColumns


class Permit(ApproverSlotColumns, Base):
    """
    A work permit.

    ``status`` is the aggregate lifecycle status; while the permit is in its
    approval phase it always agrees with the approver slots.
    """
    __tablename__ = "permits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    serial_number = Column(Integer, unique=True, nullable=False)
    permit_serial = Column(String(32), unique=True, nullable=False, index=True)

    # Work description
    permit_types = Column(JSON, nullable=False, default=list)
    work_description = Column(Text, nullable=False)
    work_location = Column(String(255), nullable=False)
    site_name = Column(String(255), nullable=True)
    receiver_name = Column(String(255), nullable=True)
    receiver_contact = Column(String(100), nullable=True)
    issue_department = Column(String(255), nullable=True)
    issuer_signature = Column(Text, nullable=True)
    control_measures = Column(Text, nullable=True)
    other_hazards = Column(Text, nullable=True)

    # Work window
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    # Workflow state
    status = Column(String(30), nullable=False, default=PermitStatus.INITIATED.value, index=True)
    rejection_reason = Column(Text, nullable=True)

    # Ownership
    created_by_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    # Lifecycle timestamps
    final_submitted_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Optimistic concurrency check on every UPDATE
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    creator = relationship("User", foreign_keys=[created_by_user_id])
    team_members = relationship("PermitTeamMember", back_populates="permit", cascade="all, delete-orphan")
    hazards = relationship("PermitHazard", back_populates="permit", cascade="all, delete-orphan")
    ppe = relationship("PermitPPE", back_populates="permit", cascade="all, delete-orphan")
    checklist_responses = relationship(
        "PermitChecklistResponse", back_populates="permit", cascade="all, delete-orphan"
    )
    extensions = relationship(
        "ExtensionRequest",
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="ExtensionRequest.created_at",
    )
    closure = relationship("PermitClosure", back_populates="permit", uselist=False, cascade="all, delete-orphan")
    history = relationship(
        "PermitHistory", back_populates="permit", cascade="all, delete-orphan", order_by="PermitHistory.created_at"
    )
    notifications = relationship("Notification", back_populates="permit", cascade="all, delete-orphan")

    @property
    def lifecycle_status(self) -> PermitStatus:
        return PermitStatus(self.status)

    @property
    def display_status(self) -> str:
        """Status shown to users.

        An active permit reads "Extended" or "Extension_Rejected" after its
        latest extension request was decided.
        """
        if self.lifecycle_status == PermitStatus.ACTIVE and self.extensions:
            latest = self.extensions[-1].status
            if latest == ExtensionStatus.APPROVED.value:
                return "Extended"
            if latest == ExtensionStatus.REJECTED.value:
                return "Extension_Rejected"
        return self.lifecycle_status.value

    def snapshot(self) -> PermitSnapshot:
        return PermitSnapshot(
            id=self.id,
            serial=self.permit_serial,
            status=self.lifecycle_status,
            created_by=self.created_by_user_id,
            slots=self.slots,
            start_time=self.start_time,
            end_time=self.end_time,
        )

    def __repr__(self) -> str:
        return f"<Permit {self.permit_serial} [{self.status}]>"


class PermitTeamMember(Base):
    __tablename__ = "permit_team_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_name = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=True)
    badge_id = Column(String(100), nullable=True)
    worker_role = Column(String(100), nullable=True)
    contact_number = Column(String(50), nullable=True)

    permit = relationship("Permit", back_populates="team_members")


class PermitHazard(Base):
    __tablename__ = "permit_hazards"
    __table_args__ = (UniqueConstraint("permit_id", "hazard_code", name="uq_permit_hazard"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True)
    hazard_code = Column(String(100), nullable=False)

    permit = relationship("Permit", back_populates="hazards")


class PermitPPE(Base):
    __tablename__ = "permit_ppe"
    __table_args__ = (UniqueConstraint("permit_id", "ppe_code", name="uq_permit_ppe"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True)
    ppe_code = Column(String(100), nullable=False)

    permit = relationship("Permit", back_populates="ppe")


class PermitChecklistResponse(Base):
    __tablename__ = "permit_checklist_responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(String(100), nullable=False)
    response = Column(String(10), nullable=False)  # Yes, No, NA
    remarks = Column(Text, nullable=True)

    permit = relationship("Permit", back_populates="checklist_responses")


class PermitClosure(Base):
    """Closure record written when a permit is closed."""
    __tablename__ = "permit_closures"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, unique=True)
    closed_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    housekeeping_done = Column(Boolean, nullable=False)
    tools_removed = Column(Boolean, nullable=False)
    locks_removed = Column(Boolean, nullable=False)
    area_restored = Column(Boolean, nullable=False)
    remarks = Column(Text, nullable=True)
    closed_at = Column(DateTime, default=utcnow)

    permit = relationship("Permit", back_populates="closure")


class PermitHistory(Base):
    """
    Records every state transition of a permit.

    Provides the audit trail of the approval and work lifecycle.
    """
    __tablename__ = "permit_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True)

    # Transition details
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    transition = Column(String(50), nullable=False)

    # Actor
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_role = Column(String(50), nullable=True)

    comment = Column(Text, nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, index=True)

    permit = relationship("Permit", back_populates="history")

    def __repr__(self) -> str:
        return f"<PermitHistory {self.from_status} -> {self.to_status}>"
