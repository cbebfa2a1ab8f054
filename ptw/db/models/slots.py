"""Column layout shared by permits and extension requests.

Each of the three approver slots is four columns. ``get_slot`` and
``set_slot`` translate them to and from the engine's ``ApproverSlot``
record, one explicit branch per role.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Uuid, and_
from sqlalchemy.orm import declared_attr

from ptw.core.lifecycle.engine import ApproverSlot, Slots
from ptw.core.lifecycle.states import ApproverRole, SlotStatus


def _slot_status(value):
    return SlotStatus(value) if value else None


class ApproverSlotColumns:
    """Mixin adding the area manager, safety officer and site leader slots."""

    @declared_attr
    def area_manager_id(cls):
        return Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    area_manager_status = Column(String(20), nullable=True)
    area_manager_signature = Column(Text, nullable=True)
    area_manager_decided_at = Column(DateTime, nullable=True)

    @declared_attr
    def safety_officer_id(cls):
        return Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    safety_officer_status = Column(String(20), nullable=True)
    safety_officer_signature = Column(Text, nullable=True)
    safety_officer_decided_at = Column(DateTime, nullable=True)

    @declared_attr
    def site_leader_id(cls):
        return Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    site_leader_status = Column(String(20), nullable=True)
    site_leader_signature = Column(Text, nullable=True)
    site_leader_decided_at = Column(DateTime, nullable=True)

    def get_slot(self, role: ApproverRole) -> ApproverSlot:
        if role is ApproverRole.AREA_MANAGER:
            return ApproverSlot(
                user_id=self.area_manager_id,
                status=_slot_status(self.area_manager_status),
                signature=self.area_manager_signature,
                decided_at=self.area_manager_decided_at,
            )
        if role is ApproverRole.SAFETY_OFFICER:
            return ApproverSlot(
                user_id=self.safety_officer_id,
                status=_slot_status(self.safety_officer_status),
                signature=self.safety_officer_signature,
                decided_at=self.safety_officer_decided_at,
            )
        return ApproverSlot(
            user_id=self.site_leader_id,
            status=_slot_status(self.site_leader_status),
            signature=self.site_leader_signature,
            decided_at=self.site_leader_decided_at,
        )

    def set_slot(self, role: ApproverRole, slot: ApproverSlot) -> None:
        status = slot.status.value if slot.status else None
        if role is ApproverRole.AREA_MANAGER:
            self.area_manager_id = slot.user_id
            self.area_manager_status = status
            self.area_manager_signature = slot.signature
            self.area_manager_decided_at = slot.decided_at
        elif role is ApproverRole.SAFETY_OFFICER:
            self.safety_officer_id = slot.user_id
            self.safety_officer_status = status
            self.safety_officer_signature = slot.signature
            self.safety_officer_decided_at = slot.decided_at
        else:
            self.site_leader_id = slot.user_id
            self.site_leader_status = status
            self.site_leader_signature = slot.signature
            self.site_leader_decided_at = slot.decided_at

    @property
    def slots(self) -> Slots:
        return {role: self.get_slot(role) for role in ApproverRole}

    def set_slots(self, slots: Slots) -> None:
        for role, slot in slots.items():
            self.set_slot(role, slot)

    @classmethod
    def slot_filter(cls, role: ApproverRole, user_id, status: SlotStatus):
        """SQL criterion: the slot for ``role`` is bound to ``user_id`` and holds ``status``."""
        if role is ApproverRole.AREA_MANAGER:
            return and_(cls.area_manager_id == user_id, cls.area_manager_status == status.value)
        if role is ApproverRole.SAFETY_OFFICER:
            return and_(cls.safety_officer_id == user_id, cls.safety_officer_status == status.value)
        return and_(cls.site_leader_id == user_id, cls.site_leader_status == status.value)
