"""Request and response schemas for permits and their approvals."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ptw.core.lifecycle.controller import TransitionOutcome
from ptw.core.lifecycle.states import ApproverRole


# Requests

class TeamMemberIn(BaseModel):
    worker_name: str = Field(..., min_length=1, max_length=255)
    company_name: Optional[str] = None
    badge_id: Optional[str] = None
    worker_role: Optional[str] = None
    contact_number: Optional[str] = None


class ChecklistAnswerIn(BaseModel):
    question_id: str = Field(..., min_length=1)
    response: str = Field(..., pattern="^(Yes|No|NA)$")
    remarks: Optional[str] = None


class PermitCreate(BaseModel):
    permit_types: List[str] = Field(default_factory=list)
    work_description: str
    work_location: str
    start_time: datetime
    end_time: datetime
    site_name: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_contact: Optional[str] = None
    issue_department: Optional[str] = None
    issuer_signature: Optional[str] = None
    control_measures: Optional[str] = None
    other_hazards: Optional[str] = None
    area_manager_id: Optional[UUID] = None
    safety_officer_id: Optional[UUID] = None
    site_leader_id: Optional[UUID] = None
    team_members: List[TeamMemberIn] = Field(default_factory=list)
    hazard_codes: List[str] = Field(default_factory=list)
    ppe_codes: List[str] = Field(default_factory=list)
    checklist: List[ChecklistAnswerIn] = Field(default_factory=list)


class ApproveAction(BaseModel):
    signature: Optional[str] = None


class RejectAction(BaseModel):
    reason: Optional[str] = None
    signature: Optional[str] = None


class ExtensionRequestIn(BaseModel):
    new_end_time: Optional[datetime] = None
    reason: Optional[str] = None


class CloseAction(BaseModel):
    housekeeping_done: Optional[bool] = None
    tools_removed: Optional[bool] = None
    locks_removed: Optional[bool] = None
    area_restored: Optional[bool] = None
    remarks: Optional[str] = None


# Responses

class ApproverSlotResponse(BaseModel):
    role: ApproverRole
    user_id: Optional[UUID]
    status: Optional[str]
    signature: Optional[str]
    decided_at: Optional[datetime]


def slot_responses(row) -> List[ApproverSlotResponse]:
    """Approver slots of a permit or extension row, assigned ones only."""
    return [
        ApproverSlotResponse(
            role=role,
            user_id=slot.user_id,
            status=slot.status.value if slot.status else None,
            signature=slot.signature,
            decided_at=slot.decided_at,
        )
        for role, slot in row.slots.items()
        if slot.assigned
    ]


class PermitSummary(BaseModel):
    id: UUID
    permit_serial: str
    status: str
    display_status: str
    permit_types: List[str]
    work_description: str
    work_location: str
    site_name: Optional[str]
    start_time: datetime
    end_time: datetime
    created_by_user_id: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class TeamMemberResponse(BaseModel):
    id: UUID
    worker_name: str
    company_name: Optional[str]
    badge_id: Optional[str]
    worker_role: Optional[str]
    contact_number: Optional[str]

    class Config:
        from_attributes = True


class ChecklistAnswerResponse(BaseModel):
    question_id: str
    response: str
    remarks: Optional[str]

    class Config:
        from_attributes = True


class ExtensionResponse(BaseModel):
    id: UUID
    permit_id: UUID
    original_end_time: datetime
    new_end_time: datetime
    reason: str
    status: str
    rejection_reason: Optional[str]
    requested_by_user_id: Optional[UUID]
    decided_at: Optional[datetime]
    created_at: datetime
    approvers: List[ApproverSlotResponse] = Field(default_factory=list)

    @classmethod
    def from_row(cls, extension) -> "ExtensionResponse":
        return cls(
            id=extension.id,
            permit_id=extension.permit_id,
            original_end_time=extension.original_end_time,
            new_end_time=extension.new_end_time,
            reason=extension.reason,
            status=extension.status,
            rejection_reason=extension.rejection_reason,
            requested_by_user_id=extension.requested_by_user_id,
            decided_at=extension.decided_at,
            created_at=extension.created_at,
            approvers=slot_responses(extension),
        )


class ClosureResponse(BaseModel):
    closed_by_user_id: Optional[UUID]
    housekeeping_done: bool
    tools_removed: bool
    locks_removed: bool
    area_restored: bool
    remarks: Optional[str]
    closed_at: datetime

    class Config:
        from_attributes = True


class PermitDetail(PermitSummary):
    receiver_name: Optional[str] = None
    receiver_contact: Optional[str] = None
    issue_department: Optional[str] = None
    issuer_signature: Optional[str] = None
    control_measures: Optional[str] = None
    other_hazards: Optional[str] = None
    rejection_reason: Optional[str] = None
    final_submitted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    approvers: List[ApproverSlotResponse] = Field(default_factory=list)
    team_members: List[TeamMemberResponse] = Field(default_factory=list)
    hazard_codes: List[str] = Field(default_factory=list)
    ppe_codes: List[str] = Field(default_factory=list)
    checklist: List[ChecklistAnswerResponse] = Field(default_factory=list)
    extensions: List[ExtensionResponse] = Field(default_factory=list)
    closure: Optional[ClosureResponse] = None

    @classmethod
    def from_permit(cls, permit) -> "PermitDetail":
        summary = PermitSummary.model_validate(permit)
        return cls(
            **summary.model_dump(),
            receiver_name=permit.receiver_name,
            receiver_contact=permit.receiver_contact,
            issue_department=permit.issue_department,
            issuer_signature=permit.issuer_signature,
            control_measures=permit.control_measures,
            other_hazards=permit.other_hazards,
            rejection_reason=permit.rejection_reason,
            final_submitted_at=permit.final_submitted_at,
            started_at=permit.started_at,
            closed_at=permit.closed_at,
            approvers=slot_responses(permit),
            team_members=[TeamMemberResponse.model_validate(m) for m in permit.team_members],
            hazard_codes=[h.hazard_code for h in permit.hazards],
            ppe_codes=[p.ppe_code for p in permit.ppe],
            checklist=[ChecklistAnswerResponse.model_validate(c) for c in permit.checklist_responses],
            extensions=[ExtensionResponse.from_row(e) for e in permit.extensions],
            closure=ClosureResponse.model_validate(permit.closure) if permit.closure else None,
        )


class HistoryResponse(BaseModel):
    id: UUID
    from_status: Optional[str]
    to_status: str
    transition: str
    user_id: Optional[UUID]
    user_role: Optional[str]
    comment: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    permit_id: UUID
    permit_serial: str
    status: str
    display_status: str
    decisive: bool
    transition: str

    @classmethod
    def from_outcome(cls, outcome: TransitionOutcome) -> "TransitionResponse":
        return cls(
            permit_id=outcome.permit_id,
            permit_serial=outcome.permit_serial,
            status=outcome.status,
            display_status=outcome.display_status,
            decisive=outcome.decisive,
            transition=outcome.transition.value,
        )
