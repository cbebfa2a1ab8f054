"""Permit lifecycle states and transitions.

State Machine Diagram:

    ┌───────────┐
    │ INITIATED │ ← Created, approver slots Pending
    └─────┬─────┘
          │ approve (all assigned slots)      reject (any slot)
          ├──────────────────────────────────────────┐
    ┌─────▼─────┐                              ┌─────▼────┐
    │ APPROVED  │                              │ REJECTED │
    └─────┬─────┘                              └──────────┘
          │ final submit (creator)
    ┌─────▼──────────┐
    │ READY_TO_START │
    └─────┬──────────┘
          │ start (creator)
    ┌─────▼─────┐  request extension   ┌─────────────────────┐
    │  ACTIVE   │─────────────────────►│ EXTENSION_REQUESTED │
    │           │◄─────────────────────│                     │
    └─────┬─────┘  granted / denied    └─────────────────────┘
          │ close (creator, checklist)
    ┌─────▼─────┐
    │  CLOSED   │
    └───────────┘

REJECTED and CLOSED are terminal.
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class PermitStatus(str, Enum):
    """Aggregate status of a permit."""

    INITIATED = "Initiated"
    APPROVED = "Approved"
    READY_TO_START = "Ready_To_Start"
    ACTIVE = "Active"
    EXTENSION_REQUESTED = "Extension_Requested"
    REJECTED = "Rejected"
    CLOSED = "Closed"

    @classmethod
    def _missing_(cls, value):
        # Older rows spell the approval phase "Pending_Approval"
        if value == "Pending_Approval":
            return cls.INITIATED
        return None


class SlotStatus(str, Enum):
    """Decision recorded in one approver slot."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ExtensionStatus(str, Enum):
    """Outcome of an extension request."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ApproverRole(str, Enum):
    """The three fixed approver slots on a permit."""

    AREA_MANAGER = "area_manager"
    SAFETY_OFFICER = "safety_officer"
    SITE_LEADER = "site_leader"

    @property
    def label(self) -> str:
        return _ROLE_LABELS[self]


_ROLE_LABELS = {
    ApproverRole.AREA_MANAGER: "Area Manager",
    ApproverRole.SAFETY_OFFICER: "Safety Officer",
    ApproverRole.SITE_LEADER: "Site Leader",
}


class UserRole(str, Enum):
    """Role claim carried by an authenticated user."""

    REQUESTER = "Requester"
    AREA_MANAGER = "Approver_AreaManager"
    SAFETY_OFFICER = "Approver_Safety"
    SITE_LEADER = "Approver_SiteLeader"
    ADMIN = "Admin"

    @property
    def approver_role(self) -> Optional[ApproverRole]:
        """Approver slot this role claim acts on, if any."""
        return _APPROVER_SLOT_FOR_ROLE.get(self)


_APPROVER_SLOT_FOR_ROLE = {
    UserRole.AREA_MANAGER: ApproverRole.AREA_MANAGER,
    UserRole.SAFETY_OFFICER: ApproverRole.SAFETY_OFFICER,
    UserRole.SITE_LEADER: ApproverRole.SITE_LEADER,
}

USER_ROLE_FOR_SLOT: Dict[ApproverRole, UserRole] = {
    slot: role for role, slot in _APPROVER_SLOT_FOR_ROLE.items()
}


class PermitTransition(str, Enum):
    """Actions that move a permit between states."""

    CREATE = "create"
    APPROVE = "approve"                        # INITIATED → APPROVED (when all slots approve)
    REJECT = "reject"                          # INITIATED → REJECTED
    FINAL_SUBMIT = "final_submit"              # APPROVED → READY_TO_START
    START = "start"                            # READY_TO_START → ACTIVE
    REQUEST_EXTENSION = "request_extension"    # ACTIVE → EXTENSION_REQUESTED
    APPROVE_EXTENSION = "approve_extension"    # EXTENSION_REQUESTED → ACTIVE (when all slots approve)
    REJECT_EXTENSION = "reject_extension"      # EXTENSION_REQUESTED → ACTIVE
    CLOSE = "close"                            # ACTIVE → CLOSED


class TransitionRule(NamedTuple):
    """Defines a valid state transition.

    Who may drive it (owner or bound approver) and which text it needs are
    checked by the approval engine, not recorded here.
    """
    from_state: PermitStatus
    to_state: PermitStatus
    transition: PermitTransition


TRANSITION_RULES: list[TransitionRule] = [
    # Approval phase
    TransitionRule(PermitStatus.INITIATED, PermitStatus.APPROVED, PermitTransition.APPROVE),
    TransitionRule(PermitStatus.INITIATED, PermitStatus.REJECTED, PermitTransition.REJECT),

    # Hand-over to work
    TransitionRule(PermitStatus.APPROVED, PermitStatus.READY_TO_START, PermitTransition.FINAL_SUBMIT),
    TransitionRule(PermitStatus.READY_TO_START, PermitStatus.ACTIVE, PermitTransition.START),

    # Extensions
    TransitionRule(PermitStatus.ACTIVE, PermitStatus.EXTENSION_REQUESTED, PermitTransition.REQUEST_EXTENSION),
    TransitionRule(PermitStatus.EXTENSION_REQUESTED, PermitStatus.ACTIVE, PermitTransition.APPROVE_EXTENSION),
    TransitionRule(PermitStatus.EXTENSION_REQUESTED, PermitStatus.ACTIVE, PermitTransition.REJECT_EXTENSION),

    # Closure
    TransitionRule(PermitStatus.ACTIVE, PermitStatus.CLOSED, PermitTransition.CLOSE),
]

# Lookup tables
VALID_TRANSITIONS: Dict[PermitStatus, Set[PermitTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[PermitStatus, PermitTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_state, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


# No approver slot may change once a permit reaches one of these
TERMINAL_STATES: Set[PermitStatus] = {
    PermitStatus.REJECTED,
    PermitStatus.CLOSED,
}

# Permits whose work window is open
WORKING_STATES: Set[PermitStatus] = {
    PermitStatus.ACTIVE,
    PermitStatus.EXTENSION_REQUESTED,
}

# Permits that may still be deleted by their creator
DELETABLE_STATES: Set[PermitStatus] = {
    PermitStatus.INITIATED,
    PermitStatus.REJECTED,
}


def can_transition(from_state: PermitStatus, transition: PermitTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(from_state: PermitStatus, transition: PermitTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))


def get_target_state(from_state: PermitStatus, transition: PermitTransition) -> Optional[PermitStatus]:
    """Get the target state for a transition."""
    rule = get_transition_rule(from_state, transition)
    return rule.to_state if rule else None


def required_states(transition: PermitTransition) -> list[PermitStatus]:
    """States from which a transition may be performed."""
    return [r.from_state for r in TRANSITION_RULES if r.transition == transition]


class NotificationCategory(str, Enum):
    """Category tag on a notification."""

    APPROVAL_REQUEST = "APPROVAL_REQUEST"
    PTW_PARTIALLY_APPROVED = "PTW_PARTIALLY_APPROVED"
    PTW_APPROVED = "PTW_APPROVED"
    PTW_REJECTED = "PTW_REJECTED"
    EXTENSION_REQUEST = "EXTENSION_REQUEST"
    EXTENSION_PARTIAL = "EXTENSION_PARTIAL"
    EXTENSION_APPROVED = "EXTENSION_APPROVED"
    EXTENSION_REJECTED = "EXTENSION_REJECTED"
    PTW_CLOSED = "PTW_CLOSED"
    PTW_EXPIRING = "PTW_EXPIRING"
