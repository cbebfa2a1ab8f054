"""Lifecycle controller: runs engine decisions against the database.

Every action opens its own session, locks the permit row, re-reads the
approver bindings, applies the engine decision, writes a history row and
commits. Notifications are handed to the sink only after the commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ptw.common.timeutil import to_utc_naive, utcnow
from ptw.db.models import ExtensionRequest, Permit, PermitClosure, PermitHistory
from ptw.db.session import unit_of_work

from .engine import (
    ApprovalEngine,
    ClosureChecklist,
    Decision,
    NotificationEvent,
    approver_role_for,
)
from .errors import LifecycleError, NotFoundError
from .states import PermitTransition, UserRole

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def send(self, event: NotificationEvent) -> None:
        ...


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller as seen by the core."""

    user_id: UUID
    role: UserRole


@dataclass(frozen=True)
class TransitionOutcome:
    """What the caller learns about a committed transition."""

    permit_id: UUID
    permit_serial: str
    status: str
    display_status: str
    decisive: bool
    transition: PermitTransition


Decide = Callable[[Session, Permit, datetime], Decision]
ExtraWrite = Callable[[Session, Permit, Decision, datetime], None]


class PermitLifecycleController:
    """
    Atomic, isolated execution of permit lifecycle actions.

    Args:
        session_factory: SQLAlchemy ``sessionmaker``; one session per action
        sink: Receives notifications once the transition is durable
        engine: Decision engine, replaceable in tests
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        sink: Optional[NotificationSink] = None,
        engine: Optional[ApprovalEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.sink = sink
        self.engine = engine or ApprovalEngine()
        self.clock = clock

    # Approval phase

    def approve(self, permit_id: UUID, actor: CurrentUser, signature: Optional[str]) -> TransitionOutcome:
        def decide(db, permit, now):
            role = approver_role_for(actor.role)
            return self.engine.approve(permit.snapshot(), role, actor.user_id, signature, now)

        return self._run(permit_id, actor, PermitTransition.APPROVE, decide)

    def reject(
        self,
        permit_id: UUID,
        actor: CurrentUser,
        reason: Optional[str],
        signature: Optional[str] = None,
    ) -> TransitionOutcome:
        def decide(db, permit, now):
            role = approver_role_for(actor.role)
            return self.engine.reject(permit.snapshot(), role, actor.user_id, reason, now, signature=signature)

        return self._run(permit_id, actor, PermitTransition.REJECT, decide)

    # Owner actions

    def final_submit(self, permit_id: UUID, actor: CurrentUser) -> TransitionOutcome:
        def decide(db, permit, now):
            return self.engine.final_submit(permit.snapshot(), actor.user_id)

        return self._run(permit_id, actor, PermitTransition.FINAL_SUBMIT, decide)

    def start(self, permit_id: UUID, actor: CurrentUser) -> TransitionOutcome:
        def decide(db, permit, now):
            return self.engine.start(permit.snapshot(), actor.user_id)

        return self._run(permit_id, actor, PermitTransition.START, decide)

    def request_extension(
        self,
        permit_id: UUID,
        actor: CurrentUser,
        new_end_time: Optional[datetime],
        reason: Optional[str],
    ) -> TransitionOutcome:
        new_end_time = to_utc_naive(new_end_time) if new_end_time is not None else None

        def decide(db, permit, now):
            return self.engine.request_extension(permit.snapshot(), actor.user_id, new_end_time, reason)

        return self._run(permit_id, actor, PermitTransition.REQUEST_EXTENSION, decide)

    def close(
        self,
        permit_id: UUID,
        actor: CurrentUser,
        checklist: ClosureChecklist,
        remarks: Optional[str] = None,
    ) -> TransitionOutcome:
        def decide(db, permit, now):
            return self.engine.close(permit.snapshot(), actor.user_id, checklist)

        def write_closure(db, permit, decision, now):
            permit.closure = PermitClosure(
                closed_by_user_id=actor.user_id,
                housekeeping_done=checklist.housekeeping_done,
                tools_removed=checklist.tools_removed,
                locks_removed=checklist.locks_removed,
                area_restored=checklist.area_restored,
                remarks=remarks,
                closed_at=now,
            )

        return self._run(permit_id, actor, PermitTransition.CLOSE, decide, write_closure)

    # Extension decisions

    def approve_extension(
        self,
        extension_id: UUID,
        actor: CurrentUser,
        signature: Optional[str],
    ) -> TransitionOutcome:
        permit_id = self._permit_for_extension(extension_id)

        def decide(db, permit, now):
            extension = self._extension_of(permit, extension_id)
            role = approver_role_for(actor.role)
            return self.engine.approve_extension(
                permit.snapshot(), extension.snapshot(), role, actor.user_id, signature, now
            )

        return self._run(permit_id, actor, PermitTransition.APPROVE_EXTENSION, decide)

    def reject_extension(
        self,
        extension_id: UUID,
        actor: CurrentUser,
        reason: Optional[str],
    ) -> TransitionOutcome:
        permit_id = self._permit_for_extension(extension_id)

        def decide(db, permit, now):
            extension = self._extension_of(permit, extension_id)
            role = approver_role_for(actor.role)
            return self.engine.reject_extension(
                permit.snapshot(), extension.snapshot(), role, actor.user_id, reason, now
            )

        return self._run(permit_id, actor, PermitTransition.REJECT_EXTENSION, decide)

    # Unit of work

    def _transaction(self):
        return unit_of_work(self.session_factory)

    def _lock_permit(self, db: Session, permit_id: UUID) -> Permit:
        permit = (
            db.query(Permit)
            .filter(Permit.id == permit_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if permit is None:
            raise NotFoundError(f"Permit {permit_id} not found")
        return permit

    def _permit_for_extension(self, extension_id: UUID) -> UUID:
        with self._transaction() as db:
            permit_id = (
                db.query(ExtensionRequest.permit_id)
                .filter(ExtensionRequest.id == extension_id)
                .scalar()
            )
        if permit_id is None:
            raise NotFoundError(f"Extension request {extension_id} not found")
        return permit_id

    @staticmethod
    def _extension_of(permit: Permit, extension_id: UUID) -> ExtensionRequest:
        for extension in permit.extensions:
            if extension.id == extension_id:
                return extension
        raise NotFoundError(f"Extension request {extension_id} not found")

    def _run(
        self,
        permit_id: UUID,
        actor: CurrentUser,
        transition: PermitTransition,
        decide: Decide,
        write_extra: Optional[ExtraWrite] = None,
    ) -> TransitionOutcome:
        with self._transaction() as db:
            permit = self._lock_permit(db, permit_id)
            now = self.clock()
            try:
                decision = decide(db, permit, now)
            except LifecycleError as e:
                logger.warning(
                    f"Refused {transition.value} on permit {permit.permit_serial} by user {actor.user_id}: {e.message}"
                )
                raise

            self._persist(db, permit, decision, actor, now)
            if write_extra is not None:
                write_extra(db, permit, decision, now)
            db.flush()

            outcome = TransitionOutcome(
                permit_id=permit.id,
                permit_serial=permit.permit_serial,
                status=permit.status,
                display_status=permit.display_status,
                decisive=decision.decisive,
                transition=transition,
            )

        logger.info(
            f"Permit {outcome.permit_serial}: {transition.value} by user {actor.user_id} "
            f"({decision.previous_status.value} -> {decision.status.value})"
        )
        self._dispatch(decision.notifications)
        return outcome

    def _persist(self, db: Session, permit: Permit, decision: Decision, actor: CurrentUser, now: datetime) -> None:
        if decision.slots is not None:
            permit.set_slots(decision.slots)
        permit.status = decision.status.value
        if decision.transition == PermitTransition.REJECT:
            permit.rejection_reason = decision.rejection_reason
        if decision.end_time is not None:
            permit.end_time = decision.end_time

        if decision.transition == PermitTransition.FINAL_SUBMIT:
            permit.final_submitted_at = now
        elif decision.transition == PermitTransition.START:
            permit.started_at = now
        elif decision.transition == PermitTransition.CLOSE:
            permit.closed_at = now
        # Every action bumps the row version, even one that only touches the extension
        permit.updated_at = now

        extension = decision.extension
        if extension is not None:
            if extension.id is None:
                row = ExtensionRequest(
                    requested_by_user_id=extension.requested_by,
                    original_end_time=extension.original_end_time,
                    new_end_time=extension.new_end_time,
                    reason=extension.reason,
                    created_at=now,
                )
                row.apply(extension)
                permit.extensions.append(row)
            else:
                self._extension_of(permit, extension.id).apply(extension)

        db.add(PermitHistory(
            permit_id=permit.id,
            from_status=decision.previous_status.value,
            to_status=decision.status.value,
            transition=decision.transition.value,
            user_id=actor.user_id,
            user_role=actor.role.value,
            comment=decision.comment,
            extra_data={"decisive": decision.decisive},
            created_at=now,
        ))

    def _dispatch(self, events: Iterable[NotificationEvent]) -> None:
        if self.sink is None:
            return
        for event in events:
            try:
                self.sink.send(event)
            except Exception:
                logger.exception(
                    f"Failed to deliver {event.category.value} notification for permit {event.permit_id} "
                    f"to user {event.recipient_user_id}"
                )
