from typing import Generator, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from ptw.core.authoring import PermitAuthoringService
from ptw.core.config import Settings, get_settings
from ptw.core.lifecycle import LifecycleError, UserRole
from ptw.core.lifecycle.controller import CurrentUser, PermitLifecycleController
from ptw.core.security import decode_token
from ptw.db.models import Permit, User
from ptw.db.session import SessionLocal
from ptw.services.notifications import NotificationService

# Tokens are issued by the external identity provider; this service only validates them
bearer_scheme = HTTPBearer(auto_error=False)


def get_session_factory() -> sessionmaker:
    """Session factory; overridden in tests."""
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)) -> Generator:
    """Database session dependency."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    session_factory: sessionmaker = Depends(get_session_factory),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> User:
    """Get current authenticated user from a JWT bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception
    claims = decode_token(credentials.credentials, settings)
    if claims is None:
        raise credentials_exception

    # Short session of its own so no read transaction is held while the request writes
    with session_factory() as db:
        user = db.query(User).filter(User.id == claims.user_id).first()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def get_actor(current_user: User = Depends(get_current_user)) -> CurrentUser:
    """The caller as the lifecycle core sees it; the role comes from the user row."""
    try:
        role = UserRole(current_user.role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "not_authorized", "message": f"Unknown role {current_user.role}"},
        )
    return CurrentUser(user_id=current_user.id, role=role)


def require_admin(actor: CurrentUser = Depends(get_actor)) -> CurrentUser:
    if actor.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "not_authorized", "message": "Admin role required"},
        )
    return actor


def get_notification_service(
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> NotificationService:
    return NotificationService(session_factory, settings=settings)


def get_lifecycle_controller(
    session_factory: sessionmaker = Depends(get_session_factory),
    notifications: NotificationService = Depends(get_notification_service),
) -> PermitLifecycleController:
    return PermitLifecycleController(session_factory, sink=notifications)


def get_authoring_service(
    session_factory: sessionmaker = Depends(get_session_factory),
    notifications: NotificationService = Depends(get_notification_service),
    settings: Settings = Depends(get_settings),
) -> PermitAuthoringService:
    return PermitAuthoringService(session_factory, sink=notifications, settings=settings)


def http_error(exc: LifecycleError) -> HTTPException:
    """Translate a lifecycle failure into the HTTP error the API answers with."""
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.code, "message": exc.message},
    )


def load_visible_permit(db: Session, permit_id: UUID, actor: CurrentUser) -> Permit:
    """Permit readable by its creator, its assigned approvers and admins."""
    permit = db.query(Permit).filter(Permit.id == permit_id).first()
    if not permit:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Permit {permit_id} not found"},
        )
    assigned = {slot.user_id for slot in permit.slots.values() if slot.assigned}
    if actor.role != UserRole.ADMIN and actor.user_id != permit.created_by_user_id and actor.user_id not in assigned:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "not_authorized", "message": f"You cannot view permit {permit.permit_serial}"},
        )
    return permit
