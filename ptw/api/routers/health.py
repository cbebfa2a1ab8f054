"""Health check endpoints.

- /health: Basic health check
- /health/ready: Readiness check (is the database reachable?)
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ptw.api.deps import get_db
from ptw.common.timeutil import utcnow

router = APIRouter(tags=["health"])

VERSION = "0.1.0"


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except SQLAlchemyError as e:
        return {"status": "unhealthy", "error": str(e)}


@router.get("/health")
def health_check():
    return {"status": "healthy", "version": VERSION}


@router.get("/health/ready")
def readiness_check(db: Session = Depends(get_db)):
    database = check_database(db)
    healthy = database["status"] == "healthy"
    body = {
        "status": "ready" if healthy else "not_ready",
        "timestamp": utcnow().isoformat(),
        "checks": {"database": database},
    }
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )
