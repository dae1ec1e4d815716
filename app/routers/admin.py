"""Operator endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.services.alert_service import alert_warning
from app.services.health_service import check_and_heal_sessions, get_system_health

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/health")
async def system_health(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Session counts per lifecycle state."""
    _require_admin_token(x_admin_token)
    return get_system_health(db)


@router.post("/heal")
async def heal_system(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Check and heal session invariant violations."""
    _require_admin_token(x_admin_token)
    result = check_and_heal_sessions(db)
    if result["healed_count"]:
        alert_warning(f"Healed {result['healed_count']} session(s)", {"details": result["details"]})
    return result
