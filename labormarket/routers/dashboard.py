"""Per-role dashboard endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext, require_auth
from labormarket.database import get_db
from labormarket.schemas.dashboard import ClientDashboard, LaborerDashboard
from labormarket.services import dashboard as dashboard_service

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/client", response_model=ClientDashboard)
async def client_dashboard(
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> ClientDashboard:
    if not auth.is_client:
        raise HTTPException(status_code=403, detail="Client dashboard is for clients only")
    return await dashboard_service.client_dashboard(db, auth)


@router.get("/laborer", response_model=LaborerDashboard)
async def laborer_dashboard(
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> LaborerDashboard:
    if not auth.is_laborer:
        raise HTTPException(status_code=403, detail="Laborer dashboard is for laborers only")
    return await dashboard_service.laborer_dashboard(db, auth)
