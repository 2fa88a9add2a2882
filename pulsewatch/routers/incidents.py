"""
故障诊断查询路由
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.core.database import get_db
from pulsewatch.core.exceptions import NotFoundError
from pulsewatch.schemas.incident import IncidentDiagnosticResponse
from pulsewatch.services.store import TargetStore

router = APIRouter(prefix="/api/v1/incidents", tags=["incidents"])


@router.get("/{incident_id}/diagnostics", response_model=List[IncidentDiagnosticResponse])
async def list_incident_diagnostics(incident_id: int, db: AsyncSession = Depends(get_db)):
    """故障开启时为失败地域采集的诊断快照。"""
    store = TargetStore(db)
    if await store.get_incident(incident_id) is None:
        raise NotFoundError(f"Incident {incident_id} not found")
    return await store.list_diagnostics(incident_id)
