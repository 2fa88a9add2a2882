"""
心跳上报路由

被监控任务通过 POST 上报心跳，GET 返回接入说明。无需鉴权，目标 ID 即上报凭据。
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.core.database import get_db
from pulsewatch.core.exceptions import BusinessError, NotFoundError
from pulsewatch.schemas.heartbeat import HeartbeatInstructions, HeartbeatRequest, HeartbeatResponse
from pulsewatch.services.heartbeat import heartbeat_instructions, record_heartbeat
from pulsewatch.services.store import TargetStore

router = APIRouter(prefix="/api/v1/heartbeats", tags=["heartbeats"])


@router.post("/{target_id}", response_model=HeartbeatResponse)
async def receive_heartbeat(
    target_id: int,
    request: Request,
    body: Optional[HeartbeatRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """接收心跳。请求体可省略，默认视为 up。"""
    source_ip = request.client.host if request.client else None
    return await record_heartbeat(db, target_id, body or HeartbeatRequest(), source_ip=source_ip)


@router.get("/{target_id}", response_model=HeartbeatInstructions)
async def get_heartbeat_instructions(target_id: int, db: AsyncSession = Depends(get_db)):
    target = await TargetStore(db).get_target(target_id)
    if target is None:
        raise NotFoundError(f"Target {target_id} not found")
    if target.kind != "heartbeat":
        raise BusinessError(f"Target {target_id} is not a heartbeat target")
    return heartbeat_instructions(target)
