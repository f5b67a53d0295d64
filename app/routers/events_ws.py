import logging
from typing import List

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.auth import get_current_user_from_token
from app.models.doctor import Doctor
from app.services.connection_manager import manager
from app.services.notification_service import (
    ADMINS_GROUP,
    PATIENTS_GROUP,
    doctor_group,
    patient_group,
    user_group,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events-ws"])


def groups_for_user(db: Session, current_user: dict) -> List[str]:
    user_id = current_user["user_id"]
    user_type = current_user.get("user_type")
    groups = [user_group(user_id)]
    if user_type == "admin":
        groups.append(ADMINS_GROUP)
    elif user_type == "patient":
        groups += [patient_group(user_id), PATIENTS_GROUP]
    elif user_type == "doctor":
        doctor = db.query(Doctor).filter(Doctor.user_id == user_id).first()
        if doctor:
            groups.append(doctor_group(doctor.id))
    return groups


@router.websocket("/ws/events")
async def events_websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(..., description="JWT token"),
    db: Session = Depends(get_db),
):
    # Authenticate
    try:
        current_user = get_current_user_from_token(token, db)
    except Exception:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    groups = groups_for_user(db, current_user)
    await manager.connect(websocket, groups)
    logger.info(f"User {current_user['user_id']} subscribed to {groups}")

    try:
        await websocket.send_json({"type": "info", "message": "connected", "groups": groups})
        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
