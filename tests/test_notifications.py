"""Realtime fan-out, the events WebSocket and the background tasks."""
import asyncio
import json
from datetime import timedelta

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.core.config import settings
from app.models.verification import VerificationRecord
from app.services.connection_manager import ConnectionManager
from app.services.notification_service import (
    ADMIN_ACTION,
    DOCTOR_VERIFIED,
    NotificationService,
    QUEUE_UPDATED,
    VERIFICATION_REJECTED,
    VERIFICATION_STATUS_CHANGED,
    groups_for,
)
from app.services.verification_service import VerificationService
from app.tasks import verification_tasks
from app.utils.helpers import utcnow
from helpers import auth_headers, registration_payload, required_documents


class FakeSocket:
    def __init__(self, broken=False):
        self.sent = []
        self.accepted = False
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(message)


# ============================================================================
# Group routing
# ============================================================================

def test_groups_for_events():
    assert groups_for(ADMIN_ACTION, {"verification_id": 1}) == ["admins"]
    assert groups_for(VERIFICATION_STATUS_CHANGED, {"user_id": 7}) == ["admins", "user-7"]
    assert groups_for(VERIFICATION_REJECTED, {"user_id": 7}) == ["user-7"]
    assert groups_for(QUEUE_UPDATED, {"doctor_id": 3, "patient_id": 9}) == ["doctor-3", "patient-9", "patients"]
    assert groups_for("unknown_event", {"user_id": 7}) == []


@pytest.mark.asyncio
async def test_broadcast_drops_broken_connections():
    directory = ConnectionManager()
    healthy, broken = FakeSocket(), FakeSocket(broken=True)
    await directory.connect(healthy, ["admins", "user-1"])
    await directory.connect(broken, ["admins"])

    delivered = await directory.broadcast_to_group("admins", {"event": "ping"})

    assert delivered == 1
    assert healthy.sent == [{"event": "ping"}]
    assert directory.members("admins") == [healthy]

    directory.disconnect(healthy)
    assert directory.groups == {}


@pytest.mark.asyncio
async def test_notify_schedules_delivery_without_blocking():
    directory = ConnectionManager()
    socket = FakeSocket()
    await directory.connect(socket, ["user-5"])

    NotificationService(directory).notify(VERIFICATION_REJECTED, {"user_id": 5, "status": "rejected"})
    assert socket.sent == []

    await asyncio.sleep(0)
    assert socket.sent[0]["event"] == VERIFICATION_REJECTED
    assert socket.sent[0]["data"]["status"] == "rejected"


def test_notify_outside_event_loop_publishes_for_relay():
    published = []
    NotificationService(ConnectionManager(), publisher=published.append).notify(
        ADMIN_ACTION, {"verification_id": 1, "action": "approved"}
    )

    assert len(published) == 1
    envelope = json.loads(published[0])
    assert envelope["groups"] == ["admins"]
    assert envelope["message"]["event"] == ADMIN_ACTION
    assert envelope["message"]["data"] == {"verification_id": 1, "action": "approved"}


def test_notify_survives_publisher_failure():
    def unreachable(envelope):
        raise ConnectionError("redis down")

    NotificationService(ConnectionManager(), publisher=unreachable).notify(ADMIN_ACTION, {"verification_id": 1})


def test_worker_side_auto_approval_reaches_doctor_socket(db_session, doctor_user, confirming_registry, published_events):
    record = _uploaded_record(db_session, doctor_user)
    published_events.clear()

    record = VerificationService.run_automated_verification(db_session, record.id, registry=confirming_registry)
    assert record.status == "approved"

    directory = ConnectionManager()
    socket = FakeSocket()
    directory.join(socket, [f"user-{doctor_user.id}"])
    api_side = NotificationService(directory, publisher=published_events.append)
    for envelope in list(published_events):
        asyncio.run(api_side.deliver(envelope))

    events = [message["event"] for message in socket.sent]
    assert DOCTOR_VERIFIED in events
    assert socket.sent[events.index(DOCTOR_VERIFIED)]["data"]["verification_id"] == record.id


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.channels = []
        self.closed = False

    async def subscribe(self, channel):
        self.channels.append(channel)

    async def listen(self):
        for message in self.messages:
            yield message
        await asyncio.Event().wait()

    async def reset(self):
        self.closed = True


class FakePubSubClient:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub


@pytest.mark.asyncio
async def test_relay_forwards_published_events_to_sockets():
    directory = ConnectionManager()
    socket = FakeSocket()
    directory.join(socket, ["admins"])
    envelope = json.dumps({"groups": ["admins"], "message": {"event": ADMIN_ACTION, "data": {"verification_id": 1}}})
    pubsub = FakePubSub([
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": "not json"},
        {"type": "message", "data": envelope},
    ])

    relay = asyncio.create_task(NotificationService(directory).relay(client=FakePubSubClient(pubsub)))
    for _ in range(20):
        if socket.sent:
            break
        await asyncio.sleep(0)
    relay.cancel()
    with pytest.raises(asyncio.CancelledError):
        await relay

    assert socket.sent == [{"event": ADMIN_ACTION, "data": {"verification_id": 1}}]
    assert pubsub.channels == [settings.EVENTS_CHANNEL]
    assert pubsub.closed


# ============================================================================
# Events WebSocket
# ============================================================================

def test_events_websocket_subscribes_by_role(make_user, make_doctor, db_session):
    from app.main import create_app
    from app.models.user import User

    patient = make_user("patient")
    doctor = make_doctor()
    doctor_account = db_session.query(User).filter(User.id == doctor.user_id).one()

    client = TestClient(create_app())
    token = auth_headers(patient)["Authorization"].split()[1]
    with client.websocket_connect(f"/ws/events?token={token}") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "info"
        assert hello["groups"] == [f"user-{patient.id}", f"patient-{patient.id}", "patients"]
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

    token = auth_headers(doctor_account)["Authorization"].split()[1]
    with client.websocket_connect(f"/ws/events?token={token}") as ws:
        assert f"doctor-{doctor.id}" in ws.receive_json()["groups"]


def test_events_websocket_rejects_bad_token():
    from app.main import create_app

    client = TestClient(create_app())
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/events?token=garbage") as ws:
            ws.receive_json()


# ============================================================================
# Background tasks
# ============================================================================

def _uploaded_record(db, user):
    VerificationService.submit(db, user.id, registration_payload())
    return VerificationService.upload_documents(db, user.id, required_documents())


def test_automated_task_without_registry_credentials_goes_to_review(db_session, doctor_user):
    record = _uploaded_record(db_session, doctor_user)

    result = verification_tasks.run_automated_verification_task(record.id)

    assert result == {"record_id": record.id, "status": "manual_review"}
    db_session.refresh(record)
    assert record.license_check["error_code"] == "not_configured"

    assert verification_tasks.run_automated_verification_task(record.id)["status"] == "skipped"


def test_release_stale_task(db_session, doctor_user, scheduled_tasks):
    record = _uploaded_record(db_session, doctor_user)
    db_session.query(VerificationRecord).filter(VerificationRecord.id == record.id).update(
        {"updated_at": utcnow() - timedelta(hours=1)}, synchronize_session=False
    )
    db_session.commit()

    assert verification_tasks.release_stale_verifications() == {"released": 0, "rescheduled": 1}
    assert scheduled_tasks[-1].countdown == 0


def test_reassess_due_doctors_task(db_session, doctor_user, admin_user):
    record = _uploaded_record(db_session, doctor_user)
    verification_tasks.run_automated_verification_task(record.id)
    VerificationService.admin_approve(db_session, record.id, admin_user.id)

    db_session.query(VerificationRecord).filter(VerificationRecord.id == record.id).update(
        {"next_assessment_due_at": utcnow() - timedelta(days=1)}, synchronize_session=False
    )
    db_session.commit()

    assert verification_tasks.reassess_due_doctors() == {"processed": 1}
    assert verification_tasks.reassess_due_doctors() == {"processed": 0}
