"""Best-effort realtime fan-out of verification and queue events."""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import redis
from redis import asyncio as aioredis

from app.cache.cache_service import redis_cache
from app.core.config import settings
from app.services.connection_manager import ConnectionManager, manager
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# Event names
NEW_DOCTOR_VERIFICATION = "new_doctor_verification"
VERIFICATION_STATUS_CHANGED = "verification_status_changed"
DOCTOR_VERIFIED = "doctor_verified"
VERIFICATION_REJECTED = "verification_rejected"
VERIFICATION_ON_HOLD = "verification_on_hold"
ADMIN_ACTION = "admin_action"
QUEUE_JOINED = "queue_joined"
QUEUE_UPDATED = "queue_updated"
QUEUE_COMPLETED = "queue_completed"

ADMINS_GROUP = "admins"
PATIENTS_GROUP = "patients"


def user_group(user_id) -> str:
    return f"user-{user_id}"


def doctor_group(doctor_id) -> str:
    return f"doctor-{doctor_id}"


def patient_group(patient_id) -> str:
    return f"patient-{patient_id}"


def groups_for(event: str, payload: Dict[str, Any]) -> List[str]:
    """Resolve the groups interested in an event from its payload ids."""
    groups: List[str] = []
    user_id = payload.get("user_id")
    doctor_id = payload.get("doctor_id")
    patient_id = payload.get("patient_id")

    if event in (NEW_DOCTOR_VERIFICATION, ADMIN_ACTION):
        groups.append(ADMINS_GROUP)
    elif event in (VERIFICATION_STATUS_CHANGED, DOCTOR_VERIFIED):
        groups.append(ADMINS_GROUP)
        if user_id is not None:
            groups.append(user_group(user_id))
    elif event in (VERIFICATION_REJECTED, VERIFICATION_ON_HOLD):
        if user_id is not None:
            groups.append(user_group(user_id))
    elif event in (QUEUE_JOINED, QUEUE_UPDATED, QUEUE_COMPLETED):
        if doctor_id is not None:
            groups.append(doctor_group(doctor_id))
        if patient_id is not None:
            groups.append(patient_group(patient_id))
        if event == QUEUE_UPDATED:
            groups.append(PATIENTS_GROUP)
    return groups


class RedisEventPublisher:
    """Publishes event envelopes from processes that hold no sockets (Celery workers)."""

    def __init__(self, url: Optional[str] = None, channel: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.channel = channel or settings.EVENTS_CHANNEL
        self.client: Optional[redis.Redis] = None

    def __call__(self, envelope: str) -> None:
        if self.client is None:
            self.client = redis.Redis.from_url(self.url, decode_responses=True)
        self.client.publish(self.channel, envelope)


class NotificationService:
    def __init__(self, directory: ConnectionManager, publisher: Optional[Callable[[str], Any]] = None):
        self.directory = directory
        self.publisher = publisher or RedisEventPublisher()

    def notify(self, event: str, payload: Dict[str, Any], groups: Optional[List[str]] = None) -> None:
        """
        Deliver `event` to its groups; never raises.

        Inside the API process delivery is scheduled on the running loop.
        Without a loop (worker processes) the event is published on the
        events channel and the API's relay forwards it to the sockets.
        """
        try:
            targets = groups if groups is not None else groups_for(event, payload)
            if not targets:
                return
            message = {"event": event, "data": payload, "timestamp": utcnow().isoformat()}

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.publisher(json.dumps({"groups": targets, "message": message}, default=str))
                return

            for group in targets:
                task = loop.create_task(self.directory.broadcast_to_group(group, message))
                task.add_done_callback(self._log_failure)
        except Exception as e:
            logger.warning(f"Failed to dispatch {event} notification: {e}")

    async def deliver(self, envelope: str) -> int:
        """Broadcast one published envelope to the local sockets."""
        try:
            data = json.loads(envelope)
            groups, message = data["groups"], data["message"]
        except (TypeError, ValueError, KeyError):
            logger.warning(f"Discarding malformed event envelope: {envelope!r}")
            return 0

        delivered = 0
        for group in groups:
            delivered += await self.directory.broadcast_to_group(group, message)
        return delivered

    async def relay(self, client: Optional[aioredis.Redis] = None, retry_seconds: float = 5.0) -> None:
        """Forward events published by other processes to local sockets until cancelled."""
        while True:
            pubsub = None
            try:
                redis_client = client or await redis_cache.connect()
                pubsub = redis_client.pubsub()
                await pubsub.subscribe(settings.EVENTS_CHANNEL)
                logger.info(f"Relaying realtime events from {settings.EVENTS_CHANNEL}")
                async for message in pubsub.listen():
                    if message.get("type") == "message":
                        await self.deliver(message["data"])
            except Exception as e:
                logger.warning(f"Event relay lost its subscription: {e}; retrying in {retry_seconds}s")
            finally:
                if pubsub is not None:
                    try:
                        await pubsub.reset()
                    except Exception as e:
                        logger.debug(f"Event relay cleanup failed: {e}")
            await asyncio.sleep(retry_seconds)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Notification delivery failed: {exc}")


notifier = NotificationService(manager)
