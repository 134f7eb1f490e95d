"""
Call Status Publisher - fan out call state changes over Redis pub/sub.

Every transition of a CallStateMachine is published as JSON on
``channel:call:<appointment_id>`` so other views of the same appointment
(e.g. the specialist dashboard) can show who is in the call.
Publishing never raises into the state machine.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional, Set

from redis.exceptions import RedisError

from telecare.config.constants import CALL_STATUS_CHANNEL_PREFIX
from telecare.config.redis import get_redis
from telecare.services.call.state_machine import CallState, CallStateMachine

logger = logging.getLogger(__name__)


def call_status_channel(appointment_id: str) -> str:
    return f"{CALL_STATUS_CHANNEL_PREFIX}{appointment_id}"


class CallStatusPublisher:
    """Publishes CallState snapshots to Redis."""

    def __init__(self, redis_getter: Optional[Callable[[], Awaitable]] = None):
        self._get_redis = redis_getter or get_redis
        self._pending: Set[asyncio.Task] = set()

    async def publish(self, appointment_id: str, state: CallState) -> bool:
        payload = {"appointment_id": appointment_id, **state.to_dict()}
        try:
            redis = await self._get_redis()
            await redis.publish(call_status_channel(appointment_id), json.dumps(payload))
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"[CallStatus] Publish failed for {appointment_id}: {e}")
            return False

    def attach(self, machine: CallStateMachine) -> Callable[[], None]:
        """Publish every status change of ``machine``; returns the unsubscribe function."""
        last_status = {"value": None}

        def on_change(state: CallState):
            if state.status == last_status["value"]:
                return
            last_status["value"] = state.status
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            task = loop.create_task(self.publish(machine.appointment_id, state))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return machine.subscribe(on_change)

    async def drain(self):
        """Wait for in-flight publishes (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
