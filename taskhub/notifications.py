"""
Real-time task notifications.

Every live WebSocket is registered under the user id its token resolved to.
Broadcast events go to every connection, personal events only to the
connections of one user. Delivery is best effort: nothing is queued for
users that are offline and a failed send is dropped, never raised.
"""
import asyncio
import logging
import threading
from collections import defaultdict

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

STATUS_CHANGED = "task:status-changed"
PRIORITY_CHANGED = "task:priority-changed"
ASSIGNEE_CHANGED = "task:assignee-changed"
ASSIGNED = "task:assigned"


class Connection:
    """One accepted socket plus the outbound queue drained on its own loop."""

    def __init__(self, user_id: str, websocket: WebSocket | None = None, loop=None):
        self.user_id = user_id
        self.websocket = websocket
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, message: dict):
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            self.queue.put_nowait(message)
        else:
            # emitted from a worker thread running a sync handler
            self.loop.call_soon_threadsafe(self.queue.put_nowait, message)

    async def pump(self):
        while True:
            message = await self.queue.get()
            try:
                await self.websocket.send_json(message)
            except Exception as exc:
                logger.debug("Dropped %s for user %s: %s", message["event"], self.user_id, exc)


class NotificationHub:

    def __init__(self):
        self._groups: dict[str, set[Connection]] = defaultdict(set)
        self._lock = threading.Lock()

    # -------------------------
    # REGISTRY
    # -------------------------
    def register(self, connection: Connection):
        with self._lock:
            self._groups[connection.user_id].add(connection)
        logger.info("Realtime connection opened for user %s", connection.user_id)

    def unregister(self, connection: Connection):
        with self._lock:
            group = self._groups.get(connection.user_id)
            if group is None:
                return
            group.discard(connection)
            if not group:
                del self._groups[connection.user_id]
        logger.info("Realtime connection closed for user %s", connection.user_id)

    def connections(self, user_id: str | None = None) -> list[Connection]:
        with self._lock:
            if user_id is not None:
                return list(self._groups.get(user_id, ()))
            return [conn for group in self._groups.values() for conn in group]

    async def serve(self, websocket: WebSocket, user_id: str):
        """Accept an authenticated socket and keep it registered until the client goes away."""
        await websocket.accept()
        connection = Connection(user_id, websocket)
        self.register(connection)
        sender = asyncio.create_task(connection.pump())
        try:
            while True:
                # clients never send anything meaningful; this only waits for close
                await websocket.receive_text()
        except Exception as exc:
            logger.debug("Socket for user %s ended: %s", user_id, exc)
        finally:
            self.unregister(connection)
            sender.cancel()

    # -------------------------
    # DELIVERY
    # -------------------------
    def _send(self, event: str, payload: dict, user_id: str | None = None):
        targets = self.connections(user_id)
        if not targets:
            return

        try:
            message = {"event": event, "data": jsonable_encoder(payload)}
        except Exception:
            logger.exception("Could not encode %s payload", event)
            return

        for connection in targets:
            try:
                connection.push(message)
            except Exception as exc:
                logger.warning("Could not queue %s for user %s: %s", event, connection.user_id, exc)

    def emit_status_change(self, task_id, old_status, new_status, task):
        self._send(STATUS_CHANGED, {
            "taskId": task_id,
            "oldStatus": old_status,
            "newStatus": new_status,
            "task": task
        })

    def emit_priority_change(self, task_id, old_priority, new_priority, task):
        self._send(PRIORITY_CHANGED, {
            "taskId": task_id,
            "oldPriority": old_priority,
            "newPriority": new_priority,
            "task": task
        })

    def emit_assignee_change(self, task_id, old_assignee_id, new_assignee_id, task):
        if new_assignee_id and new_assignee_id != old_assignee_id:
            self.emit_assignment(new_assignee_id, task)

        self._send(ASSIGNEE_CHANGED, {
            "taskId": task_id,
            "oldAssigneeId": old_assignee_id,
            "newAssigneeId": new_assignee_id,
            "task": task
        })

    def emit_assignment(self, user_id, task):
        title = getattr(task, "title", None)
        if title is None and isinstance(task, dict):
            title = task.get("title")

        self._send(ASSIGNED, {
            "message": f"You have been assigned to task: {title}",
            "task": task
        }, user_id=user_id)
