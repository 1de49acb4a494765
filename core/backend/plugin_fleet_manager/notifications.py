"""
Notification Sink

Outbound events consumed by dashboards and webhook dispatchers. Payload
field names are part of the downstream contract and must not change.
"""

import logging
import queue
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

UPDATE_PROGRESS = "plugin:update:progress"
UPDATE_RATELIMIT = "plugin:update:ratelimit"
UPDATE_SUCCESS = "plugin:update:success"
BULK_COMPLETED = "plugin:bulk:completed"
SCAN_PROGRESS = "plugin:scan:progress"
SCAN_COMPLETED = "plugin:scan:completed"


@dataclass(frozen=True)
class Notification:
    event: str
    payload: Dict

    @property
    def server_id(self) -> Optional[str]:
        return self.payload.get("serverId")


def update_progress(server_id: str, plugin_name: str, current: int, total: int,
                    status: str, error: Optional[str] = None) -> Notification:
    payload = {
        "serverId": server_id,
        "pluginName": plugin_name,
        "current": current,
        "total": total,
        "status": status,
    }
    if error is not None:
        payload["error"] = error
    return Notification(UPDATE_PROGRESS, payload)


def update_ratelimit(server_id: str, retry_after: int) -> Notification:
    return Notification(UPDATE_RATELIMIT, {
        "serverId": server_id,
        "retryAfter": retry_after,
        "message": f"Rate limit hit. Resuming in {retry_after} seconds...",
    })


def update_success(server_id: str, server_name: str, plugin_name: str,
                   old_version: str, new_version: str) -> Notification:
    return Notification(UPDATE_SUCCESS, {
        "serverId": server_id,
        "serverName": server_name,
        "pluginName": plugin_name,
        "oldVersion": old_version,
        "newVersion": new_version,
    })


def bulk_completed(server_id: str, server_name: str, success: int, failed: int,
                   total: int) -> Notification:
    return Notification(BULK_COMPLETED, {
        "serverId": server_id,
        "serverName": server_name,
        "success": success,
        "failed": failed,
        "total": total,
    })


def scan_progress(server_id: str, filename: str, current: int, total: int,
                  status: str) -> Notification:
    return Notification(SCAN_PROGRESS, {
        "serverId": server_id,
        "filename": filename,
        "current": current,
        "total": total,
        "status": status,
    })


def scan_completed(server_id: str, total: int, matched: int, failed: int,
                   details: List[Dict]) -> Notification:
    return Notification(SCAN_COMPLETED, {
        "serverId": server_id,
        "total": total,
        "matched": matched,
        "failed": failed,
        "details": list(details),
    })


class NotificationSink:
    """Destination for outbound notifications"""

    def publish(self, notification: Notification):
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes every notification to the log"""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def publish(self, notification: Notification):
        logger.log(self.level, f"[{notification.event}] {notification.payload}")


class QueueNotificationSink(NotificationSink):
    """
    Typed outbound channel

    Producers never block; a consumer (socket bridge, webhook dispatcher)
    drains the queue on its own thread.
    """

    def __init__(self, maxsize: int = 0):
        self.queue: "queue.Queue[Notification]" = queue.Queue(maxsize=maxsize)

    def publish(self, notification: Notification):
        try:
            self.queue.put_nowait(notification)
        except queue.Full:
            logger.warning(f"Notification queue full, dropping {notification.event}")

    def drain(self) -> List[Notification]:
        """Return and remove everything currently queued"""
        items = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except queue.Empty:
                return items
