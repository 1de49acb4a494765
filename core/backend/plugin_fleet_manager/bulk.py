"""
Bulk Update Orchestrator

Updates every out-of-date managed plugin on a server as one persisted job.
Items run strictly one after another because they share the panel's rate
limit budget. Rate limits pause the job and retry the same plugin without
spending one of its attempts; other errors are retried a fixed number of
times before the plugin is recorded as failed.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

from .config import BULK_UPDATE
from .errors import BulkUpdateInProgressError, rate_limit_from_exception
from .models import (
    STATUS_COMPLETED,
    STATUS_COMPLETED_WITH_ERRORS,
    STATUS_PAUSED_RATE_LIMIT,
    STATUS_RUNNING,
)
from .notifications import (
    NotificationSink,
    bulk_completed,
    update_progress,
    update_ratelimit,
)
from .registry import PluginRegistry
from .updater import PluginUpdater

logger = logging.getLogger(__name__)


class BulkUpdateOrchestrator:
    """Runs the update pipeline across all eligible plugins on a server"""

    def __init__(self, registry: PluginRegistry, updater: PluginUpdater,
                 notifications: NotificationSink,
                 delay_seconds: float = BULK_UPDATE["delay_seconds"],
                 retry_delay_seconds: float = BULK_UPDATE["retry_delay_seconds"],
                 max_attempts: int = BULK_UPDATE["max_attempts"],
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            registry: Plugin registry holding plugins and job progress
            updater: Single-plugin update pipeline
            notifications: Outbound notification sink
            delay_seconds: Pause between successful updates
            retry_delay_seconds: Pause before retrying a failed attempt
            max_attempts: Attempts per plugin (rate-limit retries not counted)
            sleep: Blocking sleep function
        """
        self.registry = registry
        self.updater = updater
        self.notifications = notifications
        self.delay_seconds = delay_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.max_attempts = max_attempts
        self.sleep = sleep

        self._server_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _server_lock(self, server_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._server_locks.setdefault(server_id, threading.Lock())

    def install_all_updates(self, server_id: str) -> Dict:
        """
        Install every available update on a server

        A second call for a server whose job is still running in this
        process is rejected.

        Args:
            server_id: Server to update

        Returns:
            Dict of {total, success, failed, details}

        Raises:
            BulkUpdateInProgressError: A job for this server is already running
        """
        lock = self._server_lock(server_id)
        if not lock.acquire(blocking=False):
            raise BulkUpdateInProgressError(f"Bulk update already running for server {server_id}")

        try:
            return self._run(server_id)
        finally:
            lock.release()

    def _run(self, server_id: str) -> Dict:
        server = self.registry.get_server(server_id)
        to_update = [p for p in self.registry.list_plugins(server.id) if p.is_update_eligible]

        logger.info("=" * 70)
        logger.info(f"Starting bulk update for {server.name}: {len(to_update)} plugin(s) to update")
        logger.info("=" * 70)

        # Replace any earlier job for this server; last request wins
        removed = self.registry.delete_jobs(server.id)
        if removed:
            logger.info(f"Replaced {removed} previous bulk update record(s)")

        job = self.registry.create_job(server.id, total=len(to_update), current_plugin="Starting...")

        results = {"total": len(to_update), "success": 0, "failed": 0, "details": []}

        for index, plugin in enumerate(to_update):
            self.registry.update_job(job.id, current_plugin=plugin.name)
            attempts_left = self.max_attempts

            while True:
                done = results["success"] + results["failed"]
                self.notifications.publish(update_progress(
                    server.id, plugin.name, done + 1, results["total"], "processing"))

                logger.info(f"\nBulk updating: {plugin.name} (attempts left: {attempts_left})")

                try:
                    self.updater.install_update(plugin.id)
                except Exception as e:
                    retry_after = rate_limit_from_exception(e)
                    if retry_after is not None:
                        self._pause_for_rate_limit(job.id, server.id, plugin.name, retry_after)
                        continue

                    attempts_left -= 1
                    logger.error(f"  ✗ Failed to update {plugin.name}: {e}")

                    if attempts_left > 0:
                        self.sleep(self.retry_delay_seconds)
                        continue

                    results["failed"] += 1
                    results["details"].append({"plugin": plugin.name, "status": "failed", "error": str(e)})
                    self.registry.increment_job(job.id, "failed")

                    self.notifications.publish(update_progress(
                        server.id, plugin.name, results["success"] + results["failed"],
                        results["total"], "failed", error=str(e)))
                    break

                results["success"] += 1
                results["details"].append({"plugin": plugin.name, "status": "success"})

                self.notifications.publish(update_progress(
                    server.id, plugin.name, results["success"] + results["failed"],
                    results["total"], "success"))
                self.registry.increment_job(job.id, "completed")

                # Throttle between plugins, not after the last one
                if index < len(to_update) - 1:
                    self.sleep(self.delay_seconds)
                break

        status = STATUS_COMPLETED_WITH_ERRORS if results["failed"] else STATUS_COMPLETED
        self.registry.update_job(job.id, status=status, current_plugin=None)

        logger.info(f"\nBulk update finished for {server.name}: {results['success']} updated, "
                    f"{results['failed']} failed, {results['total']} total")

        self.notifications.publish(bulk_completed(
            server.id, server.name, results["success"], results["failed"], results["total"]))

        return results

    def _pause_for_rate_limit(self, job_id: str, server_id: str, plugin_name: str, retry_after: int):
        logger.warning(f"⚠ Rate limit hit on {plugin_name}. Waiting {retry_after}s...")

        self.registry.update_job(job_id, status=STATUS_PAUSED_RATE_LIMIT, retry_after=retry_after)
        self.notifications.publish(update_ratelimit(server_id, retry_after))

        self.sleep(retry_after + 1)

        self.registry.update_job(job_id, status=STATUS_RUNNING, retry_after=None)
        logger.info(f"Resuming bulk update with {plugin_name}")

    def get_progress(self, server_id: str) -> Optional[Dict]:
        """
        Current or most recent bulk update job for a server

        Returns:
            Dict of {total, completed, failed, status, currentPlugin, retryAfter, updatedAt},
            or None if the server never ran one
        """
        job = self.registry.latest_job(server_id)
        if job is None:
            return None

        return {
            "total": job.total,
            "completed": job.completed,
            "failed": job.failed,
            "status": job.status,
            "currentPlugin": job.current_plugin,
            "retryAfter": job.retry_after,
            "updatedAt": job.updated_at,
        }
