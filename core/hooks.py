# core/hooks.py
"""
Post-commit side effects: cache invalidation and outbound notifications.

Both are deferred with ``transaction.on_commit`` so a rolled-back unit of work
emits nothing, and nothing here runs while a transaction is open.
"""
import logging

from django.core.cache import cache
from django.db import transaction

logger = logging.getLogger(__name__)


def invalidate(*keys):
    """Delete cache keys once the surrounding transaction commits."""
    keys = [key for key in keys if key]
    if not keys:
        return

    def _delete():
        cache.delete_many(keys)
        logger.debug(f"Invalidated cache keys: {', '.join(keys)}")

    transaction.on_commit(_delete)


def notify(event, payload):
    """Fire-and-forget notification, enqueued after commit.

    Enqueue failures are logged and dropped; they never reach the caller.
    """
    def _enqueue():
        from tasks.notifications import deliver_notification

        try:
            deliver_notification.delay(event, payload)
        except Exception as e:
            logger.warning(f"Notification {event} not enqueued: {e}")

    transaction.on_commit(_enqueue)
