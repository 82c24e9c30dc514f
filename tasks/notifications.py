from celery import shared_task
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
import json
import logging
import redis

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(redis.ConnectionError, redis.TimeoutError),
    retry_backoff=True,
    max_retries=3,
)
def deliver_notification(self, event, payload):
    """Publish a domain event for downstream consumers (email, webhooks)"""
    channel = f"notifications.{event}"
    message = json.dumps({'event': event, 'payload': payload}, cls=DjangoJSONEncoder)

    client = redis.Redis.from_url(settings.NOTIFICATIONS_REDIS_URL)
    receivers = client.publish(channel, message)

    logger.info(f"Notification {event} published to {channel} ({receivers} subscribers)")
    return {'event': event, 'receivers': receivers}
