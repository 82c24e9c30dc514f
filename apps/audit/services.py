# apps/audit/services.py
import logging

from django.conf import settings
from django.core.paginator import EmptyPage, PageNotAnInteger, Paginator
from django.db import transaction
from rest_framework.exceptions import ValidationError

from .identity import resolve_display
from .models import AuditEntry

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {'apiKey', 'api_key', 'webhookSecret', 'webhook_secret', 'password', 'secret', 'token'}
REDACTED = '••••••••'


@transaction.atomic
def append(config_key, actor, previous_value, new_value, change_reason=None):
    """Write one audit entry inside the caller's unit of work.

    Runs as a savepoint when a transaction is already open, so a failure here
    rolls back the state change it describes.
    """
    if not config_key:
        raise ValidationError({'config_key': 'This field is required.'})

    entry = AuditEntry.objects.create(
        config_key=config_key,
        changed_by=str(actor.id),
        changed_by_display=resolve_display(actor) or '',
        previous_value=previous_value,
        new_value=new_value,
        change_reason=change_reason or '',
        ip_address=actor.ip_address,
        user_agent=actor.user_agent or '',
    )
    logger.info(f"Audit {config_key} by {entry.changed_by}")
    return entry


def field_changes(before, instance, fields):
    """Previous and new values of the ``fields`` that differ from ``before``."""
    previous, new = {}, {}
    for name in fields:
        value = getattr(instance, name)
        if value != before[name]:
            previous[name] = before[name]
            new[name] = value
    return previous, new


def query(config_key=None, changed_by=None, start=None, end=None, page=1, limit=20):
    """Reverse-chronological page of audit entries.

    ``start`` is inclusive and ``end`` exclusive. Ties on ``change_date`` are
    broken by id so the page boundaries never shift between calls.
    """
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError({'limit': 'Must be an integer.'})
    limit = max(1, min(limit, settings.AUDIT_PAGE_MAX_LIMIT))

    entries = AuditEntry.objects.all()
    if config_key:
        entries = entries.filter(config_key=config_key)
    if changed_by:
        entries = entries.filter(changed_by=str(changed_by))
    if start:
        entries = entries.filter(change_date__gte=start)
    if end:
        entries = entries.filter(change_date__lt=end)
    if start and end and start >= end:
        raise ValidationError({'end': 'Must be after start.'})

    paginator = Paginator(entries.order_by('-change_date', '-id'), limit)
    try:
        return paginator.page(page)
    except PageNotAnInteger:
        raise ValidationError({'page': 'Must be an integer.'})
    except EmptyPage as e:
        raise ValidationError({'page': str(e)})


def redact(value):
    """Mask secrets nested anywhere inside an audited value."""
    if isinstance(value, dict):
        return {
            key: REDACTED if key in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value
