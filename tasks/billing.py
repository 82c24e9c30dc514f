from celery import shared_task
from django.utils import timezone
import logging

from apps.audit.actor import SYSTEM
from apps.billing import ledger

logger = logging.getLogger(__name__)


@shared_task
def mark_overdue_invoices():
    """Daily sweep of unpaid invoices past their due date"""
    marked = ledger.mark_overdue(now=timezone.now(), actor=SYSTEM)
    logger.info(f"Overdue sweep finished: {len(marked)} invoices marked")
    return {'marked': marked}
