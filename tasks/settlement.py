from celery import shared_task
from django.utils import timezone
import logging

from apps.audit.actor import SYSTEM
from apps.partners.settlement import latest_closed_month, run_settlement

logger = logging.getLogger(__name__)


@shared_task
def settle_previous_month():
    """Monthly partner settlement for the calendar month that just closed"""
    now = timezone.now()
    period_start, period_end = latest_closed_month(now)
    logger.info(f"Starting settlement for {period_start:%Y-%m}")
    summary = run_settlement(period_start, period_end, actor=SYSTEM, now=now)
    return {
        'period_start': period_start.isoformat(),
        'period_end': period_end.isoformat(),
        **summary,
    }
