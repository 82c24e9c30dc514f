from core.celery import app as celery_app

__all__ = ('celery_app',)

# Register tasks explicitly
from .billing import mark_overdue_invoices
from .notifications import deliver_notification
from .settlement import settle_previous_month

# Register periodic tasks
from celery.schedules import crontab
from django.conf import settings

if getattr(settings, 'PERIODIC_TASKS_ENABLED', False):
    celery_app.conf.beat_schedule = {
        'mark-overdue-invoices': {
            'task': 'tasks.billing.mark_overdue_invoices',
            'schedule': crontab(hour=1, minute=0),  # Daily at 1 AM
        },
        'settle-previous-month': {
            'task': 'tasks.settlement.settle_previous_month',
            'schedule': crontab(hour=2, minute=0, day_of_month=1),  # Monthly
        },
    }
