# core/retry.py
import logging

from django.conf import settings
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import ConcurrentModification

logger = logging.getLogger(__name__)


def retry_on_conflict(func):
    """Re-run ``func`` when it loses an optimistic race, then surface the error."""
    return retry(
        retry=retry_if_exception_type(ConcurrentModification),
        stop=stop_after_attempt(settings.LEDGER_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )(func)
