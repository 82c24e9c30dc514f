# apps/analytics/aggregator.py
"""
Roll raw delivery facts up into per-campaign or per-device totals.

Reads only: nothing here opens a write transaction or locks rows, so billing
and settlement can aggregate before they start their own unit of work.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging

from django.db.models import DecimalField, IntegerField, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.exceptions import NotFound, ValidationError
from .models import DeliveryFact, DeliveryStatus
from .repositories import monitor_query_performance

logger = logging.getLogger(__name__)

SCOPE_FIELDS = {
    'campaign': 'campaign_id',
    'device': 'device_id',
}

COUNTERS = ('impressions', 'engagements', 'completions', 'conversions')


@dataclass(frozen=True)
class MetricsSnapshot:
    scope: str
    scope_id: int
    period_start: datetime
    period_end: datetime
    impressions: int = 0
    engagements: int = 0
    completions: int = 0
    conversions: int = 0
    spend: Decimal = field(default_factory=lambda: Decimal('0'))
    provisional: bool = False

    def as_dict(self):
        return {
            'impressions': self.impressions,
            'engagements': self.engagements,
            'completions': self.completions,
            'conversions': self.conversions,
            'spend': str(self.spend),
        }


def _totals(prefix=''):
    zero = Value(Decimal('0'), output_field=DecimalField(max_digits=16, decimal_places=4))
    totals = {f"{prefix}{name}": Coalesce(Sum(name), 0, output_field=IntegerField()) for name in COUNTERS}
    totals[f"{prefix}spend"] = Coalesce(Sum('spend'), zero)
    return totals


def validate_period(period_start, period_end):
    if period_start is None or period_end is None:
        raise ValidationError({'period': 'period_start and period_end are required.'})
    if timezone.is_naive(period_start) or timezone.is_naive(period_end):
        raise ValidationError({'period': 'Period bounds must be timezone-aware.'})
    if period_start >= period_end:
        raise ValidationError({'period': 'period_start must be before period_end.'})


def _delivered_in(period_start, period_end):
    return DeliveryFact.objects.filter(
        status=DeliveryStatus.DELIVERED,
        delivered_at__gte=period_start,
        delivered_at__lt=period_end,
    )


def is_closed(period_end, now=None):
    return period_end <= (now or timezone.now())


@monitor_query_performance
def aggregate(scope, scope_id, period_start, period_end, now=None):
    """Totals for one campaign or device over ``[period_start, period_end)``.

    A period that has not ended yet is returned with ``provisional=True``;
    callers must not persist anything computed from it as final.
    """
    if scope not in SCOPE_FIELDS:
        raise ValidationError({'scope': f"Unknown scope {scope!r}; expected campaign or device."})
    validate_period(period_start, period_end)

    totals = (
        _delivered_in(period_start, period_end)
        .filter(**{SCOPE_FIELDS[scope]: scope_id})
        .aggregate(**_totals())
    )
    return MetricsSnapshot(
        scope=scope,
        scope_id=scope_id,
        period_start=period_start,
        period_end=period_end,
        spend=totals.pop('spend'),
        provisional=not is_closed(period_end, now),
        **totals,
    )


@monitor_query_performance
def aggregate_devices(device_ids, period_start, period_end, now=None):
    """Per-device totals in one grouped query; devices with no facts get zeros."""
    validate_period(period_start, period_end)
    device_ids = list(device_ids)
    provisional = not is_closed(period_end, now)

    rows = (
        _delivered_in(period_start, period_end)
        .filter(device_id__in=device_ids)
        .values('device_id')
        .annotate(**_totals(prefix='total_'))
        .order_by('device_id')
    )
    # Annotations cannot shadow model fields, hence the prefix
    by_device = {
        row.pop('device_id'): {key[len('total_'):]: value for key, value in row.items()}
        for row in rows
    }

    snapshots = {}
    for device_id in device_ids:
        row = dict(by_device.get(device_id, {}))
        spend = row.pop('spend', Decimal('0'))
        snapshots[device_id] = MetricsSnapshot(
            scope='device',
            scope_id=device_id,
            period_start=period_start,
            period_end=period_end,
            spend=spend,
            provisional=provisional,
            **row,
        )
    return snapshots


def record_delivery(campaign_id, device_id, delivered_at, impressions=0, engagements=0,
                    completions=0, conversions=0, spend=Decimal('0'), status=DeliveryStatus.DELIVERED):
    """Store one delivery fact for a campaign that is currently running."""
    from apps.campaigns.models import Campaign
    from apps.campaigns.state_machine import accepts_delivery
    from apps.partners.models import Device
    from core.money import to_decimal

    campaign = Campaign.objects.filter(pk=campaign_id).only('status').first()
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    if not Device.objects.filter(pk=device_id).exists():
        raise NotFound(f"Device {device_id} not found")
    if not accepts_delivery(campaign.status):
        raise ValidationError({'campaign': f"Campaign {campaign_id} is {campaign.status} and cannot accrue deliveries."})

    counts = {
        'impressions': impressions,
        'engagements': engagements,
        'completions': completions,
        'conversions': conversions,
    }
    for name, count in counts.items():
        if int(count) < 0:
            raise ValidationError({name: 'Must not be negative.'})

    spend = to_decimal(spend, 'spend')
    if spend < 0:
        raise ValidationError({'spend': 'Must not be negative.'})

    fact = DeliveryFact.objects.create(
        campaign_id=campaign_id,
        device_id=device_id,
        delivered_at=delivered_at,
        status=status,
        spend=spend,
        **counts,
    )
    logger.debug(f"Recorded delivery {fact.pk} for campaign {campaign_id} on device {device_id}")
    return fact
