# apps/partners/settlement.py
"""
Partner revenue-share settlement.

A settlement period is closed exactly once per partner: the earning row is
protected by a unique constraint, and mistakes are corrected with explicit
ADJUSTMENT entries rather than by recomputing in place.
"""
from datetime import timedelta, timezone as dt_timezone
from decimal import Decimal
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from apps.analytics.aggregator import aggregate_devices, is_closed, validate_period
from apps.audit import services as audit
from apps.audit.actor import SYSTEM
from core.exceptions import (
    AlreadySettled,
    EarningAlreadyPaid,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from core.hooks import invalidate, notify
from core.money import ZERO, money, rate, to_decimal
from .models import Device, EarningKind, EarningStatus, Partner, PartnerEarning

logger = logging.getLogger(__name__)

THOUSAND = Decimal('1000')


def impression_revenue(impressions, cpm):
    """Gross ad revenue for an impression count at a CPM rate card."""
    return money(Decimal(impressions) / THOUSAND * to_decimal(cpm, 'cpm'))


def _already_settled(partner_id, period_start, period_end):
    return PartnerEarning.objects.filter(
        partner_id=partner_id,
        period_start=period_start,
        period_end=period_end,
        kind=EarningKind.SETTLEMENT,
    ).exists()


def _earning_snapshot(earning):
    return {
        'partner_id': earning.partner_id,
        'kind': earning.kind,
        'period_start': earning.period_start,
        'period_end': earning.period_end,
        'total_impressions': earning.total_impressions,
        'total_engagements': earning.total_engagements,
        'ad_revenue': earning.ad_revenue,
        'commission_rate': earning.commission_rate,
        'amount': earning.amount,
        'performance_bonus': earning.performance_bonus,
        'status': earning.status,
    }


def compute_earnings(partner_id, period_start, period_end, actor, now=None):
    """Settle one partner for one closed period.

    Raises ``AlreadySettled`` when the period was settled before, including
    when a concurrent run inserts the row first.
    """
    partner = Partner.objects.filter(pk=partner_id).first()
    if partner is None:
        raise NotFound(f"Partner {partner_id} not found")
    validate_period(period_start, period_end)
    if not is_closed(period_end, now):
        raise ValidationError({'period': 'Settlement periods can only be computed once they have ended.'})
    if _already_settled(partner.pk, period_start, period_end):
        raise AlreadySettled(f"Partner {partner.pk} is already settled for {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}")

    # Aggregate before opening the transaction: no locks held while reading facts.
    cpm = to_decimal(settings.SETTLEMENT_CPM, 'cpm')
    bonus_rate = rate(settings.SETTLEMENT_PERFORMANCE_BONUS_RATE, 'performance_bonus_rate')
    commission_rate = rate(partner.commission_rate, 'commission_rate')

    device_ids = list(partner.devices.order_by('pk').values_list('pk', flat=True))
    snapshots = aggregate_devices(device_ids, period_start, period_end, now=now)

    breakdown = {}
    total_impressions = 0
    total_engagements = 0
    # ad_revenue is the sum of the rounded per-device lines.
    ad_revenue = ZERO
    for device_id, snapshot in snapshots.items():
        revenue = impression_revenue(snapshot.impressions, cpm)
        total_impressions += snapshot.impressions
        total_engagements += snapshot.engagements
        ad_revenue += revenue
        breakdown[str(device_id)] = {
            'impressions': snapshot.impressions,
            'engagements': snapshot.engagements,
            'revenue': revenue,
        }

    amount = money(ad_revenue * commission_rate)
    performance_bonus = money(ad_revenue * bonus_rate)

    try:
        with transaction.atomic():
            earning = PartnerEarning.objects.create(
                tenant_id=partner.tenant_id,
                partner=partner,
                kind=EarningKind.SETTLEMENT,
                period_start=period_start,
                period_end=period_end,
                total_impressions=total_impressions,
                total_engagements=total_engagements,
                ad_revenue=ad_revenue,
                commission_rate=commission_rate,
                amount=amount,
                performance_bonus=performance_bonus,
                status=EarningStatus.PENDING,
                details={
                    'devices': breakdown,
                    'rate_card': {'cpm': cpm, 'performance_bonus_rate': bonus_rate},
                },
            )

            for device_id, line in breakdown.items():
                if line['impressions']:
                    Device.objects.filter(pk=int(device_id)).update(
                        impressions=F('impressions') + line['impressions'],
                        revenue=F('revenue') + line['revenue'],
                    )

            audit.append(
                config_key=f"earning:{earning.pk}",
                actor=actor,
                previous_value=None,
                new_value=_earning_snapshot(earning),
                change_reason=f"Settlement {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}",
            )
            invalidate(*earning.cache_keys)
    except IntegrityError:
        if _already_settled(partner.pk, period_start, period_end):
            raise AlreadySettled(
                f"Partner {partner.pk} was settled concurrently for {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}"
            )
        raise

    logger.info(
        f"Settled partner {partner.pk} {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}: "
        f"{total_impressions} impressions, revenue {ad_revenue}, payout {amount}, bonus {performance_bonus}"
    )
    return earning


def mark_paid(earning_id, transaction_id, paid_date, actor):
    """Record the payout of an earning. Paying twice raises ``EarningAlreadyPaid``."""
    transaction_id = (transaction_id or '').strip()
    if not transaction_id:
        raise ValidationError({'transaction_id': 'This field is required.'})
    if paid_date is None:
        raise ValidationError({'paid_date': 'This field is required.'})

    with transaction.atomic():
        earning = PartnerEarning.objects.select_for_update().filter(pk=earning_id).first()
        if earning is None:
            raise NotFound(f"Earning {earning_id} not found")
        if earning.status == EarningStatus.PAID:
            raise EarningAlreadyPaid(f"Earning {earning.pk} was already paid ({earning.transaction_id})")
        if earning.status == EarningStatus.CANCELLED:
            raise InvalidTransition(earning.status, EarningStatus.PAID.value)

        previous_status = earning.status
        earning.status = EarningStatus.PAID
        earning.transaction_id = transaction_id
        earning.paid_date = paid_date
        earning.save(update_fields=['status', 'transaction_id', 'paid_date', 'updated_at'])

        audit.append(
            config_key=f"earning:{earning.pk}:status",
            actor=actor,
            previous_value={'status': previous_status},
            new_value={
                'status': earning.status,
                'transaction_id': transaction_id,
                'paid_date': paid_date,
            },
        )
        invalidate(*earning.cache_keys)
        notify('earning.paid', {
            'earning_id': earning.pk,
            'partner_id': earning.partner_id,
            'amount': str(earning.amount),
            'transaction_id': transaction_id,
        })

    logger.info(f"Earning {earning.pk} paid, transaction {transaction_id}")
    return earning


def record_adjustment(earning_id, amount, reason, actor):
    """Compensating entry against a settled earning; the original row is untouched."""
    amount = money(to_decimal(amount))
    reason = (reason or '').strip()
    if amount == 0:
        raise ValidationError({'amount': 'Adjustment amount must not be zero.'})
    if not reason:
        raise ValidationError({'reason': 'A reason is required for adjustments.'})

    original = PartnerEarning.objects.filter(pk=earning_id).first()
    if original is None:
        raise NotFound(f"Earning {earning_id} not found")
    if original.kind != EarningKind.SETTLEMENT:
        raise ValidationError({'earning': 'Adjustments must reference a settlement entry.'})

    with transaction.atomic():
        adjustment = PartnerEarning.objects.create(
            tenant_id=original.tenant_id,
            partner_id=original.partner_id,
            kind=EarningKind.ADJUSTMENT,
            period_start=original.period_start,
            period_end=original.period_end,
            commission_rate=original.commission_rate,
            amount=amount,
            status=EarningStatus.PENDING,
            corrects=original,
            reason=reason,
        )
        audit.append(
            config_key=f"earning:{original.pk}:adjustment",
            actor=actor,
            previous_value={'amount': original.amount},
            new_value={'adjustment_id': adjustment.pk, 'amount': amount},
            change_reason=reason,
        )
        invalidate(*adjustment.cache_keys)

    logger.info(f"Adjustment {adjustment.pk} of {amount} recorded against earning {original.pk}")
    return adjustment


def run_settlement(period_start, period_end, actor=SYSTEM, now=None):
    """Settle every partner that owns devices.

    Each partner commits on its own, so an interrupted run leaves only whole
    settlements behind and can simply be started again.
    """
    summary = {'settled': [], 'skipped': []}
    partner_ids = (
        Partner.objects.filter(devices__isnull=False)
        .distinct()
        .order_by('pk')
        .values_list('pk', flat=True)
    )
    for partner_id in partner_ids:
        try:
            earning = compute_earnings(partner_id, period_start, period_end, actor, now=now)
        except AlreadySettled:
            logger.info(f"Partner {partner_id} already settled, skipping")
            summary['skipped'].append(partner_id)
            continue
        summary['settled'].append(earning.pk)

    logger.info(
        f"Settlement run {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}: "
        f"{len(summary['settled'])} settled, {len(summary['skipped'])} skipped"
    )
    return summary


def latest_closed_month(now=None):
    """``[first day of previous month, first day of this month)`` in UTC."""
    now = now or timezone.now()
    this_month = now.astimezone(dt_timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    previous = (this_month - timedelta(days=1)).replace(day=1)
    return previous, this_month
