# apps/billing/ledger.py
"""
Advertiser billing ledger: invoices from delivered spend, payments applied
against them, and the overdue sweep.

Every write happens in one transaction together with its audit entry. The
cumulative paid amount is always recomputed from the allocation rows inside
the transaction that writes the invoice status.
"""
from datetime import timedelta
import logging

from django.conf import settings
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from apps.analytics.aggregator import aggregate
from apps.audit import services as audit
from apps.audit.actor import SYSTEM
from apps.campaigns.models import Campaign
from apps.campaigns.state_machine import is_billable
from core.exceptions import (
    AlreadyInvoiced,
    InvalidTransition,
    InvoiceAlreadySettled,
    NotFound,
    ValidationError,
)
from core.hooks import invalidate
from core.money import ZERO, money, rate
from .models import Invoice, InvoiceStatus, Payment, PaymentAllocation, PaymentStatus

logger = logging.getLogger(__name__)

OPEN_STATUSES = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIALLY_PAID)
SUMMARY_TIMEOUT = 300

_money_zero = Value(ZERO, output_field=DecimalField(max_digits=14, decimal_places=2))


def derive_status(total, paid):
    """Invoice status implied by the cumulative amount paid against ``total``."""
    if paid >= total:
        return InvoiceStatus.PAID
    if paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.UNPAID


def paid_amount(invoice):
    return PaymentAllocation.objects.filter(invoice=invoice).aggregate(
        paid=Coalesce(Sum('amount'), _money_zero)
    )['paid']


def outstanding_balance(invoice):
    return max(invoice.total - paid_amount(invoice), ZERO)


def _allocated_amount(payment):
    return PaymentAllocation.objects.filter(payment=payment).aggregate(
        allocated=Coalesce(Sum('amount'), _money_zero)
    )['allocated']


def _invoice_number(campaign, period_start, period_end):
    return (
        f"INV-{campaign.advertiser_id:04d}-{campaign.pk}-"
        f"{period_start:%Y%m%d%H%M}-{period_end:%Y%m%d%H%M}"
    )


def _invoice_snapshot(invoice):
    return {
        'invoice_number': invoice.invoice_number,
        'campaign_id': invoice.campaign_id,
        'period_start': invoice.period_start,
        'period_end': invoice.period_end,
        'amount': invoice.amount,
        'tax': invoice.tax,
        'total': invoice.total,
        'status': invoice.status,
        'due_date': invoice.due_date,
    }


def _invoice_exists(campaign_id, period_start, period_end):
    return Invoice.objects.filter(
        campaign_id=campaign_id, period_start=period_start, period_end=period_end
    ).exists()


def create_invoice(campaign_id, period_start, period_end, actor, now=None, tax_rate=None, due_date=None):
    """Bill a campaign's delivered spend for one closed period.

    Raises ``AlreadyInvoiced`` if the campaign already has an invoice for the
    same period, whether found up front or caught by the unique constraint.
    """
    now = now or timezone.now()
    campaign = Campaign.objects.select_related('advertiser').filter(pk=campaign_id).first()
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    if not is_billable(campaign.status):
        raise InvalidTransition(
            campaign.status, 'INVOICED', detail=f"Campaign in {campaign.status} cannot be invoiced"
        )

    # Validates the period and reads spend without holding any lock.
    snapshot = aggregate('campaign', campaign.pk, period_start, period_end, now=now)
    if snapshot.provisional:
        raise ValidationError({'period': 'Invoices can only be created for periods that have ended.'})
    if _invoice_exists(campaign.pk, period_start, period_end):
        raise AlreadyInvoiced(f"Campaign {campaign.pk} is already invoiced for this period")

    amount = money(snapshot.spend)
    if amount <= ZERO:
        raise ValidationError({'amount': f"Campaign {campaign.pk} has no billable spend in this period."})
    tax_rate = rate(settings.BILLING_TAX_RATE if tax_rate is None else tax_rate, 'tax_rate')
    tax = money(amount * tax_rate)
    total = amount + tax
    due_date = due_date or now + timedelta(days=settings.BILLING_PAYMENT_TERMS_DAYS)

    items = [
        {
            'description': f"Ad campaign: {campaign.name}",
            'quantity': 1,
            'unit_price': amount,
            'total': amount,
            'impressions': snapshot.impressions,
            'engagements': snapshot.engagements,
        },
        {
            'description': f"Tax ({(tax_rate * 100).normalize():f}%)",
            'quantity': 1,
            'unit_price': tax,
            'total': tax,
        },
    ]

    try:
        with transaction.atomic():
            invoice = Invoice.objects.create(
                tenant_id=campaign.tenant_id,
                invoice_number=_invoice_number(campaign, period_start, period_end),
                campaign=campaign,
                advertiser=campaign.advertiser,
                period_start=period_start,
                period_end=period_end,
                amount=amount,
                tax_rate=tax_rate,
                tax=tax,
                total=total,
                status=InvoiceStatus.UNPAID,
                due_date=due_date,
                items=items,
            )
            audit.append(
                config_key=f"invoice:{invoice.pk}",
                actor=actor,
                previous_value=None,
                new_value=_invoice_snapshot(invoice),
            )
            invalidate(*campaign.advertiser.cache_keys)
    except IntegrityError:
        if _invoice_exists(campaign.pk, period_start, period_end):
            raise AlreadyInvoiced(f"Campaign {campaign.pk} was invoiced concurrently for this period")
        raise

    logger.info(f"Invoice {invoice.invoice_number} created: amount {amount}, tax {tax}, total {total}")
    return invoice


def apply_payment(invoice_id, payment, actor, amount=None):
    """Allocate a completed payment (or part of it) to an invoice.

    The allocation is capped at the invoice's outstanding balance; whatever is
    left of the payment stays available for other invoices.
    """
    payment_id = payment.pk if isinstance(payment, Payment) else payment

    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().select_related('advertiser').filter(pk=invoice_id).first()
        if invoice is None:
            raise NotFound(f"Invoice {invoice_id} not found")
        if invoice.status == InvoiceStatus.PAID:
            raise InvoiceAlreadySettled(f"Invoice {invoice.invoice_number} is already paid")

        payment = Payment.objects.select_for_update().filter(pk=payment_id).first()
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found")
        if payment.status != PaymentStatus.COMPLETED:
            raise ValidationError({'payment': f"Payment {payment.pk} is {payment.status}, not COMPLETED."})
        if payment.advertiser_id != invoice.advertiser_id:
            raise ValidationError({'payment': 'Payment belongs to a different advertiser.'})
        if PaymentAllocation.objects.filter(invoice=invoice, payment=payment).exists():
            raise ValidationError({'payment': f"Payment {payment.pk} is already applied to this invoice."})

        available = payment.amount - _allocated_amount(payment)
        requested = available if amount is None else money(amount)
        if requested <= ZERO:
            raise ValidationError({'amount': 'Nothing left to apply from this payment.'})
        if requested > available:
            raise ValidationError({'amount': f"Only {available} of payment {payment.pk} is unallocated."})

        paid_before = paid_amount(invoice)
        applied = min(requested, invoice.total - paid_before)
        PaymentAllocation.objects.create(invoice=invoice, payment=payment, amount=applied)

        paid = paid_before + applied
        previous_status = invoice.status
        invoice.status = derive_status(invoice.total, paid)
        invoice.payment = payment
        invoice.save(update_fields=['status', 'payment', 'updated_at'])

        audit.append(
            config_key=f"invoice:{invoice.pk}:status",
            actor=actor,
            previous_value={'status': previous_status, 'paid': paid_before},
            new_value={
                'status': invoice.status,
                'paid': paid,
                'payment_id': payment.pk,
                'applied': applied,
            },
        )
        invalidate(*invoice.advertiser.cache_keys)

    logger.info(
        f"Applied {applied} of payment {payment.pk} to {invoice.invoice_number}: "
        f"{previous_status} -> {invoice.status} ({paid}/{invoice.total})"
    )
    return invoice


def mark_overdue(now=None, actor=SYSTEM):
    """Flag unpaid invoices past their due date. Returns the ids it changed.

    Each invoice is re-checked under lock and committed on its own, so the
    sweep can stop between invoices without leaving partial state.
    """
    now = now or timezone.now()
    candidates = list(
        Invoice.objects.filter(status__in=OPEN_STATUSES, due_date__lt=now)
        .order_by('due_date', 'pk')
        .values_list('pk', flat=True)
    )

    marked = []
    for invoice_id in candidates:
        with transaction.atomic():
            invoice = (
                Invoice.objects.select_for_update()
                .select_related('advertiser')
                .filter(pk=invoice_id, status__in=OPEN_STATUSES, due_date__lt=now)
                .first()
            )
            if invoice is None:
                continue

            previous_status = invoice.status
            invoice.status = InvoiceStatus.OVERDUE
            invoice.save(update_fields=['status', 'updated_at'])
            audit.append(
                config_key=f"invoice:{invoice.pk}:status",
                actor=actor,
                previous_value={'status': previous_status},
                new_value={'status': invoice.status, 'due_date': invoice.due_date},
            )
            invalidate(*invoice.advertiser.cache_keys)
        marked.append(invoice_id)

    if marked:
        logger.info(f"Marked {len(marked)} invoices overdue")
    return marked


def account_summary(advertiser_id):
    """Totals for an advertiser's billing page, cached until an invoice changes."""
    key = f"billing:summary:{advertiser_id}"
    summary = cache.get(key)
    if summary is not None:
        return summary

    invoices = Invoice.objects.filter(advertiser_id=advertiser_id)
    totals = invoices.aggregate(
        invoiced=Coalesce(Sum('total'), _money_zero),
        invoice_count=Count('id'),
        overdue_count=Count('id', filter=Q(status=InvoiceStatus.OVERDUE)),
    )
    paid = PaymentAllocation.objects.filter(invoice__advertiser_id=advertiser_id).aggregate(
        paid=Coalesce(Sum('amount'), _money_zero)
    )['paid']

    summary = {
        'advertiser_id': advertiser_id,
        'invoiced': totals['invoiced'],
        'paid': paid,
        'outstanding': totals['invoiced'] - paid,
        'invoice_count': totals['invoice_count'],
        'overdue_count': totals['overdue_count'],
    }
    cache.set(key, summary, SUMMARY_TIMEOUT)
    return summary
