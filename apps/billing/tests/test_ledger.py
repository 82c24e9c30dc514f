from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.core.cache import cache
from django.db import IntegrityError
from django.test import TestCase, override_settings

from apps.audit.models import AuditEntry
from apps.billing import ledger
from apps.billing.models import Invoice, InvoiceStatus, PaymentAllocation, PaymentStatus
from apps.campaigns.models import CampaignStatus
from core.exceptions import (
    AlreadyInvoiced,
    InvalidTransition,
    InvoiceAlreadySettled,
    NotFound,
    ValidationError,
)
from core.testing import IN_PERIOD, PERIOD_END, PERIOD_START, LedgerFixtures


class DeriveStatusTest(TestCase):
    def test_status_from_cumulative_paid(self):
        total = Decimal('120.00')
        self.assertEqual(ledger.derive_status(total, Decimal('0.00')), InvoiceStatus.UNPAID)
        self.assertEqual(ledger.derive_status(total, Decimal('0.01')), InvoiceStatus.PARTIALLY_PAID)
        self.assertEqual(ledger.derive_status(total, Decimal('119.99')), InvoiceStatus.PARTIALLY_PAID)
        self.assertEqual(ledger.derive_status(total, Decimal('120.00')), InvoiceStatus.PAID)


class LedgerTestCase(LedgerFixtures, TestCase):
    def setUp(self):
        cache.clear()
        self.actor = self.make_actor(self.make_user())
        self.advertiser = self.make_advertiser()
        self.campaign = self.make_campaign(self.advertiser, status=CampaignStatus.COMPLETED)
        self.device = self.make_device(self.make_partner())

    def bill(self, spend, tax_rate=Decimal('0.20'), campaign=None, **kwargs):
        campaign = campaign or self.campaign
        self.make_delivery(campaign, self.device, impressions=1000, spend=spend)
        return ledger.create_invoice(campaign.pk, PERIOD_START, PERIOD_END, self.actor, tax_rate=tax_rate, **kwargs)

    def audit_count(self, key):
        return AuditEntry.objects.filter(config_key=key).count()


class CreateInvoiceTest(LedgerTestCase):
    def test_amount_tax_and_total(self):
        now = PERIOD_END + timedelta(days=2)
        self.make_delivery(self.campaign, self.device, impressions=500, spend=Decimal('1234.0000'))
        self.make_delivery(self.campaign, self.device, impressions=500, spend=Decimal('0.5650'))

        invoice = ledger.create_invoice(self.campaign.pk, PERIOD_START, PERIOD_END, self.actor, now=now)

        self.assertEqual(invoice.amount, Decimal('1234.57'))
        self.assertEqual(invoice.tax_rate, Decimal('0.1600'))
        self.assertEqual(invoice.tax, Decimal('197.53'))
        self.assertEqual(invoice.total, Decimal('1432.10'))
        self.assertEqual(invoice.total, invoice.amount + invoice.tax)
        self.assertEqual(invoice.status, InvoiceStatus.UNPAID)
        self.assertEqual(invoice.due_date, now + timedelta(days=30))
        self.assertEqual(invoice.advertiser_id, self.advertiser.pk)
        self.assertTrue(invoice.invoice_number.startswith(f"INV-{self.advertiser.pk:04d}-{self.campaign.pk}-"))
        self.assertEqual(len(invoice.items), 2)
        self.assertEqual(invoice.items[0]['impressions'], 1000)
        self.assertEqual(invoice.items[1]['description'], 'Tax (16%)')

    def test_only_billable_campaigns(self):
        for status in (CampaignStatus.DRAFT, CampaignStatus.PENDING_APPROVAL, CampaignStatus.REJECTED):
            with self.subTest(status=status):
                campaign = self.make_campaign(self.advertiser, status=status)
                with self.assertRaises(InvalidTransition):
                    ledger.create_invoice(campaign.pk, PERIOD_START, PERIOD_END, self.actor)
        self.assertFalse(Invoice.objects.exists())

    def test_open_period_cannot_be_invoiced(self):
        self.make_delivery(self.campaign, self.device, spend=Decimal('10'))
        with self.assertRaises(ValidationError):
            ledger.create_invoice(self.campaign.pk, PERIOD_START, PERIOD_END, self.actor, now=IN_PERIOD)

    def test_zero_spend_is_refused(self):
        with self.assertRaises(ValidationError):
            ledger.create_invoice(self.campaign.pk, PERIOD_START, PERIOD_END, self.actor)

    def test_unknown_campaign(self):
        with self.assertRaises(NotFound):
            ledger.create_invoice(self.campaign.pk + 1000, PERIOD_START, PERIOD_END, self.actor)

    def test_second_invoice_for_same_period_is_refused(self):
        invoice = self.bill(Decimal('100'))

        with self.assertRaises(AlreadyInvoiced):
            ledger.create_invoice(self.campaign.pk, PERIOD_START, PERIOD_END, self.actor)

        self.assertEqual(Invoice.objects.filter(campaign=self.campaign).count(), 1)
        self.assertEqual(self.audit_count(f"invoice:{invoice.pk}"), 1)

    def test_concurrent_duplicate_caught_by_constraint(self):
        self.bill(Decimal('100'))

        # The pre-check misses the row a concurrent request just committed
        with patch.object(ledger, '_invoice_exists', side_effect=[False, True]):
            with self.assertRaises(AlreadyInvoiced):
                ledger.create_invoice(self.campaign.pk, PERIOD_START, PERIOD_END, self.actor)

        self.assertEqual(Invoice.objects.count(), 1)
        self.assertEqual(AuditEntry.objects.filter(config_key__startswith='invoice:').count(), 1)

    def test_total_must_equal_amount_plus_tax(self):
        invoice = self.bill(Decimal('100'))
        invoice.total = Decimal('999.99')
        with self.assertRaises(IntegrityError):
            invoice.save()


class ApplyPaymentTest(LedgerTestCase):
    def test_partial_then_full_then_refused(self):
        invoice = self.bill(Decimal('100'))
        self.assertEqual(invoice.total, Decimal('120.00'))

        invoice = ledger.apply_payment(invoice.pk, self.make_payment(self.advertiser, Decimal('80.00')), self.actor)
        self.assertEqual(invoice.status, InvoiceStatus.PARTIALLY_PAID)
        self.assertEqual(ledger.outstanding_balance(invoice), Decimal('40.00'))

        second = self.make_payment(self.advertiser, Decimal('40.00'))
        invoice = ledger.apply_payment(invoice.pk, second, self.actor)
        self.assertEqual(invoice.status, InvoiceStatus.PAID)
        self.assertEqual(invoice.payment_id, second.pk)
        self.assertEqual(ledger.paid_amount(invoice), Decimal('120.00'))

        with self.assertRaises(InvoiceAlreadySettled):
            ledger.apply_payment(invoice.pk, self.make_payment(self.advertiser, Decimal('1.00')), self.actor)

        self.assertEqual(self.audit_count(f"invoice:{invoice.pk}"), 1)
        self.assertEqual(self.audit_count(f"invoice:{invoice.pk}:status"), 2)

    def test_paid_invoice_is_immutable(self):
        invoice = self.bill(Decimal('100'))
        invoice = ledger.apply_payment(invoice.pk, self.make_payment(self.advertiser, Decimal('120.00')), self.actor)

        invoice.due_date = invoice.due_date + timedelta(days=10)
        with self.assertRaises(IntegrityError):
            invoice.save()

    def test_overpayment_is_capped_and_remainder_reusable(self):
        first = self.bill(Decimal('100'))
        other_campaign = self.make_campaign(self.advertiser)
        second = self.bill(Decimal('100'), campaign=other_campaign)
        payment = self.make_payment(self.advertiser, Decimal('200.00'))

        first = ledger.apply_payment(first.pk, payment, self.actor)
        self.assertEqual(first.status, InvoiceStatus.PAID)
        self.assertEqual(PaymentAllocation.objects.get(invoice=first).amount, Decimal('120.00'))

        second = ledger.apply_payment(second.pk, payment, self.actor)
        self.assertEqual(second.status, InvoiceStatus.PARTIALLY_PAID)
        self.assertEqual(PaymentAllocation.objects.get(invoice=second).amount, Decimal('80.00'))

        with self.assertRaises(ValidationError):
            ledger.apply_payment(second.pk, self.make_payment(self.advertiser, Decimal('0.00')), self.actor)

    def test_partial_amount_from_a_payment(self):
        invoice = self.bill(Decimal('100'))
        payment = self.make_payment(self.advertiser, Decimal('100.00'))

        invoice = ledger.apply_payment(invoice.pk, payment, self.actor, amount=Decimal('30.00'))

        self.assertEqual(ledger.paid_amount(invoice), Decimal('30.00'))
        with self.assertRaises(ValidationError):
            ledger.apply_payment(invoice.pk, payment, self.actor, amount=Decimal('10.00'))

    def test_payment_must_be_completed_and_belong_to_advertiser(self):
        invoice = self.bill(Decimal('100'))

        pending = self.make_payment(self.advertiser, Decimal('50.00'), status=PaymentStatus.PENDING)
        with self.assertRaises(ValidationError):
            ledger.apply_payment(invoice.pk, pending, self.actor)

        stranger = self.make_payment(self.make_advertiser(), Decimal('50.00'))
        with self.assertRaises(ValidationError):
            ledger.apply_payment(invoice.pk, stranger, self.actor)

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.UNPAID)
        self.assertFalse(PaymentAllocation.objects.exists())
        self.assertEqual(self.audit_count(f"invoice:{invoice.pk}:status"), 0)

    def test_unknown_invoice_and_payment(self):
        invoice = self.bill(Decimal('100'))
        payment = self.make_payment(self.advertiser, Decimal('10.00'))
        with self.assertRaises(NotFound):
            ledger.apply_payment(invoice.pk + 1000, payment, self.actor)
        with self.assertRaises(NotFound):
            ledger.apply_payment(invoice.pk, payment.pk + 1000, self.actor)


class MarkOverdueTest(LedgerTestCase):
    def test_sweep_marks_only_open_invoices_past_due(self):
        due = PERIOD_END + timedelta(days=30)
        late = self.bill(Decimal('100'), due_date=due)
        paid = self.bill(Decimal('10'), campaign=self.make_campaign(self.advertiser), due_date=due)
        ledger.apply_payment(paid.pk, self.make_payment(self.advertiser, Decimal('12.00')), self.actor)
        not_due = self.bill(Decimal('10'), campaign=self.make_campaign(self.advertiser),
                            due_date=due + timedelta(days=10))

        marked = ledger.mark_overdue(now=due + timedelta(days=1))

        self.assertEqual(marked, [late.pk])
        late.refresh_from_db()
        not_due.refresh_from_db()
        self.assertEqual(late.status, InvoiceStatus.OVERDUE)
        self.assertEqual(not_due.status, InvoiceStatus.UNPAID)

        entry = AuditEntry.objects.get(config_key=f"invoice:{late.pk}:status")
        self.assertEqual(entry.changed_by, 'system')
        self.assertEqual(entry.previous_value, {'status': 'UNPAID'})

        self.assertEqual(ledger.mark_overdue(now=due + timedelta(days=2)), [])

    def test_overdue_invoice_can_still_be_paid(self):
        due = PERIOD_END + timedelta(days=30)
        invoice = self.bill(Decimal('100'), due_date=due)
        ledger.mark_overdue(now=due + timedelta(days=1))

        invoice = ledger.apply_payment(invoice.pk, self.make_payment(self.advertiser, Decimal('20.00')), self.actor)
        self.assertEqual(invoice.status, InvoiceStatus.PARTIALLY_PAID)

        invoice = ledger.apply_payment(invoice.pk, self.make_payment(self.advertiser, Decimal('100.00')), self.actor)
        self.assertEqual(invoice.status, InvoiceStatus.PAID)


class AccountSummaryTest(LedgerTestCase):
    def test_summary_is_cached_until_commit_invalidates_it(self):
        invoice = self.bill(Decimal('100'))

        summary = ledger.account_summary(self.advertiser.pk)
        self.assertEqual(summary['invoiced'], Decimal('120.00'))
        self.assertEqual(summary['outstanding'], Decimal('120.00'))
        self.assertEqual(summary['invoice_count'], 1)

        with self.captureOnCommitCallbacks(execute=True):
            ledger.apply_payment(invoice.pk, self.make_payment(self.advertiser, Decimal('50.00')), self.actor)

        summary = ledger.account_summary(self.advertiser.pk)
        self.assertEqual(summary['paid'], Decimal('50.00'))
        self.assertEqual(summary['outstanding'], Decimal('70.00'))

    @override_settings(BILLING_TAX_RATE=Decimal('0'))
    def test_default_tax_rate_from_settings(self):
        self.make_delivery(self.campaign, self.device, spend=Decimal('40'))

        invoice = ledger.create_invoice(self.campaign.pk, PERIOD_START, PERIOD_END, self.actor)

        self.assertEqual(invoice.total, Decimal('40.00'))
        self.assertEqual(ledger.account_summary(self.advertiser.pk)['invoiced'], Decimal('40.00'))
