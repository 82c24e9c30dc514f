from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinValueValidator
from django.db import IntegrityError, models
from django.db.models import Q


class InvoiceStatus(models.TextChoices):
    UNPAID = 'UNPAID', 'Unpaid'
    PARTIALLY_PAID = 'PARTIALLY_PAID', 'Partially paid'
    PAID = 'PAID', 'Paid'
    OVERDUE = 'OVERDUE', 'Overdue'


class PaymentStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    COMPLETED = 'COMPLETED', 'Completed'
    FAILED = 'FAILED', 'Failed'
    REFUNDED = 'REFUNDED', 'Refunded'


class PaymentType(models.TextChoices):
    DEPOSIT = 'DEPOSIT', 'Deposit'
    WITHDRAWAL = 'WITHDRAWAL', 'Withdrawal'
    REFUND = 'REFUND', 'Refund'
    TRANSFER = 'TRANSFER', 'Transfer'
    FEE = 'FEE', 'Fee'


class Invoice(models.Model):
    class Meta:
        app_label = 'billing'
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['campaign', 'period_start', 'period_end'],
                name='unique_invoice_per_campaign_period',
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'due_date']),
            models.Index(fields=['advertiser', 'status']),
        ]

    tenant_id = models.IntegerField(db_index=True)
    invoice_number = models.CharField(max_length=64, unique=True)
    campaign = models.ForeignKey('campaigns.Campaign', on_delete=models.PROTECT, related_name='invoices')
    advertiser = models.ForeignKey('advertisers.Advertiser', on_delete=models.PROTECT, related_name='invoices')
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    tax_rate = models.DecimalField(max_digits=5, decimal_places=4)
    tax = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    total = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=InvoiceStatus.choices, default=InvoiceStatus.UNPAID)
    due_date = models.DateTimeField()
    items = models.JSONField(default=list, encoder=DjangoJSONEncoder)
    payment = models.ForeignKey(
        'billing.Payment', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.invoice_number} ({self.status})"

    def save(self, *args, **kwargs):
        if self.total != self.amount + self.tax:
            raise IntegrityError(f"Invoice total {self.total} != amount {self.amount} + tax {self.tax}")
        if self.pk and Invoice.objects.filter(pk=self.pk, status=InvoiceStatus.PAID).exists():
            raise IntegrityError(f"Invoice {self.invoice_number} is paid and can no longer change")
        super().save(*args, **kwargs)


class Payment(models.Model):
    class Meta:
        app_label = 'billing'
        ordering = ['-date_initiated', '-id']

    tenant_id = models.IntegerField(db_index=True)
    advertiser = models.ForeignKey('advertisers.Advertiser', on_delete=models.PROTECT, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    type = models.CharField(max_length=20, choices=PaymentType.choices, default=PaymentType.DEPOSIT)
    payment_method = models.CharField(max_length=50, blank=True, default='')
    transaction_id = models.CharField(max_length=100, blank=True, default='')
    description = models.TextField(blank=True, default='')
    date_initiated = models.DateTimeField(auto_now_add=True)
    date_completed = models.DateTimeField(null=True, blank=True)
    invoices = models.ManyToManyField(Invoice, through='PaymentAllocation', related_name='payments')

    def __str__(self):
        return f"Payment {self.pk}: {self.amount} {self.currency} ({self.status})"


class PaymentAllocation(models.Model):
    """The part of a payment applied to one invoice."""

    class Meta:
        app_label = 'billing'
        constraints = [
            models.UniqueConstraint(fields=['invoice', 'payment'], name='unique_payment_per_invoice'),
            models.CheckConstraint(condition=Q(amount__gt=0), name='allocation_amount_positive'),
        ]

    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='allocations')
    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name='allocations')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    applied_at = models.DateTimeField(auto_now_add=True)
