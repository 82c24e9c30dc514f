from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q


class Partner(models.Model):
    """A fleet owner paid a share of the ad revenue its devices generate."""

    class Meta:
        app_label = 'partners'

    tenant_id = models.IntegerField(db_index=True)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='partner',
    )
    company_name = models.CharField(max_length=150)
    contact_email = models.EmailField(blank=True, default='')
    commission_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        default=Decimal('0.3000'),
        validators=[MinValueValidator(0), MaxValueValidator(1)],
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.company_name


class Device(models.Model):
    class Meta:
        app_label = 'partners'

    partner = models.ForeignKey(Partner, on_delete=models.PROTECT, related_name='devices')
    name = models.CharField(max_length=100)
    device_identifier = models.CharField(max_length=100, unique=True)
    # Running totals, advanced once per settled period
    impressions = models.BigIntegerField(default=0)
    revenue = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name} ({self.device_identifier})"


class EarningStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    PROCESSED = 'PROCESSED', 'Processed'
    PAID = 'PAID', 'Paid'
    CANCELLED = 'CANCELLED', 'Cancelled'


class EarningKind(models.TextChoices):
    SETTLEMENT = 'SETTLEMENT', 'Settlement'
    ADJUSTMENT = 'ADJUSTMENT', 'Adjustment'


class PartnerEarning(models.Model):
    class Meta:
        app_label = 'partners'
        ordering = ['-period_end', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['partner', 'period_start', 'period_end'],
                condition=Q(kind='SETTLEMENT'),
                name='unique_settlement_per_partner_period',
            ),
            models.CheckConstraint(
                condition=Q(period_start__lt=models.F('period_end')),
                name='earning_period_start_before_end',
            ),
        ]
        indexes = [
            models.Index(fields=['partner', 'status']),
        ]

    tenant_id = models.IntegerField(db_index=True)
    partner = models.ForeignKey(Partner, on_delete=models.PROTECT, related_name='earnings')
    kind = models.CharField(max_length=20, choices=EarningKind.choices, default=EarningKind.SETTLEMENT)
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()
    total_impressions = models.BigIntegerField(default=0)
    total_engagements = models.BigIntegerField(default=0)
    ad_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    commission_rate = models.DecimalField(max_digits=5, decimal_places=4, default=0)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    performance_bonus = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(max_length=20, choices=EarningStatus.choices, default=EarningStatus.PENDING)
    paid_date = models.DateTimeField(null=True, blank=True)
    transaction_id = models.CharField(max_length=100, blank=True, default='')
    details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    corrects = models.ForeignKey(
        'self', on_delete=models.PROTECT, null=True, blank=True, related_name='adjustments'
    )
    reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.partner_id} {self.kind} {self.period_start:%Y-%m-%d}..{self.period_end:%Y-%m-%d}: {self.amount}"

    @property
    def cache_keys(self):
        return [f"partner:devices:{self.partner_id}", f"partner:earnings:{self.partner_id}"]
