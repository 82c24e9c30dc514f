from django.core.validators import MinValueValidator
from django.db import models


class DeliveryStatus(models.TextChoices):
    SCHEDULED = 'SCHEDULED', 'Scheduled'
    DELIVERED = 'DELIVERED', 'Delivered'
    FAILED = 'FAILED', 'Failed'
    SKIPPED = 'SKIPPED', 'Skipped'
    PENDING = 'PENDING', 'Pending'


class DeliveryFact(models.Model):
    """One ad delivery on one device, with what it produced."""

    class Meta:
        app_label = 'analytics'
        indexes = [
            models.Index(fields=['campaign', 'delivered_at']),
            models.Index(fields=['device', 'delivered_at']),
        ]

    campaign = models.ForeignKey('campaigns.Campaign', on_delete=models.PROTECT, related_name='deliveries')
    device = models.ForeignKey('partners.Device', on_delete=models.PROTECT, related_name='deliveries')
    delivered_at = models.DateTimeField()
    status = models.CharField(max_length=20, choices=DeliveryStatus.choices, default=DeliveryStatus.DELIVERED)
    impressions = models.PositiveIntegerField(default=0)
    engagements = models.PositiveIntegerField(default=0)
    completions = models.PositiveIntegerField(default=0)
    conversions = models.PositiveIntegerField(default=0)
    spend = models.DecimalField(max_digits=12, decimal_places=4, default=0, validators=[MinValueValidator(0)])
    created_at = models.DateTimeField(auto_now_add=True)
