from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class CampaignStatus(models.TextChoices):
    DRAFT = 'DRAFT', 'Draft'
    PENDING_APPROVAL = 'PENDING_APPROVAL', 'Pending approval'
    ACTIVE = 'ACTIVE', 'Active'
    PAUSED = 'PAUSED', 'Paused'
    COMPLETED = 'COMPLETED', 'Completed'
    REJECTED = 'REJECTED', 'Rejected'
    CANCELLED = 'CANCELLED', 'Cancelled'


class Campaign(models.Model):
    class Meta:
        app_label = 'campaigns'
        constraints = [
            models.UniqueConstraint(
                fields=['tenant_id', 'name'],
                name='unique_campaign_name_per_tenant'
            )
        ]
        indexes = [
            models.Index(fields=['tenant_id', 'status']),
            models.Index(fields=['tenant_id', 'start_date']),
        ]

    tenant_id = models.IntegerField(db_index=True)
    advertiser = models.ForeignKey('advertisers.Advertiser', on_delete=models.PROTECT, related_name='campaigns')
    name = models.CharField(max_length=100)
    status = models.CharField(max_length=20, choices=CampaignStatus.choices, default=CampaignStatus.DRAFT)
    budget = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    daily_budget = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True, validators=[MinValueValidator(0)]
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default='')
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.status})"

    def clean(self):
        if self.end_date and self.start_date >= self.end_date:
            raise ValidationError("start_date must be before end_date")
        if self.daily_budget is not None and self.budget is not None and self.daily_budget > self.budget:
            raise ValidationError("daily_budget cannot exceed budget")

    def can_transition_to(self, new_status):
        """Validate status transitions"""
        from .state_machine import can_transition
        return can_transition(self.status, new_status)

    def save(self, *args, **kwargs):
        # Status only moves through state_machine.transition(), which writes
        # with a conditional update and never calls save().
        if self.pk:
            stored_status = Campaign.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if stored_status is not None and stored_status != self.status:
                raise ValidationError(
                    f"Campaign status must change through a transition, not save() "
                    f"({stored_status} -> {self.status})"
                )
        self.clean()
        super().save(*args, **kwargs)
