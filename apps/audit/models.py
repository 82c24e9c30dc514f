from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, models
from django.utils import timezone


class AppendOnlyQuerySet(models.QuerySet):
    """A queryset that refuses bulk deletes and bulk updates."""

    def delete(self):
        raise IntegrityError("Audit entries cannot be deleted")

    def update(self, **kwargs):
        raise IntegrityError("Audit entries cannot be modified")


class AppendOnlyManager(models.Manager.from_queryset(AppendOnlyQuerySet)):
    pass


class AuditEntry(models.Model):
    """One mutation of protected state: who changed what, from what, to what."""

    class Meta:
        app_label = 'audit'
        ordering = ['-change_date', '-id']
        indexes = [
            models.Index(fields=['config_key', 'change_date']),
            models.Index(fields=['changed_by', 'change_date']),
        ]

    config_key = models.CharField(max_length=150, db_index=True)
    changed_by = models.CharField(max_length=64)
    changed_by_display = models.CharField(max_length=255, blank=True, default='')
    previous_value = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    new_value = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    change_reason = models.TextField(blank=True, default='')
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=512, blank=True, default='')
    change_date = models.DateTimeField(default=timezone.now, db_index=True)

    objects = AppendOnlyManager()

    def __str__(self):
        return f"{self.config_key} by {self.changed_by} at {self.change_date:%Y-%m-%d %H:%M:%S}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise IntegrityError("Audit entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise IntegrityError("Audit entries cannot be deleted")
