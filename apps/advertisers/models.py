from django.conf import settings
from django.db import models


class Advertiser(models.Model):
    class Meta:
        app_label = 'advertisers'

    tenant_id = models.IntegerField(db_index=True)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='advertiser',
    )
    company_name = models.CharField(max_length=150)
    email = models.EmailField()
    status = models.CharField(max_length=20, default='active')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.company_name

    @property
    def cache_keys(self):
        """Cached views that depend on this advertiser's invoices"""
        keys = [f"billing:summary:{self.pk}"]
        if self.user_id:
            keys.append(f"account-settings:{self.user_id}")
        return keys
