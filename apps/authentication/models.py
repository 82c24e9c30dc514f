from django.contrib.auth.models import AbstractUser
from django.db import models

ADMIN_ROLES = ('admin', 'super_admin')


class User(AbstractUser):
    tenant_id = models.IntegerField(db_index=True)
    email = models.EmailField(unique=True)
    role = models.CharField(max_length=50, default='user')

    # Fix reverse accessor conflicts
    groups = models.ManyToManyField(
        'auth.Group',
        related_name='custom_user_set',
        blank=True
    )
    user_permissions = models.ManyToManyField(
        'auth.Permission',
        related_name='custom_user_set',
        blank=True
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    @property
    def is_tenant_admin(self):
        return self.role in ADMIN_ROLES
