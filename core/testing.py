"""Shared fixtures for the app test suites."""
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from itertools import count

from apps.advertisers.models import Advertiser
from apps.analytics.models import DeliveryFact
from apps.audit.actor import Actor
from apps.authentication.models import User
from apps.billing.models import Payment, PaymentStatus
from apps.campaigns.models import Campaign, CampaignStatus
from apps.partners.models import Device, Partner

TENANT_ID = 1
PERIOD_START = datetime(2024, 1, 1, tzinfo=dt_timezone.utc)
PERIOD_END = datetime(2024, 2, 1, tzinfo=dt_timezone.utc)
IN_PERIOD = datetime(2024, 1, 15, 12, 0, tzinfo=dt_timezone.utc)

_sequence = count(1)


class LedgerFixtures:
    """Mixin for ``TestCase`` subclasses that need a tenant's basic records."""

    def make_user(self, role='admin', tenant_id=TENANT_ID):
        n = next(_sequence)
        return User.objects.create_user(
            username=f'user{n}',
            email=f'user{n}@test.com',
            password='testpass',
            tenant_id=tenant_id,
            role=role,
        )

    def make_actor(self, user=None):
        if user is None:
            return Actor(id='ops', name='Ops')
        return Actor(id=str(user.pk), name=user.email)

    def make_advertiser(self, user=None, tenant_id=TENANT_ID):
        n = next(_sequence)
        return Advertiser.objects.create(
            tenant_id=tenant_id,
            user=user,
            company_name=f'Advertiser {n}',
            email=f'billing{n}@test.com',
        )

    def make_campaign(self, advertiser, status=CampaignStatus.ACTIVE, budget=Decimal('1000.00')):
        n = next(_sequence)
        return Campaign.objects.create(
            tenant_id=advertiser.tenant_id,
            advertiser=advertiser,
            name=f'Campaign {n}',
            status=status,
            budget=budget,
            start_date=PERIOD_START,
            end_date=PERIOD_END,
        )

    def make_partner(self, commission_rate=Decimal('0.3000'), tenant_id=TENANT_ID):
        n = next(_sequence)
        return Partner.objects.create(
            tenant_id=tenant_id,
            company_name=f'Fleet {n}',
            commission_rate=commission_rate,
        )

    def make_device(self, partner):
        n = next(_sequence)
        return Device.objects.create(partner=partner, name=f'Screen {n}', device_identifier=f'DEV-{n:05d}')

    def make_delivery(self, campaign, device, delivered_at=IN_PERIOD, impressions=0,
                      engagements=0, spend=Decimal('0'), **extra):
        return DeliveryFact.objects.create(
            campaign=campaign,
            device=device,
            delivered_at=delivered_at,
            impressions=impressions,
            engagements=engagements,
            spend=spend,
            **extra,
        )

    def make_payment(self, advertiser, amount, status=PaymentStatus.COMPLETED):
        return Payment.objects.create(
            tenant_id=advertiser.tenant_id,
            advertiser=advertiser,
            amount=amount,
            status=status,
        )
