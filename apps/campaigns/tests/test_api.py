import json
from decimal import Decimal

from django.test import TestCase
from rest_framework.test import APIClient

from apps.audit.models import AuditEntry
from apps.campaigns.models import CampaignStatus
from core.testing import LedgerFixtures


class CampaignStatusEndpointTest(LedgerFixtures, TestCase):
    def setUp(self):
        self.admin = self.make_user(role='admin')
        self.client = APIClient()
        self.client.force_authenticate(self.admin)
        self.campaign = self.make_campaign(self.make_advertiser(), status=CampaignStatus.PENDING_APPROVAL)
        self.url = f'/api/v1/campaigns/{self.campaign.pk}/status/'

    def test_approve(self):
        response = self.client.post(self.url, {'status': 'ACTIVE'}, format='json', REMOTE_ADDR='10.1.2.3')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'ACTIVE')
        entry = AuditEntry.objects.get(config_key=f"campaign:{self.campaign.pk}:status")
        self.assertEqual(entry.changed_by, str(self.admin.pk))
        self.assertEqual(entry.ip_address, '10.1.2.3')

    def test_invalid_transition_is_conflict(self):
        response = self.client.post(self.url, {'status': 'COMPLETED'}, format='json')
        self.assertEqual(response.status_code, 409)

    def test_reject_without_reason_is_bad_request(self):
        response = self.client.post(self.url, {'status': 'REJECTED'}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_regular_users_cannot_change_status(self):
        client = APIClient()
        client.force_authenticate(self.make_user(role='user'))
        response = client.post(self.url, {'status': 'ACTIVE'}, format='json')
        self.assertEqual(response.status_code, 403)

    def test_other_tenants_cannot_see_campaign(self):
        client = APIClient()
        client.force_authenticate(self.make_user(role='admin', tenant_id=2))
        response = client.post(self.url, {'status': 'ACTIVE'}, format='json')
        self.assertEqual(response.status_code, 404)

    def test_status_is_read_only_on_update(self):
        response = self.client.patch(
            f'/api/v1/campaigns/{self.campaign.pk}/', {'status': 'ACTIVE', 'budget': '500.00'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.campaign.refresh_from_db()
        self.assertEqual(self.campaign.status, CampaignStatus.PENDING_APPROVAL)

    def test_budget_change_is_audited(self):
        response = self.client.patch(
            f'/api/v1/campaigns/{self.campaign.pk}/', {'budget': '750.00'}, format='json'
        )

        self.assertEqual(response.status_code, 200)
        entry = AuditEntry.objects.get(config_key=f"campaign:{self.campaign.pk}:budget")
        self.assertEqual(entry.previous_value, {'budget': '1000.00'})
        self.assertEqual(entry.new_value, {'budget': '750.00'})
        self.assertEqual(entry.changed_by, str(self.admin.pk))

    def test_rename_writes_no_budget_entry(self):
        response = self.client.patch(
            f'/api/v1/campaigns/{self.campaign.pk}/', {'name': 'Renamed'}, format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertFalse(AuditEntry.objects.filter(config_key=f"campaign:{self.campaign.pk}:budget").exists())

    def test_regular_users_cannot_change_budget(self):
        client = APIClient()
        client.force_authenticate(self.make_user(role='user'))
        response = client.patch(
            f'/api/v1/campaigns/{self.campaign.pk}/', {'budget': '1.00'}, format='json'
        )

        self.assertEqual(response.status_code, 403)
        self.campaign.refresh_from_db()
        self.assertEqual(self.campaign.budget, Decimal('1000.00'))
        self.assertFalse(AuditEntry.objects.exists())

    def test_regular_users_can_read(self):
        client = APIClient()
        client.force_authenticate(self.make_user(role='user'))
        response = client.get(f'/api/v1/campaigns/{self.campaign.pk}/')
        self.assertEqual(response.status_code, 200)


class TransitionMutationTest(LedgerFixtures, TestCase):
    MUTATION = """
        mutation Transition($input: CampaignTransitionInput!) {
            transitionCampaign(input: $input) { id status rejectionReason }
        }
    """

    def setUp(self):
        self.campaign = self.make_campaign(self.make_advertiser(), status=CampaignStatus.PENDING_APPROVAL)

    def run_mutation(self, user, **variables):
        self.client.force_login(user)
        response = self.client.post(
            '/graphql/',
            json.dumps({'query': self.MUTATION, 'variables': {'input': variables}}),
            content_type='application/json',
        )
        return response.json()

    def test_admin_rejects_with_reason(self):
        result = self.run_mutation(
            self.make_user(role='admin'), campaignId=self.campaign.pk, status='REJECTED', reason='Blurry creative',
        )

        self.assertNotIn('errors', result)
        self.assertEqual(result['data']['transitionCampaign']['status'], 'REJECTED')
        self.assertEqual(result['data']['transitionCampaign']['rejectionReason'], 'Blurry creative')

    def test_regular_user_is_refused(self):
        result = self.run_mutation(self.make_user(role='user'), campaignId=self.campaign.pk, status='ACTIVE')

        self.assertIn('errors', result)
        self.campaign.refresh_from_db()
        self.assertEqual(self.campaign.status, CampaignStatus.PENDING_APPROVAL)


class CampaignQueryTest(LedgerFixtures, TestCase):
    QUERY = """
        query Campaigns($status: String) {
            campaigns(status: $status) { id name status }
        }
    """

    def test_lists_tenant_campaigns_by_status(self):
        advertiser = self.make_advertiser()
        active = self.make_campaign(advertiser)
        self.make_campaign(advertiser, status=CampaignStatus.PAUSED)
        self.make_campaign(self.make_advertiser(tenant_id=2))
        self.client.force_login(self.make_user(role='user'))

        response = self.client.post(
            '/graphql/',
            json.dumps({'query': self.QUERY, 'variables': {'status': 'ACTIVE'}}),
            content_type='application/json',
        )

        result = response.json()
        self.assertNotIn('errors', result)
        self.assertEqual([int(c['id']) for c in result['data']['campaigns']], [active.pk])

    def test_graphiql_is_served(self):
        self.client.force_login(self.make_user())
        response = self.client.get('/graphql/', HTTP_ACCEPT='text/html')
        self.assertEqual(response.status_code, 200)
