from datetime import datetime, timedelta, timezone as dt_timezone

from django.db import IntegrityError
from django.test import TestCase, override_settings

from apps.audit import services
from apps.audit.actor import SYSTEM, Actor
from apps.audit.models import AuditEntry
from core.exceptions import ValidationError
from core.testing import LedgerFixtures

BASE = datetime(2024, 5, 1, 9, 0, tzinfo=dt_timezone.utc)


class AppendTest(LedgerFixtures, TestCase):
    def test_records_actor_and_values(self):
        user = self.make_user()
        user.first_name, user.last_name = 'Ada', 'Ops'
        user.save()
        actor = Actor(id=str(user.pk), name=user.email, ip_address='10.0.0.7', user_agent='pytest')

        entry = services.append('campaign:7:status', actor, {'status': 'DRAFT'}, {'status': 'PENDING_APPROVAL'})

        entry.refresh_from_db()
        self.assertEqual(entry.changed_by, str(user.pk))
        self.assertEqual(entry.changed_by_display, f"Ada Ops <{user.email}>")
        self.assertEqual(entry.previous_value, {'status': 'DRAFT'})
        self.assertEqual(entry.ip_address, '10.0.0.7')

    def test_system_actor_keeps_its_name(self):
        entry = services.append('invoice:1:status', SYSTEM, None, {'status': 'OVERDUE'})
        self.assertEqual(entry.changed_by, 'system')
        self.assertEqual(entry.changed_by_display, 'Scheduled job')

    def test_config_key_required(self):
        with self.assertRaises(ValidationError):
            services.append('', SYSTEM, None, {})


class ImmutabilityTest(TestCase):
    def setUp(self):
        self.entry = services.append('earning:1', SYSTEM, None, {'amount': '15.00'})

    def test_entry_cannot_be_changed(self):
        self.entry.new_value = {'amount': '0.00'}
        with self.assertRaises(IntegrityError):
            self.entry.save()

    def test_entry_cannot_be_deleted(self):
        with self.assertRaises(IntegrityError):
            self.entry.delete()
        with self.assertRaises(IntegrityError):
            AuditEntry.objects.filter(pk=self.entry.pk).delete()
        with self.assertRaises(IntegrityError):
            AuditEntry.objects.filter(pk=self.entry.pk).update(changed_by='someone')

        self.entry.refresh_from_db()
        self.assertEqual(self.entry.new_value, {'amount': '15.00'})


class QueryTest(TestCase):
    def setUp(self):
        self.entries = []
        for offset in range(5):
            entry = AuditEntry.objects.create(
                config_key='invoice:9:status' if offset % 2 else 'campaign:3:status',
                changed_by='42' if offset < 3 else 'system',
                new_value={'n': offset},
                change_date=BASE + timedelta(hours=offset),
            )
            self.entries.append(entry)
        # Same timestamp as the newest entry; ties break on id
        self.entries.append(AuditEntry.objects.create(
            config_key='campaign:3:status', changed_by='system', new_value={'n': 5},
            change_date=BASE + timedelta(hours=4),
        ))

    def test_newest_first_with_stable_ties(self):
        page = services.query()
        values = [entry.new_value['n'] for entry in page.object_list]
        self.assertEqual(values, [5, 4, 3, 2, 1, 0])

    def test_filters(self):
        page = services.query(config_key='invoice:9:status')
        self.assertEqual([e.new_value['n'] for e in page.object_list], [3, 1])

        page = services.query(changed_by='42')
        self.assertEqual(page.paginator.count, 3)

        # start inclusive, end exclusive
        page = services.query(start=BASE + timedelta(hours=1), end=BASE + timedelta(hours=3))
        self.assertEqual([e.new_value['n'] for e in page.object_list], [2, 1])

    def test_pagination(self):
        first = services.query(page=1, limit=4)
        second = services.query(page=2, limit=4)

        self.assertEqual(first.paginator.num_pages, 2)
        self.assertTrue(first.has_next())
        self.assertFalse(second.has_next())
        seen = [e.pk for e in first.object_list] + [e.pk for e in second.object_list]
        self.assertEqual(len(set(seen)), 6)

        with self.assertRaises(ValidationError):
            services.query(page=3, limit=4)

    @override_settings(AUDIT_PAGE_MAX_LIMIT=2)
    def test_limit_is_clamped(self):
        page = services.query(limit=500)
        self.assertEqual(page.paginator.per_page, 2)

    def test_inverted_range_is_refused(self):
        with self.assertRaises(ValidationError):
            services.query(start=BASE + timedelta(hours=2), end=BASE)


class RedactTest(TestCase):
    def test_masks_secrets_at_any_depth(self):
        value = {
            'webhook': {'url': 'https://example.test/hook', 'webhookSecret': 's3cr3t'},
            'keys': [{'apiKey': 'abc', 'label': 'primary'}],
            'password': 'hunter2',
            'status': 'ACTIVE',
        }

        redacted = services.redact(value)

        self.assertEqual(redacted['webhook']['url'], 'https://example.test/hook')
        self.assertEqual(redacted['webhook']['webhookSecret'], services.REDACTED)
        self.assertEqual(redacted['keys'][0], {'apiKey': services.REDACTED, 'label': 'primary'})
        self.assertEqual(redacted['password'], services.REDACTED)
        self.assertEqual(redacted['status'], 'ACTIVE')
        self.assertEqual(value['password'], 'hunter2')

    def test_scalars_pass_through(self):
        self.assertIsNone(services.redact(None))
        self.assertEqual(services.redact('plain'), 'plain')
