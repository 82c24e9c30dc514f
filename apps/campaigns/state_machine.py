# apps/campaigns/state_machine.py
"""
Campaign status lifecycle.

The legal transitions are a pure table lookup; ``transition`` applies one with
an optimistic conditional update and writes the audit entry in the same
transaction.
"""
import logging

from django.db import transaction
from django.utils import timezone

from apps.audit import services as audit
from core.exceptions import ConcurrentModification, InvalidTransition, NotFound, ValidationError
from core.hooks import invalidate, notify
from core.retry import retry_on_conflict
from .models import Campaign, CampaignStatus

logger = logging.getLogger(__name__)

S = CampaignStatus

TRANSITIONS = {
    S.DRAFT: frozenset({S.PENDING_APPROVAL, S.CANCELLED}),
    S.PENDING_APPROVAL: frozenset({S.ACTIVE, S.REJECTED, S.CANCELLED}),
    S.ACTIVE: frozenset({S.PAUSED, S.COMPLETED, S.CANCELLED}),
    S.PAUSED: frozenset({S.ACTIVE, S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.REJECTED: frozenset({S.DRAFT}),
    S.CANCELLED: frozenset({S.DRAFT}),
}

# Campaigns that already accrued spend can still be invoiced for it.
BILLABLE = frozenset({S.ACTIVE, S.PAUSED, S.COMPLETED, S.CANCELLED})


def parse_status(value):
    try:
        return CampaignStatus(value)
    except ValueError:
        raise ValidationError({'status': f"Unknown campaign status: {value!r}"})


def can_transition(source, target):
    """True when ``source -> target`` is in the transition table."""
    return CampaignStatus(target) in TRANSITIONS[CampaignStatus(source)]


def accepts_delivery(status):
    return status == S.ACTIVE


def is_billable(status):
    return status in BILLABLE


def transition(campaign_id, requested_status, actor, reason=None):
    """Move a campaign to ``requested_status``.

    Re-requesting the current status is a no-op. Raises ``InvalidTransition``
    for pairs outside the table and ``ConcurrentModification`` when another
    writer changed the status between the read and the write.
    """
    target = parse_status(requested_status)
    reason = (reason or '').strip()

    campaign = Campaign.objects.filter(pk=campaign_id).first()
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")

    source = CampaignStatus(campaign.status)
    if source == target:
        logger.debug(f"Campaign {campaign_id} already {target}, nothing to do")
        return campaign

    if not can_transition(source, target):
        raise InvalidTransition(source.value, target.value)

    if target == S.REJECTED and not reason:
        raise ValidationError({'reason': 'A reason is required to reject a campaign.'})

    changes = {'status': target.value, 'updated_at': timezone.now()}
    if target == S.REJECTED:
        changes['rejection_reason'] = reason
    elif target == S.DRAFT:
        changes['rejection_reason'] = ''

    with transaction.atomic():
        updated = Campaign.objects.filter(pk=campaign.pk, status=source.value).update(**changes)
        if not updated:
            raise ConcurrentModification(
                f"Campaign {campaign.pk} changed while moving {source.value} -> {target.value}"
            )

        new_value = {'status': target.value}
        if reason:
            new_value['reason'] = reason
        audit.append(
            config_key=f"campaign:{campaign.pk}:status",
            actor=actor,
            previous_value={'status': source.value},
            new_value=new_value,
            change_reason=reason,
        )

        invalidate(f"campaign:{campaign.pk}")
        if source == S.PENDING_APPROVAL and target == S.ACTIVE:
            notify('campaign.approved', {'campaign_id': campaign.pk, 'advertiser_id': campaign.advertiser_id})
        elif target == S.REJECTED:
            notify('campaign.rejected', {
                'campaign_id': campaign.pk,
                'advertiser_id': campaign.advertiser_id,
                'reason': reason,
            })

    logger.info(f"Campaign {campaign.pk} {source.value} -> {target.value} by {actor.id}")
    campaign.refresh_from_db()
    return campaign


transition_with_retry = retry_on_conflict(transition)
