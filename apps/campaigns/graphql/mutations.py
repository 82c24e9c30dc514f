import strawberry
from typing import Optional
from apps.audit.actor import Actor
from apps.authentication.permissions import IsTenantAdmin
from apps.campaigns.models import Campaign
from apps.campaigns.state_machine import transition_with_retry
from core.exceptions import NotFound, PermissionDenied
from .types import CampaignType


@strawberry.input
class CampaignTransitionInput:
    campaign_id: int
    status: str
    reason: Optional[str] = None


@strawberry.type
class CampaignMutations:

    @strawberry.mutation
    def transition_campaign(self, info: strawberry.Info, input: CampaignTransitionInput) -> CampaignType:
        request = info.context.request
        if not IsTenantAdmin().has_permission(request, None):
            raise PermissionDenied("Only tenant admins can change campaign status")
        if not Campaign.objects.filter(tenant_id=request.user.tenant_id, id=input.campaign_id).exists():
            raise NotFound(f"Campaign {input.campaign_id} not found")

        return transition_with_retry(
            input.campaign_id,
            input.status,
            Actor.from_request(request),
            reason=input.reason,
        )
