import strawberry
from typing import List, Optional
from apps.campaigns.models import Campaign
from .types import CampaignType


@strawberry.type
class CampaignQueries:

    @strawberry.field
    def campaigns(self, info: strawberry.Info, status: Optional[str] = None) -> List[CampaignType]:
        tenant_id = info.context.request.user.tenant_id
        campaigns = Campaign.objects.filter(tenant_id=tenant_id)
        if status:
            campaigns = campaigns.filter(status=status)
        return campaigns

    @strawberry.field
    def campaign(self, info: strawberry.Info, id: int) -> Optional[CampaignType]:
        tenant_id = info.context.request.user.tenant_id
        return Campaign.objects.filter(tenant_id=tenant_id, id=id).first()
