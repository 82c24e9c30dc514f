import strawberry_django
from strawberry import auto
from apps.campaigns.models import Campaign


@strawberry_django.type(Campaign)
class CampaignType:
    id: auto
    tenant_id: auto
    name: auto
    budget: auto
    daily_budget: auto
    status: auto
    rejection_reason: auto
    start_date: auto
    end_date: auto
