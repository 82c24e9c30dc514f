from django.db import transaction
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.audit import services as audit
from apps.audit.actor import Actor
from apps.authentication.permissions import IsTenantAdmin
from .models import Campaign, CampaignStatus
from .serializers import CampaignSerializer, CampaignTransitionSerializer
from .state_machine import transition_with_retry

BUDGET_FIELDS = ('budget', 'daily_budget')


class CampaignViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = CampaignSerializer
    queryset = Campaign.objects.all()
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_permissions(self):
        if self.request.method in ('POST', 'PATCH'):
            return [IsTenantAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        return Campaign.objects.filter(tenant_id=self.request.user.tenant_id).select_related('advertiser')

    def perform_create(self, serializer):
        serializer.save(tenant_id=self.request.user.tenant_id, status=CampaignStatus.DRAFT)

    def perform_update(self, serializer):
        before = {name: getattr(serializer.instance, name) for name in BUDGET_FIELDS}
        with transaction.atomic():
            campaign = serializer.save()
            previous, new = audit.field_changes(before, campaign, BUDGET_FIELDS)
            if new:
                audit.append(
                    config_key=f"campaign:{campaign.pk}:budget",
                    actor=Actor.from_request(self.request),
                    previous_value=previous,
                    new_value=new,
                )

    @action(detail=True, methods=['post'], url_path='status', permission_classes=[IsTenantAdmin])
    def change_status(self, request, pk=None):
        campaign = self.get_object()
        payload = CampaignTransitionSerializer(data=request.data)
        payload.is_valid(raise_exception=True)

        updated = transition_with_retry(
            campaign.pk,
            payload.validated_data['status'],
            Actor.from_request(request),
            reason=payload.validated_data.get('reason'),
        )
        return Response(CampaignSerializer(updated).data, status=status.HTTP_200_OK)
