from django.db import transaction
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.audit import services as audit
from apps.audit.actor import Actor
from apps.authentication.permissions import IsTenantAdmin
from core.exceptions import NotFound
from core.hooks import invalidate
from . import settlement
from .models import Partner, PartnerEarning
from .serializers import (
    AdjustmentSerializer,
    ComputeEarningsSerializer,
    MarkPaidSerializer,
    PartnerEarningSerializer,
    PartnerSerializer,
)


class PartnerViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = PartnerSerializer
    queryset = Partner.objects.all()
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_permissions(self):
        if self.request.method in ('POST', 'PATCH'):
            return [IsTenantAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        return Partner.objects.filter(tenant_id=self.request.user.tenant_id)

    def perform_create(self, serializer):
        serializer.save(tenant_id=self.request.user.tenant_id)

    def perform_update(self, serializer):
        before = {'commission_rate': serializer.instance.commission_rate}
        with transaction.atomic():
            partner = serializer.save()
            previous, new = audit.field_changes(before, partner, before)
            if new:
                audit.append(
                    config_key=f"partner:{partner.pk}:commission_rate",
                    actor=Actor.from_request(self.request),
                    previous_value=previous,
                    new_value=new,
                )
                invalidate(f"partner:earnings:{partner.pk}")


class PartnerEarningViewSet(viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = PartnerEarningSerializer
    queryset = PartnerEarning.objects.all()

    def get_queryset(self):
        queryset = PartnerEarning.objects.filter(tenant_id=self.request.user.tenant_id)
        partner_id = self.request.query_params.get('partner_id')
        if partner_id and partner_id.isdigit():
            queryset = queryset.filter(partner_id=partner_id)
        return queryset

    @action(detail=False, methods=['post'], permission_classes=[IsTenantAdmin])
    def compute(self, request):
        payload = ComputeEarningsSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        if not Partner.objects.filter(pk=data['partner_id'], tenant_id=request.user.tenant_id).exists():
            raise NotFound(f"Partner {data['partner_id']} not found")

        earning = settlement.compute_earnings(
            data['partner_id'], data['period_start'], data['period_end'], Actor.from_request(request)
        )
        return Response(PartnerEarningSerializer(earning).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='mark-paid', permission_classes=[IsTenantAdmin])
    def mark_paid(self, request, pk=None):
        earning = self.get_object()
        payload = MarkPaidSerializer(data=request.data)
        payload.is_valid(raise_exception=True)

        earning = settlement.mark_paid(
            earning.pk,
            payload.validated_data['transaction_id'],
            payload.validated_data['paid_date'],
            Actor.from_request(request),
        )
        return Response(PartnerEarningSerializer(earning).data)

    @action(detail=True, methods=['post'], permission_classes=[IsTenantAdmin])
    def adjustments(self, request, pk=None):
        earning = self.get_object()
        payload = AdjustmentSerializer(data=request.data)
        payload.is_valid(raise_exception=True)

        adjustment = settlement.record_adjustment(
            earning.pk,
            payload.validated_data['amount'],
            payload.validated_data['reason'],
            Actor.from_request(request),
        )
        return Response(PartnerEarningSerializer(adjustment).data, status=status.HTTP_201_CREATED)
