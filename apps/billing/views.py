from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.advertisers.models import Advertiser
from apps.audit.actor import Actor
from apps.authentication.permissions import IsTenantAdmin
from apps.campaigns.models import Campaign
from core.exceptions import NotFound, ValidationError
from . import ledger
from .models import Invoice, Payment
from .serializers import (
    AccountSummarySerializer,
    ApplyPaymentSerializer,
    GenerateInvoiceSerializer,
    InvoiceSerializer,
    PaymentSerializer,
)


class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = InvoiceSerializer
    queryset = Invoice.objects.all()

    def get_queryset(self):
        queryset = Invoice.objects.filter(tenant_id=self.request.user.tenant_id)
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset.prefetch_related('allocations')

    @action(detail=False, methods=['post'], permission_classes=[IsTenantAdmin])
    def generate(self, request):
        payload = GenerateInvoiceSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        if not Campaign.objects.filter(pk=data['campaign_id'], tenant_id=request.user.tenant_id).exists():
            raise NotFound(f"Campaign {data['campaign_id']} not found")

        invoice = ledger.create_invoice(
            data['campaign_id'],
            data['period_start'],
            data['period_end'],
            Actor.from_request(request),
            tax_rate=data.get('tax_rate'),
            due_date=data.get('due_date'),
        )
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], permission_classes=[IsTenantAdmin])
    def payments(self, request, pk=None):
        invoice = self.get_object()
        payload = ApplyPaymentSerializer(data=request.data)
        payload.is_valid(raise_exception=True)

        payment_id = payload.validated_data['payment_id']
        if not Payment.objects.filter(pk=payment_id, tenant_id=request.user.tenant_id).exists():
            raise NotFound(f"Payment {payment_id} not found")

        invoice = ledger.apply_payment(
            invoice.pk,
            payment_id,
            Actor.from_request(request),
            amount=payload.validated_data.get('amount'),
        )
        invoice = Invoice.objects.prefetch_related('allocations').get(pk=invoice.pk)
        return Response(InvoiceSerializer(invoice).data)

    @action(detail=False, methods=['post'], url_path='mark-overdue', permission_classes=[IsTenantAdmin])
    def mark_overdue(self, request):
        marked = ledger.mark_overdue(now=timezone.now(), actor=Actor.from_request(request))
        return Response({'marked': marked, 'count': len(marked)})

    @action(detail=False, methods=['get'])
    def summary(self, request):
        advertiser_id = request.query_params.get('advertiser_id')
        if advertiser_id and not advertiser_id.isdigit():
            raise ValidationError({'advertiser_id': 'A valid integer is required.'})
        if advertiser_id:
            advertiser = Advertiser.objects.filter(
                pk=advertiser_id, tenant_id=request.user.tenant_id
            ).first()
        else:
            advertiser = Advertiser.objects.filter(user=request.user).first()
        if advertiser is None:
            raise NotFound('Advertiser not found')

        return Response(AccountSummarySerializer(ledger.account_summary(advertiser.pk)).data)


class PaymentViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = PaymentSerializer
    queryset = Payment.objects.all()
    http_method_names = ['get', 'post', 'head', 'options']

    def get_queryset(self):
        return Payment.objects.filter(tenant_id=self.request.user.tenant_id)

    def perform_create(self, serializer):
        serializer.save(tenant_id=self.request.user.tenant_id)
