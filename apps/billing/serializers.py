from rest_framework import serializers
from .models import Invoice, Payment, PaymentAllocation


class PaymentAllocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentAllocation
        fields = ['payment', 'amount', 'applied_at']


class InvoiceSerializer(serializers.ModelSerializer):
    tenant_id = serializers.IntegerField(read_only=True)
    allocations = PaymentAllocationSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = '__all__'
        read_only_fields = [
            'invoice_number', 'amount', 'tax_rate', 'tax', 'total',
            'status', 'items', 'payment', 'created_at', 'updated_at',
        ]


class PaymentSerializer(serializers.ModelSerializer):
    tenant_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Payment
        exclude = ['invoices']


class GenerateInvoiceSerializer(serializers.Serializer):
    campaign_id = serializers.IntegerField()
    period_start = serializers.DateTimeField()
    period_end = serializers.DateTimeField()
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=4, required=False,
                                        min_value=0, max_value=1)
    due_date = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if attrs['period_start'] >= attrs['period_end']:
            raise serializers.ValidationError({'period_end': 'period_end must be after period_start'})
        return attrs


class ApplyPaymentSerializer(serializers.Serializer):
    payment_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)


class AccountSummarySerializer(serializers.Serializer):
    advertiser_id = serializers.IntegerField()
    invoiced = serializers.DecimalField(max_digits=14, decimal_places=2)
    paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    outstanding = serializers.DecimalField(max_digits=14, decimal_places=2)
    invoice_count = serializers.IntegerField()
    overdue_count = serializers.IntegerField()
