from rest_framework import serializers
from .models import Partner, PartnerEarning


class PartnerSerializer(serializers.ModelSerializer):
    tenant_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Partner
        fields = '__all__'


class PartnerEarningSerializer(serializers.ModelSerializer):
    tenant_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = PartnerEarning
        fields = '__all__'
        read_only_fields = [field.name for field in PartnerEarning._meta.fields]


class ComputeEarningsSerializer(serializers.Serializer):
    partner_id = serializers.IntegerField()
    period_start = serializers.DateTimeField()
    period_end = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs['period_start'] >= attrs['period_end']:
            raise serializers.ValidationError({'period_end': 'period_end must be after period_start'})
        return attrs


class MarkPaidSerializer(serializers.Serializer):
    transaction_id = serializers.CharField(max_length=100)
    paid_date = serializers.DateTimeField()


class AdjustmentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(max_length=2000)
