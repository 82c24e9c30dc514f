from rest_framework import serializers
from .models import Campaign, CampaignStatus


class CampaignSerializer(serializers.ModelSerializer):
    tenant_id = serializers.IntegerField(read_only=True)
    status = serializers.CharField(read_only=True)
    rejection_reason = serializers.CharField(read_only=True)

    class Meta:
        model = Campaign
        fields = '__all__'

    def validate_name(self, value):
        request = self.context.get('request')
        if request and hasattr(request.user, 'tenant_id'):
            existing = Campaign.objects.filter(tenant_id=request.user.tenant_id, name=value)
            if self.instance is not None:
                existing = existing.exclude(pk=self.instance.pk)
            if existing.exists():
                raise serializers.ValidationError(
                    f"A campaign with name '{value}' already exists for this tenant."
                )
        return value

    def validate(self, attrs):
        start_date = attrs.get('start_date', getattr(self.instance, 'start_date', None))
        end_date = attrs.get('end_date', getattr(self.instance, 'end_date', None))
        if start_date and end_date and start_date >= end_date:
            raise serializers.ValidationError({'end_date': 'end_date must be after start_date'})
        return attrs


class CampaignTransitionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=CampaignStatus.choices)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=2000)
