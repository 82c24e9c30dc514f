from rest_framework import serializers

from .models import AuditEntry
from .services import redact


class AuditEntrySerializer(serializers.ModelSerializer):
    previous_value = serializers.SerializerMethodField()
    new_value = serializers.SerializerMethodField()

    class Meta:
        model = AuditEntry
        fields = (
            'id', 'config_key', 'changed_by', 'changed_by_display', 'previous_value',
            'new_value', 'change_reason', 'ip_address', 'user_agent', 'change_date',
        )
        read_only_fields = fields

    def get_previous_value(self, obj):
        return redact(obj.previous_value)

    def get_new_value(self, obj):
        return redact(obj.new_value)


class AuditQuerySerializer(serializers.Serializer):
    config_key = serializers.CharField(required=False)
    changed_by = serializers.CharField(required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
    page = serializers.IntegerField(required=False, default=1, min_value=1)
    limit = serializers.IntegerField(required=False, default=20, min_value=1)
