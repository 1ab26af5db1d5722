from rest_framework import serializers

from audit.models import AuditEntry


class AuditEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditEntry
        fields = (
            "id",
            "actor_username",
            "action",
            "event_type",
            "resource_label",
            "resource_pk",
            "occurred_at",
            "request_id",
            "request_method",
            "request_path",
            "ip_address",
            "chain_id",
            "prev_hash",
            "entry_hash",
            "data_before",
            "data_after",
            "metadata",
        )
