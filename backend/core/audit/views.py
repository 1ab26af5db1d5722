from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from audit.models import AuditEntry
from audit.serializers import AuditEntrySerializer


class AuditEntryListAPIView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            limit = int(request.query_params.get("limit", "200"))
        except ValueError:
            limit = 200
        limit = max(1, min(limit, 1000))

        entries = AuditEntry.objects.all()
        resource_label = (request.query_params.get("resource_label") or "").strip()
        if resource_label:
            entries = entries.filter(resource_label=resource_label)
        resource_pk = (request.query_params.get("resource_pk") or "").strip()
        if resource_pk:
            entries = entries.filter(resource_pk=resource_pk)

        entries = entries.order_by("-occurred_at", "-id")[:limit]
        return Response(AuditEntrySerializer(entries, many=True).data)
