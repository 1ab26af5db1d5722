from django.urls import path

from audit.views import AuditEntryListAPIView

urlpatterns = [
    path("entries/", AuditEntryListAPIView.as_view(), name="audit-entries-list"),
]
