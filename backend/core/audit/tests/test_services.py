from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import RequestFactory, TestCase

from audit.models import AuditEntry
from audit.services import append_audit_entry, verify_chain


class AuditChainTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="auditor", password="pw")

    def append(self, pk, **kwargs):
        return append_audit_entry(
            actor=self.user,
            action=AuditEntry.ACTION_UPDATE,
            resource_label="commission.CommissionRule",
            resource_pk=pk,
            data_after={"value": pk},
            **kwargs,
        )

    def test_entries_link_to_previous_hash(self):
        first = self.append("1")
        second = self.append("2")
        self.assertEqual(first.prev_hash, "")
        self.assertEqual(second.prev_hash, first.entry_hash)
        self.assertEqual(second.event_type, "commission.CommissionRule.update")
        self.assertEqual(verify_chain("commission.CommissionRule"), [])

    def test_tampering_is_detected(self):
        self.append("1")
        tampered = self.append("2")
        self.append("3")
        AuditEntry.objects.filter(pk=tampered.pk).update(data_after={"value": "999"})
        self.assertEqual(verify_chain("commission.CommissionRule"), [tampered.pk])

    def test_request_context_is_captured(self):
        request = RequestFactory().post(
            "/api/commission/rules/",
            HTTP_X_FORWARDED_FOR="203.0.113.9, 10.0.0.1",
            HTTP_X_REQUEST_ID="0b3c2f8e-56a1-4c1e-9d1a-5f2f6a8c9e10",
        )
        entry = self.append("1", request=request)
        self.assertEqual(entry.ip_address, "203.0.113.9")
        self.assertEqual(entry.request_method, "POST")
        self.assertEqual(str(entry.request_id), "0b3c2f8e-56a1-4c1e-9d1a-5f2f6a8c9e10")

    def test_entries_are_immutable(self):
        entry = self.append("1")
        entry.event_type = "edited"
        with self.assertRaises(ValidationError):
            entry.save()
        with self.assertRaises(ValidationError):
            entry.delete()
