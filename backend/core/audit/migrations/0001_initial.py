from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.core.serializers.json
import django.utils.timezone


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="AuditEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("actor_username", models.CharField(blank=True, max_length=150)),
                ("action", models.CharField(choices=[("CREATE", "Create"), ("UPDATE", "Update"), ("DELETE", "Delete"), ("SYSTEM", "System")], default="SYSTEM", max_length=20)),
                ("event_type", models.CharField(blank=True, max_length=120)),
                ("resource_label", models.CharField(max_length=200)),
                ("resource_pk", models.CharField(blank=True, max_length=64)),
                ("occurred_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("request_id", models.UUIDField(blank=True, null=True)),
                ("request_method", models.CharField(blank=True, max_length=12)),
                ("request_path", models.CharField(blank=True, max_length=255)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("chain_id", models.CharField(db_index=True, max_length=80)),
                ("prev_hash", models.CharField(blank=True, default="", max_length=64)),
                ("entry_hash", models.CharField(max_length=64, unique=True)),
                ("data_before", models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True)),
                ("data_after", models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("actor", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="audit_entries", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Audit Entry",
                "verbose_name_plural": "Audit Entries",
                "ordering": ("-occurred_at", "-id"),
            },
        ),
        migrations.AddConstraint(
            model_name="auditentry",
            constraint=models.UniqueConstraint(fields=("chain_id", "prev_hash"), name="uq_audit_prev_hash_per_chain"),
        ),
        migrations.AddIndex(
            model_name="auditentry",
            index=models.Index(fields=("chain_id", "occurred_at"), name="idx_audit_chain_occurred"),
        ),
        migrations.AddIndex(
            model_name="auditentry",
            index=models.Index(fields=("resource_label", "resource_pk"), name="idx_audit_resource"),
        ),
    ]
