from __future__ import annotations

import hashlib
import json
import logging
from uuid import UUID, uuid4

from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEntry

logger = logging.getLogger(__name__)

_MAX_APPEND_ATTEMPTS = 5


def _canonical_json(value) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def _safe_uuid(value: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _extract_ip(request) -> str:
    if request is None:
        return ""
    # Behind a load balancer X-Forwarded-For may hold a chain; keep the left-most hop.
    forwarded_for = (request.META.get("HTTP_X_FORWARDED_FOR") or "").strip()
    if forwarded_for:
        return forwarded_for.split(",", 1)[0].strip()
    return (request.META.get("REMOTE_ADDR") or "").strip()


def _build_entry_hash(payload: dict, prev_hash: str) -> str:
    material = f"{prev_hash}{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(material).hexdigest()


def _entry_payload(entry: AuditEntry) -> dict:
    return {
        "chain_id": entry.chain_id,
        "actor_username": entry.actor_username,
        "action": entry.action,
        "event_type": entry.event_type,
        "resource_label": entry.resource_label,
        "resource_pk": entry.resource_pk,
        "occurred_at": entry.occurred_at.isoformat(),
        "request_id": str(entry.request_id) if entry.request_id else "",
        "request_method": entry.request_method,
        "request_path": entry.request_path,
        "ip_address": entry.ip_address or "",
        "data_before": entry.data_before,
        "data_after": entry.data_after,
        "metadata": entry.metadata,
    }


def append_audit_entry(
    *,
    actor,
    action: str,
    resource_label: str,
    resource_pk: str,
    request=None,
    event_type: str = "",
    data_before: dict | None = None,
    data_after: dict | None = None,
    metadata: dict | None = None,
) -> AuditEntry:
    """Append a new immutable audit entry to the chain of `resource_label`.

    Concurrent writers race on the (chain_id, prev_hash) unique constraint; the
    loser re-reads the chain head and retries.
    """

    chain_id = resource_label
    occurred_at = timezone.now()

    request_id = None
    request_method = ""
    request_path = ""
    ip_address = ""
    if request is not None:
        request_id = _safe_uuid(request.headers.get("X-Request-ID", ""))
        request_method = (getattr(request, "method", "") or "").upper()
        request_path = getattr(request, "path", "") or ""
        ip_address = _extract_ip(request)
    if request_id is None:
        request_id = uuid4()

    actor_obj = actor if getattr(actor, "is_authenticated", False) else None
    actor_username = (getattr(actor_obj, "username", "") or "").strip()

    if not event_type:
        event_type = f"{resource_label}.{action.lower()}"

    # Round-trip through JSON so the hashed payload equals what the DB returns later.
    data_before = json.loads(_canonical_json(data_before))
    data_after = json.loads(_canonical_json(data_after))
    metadata_payload = json.loads(_canonical_json(metadata if isinstance(metadata, dict) else {}))

    for _attempt in range(_MAX_APPEND_ATTEMPTS):
        prev_hash = (
            AuditEntry.objects.filter(chain_id=chain_id)
            .order_by("-id")
            .values_list("entry_hash", flat=True)
            .first()
            or ""
        )

        entry = AuditEntry(
            actor=actor_obj,
            actor_username=actor_username,
            action=action,
            event_type=event_type,
            resource_label=resource_label,
            resource_pk=str(resource_pk),
            occurred_at=occurred_at,
            request_id=request_id,
            request_method=request_method,
            request_path=request_path,
            ip_address=ip_address or None,
            chain_id=chain_id,
            prev_hash=prev_hash,
            data_before=data_before,
            data_after=data_after,
            metadata=metadata_payload,
        )
        entry.entry_hash = _build_entry_hash(_entry_payload(entry), prev_hash)

        try:
            with transaction.atomic():
                entry.save(force_insert=True)
        except IntegrityError as exc:
            if "uq_audit_prev_hash_per_chain" in str(exc) or "entry_hash" in str(exc):
                continue
            raise
        logger.debug("audit entry %s appended to chain %s", event_type, chain_id)
        return entry

    raise RuntimeError("Failed to append audit entry (concurrency retries exhausted).")


def verify_chain(chain_id: str) -> list[int]:
    """Return ids of entries whose stored hash no longer matches their content."""

    broken: list[int] = []
    prev_hash = ""
    for entry in AuditEntry.objects.filter(chain_id=chain_id).order_by("id").iterator():
        expected = _build_entry_hash(_entry_payload(entry), prev_hash)
        if entry.prev_hash != prev_hash or entry.entry_hash != expected:
            broken.append(entry.id)
        prev_hash = entry.entry_hash
    if broken:
        logger.warning("audit chain %s failed verification at entries %s", chain_id, broken)
    return broken
