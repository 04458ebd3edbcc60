import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .models import MirrorRecord

logger = logging.getLogger(__name__)

MIRROR_KINDS = {
    'orders': MirrorRecord.Kind.ORDER,
    'products': MirrorRecord.Kind.PRODUCT,
    'customers': MirrorRecord.Kind.CUSTOMER,
}


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0


def parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_datetime(value)
    except ValueError:
        logger.warning("Unparseable timestamp %r – storing null.", value)
        return None


def upsert_batch(tenant_id: str, kind: str, records: Iterable[dict], internal_ids: dict = None) -> UpsertResult:
    """
    Store verbatim platform records keyed by (tenant, kind, external id).

    Every column is refreshed from the incoming record except `internal_id`,
    which keeps an already set value and only takes `internal_ids[external_id]`
    when the row is still unlinked. Duplicate ids inside one batch collapse to
    the last occurrence. The whole batch commits or fails together.
    """
    internal_ids = internal_ids or {}
    latest = {}
    for record in records:
        external_id = record.get('id')
        if external_id is None:
            raise ValueError(f"{kind} record without an id cannot be mirrored.")
        latest[str(external_id)] = record

    if not latest:
        return UpsertResult()

    now = timezone.now()
    with transaction.atomic():
        existing = {
            row.external_id: row
            for row in MirrorRecord.objects.select_for_update().filter(
                tenant_id=tenant_id, kind=kind, external_id__in=list(latest),
            )
        }

        to_create, to_update = [], []
        for external_id, record in latest.items():
            incoming_link = internal_ids.get(external_id)
            row = existing.get(external_id)
            if row is None:
                to_create.append(MirrorRecord(
                    tenant_id=tenant_id,
                    kind=kind,
                    external_id=external_id,
                    external_updated_at=parse_timestamp(record.get('updated_at')),
                    payload=record,
                    internal_id=incoming_link,
                    synced_at=now,
                ))
                continue
            row.payload = record
            row.external_updated_at = parse_timestamp(record.get('updated_at'))
            row.synced_at = now
            if row.internal_id is None:
                row.internal_id = incoming_link
            to_update.append(row)

        if to_create:
            # A concurrent writer may have inserted the same key since the
            # select above; refresh it without touching its link.
            MirrorRecord.objects.bulk_create(
                to_create,
                update_conflicts=True,
                unique_fields=['tenant_id', 'kind', 'external_id'],
                update_fields=['payload', 'external_updated_at', 'synced_at'],
            )
        if to_update:
            MirrorRecord.objects.bulk_update(
                to_update, ['payload', 'external_updated_at', 'synced_at', 'internal_id'],
            )

    result = UpsertResult(inserted=len(to_create), updated=len(to_update))
    logger.debug(
        "Mirrored %d %s rows for tenant %s (inserted=%d, updated=%d).",
        len(latest), kind, tenant_id, result.inserted, result.updated,
    )
    return result


def rows_for(tenant_id: str, kind: str, external_ids: Iterable) -> list[MirrorRecord]:
    ids = [str(external_id) for external_id in external_ids]
    rows = MirrorRecord.objects.filter(tenant_id=tenant_id, kind=kind, external_id__in=ids)
    by_id = {row.external_id: row for row in rows}
    return [by_id[external_id] for external_id in dict.fromkeys(ids) if external_id in by_id]


def unreconciled(tenant_id: str, kind: str):
    return MirrorRecord.objects.filter(tenant_id=tenant_id, kind=kind, internal_id__isnull=True)


def link(row: MirrorRecord, internal_id: int) -> bool:
    """Link a mirror row to its canonical entity unless it is linked already."""
    updated = MirrorRecord.objects.filter(pk=row.pk, internal_id__isnull=True).update(internal_id=internal_id)
    if updated:
        row.internal_id = internal_id
    return bool(updated)
