import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from django.db import DatabaseError, transaction
from django.utils import timezone

from . import mirror
from .customers import match_or_create_customer, resolve_customer
from .mapping import MappingResolver, Resolution
from .models import MirrorRecord, Order, OrderItem, Product, ProductMapping, ProductVariant, VariantMapping
from .notes import create_notes, delete_platform_notes, item_notes, order_notes
from .tags import link_tags
from .transformer import LineItemDraft, OrderDraft, transform_customer, transform_order, transform_product

logger = logging.getLogger(__name__)


@dataclass
class RowError:
    external_id: Optional[str]
    message: str

    def as_dict(self) -> dict:
        return {'item': self.external_id, 'message': self.message}


@dataclass
class ReconcileResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + len(self.errors)


@dataclass
class _PreparedOrder:
    row: MirrorRecord
    draft: OrderDraft
    resolutions: list
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


def _record_error(result: ReconcileResult, external_id, exc: Exception):
    message = f"{type(exc).__name__}: {exc}"
    logger.error("Failed to reconcile %s: %s", external_id, message)
    result.errors.append(RowError(external_id, message))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def reconcile(tenant_id: str, mirror_rows: Iterable[MirrorRecord], force_update: bool = False) -> ReconcileResult:
    """
    Turn mirrored platform orders into canonical orders.

    Unlinked rows become new orders; linked rows are skipped unless
    `force_update`, in which case the canonical order is refreshed and its
    items and platform notes are replaced. A failure is recorded against its
    row and never aborts the rest of the batch.
    """
    rows = list(mirror_rows)
    result = ReconcileResult()

    unlinked = [row.external_id for row in rows if row.internal_id is None]
    known_orders = dict(
        Order.objects.filter(tenant_id=tenant_id, external_order_id__in=unlinked)
        .values_list('external_order_id', 'id')
    ) if unlinked else {}

    resolver = MappingResolver(tenant_id)
    resolver.prime(
        (item.get('product_id'), item.get('variant_id'))
        for row in rows
        for item in (row.payload or {}).get('line_items') or []
        if isinstance(item, dict)
    )

    to_create, to_update = [], []
    for row in rows:
        existing_id = row.internal_id or known_orders.get(row.external_id)
        if row.internal_id is not None and not force_update:
            result.skipped += 1
            continue
        try:
            prepared = _prepare_order(tenant_id, row, resolver)
        except Exception as exc:
            _record_error(result, row.external_id, exc)
            continue
        if existing_id is None:
            to_create.append(prepared)
        else:
            to_update.append((prepared, existing_id))

    tag_strings = {}
    for prepared, order_id in to_update:
        try:
            _update_order(tenant_id, prepared, order_id)
        except Exception as exc:
            _record_error(result, prepared.row.external_id, exc)
            continue
        result.updated += 1
        tag_strings[order_id] = prepared.draft.tags

    created_ids = _create_orders(tenant_id, to_create, result)
    for prepared in to_create:
        if prepared.token in created_ids:
            tag_strings[created_ids[prepared.token]] = prepared.draft.tags

    # Usage counts are recomputed once, after every join row of the batch exists.
    if any(tag_strings.values()):
        try:
            link_tags(tenant_id, 'order', tag_strings)
        except DatabaseError as exc:
            _record_error(result, None, exc)

    logger.info(
        "Reconciled %d orders for tenant %s: created=%d updated=%d skipped=%d errors=%d.",
        len(rows), tenant_id, result.created, result.updated, result.skipped, len(result.errors),
    )
    return result


def _prepare_order(tenant_id: str, row: MirrorRecord, resolver: MappingResolver) -> _PreparedOrder:
    draft = transform_order(row.payload)
    resolutions = [
        resolver.resolve(item.external_product_id, item.external_variant_id, item.variant_title, item.name)
        for item in draft.items
    ]
    return _PreparedOrder(row=row, draft=draft, resolutions=resolutions)


def _build_item(tenant_id: str, order_id: int, index: int, item: LineItemDraft,
                resolution: Resolution, token: str) -> OrderItem:
    return OrderItem(
        order_id=order_id,
        tenant_id=tenant_id,
        item_type=OrderItem.ItemType.PRODUCT if resolution.resolved else OrderItem.ItemType.CUSTOM,
        product_id=resolution.product_id,
        variant_id=resolution.variant_id,
        matched_via=resolution.matched_via,
        name=item.name[:255],
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
        subtotal=item.subtotal,
        external_item_id=item.external_item_id,
        external_product_id=item.external_product_id,
        external_variant_id=item.external_variant_id,
        sku=item.sku[:128],
        display_order=index,
        correlation_token=token,
    )


def _insert_dependents(tenant_id: str, orders: list):
    """Insert items and notes for [(prepared, order_id)], joining ids by token."""
    items = [
        _build_item(tenant_id, order_id, index, item, resolution, f"{prepared.token}:{index}")
        for prepared, order_id in orders
        for index, (item, resolution) in enumerate(zip(prepared.draft.items, prepared.resolutions))
    ]
    OrderItem.objects.bulk_create(items)

    tokens = [item.correlation_token for item in items]
    item_ids = dict(
        OrderItem.objects.filter(tenant_id=tenant_id, correlation_token__in=tokens)
        .values_list('correlation_token', 'id')
    ) if tokens else {}

    notes = []
    for prepared, order_id in orders:
        notes.extend(order_notes(order_id, prepared.draft))
        for index, item in enumerate(prepared.draft.items):
            notes.extend(item_notes(item_ids[f"{prepared.token}:{index}"], item, prepared.draft.external_order_id))
    create_notes(tenant_id, notes)

    if item_ids:
        OrderItem.objects.filter(pk__in=list(item_ids.values())).update(correlation_token=None)


def _insert_orders(tenant_id: str, batch: list) -> dict:
    """Bulk-insert orders and dependents in one transaction. Returns {token: order id}."""
    with transaction.atomic():
        # Customers created here roll back with the orders that need them.
        Order.objects.bulk_create([
            Order(tenant_id=tenant_id, customer=resolve_customer(tenant_id, prepared.draft.customer),
                  correlation_token=prepared.token, **prepared.draft.fields)
            for prepared in batch
        ])
        order_ids = dict(
            Order.objects.filter(tenant_id=tenant_id, correlation_token__in=[p.token for p in batch])
            .values_list('correlation_token', 'id')
        )
        missing = [p.row.external_id for p in batch if p.token not in order_ids]
        if missing:
            raise DatabaseError(f"Inserted orders not found by correlation token: {missing}")

        _insert_dependents(tenant_id, [(prepared, order_ids[prepared.token]) for prepared in batch])
        for prepared in batch:
            mirror.link(prepared.row, order_ids[prepared.token])
        Order.objects.filter(pk__in=list(order_ids.values())).update(correlation_token=None)
    return order_ids


def _create_orders(tenant_id: str, batch: list, result: ReconcileResult) -> dict:
    if not batch:
        return {}
    try:
        created = _insert_orders(tenant_id, batch)
        result.created += len(created)
        return created
    except Exception as exc:
        logger.warning("Bulk insert of %d orders failed (%s); retrying row by row.", len(batch), exc)

    created = {}
    for prepared in batch:
        try:
            created.update(_insert_orders(tenant_id, [prepared]))
        except Exception as exc:
            _record_error(result, prepared.row.external_id, exc)
            continue
        result.created += 1
    return created


def _update_order(tenant_id: str, prepared: _PreparedOrder, order_id: int):
    with transaction.atomic():
        customer = resolve_customer(tenant_id, prepared.draft.customer)
        updated = Order.objects.filter(pk=order_id, tenant_id=tenant_id).update(
            customer=customer, updated_at=timezone.now(), **prepared.draft.fields,
        )
        if not updated:
            raise LookupError(f"Linked order {order_id} no longer exists.")

        old_item_ids = list(OrderItem.objects.filter(order_id=order_id).values_list('id', flat=True))
        delete_platform_notes(tenant_id, [order_id], old_item_ids)
        OrderItem.objects.filter(pk__in=old_item_ids).delete()
        _insert_dependents(tenant_id, [(prepared, order_id)])
        mirror.link(prepared.row, order_id)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def reconcile_products(tenant_id: str, mirror_rows: Iterable[MirrorRecord],
                       force_update: bool = False) -> ReconcileResult:
    """
    Turn mirrored platform products into catalog products and variants.

    Product and variant mappings are created for new catalog rows; a mapping
    that already exists is never repointed.
    """
    rows = list(mirror_rows)
    result = ReconcileResult()
    tag_strings = {}

    for row in rows:
        if row.internal_id is not None and not force_update:
            result.skipped += 1
            continue
        try:
            with transaction.atomic():
                product_id, created, tags = _upsert_product(tenant_id, row)
        except Exception as exc:
            _record_error(result, row.external_id, exc)
            continue
        if created:
            result.created += 1
        else:
            result.updated += 1
        tag_strings[product_id] = tags

    if any(tag_strings.values()):
        try:
            link_tags(tenant_id, 'product', tag_strings)
        except DatabaseError as exc:
            _record_error(result, None, exc)

    logger.info(
        "Reconciled %d products for tenant %s: created=%d updated=%d skipped=%d errors=%d.",
        len(rows), tenant_id, result.created, result.updated, result.skipped, len(result.errors),
    )
    return result


def _upsert_product(tenant_id: str, row: MirrorRecord) -> tuple:
    data = transform_product(row.payload)
    variants = data.pop('variants')
    tags = data.pop('tags')

    product = None
    if row.internal_id is not None:
        product = Product.objects.filter(pk=row.internal_id, tenant_id=tenant_id).first()
    if product is None:
        mapping = ProductMapping.objects.filter(
            tenant_id=tenant_id, external_product_id=data['external_product_id'],
        ).select_related('product').first()
        product = mapping.product if mapping else None

    created = product is None
    if created:
        product = Product.objects.create(tenant_id=tenant_id, **data)
    else:
        for attr, value in data.items():
            setattr(product, attr, value)
        product.save()

    existing = {
        variant.external_variant_id: variant
        for variant in ProductVariant.objects.filter(product=product, external_variant_id__isnull=False)
    }
    for variant_data in variants:
        variant = existing.get(variant_data['external_variant_id'])
        if variant is None:
            variant = ProductVariant.objects.create(product=product, **variant_data)
        else:
            for attr, value in variant_data.items():
                setattr(variant, attr, value)
            variant.save()
        VariantMapping.objects.get_or_create(
            tenant_id=tenant_id,
            external_variant_id=variant_data['external_variant_id'],
            defaults={'variant': variant},
        )

    ProductMapping.objects.get_or_create(
        tenant_id=tenant_id,
        external_product_id=data['external_product_id'],
        defaults={'product': product},
    )
    mirror.link(row, product.pk)
    return product.pk, created, tags


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

def reconcile_customers(tenant_id: str, mirror_rows: Iterable[MirrorRecord],
                        force_update: bool = False) -> ReconcileResult:
    """
    Turn mirrored platform customers into canonical customers.

    Matching follows order reconciliation (external id, email, phone), so a
    customer first seen on an order is linked rather than duplicated.
    """
    rows = list(mirror_rows)
    result = ReconcileResult()

    for row in rows:
        if row.internal_id is not None and not force_update:
            result.skipped += 1
            continue
        try:
            with transaction.atomic():
                customer, created = match_or_create_customer(tenant_id, transform_customer(row.payload))
                mirror.link(row, customer.pk)
        except Exception as exc:
            _record_error(result, row.external_id, exc)
            continue
        if created:
            result.created += 1
        else:
            result.updated += 1

    logger.info(
        "Reconciled %d customers for tenant %s: created=%d updated=%d skipped=%d errors=%d.",
        len(rows), tenant_id, result.created, result.updated, result.skipped, len(result.errors),
    )
    return result


def reconcile_kind(tenant_id: str, kind: str, mirror_rows, force_update: bool = False) -> ReconcileResult:
    if kind == MirrorRecord.Kind.PRODUCT:
        return reconcile_products(tenant_id, mirror_rows, force_update=force_update)
    if kind == MirrorRecord.Kind.CUSTOMER:
        return reconcile_customers(tenant_id, mirror_rows, force_update=force_update)
    return reconcile(tenant_id, mirror_rows, force_update=force_update)
