import logging
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timedelta, timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.conf import settings
from django.utils.dateparse import parse_date, parse_datetime

logger = logging.getLogger(__name__)

ZAPIET_PROPERTY = '_ZapietId'
DEFAULT_VARIANT_TITLE = 'Default Title'
EXPLICIT_DATE_ATTRIBUTES = ('pickup-date', 'delivery-date', 'pickup date', 'delivery date')


@dataclass
class CustomerIdentity:
    external_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: str = ''
    last_name: str = ''

    @property
    def is_anonymous(self) -> bool:
        return not (self.external_id or self.email or self.phone)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class LineItemDraft:
    external_item_id: Optional[str]
    external_product_id: Optional[str]
    external_variant_id: Optional[str]
    name: str
    variant_title: Optional[str]
    sku: str
    quantity: int
    unit_price: Decimal
    properties: list = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def description(self) -> str:
        if self.variant_title and self.variant_title != DEFAULT_VARIANT_TITLE:
            return self.variant_title
        return ''


@dataclass
class OrderDraft:
    """Canonical order fields derived from one platform order payload."""

    external_order_id: str
    fields: dict
    customer: CustomerIdentity
    items: list
    note: Optional[str]
    note_attributes: list
    tags: str


def to_decimal(value, default: str = '0') -> Decimal:
    if value in (None, ''):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid amount {value!r}.")


def to_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = parse_datetime(value)
    if parsed is None:
        day = parse_date(value[:10])
        if day is None:
            raise ValueError(f"Invalid timestamp {value!r}.")
        parsed = datetime.combine(day, dt_time.min)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def parse_zapiet(value: str) -> dict:
    """Parse a `_ZapietId` value such as "M=D&L=112097&D=2025-10-20T00:00:00Z"."""
    parsed = {}
    for part in (value or '').split('&'):
        key, _, item = part.partition('=')
        if key == 'M':
            parsed['method'] = item
        elif key == 'D':
            parsed['date'] = item
        elif key == 'L':
            parsed['location'] = item
    return parsed


def _properties(line_item: dict) -> list:
    return [prop for prop in line_item.get('properties') or [] if isinstance(prop, dict)]


def find_zapiet(line_items: list) -> dict:
    for line_item in line_items:
        for prop in _properties(line_item):
            if prop.get('name') == ZAPIET_PROPERTY:
                return parse_zapiet(prop.get('value'))
    return {}


def explicit_due_date(zapiet: dict, note_attributes: list) -> Optional[datetime]:
    """Explicit pickup/delivery date, from Zapiet first, then order attributes."""
    candidates = [zapiet.get('date')]
    for attr in note_attributes:
        if str(attr.get('name', '')).strip().lower().replace('_', '-') in EXPLICIT_DATE_ATTRIBUTES:
            candidates.append(attr.get('value'))
    for candidate in candidates:
        if not candidate:
            continue
        day = parse_date(str(candidate).split('T')[0].strip())
        if day is not None:
            return datetime.combine(day, dt_time.min, tzinfo=dt_timezone.utc)
        logger.warning("Ignoring unparseable pickup/delivery date %r.", candidate)
    return None


def derive_fulfillment(order: dict, zapiet: dict) -> tuple[str, Optional[str]]:
    """Return (fulfillment_type, pickup_location)."""
    shipping_lines = order.get('shipping_lines') or []
    shipping_line = shipping_lines[0] if shipping_lines else {}
    title = (shipping_line.get('title') or '').strip()
    code = (shipping_line.get('code') or '').lower()
    tags = (order.get('tags') or '').lower()

    method = zapiet.get('method')
    if method == 'P':
        return 'pickup', title or zapiet.get('location') or None
    if method == 'D' or 'local delivery' in tags or 'local-delivery' in code:
        return 'delivery', None

    lowered = title.lower()
    if 'pickup' in lowered or 'pick up' in lowered:
        return 'pickup', title
    if 'delivery' in lowered:
        return 'delivery', None
    if 'shipping' in lowered:
        return 'shipping', None
    return ('shipping' if order.get('shipping_address') else 'pickup'), None


def derive_status(order: dict) -> str:
    if order.get('cancelled_at'):
        return 'cancelled'
    if order.get('fulfillment_status') == 'fulfilled':
        return 'completed'
    if order.get('financial_status') == 'paid':
        return 'confirmed'
    return 'pending'


def derive_payment_status(financial_status: Optional[str]) -> str:
    if financial_status == 'paid':
        return 'paid'
    if financial_status == 'partially_paid':
        return 'partially_paid'
    if financial_status in ('refunded', 'partially_refunded'):
        return 'refunded'
    return 'unpaid'


def extract_customer(order: dict) -> CustomerIdentity:
    customer = order.get('customer') or {}
    address = order.get('billing_address') or order.get('shipping_address') or {}
    external_id = customer.get('id')
    return CustomerIdentity(
        external_id=str(external_id) if external_id else None,
        email=(order.get('email') or customer.get('email') or '').strip().lower() or None,
        phone=(order.get('phone') or customer.get('phone') or '').strip() or None,
        first_name=customer.get('first_name') or address.get('first_name') or '',
        last_name=customer.get('last_name') or address.get('last_name') or '',
    )


def transform_line_item(raw: dict) -> LineItemDraft:
    quantity = int(raw.get('quantity') or 0)
    if quantity < 0:
        raise ValueError(f"Negative quantity on line item {raw.get('id')}.")

    def _opt(key):
        value = raw.get(key)
        return str(value) if value not in (None, '') else None

    return LineItemDraft(
        external_item_id=_opt('id'),
        external_product_id=_opt('product_id'),
        external_variant_id=_opt('variant_id'),
        name=raw.get('title') or raw.get('name') or 'Item',
        variant_title=raw.get('variant_title'),
        sku=raw.get('sku') or '',
        quantity=quantity,
        unit_price=to_decimal(raw.get('price')),
        properties=_properties(raw),
    )


def transform_order(order: dict) -> OrderDraft:
    """
    Derive canonical order fields from a platform order payload.

    Raises ValueError when the payload cannot produce a valid order.
    """
    external_id = order.get('id')
    if external_id is None:
        raise ValueError("Order payload has no id.")

    created_at = to_datetime(order.get('created_at'))
    if created_at is None:
        raise ValueError(f"Order {external_id} has no created_at.")

    line_items = order.get('line_items') or []
    note_attributes = [attr for attr in order.get('note_attributes') or [] if isinstance(attr, dict)]
    zapiet = find_zapiet(line_items)

    fulfillment_type, pickup_location = derive_fulfillment(order, zapiet)
    due_date = explicit_due_date(zapiet, note_attributes)
    if due_date is None:
        due_date = created_at + timedelta(days=settings.SHOPSYNC_DEFAULT_DUE_DAYS)

    customer = extract_customer(order)
    shipping = order.get('shipping_address') or {}
    shipping_total = sum(
        (to_decimal(line.get('price')) for line in order.get('shipping_lines') or []), Decimal('0'),
    )

    name = order.get('name') or ''
    fields = {
        'order_number': name.lstrip('#') or str(order.get('order_number') or external_id),
        'external_order_id': str(external_id),
        'customer_name': customer.full_name or 'Guest',
        'customer_email': customer.email,
        'customer_phone': customer.phone,
        'status': derive_status(order),
        'payment_status': derive_payment_status(order.get('financial_status')),
        'fulfillment_type': fulfillment_type,
        'order_date': created_at,
        'due_date': due_date,
        'pickup_location': pickup_location,
        'shipping_name': shipping.get('name'),
        'shipping_address1': shipping.get('address1'),
        'shipping_address2': shipping.get('address2'),
        'shipping_city': shipping.get('city'),
        'shipping_province': shipping.get('province'),
        'shipping_zip': shipping.get('zip'),
        'shipping_country': shipping.get('country'),
        'shipping_phone': shipping.get('phone'),
        'subtotal': to_decimal(order.get('subtotal_price')),
        'tax_amount': to_decimal(order.get('total_tax')),
        'discount_amount': to_decimal(order.get('total_discounts')),
        'shipping_amount': shipping_total,
        'total': to_decimal(order.get('total_price')),
        'currency': order.get('currency') or 'USD',
        'financial_status': order.get('financial_status'),
        'platform_fulfillment_status': order.get('fulfillment_status'),
        'cancelled_at': to_datetime(order.get('cancelled_at')),
        'cancel_reason': order.get('cancel_reason'),
        'external_tags': order.get('tags') or '',
    }

    return OrderDraft(
        external_order_id=str(external_id),
        fields=fields,
        customer=customer,
        items=[transform_line_item(raw) for raw in line_items],
        note=(order.get('note') or '').strip() or None,
        note_attributes=note_attributes,
        tags=order.get('tags') or '',
    )


def transform_product(raw: dict) -> dict:
    """Catalog fields for one platform product, variants ordered by position."""
    external_id = raw.get('id')
    if external_id is None:
        raise ValueError("Product payload has no id.")
    title = (raw.get('title') or '').strip()
    if not title:
        raise ValueError(f"Product {external_id} has no title.")

    variants = []
    for index, variant in enumerate(sorted(raw.get('variants') or [], key=lambda v: v.get('position') or 0)):
        position = variant.get('position') or index + 1
        variants.append({
            'external_variant_id': str(variant['id']),
            'name': variant.get('title') or DEFAULT_VARIANT_TITLE,
            'sku': variant.get('sku') or '',
            'price': to_decimal(variant.get('price')),
            'sort_order': position,
            'is_default': position == 1,
        })

    return {
        'external_product_id': str(external_id),
        'name': title,
        'product_type': raw.get('product_type') or '',
        'vendor': raw.get('vendor') or '',
        'description': raw.get('body_html') or '',
        'tags': raw.get('tags') or '',
        'variants': variants,
    }


def transform_customer(raw: dict) -> CustomerIdentity:
    """Identity of one platform customer; the default address fills in a missing name or phone."""
    external_id = raw.get('id')
    if external_id is None:
        raise ValueError("Customer payload has no id.")
    address = raw.get('default_address') or {}
    return CustomerIdentity(
        external_id=str(external_id),
        email=(raw.get('email') or '').strip().lower() or None,
        phone=(raw.get('phone') or address.get('phone') or '').strip() or None,
        first_name=raw.get('first_name') or address.get('first_name') or '',
        last_name=raw.get('last_name') or address.get('last_name') or '',
    )
