import uuid

from django.db import models


class PlatformIntegration(models.Model):
    tenant_id = models.CharField(max_length=64, unique=True)
    shop_domain = models.CharField(max_length=255)
    access_token = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    last_order_sync_at = models.DateTimeField(null=True, blank=True)
    last_product_sync_at = models.DateTimeField(null=True, blank=True)
    last_customer_sync_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.tenant_id} → {self.shop_domain}"


class SyncJob(models.Model):
    class JobType(models.TextChoices):
        ORDERS_FULL = 'orders_full'
        ORDERS_INCREMENTAL = 'orders_incremental'
        PRODUCTS_FULL = 'products_full'
        PRODUCTS_INCREMENTAL = 'products_incremental'
        CUSTOMERS_FULL = 'customers_full'
        CUSTOMERS_INCREMENTAL = 'customers_incremental'

    class Status(models.TextChoices):
        PENDING = 'pending'
        RUNNING = 'running'
        PAUSED = 'paused'
        COMPLETED = 'completed'
        FAILED = 'failed'
        CANCELLED = 'cancelled'

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64, db_index=True)
    job_type = models.CharField(max_length=32, choices=JobType.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)

    cursor = models.TextField(null=True, blank=True)
    current_page = models.PositiveIntegerField(default=0)

    total_items = models.PositiveIntegerField(null=True, blank=True)
    processed_items = models.PositiveIntegerField(default=0)
    success_count = models.PositiveIntegerField(default=0)
    error_count = models.PositiveIntegerField(default=0)
    skip_count = models.PositiveIntegerField(default=0)
    fetch_error_count = models.PositiveIntegerField(default=0)
    reconcile_error_count = models.PositiveIntegerField(default=0)

    errors = models.JSONField(default=list, blank=True)
    last_error = models.TextField(null=True, blank=True)
    config = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    last_activity_at = models.DateTimeField(null=True, blank=True)
    estimated_completion_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.CharField(max_length=64, null=True, blank=True)

    class Meta:
        indexes = [models.Index(fields=['tenant_id', 'status'], name='syncjob_tenant_status_idx')]

    def __str__(self):
        return f"{self.job_type} {self.id} ({self.status})"

    @property
    def entity(self) -> str:
        return self.job_type.rsplit('_', 1)[0]


class MirrorRecord(models.Model):
    class Kind(models.TextChoices):
        ORDER = 'order'
        PRODUCT = 'product'
        CUSTOMER = 'customer'

    tenant_id = models.CharField(max_length=64)
    kind = models.CharField(max_length=16, choices=Kind.choices)
    external_id = models.CharField(max_length=64)
    external_updated_at = models.DateTimeField(null=True, blank=True)
    payload = models.JSONField(default=dict)
    internal_id = models.BigIntegerField(null=True, blank=True)
    synced_at = models.DateTimeField()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['tenant_id', 'kind', 'external_id'], name='uniq_mirror_tenant_kind_external',
            ),
        ]

    def __str__(self):
        return f"{self.kind} {self.external_id} (internal={self.internal_id})"


class Customer(models.Model):
    tenant_id = models.CharField(max_length=64, db_index=True)
    external_id = models.CharField(max_length=64, null=True, blank=True)
    email = models.CharField(max_length=255, null=True, blank=True)
    phone = models.CharField(max_length=64, null=True, blank=True)
    first_name = models.CharField(max_length=255, blank=True, default='')
    last_name = models.CharField(max_length=255, blank=True, default='')
    is_guest = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self):
        return self.full_name or self.email or f"customer {self.pk}"


class Product(models.Model):
    tenant_id = models.CharField(max_length=64, db_index=True)
    name = models.CharField(max_length=255)
    product_type = models.CharField(max_length=255, blank=True, default='')
    vendor = models.CharField(max_length=255, blank=True, default='')
    description = models.TextField(blank=True, default='')
    external_product_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class ProductVariant(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variants')
    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=128, blank=True, default='')
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    sort_order = models.PositiveIntegerField(default=0)
    is_default = models.BooleanField(default=False)
    external_variant_id = models.CharField(max_length=64, null=True, blank=True)

    class Meta:
        ordering = ['sort_order', 'id']

    def __str__(self):
        return f"{self.product.name} / {self.name}"


class VariantMapping(models.Model):
    tenant_id = models.CharField(max_length=64)
    external_variant_id = models.CharField(max_length=64)
    variant = models.ForeignKey(ProductVariant, on_delete=models.CASCADE, related_name='mappings')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'external_variant_id'], name='uniq_variant_mapping'),
        ]


class ProductMapping(models.Model):
    tenant_id = models.CharField(max_length=64)
    external_product_id = models.CharField(max_length=64)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='mappings')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'external_product_id'], name='uniq_product_mapping'),
        ]


class LegacyProductMapping(models.Model):
    """Deprecated mapping table; read only as the last resort."""

    tenant_id = models.CharField(max_length=64, db_index=True)
    external_product_id = models.CharField(max_length=64, null=True, blank=True)
    external_variant_id = models.CharField(max_length=64, null=True, blank=True)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, null=True, blank=True, related_name='+')
    variant = models.ForeignKey(ProductVariant, on_delete=models.CASCADE, null=True, blank=True, related_name='+')


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending'
        CONFIRMED = 'confirmed'
        COMPLETED = 'completed'
        CANCELLED = 'cancelled'

    class PaymentStatus(models.TextChoices):
        UNPAID = 'unpaid'
        PAID = 'paid'
        PARTIALLY_PAID = 'partially_paid'
        REFUNDED = 'refunded'

    class FulfillmentType(models.TextChoices):
        PICKUP = 'pickup'
        DELIVERY = 'delivery'
        SHIPPING = 'shipping'

    tenant_id = models.CharField(max_length=64, db_index=True)
    order_number = models.CharField(max_length=64)
    external_order_id = models.CharField(max_length=64, db_index=True)
    customer = models.ForeignKey(Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name='orders')
    customer_name = models.CharField(max_length=255, blank=True, default='')
    customer_email = models.CharField(max_length=255, null=True, blank=True)
    customer_phone = models.CharField(max_length=64, null=True, blank=True)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    fulfillment_type = models.CharField(max_length=16, choices=FulfillmentType.choices)
    order_date = models.DateTimeField()
    due_date = models.DateTimeField()
    pickup_location = models.CharField(max_length=255, null=True, blank=True)

    shipping_name = models.CharField(max_length=255, null=True, blank=True)
    shipping_address1 = models.CharField(max_length=255, null=True, blank=True)
    shipping_address2 = models.CharField(max_length=255, null=True, blank=True)
    shipping_city = models.CharField(max_length=128, null=True, blank=True)
    shipping_province = models.CharField(max_length=128, null=True, blank=True)
    shipping_zip = models.CharField(max_length=32, null=True, blank=True)
    shipping_country = models.CharField(max_length=128, null=True, blank=True)
    shipping_phone = models.CharField(max_length=64, null=True, blank=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=8, default='USD')

    financial_status = models.CharField(max_length=32, null=True, blank=True)
    platform_fulfillment_status = models.CharField(max_length=32, null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=64, null=True, blank=True)
    external_tags = models.TextField(blank=True, default='')

    correlation_token = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'external_order_id'], name='uniq_order_tenant_external'),
        ]

    def __str__(self):
        return f"Order {self.order_number} ({self.tenant_id})"


class OrderItem(models.Model):
    class ItemType(models.TextChoices):
        PRODUCT = 'product'
        CUSTOM = 'custom'

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    tenant_id = models.CharField(max_length=64)
    item_type = models.CharField(max_length=16, choices=ItemType.choices)
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    variant = models.ForeignKey(ProductVariant, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    matched_via = models.CharField(max_length=16, null=True, blank=True)

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    external_item_id = models.CharField(max_length=64, null=True, blank=True)
    external_product_id = models.CharField(max_length=64, null=True, blank=True)
    external_variant_id = models.CharField(max_length=64, null=True, blank=True)
    sku = models.CharField(max_length=128, blank=True, default='')
    display_order = models.PositiveIntegerField(default=0)

    correlation_token = models.CharField(max_length=80, null=True, blank=True, db_index=True)

    class Meta:
        ordering = ['display_order', 'id']

    def __str__(self):
        return f"{self.quantity} × {self.name}"


class Note(models.Model):
    class EntityType(models.TextChoices):
        ORDER = 'order'
        ORDER_ITEM = 'order_item'

    class NoteType(models.TextChoices):
        GIFT_NOTE = 'gift_note'
        HANDWRITTEN_CARD = 'handwritten_card'
        DELIVERY_INSTRUCTION = 'delivery_instruction'
        ORDER_NOTE = 'order_note'
        CUSTOM_ATTRIBUTE = 'custom_attribute'

    class Visibility(models.TextChoices):
        INTERNAL = 'internal'
        CUSTOMER = 'customer'

    SOURCE_PLATFORM = 'platform'

    tenant_id = models.CharField(max_length=64)
    entity_type = models.CharField(max_length=16, choices=EntityType.choices)
    entity_id = models.BigIntegerField()
    note_type = models.CharField(max_length=32, choices=NoteType.choices)
    source = models.CharField(max_length=16, default=SOURCE_PLATFORM)
    title = models.CharField(max_length=255, blank=True, default='')
    content = models.TextField()
    visibility = models.CharField(max_length=16, choices=Visibility.choices, default=Visibility.INTERNAL)
    priority = models.PositiveSmallIntegerField(default=0)
    attribute_name = models.CharField(max_length=255, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['tenant_id', 'entity_type', 'entity_id'], name='note_entity_idx')]


class Tag(models.Model):
    tenant_id = models.CharField(max_length=64)
    name = models.CharField(max_length=128)
    display_name = models.CharField(max_length=128)
    usage_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'name'], name='uniq_tag_tenant_name'),
        ]

    def __str__(self):
        return self.display_name


class Taggable(models.Model):
    tag = models.ForeignKey(Tag, on_delete=models.CASCADE, related_name='links')
    taggable_type = models.CharField(max_length=32)
    taggable_id = models.BigIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['tag', 'taggable_type', 'taggable_id'], name='uniq_taggable'),
        ]
