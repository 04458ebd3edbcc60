import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='PlatformIntegration',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64, unique=True)),
                ('shop_domain', models.CharField(max_length=255)),
                ('access_token', models.CharField(max_length=255)),
                ('is_active', models.BooleanField(default=True)),
                ('last_order_sync_at', models.DateTimeField(blank=True, null=True)),
                ('last_product_sync_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name='SyncJob',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tenant_id', models.CharField(db_index=True, max_length=64)),
                ('job_type', models.CharField(choices=[
                    ('orders_full', 'Orders Full'),
                    ('orders_incremental', 'Orders Incremental'),
                    ('products_full', 'Products Full'),
                    ('products_incremental', 'Products Incremental'),
                ], max_length=32)),
                ('status', models.CharField(choices=[
                    ('pending', 'Pending'),
                    ('running', 'Running'),
                    ('paused', 'Paused'),
                    ('completed', 'Completed'),
                    ('failed', 'Failed'),
                    ('cancelled', 'Cancelled'),
                ], default='pending', max_length=16)),
                ('cursor', models.TextField(blank=True, null=True)),
                ('current_page', models.PositiveIntegerField(default=0)),
                ('total_items', models.PositiveIntegerField(blank=True, null=True)),
                ('processed_items', models.PositiveIntegerField(default=0)),
                ('success_count', models.PositiveIntegerField(default=0)),
                ('error_count', models.PositiveIntegerField(default=0)),
                ('skip_count', models.PositiveIntegerField(default=0)),
                ('fetch_error_count', models.PositiveIntegerField(default=0)),
                ('reconcile_error_count', models.PositiveIntegerField(default=0)),
                ('errors', models.JSONField(blank=True, default=list)),
                ('last_error', models.TextField(blank=True, null=True)),
                ('config', models.JSONField(blank=True, default=dict)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('last_activity_at', models.DateTimeField(blank=True, null=True)),
                ('estimated_completion_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_by', models.CharField(blank=True, max_length=64, null=True)),
            ],
            options={
                'indexes': [models.Index(fields=['tenant_id', 'status'], name='syncjob_tenant_status_idx')],
            },
        ),
        migrations.CreateModel(
            name='MirrorRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64)),
                ('kind', models.CharField(choices=[('order', 'Order'), ('product', 'Product')], max_length=16)),
                ('external_id', models.CharField(max_length=64)),
                ('external_updated_at', models.DateTimeField(blank=True, null=True)),
                ('payload', models.JSONField(default=dict)),
                ('internal_id', models.BigIntegerField(blank=True, null=True)),
                ('synced_at', models.DateTimeField()),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(
                        fields=('tenant_id', 'kind', 'external_id'), name='uniq_mirror_tenant_kind_external',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Customer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64)),
                ('external_id', models.CharField(blank=True, max_length=64, null=True)),
                ('email', models.CharField(blank=True, max_length=255, null=True)),
                ('phone', models.CharField(blank=True, max_length=64, null=True)),
                ('first_name', models.CharField(blank=True, default='', max_length=255)),
                ('last_name', models.CharField(blank=True, default='', max_length=255)),
                ('is_guest', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64)),
                ('name', models.CharField(max_length=255)),
                ('product_type', models.CharField(blank=True, default='', max_length=255)),
                ('vendor', models.CharField(blank=True, default='', max_length=255)),
                ('description', models.TextField(blank=True, default='')),
                ('external_product_id', models.CharField(blank=True, max_length=64, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='ProductVariant',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('sku', models.CharField(blank=True, default='', max_length=128)),
                ('price', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('sort_order', models.PositiveIntegerField(default=0)),
                ('is_default', models.BooleanField(default=False)),
                ('external_variant_id', models.CharField(blank=True, max_length=64, null=True)),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='variants', to='shopsync.product',
                )),
            ],
            options={
                'ordering': ['sort_order', 'id'],
            },
        ),
        migrations.CreateModel(
            name='VariantMapping',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64)),
                ('external_variant_id', models.CharField(max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('variant', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='mappings', to='shopsync.productvariant',
                )),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'external_variant_id'), name='uniq_variant_mapping'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProductMapping',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64)),
                ('external_product_id', models.CharField(max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='mappings', to='shopsync.product',
                )),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'external_product_id'), name='uniq_product_mapping'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LegacyProductMapping',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64)),
                ('external_product_id', models.CharField(blank=True, max_length=64, null=True)),
                ('external_variant_id', models.CharField(blank=True, max_length=64, null=True)),
                ('product', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.CASCADE,
                    related_name='+', to='shopsync.product',
                )),
                ('variant', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.CASCADE,
                    related_name='+', to='shopsync.productvariant',
                )),
            ],
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64)),
                ('order_number', models.CharField(max_length=64)),
                ('external_order_id', models.CharField(db_index=True, max_length=64)),
                ('customer_name', models.CharField(blank=True, default='', max_length=255)),
                ('customer_email', models.CharField(blank=True, max_length=255, null=True)),
                ('customer_phone', models.CharField(blank=True, max_length=64, null=True)),
                ('status', models.CharField(choices=[
                    ('pending', 'Pending'),
                    ('confirmed', 'Confirmed'),
                    ('completed', 'Completed'),
                    ('cancelled', 'Cancelled'),
                ], default='pending', max_length=16)),
                ('payment_status', models.CharField(choices=[
                    ('unpaid', 'Unpaid'),
                    ('paid', 'Paid'),
                    ('partially_paid', 'Partially Paid'),
                    ('refunded', 'Refunded'),
                ], default='unpaid', max_length=16)),
                ('fulfillment_type', models.CharField(choices=[
                    ('pickup', 'Pickup'),
                    ('delivery', 'Delivery'),
                    ('shipping', 'Shipping'),
                ], max_length=16)),
                ('order_date', models.DateTimeField()),
                ('due_date', models.DateTimeField()),
                ('pickup_location', models.CharField(blank=True, max_length=255, null=True)),
                ('shipping_name', models.CharField(blank=True, max_length=255, null=True)),
                ('shipping_address1', models.CharField(blank=True, max_length=255, null=True)),
                ('shipping_address2', models.CharField(blank=True, max_length=255, null=True)),
                ('shipping_city', models.CharField(blank=True, max_length=128, null=True)),
                ('shipping_province', models.CharField(blank=True, max_length=128, null=True)),
                ('shipping_zip', models.CharField(blank=True, max_length=32, null=True)),
                ('shipping_country', models.CharField(blank=True, max_length=128, null=True)),
                ('shipping_phone', models.CharField(blank=True, max_length=64, null=True)),
                ('subtotal', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('tax_amount', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('discount_amount', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('shipping_amount', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('total', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('currency', models.CharField(default='USD', max_length=8)),
                ('financial_status', models.CharField(blank=True, max_length=32, null=True)),
                ('platform_fulfillment_status', models.CharField(blank=True, max_length=32, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancel_reason', models.CharField(blank=True, max_length=64, null=True)),
                ('external_tags', models.TextField(blank=True, default='')),
                ('correlation_token', models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('customer', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name='orders', to='shopsync.customer',
                )),
            ],
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64)),
                ('item_type', models.CharField(choices=[('product', 'Product'), ('custom', 'Custom')], max_length=16)),
                ('matched_via', models.CharField(blank=True, max_length=16, null=True)),
                ('name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, default='')),
                ('quantity', models.PositiveIntegerField(default=1)),
                ('unit_price', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('subtotal', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('external_item_id', models.CharField(blank=True, max_length=64, null=True)),
                ('external_product_id', models.CharField(blank=True, max_length=64, null=True)),
                ('external_variant_id', models.CharField(blank=True, max_length=64, null=True)),
                ('sku', models.CharField(blank=True, default='', max_length=128)),
                ('display_order', models.PositiveIntegerField(default=0)),
                ('correlation_token', models.CharField(blank=True, db_index=True, max_length=80, null=True)),
                ('order', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='items', to='shopsync.order',
                )),
                ('product', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name='+', to='shopsync.product',
                )),
                ('variant', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name='+', to='shopsync.productvariant',
                )),
            ],
            options={
                'ordering': ['display_order', 'id'],
            },
        ),
        migrations.CreateModel(
            name='Note',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64)),
                ('entity_type', models.CharField(
                    choices=[('order', 'Order'), ('order_item', 'Order Item')], max_length=16,
                )),
                ('entity_id', models.BigIntegerField()),
                ('note_type', models.CharField(choices=[
                    ('gift_note', 'Gift Note'),
                    ('handwritten_card', 'Handwritten Card'),
                    ('delivery_instruction', 'Delivery Instruction'),
                    ('order_note', 'Order Note'),
                    ('custom_attribute', 'Custom Attribute'),
                ], max_length=32)),
                ('source', models.CharField(default='platform', max_length=16)),
                ('title', models.CharField(blank=True, default='', max_length=255)),
                ('content', models.TextField()),
                ('visibility', models.CharField(
                    choices=[('internal', 'Internal'), ('customer', 'Customer')], default='internal', max_length=16,
                )),
                ('priority', models.PositiveSmallIntegerField(default=0)),
                ('attribute_name', models.CharField(blank=True, max_length=255, null=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'indexes': [models.Index(fields=['tenant_id', 'entity_type', 'entity_id'], name='note_entity_idx')],
            },
        ),
        migrations.CreateModel(
            name='Tag',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(max_length=64)),
                ('name', models.CharField(max_length=128)),
                ('display_name', models.CharField(max_length=128)),
                ('usage_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'name'), name='uniq_tag_tenant_name'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Taggable',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('taggable_type', models.CharField(max_length=32)),
                ('taggable_id', models.BigIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('tag', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='links', to='shopsync.tag',
                )),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('tag', 'taggable_type', 'taggable_id'), name='uniq_taggable'),
                ],
            },
        ),
    ]
