from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('shopsync', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='platformintegration',
            name='last_customer_sync_at',
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AlterField(
            model_name='syncjob',
            name='job_type',
            field=models.CharField(choices=[
                ('orders_full', 'Orders Full'),
                ('orders_incremental', 'Orders Incremental'),
                ('products_full', 'Products Full'),
                ('products_incremental', 'Products Incremental'),
                ('customers_full', 'Customers Full'),
                ('customers_incremental', 'Customers Incremental'),
            ], max_length=32),
        ),
        migrations.AlterField(
            model_name='mirrorrecord',
            name='kind',
            field=models.CharField(
                choices=[('order', 'Order'), ('product', 'Product'), ('customer', 'Customer')], max_length=16,
            ),
        ),
        migrations.AddConstraint(
            model_name='order',
            constraint=models.UniqueConstraint(
                fields=('tenant_id', 'external_order_id'), name='uniq_order_tenant_external',
            ),
        ),
    ]
