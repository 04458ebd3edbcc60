import pytest

from shopsync.mapping import MappingResolver
from shopsync.models import LegacyProductMapping, Product, ProductMapping, ProductVariant, VariantMapping

TENANT = 'tenant-t'

pytestmark = pytest.mark.django_db


@pytest.fixture
def catalog():
    product = Product.objects.create(tenant_id=TENANT, name='Rose Bouquet')
    small = ProductVariant.objects.create(product=product, name='Small', sort_order=1, is_default=True)
    large = ProductVariant.objects.create(product=product, name='Large', sort_order=2, external_variant_id='V2')
    return product, small, large


class TestPrecedence:
    def test_variant_mapping_wins_over_product_mapping(self, catalog):
        product, small, large = catalog
        VariantMapping.objects.create(tenant_id=TENANT, external_variant_id='V1', variant=large)
        ProductMapping.objects.create(tenant_id=TENANT, external_product_id='P1', product=product)

        resolution = MappingResolver(TENANT).resolve('P1', 'V1')

        assert resolution.matched_via == 'variant'
        assert resolution.variant_id == large.pk
        assert resolution.product_id == product.pk

    def test_product_mapping_wins_over_legacy(self, catalog):
        product, small, large = catalog
        other = Product.objects.create(tenant_id=TENANT, name='Legacy product')
        ProductMapping.objects.create(tenant_id=TENANT, external_product_id='P1', product=product)
        LegacyProductMapping.objects.create(tenant_id=TENANT, external_product_id='P1', product=other)

        resolution = MappingResolver(TENANT).resolve('P1', 'V9')

        assert resolution.matched_via == 'product'
        assert resolution.product_id == product.pk

    def test_legacy_used_when_nothing_else_matches(self, catalog):
        product, small, large = catalog
        LegacyProductMapping.objects.create(tenant_id=TENANT, external_variant_id='V7', variant=large)

        resolution = MappingResolver(TENANT).resolve('P7', 'V7')

        assert resolution.matched_via == 'legacy'
        assert resolution.variant_id == large.pk
        assert resolution.product_id == product.pk

    def test_no_match_is_unresolved_not_error(self):
        resolution = MappingResolver(TENANT).resolve('P404', 'V404')
        assert resolution.resolved is False
        assert resolution.product_id is None
        assert resolution.variant_id is None

    def test_other_tenants_mappings_are_ignored(self, catalog):
        product, small, large = catalog
        VariantMapping.objects.create(tenant_id='someone-else', external_variant_id='V1', variant=large)
        assert MappingResolver(TENANT).resolve('P1', 'V1').resolved is False


class TestProductLevelVariantChoice:
    @pytest.fixture(autouse=True)
    def product_mapping(self, catalog):
        ProductMapping.objects.create(tenant_id=TENANT, external_product_id='P1', product=catalog[0])

    def test_matches_by_external_variant_id(self, catalog):
        assert MappingResolver(TENANT).resolve('P1', 'V2').variant_id == catalog[2].pk

    def test_matches_by_variant_title(self, catalog):
        resolution = MappingResolver(TENANT).resolve('P1', 'V99', variant_title='large')
        assert resolution.variant_id == catalog[2].pk

    def test_falls_back_to_default_variant(self, catalog):
        resolution = MappingResolver(TENANT).resolve('P1', 'V99', variant_title='Medium')
        assert resolution.variant_id == catalog[1].pk

    def test_falls_back_to_first_variant_without_default(self, catalog):
        ProductVariant.objects.filter(pk=catalog[1].pk).update(is_default=False)
        resolution = MappingResolver(TENANT).resolve('P1', None)
        assert resolution.variant_id == catalog[1].pk


class TestPriming:
    def test_primed_resolver_does_not_query_per_item(self, catalog, django_assert_num_queries):
        product, small, large = catalog
        VariantMapping.objects.create(tenant_id=TENANT, external_variant_id='V1', variant=large)
        resolver = MappingResolver(TENANT)
        resolver.prime([('P1', 'V1'), ('P2', 'V2')])

        with django_assert_num_queries(0):
            resolver.resolve('P1', 'V1')
            resolver.resolve('P2', 'V2')
