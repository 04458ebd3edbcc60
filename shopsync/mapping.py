import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from django.db.models import Q

from .models import LegacyProductMapping, ProductMapping, ProductVariant, VariantMapping

logger = logging.getLogger(__name__)

MATCHED_VIA_VARIANT = 'variant'
MATCHED_VIA_PRODUCT = 'product'
MATCHED_VIA_LEGACY = 'legacy'


@dataclass(frozen=True)
class Resolution:
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    matched_via: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.matched_via is not None


UNRESOLVED = Resolution()


def _key(value) -> Optional[str]:
    return str(value) if value not in (None, '') else None


class MappingResolver:
    """
    Resolve platform product/variant ids to catalog rows for one tenant.

    Lookup order, first hit wins:
      1. VariantMapping on the external variant id.
      2. ProductMapping on the external product id, then a variant of that
         product chosen by external variant id, variant title or item title,
         else its default variant, else its first variant.
      3. LegacyProductMapping, by variant id and then by product id.
    Anything else is unresolved, which is not an error.

    Mapping tables are loaded in bulk by `prime()` and cached for the
    lifetime of the resolver, so one resolver should serve one batch.
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._variant_map = {}
        self._product_map = {}
        self._variants_by_product = {}
        self._legacy_by_variant = {}
        self._legacy_by_product = {}
        self._primed_product_ids = set()
        self._primed_variant_ids = set()

    def prime(self, references: Iterable[tuple]):
        """Bulk-load mappings for (external_product_id, external_variant_id) pairs."""
        product_ids, variant_ids = set(), set()
        for product_id, variant_id in references:
            if _key(product_id):
                product_ids.add(_key(product_id))
            if _key(variant_id):
                variant_ids.add(_key(variant_id))
        product_ids -= self._primed_product_ids
        variant_ids -= self._primed_variant_ids
        if not product_ids and not variant_ids:
            return

        if variant_ids:
            mappings = VariantMapping.objects.filter(
                tenant_id=self.tenant_id, external_variant_id__in=variant_ids,
            ).select_related('variant')
            for mapping in mappings:
                self._variant_map[mapping.external_variant_id] = (mapping.variant.product_id, mapping.variant_id)

        if product_ids:
            mappings = ProductMapping.objects.filter(tenant_id=self.tenant_id, external_product_id__in=product_ids)
            for mapping in mappings:
                self._product_map[mapping.external_product_id] = mapping.product_id
            missing = set(self._product_map.values()) - set(self._variants_by_product)
            for catalog_id in missing:
                self._variants_by_product[catalog_id] = []
            for variant in ProductVariant.objects.filter(product_id__in=missing).order_by('sort_order', 'id'):
                self._variants_by_product[variant.product_id].append(variant)

        legacy = LegacyProductMapping.objects.filter(tenant_id=self.tenant_id).filter(
            Q(external_variant_id__in=variant_ids) | Q(external_product_id__in=product_ids)
        ).select_related('variant').order_by('id')
        for mapping in legacy:
            if mapping.external_variant_id and mapping.external_variant_id in variant_ids:
                self._legacy_by_variant.setdefault(mapping.external_variant_id, mapping)
            if mapping.external_product_id and mapping.external_product_id in product_ids:
                self._legacy_by_product.setdefault(mapping.external_product_id, mapping)

        self._primed_product_ids |= product_ids
        self._primed_variant_ids |= variant_ids

    def resolve(self, external_product_id=None, external_variant_id=None,
                variant_title: str = None, item_title: str = None) -> Resolution:
        product_key = _key(external_product_id)
        variant_key = _key(external_variant_id)
        self.prime([(product_key, variant_key)])

        if variant_key in self._variant_map:
            catalog_product_id, catalog_variant_id = self._variant_map[variant_key]
            return Resolution(catalog_product_id, catalog_variant_id, MATCHED_VIA_VARIANT)

        if product_key in self._product_map:
            catalog_product_id = self._product_map[product_key]
            variant = self._match_variant(
                self._variants_by_product.get(catalog_product_id, []), variant_key, variant_title, item_title,
            )
            return Resolution(catalog_product_id, variant.id if variant else None, MATCHED_VIA_PRODUCT)

        legacy = self._legacy_by_variant.get(variant_key) or self._legacy_by_product.get(product_key)
        if legacy is not None and (legacy.product_id or legacy.variant_id):
            catalog_product_id = legacy.product_id or legacy.variant.product_id
            return Resolution(catalog_product_id, legacy.variant_id, MATCHED_VIA_LEGACY)

        logger.debug("No mapping for product=%s variant=%s (tenant %s).", product_key, variant_key, self.tenant_id)
        return UNRESOLVED

    @staticmethod
    def _match_variant(variants: list, variant_key: Optional[str], variant_title: Optional[str],
                       item_title: Optional[str]) -> Optional[ProductVariant]:
        if not variants:
            return None
        if variant_key:
            for variant in variants:
                if variant.external_variant_id == variant_key:
                    return variant
        for title in (variant_title, item_title):
            if not title:
                continue
            wanted = title.strip().lower()
            for variant in variants:
                if variant.name.strip().lower() == wanted:
                    return variant
        for variant in variants:
            if variant.is_default:
                return variant
        return variants[0]
