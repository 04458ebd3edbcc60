import logging

from django.db.models import Count, IntegerField, OuterRef, Subquery, Value
from django.db.models.functions import Coalesce

from .models import Tag, Taggable

logger = logging.getLogger(__name__)


def parse_tags(value: str) -> dict:
    """
    Split a comma-separated tag string into {normalized name: display name}.

    Names are compared lowercased; the first spelling seen is kept for display.
    """
    tags = {}
    for raw in (value or '').split(','):
        display = raw.strip()
        if not display:
            continue
        tags.setdefault(display.lower()[:128], display[:128])
    return tags


def get_or_create_tags(tenant_id: str, tags: dict) -> dict:
    """Return {name: Tag} for every name in `tags`, creating missing ones."""
    if not tags:
        return {}
    existing = {tag.name: tag for tag in Tag.objects.filter(tenant_id=tenant_id, name__in=list(tags))}
    missing = [
        Tag(tenant_id=tenant_id, name=name, display_name=display)
        for name, display in tags.items() if name not in existing
    ]
    if missing:
        # Another worker may create the same tag concurrently.
        Tag.objects.bulk_create(missing, ignore_conflicts=True)
        existing = {tag.name: tag for tag in Tag.objects.filter(tenant_id=tenant_id, name__in=list(tags))}
    return existing


def refresh_usage_counts(tag_ids) -> None:
    links = Taggable.objects.filter(tag=OuterRef('pk')).values('tag').annotate(total=Count('pk')).values('total')
    Tag.objects.filter(pk__in=list(tag_ids)).update(
        usage_count=Coalesce(Subquery(links, output_field=IntegerField()), Value(0)),
    )


def link_tags(tenant_id: str, taggable_type: str, tag_strings: dict) -> int:
    """
    Link tags to entities given {entity id: tag string}. Returns new links.

    Existing links are left alone, so re-linking is a no-op. Usage counts are
    recomputed from the join rows after every link is written.
    """
    parsed = {entity_id: parse_tags(value) for entity_id, value in tag_strings.items()}
    all_tags = {}
    for tags in parsed.values():
        for name, display in tags.items():
            all_tags.setdefault(name, display)
    if not all_tags:
        return 0

    tags_by_name = get_or_create_tags(tenant_id, all_tags)
    wanted = {
        (tags_by_name[name].pk, entity_id)
        for entity_id, tags in parsed.items()
        for name in tags
    }
    present = set(
        Taggable.objects.filter(
            taggable_type=taggable_type,
            taggable_id__in=list(parsed),
            tag_id__in=[tag.pk for tag in tags_by_name.values()],
        ).values_list('tag_id', 'taggable_id')
    )
    new_links = [
        Taggable(tag_id=tag_id, taggable_type=taggable_type, taggable_id=entity_id)
        for tag_id, entity_id in sorted(wanted - present)
    ]
    Taggable.objects.bulk_create(new_links, ignore_conflicts=True)

    refresh_usage_counts(tag.pk for tag in tags_by_name.values())
    logger.debug(
        "Linked %d new tags across %d %s rows for tenant %s.",
        len(new_links), len(parsed), taggable_type, tenant_id,
    )
    return len(new_links)
