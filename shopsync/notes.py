import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from django.db.models import Q

from .models import Note
from .transformer import LineItemDraft, OrderDraft

logger = logging.getLogger(__name__)

GIFT_PRIORITY = 10
DEFAULT_PRIORITY = 5


@dataclass
class NoteDraft:
    entity_type: str
    entity_id: int
    note_type: str
    title: str
    content: str
    visibility: str
    priority: int = DEFAULT_PRIORITY
    attribute_name: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def identity(self) -> tuple:
        return self.entity_type, self.entity_id, self.attribute_name, self.content


def classify_note_attribute(name: str) -> tuple[str, str, str]:
    """
    Classify an order-level attribute by keywords in its name.

    Returns (note_type, title, visibility). The keyword rules are a
    heuristic; ambiguous names are classified by the first rule that hits.
    """
    lowered = (name or '').lower()
    if 'gift' in lowered and 'note' in lowered:
        return Note.NoteType.GIFT_NOTE, 'Gift Note', Note.Visibility.CUSTOMER
    if 'card' in lowered or 'message' in lowered:
        return Note.NoteType.HANDWRITTEN_CARD, 'Card Message', Note.Visibility.CUSTOMER
    if 'delivery' in lowered:
        return Note.NoteType.DELIVERY_INSTRUCTION, 'Delivery Instructions', Note.Visibility.INTERNAL
    if 'special' in lowered or 'instruction' in lowered:
        return Note.NoteType.ORDER_NOTE, 'Special Instructions', Note.Visibility.INTERNAL
    return Note.NoteType.CUSTOM_ATTRIBUTE, name, Note.Visibility.INTERNAL


def classify_line_item_property(name: str, item_name: str) -> Optional[tuple[str, str, str]]:
    """Like classify_note_attribute, for line-item properties. None means skip."""
    if not name or name.startswith('_'):
        return None
    lowered = name.lower()
    if 'zapiet' in lowered:
        return None
    if 'gift' in lowered and ('note' in lowered or 'message' in lowered):
        return Note.NoteType.GIFT_NOTE, f"Gift Note - {item_name}", Note.Visibility.CUSTOMER
    if 'card' in lowered:
        return Note.NoteType.HANDWRITTEN_CARD, f"Card Message - {item_name}", Note.Visibility.CUSTOMER
    if 'delivery' in lowered or 'instruction' in lowered:
        return Note.NoteType.DELIVERY_INSTRUCTION, name, Note.Visibility.INTERNAL
    return Note.NoteType.ORDER_NOTE, f"{name} - {item_name}", Note.Visibility.INTERNAL


def _priority(note_type: str) -> int:
    return GIFT_PRIORITY if note_type == Note.NoteType.GIFT_NOTE else DEFAULT_PRIORITY


def order_notes(order_id: int, draft: OrderDraft) -> list[NoteDraft]:
    notes = []
    if draft.note:
        notes.append(NoteDraft(
            entity_type=Note.EntityType.ORDER,
            entity_id=order_id,
            note_type=Note.NoteType.ORDER_NOTE,
            title='Order Notes',
            content=draft.note,
            visibility=Note.Visibility.INTERNAL,
            metadata={'external_order_id': draft.external_order_id},
        ))

    for attr in draft.note_attributes:
        name = attr.get('name') or attr.get('key')
        value = attr.get('value')
        if not name or value in (None, ''):
            continue
        note_type, title, visibility = classify_note_attribute(name)
        notes.append(NoteDraft(
            entity_type=Note.EntityType.ORDER,
            entity_id=order_id,
            note_type=note_type,
            title=title,
            content=str(value),
            visibility=visibility,
            priority=_priority(note_type),
            attribute_name=name,
            metadata={'external_order_id': draft.external_order_id},
        ))
    return notes


def item_notes(item_id: int, item: LineItemDraft, external_order_id: str) -> list[NoteDraft]:
    notes = []
    for prop in item.properties:
        name = prop.get('name') or prop.get('key')
        value = prop.get('value')
        if value in (None, ''):
            continue
        classified = classify_line_item_property(name, item.name)
        if classified is None:
            continue
        note_type, title, visibility = classified
        notes.append(NoteDraft(
            entity_type=Note.EntityType.ORDER_ITEM,
            entity_id=item_id,
            note_type=note_type,
            title=title,
            content=str(value),
            visibility=visibility,
            priority=_priority(note_type),
            attribute_name=name,
            metadata={
                'external_order_id': external_order_id,
                'external_item_id': item.external_item_id,
                'line_item_name': item.name,
            },
        ))
    return notes


def dedupe(notes: Iterable[NoteDraft]) -> list[NoteDraft]:
    unique = {}
    for note in notes:
        unique.setdefault(note.identity, note)
    return list(unique.values())


def delete_platform_notes(tenant_id: str, order_ids: Iterable[int], item_ids: Iterable[int]) -> int:
    order_ids, item_ids = list(order_ids), list(item_ids)
    if not order_ids and not item_ids:
        return 0
    deleted, _ = Note.objects.filter(tenant_id=tenant_id, source=Note.SOURCE_PLATFORM).filter(
        Q(entity_type=Note.EntityType.ORDER, entity_id__in=order_ids)
        | Q(entity_type=Note.EntityType.ORDER_ITEM, entity_id__in=item_ids)
    ).delete()
    return deleted


def create_notes(tenant_id: str, notes: Iterable[NoteDraft]) -> int:
    rows = [
        Note(
            tenant_id=tenant_id,
            entity_type=note.entity_type,
            entity_id=note.entity_id,
            note_type=note.note_type,
            source=Note.SOURCE_PLATFORM,
            title=note.title[:255],
            content=note.content,
            visibility=note.visibility,
            priority=note.priority,
            attribute_name=note.attribute_name,
            metadata=note.metadata,
        )
        for note in dedupe(notes)
    ]
    Note.objects.bulk_create(rows)
    logger.debug("Created %d platform notes for tenant %s.", len(rows), tenant_id)
    return len(rows)
