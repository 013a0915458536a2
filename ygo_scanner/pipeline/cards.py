"""Saving identified cards without disturbing records other scans point at."""

from dataclasses import replace
from typing import Any, Optional

from ..core.constants import (
    DEFAULT_RARITY,
    PLACEHOLDER_DESCRIPTION,
    PLACEHOLDER_NAME_PREFIX,
    UNKNOWN_TYPE,
)
from ..core.types import CardRecord
from ..utils.log import get_logger

logger = get_logger(__name__)

CARD_FIELDS = (
    "name", "type", "attribute", "level", "attack", "defense",
    "description", "rarity", "external_code", "source_image_ref",
)

# Values written when nothing better was known
_PLACEHOLDERS = {
    "type": UNKNOWN_TYPE,
    "description": PLACEHOLDER_DESCRIPTION,
    "rarity": DEFAULT_RARITY,
}


def is_placeholder_name(name: Optional[str]) -> bool:
    return not name or not name.strip() or name.startswith(PLACEHOLDER_NAME_PREFIX)


def _is_unset(field: str, value: Any) -> bool:
    if value is None:
        return True
    if field == "name":
        return is_placeholder_name(value)
    if isinstance(value, str) and not value.strip():
        return True
    return _PLACEHOLDERS.get(field) == value


def same_card(existing: CardRecord, fields: CardRecord) -> bool:
    """True when ``fields`` describe the card ``existing`` already records.

    Catalog codes decide when both sides have one; otherwise names are
    compared case-insensitively.
    """
    if existing.external_code and fields.external_code:
        return existing.external_code == fields.external_code
    if is_placeholder_name(existing.name) or is_placeholder_name(fields.name):
        return False
    return existing.name.casefold() == fields.name.casefold()


def refresh_card(existing: CardRecord, fields: CardRecord) -> CardRecord:
    """Overlay ``fields`` onto ``existing`` without erasing what it knows.

    Unset and placeholder values never replace populated ones. When the
    existing record carries a catalog code and ``fields`` does not, its
    values also win conflicts; ``fields`` only fills the gaps.
    """
    fields_authoritative = bool(fields.external_code) or not existing.external_code
    for field in CARD_FIELDS:
        new = getattr(fields, field)
        if _is_unset(field, new):
            continue
        old = getattr(existing, field)
        if _is_unset(field, old) or (fields_authoritative and field != "source_image_ref"):
            setattr(existing, field, new)
    return existing


def persist_card(
    store,
    fields: CardRecord,
    scan_id: Optional[str] = None,
    linked_id: Optional[str] = None,
    reuse_by_name: bool = False,
) -> CardRecord:
    """Save ``fields`` as the card for scan ``scan_id``.

    Precedence:
      1. The scan's linked card, refreshed in place when it is the same card.
         A linked card of a different identity is rewritten only when no
         other scan references it.
      2. A card with the same catalog code, refreshed in place.
      3. With ``reuse_by_name``, a card found by name, linked unchanged.
      4. A new card.
    """
    linked = store.get_card(linked_id) if linked_id else None
    if linked is not None:
        if same_card(linked, fields):
            return store.save_card(refresh_card(linked, fields))
        if not store.card_in_use(linked.id, exclude_scan_id=scan_id):
            # Only this scan points here; the record was a misidentification
            return store.save_card(replace(fields, id=linked.id, created_at=linked.created_at))
        logger.info(
            "Linked card shared with other scans, not rewriting",
            scan_id=scan_id,
            card_id=linked.id,
            card_name=linked.name,
            new_name=fields.name,
        )

    existing = store.find_card_by_external_code(fields.external_code) if fields.external_code else None
    if existing is not None:
        return store.save_card(refresh_card(existing, fields))

    if reuse_by_name:
        by_name = store.find_card_by_name(fields.name)
        if by_name is not None:
            return by_name

    return store.save_card(fields)
