"""Exact-then-fuzzy reconciliation of extracted names against the catalog."""

from dataclasses import dataclass
from typing import List, Optional

from rapidfuzz import fuzz

from ..core.constants import CATALOG_MIN_NAME_LENGTH, FUZZY_MIN_QUERY_LENGTH, FUZZY_QUERY_TOKENS
from ..core.types import CardRecord, CatalogEntry
from ..utils.error_handler import CatalogUnavailable
from ..utils.log import LoggerMixin

EXACT = "exact"
FUZZY = "fuzzy"

# CardRecord attribute <- CatalogEntry attribute
_OVERRIDES = (
    ("name", "name"),
    ("type", "type"),
    ("attribute", "attribute"),
    ("level", "level"),
    ("attack", "attack"),
    ("defense", "defense"),
    ("description", "description"),
    ("rarity", "rarity"),
    ("external_code", "external_code"),
    ("source_image_ref", "image_ref"),
)


@dataclass
class CatalogMatch:
    entry: CatalogEntry
    strategy: str
    ambiguous: bool = False
    similarity: Optional[float] = None


def similarity(a: str, b: str) -> float:
    return round(fuzz.ratio(a.lower(), b.lower()), 2)


def merge_into_record(record: CardRecord, entry: CatalogEntry) -> CardRecord:
    """Overlay every field the catalog supplies onto ``record``.

    A field counts as supplied when it is not None, so a catalog ATK of 0
    still overrides a locally read value.
    """
    for record_attr, entry_attr in _OVERRIDES:
        value = getattr(entry, entry_attr)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        setattr(record, record_attr, value)
    return record


class CatalogResolver(LoggerMixin):
    """Resolves a candidate name to at most one catalog entry."""

    def __init__(self, catalog):
        self.catalog = catalog

    async def resolve(self, name: Optional[str], scan_id: Optional[str] = None) -> Optional[CatalogMatch]:
        name = (name or "").strip()
        if len(name) <= CATALOG_MIN_NAME_LENGTH:
            self.logger.debug("Name too short for catalog lookup", scan_id=scan_id, name=name)
            return None

        match = await self._exact(name, scan_id)
        if match is None:
            match = await self._fuzzy(name, scan_id)

        if match is None:
            self.logger.info("No catalog match", scan_id=scan_id, name=name)
        else:
            self.logger.info(
                "Catalog match",
                scan_id=scan_id,
                name=name,
                matched=match.entry.name,
                strategy=match.strategy,
                external_code=match.entry.external_code,
                ambiguous=match.ambiguous,
                similarity=match.similarity,
            )
        return match

    async def _exact(self, name: str, scan_id: Optional[str]) -> Optional[CatalogMatch]:
        results = await self._lookup(self.catalog.lookup_exact, name, EXACT, scan_id)
        if not results:
            return None
        entry = results[0]
        return CatalogMatch(entry=entry, strategy=EXACT, similarity=similarity(name, entry.name))

    async def _fuzzy(self, name: str, scan_id: Optional[str]) -> Optional[CatalogMatch]:
        partial = " ".join(name.split()[:FUZZY_QUERY_TOKENS])
        if len(partial) <= FUZZY_MIN_QUERY_LENGTH:
            return None

        results = await self._lookup(self.catalog.lookup_fuzzy, partial, FUZZY, scan_id)
        if not results:
            return None

        lowered = name.lower()
        for entry in results:
            candidate = entry.name.lower()
            if lowered in candidate or candidate in lowered:
                return CatalogMatch(entry=entry, strategy=FUZZY, similarity=similarity(name, entry.name))

        # No containment match: the first result wins, flagged for review
        entry = results[0]
        self.logger.warning(
            "Ambiguous fuzzy catalog match",
            scan_id=scan_id,
            name=name,
            query=partial,
            chosen=entry.name,
            candidates=len(results),
        )
        return CatalogMatch(entry=entry, strategy=FUZZY, ambiguous=True, similarity=similarity(name, entry.name))

    async def _lookup(self, lookup, query: str, strategy: str, scan_id: Optional[str]) -> List[CatalogEntry]:
        try:
            results = await lookup(query)
        except CatalogUnavailable as e:
            self.logger.warning(
                "Catalog unavailable, treating as no match",
                scan_id=scan_id,
                strategy=strategy,
                query=query,
                error=e.message,
            )
            return []
        # Nameless entries would match any name by containment
        return [entry for entry in results if entry.name and entry.name.strip()]
