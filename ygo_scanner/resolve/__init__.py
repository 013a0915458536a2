"""Card resolution against the external catalog and vision services."""

from .catalog import CatalogClient
from .resolver import CatalogMatch, CatalogResolver, merge_into_record
from .vision import VisionIdentifier

__all__ = [
    "CatalogClient",
    "CatalogMatch",
    "CatalogResolver",
    "VisionIdentifier",
    "merge_into_record",
]
