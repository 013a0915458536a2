"""Persistence for scans, cards and source images."""

from .blobs import LocalBlobStore
from .records import RecordStore

__all__ = ["LocalBlobStore", "RecordStore"]
