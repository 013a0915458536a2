"""Filesystem blob store for source images."""

import hashlib
import os
from pathlib import Path
from typing import Optional

from ..utils.config import settings
from ..utils.error_handler import StoreError
from ..utils.log import get_logger

BLOB_SCHEME = "blob:"

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
}


class LocalBlobStore:
    """Content-addressed image files under a root directory.

    References look like ``blob:<sha256>.<ext>``; storing the same bytes
    twice yields the same reference.
    """

    def __init__(self, root: Optional[str] = None):
        self.logger = get_logger(__name__)
        self.root = Path(root or settings.BLOB_DIR)
        self.root.mkdir(parents=True, exist_ok=True)

    def store(self, data: bytes, content_type: str) -> str:
        digest = hashlib.sha256(data).hexdigest()
        filename = digest + _EXTENSIONS.get(content_type, ".bin")
        path = self.root / filename

        if not path.exists():
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            try:
                with open(tmp_path, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, path)
            except OSError as e:
                self.logger.error("Error writing blob", path=str(path), error=str(e))
                raise StoreError("Could not store image", details={"path": str(path)}) from e
            self.logger.debug("Blob stored", ref=BLOB_SCHEME + filename, size=len(data))

        return BLOB_SCHEME + filename

    def fetch(self, ref: str) -> bytes:
        path = self._path_for(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise StoreError("Image not found in blob store", details={"ref": ref}) from e
        except OSError as e:
            self.logger.error("Error reading blob", ref=ref, error=str(e))
            raise StoreError("Could not read image", details={"ref": ref}) from e

    def _path_for(self, ref: str) -> Path:
        if not ref.startswith(BLOB_SCHEME):
            raise StoreError("Not a blob reference", details={"ref": ref})
        filename = ref[len(BLOB_SCHEME):]
        if not filename or "/" in filename or "\\" in filename or filename.startswith("."):
            raise StoreError("Malformed blob reference", details={"ref": ref})
        return self.root / filename
