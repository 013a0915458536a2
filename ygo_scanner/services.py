"""Wiring of the pipeline components from settings."""

from dataclasses import dataclass
from typing import Optional

from .imaging.preprocess import ImagePreprocessor
from .imaging.source import ImageSourceResolver
from .ocr.classifier import FieldClassifier
from .ocr.recognizer import TextRecognizer
from .pipeline.enhance import EnhancementOrchestrator, HeuristicIdentifier
from .pipeline.lifecycle import ScanLifecycleManager
from .pipeline.locks import ScanLockRegistry
from .pipeline.processing import ScanPipeline
from .resolve.catalog import CatalogClient
from .resolve.resolver import CatalogResolver
from .resolve.vision import VisionIdentifier
from .store.blobs import LocalBlobStore
from .store.records import RecordStore
from .utils.config import Settings, ensure_data_dirs, settings
from .utils.log import get_logger
from .utils.validation import validate_url

logger = get_logger(__name__)


@dataclass
class Services:
    store: RecordStore
    blob_store: LocalBlobStore
    catalog: CatalogClient
    recognizer: TextRecognizer
    lifecycle: ScanLifecycleManager
    enhancer: EnhancementOrchestrator

    async def aclose(self) -> None:
        await self.catalog.close()
        self.recognizer.close()


def build_services(config: Optional[Settings] = None, use_vision: Optional[bool] = None) -> Services:
    """Construct every collaborator once and hand them to the pipeline.

    The vision identifier is used for enhancement when ``use_vision`` is true,
    or when it is None and ``VISION_API_URL`` is configured.
    """
    config = config or settings
    ensure_data_dirs(config)

    catalog_url = validate_url(config.CATALOG_BASE_URL)
    store = RecordStore(config.STORE_DB_PATH)
    blob_store = LocalBlobStore(config.BLOB_DIR)
    catalog = CatalogClient(base_url=catalog_url, timeout_s=config.CATALOG_TIMEOUT_S)
    recognizer = TextRecognizer(
        language=config.OCR_LANGUAGE,
        timeout_s=config.OCR_TIMEOUT_S,
        max_workers=config.OCR_MAX_WORKERS,
        tesseract_cmd=config.TESSERACT_PATH,
    )
    preprocessor = ImagePreprocessor()
    classifier = FieldClassifier()
    resolver = CatalogResolver(catalog)
    source_resolver = ImageSourceResolver(blob_store=blob_store)
    locks = ScanLockRegistry(store, stale_after_s=config.SCAN_CLAIM_TTL_S)

    if use_vision is None:
        use_vision = bool(config.VISION_API_URL)
    if use_vision:
        identifier = VisionIdentifier(
            api_url=validate_url(config.VISION_API_URL or ""),
            api_key=config.VISION_API_KEY,
            model=config.VISION_MODEL,
            timeout_s=config.VISION_TIMEOUT_S,
        )
    else:
        identifier = HeuristicIdentifier(preprocessor, recognizer, classifier)

    lifecycle = ScanLifecycleManager(
        store=store,
        pipeline=ScanPipeline(preprocessor, recognizer, classifier, resolver),
        source_resolver=source_resolver,
        blob_store=blob_store,
        locks=locks,
        embed_source_images=config.EMBED_SOURCE_IMAGES,
    )
    enhancer = EnhancementOrchestrator(
        store=store,
        source_resolver=source_resolver,
        identifier=identifier,
        resolver=resolver,
        locks=locks,
    )

    logger.info(
        "Services built",
        db_path=config.STORE_DB_PATH,
        blob_dir=config.BLOB_DIR,
        catalog_url=catalog_url,
        identifier=type(identifier).__name__,
    )
    return Services(
        store=store,
        blob_store=blob_store,
        catalog=catalog,
        recognizer=recognizer,
        lifecycle=lifecycle,
        enhancer=enhancer,
    )
