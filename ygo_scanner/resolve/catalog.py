"""YGOPRODeck catalog client for card resolution."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..core.constants import BACKOFF_S
from ..core.types import CatalogEntry
from ..utils.config import settings
from ..utils.error_handler import CatalogUnavailable
from ..utils.log import LoggerMixin
from ..utils.retry import RETRYABLE_STATUS

CARDINFO_PATH = "cardinfo.php"


def _to_entry(card: Dict[str, Any]) -> CatalogEntry:
    images = card.get("card_images") or []
    sets = card.get("card_sets") or []
    card_id = card.get("id")
    return CatalogEntry(
        name=card.get("name", ""),
        type=card.get("type"),
        attribute=card.get("attribute"),
        level=card.get("level"),
        attack=card.get("atk"),
        defense=card.get("def"),
        description=card.get("desc"),
        external_code=str(card_id) if card_id is not None else None,
        image_ref=images[0].get("image_url") if images else None,
        rarity=sets[0].get("set_rarity") if sets else None,
    )


class CatalogClient(LoggerMixin):
    """Client for the YGOPRODeck ``cardinfo`` endpoint.

    The catalog answers HTTP 400 when nothing matches the query; that is an
    empty result here, not an error.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s or settings.CATALOG_TIMEOUT_S)
        self.session = session

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def lookup_exact(self, name: str) -> List[CatalogEntry]:
        return await self._search({"name": name})

    async def lookup_fuzzy(self, partial: str) -> List[CatalogEntry]:
        return await self._search({"fname": partial})

    async def _search(self, params: Dict[str, str]) -> List[CatalogEntry]:
        payload = await self._request_with_backoff(params)
        if payload is None:
            return []
        entries = [_to_entry(card) for card in payload.get("data") or []]
        self.logger.debug("Catalog lookup", params=params, results=len(entries))
        return entries

    async def _request_with_backoff(self, params: Dict[str, str]) -> Optional[Dict[str, Any]]:
        """Make the request, retrying 429/5xx and connection errors on the backoff schedule."""
        last_error: Optional[str] = None
        for attempt, delay in enumerate([0.0, *BACKOFF_S]):
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                status, payload = await self._request(params)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__
                self.logger.warning("Catalog request failed", params=params, attempt=attempt + 1, error=last_error)
                continue

            if status == 400:
                return None
            if status in RETRYABLE_STATUS:
                last_error = f"HTTP {status}"
                self.logger.warning("Catalog returned retryable status", params=params, attempt=attempt + 1, status=status)
                continue
            if status >= 400:
                raise CatalogUnavailable(f"Catalog returned HTTP {status}", details={"params": params})
            return payload

        raise CatalogUnavailable(
            "Catalog unavailable after retries",
            details={"params": params, "attempts": len(BACKOFF_S) + 1, "error": last_error},
        )

    async def _request(self, params: Dict[str, str]) -> Tuple[int, Optional[Dict[str, Any]]]:
        await self._ensure_session()
        url = f"{self.base_url}/{CARDINFO_PATH}"
        async with self.session.get(url, params=params) as response:
            if response.status != 200:
                return response.status, None
            return response.status, await response.json(content_type=None)

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()
