"""Tests for the YGOPRODeck catalog client."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from ygo_scanner.core.constants import BACKOFF_S
from ygo_scanner.resolve.catalog import CatalogClient, _to_entry
from ygo_scanner.utils.error_handler import CatalogUnavailable

DARK_MAGICIAN = {
    "id": 46986414,
    "name": "Dark Magician",
    "type": "Normal Monster",
    "desc": "The ultimate wizard in terms of attack and defense.",
    "atk": 2500,
    "def": 2100,
    "level": 7,
    "race": "Spellcaster",
    "attribute": "DARK",
    "card_sets": [{"set_name": "Legend of Blue Eyes", "set_rarity": "Ultra Rare"}],
    "card_images": [{"id": 46986414, "image_url": "https://images.ygoprodeck.com/images/cards/46986414.jpg"}],
}

POT_OF_GREED = {
    "id": 55144522,
    "name": "Pot of Greed",
    "type": "Spell Card",
    "desc": "Draw 2 cards.",
    "race": "Normal",
}


class TestToEntry:
    def test_monster_fields(self):
        entry = _to_entry(DARK_MAGICIAN)

        assert entry.name == "Dark Magician"
        assert entry.external_code == "46986414"
        assert (entry.attack, entry.defense, entry.level) == (2500, 2100, 7)
        assert entry.attribute == "DARK"
        assert entry.description.startswith("The ultimate wizard")
        assert entry.image_ref.endswith("46986414.jpg")
        assert entry.rarity == "Ultra Rare"

    def test_spell_without_stats(self):
        entry = _to_entry(POT_OF_GREED)

        assert entry.type == "Spell Card"
        assert entry.attack is None
        assert entry.defense is None
        assert entry.attribute is None
        assert entry.image_ref is None
        assert entry.rarity is None


class TestCatalogClient:
    """Test CatalogClient lookups and backoff."""

    @pytest.fixture
    def client(self):
        return CatalogClient(base_url="https://db.example.test/api/v7/", timeout_s=1)

    def test_base_url_normalized(self, client):
        assert client.base_url == "https://db.example.test/api/v7"

    @pytest.mark.asyncio
    async def test_exact_lookup_uses_name_param(self, client):
        with patch.object(client, "_request", AsyncMock(return_value=(200, {"data": [DARK_MAGICIAN]}))) as mock_request:
            entries = await client.lookup_exact("Dark Magician")

        mock_request.assert_awaited_once_with({"name": "Dark Magician"})
        assert [e.name for e in entries] == ["Dark Magician"]

    @pytest.mark.asyncio
    async def test_fuzzy_lookup_uses_fname_param(self, client):
        with patch.object(client, "_request", AsyncMock(return_value=(200, {"data": [DARK_MAGICIAN, POT_OF_GREED]}))) as mock_request:
            entries = await client.lookup_fuzzy("Dark Mag")

        mock_request.assert_awaited_once_with({"fname": "Dark Mag"})
        assert len(entries) == 2

    @pytest.mark.asyncio
    async def test_no_match_is_empty(self, client):
        with patch.object(client, "_request", AsyncMock(return_value=(400, None))):
            assert await client.lookup_exact("Zzzqx1") == []

    @pytest.mark.asyncio
    async def test_retryable_status_then_success(self, client):
        responses = [(429, None), (503, None), (200, {"data": [DARK_MAGICIAN]})]
        with patch.object(client, "_request", AsyncMock(side_effect=responses)), \
             patch("ygo_scanner.resolve.catalog.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            entries = await client.lookup_exact("Dark Magician")

        assert len(entries) == 1
        assert [c.args[0] for c in mock_sleep.await_args_list] == list(BACKOFF_S[:2])

    @pytest.mark.asyncio
    async def test_retries_exhausted_raises_unavailable(self, client):
        with patch.object(client, "_request", AsyncMock(return_value=(500, None))) as mock_request, \
             patch("ygo_scanner.resolve.catalog.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(CatalogUnavailable):
                await client.lookup_exact("Dark Magician")

        assert mock_request.await_count == len(BACKOFF_S) + 1

    @pytest.mark.asyncio
    async def test_connection_errors_retried(self, client):
        side_effect = [aiohttp.ClientConnectionError("refused"), (200, {"data": [POT_OF_GREED]})]
        with patch.object(client, "_request", AsyncMock(side_effect=side_effect)), \
             patch("ygo_scanner.resolve.catalog.asyncio.sleep", new_callable=AsyncMock):
            entries = await client.lookup_fuzzy("Pot of")

        assert entries[0].name == "Pot of Greed"

    @pytest.mark.asyncio
    async def test_other_client_errors_not_retried(self, client):
        with patch.object(client, "_request", AsyncMock(return_value=(404, None))) as mock_request:
            with pytest.raises(CatalogUnavailable):
                await client.lookup_exact("Dark Magician")
        assert mock_request.await_count == 1

    @pytest.mark.asyncio
    async def test_request_reads_json_from_session(self, client):
        response = MagicMock()
        response.status = 200
        response.json = AsyncMock(return_value={"data": [DARK_MAGICIAN]})

        get_ctx = MagicMock()
        get_ctx.__aenter__ = AsyncMock(return_value=response)
        get_ctx.__aexit__ = AsyncMock(return_value=None)

        session = MagicMock()
        session.closed = False
        session.get.return_value = get_ctx
        client.session = session

        status, payload = await client._request({"name": "Dark Magician"})

        assert status == 200
        assert payload["data"][0]["id"] == 46986414
        session.get.assert_called_once_with(
            "https://db.example.test/api/v7/cardinfo.php", params={"name": "Dark Magician"}
        )
