"""Tests for catalog resolution and record merging."""

import pytest

from fakes import FakeCatalog, make_entry
from ygo_scanner.core.types import CardRecord
from ygo_scanner.resolve.resolver import EXACT, FUZZY, CatalogResolver, merge_into_record, similarity
from ygo_scanner.utils.error_handler import CatalogUnavailable


class TestCatalogResolver:
    """Test CatalogResolver.resolve."""

    @pytest.mark.asyncio
    async def test_exact_match_wins_without_fuzzy_lookup(self):
        catalog = FakeCatalog(
            exact={"Dark Magician": [make_entry()]},
            fuzzy={"Dark Magician": [make_entry("Dark Magician Girl", "38033121")]},
        )
        match = await CatalogResolver(catalog).resolve("Dark Magician")

        assert match.strategy == EXACT
        assert match.entry.external_code == "46986414"
        assert not match.ambiguous
        assert catalog.calls == [("exact", "Dark Magician")]

    @pytest.mark.asyncio
    async def test_fuzzy_uses_first_two_tokens(self):
        catalog = FakeCatalog(fuzzy={"Blue-Eyes White": [make_entry("Blue-Eyes White Dragon", "89631139")]})
        match = await CatalogResolver(catalog).resolve("Blue-Eyes White Dragn")

        assert catalog.calls == [("exact", "Blue-Eyes White Dragn"), ("fuzzy", "Blue-Eyes White")]
        assert match.strategy == FUZZY
        assert match.entry.name == "Blue-Eyes White Dragon"

    @pytest.mark.asyncio
    async def test_fuzzy_prefers_containing_result(self):
        catalog = FakeCatalog(fuzzy={"Dark Magician": [
            make_entry("Dark Magician of Chaos", "40737112"),
            make_entry("Dark Magician Girl", "38033121"),
        ]})
        match = await CatalogResolver(catalog).resolve("Dark Magician Girl")

        assert match.entry.name == "Dark Magician Girl"
        assert not match.ambiguous

    @pytest.mark.asyncio
    async def test_fuzzy_skips_nameless_entries(self):
        catalog = FakeCatalog(fuzzy={"Dark Magician": [
            make_entry("", "00000000"),
            make_entry("  ", "00000001"),
            make_entry("Dark Magician Girl", "38033121"),
        ]})
        match = await CatalogResolver(catalog).resolve("Dark Magician Girl")

        assert match.entry.external_code == "38033121"
        assert not match.ambiguous

    @pytest.mark.asyncio
    async def test_only_nameless_entries_is_no_match(self):
        catalog = FakeCatalog(
            exact={"Dark Magician": [make_entry("", "00000000")]},
            fuzzy={"Dark Magician": [make_entry("", "00000000")]},
        )
        assert await CatalogResolver(catalog).resolve("Dark Magician") is None

    @pytest.mark.asyncio
    async def test_fuzzy_without_containment_is_ambiguous(self):
        catalog = FakeCatalog(fuzzy={"Valkyrie Funfte": [
            make_entry("Valkyrie Fünfte", "24786500"),
            make_entry("Valkyrie Erste", "10000000"),
        ]})
        match = await CatalogResolver(catalog).resolve("Valkyrie Funfte")

        assert match.strategy == FUZZY
        assert match.ambiguous
        assert match.entry.name == "Valkyrie Fünfte"
        assert 0 < match.similarity < 100

    @pytest.mark.asyncio
    async def test_no_results(self):
        catalog = FakeCatalog()
        assert await CatalogResolver(catalog).resolve("Zzzqx Unknown") is None
        assert len(catalog.calls) == 2

    @pytest.mark.asyncio
    async def test_short_name_skips_lookup(self):
        catalog = FakeCatalog()
        assert await CatalogResolver(catalog).resolve("Ab") is None
        assert await CatalogResolver(catalog).resolve("") is None
        assert await CatalogResolver(catalog).resolve(None) is None
        assert catalog.calls == []

    @pytest.mark.asyncio
    async def test_short_fuzzy_query_skipped(self):
        catalog = FakeCatalog()
        assert await CatalogResolver(catalog).resolve("Abc") is None
        assert catalog.calls == [("exact", "Abc")]

    @pytest.mark.asyncio
    async def test_unavailable_catalog_is_no_match(self):
        catalog = FakeCatalog(error=CatalogUnavailable("down"))
        assert await CatalogResolver(catalog).resolve("Dark Magician") is None


class TestMergeIntoRecord:
    def test_catalog_values_override_local(self):
        record = CardRecord(id=None, name="Dark Magcian", type="Monster", attack=2400, description="local")
        merge_into_record(record, make_entry())

        assert record.name == "Dark Magician"
        assert record.type == "Normal Monster"
        assert record.attack == 2500
        assert record.defense == 2100
        assert record.external_code == "46986414"
        assert record.rarity == "Ultra Rare"
        assert record.source_image_ref.endswith("46986414.jpg")

    def test_zero_attack_overrides(self):
        record = CardRecord(id=None, name="Kuriboh", attack=300)
        merge_into_record(record, make_entry("Kuriboh", "40640057", attack=0))
        assert record.attack == 0

    def test_missing_catalog_fields_keep_local(self):
        record = CardRecord(id=None, name="Pot of Greed", description="Draw 2 cards.", source_image_ref="blob:abc.png")
        entry = make_entry("Pot of Greed", "55144522", type="Spell Card", attribute=None, level=None,
                           attack=None, defense=None, description="  ", image_ref=None, rarity=None)
        merge_into_record(record, entry)

        assert record.type == "Spell Card"
        assert record.description == "Draw 2 cards."
        assert record.source_image_ref == "blob:abc.png"
        assert record.attack is None


def test_similarity_is_case_insensitive():
    assert similarity("DARK MAGICIAN", "dark magician") == 100.0
