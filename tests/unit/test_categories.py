"""
Unit Tests - Category Taxonomy
"""
import pytest

from venue_aggregator.data_providers.categories import (
    CATEGORY_TABLE,
    CategoryMapping,
    DEFAULT_CONFIDENCE,
    KEYWORD_CONFIDENCE,
    PARTIAL_CONFIDENCE,
    TABLE_CONFIDENCE,
    derive_mood_tags,
    lookup_category,
    validate_category_table,
)


class TestLookupCategory:
    """Tests for lookup_category."""

    def test_exact_match_is_case_insensitive(self):
        mapping, exact = lookup_category("  Coffee   & Tea ")
        assert exact
        assert mapping == CATEGORY_TABLE["coffee & tea"]
        assert (mapping.category, mapping.subcategory) == ("Restaurant", "Coffee Shop")

    def test_partial_prefers_longest_key(self):
        """'cocktail bar' wins over 'bar'."""
        mapping, exact = lookup_category("Cocktail Bar & Lounge")
        assert not exact
        assert mapping.subcategory == "Cocktail Bar"

    def test_partial_requires_whole_word(self):
        """'barber' must not map to 'bar'."""
        assert lookup_category("Barber") == (None, False)

    def test_unknown(self):
        assert lookup_category("Plumbing") == (None, False)
        assert lookup_category("") == (None, False)


class TestMoodTags:
    """Tests for derive_mood_tags confidence levels."""

    def test_table_hit(self):
        tags, confidence = derive_mood_tags(["Coffee Shop"])
        assert tags == ("cozy", "relaxed")
        assert confidence == TABLE_CONFIDENCE

    def test_partial_hit(self):
        tags, confidence = derive_mood_tags(["Neighbourhood Wine Bar"])
        assert tags == ("romantic", "relaxed")
        assert confidence == PARTIAL_CONFIDENCE

    def test_keyword_heuristic(self):
        """Keywords and features are used when the table has nothing."""
        tags, confidence = derive_mood_tags(["Tea Room"], ["live_music"])
        assert tags == ("cozy", "energetic")
        assert confidence == KEYWORD_CONFIDENCE

    def test_default(self):
        tags, confidence = derive_mood_tags(["Plumbing"])
        assert tags == ("cozy",)
        assert confidence == DEFAULT_CONFIDENCE


class TestValidateCategoryTable:
    """The table is checked at import; bad entries fail loudly."""

    @pytest.mark.parametrize("table", [
        {"Coffee": CategoryMapping("Restaurant", "Coffee", ("cozy",))},
        {"coffee": CategoryMapping("Beverage", "Coffee", ("cozy",))},
        {"coffee": CategoryMapping("Restaurant", "Coffee", ("sleepy",))},
        {"coffee": CategoryMapping("Restaurant", "Coffee", ())},
    ])
    def test_invalid_entries_rejected(self, table):
        with pytest.raises(ValueError):
            validate_category_table(table)

    def test_shipped_table_is_valid(self):
        validate_category_table(CATEGORY_TABLE)
