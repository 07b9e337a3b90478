"""
Tests for the column whitelist and pivot alias helpers.
"""
import pytest
from sqlalchemy.dialects import postgresql, sqlite

from med1_analytics.columns import (
    ALLOWED_COLUMNS,
    DIMENSIONS,
    VerifiedColumn,
    pivot_alias,
    sanitize_identifier,
    unique_aliases,
    verify_column,
)
from med1_analytics.errors import InvalidColumnError, ValidationError


class TestVerifyColumn:
    """Whitelist checks for dimension names"""

    @pytest.mark.parametrize("name", sorted(ALLOWED_COLUMNS))
    def test_whitelisted_names_pass(self, name):
        col = verify_column(name)
        assert isinstance(col, VerifiedColumn)
        assert col.name == name
        assert col.column.name == name

    @pytest.mark.parametrize("name", ["id", "scenario", "createdAt", "bu; DROP TABLE x", "pnl Line", "", "BU"])
    def test_other_names_are_rejected(self, name):
        with pytest.raises(InvalidColumnError) as ei:
            verify_column(name)
        assert ei.value.errors == [f"Invalid column: {name}"]

    def test_invalid_column_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            verify_column("password")

    def test_quoting_follows_dialect(self):
        col = verify_column("productSku")
        assert col.quoted(postgresql.dialect()) == '"productSku"'
        assert col.quoted(sqlite.dialect()) == '"productSku"'
        assert verify_column("bu").quoted(postgresql.dialect()) == "bu"

    def test_sanitize_strips_unsafe_characters(self):
        assert sanitize_identifier('bu"--') == "bu"
        assert sanitize_identifier("cost Center;") == "costCenter"
        assert sanitize_identifier(None) == ""

    def test_dimension_catalog_is_whitelisted(self):
        keys = [d["key"] for d in DIMENSIONS]
        assert len(keys) == len(set(keys))
        assert set(keys) <= ALLOWED_COLUMNS
        assert "value" not in keys


class TestPivotAliases:
    """Aliases for pivoted column values"""

    def test_non_alphanumerics_become_underscores(self):
        assert pivot_alias("SG&A Expenses") == "SG_A_Expenses"
        assert pivot_alias("2024-01") == "2024_01"
        assert pivot_alias("Actual") == "Actual"

    def test_colliding_aliases_get_suffixes(self):
        assert unique_aliases(["A-B", "A B", "A_B"]) == ["A_B", "A_B_2", "A_B_3"]

    def test_collisions_are_case_insensitive(self):
        assert unique_aliases(["north", "North"]) == ["north", "North_2"]

    def test_reserved_names_are_avoided(self):
        assert unique_aliases(["bu", "details"], reserved={"bu", "details"}) == ["bu_2", "details_2"]
