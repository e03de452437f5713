"""Tests for column mapping validation and application."""

from __future__ import annotations

import pytest

from importhub.imports.errors import ConfigError
from importhub.imports.mapping import (
    ColumnMapping,
    apply_mapping,
    ensure_required_mapped,
    parse_mapping,
)

COLUMNS = ["Company", "Sector", "State"]


class TestParseMapping:
    """Tests for parse_mapping."""

    def test_valid_mapping(self):
        """Entries become ColumnMapping objects; unmapped entries are dropped."""
        mappings = parse_mapping(
            [
                {"sourceColumn": "Company", "targetField": "companyName", "transform": "trim"},
                {"sourceColumn": "Sector", "targetField": None},
            ],
            "clients",
            COLUMNS,
        )

        assert mappings == [ColumnMapping("Company", "companyName", "trim")]

    def test_unknown_target_field(self):
        with pytest.raises(ConfigError, match="Unknown target field"):
            parse_mapping([{"sourceColumn": "Company", "targetField": "revenue"}], "clients", COLUMNS)

    def test_unknown_source_column(self):
        with pytest.raises(ConfigError, match="Unknown source column"):
            parse_mapping([{"sourceColumn": "Nope", "targetField": "companyName"}], "clients", COLUMNS)

    def test_unknown_transform(self):
        with pytest.raises(ConfigError, match="Unknown transform"):
            parse_mapping(
                [{"sourceColumn": "Company", "targetField": "companyName", "transform": "upper"}],
                "clients",
                COLUMNS,
            )

    def test_field_mapped_twice(self):
        """Two columns cannot feed one field."""
        with pytest.raises(ConfigError, match="more than one column"):
            parse_mapping(
                [
                    {"sourceColumn": "Company", "targetField": "companyName"},
                    {"sourceColumn": "Sector", "targetField": "companyName"},
                ],
                "clients",
                COLUMNS,
            )

    def test_static_value_needs_no_column(self):
        """A static value stands in for a source column."""
        mappings = parse_mapping(
            [{"targetField": "status", "staticValue": "lead"}], "clients", COLUMNS
        )
        assert mappings[0].static_value == "lead"
        assert mappings[0].source_column is None

    def test_entry_without_column_or_static(self):
        with pytest.raises(ConfigError, match="needs a source column"):
            parse_mapping([{"targetField": "status"}], "clients", COLUMNS)

    def test_round_trip_dict(self):
        """to_dict keeps optional keys only when set."""
        data = {
            "sourceColumn": "State",
            "targetField": "status",
            "transform": "enumMap",
            "enumMap": {"Live": "active"},
        }
        assert ColumnMapping.from_dict(data).to_dict() == data


class TestEnsureRequiredMapped:
    """Tests for the required-field check."""

    def test_missing_required(self):
        """The error names every missing required field by label."""
        with pytest.raises(ConfigError, match="User Email, Start Time"):
            ensure_required_mapped([], "time_entries")

    def test_all_required_present(self):
        ensure_required_mapped([ColumnMapping("Company", "companyName")], "clients")


class TestApplyMapping:
    """Tests for apply_mapping."""

    def test_trim_and_lowercase(self):
        mappings = [
            ColumnMapping("Name", "companyName", "trim"),
            ColumnMapping("Mail", "email", "lowercase"),
        ]
        candidate = apply_mapping({"Name": "  Acme  ", "Mail": " INFO@Acme.com "}, mappings)

        assert candidate == {"companyName": "Acme", "email": "info@acme.com"}

    def test_static_value_overrides_column(self):
        """A static value wins over the source column."""
        mapping = ColumnMapping("State", "status", static_value="lead")
        assert apply_mapping({"State": "active"}, [mapping]) == {"status": "lead"}

    def test_enum_map(self):
        """enumMap translates values, falling back to a case-insensitive match."""
        mapping = ColumnMapping(
            "State", "status", "enumMap", enum_map={"Live": "active", "Dead": "inactive"}
        )

        assert apply_mapping({"State": "Live"}, [mapping]) == {"status": "active"}
        assert apply_mapping({"State": "dead"}, [mapping]) == {"status": "inactive"}
        assert apply_mapping({"State": "Other"}, [mapping]) == {"status": "Other"}

    def test_missing_column_value_is_blank(self):
        mapping = ColumnMapping("Phone", "phone", "trim")
        assert apply_mapping({}, [mapping]) == {"phone": ""}

    def test_parse_transforms_only_trim(self):
        """Parsing happens during coercion; the transform only trims."""
        mapping = ColumnMapping("Hours", "durationHours", "parseNumber")
        assert apply_mapping({"Hours": " 1,200 "}, [mapping]) == {"durationHours": "1,200"}
