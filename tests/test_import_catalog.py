"""Tests for the field catalog and mapping suggestions."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from importhub.imports.catalog import (
    ENTITY_TYPES,
    FieldDefinition,
    get_field,
    get_fields,
    normalize_header,
    suggest_mappings,
    to_attribute,
)
from importhub.imports.errors import ConfigError


class TestCatalog:
    """Tests for catalog lookups."""

    def test_every_entity_type_has_a_required_field(self):
        """Each entity type lists at least one required field."""
        for entity_type in ENTITY_TYPES:
            assert any(f.required for f in get_fields(entity_type))

    def test_unknown_entity_type(self):
        """Unknown entity types are a configuration error."""
        with pytest.raises(ConfigError, match="Invalid entity type"):
            get_fields("invoices")

    def test_get_field(self):
        """A field is found by key."""
        definition = get_field("tasks", "assigneeEmail")
        assert definition.type == "email"
        assert definition.is_resolver
        assert get_field("tasks", "nope") is None

    def test_enum_fields_carry_values(self):
        """Enum fields expose their allowed values in to_dict."""
        status = get_field("clients", "status").to_dict()
        assert "active" in status["enumValues"]

    def test_to_attribute(self):
        """camelCase keys become snake_case attributes."""
        assert to_attribute("companyName") == "company_name"
        assert to_attribute("addressLine1") == "address_line1"
        assert to_attribute("email") == "email"

    def test_normalize_header(self):
        """Case, spaces and punctuation are ignored."""
        assert normalize_header("Company Name") == "companyname"
        assert normalize_header(" company_name ") == "companyname"
        assert normalize_header("E-mail") == "email"


class TestSuggestMappings:
    """Tests for header to field suggestions."""

    def test_label_match(self):
        """'Company Name' maps to companyName through its label."""
        suggestions = suggest_mappings(["Company Name"], get_fields("clients"), "clients")

        assert suggestions == [
            {"sourceColumn": "Company Name", "targetField": "companyName", "transform": "trim"}
        ]

    def test_unknown_header_left_unmapped(self):
        """A header with no exact match is not guessed."""
        suggestions = suggest_mappings(["Favourite Colour", "Compnay"], get_fields("clients"))

        assert [s["targetField"] for s in suggestions] == [None, None]
        assert all(s["transform"] is None for s in suggestions)

    def test_alias_match_and_default_transform(self):
        """Aliases match; the transform follows the field type."""
        suggestions = suggest_mappings(["user_email", "hours", "start"], get_fields("time_entries"))

        assert suggestions[0]["targetField"] == "userEmail"
        assert suggestions[0]["transform"] == "lowercase"
        assert suggestions[1] == {
            "sourceColumn": "hours",
            "targetField": "durationHours",
            "transform": "parseNumber",
        }
        assert suggestions[2]["targetField"] == "startTime"
        assert suggestions[2]["transform"] == "parseDate"

    def test_email_gets_lowercase(self):
        """Email fields default to the lowercase transform."""
        suggestions = suggest_mappings(["Email"], get_fields("users"))
        assert suggestions[0]["transform"] == "lowercase"

    def test_every_header_appears_once_in_order(self):
        """The result has one entry per header in input order."""
        headers = ["notes", "Company", "zzz", "City"]
        suggestions = suggest_mappings(headers, get_fields("clients"))

        assert [s["sourceColumn"] for s in suggestions] == headers

    def test_field_claimed_once(self):
        """Two headers matching the same field: the first one wins."""
        suggestions = suggest_mappings(["company", "Company Name"], get_fields("clients"))

        assert suggestions[0]["targetField"] == "companyName"
        assert suggestions[1]["targetField"] is None

    def test_collision_emits_metric(self):
        """A header matching two fields goes to the first and is reported."""
        fields = (
            FieldDefinition("clientName", "Client Name", "string", aliases=("client",)),
            FieldDefinition("clientCode", "Client Code", "string", aliases=("client",)),
        )
        with patch(
            "importhub.imports.catalog.MetricsService.emit_data_quality_metric"
        ) as emit:
            suggestions = suggest_mappings(["Client"], fields, "projects")

        assert suggestions[0]["targetField"] == "clientName"
        emit.assert_called_once()
        assert emit.call_args.kwargs["header"] == "Client"

    def test_collision_does_not_fall_through(self):
        """Once the first matching field is claimed, a colliding header stays unmapped."""
        fields = (
            FieldDefinition("clientName", "Client Name", "string", aliases=("client",)),
            FieldDefinition("clientCode", "Client Code", "string", aliases=("client",)),
        )
        with patch("importhub.imports.catalog.MetricsService.emit_data_quality_metric"):
            suggestions = suggest_mappings(["Client Name", "Client"], fields, "projects")

        assert [s["targetField"] for s in suggestions] == ["clientName", None]

    def test_no_collision_no_metric(self):
        """Ordinary headers do not emit the collision metric."""
        with patch(
            "importhub.imports.catalog.MetricsService.emit_data_quality_metric"
        ) as emit:
            suggest_mappings(["Company Name", "City"], get_fields("clients"), "clients")

        emit.assert_not_called()
