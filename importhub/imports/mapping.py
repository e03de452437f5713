"""Column mapping validation and application."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from importhub.imports.catalog import TRANSFORMS, get_fields
from importhub.imports.errors import ConfigError


@dataclass
class ColumnMapping:
    """Column mapping configuration."""

    source_column: Optional[str]
    target_field: str
    transform: Optional[str] = None
    static_value: Optional[str] = None
    enum_map: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnMapping":
        return cls(
            source_column=data.get("sourceColumn"),
            target_field=data.get("targetField"),
            transform=data.get("transform"),
            static_value=data.get("staticValue"),
            enum_map=dict(data.get("enumMap") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sourceColumn": self.source_column,
            "targetField": self.target_field,
            "transform": self.transform,
        }
        if self.static_value is not None:
            data["staticValue"] = self.static_value
        if self.enum_map:
            data["enumMap"] = dict(self.enum_map)
        return data


def parse_mapping(
    raw_mapping: list[dict[str, Any]],
    entity_type: str,
    columns: list[str],
) -> list[ColumnMapping]:
    """
    Build and structurally validate a mapping.

    Entries without a target field are unmapped columns and are dropped.

    Raises:
        ConfigError: Unknown target field or transform, a source column
            the job does not have, or two columns mapped to one field
    """
    known_fields = {definition.key for definition in get_fields(entity_type)}
    known_columns = set(columns)
    mappings: list[ColumnMapping] = []
    targets: set[str] = set()

    for entry in raw_mapping:
        if not isinstance(entry, dict):
            raise ConfigError("Mapping entries must be objects")
        mapping = ColumnMapping.from_dict(entry)
        if not mapping.target_field:
            continue

        if mapping.target_field not in known_fields:
            raise ConfigError(f"Unknown target field: {mapping.target_field}")
        if mapping.transform is not None and mapping.transform not in TRANSFORMS:
            raise ConfigError(f"Unknown transform: {mapping.transform}")
        if mapping.static_value is None:
            if not mapping.source_column:
                raise ConfigError(
                    f"Mapping for {mapping.target_field} needs a source column or a static value"
                )
            if mapping.source_column not in known_columns:
                raise ConfigError(f"Unknown source column: {mapping.source_column}")
        if mapping.target_field in targets:
            raise ConfigError(
                f"Field {mapping.target_field} is mapped from more than one column"
            )

        targets.add(mapping.target_field)
        mappings.append(mapping)

    return mappings


def ensure_required_mapped(mappings: list[ColumnMapping], entity_type: str) -> None:
    """Raise ConfigError naming every required field with no mapping."""
    mapped = {m.target_field for m in mappings}
    missing = [
        definition.label
        for definition in get_fields(entity_type)
        if definition.required and definition.key not in mapped
    ]
    if missing:
        raise ConfigError(f"Required fields are not mapped: {', '.join(missing)}")


def _apply_transform(value: str, mapping: ColumnMapping) -> str:
    if mapping.transform == "lowercase":
        return value.strip().lower()
    if mapping.transform == "enumMap" or (mapping.enum_map and mapping.transform is None):
        stripped = value.strip()
        if stripped in mapping.enum_map:
            return mapping.enum_map[stripped]
        lowered = {k.lower(): v for k, v in mapping.enum_map.items()}
        return lowered.get(stripped.lower(), stripped)
    # trim and the parse* transforms; parsing itself happens during coercion
    return value.strip()


def apply_mapping(raw_row: dict[str, str], mappings: list[ColumnMapping]) -> dict[str, str]:
    """Turn a raw row keyed by source column into a candidate keyed by field key."""
    candidate: dict[str, str] = {}
    for mapping in mappings:
        if mapping.static_value is not None:
            value = mapping.static_value
        else:
            value = raw_row.get(mapping.source_column, "")
        candidate[mapping.target_field] = _apply_transform(str(value or ""), mapping)
    return candidate
