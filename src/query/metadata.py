"""
Field metadata -- the catalogue of dimensions and metrics a subject exposes.

Metadata arrives either from the reporting gateway's metadata endpoint
(camelCase JSON) or from a YAML snapshot on disk.  It is the only input
the validator needs for field-existence checks.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class DimensionInfo:
    api_name: str
    ui_name: str = ""
    description: str = ""
    category: str = ""
    custom_definition: bool = False
    deprecated_api_names: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MetricInfo:
    api_name: str
    ui_name: str = ""
    description: str = ""
    type: str = ""
    expression: str = ""
    category: str = ""
    custom_definition: bool = False
    deprecated_api_names: list[str] = field(default_factory=list)


@dataclass
class FieldMetadata:
    """Dimensions and metrics available for one subject."""

    subject_id: str
    dimensions: dict[str, DimensionInfo]    # keyed by api_name
    metrics: dict[str, MetricInfo]          # keyed by api_name

    # ── Convenience look-ups ─────────────────────────

    def has_dimension(self, name: str) -> bool:
        return name in self.dimensions or any(
            name in d.deprecated_api_names for d in self.dimensions.values()
        )

    def has_metric(self, name: str) -> bool:
        return name in self.metrics or any(
            name in m.deprecated_api_names for m in self.metrics.values()
        )

    def get_dimension_names(self) -> list[str]:
        return list(self.dimensions.keys())

    def get_metric_names(self) -> list[str]:
        return list(self.metrics.keys())

    def custom_dimensions(self) -> list[DimensionInfo]:
        return [d for d in self.dimensions.values() if d.custom_definition]

    def custom_metrics(self) -> list[MetricInfo]:
        return [m for m in self.metrics.values() if m.custom_definition]

    def to_payload(self) -> dict[str, Any]:
        """Serialise back to the gateway's wire shape (used as the cache payload)."""
        return {
            "name": f"properties/{self.subject_id}/metadata",
            "dimensions": [
                {
                    "apiName": d.api_name,
                    "uiName": d.ui_name,
                    "description": d.description,
                    "category": d.category,
                    "customDefinition": d.custom_definition,
                    "deprecatedApiNames": d.deprecated_api_names,
                }
                for d in self.dimensions.values()
            ],
            "metrics": [
                {
                    "apiName": m.api_name,
                    "uiName": m.ui_name,
                    "description": m.description,
                    "type": m.type,
                    "expression": m.expression,
                    "category": m.category,
                    "customDefinition": m.custom_definition,
                    "deprecatedApiNames": m.deprecated_api_names,
                }
                for m in self.metrics.values()
            ],
        }


# ── Parsing ──────────────────────────────────────────────

def _get(raw: dict[str, Any], camel: str, snake: str, default: Any = "") -> Any:
    if camel in raw:
        return raw[camel]
    return raw.get(snake, default)


def _parse_dimension(raw: dict[str, Any]) -> DimensionInfo:
    return DimensionInfo(
        api_name=_get(raw, "apiName", "api_name"),
        ui_name=_get(raw, "uiName", "ui_name"),
        description=raw.get("description", ""),
        category=raw.get("category", ""),
        custom_definition=bool(_get(raw, "customDefinition", "custom_definition", False)),
        deprecated_api_names=list(_get(raw, "deprecatedApiNames", "deprecated_api_names", None) or []),
    )


def _parse_metric(raw: dict[str, Any]) -> MetricInfo:
    return MetricInfo(
        api_name=_get(raw, "apiName", "api_name"),
        ui_name=_get(raw, "uiName", "ui_name"),
        description=raw.get("description", ""),
        type=raw.get("type", ""),
        expression=raw.get("expression", ""),
        category=raw.get("category", ""),
        custom_definition=bool(_get(raw, "customDefinition", "custom_definition", False)),
        deprecated_api_names=list(_get(raw, "deprecatedApiNames", "deprecated_api_names", None) or []),
    )


def parse_metadata(subject_id: str, raw: dict[str, Any]) -> FieldMetadata:
    """Build FieldMetadata from a metadata payload (camelCase or snake_case keys)."""
    dims = [_parse_dimension(d) for d in raw.get("dimensions") or []]
    mets = [_parse_metric(m) for m in raw.get("metrics") or []]
    return FieldMetadata(
        subject_id=subject_id,
        dimensions={d.api_name: d for d in dims if d.api_name},
        metrics={m.api_name: m for m in mets if m.api_name},
    )


# ── Public API ───────────────────────────────────────────

def load_metadata_file(path: str | Path, subject_id: str | None = None) -> FieldMetadata:
    """Load a metadata snapshot from YAML (JSON is valid YAML too)."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    subject = subject_id or str(raw.get("subject_id", ""))
    return parse_metadata(subject, raw)
