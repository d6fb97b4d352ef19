"""
Configuration Loader (``payroll_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into typed objects: ``PayrollConfig`` for
engine settings and ``Concept`` records (or a ready ``ConceptCatalog``) for
concept catalogs.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the kernel value
types and the engines; consumed by ``ConceptService.load_catalog`` and by
tests.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` / ``KeyError`` (or the kernel's
  ``PayrollValidationError`` from record construction) with descriptive
  messages; no silent defaults for required fields.
* Money and rates are parsed from their string form into ``Decimal``;
  YAML floats are converted through ``str`` so no binary rounding leaks in.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from payroll_kernel.domain.values import (
    CalculationType,
    Concept,
    ConceptType,
    QuantitySource,
)
from payroll_kernel.logging_config import get_logger
from payroll_engines.concepts import ConceptCatalog
from payroll_config.schema import PayrollConfig

logger = get_logger("config.loader")

CATALOG_DIR = Path(__file__).parent / "catalogs"
DEFAULT_CATALOG_PATH = CATALOG_DIR / "default.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    return Decimal(str(value))


def parse_concept(data: dict[str, Any]) -> Concept:
    """Parse a ``Concept`` from a dict."""
    return Concept(
        code=data["code"],
        name=data["name"],
        concept_type=ConceptType(data["concept_type"]),
        calculation_type=CalculationType(data["calculation_type"]),
        default_value=_decimal(data.get("default_value", "0")),
        default_rate=_decimal(data.get("default_rate")),
        formula=data.get("formula"),
        minimum_amount=_decimal(data.get("minimum_amount")),
        maximum_amount=_decimal(data.get("maximum_amount")),
        is_taxable=bool(data.get("is_taxable", False)),
        is_mandatory=bool(data.get("is_mandatory", False)),
        active=bool(data.get("active", True)),
        description=data.get("description", ""),
        display_order=int(data.get("display_order", 0)),
        quantity_source=QuantitySource(data.get("quantity_source", "one")),
        salary_ceiling=_decimal(data.get("salary_ceiling")),
        version=int(data.get("version", 1)),
    )


def load_concepts(path: Path | None = None) -> tuple[Concept, ...]:
    """Load the concepts of a catalog file (the packaged default if ``path`` is None)."""
    path = Path(path) if path is not None else DEFAULT_CATALOG_PATH
    data = load_yaml_file(path)
    concepts = tuple(parse_concept(c) for c in data.get("concepts", []))
    logger.info(
        "concept_catalog_loaded",
        extra={
            "path": str(path),
            "concept_count": len(concepts),
            "checksum": compute_checksum(data),
        },
    )
    return concepts


def load_concept_catalog(path: Path | None = None) -> ConceptCatalog:
    """Load a catalog file into a ready ``ConceptCatalog``."""
    return ConceptCatalog(load_concepts(path))


def load_payroll_config(path: Path) -> PayrollConfig:
    """Load engine settings from a YAML file with a top-level ``payroll`` mapping."""
    data = load_yaml_file(Path(path))
    section = data.get("payroll", data)
    return PayrollConfig.from_dict(dict(section))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
