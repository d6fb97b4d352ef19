"""
Payroll configuration: engine settings schema and YAML loaders.

Usage:
    from payroll_config import PayrollConfig, load_concept_catalog

    config = PayrollConfig.with_defaults()
    catalog = load_concept_catalog()          # packaged default catalog
"""

from payroll_config.loader import (
    DEFAULT_CATALOG_PATH,
    compute_checksum,
    load_concept_catalog,
    load_concepts,
    load_payroll_config,
    load_yaml_file,
    parse_concept,
)
from payroll_config.schema import PayrollConfig

__all__ = [
    "DEFAULT_CATALOG_PATH",
    "PayrollConfig",
    "compute_checksum",
    "load_concept_catalog",
    "load_concepts",
    "load_payroll_config",
    "load_yaml_file",
    "parse_concept",
]
