"""
Payroll Configuration Schema.

Defines the structure and defaults for payroll engine settings.  Values are
loaded from YAML (``payroll_config.loader.load_payroll_config``) or built
directly:

    config = PayrollConfig(overtime_multiplier=Decimal("1.75"), batch_max_workers=8)
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from payroll_kernel.domain.values import Frequency
from payroll_kernel.logging_config import get_logger
from payroll_engines.benefits import DEFAULT_FREQUENCY_FACTORS
from payroll_engines.calculator import (
    DEFAULT_WITHHOLDING_BRACKETS,
    BracketWithholding,
    HourlyMultiplierOvertime,
    WithholdingBracket,
)

logger = get_logger("config.schema")

DECIMAL_FIELDS = (
    "overtime_monthly_hours",
    "overtime_multiplier",
    "minimum_wage",
    "withholding_exempt_amount",
)


def _default_factors() -> dict[str, Decimal]:
    return {freq.value: factor for freq, factor in DEFAULT_FREQUENCY_FACTORS.items()}


def _default_brackets() -> list[dict[str, Decimal | None]]:
    return [
        {"up_to": b.upper_limit, "rate": b.rate} for b in DEFAULT_WITHHOLDING_BRACKETS
    ]


def _optional_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class PayrollConfig:
    """
    Configuration schema for the payroll engine.

    Field defaults reproduce the standard monthly payroll: 240 working hours
    per month, overtime at 1.25x, and the usual monthly factors for weekly
    and biweekly benefits.
    """

    # Overtime
    overtime_monthly_hours: Decimal = Decimal("240")
    overtime_multiplier: Decimal = Decimal("1.25")

    # Benefit frequency normalization (approximate monthly factors)
    frequency_factors: dict[str, Decimal] = field(default_factory=_default_factors)

    # Reference minimum wage, informational for catalog authors
    minimum_wage: Decimal = Decimal("1300000")

    # Batch processing
    batch_max_workers: int = 4

    # Payroll numbering: PAY-YYYYMM-<employee>
    payroll_number_prefix: str = "PAY"

    # Reads verify stored totals against line items
    verify_totals_on_read: bool = True

    # Income withholding: monthly exempt amount, then marginal brackets over
    # annualized taxable income. The last bracket has no "up_to".
    withholding_concept_code: str = "RETENCION_FUENTE"
    withholding_exempt_amount: Decimal = Decimal("2392000")
    withholding_periods_per_year: int = 12
    withholding_brackets: list[dict] = field(default_factory=_default_brackets)

    def __post_init__(self):
        for name in DECIMAL_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                setattr(self, name, Decimal(str(value)))

        if self.overtime_monthly_hours <= 0:
            raise ValueError("overtime_monthly_hours must be positive")
        if self.overtime_multiplier <= 0:
            raise ValueError("overtime_multiplier must be positive")
        if self.minimum_wage < 0:
            raise ValueError("minimum_wage cannot be negative")
        if self.batch_max_workers < 1:
            raise ValueError("batch_max_workers must be at least 1")
        if not self.payroll_number_prefix:
            raise ValueError("payroll_number_prefix is required")
        if not self.withholding_concept_code:
            raise ValueError("withholding_concept_code is required")
        self.withholding_brackets = [
            {"up_to": _optional_decimal(b.get("up_to")), "rate": Decimal(str(b["rate"]))}
            for b in self.withholding_brackets
        ]
        # BracketWithholding validates exempt amount, periods and bracket order
        self.withholding_policy()

        valid = {f.value for f in Frequency}
        factors: dict[str, Decimal] = {}
        for key, value in self.frequency_factors.items():
            name = key.value if isinstance(key, Frequency) else str(key)
            if name not in valid:
                raise ValueError(
                    f"frequency_factors keys must be in {sorted(valid)}, got '{name}'"
                )
            factor = value if isinstance(value, Decimal) else Decimal(str(value))
            if factor <= 0:
                raise ValueError(f"frequency factor for '{name}' must be positive")
            factors[name] = factor
        self.frequency_factors = factors

        logger.info(
            "payroll_config_initialized",
            extra={
                "overtime_monthly_hours": str(self.overtime_monthly_hours),
                "overtime_multiplier": str(self.overtime_multiplier),
                "batch_max_workers": self.batch_max_workers,
                "frequency_factors": {k: str(v) for k, v in sorted(factors.items())},
                "withholding_exempt_amount": str(self.withholding_exempt_amount),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard defaults."""
        logger.info("payroll_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g., loaded from a YAML file)."""
        logger.info(
            "payroll_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    def overtime_policy(self) -> HourlyMultiplierOvertime:
        return HourlyMultiplierOvertime(
            monthly_hours=self.overtime_monthly_hours,
            multiplier=self.overtime_multiplier,
        )

    def withholding_policy(self) -> BracketWithholding:
        return BracketWithholding(
            concept_code=self.withholding_concept_code,
            exempt_amount=self.withholding_exempt_amount,
            periods_per_year=self.withholding_periods_per_year,
            brackets=tuple(
                WithholdingBracket(upper_limit=b["up_to"], rate=b["rate"])
                for b in self.withholding_brackets
            ),
        )

    def factor_map(self) -> dict[Frequency, Decimal]:
        return {Frequency(name): factor for name, factor in self.frequency_factors.items()}
