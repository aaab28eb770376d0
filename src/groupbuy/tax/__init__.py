"""Tax calculator factory.

``build_tax_calculator`` selects an adapter by name; only the static
state-rate table ships today.
"""

from groupbuy.tax.port import TaxBreakdown, TaxCalculator
from groupbuy.tax.static_adapter import StaticRateTaxCalculator, validate_exemption_number

__all__ = [
    "StaticRateTaxCalculator",
    "TaxBreakdown",
    "TaxCalculator",
    "build_tax_calculator",
    "validate_exemption_number",
]


def build_tax_calculator(adapter: str = "static") -> TaxCalculator:
    if adapter == "static":
        return StaticRateTaxCalculator()
    raise ValueError(f"Unknown tax adapter: {adapter}")
