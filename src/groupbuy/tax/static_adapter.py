"""Tax calculator backed by a fixed table of state sales-tax rates."""

import re

from protean.exceptions import ValidationError

from groupbuy.tax.port import TaxBreakdown, TaxCalculator

_EXEMPTION_PATTERN = re.compile(r"^[A-Z0-9]{6,}$", re.IGNORECASE)

STATE_RATES = {
    "AL": 0.04, "AK": 0.0, "AZ": 0.056, "AR": 0.065, "CA": 0.0725, "CO": 0.029,
    "CT": 0.0635, "DE": 0.0, "FL": 0.06, "GA": 0.04, "HI": 0.04, "ID": 0.06,
    "IL": 0.0625, "IN": 0.07, "IA": 0.06, "KS": 0.065, "KY": 0.06, "LA": 0.0445,
    "ME": 0.055, "MD": 0.06, "MA": 0.0625, "MI": 0.06, "MN": 0.0688, "MS": 0.07,
    "MO": 0.0425, "MT": 0.0, "NE": 0.055, "NV": 0.0685, "NH": 0.0, "NJ": 0.0625,
    "NM": 0.0513, "NY": 0.04, "NC": 0.0475, "ND": 0.05, "OH": 0.0575, "OK": 0.045,
    "OR": 0.0, "PA": 0.06, "RI": 0.07, "SC": 0.06, "SD": 0.045, "TN": 0.07,
    "TX": 0.0625, "UT": 0.0595, "VT": 0.06, "VA": 0.053, "WA": 0.065, "WV": 0.06,
    "WI": 0.05, "WY": 0.04, "DC": 0.06,
}  # fmt: skip


def validate_exemption_number(exemption_number: str | None) -> bool:
    """At least six letters or digits, nothing else."""
    return bool(exemption_number) and _EXEMPTION_PATTERN.match(exemption_number) is not None


class StaticRateTaxCalculator(TaxCalculator):
    def __init__(self, rates: dict[str, float] | None = None) -> None:
        self.rates = {code.upper(): rate for code, rate in (rates or STATE_RATES).items()}

    def rate_for(self, jurisdiction: str) -> float:
        code = (jurisdiction or "").upper()
        if code not in self.rates:
            raise ValidationError({"jurisdiction": [f"No tax rate found for jurisdiction: {jurisdiction}"]})
        return self.rates[code]

    def calculate_tax(self, subtotal: float, jurisdiction: str, exemption: str | None = None) -> TaxBreakdown:
        code = (jurisdiction or "").upper()
        if exemption is not None:
            if not validate_exemption_number(exemption):
                raise ValidationError({"exemption_number": [f"Invalid exemption number: {exemption}"]})
            return TaxBreakdown(rate=0.0, amount=0.0, total=subtotal, jurisdiction=code, exempt=True)

        rate = self.rate_for(code)
        amount = round(subtotal * rate, 2)
        return TaxBreakdown(rate=rate, amount=amount, total=round(subtotal + amount, 2), jurisdiction=code)
