"""Tax calculator port (abstract interface)."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class TaxBreakdown:
    """Tax owed on a subtotal in one jurisdiction."""

    rate: float
    amount: float
    total: float
    jurisdiction: str
    exempt: bool = False


class TaxCalculator(ABC):
    """Abstract tax calculator interface."""

    @abstractmethod
    def calculate_tax(self, subtotal: float, jurisdiction: str, exemption: str | None = None) -> TaxBreakdown:
        """Compute tax for ``subtotal``.

        ``exemption`` is the buyer's exemption certificate number, if any.
        Raises ValidationError when the jurisdiction is unknown.
        """
        ...
