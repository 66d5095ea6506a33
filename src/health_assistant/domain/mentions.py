"""Quantity and dose mentions recognized in raw utterances."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class QuantityMention:
    """A count+unit or mass span such as "3 pancakes" or "16oz"."""

    kind: Literal["count", "mass"]
    count: float
    unit: str
    hint: str
    start: int
    end: int
    grams: float | None = None


@dataclass(frozen=True)
class DoseMention:
    """A supplement dose/strength span such as "2x200mg"."""

    hint: str
    start: int
    end: int
    dose_count: float | None = None
    dose_unit: str | None = None
    strength_amount: float | None = None
    strength_unit: str | None = None

    @property
    def total_strength(self) -> float | None:
        """Return the combined strength across all doses, if known."""
        if self.strength_amount is None:
            return None
        return self.strength_amount * (self.dose_count or 1)
