"""Food lookup domain models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Candidate:
    """One possible food database match for a free-text query."""

    external_id: str
    description: str
    data_type: str | None = None
    brand_owner: str | None = None
    rank_score: float = 0.0


@dataclass(frozen=True)
class FoodDetail:
    """Full food record with tracked nutrients."""

    external_id: str
    description: str
    data_type: str | None
    brand_owner: str | None
    serving_size: float
    serving_size_unit: str
    nutrients: dict[str, float]

    def as_candidate(self) -> Candidate:
        """Return a candidate view of this food."""
        return Candidate(
            external_id=self.external_id,
            description=self.description,
            data_type=self.data_type,
            brand_owner=self.brand_owner,
        )


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one food query."""

    query: str
    candidates: tuple[Candidate, ...]
    selected: Candidate | None
    food: FoodDetail | None
    from_override: bool = False

    @property
    def resolved(self) -> bool:
        """Return True when a food detail was found."""
        return self.food is not None
