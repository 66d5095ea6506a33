"""Domain models for proposed logging actions."""

from dataclasses import dataclass, field
from typing import Literal

from health_assistant.domain.nutrition import Candidate, FoodDetail

ActionKind = Literal[
    "meal", "symptom", "supplement", "sleep", "shopping_item", "delete"
]
ActionStatus = Literal["ready", "applying", "applied", "error"]
Operation = Literal["create", "edit", "delete"]
MealType = Literal["breakfast", "lunch", "dinner", "snack"]
EntryType = Literal["meal", "symptom", "supplement", "sleep", "shopping_item"]

MEAL_TYPES: tuple[str, ...] = ("breakfast", "lunch", "dinner", "snack")
ENTRY_TYPES: tuple[str, ...] = (
    "meal",
    "symptom",
    "supplement",
    "sleep",
    "shopping_item",
)
SLEEP_FACTORS: tuple[str, ...] = (
    "caffeine",
    "alcohol",
    "exercise",
    "stress",
    "screen_time",
    "late_meal",
    "medication",
    "late_night_chores",
)
SHOPPING_CATEGORIES: tuple[str, ...] = (
    "produce",
    "dairy",
    "meat",
    "grains",
    "frozen",
    "canned",
    "snacks",
    "beverages",
    "household",
    "other",
)

MIN_SERVINGS = 0.01
MAX_SERVINGS = 500.0


@dataclass(frozen=True)
class MealItem:
    """A single food inside a meal action."""

    key: str
    label: str
    food_query: str
    servings: float = 1.0
    grams_consumed: float | None = None
    quantity_count: float | None = None
    quantity_unit: str | None = None
    candidates: tuple[Candidate, ...] = ()
    selected_candidate: Candidate | None = None
    matched_food: FoodDetail | None = None
    matched_by_user: bool = False
    is_resolving: bool = False
    resolve_error: str | None = None
    notes: str | None = None

    @property
    def display_name(self) -> str:
        """Return the best human-readable name for the item."""
        return self.label.strip() or self.food_query.strip()


@dataclass(frozen=True)
class MealData:
    """Meal action payload."""

    date: str | None
    items: tuple[MealItem, ...]
    meal_type: MealType | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SymptomData:
    """Symptom action payload."""

    symptom_name: str
    severity: int | None = 5
    date: str | None = None
    time: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SupplementData:
    """Supplement action payload; dosage is None until known."""

    name: str
    dosage: float | None = None
    unit: str | None = None
    dose_count: float | None = None
    dose_unit: str | None = None
    strength_amount: float | None = None
    strength_unit: str | None = None
    date: str | None = None
    time: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SleepData:
    """Sleep action payload."""

    date: str | None
    bedtime: str | None = None
    wake_time: str | None = None
    quality: int | None = 3
    factors: tuple[str, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class ShoppingItemData:
    """Shopping list item payload."""

    name: str
    quantity: float | None = None
    unit: str | None = None
    category: str | None = None
    is_checked: bool | None = None
    notes: str | None = None


@dataclass(frozen=True)
class DeleteData:
    """Delete action payload; the target id lives on the action."""

    target_type: EntryType


ActionData = (
    MealData | SymptomData | SupplementData | SleepData | ShoppingItemData | DeleteData
)


@dataclass(frozen=True)
class Action:
    """A proposed create, edit or delete of one tracked entry."""

    id: str
    kind: ActionKind
    operation: Operation
    title: str
    data: ActionData
    confidence: float = 0.6
    selected: bool = True
    status: ActionStatus = "ready"
    error: str | None = None
    entry_id: str | None = None

    @property
    def is_applied(self) -> bool:
        """Return True once the action has been committed."""
        return self.status == "applied"

    @property
    def is_pending(self) -> bool:
        """Return True when the action is selected and not yet committed."""
        return self.selected and self.status != "applied"

    def meal_items(self) -> tuple[MealItem, ...]:
        """Return meal items, or an empty tuple for other kinds."""
        if isinstance(self.data, MealData):
            return self.data.items
        return ()


@dataclass(frozen=True)
class ChatMessage:
    """One transcript line of the conversation."""

    role: Literal["user", "assistant"]
    text: str
    action_ids: tuple[str, ...] = field(default_factory=tuple)
