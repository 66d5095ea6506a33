"""Pydantic models for the planner request/response contract."""

from dataclasses import dataclass
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from health_assistant.domain.actions import MealType

ApplyPolicy = Literal["none", "confirm", "auto"]
ActionHandling = Literal["keep", "clear", "replace"]
Intent = Literal["log", "clarify", "chat"]
EntryTypeName = Literal["meal", "symptom", "supplement", "sleep", "shopping_item"]
SleepFactor = Literal[
    "caffeine",
    "alcohol",
    "exercise",
    "stress",
    "screen_time",
    "late_meal",
    "medication",
    "late_night_chores",
]
ShoppingCategory = Literal[
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
]

_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
_TIME_PATTERN = r"^\d{2}:\d{2}$"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProposedMealItem(_WireModel):
    """Meal item as exchanged with the planner."""

    label: str = Field(min_length=1)
    food_query: str = Field(alias="usdaQuery", min_length=1)
    grams_consumed: float | None = Field(default=None, alias="gramsConsumed", ge=0)
    servings: float | None = Field(default=None, ge=0)
    notes: str | None = None


class MealProposalData(_WireModel):
    """Meal data for log/edit proposals."""

    date: str | None = Field(default=None, pattern=_DATE_PATTERN)
    meal_type: MealType | None = Field(default=None, alias="mealType")
    items: list[ProposedMealItem] | None = None
    notes: str | None = None


class SymptomProposalData(_WireModel):
    """Symptom data for log/edit proposals."""

    symptom: str | None = None
    severity: int | None = Field(default=None, ge=1, le=10)
    date: str | None = Field(default=None, pattern=_DATE_PATTERN)
    time: str | None = Field(default=None, pattern=_TIME_PATTERN)
    notes: str | None = None


class SupplementProposalData(_WireModel):
    """Supplement data for log/edit proposals."""

    supplement: str | None = None
    dosage: float | None = Field(default=None, ge=0)
    unit: str | None = None
    date: str | None = Field(default=None, pattern=_DATE_PATTERN)
    time: str | None = Field(default=None, pattern=_TIME_PATTERN)
    notes: str | None = None


class SleepProposalData(_WireModel):
    """Sleep data for log/edit proposals."""

    date: str | None = Field(default=None, pattern=_DATE_PATTERN)
    bedtime: str | None = Field(default=None, pattern=_TIME_PATTERN)
    wake_time: str | None = Field(default=None, pattern=_TIME_PATTERN)
    quality: int | None = Field(default=None, ge=1, le=5)
    factors: list[SleepFactor] | None = None
    notes: str | None = None


class ShoppingProposalData(_WireModel):
    """Shopping item data for add/edit proposals."""

    name: str | None = None
    quantity: float | None = Field(default=None, ge=0)
    unit: str | None = None
    category: ShoppingCategory | None = None
    is_checked: bool | None = None
    notes: str | None = None


class DeleteProposalData(_WireModel):
    """Target of a delete proposal."""

    entry_type: EntryTypeName = Field(alias="entryType")


class _ProposalBase(_WireModel):
    title: str = Field(min_length=1)
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    entry_id: str | None = Field(default=None, alias="entryId")


class MealProposal(_ProposalBase):
    """Proposal to log or edit a meal."""

    type: Literal["log_meal", "edit_meal"]
    data: MealProposalData


class SymptomProposal(_ProposalBase):
    """Proposal to log or edit a symptom."""

    type: Literal["log_symptom", "edit_symptom"]
    data: SymptomProposalData


class SupplementProposal(_ProposalBase):
    """Proposal to log or edit a supplement dose."""

    type: Literal["log_supplement", "edit_supplement"]
    data: SupplementProposalData


class SleepProposal(_ProposalBase):
    """Proposal to log or edit a night of sleep."""

    type: Literal["log_sleep", "edit_sleep"]
    data: SleepProposalData


class ShoppingProposal(_ProposalBase):
    """Proposal to add or edit a shopping list item."""

    type: Literal["add_shopping_item", "edit_shopping_item"]
    data: ShoppingProposalData


class DeleteProposal(_ProposalBase):
    """Proposal to delete an existing entry."""

    type: Literal["delete_entry"]
    data: DeleteProposalData


ProposedAction = Annotated[
    MealProposal
    | SymptomProposal
    | SupplementProposal
    | SleepProposal
    | ShoppingProposal
    | DeleteProposal,
    Field(discriminator="type"),
]


class Decision(_WireModel):
    """Planner decision for the current turn."""

    intent: Intent = "log"
    apply: ApplyPolicy = "confirm"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    action_handling: ActionHandling = "replace"


class PlannerResponse(_WireModel):
    """Structured planner output."""

    message: str = Field(min_length=1)
    actions: list[ProposedAction] = Field(default_factory=list, max_length=12)
    decision: Decision = Field(default_factory=Decision)


class HistoryMessage(_WireModel):
    """Conversation history line sent to the planner."""

    role: Literal["user", "assistant"]
    text: str = Field(min_length=1)


class RecentEntry(_WireModel):
    """Recently persisted entry the planner may edit or delete."""

    id: str
    type: EntryTypeName
    summary: str = Field(max_length=200)
    date: str | None = None
    time: str | None = None


class PlanRequest(_WireModel):
    """Everything the planner sees for one turn."""

    text: str = Field(min_length=1)
    history: list[HistoryMessage] = Field(default_factory=list)
    existing_actions: list[ProposedAction] = Field(
        default_factory=list, alias="existingActions"
    )
    recent_entries: list[RecentEntry] | None = Field(
        default=None, alias="recentEntries"
    )
    today: str | None = None


@dataclass(frozen=True)
class PlanResult:
    """Planner call outcome; exactly one of response/error is set."""

    response: PlannerResponse | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the planner produced a response."""
        return self.response is not None and self.error is None
