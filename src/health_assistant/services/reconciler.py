"""Action reconciliation across conversational turns."""

import math
import re
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from health_assistant.domain.actions import (
    MAX_SERVINGS,
    MIN_SERVINGS,
    Action,
    ActionKind,
    DeleteData,
    MealData,
    MealItem,
    MealType,
    Operation,
    ShoppingItemData,
    SleepData,
    SupplementData,
    SymptomData,
)
from health_assistant.domain.nutrition import Candidate, FoodDetail
from health_assistant.domain.planner import (
    ActionHandling,
    DeleteProposal,
    DeleteProposalData,
    MealProposal,
    MealProposalData,
    ProposedAction,
    ProposedMealItem,
    ShoppingProposal,
    ShoppingProposalData,
    SleepProposal,
    SleepProposalData,
    SupplementProposal,
    SupplementProposalData,
    SymptomProposal,
    SymptomProposalData,
)

_GRAM_SERVING_UNITS = {"g", "gram", "grams", "ml"}

_PROPOSAL_TYPES: dict[tuple[ActionKind, Operation], str] = {
    ("meal", "create"): "log_meal",
    ("meal", "edit"): "edit_meal",
    ("symptom", "create"): "log_symptom",
    ("symptom", "edit"): "edit_symptom",
    ("supplement", "create"): "log_supplement",
    ("supplement", "edit"): "edit_supplement",
    ("sleep", "create"): "log_sleep",
    ("sleep", "edit"): "edit_sleep",
    ("shopping_item", "create"): "add_shopping_item",
    ("shopping_item", "edit"): "edit_shopping_item",
    ("delete", "delete"): "delete_entry",
}


def _new_id() -> str:
    return uuid4().hex


def normalize_name(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    cleaned = re.sub(r"[^a-z0-9 ]+", " ", text.strip().lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def clamp_servings(value: float | None) -> float:
    """Round servings to two decimals within the allowed range."""
    if value is None or not math.isfinite(value):
        return 1.0
    rounded = round(value, 2)
    return max(MIN_SERVINGS, min(MAX_SERVINGS, rounded))


def servings_from_grams(food: FoodDetail | None, grams: float | None) -> float | None:
    """Return grams / serving size when the food is measured by weight."""
    if food is None or grams is None or not math.isfinite(grams) or grams <= 0:
        return None
    if food.serving_size <= 0:
        return None
    if food.serving_size_unit.strip().lower() not in _GRAM_SERVING_UNITS:
        return None
    return grams / food.serving_size


def compute_servings(item: MealItem) -> float:
    """Return the best servings estimate for an item."""
    from_grams = servings_from_grams(item.matched_food, item.grams_consumed)
    if from_grams is not None:
        return clamp_servings(from_grams)
    if item.quantity_count is not None:
        return clamp_servings(item.quantity_count)
    return clamp_servings(item.servings)


def _sum_optional(first: float | None, second: float | None) -> float | None:
    if first is not None and second is not None:
        return first + second
    return first if first is not None else second


def _merge_items(existing: MealItem, item: MealItem) -> MealItem:
    return replace(
        existing,
        label=existing.label or item.label,
        food_query=existing.food_query or item.food_query,
        grams_consumed=_sum_optional(existing.grams_consumed, item.grams_consumed),
        quantity_count=_sum_optional(existing.quantity_count, item.quantity_count),
        quantity_unit=existing.quantity_unit or item.quantity_unit,
        servings=clamp_servings(existing.servings + item.servings),
        candidates=existing.candidates or item.candidates,
        selected_candidate=existing.selected_candidate or item.selected_candidate,
        matched_food=existing.matched_food or item.matched_food,
        matched_by_user=existing.matched_by_user or item.matched_by_user,
        is_resolving=existing.is_resolving or item.is_resolving,
        resolve_error=existing.resolve_error or item.resolve_error,
    )


def dedupe_meal_items(items: Sequence[MealItem]) -> tuple[MealItem, ...]:
    """Merge items whose normalized query (or label) is identical."""
    merged: dict[str, MealItem] = {}
    for item in items:
        key = normalize_name(item.food_query or item.label)
        existing = merged.get(key)
        merged[key] = item if existing is None else _merge_items(existing, item)
    return tuple(merged.values())


def reconcile(
    actions: list[Action], proposed: list[Action], handling: ActionHandling
) -> list[Action]:
    """Merge a turn's proposed actions into the working set."""
    if handling == "keep":
        return actions
    applied = [action for action in actions if action.is_applied]
    if handling == "clear" or not proposed:
        return applied
    return [*applied, *proposed]


def default_meal_type(now: datetime | None = None) -> MealType:
    """Pick a meal type from the local clock."""
    hour = (now or datetime.now()).hour
    if hour < 10:
        return "breakfast"
    if hour < 14:
        return "lunch"
    if hour < 18:
        return "snack"
    return "dinner"


def proposals_to_actions(
    proposals: Sequence[ProposedAction],
    today: str,
    id_factory: Callable[[], str] = _new_id,
) -> list[Action]:
    """Build working actions from planner proposals."""
    return [_proposal_to_action(proposal, today, id_factory) for proposal in proposals]


def _proposal_to_action(
    proposal: ProposedAction, today: str, id_factory: Callable[[], str]
) -> Action:
    operation: Operation = "create"
    if proposal.type.startswith("edit_"):
        operation = "edit"
    elif proposal.type == "delete_entry":
        operation = "delete"
    creating = operation == "create"
    base = {
        "id": id_factory(),
        "operation": operation,
        "title": proposal.title,
        "confidence": proposal.confidence,
        "entry_id": proposal.entry_id,
    }

    if isinstance(proposal, MealProposal):
        data = proposal.data
        items = [
            MealItem(
                key=id_factory(),
                label=item.label,
                food_query=item.food_query,
                grams_consumed=item.grams_consumed,
                servings=clamp_servings(item.servings),
                notes=item.notes,
            )
            for item in data.items or []
        ]
        return Action(
            kind="meal",
            data=MealData(
                date=data.date or (today if creating else None),
                meal_type=data.meal_type,
                items=dedupe_meal_items(items),
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(proposal, SymptomProposal):
        data = proposal.data
        severity = data.severity
        if severity is None and creating:
            severity = 5
        return Action(
            kind="symptom",
            data=SymptomData(
                symptom_name=(data.symptom or "").strip(),
                severity=severity,
                date=data.date,
                time=data.time,
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(proposal, SupplementProposal):
        data = proposal.data
        return Action(
            kind="supplement",
            data=SupplementData(
                name=(data.supplement or "").strip(),
                dosage=data.dosage,
                unit=data.unit,
                date=data.date,
                time=data.time,
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(proposal, SleepProposal):
        data = proposal.data
        quality = data.quality
        if quality is None and creating:
            quality = 3
        return Action(
            kind="sleep",
            data=SleepData(
                date=data.date or (today if creating else None),
                bedtime=data.bedtime,
                wake_time=data.wake_time,
                quality=quality,
                factors=tuple(data.factors or ()),
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(proposal, ShoppingProposal):
        data = proposal.data
        return Action(
            kind="shopping_item",
            data=ShoppingItemData(
                name=(data.name or "").strip(),
                quantity=data.quantity,
                unit=data.unit,
                category=data.category,
                is_checked=data.is_checked,
                notes=data.notes,
            ),
            **base,
        )
    return Action(
        kind="delete",
        data=DeleteData(target_type=proposal.data.entry_type),
        **base,
    )


def actions_to_proposals(actions: Sequence[Action]) -> list[ProposedAction]:
    """Convert unapplied actions back to the planner's format."""
    return [
        _action_to_proposal(action) for action in actions if not action.is_applied
    ]


def _action_to_proposal(action: Action) -> ProposedAction:  # noqa: PLR0911
    proposal_type = _PROPOSAL_TYPES[(action.kind, action.operation)]
    base = {
        "type": proposal_type,
        "title": action.title,
        "confidence": action.confidence,
        "entry_id": action.entry_id,
    }
    data = action.data
    if isinstance(data, MealData):
        return MealProposal(
            data=MealProposalData(
                date=data.date,
                meal_type=data.meal_type,
                items=[
                    ProposedMealItem(
                        label=item.label,
                        food_query=item.food_query,
                        grams_consumed=item.grams_consumed,
                        servings=item.servings,
                        notes=item.notes,
                    )
                    for item in data.items
                ],
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(data, SymptomData):
        return SymptomProposal(
            data=SymptomProposalData(
                symptom=data.symptom_name or None,
                severity=data.severity,
                date=data.date,
                time=data.time,
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(data, SupplementData):
        return SupplementProposal(
            data=SupplementProposalData(
                supplement=data.name or None,
                dosage=data.dosage,
                unit=data.unit,
                date=data.date,
                time=data.time,
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(data, SleepData):
        return SleepProposal(
            data=SleepProposalData(
                date=data.date,
                bedtime=data.bedtime,
                wake_time=data.wake_time,
                quality=data.quality,
                factors=list(data.factors) or None,
                notes=data.notes,
            ),
            **base,
        )
    if isinstance(data, ShoppingItemData):
        return ShoppingProposal(
            data=ShoppingProposalData(
                name=data.name or None,
                quantity=data.quantity,
                unit=data.unit,
                category=data.category,
                is_checked=data.is_checked,
                notes=data.notes,
            ),
            **base,
        )
    return DeleteProposal(
        data=DeleteProposalData(entry_type=data.target_type),
        **base,
    )


def _map_action(
    actions: list[Action], action_id: str, update: Callable[[Action], Action]
) -> list[Action]:
    return [update(action) if action.id == action_id else action for action in actions]


def _map_item(
    actions: list[Action],
    action_id: str,
    item_key: str,
    update: Callable[[MealItem], MealItem],
) -> list[Action]:
    def apply(action: Action) -> Action:
        if not isinstance(action.data, MealData):
            return action
        items = tuple(
            update(item) if item.key == item_key else item for item in action.data.items
        )
        return replace(action, data=replace(action.data, items=items))

    return _map_action(actions, action_id, apply)


def toggle_selected(actions: list[Action], action_id: str) -> list[Action]:
    """Flip selection of one unapplied action."""
    return _map_action(
        actions,
        action_id,
        lambda action: action
        if action.is_applied
        else replace(action, selected=not action.selected),
    )


def update_meal_item(
    actions: list[Action], action_id: str, item_key: str, **changes: object
) -> list[Action]:
    """Apply field changes to one meal item and recompute its servings."""

    def update(item: MealItem) -> MealItem:
        updated = replace(item, **changes)
        if "servings" in changes and "grams_consumed" not in changes:
            return replace(updated, servings=clamp_servings(updated.servings))
        return replace(updated, servings=compute_servings(updated))

    return _map_item(actions, action_id, item_key, update)


def choose_candidate(
    actions: list[Action],
    action_id: str,
    item_key: str,
    candidate: Candidate,
    food: FoodDetail,
) -> list[Action]:
    """Pin a user-chosen candidate and its detail on a meal item."""

    def update(item: MealItem) -> MealItem:
        candidates = item.candidates
        if all(c.external_id != candidate.external_id for c in candidates):
            candidates = (candidate, *candidates)
        chosen = replace(
            item,
            candidates=candidates,
            selected_candidate=candidate,
            matched_food=food,
            matched_by_user=True,
            is_resolving=False,
            resolve_error=None,
        )
        return replace(chosen, servings=compute_servings(chosen))

    return _map_item(actions, action_id, item_key, update)


def remove_meal_item(
    actions: list[Action], action_id: str, item_key: str
) -> list[Action]:
    """Drop a meal item; a meal left without items is removed entirely."""
    result: list[Action] = []
    for action in actions:
        if action.id != action_id or not isinstance(action.data, MealData):
            result.append(action)
            continue
        items = tuple(item for item in action.data.items if item.key != item_key)
        if not items and action.operation == "create":
            continue
        result.append(replace(action, data=replace(action.data, items=items)))
    return result
