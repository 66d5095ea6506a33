"""Apply engine: commits selected actions and builds receipts."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from health_assistant.domain.actions import (
    Action,
    DeleteData,
    EntryType,
    MealData,
    ShoppingItemData,
    SleepData,
    SupplementData,
    SymptomData,
)
from health_assistant.domain.errors import ApplyPreconditionError
from health_assistant.services.action_store import ActionStore
from health_assistant.services.reconciler import default_meal_type

_logger = logging.getLogger(__name__)

SKIPPED_ERROR = "Skipped because an earlier action failed."
MISSING_ENTRY_ERROR = "This change needs an existing entry; pick one to update first."
_SPOKEN_ITEMS_LIMIT = 6
_TARGET_LABELS = {
    "meal": "meal",
    "symptom": "symptom",
    "supplement": "supplement",
    "sleep": "sleep",
    "shopping_item": "shopping item",
}


class EntryStore(Protocol):
    """Create/update/delete contract for one kind of tracked entry."""

    async def create(self, payload: dict[str, object]) -> dict[str, object]:
        """Persist a new entry and return the stored record with its id."""

    async def update(
        self, entry_id: str, payload: dict[str, object]
    ) -> dict[str, object]:
        """Update an entry and return the stored record."""

    async def delete(self, entry_id: str) -> None:
        """Delete an entry."""


@dataclass
class EntryStores:
    """One store per entry type."""

    meal: EntryStore
    symptom: EntryStore
    supplement: EntryStore
    sleep: EntryStore
    shopping_item: EntryStore

    def for_type(self, entry_type: EntryType) -> EntryStore:
        """Return the store for an entry type."""
        return getattr(self, entry_type)


@dataclass(frozen=True)
class ApplyReport:
    """Outcome of one apply batch."""

    ok: bool
    receipt: str = ""
    applied_ids: tuple[str, ...] = ()
    failed_action_id: str | None = None
    error: str | None = None


def _clock() -> datetime:
    return datetime.now()


def build_logged_at(date: str | None, time: str | None, now: datetime) -> str:
    """Combine date and time; date only means noon, nothing means now."""
    if date:
        try:
            return datetime.fromisoformat(f"{date}T{time or '12:00'}:00").isoformat()
        except ValueError:
            _logger.warning("Ignoring invalid date/time %r %r", date, time)
    return now.isoformat()


def _item_names(data: MealData) -> str:
    names = [item.display_name for item in data.items if item.display_name]
    return ", ".join(names[:_SPOKEN_ITEMS_LIMIT])


def describe_action(action: Action, now: datetime) -> str:  # noqa: PLR0911
    """Return one human-readable line for an action."""
    data = action.data
    editing = action.operation == "edit"
    if isinstance(data, DeleteData):
        return f"Delete {_TARGET_LABELS[data.target_type]} entry."
    if isinstance(data, MealData):
        names = _item_names(data)
        if editing:
            label = data.meal_type or "meal"
            return f"Update {label}: {names}." if names else f"Update {label}."
        return f"Log {data.meal_type or default_meal_type(now)}: {names}."
    if isinstance(data, SymptomData):
        verb = "Update" if editing else "Log"
        if not data.symptom_name:
            return f"{verb} symptom."
        return f"{verb} symptom: {data.symptom_name}."
    if isinstance(data, SupplementData):
        if editing:
            if not data.name:
                return "Update supplement."
            return f"Update supplement: {data.name}."
        if data.dosage is not None and data.unit:
            return f"Log {data.name}, {data.dosage:g} {data.unit}."
        return f"Log {data.name}."
    if isinstance(data, SleepData):
        verb = "Update" if editing else "Log"
        return f"{verb} sleep for {data.date}." if data.date else f"{verb} sleep."
    if isinstance(data, ShoppingItemData):
        if editing:
            if not data.name:
                return "Update shopping item."
            return f"Update shopping item: {data.name}."
        return f"Add to shopping list: {data.name}."
    return action.title


def describe_actions(actions: Sequence[Action], now: datetime) -> str:
    """Join description lines for every selected action."""
    return " ".join(
        describe_action(action, now) for action in actions if action.selected
    )


def precondition_error(action: Action) -> str | None:
    """Return why an action cannot be committed, or None."""
    if action.operation in ("edit", "delete") and not action.entry_id:
        return MISSING_ENTRY_ERROR
    if isinstance(action.data, MealData):
        if action.operation == "create" and not action.data.items:
            return "Add at least one food before logging this meal."
        unresolved = [
            item.display_name
            for item in action.data.items
            if item.matched_food is None
        ]
        if unresolved:
            return f"Pick USDA matches for: {', '.join(unresolved)}"
    return None


def _meal_payload(data: MealData, creating: bool, now: datetime) -> dict[str, object]:
    meal_type = data.meal_type or (default_meal_type(now) if creating else None)
    payload: dict[str, object] = {
        "date": data.date or (now.date().isoformat() if creating else None),
        "meal_type": meal_type,
        "notes": data.notes,
    }
    if data.items or creating:
        payload["items"] = [
            {
                "custom_food_name": item.label.strip()
                or (item.matched_food.description if item.matched_food else "")
                or "Unknown food",
                "fdc_id": item.matched_food.external_id if item.matched_food else None,
                "servings": item.servings,
                "grams_consumed": item.grams_consumed,
                "quantity_count": item.quantity_count,
                "quantity_unit": item.quantity_unit,
                "custom_food_nutrients": (
                    dict(item.matched_food.nutrients) if item.matched_food else None
                ),
                "original_food_name": item.food_query,
                "matched_food_name": (
                    item.matched_food.description if item.matched_food else None
                ),
                "matched_data_type": (
                    item.matched_food.data_type if item.matched_food else None
                ),
                "matched_brand_owner": (
                    item.matched_food.brand_owner if item.matched_food else None
                ),
                "match_method": "user" if item.matched_by_user else "auto",
            }
            for item in data.items
        ]
    return payload


def build_payload(action: Action, now: datetime) -> dict[str, object]:
    """Build the store payload for a create or edit action."""
    data = action.data
    creating = action.operation == "create"
    if isinstance(data, MealData):
        payload = _meal_payload(data, creating, now)
    elif isinstance(data, SymptomData):
        severity = data.severity
        payload = {
            "symptom_name": data.symptom_name or None,
            "severity": (
                max(1, min(10, round(severity))) if severity is not None else None
            ),
            "logged_at": (
                build_logged_at(data.date, data.time, now)
                if creating or data.date
                else None
            ),
            "notes": data.notes,
        }
    elif isinstance(data, SupplementData):
        payload = {
            "supplement_name": data.name or None,
            "dosage": data.dosage if data.dosage is not None or not creating else 1,
            "unit": (data.unit or "serving") if creating else data.unit,
            "dose_count": data.dose_count,
            "dose_unit": data.dose_unit,
            "strength_amount": data.strength_amount,
            "strength_unit": data.strength_unit,
            "logged_at": (
                build_logged_at(data.date, data.time, now)
                if creating or data.date
                else None
            ),
            "notes": data.notes,
        }
    elif isinstance(data, SleepData):
        payload = {
            "date": data.date or (now.date().isoformat() if creating else None),
            "bedtime": data.bedtime,
            "wake_time": data.wake_time,
            "quality": data.quality,
            "factors": list(data.factors) if data.factors or creating else None,
            "notes": data.notes,
        }
    elif isinstance(data, ShoppingItemData):
        payload = {
            "name": data.name or None,
            "quantity": data.quantity,
            "unit": data.unit,
            "category": (data.category or "other") if creating else data.category,
            "is_checked": data.is_checked,
        }
    else:
        raise ValueError(f"Action {action.id} has no payload")
    if creating:
        return payload
    return {key: value for key, value in payload.items() if value is not None}


@dataclass
class ApplyEngine:
    """Commits selected actions in order through the entry stores."""

    stores: EntryStores
    clock: Callable[[], datetime] = _clock

    async def apply(self, store: ActionStore) -> ApplyReport:
        """Commit every pending action of store.

        Raises ApplyPreconditionError before any mutation when an action is
        not ready to be committed. Mutation failures stop the batch and are
        reported through the returned ApplyReport. The engine holds no
        per-session state; callers serialize applies on their own store.
        """
        batch = store.pending()
        for action in batch:
            message = precondition_error(action)
            if message is not None:
                store.update(action.id, lambda current: replace(current, error=message))
                _logger.info("Apply blocked by %s: %s", action.id, message)
                raise ApplyPreconditionError(action.id, message)

        return await self._run(store, batch)

    async def _run(self, store: ActionStore, batch: list[Action]) -> ApplyReport:
        now = self.clock()
        applied: list[Action] = []
        for index, action in enumerate(batch):
            store.update(
                action.id,
                lambda current: replace(current, status="applying", error=None),
            )
            try:
                entry_id = await self._commit(action, now)
            except Exception as exc:
                message = str(exc) or "Failed to apply action"
                _logger.exception("Apply failed for %s", action.id)
                store.update(
                    action.id,
                    lambda current: replace(current, status="error", error=message),
                )
                for skipped in batch[index + 1 :]:
                    store.update(
                        skipped.id,
                        lambda current: replace(current, error=SKIPPED_ERROR),
                    )
                return ApplyReport(
                    ok=False,
                    applied_ids=tuple(item.id for item in applied),
                    failed_action_id=action.id,
                    error=message,
                )
            committed = store.update(
                action.id,
                lambda current: replace(
                    current,
                    status="applied",
                    selected=False,
                    error=None,
                    entry_id=entry_id,
                ),
            )
            applied.append(committed or action)
            _logger.info("Applied %s %s -> %s", action.operation, action.kind, entry_id)

        receipt = " ".join(describe_action(action, now) for action in applied)
        return ApplyReport(
            ok=True,
            receipt=receipt,
            applied_ids=tuple(action.id for action in applied),
        )

    async def _commit(self, action: Action, now: datetime) -> str | None:
        data = action.data
        if isinstance(data, DeleteData):
            await self.stores.for_type(data.target_type).delete(str(action.entry_id))
            return action.entry_id
        entry_store = self.stores.for_type(action.kind)
        payload = build_payload(action, now)
        if action.operation == "edit":
            record = await entry_store.update(str(action.entry_id), payload)
        else:
            record = await entry_store.create(payload)
        entry_id = record.get("id") if record else None
        if entry_id is None:
            raise RuntimeError(f"Store returned no id for {action.kind}")
        return str(entry_id)
