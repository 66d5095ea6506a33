"""Tests for the apply engine."""

import asyncio
from dataclasses import replace
from datetime import datetime

import pytest

from health_assistant.domain.actions import (
    Action,
    DeleteData,
    MealItem,
    ShoppingItemData,
    SupplementData,
    SymptomData,
)
from health_assistant.domain.errors import ApplyPreconditionError
from health_assistant.services.action_store import ActionStore
from health_assistant.services.apply import (
    MISSING_ENTRY_ERROR,
    SKIPPED_ERROR,
    ApplyEngine,
    build_logged_at,
    build_payload,
    describe_action,
)
from tests.conftest import make_entry_stores, meal_action

NOW = datetime(2026, 10, 16, 12, 30)


def _engine(stores=None) -> ApplyEngine:
    return ApplyEngine(stores=stores or make_entry_stores(), clock=lambda: NOW)


def _symptom(action_id: str = "symptom-1", **changes: object) -> Action:
    action = Action(
        id=action_id,
        kind="symptom",
        operation="create",
        title="Headache",
        data=SymptomData(symptom_name="headache", severity=6),
    )
    return replace(action, **changes)


def _supplement(action_id: str = "supp-1") -> Action:
    return Action(
        id=action_id,
        kind="supplement",
        operation="create",
        title="Vitamin D",
        data=SupplementData(name="vitamin d", dosage=1000, unit="iu"),
    )


def test_logged_at_rules() -> None:
    assert build_logged_at("2026-10-15", "08:15", NOW) == "2026-10-15T08:15:00"
    assert build_logged_at("2026-10-15", None, NOW) == "2026-10-15T12:00:00"
    assert build_logged_at(None, "08:15", NOW) == NOW.isoformat()


def test_unresolved_meal_blocks_before_any_mutation() -> None:
    stores = make_entry_stores()
    unresolved = meal_action(
        "meal-2",
        items=(MealItem(key="x", label="mystery stew", food_query="mystery stew"),),
    )
    store = ActionStore()
    store.replace_all([_symptom(), unresolved])

    with pytest.raises(ApplyPreconditionError) as excinfo:
        asyncio.run(_engine(stores).apply(store))

    assert excinfo.value.action_id == "meal-2"
    assert excinfo.value.message == "Pick USDA matches for: mystery stew"
    assert stores.symptom.calls == []
    assert stores.meal.calls == []
    assert store.get("meal-2").error == excinfo.value.message
    assert store.get("symptom-1").status == "ready"


def test_deselected_unresolved_meal_does_not_block() -> None:
    unresolved = meal_action(
        "meal-2",
        selected=False,
        items=(MealItem(key="x", label="stew", food_query="stew"),),
    )
    store = ActionStore()
    store.replace_all([_symptom(), unresolved])

    report = asyncio.run(_engine().apply(store))

    assert report.ok
    assert report.applied_ids == ("symptom-1",)


def test_edit_without_entry_id_is_rejected() -> None:
    store = ActionStore()
    store.replace_all([_symptom(operation="edit")])

    with pytest.raises(ApplyPreconditionError) as excinfo:
        asyncio.run(_engine().apply(store))

    assert excinfo.value.message == MISSING_ENTRY_ERROR


def test_apply_commits_in_order_and_builds_receipt() -> None:
    stores = make_entry_stores()
    store = ActionStore()
    store.replace_all([meal_action(), _supplement()])

    report = asyncio.run(_engine(stores).apply(store))

    assert report.ok
    assert report.receipt == "Log breakfast: eggs. Log vitamin d, 1000 iu."
    meal = store.get("meal-1")
    assert meal.status == "applied"
    assert meal.selected is False
    assert meal.entry_id == "meal-1"
    assert store.get("supp-1").entry_id == "supplement-1"
    payload = stores.meal.calls[0][1]
    assert payload["meal_type"] == "breakfast"
    assert payload["items"][0]["fdc_id"] == "4001"
    assert payload["items"][0]["match_method"] == "auto"


def test_failure_stops_batch_and_marks_rest_skipped() -> None:
    stores = make_entry_stores()
    stores.symptom.fail_with = "database unavailable"
    store = ActionStore()
    store.replace_all([_supplement(), _symptom(), _supplement("supp-2")])

    report = asyncio.run(_engine(stores).apply(store))

    assert not report.ok
    assert report.failed_action_id == "symptom-1"
    assert report.error == "database unavailable"
    assert report.applied_ids == ("supp-1",)
    assert store.get("supp-1").status == "applied"
    assert store.get("symptom-1").status == "error"
    assert store.get("supp-2").error == SKIPPED_ERROR
    assert store.get("supp-2").status == "ready"
    assert len(stores.supplement.calls) == 1


def test_applied_actions_are_not_reapplied() -> None:
    stores = make_entry_stores()
    store = ActionStore()
    store.replace_all([_supplement()])
    engine = _engine(stores)

    asyncio.run(engine.apply(store))
    second = asyncio.run(engine.apply(store))

    assert second.ok
    assert second.applied_ids == ()
    assert len(stores.supplement.calls) == 1


def test_delete_uses_target_store() -> None:
    stores = make_entry_stores()
    store = ActionStore()
    store.replace_all(
        [
            Action(
                id="del-1",
                kind="delete",
                operation="delete",
                title="Remove sleep",
                data=DeleteData(target_type="sleep"),
                entry_id="sleep-9",
            )
        ]
    )

    report = asyncio.run(_engine(stores).apply(store))

    assert report.ok
    assert stores.sleep.calls == [("delete", "sleep-9")]
    assert report.receipt == "Delete sleep entry."


def test_edit_payload_drops_unset_fields() -> None:
    action = Action(
        id="s",
        kind="shopping_item",
        operation="edit",
        title="Check eggs",
        data=ShoppingItemData(name="eggs", is_checked=True),
        entry_id="shop-1",
    )

    assert build_payload(action, NOW) == {"name": "eggs", "is_checked": True}


def test_create_supplement_defaults_dose() -> None:
    action = Action(
        id="s",
        kind="supplement",
        operation="create",
        title="Fish oil",
        data=SupplementData(name="fish oil"),
    )

    payload = build_payload(action, NOW)

    assert payload["dosage"] == 1
    assert payload["unit"] == "serving"
    assert describe_action(action, NOW) == "Log fish oil."
