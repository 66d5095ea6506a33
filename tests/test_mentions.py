"""Tests for quantity and dose extraction."""

from health_assistant.domain.actions import Action, MealData, MealItem, SupplementData
from health_assistant.services.mentions import (
    enrich_actions,
    extract_doses,
    extract_quantities,
    parse_number,
    singularize,
)


def _meal(*labels: str) -> Action:
    return Action(
        id="meal-1",
        kind="meal",
        operation="create",
        title="Breakfast",
        data=MealData(
            date="2026-10-16",
            items=tuple(
                MealItem(key=f"item-{index}", label=label, food_query=label)
                for index, label in enumerate(labels)
            ),
        ),
    )


def _supplement(name: str) -> Action:
    return Action(
        id="supp-1",
        kind="supplement",
        operation="create",
        title=name.title(),
        data=SupplementData(name=name),
    )


def test_parse_number_variants() -> None:
    assert parse_number("3") == 3
    assert parse_number("1/2") == 0.5
    assert parse_number("1 1/2") == 1.5
    assert parse_number("½") == 0.5
    assert parse_number("two") == 2
    assert parse_number("a couple of") == 2
    assert parse_number("an") == 1
    assert parse_number("1/0") is None
    assert parse_number("lots") is None


def test_singularize() -> None:
    assert singularize("pancakes") == "pancake"
    assert singularize("berries") == "berry"
    assert singularize("tomatoes") == "tomato"
    assert singularize("peaches") == "peach"
    assert singularize("glass") == "glass"


def test_extracts_count_and_mass_mentions() -> None:
    mentions = extract_quantities("I had 3 pancakes and 16oz of coffee")

    assert [mention.kind for mention in mentions] == ["count", "mass"]
    pancakes, coffee = mentions
    assert pancakes.count == 3
    assert pancakes.unit == "pancake"
    assert coffee.unit == "oz"
    assert coffee.hint == "coffee"
    assert coffee.grams == 453.5924


def test_household_units_are_counts() -> None:
    mentions = extract_quantities("two cups of rice")

    assert len(mentions) == 1
    assert mentions[0].kind == "count"
    assert mentions[0].count == 2
    assert mentions[0].unit == "cup"
    assert mentions[0].hint == "rice"


def test_time_expressions_are_not_quantities() -> None:
    assert extract_quantities("at 7 am I woke up") == []


def test_extracts_multiplied_dose() -> None:
    mentions = extract_doses("took 2x200mg magnesium")

    assert len(mentions) == 1
    dose = mentions[0]
    assert dose.dose_count == 2
    assert dose.strength_amount == 200
    assert dose.strength_unit == "mg"
    assert dose.total_strength == 400
    assert dose.hint == "magnesium"


def test_extracts_form_count_dose() -> None:
    mentions = extract_doses("2 capsules of fish oil")

    assert len(mentions) == 1
    assert mentions[0].dose_count == 2
    assert mentions[0].dose_unit == "capsule"
    assert mentions[0].strength_amount is None


def test_enrich_attaches_quantities_to_meal_items() -> None:
    actions = enrich_actions(
        [_meal("pancakes", "coffee")], "I had 3 pancakes and 16oz of coffee"
    )

    pancakes, coffee = actions[0].meal_items()
    assert pancakes.quantity_count == 3
    assert pancakes.quantity_unit == "pancake"
    assert pancakes.servings == 3
    assert coffee.grams_consumed == 453.5924
    assert coffee.quantity_count is None


def test_enrich_sets_supplement_dosage_from_strength() -> None:
    actions = enrich_actions([_supplement("magnesium")], "took 2x200mg magnesium")

    data = actions[0].data
    assert isinstance(data, SupplementData)
    assert data.dosage == 400
    assert data.unit == "mg"
    assert data.dose_count == 2


def test_enrich_keeps_planner_dosage() -> None:
    action = _supplement("magnesium")
    action = Action(
        id=action.id,
        kind=action.kind,
        operation=action.operation,
        title=action.title,
        data=SupplementData(name="magnesium", dosage=250, unit="mg"),
    )

    data = enrich_actions([action], "took 2x200mg magnesium")[0].data

    assert isinstance(data, SupplementData)
    assert data.dosage == 250
    assert data.strength_amount == 200


def test_unmatched_mentions_leave_actions_untouched() -> None:
    actions = [_meal("toast")]

    assert enrich_actions(actions, "3 pancakes") == actions


def test_hint_stops_at_conjunctions() -> None:
    (pancakes,) = extract_quantities("3 pancakes with syrup")
    (chicken,) = extract_quantities("16oz of grilled chicken")

    assert (pancakes.count, pancakes.unit, pancakes.hint) == (3, "pancake", "")
    assert (chicken.count, chicken.unit) == (16, "oz")
    assert chicken.hint == "grilled chicken"
