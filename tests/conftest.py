"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field

import pytest

from health_assistant.adapters.fdc_client import FdcClient
from health_assistant.config import Settings
from health_assistant.containers import AppContainer
from health_assistant.domain.actions import Action, MealData, MealItem
from health_assistant.domain.nutrition import Candidate, FoodDetail
from health_assistant.domain.voice import CapturePurpose, VoiceConfig
from health_assistant.services.apply import ApplyEngine, EntryStore, EntryStores
from health_assistant.services.cache import InMemoryCache
from health_assistant.services.consent import ConsentService, IntentClassifier
from health_assistant.services.nutrition import NutritionService
from health_assistant.services.overrides import (
    FoodOverrideRepository,
    FoodOverrideService,
)
from health_assistant.services.planner import PlannerClient, PlannerService
from health_assistant.services.resolver import CandidateResolver


def fdc_food(  # noqa: PLR0913
    fdc_id: int,
    description: str,
    data_type: str = "Foundation",
    score: float = 100.0,
    serving_size: float = 100,
    serving_unit: str = "g",
    calories: float = 100,
) -> dict[str, object]:
    """Return an FDC food payload usable for both search and detail."""
    return {
        "fdcId": fdc_id,
        "description": description,
        "dataType": data_type,
        "score": score,
        "servingSize": serving_size,
        "servingSizeUnit": serving_unit,
        "foodNutrients": [
            {"nutrientNumber": "1008", "amount": calories},
            {"nutrient": {"number": "1003"}, "amount": 5},
        ],
    }


@dataclass
class FakeFdcClient(FdcClient):
    """Fake FDC client serving foods from memory."""

    foods: dict[str, list[dict[str, object]]] = field(
        default_factory=lambda: {
            "pancakes": [
                fdc_food(2001, "Pancakes, plain, frozen", "Branded", score=900),
                fdc_food(
                    2002, "Pancakes, plain, prepared", "Survey (FNDDS)", score=500
                ),
            ],
            "coffee": [
                fdc_food(3001, "Beverages, coffee, brewed", "SR Legacy", score=400),
            ],
            "eggs": [
                fdc_food(4001, "Egg, whole, raw", "Foundation", score=300),
            ],
        }
    )
    missing_ids: set[str] = field(default_factory=set)
    failing_queries: set[str] = field(default_factory=set)
    search_calls: list[str] = field(default_factory=list)
    food_calls: list[str] = field(default_factory=list)
    delay_seconds: float = 0.0
    searches_in_flight: int = 0
    peak_searches: int = 0
    details_in_flight: int = 0
    peak_details: int = 0

    async def search_foods(self, query: str, page_size: int = 18) -> dict[str, object]:
        self.search_calls.append(query)
        self.searches_in_flight += 1
        self.peak_searches = max(self.peak_searches, self.searches_in_flight)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            if query in self.failing_queries:
                raise RuntimeError(f"search failed for {query}")
            return {"foods": self.foods.get(query, [])[:page_size]}
        finally:
            self.searches_in_flight -= 1

    async def get_food(self, fdc_id: str) -> dict[str, object] | None:
        self.food_calls.append(str(fdc_id))
        self.details_in_flight += 1
        self.peak_details = max(self.peak_details, self.details_in_flight)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            return self._find(str(fdc_id))
        finally:
            self.details_in_flight -= 1

    def _find(self, fdc_id: str) -> dict[str, object] | None:
        if fdc_id in self.missing_ids:
            return None
        for foods in self.foods.values():
            for food in foods:
                if str(food["fdcId"]) == fdc_id:
                    return food
        return None


@dataclass
class InMemoryOverrideRepository(FoodOverrideRepository):
    """In-memory override repository for tests."""

    overrides: dict[tuple[str, str], str] = field(default_factory=dict)

    def get_override(self, user_id: str, query_norm: str) -> str | None:
        return self.overrides.get((user_id, query_norm))

    def save_override(self, user_id: str, query_norm: str, external_id: str) -> None:
        self.overrides[(user_id, query_norm)] = external_id


@dataclass
class InMemoryEntryStore(EntryStore):
    """In-memory entry store that records every call."""

    name: str = "entry"
    records: dict[str, dict[str, object]] = field(default_factory=dict)
    calls: list[tuple[str, object]] = field(default_factory=list)
    fail_with: str | None = None
    gate: asyncio.Event | None = None

    async def create(self, payload: dict[str, object]) -> dict[str, object]:
        self.calls.append(("create", payload))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with:
            raise RuntimeError(self.fail_with)
        entry_id = f"{self.name}-{len(self.records) + 1}"
        self.records[entry_id] = payload
        return {"id": entry_id, **payload}

    async def update(
        self, entry_id: str, payload: dict[str, object]
    ) -> dict[str, object]:
        self.calls.append(("update", entry_id))
        if self.fail_with:
            raise RuntimeError(self.fail_with)
        self.records.setdefault(entry_id, {}).update(payload)
        return {"id": entry_id, **self.records[entry_id]}

    async def delete(self, entry_id: str) -> None:
        self.calls.append(("delete", entry_id))
        if self.fail_with:
            raise RuntimeError(self.fail_with)
        self.records.pop(entry_id, None)


def make_entry_stores() -> EntryStores:
    return EntryStores(
        meal=InMemoryEntryStore(name="meal"),
        symptom=InMemoryEntryStore(name="symptom"),
        supplement=InMemoryEntryStore(name="supplement"),
        sleep=InMemoryEntryStore(name="sleep"),
        shopping_item=InMemoryEntryStore(name="shopping"),
    )


@dataclass
class FakePlannerClient(PlannerClient):
    """Fake planner client replaying queued payloads."""

    payloads: list[object] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        instructions: str,
        prompt: str,
        schema: dict[str, object],
    ) -> dict[str, object]:
        self.prompts.append(prompt)
        payload = self.payloads.pop(0) if self.payloads else plan_payload([])
        if isinstance(payload, Exception):
            raise payload
        return payload


@dataclass
class FakeIntentClassifier(IntentClassifier):
    """Fake classifier returning a fixed label."""

    label: str = "new_instruction"
    calls: list[str] = field(default_factory=list)
    error: Exception | None = None

    async def classify(self, text: str) -> str:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.label


@dataclass
class FakeSpeechCapture:
    """Records capture start/stop calls."""

    events: list[str] = field(default_factory=list)

    async def start(self, purpose: CapturePurpose) -> None:
        self.events.append(f"start:{purpose}")

    async def stop(self) -> None:
        self.events.append("stop")


@dataclass
class FakeSynthesizer:
    """Records spoken phrases; hold=True keeps playback running until cancel."""

    hold: bool = False
    spoken: list[str] = field(default_factory=list)
    cancels: int = 0

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.hold:
            await asyncio.Event().wait()

    async def cancel(self) -> None:
        self.cancels += 1


def meal_item_payload(
    label: str, query: str | None = None, grams: float | None = None
) -> dict[str, object]:
    return {
        "label": label,
        "usdaQuery": query or label,
        "gramsConsumed": grams,
        "servings": None,
        "notes": None,
    }


def meal_proposal(
    items: list[dict[str, object]],
    title: str = "Breakfast",
    meal_type: str | None = "breakfast",
) -> dict[str, object]:
    return {
        "type": "log_meal",
        "title": title,
        "confidence": 0.8,
        "entryId": None,
        "data": {"date": None, "mealType": meal_type, "items": items, "notes": None},
    }


def plan_payload(
    actions: list[dict[str, object]],
    *,
    message: str = "Got it.",
    apply: str = "confirm",
    handling: str = "replace",
    intent: str = "log",
) -> dict[str, object]:
    return {
        "message": message,
        "actions": actions,
        "decision": {
            "intent": intent,
            "apply": apply,
            "confidence": 0.9,
            "action_handling": handling,
        },
    }


def food_detail(
    external_id: str = "4001", description: str = "Egg, whole, raw"
) -> FoodDetail:
    return FoodDetail(
        external_id=external_id,
        description=description,
        data_type="Foundation",
        brand_owner=None,
        serving_size=100,
        serving_size_unit="g",
        nutrients={"1008": 143.0},
    )


def meal_action(  # noqa: PLR0913
    action_id: str = "meal-1",
    *,
    items: tuple[MealItem, ...] | None = None,
    selected: bool = True,
    status: str = "ready",
    operation: str = "create",
    entry_id: str | None = None,
) -> Action:
    if items is None:
        items = (
            MealItem(
                key="item-1",
                label="eggs",
                food_query="eggs",
                selected_candidate=Candidate(external_id="4001", description="Egg"),
                matched_food=food_detail(),
            ),
        )
    return Action(
        id=action_id,
        kind="meal",
        operation=operation,
        title="Breakfast",
        data=MealData(date="2026-10-16", items=items, meal_type="breakfast"),
        selected=selected,
        status=status,
        entry_id=entry_id,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="openai-key",
        fdc_api_key="fdc-key",
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        assistant_user_id="user-1",
    )


@pytest.fixture
def fdc_client() -> FakeFdcClient:
    return FakeFdcClient()


@pytest.fixture
def planner_client() -> FakePlannerClient:
    return FakePlannerClient()


@pytest.fixture
def intent_classifier() -> FakeIntentClassifier:
    return FakeIntentClassifier()


@pytest.fixture
def entry_stores() -> EntryStores:
    return make_entry_stores()


@pytest.fixture
def container(
    settings: Settings,
    fdc_client: FakeFdcClient,
    planner_client: FakePlannerClient,
    intent_classifier: FakeIntentClassifier,
    entry_stores: EntryStores,
) -> AppContainer:
    cache = InMemoryCache()
    nutrition_service = NutritionService(fdc_client=fdc_client, cache=cache)
    resolver = CandidateResolver(
        nutrition_service=nutrition_service,
        overrides=FoodOverrideService(
            repository=InMemoryOverrideRepository(),
            cache=cache,
            user_id=settings.assistant_user_id,
        ),
    )
    planner_service = PlannerService(
        client=planner_client,
        model=settings.openai_planner_model,
        reasoning_effort=settings.openai_reasoning_effort,
        store=settings.openai_store,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        nutrition_service=nutrition_service,
        resolver=resolver,
        planner_service=planner_service,
        consent_service=ConsentService(classifier=intent_classifier),
        apply_engine=ApplyEngine(stores=entry_stores),
        voice_config=VoiceConfig(),
        close_resources=close_resources,
    )
