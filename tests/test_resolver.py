"""Tests for candidate resolution and the resolution pool."""

import asyncio

from health_assistant.domain.actions import MealItem
from health_assistant.domain.nutrition import Candidate
from health_assistant.services.action_store import ActionStore
from health_assistant.services.cache import InMemoryCache
from health_assistant.services.nutrition import NutritionService
from health_assistant.services.overrides import FoodOverrideService
from health_assistant.services.resolver import (
    NO_MATCH_ERROR,
    CandidateResolver,
    ResolutionPool,
    candidate_rank,
    rank_candidates,
)
from tests.conftest import (
    FakeFdcClient,
    InMemoryOverrideRepository,
    fdc_food,
    meal_action,
)


def _resolver(
    client: FakeFdcClient,
    repository: InMemoryOverrideRepository | None = None,
    detail_prefetch: int = 3,
) -> CandidateResolver:
    cache = InMemoryCache()
    overrides = None
    if repository is not None:
        overrides = FoodOverrideService(
            repository=repository, cache=cache, user_id="user-1"
        )
    return CandidateResolver(
        nutrition_service=NutritionService(
            fdc_client=client, cache=cache, retry_delay_seconds=0
        ),
        overrides=overrides,
        detail_prefetch=detail_prefetch,
    )


def _unresolved_meal(query: str = "eggs"):
    return meal_action(items=(MealItem(key="item-1", label=query, food_query=query),))


def test_candidate_rank_prefers_foundation_data() -> None:
    ranks = [
        candidate_rank(Candidate(external_id="1", description="x", data_type=kind))
        for kind in ("Foundation", "SR Legacy", "Survey (FNDDS)", "Branded", None)
    ]

    assert ranks == [0, 1, 2, 3, 4]


def test_rank_candidates_breaks_ties_by_score() -> None:
    ranked = rank_candidates(
        [
            Candidate("1", "a", "Branded", rank_score=900),
            Candidate("2", "b", "Foundation", rank_score=10),
            Candidate("3", "c", "Foundation", rank_score=50),
        ]
    )

    assert [candidate.external_id for candidate in ranked] == ["3", "2", "1"]


def test_resolve_picks_best_ranked_detail() -> None:
    client = FakeFdcClient()

    resolution = asyncio.run(_resolver(client).resolve("pancakes"))

    assert resolution.resolved
    assert resolution.selected is not None
    assert resolution.selected.external_id == "2002"
    assert [c.external_id for c in resolution.candidates] == ["2002", "2001"]
    assert resolution.food.nutrients["1008"] == 100


def test_resolve_falls_back_past_missing_details() -> None:
    client = FakeFdcClient(missing_ids={"2002"})

    resolution = asyncio.run(_resolver(client, detail_prefetch=1).resolve("pancakes"))

    assert resolution.selected is not None
    assert resolution.selected.external_id == "2001"
    assert client.food_calls == ["2002", "2001"]


def test_resolve_without_candidates_is_unresolved() -> None:
    resolution = asyncio.run(_resolver(FakeFdcClient()).resolve("kale"))

    assert not resolution.resolved
    assert resolution.candidates == ()


def test_override_skips_search() -> None:
    client = FakeFdcClient()
    repository = InMemoryOverrideRepository(
        overrides={("user-1", "pancakes"): "2001"}
    )

    resolution = asyncio.run(_resolver(client, repository).resolve("Pancakes!"))

    assert resolution.from_override
    assert resolution.selected.external_id == "2001"
    assert client.search_calls == []


def test_choose_remembers_override() -> None:
    client = FakeFdcClient()
    repository = InMemoryOverrideRepository()
    resolver = _resolver(client, repository)

    detail = asyncio.run(
        resolver.choose("pancakes", Candidate(external_id="2001", description="x"))
    )

    assert detail is not None
    assert repository.overrides == {("user-1", "pancakes"): "2001"}


def test_pool_resolves_dispatched_items() -> None:
    store = ActionStore()
    store.replace_all([_unresolved_meal()])
    pool = ResolutionPool(resolver=_resolver(FakeFdcClient()), store=store)

    async def run() -> None:
        jobs = pool.dispatch(store.all(), store.next_generation())
        assert jobs == 1
        await pool.join()
        await pool.close()

    asyncio.run(run())

    item = store.get_item("meal-1", "item-1")
    assert item.matched_food is not None
    assert item.matched_food.external_id == "4001"
    assert item.is_resolving is False
    assert item.resolve_error is None


def test_pool_discards_stale_generations() -> None:
    client = FakeFdcClient()
    store = ActionStore()
    store.replace_all([_unresolved_meal()])
    pool = ResolutionPool(resolver=_resolver(client), store=store)

    async def run() -> None:
        pool.dispatch(store.all(), store.next_generation())
        store.next_generation()
        await pool.join()
        await pool.close()

    asyncio.run(run())

    assert client.search_calls == []
    assert store.get_item("meal-1", "item-1").matched_food is None


def test_pool_isolates_item_failures() -> None:
    client = FakeFdcClient(failing_queries={"toast"})
    store = ActionStore()
    store.replace_all(
        [
            meal_action(
                items=(
                    MealItem(key="a", label="toast", food_query="toast"),
                    MealItem(key="b", label="eggs", food_query="eggs"),
                    MealItem(key="c", label="kale", food_query="kale"),
                )
            )
        ]
    )
    pool = ResolutionPool(resolver=_resolver(client), store=store)

    async def run() -> None:
        pool.dispatch(store.all(), store.next_generation())
        await pool.join()
        await pool.close()

    asyncio.run(run())

    toast = store.get_item("meal-1", "a")
    eggs = store.get_item("meal-1", "b")
    kale = store.get_item("meal-1", "c")
    assert toast.resolve_error == "search failed for toast"
    assert toast.is_resolving is False
    assert eggs.matched_food is not None
    assert kale.resolve_error == NO_MATCH_ERROR


class _UnreachableOverrideRepository(InMemoryOverrideRepository):
    def get_override(self, user_id: str, query_norm: str) -> str | None:
        raise RuntimeError("supabase unreachable")

    def save_override(self, user_id: str, query_norm: str, external_id: str) -> None:
        raise RuntimeError("supabase unreachable")


def test_pool_searches_when_override_lookup_fails() -> None:
    client = FakeFdcClient()
    store = ActionStore()
    store.replace_all([_unresolved_meal()])
    resolver = _resolver(client, _UnreachableOverrideRepository())
    pool = ResolutionPool(resolver=resolver, store=store)

    async def run() -> None:
        pool.dispatch(store.all(), store.next_generation())
        await pool.join()
        await pool.close()

    asyncio.run(run())

    item = store.get_item("meal-1", "item-1")
    assert item.matched_food is not None
    assert item.matched_food.external_id == "4001"
    assert item.resolve_error is None
    assert client.search_calls == ["eggs"]


def test_choose_keeps_pick_when_override_save_fails() -> None:
    resolver = _resolver(FakeFdcClient(), _UnreachableOverrideRepository())

    detail = asyncio.run(
        resolver.choose("pancakes", Candidate(external_id="2001", description="x"))
    )

    assert detail is not None
    assert detail.external_id == "2001"


def test_pool_bounds_concurrent_resolves() -> None:
    client = FakeFdcClient(delay_seconds=0.01)
    store = ActionStore()
    queries = ["toast", "kale", "rice", "beans", "soup", "tea"]
    store.replace_all(
        [
            meal_action(
                items=tuple(
                    MealItem(key=query, label=query, food_query=query)
                    for query in queries
                )
            )
        ]
    )
    pool = ResolutionPool(resolver=_resolver(client), store=store, workers=3)

    async def run() -> None:
        assert pool.dispatch(store.all(), store.next_generation()) == 6
        await pool.join()
        await pool.close()

    asyncio.run(run())

    assert sorted(client.search_calls) == sorted(queries)
    assert client.peak_searches == 3


def test_resolve_prefetches_top_details_together() -> None:
    client = FakeFdcClient(
        foods={
            "bread": [
                fdc_food(5001, "Bread, white", "Foundation", score=400),
                fdc_food(5002, "Bread, wheat", "SR Legacy", score=300),
                fdc_food(5003, "Bread, rye", "Survey (FNDDS)", score=200),
                fdc_food(5004, "Bread, store brand", "Branded", score=900),
            ]
        },
        missing_ids={"5001", "5002"},
        delay_seconds=0.01,
    )

    resolution = asyncio.run(_resolver(client, detail_prefetch=3).resolve("bread"))

    assert resolution.selected.external_id == "5003"
    assert client.food_calls[:3] == ["5001", "5002", "5003"]
    assert client.peak_details == 3
