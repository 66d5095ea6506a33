"""Food candidate resolution and the background resolution pool."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import httpx

from health_assistant.domain.actions import Action, MealItem
from health_assistant.domain.nutrition import Candidate, FoodDetail, Resolution
from health_assistant.services.action_store import ActionStore
from health_assistant.services.nutrition import NutritionService
from health_assistant.services.overrides import FoodOverrideService
from health_assistant.services.reconciler import compute_servings

_logger = logging.getLogger(__name__)

NO_MATCH_ERROR = "No USDA match found"
SEARCH_FAILED_ERROR = "Failed to search USDA"


def candidate_rank(candidate: Candidate) -> int:
    """Return the data source preference of a candidate (lower is better)."""
    data_type = (candidate.data_type or "").lower()
    if "foundation" in data_type:
        return 0
    if "sr legacy" in data_type or "sr" in data_type.split():
        return 1
    if "survey" in data_type:
        return 2
    if "branded" in data_type:
        return 3
    return 4


def rank_candidates(candidates: Sequence[Candidate]) -> list[Candidate]:
    """Order by data source preference, then by descending relevance."""
    return sorted(
        candidates, key=lambda item: (candidate_rank(item), -item.rank_score)
    )


@dataclass
class CandidateResolver:
    """Resolves a free-text food query to a concrete food."""

    nutrition_service: NutritionService
    overrides: FoodOverrideService | None = None
    search_limit: int = 18
    detail_prefetch: int = 3

    async def resolve(self, query: str) -> Resolution:
        """Resolve query to the best available food detail."""
        remembered = await self._from_override(query)
        if remembered is not None:
            return remembered

        candidates = rank_candidates(
            await self.nutrition_service.search(query, limit=self.search_limit)
        )
        head = candidates[: self.detail_prefetch]
        details = await asyncio.gather(*(self._fetch_detail(item) for item in head))
        for candidate, detail in zip(head, details, strict=True):
            if detail is not None:
                return Resolution(query, tuple(candidates), candidate, detail)
        for candidate in candidates[self.detail_prefetch :]:
            detail = await self._fetch_detail(candidate)
            if detail is not None:
                return Resolution(query, tuple(candidates), candidate, detail)
        return Resolution(query, tuple(candidates), None, None)

    async def choose(self, query: str, candidate: Candidate) -> FoodDetail | None:
        """Fetch a user-picked candidate and remember it for query.

        A failure to persist the override is logged; the pick still applies.
        """
        detail = await self._fetch_detail(candidate)
        if detail is None:
            return None
        if self.overrides is not None:
            try:
                await self.overrides.remember(query, candidate.external_id)
            except Exception:
                _logger.exception("Could not remember override for %r", query)
        return detail

    async def _from_override(self, query: str) -> Resolution | None:
        if self.overrides is None:
            return None
        try:
            external_id = await self.overrides.lookup(query)
        except Exception:
            _logger.exception("Override lookup failed for %r", query)
            return None
        if external_id is None:
            return None
        detail = await self._fetch_detail(
            Candidate(external_id=external_id, description=query)
        )
        if detail is None:
            _logger.warning("Override %s for %r no longer resolves", external_id, query)
            return None
        candidate = detail.as_candidate()
        return Resolution(query, (candidate,), candidate, detail, from_override=True)

    async def _fetch_detail(self, candidate: Candidate) -> FoodDetail | None:
        try:
            return await self.nutrition_service.get_food(candidate.external_id)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            _logger.warning(
                "Food detail %s unavailable: %s", candidate.external_id, exc
            )
            return None


@dataclass(frozen=True)
class ResolutionJob:
    """One meal item to resolve, tagged with the dispatching generation."""

    generation: int
    action_id: str
    item_key: str
    query: str


def resolved_item(item: MealItem, resolution: Resolution) -> MealItem:
    """Return item updated with a resolution outcome."""
    if resolution.food is None:
        return replace(
            item,
            candidates=resolution.candidates,
            is_resolving=False,
            resolve_error=NO_MATCH_ERROR,
        )
    updated = replace(
        item,
        candidates=resolution.candidates,
        selected_candidate=resolution.selected,
        matched_food=resolution.food,
        matched_by_user=resolution.from_override,
        is_resolving=False,
        resolve_error=None,
    )
    return replace(updated, servings=compute_servings(updated))


@dataclass
class ResolutionPool:
    """Fixed-size worker pool resolving meal items in the background."""

    resolver: CandidateResolver
    store: ActionStore
    workers: int = 3
    _queue: asyncio.Queue[ResolutionJob] = field(default_factory=asyncio.Queue)
    _tasks: list[asyncio.Task[None]] = field(default_factory=list)

    def dispatch(self, actions: Sequence[Action], generation: int) -> int:
        """Queue every unresolved meal item of actions; return the job count."""
        self._ensure_workers()
        count = 0
        for action in actions:
            if action.kind != "meal" or action.is_applied:
                continue
            for item in action.meal_items():
                if item.matched_food is not None or not item.food_query.strip():
                    continue
                self.store.update_item(
                    action.id,
                    item.key,
                    lambda current: replace(
                        current, is_resolving=True, resolve_error=None
                    ),
                )
                self._queue.put_nowait(
                    ResolutionJob(generation, action.id, item.key, item.food_query)
                )
                count += 1
        return count

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop the workers."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def _ensure_workers(self) -> None:
        self._tasks = [task for task in self._tasks if not task.done()]
        while len(self._tasks) < self.workers:
            self._tasks.append(asyncio.create_task(self._work()))

    async def _work(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: ResolutionJob) -> None:
        if job.generation != self.store.generation:
            _logger.debug("Discarding stale resolution job %s", job)
            return
        try:
            resolution = await self.resolver.resolve(job.query)
        except Exception as exc:
            _logger.exception("Resolution failed for %r", job.query)
            if job.generation == self.store.generation:
                self.store.update_item(
                    job.action_id,
                    job.item_key,
                    lambda item: replace(
                        item,
                        is_resolving=False,
                        resolve_error=str(exc) or SEARCH_FAILED_ERROR,
                    ),
                )
            return
        if job.generation != self.store.generation:
            _logger.debug("Discarding stale resolution result for %r", job.query)
            return

        def apply(item: MealItem) -> MealItem:
            if item.matched_by_user:
                return replace(item, is_resolving=False)
            return resolved_item(item, resolution)

        if self.store.update_item(job.action_id, job.item_key, apply) is None:
            _logger.debug(
                "Resolution target %s/%s is gone", job.action_id, job.item_key
            )
