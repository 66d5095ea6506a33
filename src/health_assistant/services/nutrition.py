"""Nutrition service integrating USDA FDC."""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from health_assistant.adapters.fdc_client import FdcClient
from health_assistant.domain.nutrition import Candidate, FoodDetail
from health_assistant.services.cache import Cache

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

# Nutrient numbers kept on food details.
TRACKED_NUTRIENTS: dict[str, str] = {
    "1008": "Calories",
    "1003": "Protein",
    "1005": "Carbohydrates",
    "1004": "Total Fat",
    "1079": "Fiber",
    "1087": "Calcium",
    "1089": "Iron",
    "1090": "Magnesium",
    "1091": "Phosphorus",
    "1092": "Potassium",
    "1093": "Sodium",
    "1095": "Zinc",
    "1098": "Copper",
    "1103": "Selenium",
    "1106": "Vitamin A",
    "1109": "Vitamin E",
    "1114": "Vitamin D",
    "1162": "Vitamin C",
    "1165": "Thiamin",
    "1166": "Riboflavin",
    "1167": "Niacin",
    "1170": "Pantothenic Acid",
    "1175": "Vitamin B6",
    "1177": "Folate",
    "1178": "Vitamin B12",
    "1185": "Vitamin K",
    "1253": "Cholesterol",
    "1257": "Trans Fat",
    "1258": "Saturated Fat",
    "2000": "Added Sugars",
}

_logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass
class NutritionService:
    """Food search and detail lookups with caching and a short retry."""

    fdc_client: FdcClient
    cache: Cache
    search_ttl_seconds: int = 900
    food_ttl_seconds: int = 86400
    debug: bool = False
    retry_attempts: int = 1
    retry_delay_seconds: float = 0.3

    async def search(self, query: str, limit: int = 18) -> list[Candidate]:
        """Search FDC foods and return unranked candidates."""
        cache_key = f"fdc:search:{query.strip().lower()}:{limit}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, list):
            return cached

        payload = await self._call_with_retry(
            lambda: self.fdc_client.search_foods(query, page_size=limit),
            action="search",
        )
        candidates = [
            Candidate(
                external_id=str(food["fdcId"]),
                description=str(food.get("description", "")),
                data_type=food.get("dataType"),
                brand_owner=food.get("brandOwner") or food.get("brandName"),
                rank_score=float(food.get("score") or 0.0),
            )
            for food in payload.get("foods", [])
        ]
        self.cache.set(cache_key, candidates, ttl_seconds=self.search_ttl_seconds)
        if self.debug:
            _logger.info(
                "Nutrition search FDC: query=%s results=%s", query, len(candidates)
            )
        return candidates

    async def get_food(self, external_id: str) -> FoodDetail | None:
        """Retrieve a food with its tracked nutrients; None when unknown."""
        cache_key = f"fdc:food:{external_id}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, FoodDetail):
            return cached

        payload = await self._call_with_retry(
            lambda: self.fdc_client.get_food(external_id),
            action=f"get_food:{external_id}",
        )
        if payload is None:
            return None
        detail = FoodDetail(
            external_id=str(payload.get("fdcId", external_id)),
            description=str(payload.get("description", "")),
            data_type=payload.get("dataType"),
            brand_owner=payload.get("brandOwner") or payload.get("brandName"),
            serving_size=float(payload.get("servingSize") or 100),
            serving_size_unit=str(payload.get("servingSizeUnit") or "g"),
            nutrients=_extract_nutrients(payload.get("foodNutrients", [])),
        )
        self.cache.set(cache_key, detail, ttl_seconds=self.food_ttl_seconds)
        if self.debug:
            _logger.info("Nutrition food FDC: fdc_id=%s", external_id)
        return detail

    async def _call_with_retry(
        self, func: "Callable[[], Awaitable[_T]]", *, action: str
    ) -> _T:
        """Call an async function with a short retry."""
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                attempt += 1
                _logger.warning(
                    "Nutrition %s failed (attempt %s/%s, status=%s): %s",
                    action,
                    attempt,
                    self.retry_attempts + 1,
                    _status_code_from_exception(exc),
                    exc,
                )
                if attempt > self.retry_attempts:
                    raise
                await asyncio.sleep(self.retry_delay_seconds)


def _status_code_from_exception(exc: Exception) -> str:
    """Extract HTTP status code from an exception, if available."""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return str(status_code)
    return "n/a"


def _extract_nutrients(food_nutrients: list[dict[str, object]]) -> dict[str, float]:
    """Keep tracked nutrients from either the full or abridged FDC format."""
    values: dict[str, float] = {}
    for nutrient in food_nutrients:
        info = nutrient.get("nutrient") or {}
        number = nutrient.get("nutrientNumber") or info.get("number")
        amount = nutrient.get("amount")
        if amount is None:
            amount = nutrient.get("value")
        if number is None or amount is None:
            continue
        key = str(number)
        if key in TRACKED_NUTRIENTS:
            values[key] = float(amount)
    return values
