"""USDA FoodData Central API client."""

from dataclasses import dataclass
from typing import Protocol

import httpx

SEARCH_DATA_TYPES = "Foundation,SR Legacy,Survey (FNDDS),Branded"


class FdcClient(Protocol):
    """Interface for FoodData Central API interactions."""

    async def search_foods(self, query: str, page_size: int = 18) -> dict[str, object]:
        """Search foods by query and return raw API data."""

    async def get_food(self, fdc_id: str) -> dict[str, object] | None:
        """Fetch a food by FDC id; None when the id is unknown."""


@dataclass
class HttpxFdcClient(FdcClient):
    """HTTPX-backed FDC client."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, api_key: str, base_url: str) -> "HttpxFdcClient":
        """Create an FDC client with a managed httpx session."""
        return cls(api_key=api_key, base_url=base_url, http_client=httpx.AsyncClient())

    async def search_foods(self, query: str, page_size: int = 18) -> dict[str, object]:
        """Search foods across the preferred data sources."""
        response = await self.http_client.post(
            f"{self.base_url}/foods/search",
            params={"api_key": self.api_key},
            json={
                "query": query,
                "pageSize": page_size,
                "dataType": SEARCH_DATA_TYPES.split(","),
            },
            timeout=15,
        )
        response.raise_for_status()
        return response.json()

    async def get_food(self, fdc_id: str) -> dict[str, object] | None:
        """Fetch a food by FDC id."""
        response = await self.http_client.get(
            f"{self.base_url}/food/{fdc_id}",
            params={"api_key": self.api_key},
            timeout=15,
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
