"""Supabase repository for remembered food matches."""

from dataclasses import dataclass

from supabase import Client

from health_assistant.services.overrides import FoodOverrideRepository


@dataclass
class SupabaseFoodOverrideRepository(FoodOverrideRepository):
    """Supabase implementation for food resolution overrides."""

    client: Client

    def get_override(self, user_id: str, query_norm: str) -> str | None:
        """Return the remembered FDC id for a normalized query."""
        response = (
            self.client.table("food_resolution_overrides")
            .select("fdc_id")
            .eq("user_id", user_id)
            .eq("query_norm", query_norm)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        fdc_id = response.data[0].get("fdc_id")
        return str(fdc_id) if fdc_id is not None else None

    def save_override(self, user_id: str, query_norm: str, external_id: str) -> None:
        """Insert or update the override for a normalized query."""
        self.client.table("food_resolution_overrides").upsert(
            {
                "user_id": user_id,
                "query_norm": query_norm,
                "fdc_id": external_id,
            },
            on_conflict="user_id,query_norm",
        ).execute()
