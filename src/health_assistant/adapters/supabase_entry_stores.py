"""Supabase entry stores for each tracked entry type."""

import asyncio
from dataclasses import dataclass

from supabase import Client

from health_assistant.services.apply import EntryStore, EntryStores


def _first_row(response: object, error: str) -> dict[str, object]:
    data = getattr(response, "data", None)
    if not data:
        raise RuntimeError(error)
    return data[0]


@dataclass
class SupabaseTableStore(EntryStore):
    """Single-table store; rows are scoped to one user."""

    client: Client
    user_id: str
    table: str

    async def create(self, payload: dict[str, object]) -> dict[str, object]:
        """Insert a row and return it."""
        return await asyncio.to_thread(self._create, payload)

    async def update(
        self, entry_id: str, payload: dict[str, object]
    ) -> dict[str, object]:
        """Update a row and return it."""
        return await asyncio.to_thread(self._update, entry_id, payload)

    async def delete(self, entry_id: str) -> None:
        """Delete a row."""
        await asyncio.to_thread(self._delete, entry_id)

    def _create(self, payload: dict[str, object]) -> dict[str, object]:
        response = (
            self.client.table(self.table)
            .insert({**self._row(payload), "user_id": self.user_id})
            .execute()
        )
        return _first_row(response, f"Failed to create {self.table} row")

    def _update(self, entry_id: str, payload: dict[str, object]) -> dict[str, object]:
        response = (
            self.client.table(self.table)
            .update(self._row(payload))
            .eq("id", entry_id)
            .eq("user_id", self.user_id)
            .execute()
        )
        return _first_row(response, f"No {self.table} row {entry_id} to update")

    def _delete(self, entry_id: str) -> None:
        self.client.table(self.table).delete().eq("id", entry_id).eq(
            "user_id", self.user_id
        ).execute()

    def _row(self, payload: dict[str, object]) -> dict[str, object]:
        return dict(payload)


@dataclass
class SupabaseShoppingItemStore(SupabaseTableStore):
    """Shopping list items; new items start unchecked."""

    table: str = "shopping_items"

    def _row(self, payload: dict[str, object]) -> dict[str, object]:
        row = dict(payload)
        if row.get("is_checked") is None:
            row.pop("is_checked", None)
        return row

    def _create(self, payload: dict[str, object]) -> dict[str, object]:
        return super()._create({"is_checked": False, **self._row(payload)})


@dataclass
class SupabaseMealStore(SupabaseTableStore):
    """Meal logs with their meal items."""

    table: str = "meal_logs"

    def _create(self, payload: dict[str, object]) -> dict[str, object]:
        items = payload.get("items") or []
        meal = super()._create(self._row(payload))
        self._insert_items(str(meal["id"]), items)
        return meal

    def _update(self, entry_id: str, payload: dict[str, object]) -> dict[str, object]:
        fields = self._row(payload)
        if fields:
            meal = super()._update(entry_id, fields)
        else:
            meal = self._owned(entry_id)
        if "items" in payload:
            self.client.table("meal_items").delete().eq(
                "meal_log_id", entry_id
            ).execute()
            self._insert_items(entry_id, payload.get("items") or [])
        return meal

    def _delete(self, entry_id: str) -> None:
        self._owned(entry_id)
        self.client.table("meal_items").delete().eq("meal_log_id", entry_id).execute()
        super()._delete(entry_id)

    def _owned(self, entry_id: str) -> dict[str, object]:
        response = (
            self.client.table(self.table)
            .select("id")
            .eq("id", entry_id)
            .eq("user_id", self.user_id)
            .limit(1)
            .execute()
        )
        return _first_row(response, f"No {self.table} row {entry_id}")

    def _row(self, payload: dict[str, object]) -> dict[str, object]:
        return {key: value for key, value in payload.items() if key != "items"}

    def _insert_items(self, meal_log_id: str, items: list[dict[str, object]]) -> None:
        rows = [
            {
                "meal_log_id": meal_log_id,
                "custom_food_name": item.get("custom_food_name"),
                "custom_food_nutrients": item.get("custom_food_nutrients"),
                "servings": item.get("servings"),
                "grams_consumed": item.get("grams_consumed"),
                "quantity_count": item.get("quantity_count"),
                "quantity_unit": item.get("quantity_unit"),
                "original_food_name": item.get("original_food_name"),
                "matched_fdc_id": item.get("fdc_id"),
                "matched_food_name": item.get("matched_food_name"),
                "matched_data_type": item.get("matched_data_type"),
                "matched_brand_owner": item.get("matched_brand_owner"),
                "match_method": item.get("match_method"),
            }
            for item in items
        ]
        if rows:
            self.client.table("meal_items").insert(rows).execute()


@dataclass
class SupabaseSymptomStore(SupabaseTableStore):
    """Symptom logs; unknown symptom names become custom symptoms."""

    table: str = "symptom_logs"

    def _row(self, payload: dict[str, object]) -> dict[str, object]:
        row = {key: value for key, value in payload.items() if key != "symptom_name"}
        name = payload.get("symptom_name")
        if isinstance(name, str) and name.strip():
            row["symptom_id"] = self._symptom_id(name.strip())
        return row

    def _symptom_id(self, name: str) -> str:
        response = (
            self.client.table("symptoms")
            .select("id")
            .ilike("name", name)
            .limit(1)
            .execute()
        )
        if response.data:
            return str(response.data[0]["id"])
        created = (
            self.client.table("symptoms")
            .insert(
                {
                    "name": name,
                    "category": "other",
                    "is_custom": True,
                    "user_id": self.user_id,
                }
            )
            .execute()
        )
        return str(_first_row(created, f"Failed to create symptom {name}")["id"])


def build_entry_stores(client: Client, user_id: str) -> EntryStores:
    """Create the Supabase entry stores for one user."""
    return EntryStores(
        meal=SupabaseMealStore(client=client, user_id=user_id),
        symptom=SupabaseSymptomStore(client=client, user_id=user_id),
        supplement=SupabaseTableStore(
            client=client, user_id=user_id, table="supplement_logs"
        ),
        sleep=SupabaseTableStore(client=client, user_id=user_id, table="sleep_logs"),
        shopping_item=SupabaseShoppingItemStore(client=client, user_id=user_id),
    )
