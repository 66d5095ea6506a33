"""Planner service: prompts the language model and validates its plan."""

import json
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from openai import OpenAIError
from pydantic import ValidationError

from health_assistant.domain.actions import (
    ENTRY_TYPES,
    MEAL_TYPES,
    SHOPPING_CATEGORIES,
    SLEEP_FACTORS,
)
from health_assistant.domain.planner import PlannerResponse, PlanRequest, PlanResult

_logger = logging.getLogger(__name__)

ACTION_TYPES = (
    "log_meal",
    "log_symptom",
    "log_supplement",
    "log_sleep",
    "add_shopping_item",
    "edit_meal",
    "edit_symptom",
    "edit_supplement",
    "edit_sleep",
    "edit_shopping_item",
    "delete_entry",
)

SYSTEM_PROMPT = """You are a voice-first health logging assistant.

Decide if this turn is:
- chat: respond warmly and briefly, do not log. actions: []
- log: propose structured actions for meals, symptoms, supplements, sleep or shopping items
- clarify: ask ONE targeted question while proposing partial actions

Guidance:
- Mic checks and small talk: intent=chat, apply=none, action_handling=keep, actions=[]
- Corrections to prior suggestions: update existingActions, action_handling=replace
- If the user cancels logging: intent=chat, apply=none, action_handling=clear, actions=[]
- Use apply=auto only when the user clearly asks to log right away; otherwise confirm.
- Each meal item needs a short label and a usdaQuery suited to a USDA food search.
- Use gramsConsumed only when the user gives a weight.
- For symptoms with no severity, use null. For supplements with no dosage, use null.
- To edit or delete something already logged, use the id from recent entries as entryId.
- For date/time: if missing, use null.
- Never mention schemas, tools or IDs."""


def _nullable(schema: dict[str, object]) -> dict[str, object]:
    return {"anyOf": [schema, {"type": "null"}]}


_MEAL_ITEM_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "label": {"type": "string"},
        "usdaQuery": {"type": "string"},
        "gramsConsumed": _nullable({"type": "number", "minimum": 0}),
        "servings": _nullable({"type": "number", "minimum": 0}),
        "notes": _nullable({"type": "string"}),
    },
    "required": ["label", "usdaQuery", "gramsConsumed", "servings", "notes"],
    "additionalProperties": False,
}

_ACTION_DATA_PROPERTIES: dict[str, object] = {
    "date": _nullable({"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$"}),
    "time": _nullable({"type": "string", "pattern": r"^\d{2}:\d{2}$"}),
    "notes": _nullable({"type": "string"}),
    "mealType": _nullable({"type": "string", "enum": list(MEAL_TYPES)}),
    "items": _nullable({"type": "array", "items": _MEAL_ITEM_SCHEMA}),
    "symptom": _nullable({"type": "string"}),
    "severity": _nullable({"type": "integer", "minimum": 1, "maximum": 10}),
    "supplement": _nullable({"type": "string"}),
    "dosage": _nullable({"type": "number", "minimum": 0}),
    "unit": _nullable({"type": "string"}),
    "bedtime": _nullable({"type": "string", "pattern": r"^\d{2}:\d{2}$"}),
    "wake_time": _nullable({"type": "string", "pattern": r"^\d{2}:\d{2}$"}),
    "quality": _nullable({"type": "integer", "minimum": 1, "maximum": 5}),
    "factors": _nullable(
        {"type": "array", "items": {"type": "string", "enum": list(SLEEP_FACTORS)}}
    ),
    "name": _nullable({"type": "string"}),
    "quantity": _nullable({"type": "number", "minimum": 0}),
    "category": _nullable({"type": "string", "enum": list(SHOPPING_CATEGORIES)}),
    "is_checked": _nullable({"type": "boolean"}),
    "entryType": _nullable({"type": "string", "enum": list(ENTRY_TYPES)}),
}

PLANNER_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "message": {"type": "string"},
        "actions": {
            "type": "array",
            "maxItems": 12,
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": list(ACTION_TYPES)},
                    "title": {"type": "string"},
                    "confidence": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                    "entryId": _nullable({"type": "string"}),
                    "data": {
                        "type": "object",
                        "properties": _ACTION_DATA_PROPERTIES,
                        "required": list(_ACTION_DATA_PROPERTIES),
                        "additionalProperties": False,
                    },
                },
                "required": ["type", "title", "confidence", "entryId", "data"],
                "additionalProperties": False,
            },
        },
        "decision": {
            "type": "object",
            "properties": {
                "intent": {"type": "string", "enum": ["log", "clarify", "chat"]},
                "apply": {"type": "string", "enum": ["auto", "confirm", "none"]},
                "confidence": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                "action_handling": {
                    "type": "string",
                    "enum": ["keep", "replace", "clear"],
                },
            },
            "required": ["intent", "apply", "confidence", "action_handling"],
            "additionalProperties": False,
        },
    },
    "required": ["message", "actions", "decision"],
    "additionalProperties": False,
}


class PlannerClient(Protocol):
    """Interface for the structured-output language model call."""

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
        """Return the parsed JSON produced for prompt."""


def build_prompt(request: PlanRequest) -> str:
    """Render the user-turn prompt sent alongside the instructions."""
    parts = [f"User said:\n{request.text}"]
    if request.today:
        parts.append(f"Today's date: {request.today}")
    if request.history:
        lines = "\n".join(
            f"{message.role.upper()}: {message.text}" for message in request.history
        )
        parts.append(f"Conversation so far (most recent last):\n{lines}")
    if request.existing_actions:
        existing = request.model_dump(
            by_alias=True, mode="json", include={"existing_actions"}
        )
        parts.append(
            "Existing suggested actions (update these rather than duplicating):\n"
            + json.dumps({"actions": existing["existingActions"]}, indent=2)
        )
    if request.recent_entries:
        entries = "\n".join(
            f"- {entry.id} ({entry.type}"
            + (f", {entry.date}" if entry.date else "")
            + f"): {entry.summary}"
            for entry in request.recent_entries
        )
        parts.append(f"Recent entries:\n{entries}")
    parts.append("Return JSON only.")
    return "\n\n".join(parts)


@dataclass
class PlannerService:
    """Service that prepares planner prompts and validates results."""

    client: PlannerClient
    model: str
    reasoning_effort: str | None
    store: bool

    async def plan(self, request: PlanRequest) -> PlanResult:
        """Return a validated plan, or an error for expected failures."""
        try:
            raw = await self.client.complete(
                model=self.model,
                reasoning_effort=self.reasoning_effort,
                store=self.store,
                instructions=SYSTEM_PROMPT,
                prompt=build_prompt(request),
                schema=PLANNER_SCHEMA,
            )
        except (OpenAIError, httpx.HTTPError, RuntimeError, ValueError) as exc:
            _logger.warning("Planner call failed: %s", exc)
            return PlanResult(error=str(exc) or "Planner call failed")
        try:
            response = PlannerResponse.model_validate(raw)
        except ValidationError as exc:
            _logger.warning(
                "Planner response failed validation: %s", exc.error_count()
            )
            return PlanResult(error="Planner response failed schema validation")
        return PlanResult(response=response)
