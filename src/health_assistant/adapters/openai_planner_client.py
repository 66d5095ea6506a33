"""OpenAI Responses API client for action planning."""

import json
from dataclasses import dataclass

from openai import AsyncOpenAI

from health_assistant.services.planner import PlannerClient


@dataclass
class OpenAIPlannerClient(PlannerClient):
    """Planner client backed by OpenAI Responses API."""

    client: AsyncOpenAI
    max_output_tokens: int = 1400

    @classmethod
    def create(cls, api_key: str) -> "OpenAIPlannerClient":
        """Create an OpenAI planner client."""
        return cls(client=AsyncOpenAI(api_key=api_key))

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
        """Call OpenAI Responses API with structured outputs."""
        request_payload: dict[str, object] = {
            "model": model,
            "instructions": instructions,
            "input": prompt,
            "max_output_tokens": self.max_output_tokens,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "assistant_plan",
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        response = await self.client.responses.create(**request_payload)
        output_text = response.output_text
        if not output_text:
            raise RuntimeError("OpenAI returned an empty response")
        return json.loads(output_text)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
