"""OpenAI chat completions client for consent intent classification."""

from dataclasses import dataclass

from openai import AsyncOpenAI

from health_assistant.services.consent import IntentClassifier

INTENT_PROMPT = """You classify short voice transcriptions. The user was asked to confirm or cancel a set of pending health log actions (meals, symptoms, supplements, sleep, shopping items). Respond with exactly one word:
- "confirm" if the user is agreeing, saying yes, or wants to proceed/apply/save/log it (e.g. "yes", "ok", "log it", "save it", "do it", "go ahead", "sure", "sounds good", "perfect")
- "cancel" if the user is refusing, saying no, or wants to stop/discard (e.g. "no", "cancel", "stop", "never mind")
- "new_instruction" if the user is giving a new command (e.g. "I had eggs for breakfast", "edit the time to 3pm")

"log it", "save it", "do it" and "submit it" all mean confirm.

Account for speech-recognition errors: "buy it", "dew it" and "by it" usually mean "do it"; "lock it" means "log it". Respond with only one word."""


@dataclass
class OpenAIIntentClient(IntentClassifier):
    """Intent classifier backed by OpenAI chat completions."""

    client: AsyncOpenAI
    model: str

    @classmethod
    def create(cls, api_key: str, model: str) -> "OpenAIIntentClient":
        """Create an OpenAI intent client."""
        return cls(client=AsyncOpenAI(api_key=api_key), model=model)

    async def classify(self, text: str) -> str:
        """Return the single-word label for text."""
        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            max_tokens=3,
            messages=[
                {"role": "system", "content": INTENT_PROMPT},
                {"role": "user", "content": text},
            ],
        )
        if not response.choices:
            raise RuntimeError("OpenAI returned no choices")
        content = response.choices[0].message.content
        return (content or "").strip().lower()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
