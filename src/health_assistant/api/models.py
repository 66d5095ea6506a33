"""Pydantic request models for the assistant API."""

from pydantic import BaseModel, Field


class TurnRequest(BaseModel):
    """One typed user utterance."""

    text: str = Field(min_length=1, max_length=4000)


class ChooseCandidateRequest(BaseModel):
    """Alternative food match picked by the user."""

    external_id: str = Field(min_length=1)


class IntentRequest(BaseModel):
    """Reply to a consent prompt."""

    text: str = Field(max_length=500)
