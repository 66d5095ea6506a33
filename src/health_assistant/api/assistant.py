"""Assistant API endpoints for text-mode clients."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status

from health_assistant.api.models import (
    ChooseCandidateRequest,
    IntentRequest,
    TurnRequest,
)
from health_assistant.domain.errors import ApplyInProgressError, ApplyPreconditionError

if TYPE_CHECKING:
    from health_assistant.api.sessions import SessionRegistry
    from health_assistant.containers import AppContainer
    from health_assistant.domain.actions import Action
    from health_assistant.services.conversation import ConversationService

router = APIRouter(prefix="/assistant", tags=["assistant"])


def _conversation(request: Request, session_id: str) -> ConversationService:
    registry: SessionRegistry = request.app.state.sessions
    conversation = registry.get(session_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session"
        )
    return conversation


def _actions(actions: list[Action]) -> list[dict[str, object]]:
    return [asdict(action) for action in actions]


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(request: Request) -> dict[str, str]:
    """Start a new conversation."""
    registry: SessionRegistry = request.app.state.sessions
    return {"session_id": registry.create()}


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, request: Request) -> None:
    """End a conversation and stop its background work."""
    registry: SessionRegistry = request.app.state.sessions
    if not await registry.remove(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session"
        )


@router.post("/sessions/{session_id}/turns")
async def submit_turn(
    session_id: str, payload: TurnRequest, request: Request
) -> dict[str, object]:
    """Plan one typed utterance."""
    conversation = _conversation(request, session_id)
    if not payload.text.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Empty text"
        )
    outcome = await conversation.submit_turn(payload.text)
    return {
        "message": outcome.message,
        "decision": outcome.decision.model_dump() if outcome.decision else None,
        "actions": _actions(outcome.actions),
        "new_action_ids": list(outcome.new_action_ids),
        "error": outcome.error,
    }


@router.get("/sessions/{session_id}/actions")
async def list_actions(session_id: str, request: Request) -> dict[str, object]:
    """Return the current action list."""
    conversation = _conversation(request, session_id)
    return {"actions": _actions(conversation.store.all())}


@router.post("/sessions/{session_id}/actions/{action_id}/toggle")
async def toggle_action(
    session_id: str, action_id: str, request: Request
) -> dict[str, object]:
    """Flip selection of one action."""
    conversation = _conversation(request, session_id)
    action = conversation.toggle(action_id)
    if action is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Unknown action"
        )
    return {"action": asdict(action)}


@router.post("/sessions/{session_id}/actions/{action_id}/items/{item_key}/choose")
async def choose_candidate(
    session_id: str,
    action_id: str,
    item_key: str,
    payload: ChooseCandidateRequest,
    request: Request,
) -> dict[str, object]:
    """Pin an alternative food match on a meal item."""
    conversation = _conversation(request, session_id)
    try:
        chosen = await conversation.choose_candidate(
            action_id, item_key, payload.external_id
        )
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Unknown meal item"
        ) from exc
    if not chosen:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Food details are unavailable right now",
        )
    return {"actions": _actions(conversation.store.all())}


@router.post("/sessions/{session_id}/apply")
async def apply_actions(session_id: str, request: Request) -> dict[str, object]:
    """Commit selected actions and return the receipt."""
    conversation = _conversation(request, session_id)
    try:
        report = await conversation.apply()
    except ApplyPreconditionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"action_id": exc.action_id, "message": exc.message},
        ) from exc
    except ApplyInProgressError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Apply already running"
        ) from exc
    return {
        "ok": report.ok,
        "receipt": report.receipt,
        "applied_ids": list(report.applied_ids),
        "failed_action_id": report.failed_action_id,
        "error": report.error,
        "actions": _actions(conversation.store.all()),
    }


@router.post("/classify-intent")
async def classify_intent(payload: IntentRequest, request: Request) -> dict[str, str]:
    """Classify a reply to the consent prompt."""
    container: AppContainer = request.app.state.container
    intent = await container.consent_service.classify(payload.text)
    return {"intent": intent}
