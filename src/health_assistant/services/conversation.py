"""Conversation orchestration: turns, transcript, resolution and apply."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from health_assistant.domain.actions import Action, ChatMessage
from health_assistant.domain.errors import ApplyInProgressError, ApplyPreconditionError
from health_assistant.domain.nutrition import Candidate
from health_assistant.domain.planner import (
    Decision,
    HistoryMessage,
    PlanRequest,
    RecentEntry,
)
from health_assistant.domain.voice import ApplyFinished, PlanReady
from health_assistant.services.action_store import ActionStore
from health_assistant.services.apply import ApplyEngine, ApplyReport, describe_actions
from health_assistant.services.mentions import enrich_actions
from health_assistant.services.planner import PlannerService
from health_assistant.services.reconciler import (
    actions_to_proposals,
    choose_candidate,
    proposals_to_actions,
    reconcile,
    remove_meal_item,
    toggle_selected,
    update_meal_item,
)
from health_assistant.services.resolver import CandidateResolver, ResolutionPool

_logger = logging.getLogger(__name__)

KEPT_SUGGESTIONS_MESSAGE = (
    "I couldn't update the suggested actions right now, "
    "so I kept your existing suggestions below."
)
CLARIFY_MESSAGE = (
    "Sorry, I had trouble with that. Could you tell me a bit more? "
    "For example, what meal was it, or roughly how much of each item?"
)
APPLY_BUSY_MESSAGE = "I'm still saving your last changes."

MatchWaitPolicy = Literal["selected", "all"]


@dataclass(frozen=True)
class TurnOutcome:
    """Result of one conversational turn."""

    message: str
    decision: Decision | None
    actions: list[Action]
    new_action_ids: tuple[str, ...] = ()
    error: str | None = None


@dataclass
class ConversationService:
    """Runs planning turns over one session's action list."""

    planner: PlannerService
    resolver: CandidateResolver
    apply_engine: ApplyEngine
    store: ActionStore = field(default_factory=ActionStore)
    history_limit: int = 8
    resolve_workers: int = 3
    match_wait_seconds: float = 7.0
    match_poll_seconds: float = 0.25
    match_wait_policy: MatchWaitPolicy = "selected"
    clock: Callable[[], datetime] = datetime.now
    recent_entries: Callable[[], list[RecentEntry]] | None = None
    transcript: list[ChatMessage] = field(default_factory=list)
    pool: ResolutionPool = field(init=False)
    _applying: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.pool = ResolutionPool(
            resolver=self.resolver, store=self.store, workers=self.resolve_workers
        )

    async def submit_turn(self, text: str) -> TurnOutcome:
        """Plan one user utterance and reconcile the proposed actions."""
        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Turn text must not be empty")
        had_pending = bool(self.store.unapplied())
        self.transcript.append(ChatMessage(role="user", text=cleaned))
        today = self.clock().date().isoformat()

        request = PlanRequest(
            text=cleaned,
            history=[
                HistoryMessage(role=message.role, text=message.text)
                for message in self.transcript[-self.history_limit :]
            ],
            existing_actions=actions_to_proposals(self.store.all()),
            recent_entries=self.recent_entries() if self.recent_entries else None,
            today=today,
        )
        result = await self.planner.plan(request)
        if result.response is None:
            _logger.warning("Planning failed: %s", result.error)
            message = KEPT_SUGGESTIONS_MESSAGE if had_pending else CLARIFY_MESSAGE
            self.transcript.append(ChatMessage(role="assistant", text=message))
            return TurnOutcome(
                message=message,
                decision=None,
                actions=self.store.all(),
                error=result.error,
            )

        response = result.response
        handling = response.decision.action_handling
        proposed = enrich_actions(
            proposals_to_actions(response.actions, today), cleaned
        )
        current = self.store.all()
        merged = reconcile(current, proposed, handling)
        new_ids: tuple[str, ...] = ()
        if merged is not current:
            self.store.replace_all(merged)
            generation = self.store.next_generation()
            if handling == "replace" and proposed:
                new_ids = tuple(action.id for action in proposed)
                jobs = self.pool.dispatch(proposed, generation)
                _logger.info(
                    "Turn %s: %s actions, %s lookups", generation, len(proposed), jobs
                )

        self.transcript.append(
            ChatMessage(role="assistant", text=response.message, action_ids=new_ids)
        )
        return TurnOutcome(
            message=response.message,
            decision=response.decision,
            actions=self.store.all(),
            new_action_ids=new_ids,
        )

    async def wait_for_matches(self, timeout: float | None = None) -> bool:
        """Wait until meal items are matched; False on timeout or dead ends."""
        selected_only = self.match_wait_policy == "selected"
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (
            self.match_wait_seconds if timeout is None else timeout
        )
        while self.store.has_unresolved_meals(selected_only=selected_only):
            if not self._still_resolving(selected_only):
                return False
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.match_poll_seconds)
        return True

    def _still_resolving(self, selected_only: bool) -> bool:
        for action in self.store.unapplied():
            if selected_only and not action.selected:
                continue
            if any(item.is_resolving for item in action.meal_items()):
                return True
        return False

    async def apply(self) -> ApplyReport:
        """Commit pending actions and append the receipt to the transcript.

        ApplyPreconditionError propagates before any mutation runs.
        ApplyInProgressError is raised while this session is already applying.
        """
        if self._applying:
            raise ApplyInProgressError("An apply is already running")
        self._applying = True
        try:
            report = await self.apply_engine.apply(self.store)
        finally:
            self._applying = False
        if report.ok and report.receipt:
            self.transcript.append(
                ChatMessage(
                    role="assistant", text=report.receipt, action_ids=report.applied_ids
                )
            )
        elif not report.ok:
            self.transcript.append(
                ChatMessage(
                    role="assistant",
                    text=f"I couldn't save everything: {report.error}",
                    action_ids=report.applied_ids,
                )
            )
        return report

    def toggle(self, action_id: str) -> Action | None:
        """Flip selection of an action."""
        self.store.replace_all(toggle_selected(self.store.all(), action_id))
        return self.store.get(action_id)

    def update_item(self, action_id: str, item_key: str, **changes: object) -> None:
        """Edit a meal item in place."""
        self.store.replace_all(
            update_meal_item(self.store.all(), action_id, item_key, **changes)
        )

    def remove_item(self, action_id: str, item_key: str) -> None:
        """Remove a meal item."""
        self.store.replace_all(remove_meal_item(self.store.all(), action_id, item_key))

    async def choose_candidate(
        self, action_id: str, item_key: str, external_id: str
    ) -> bool:
        """Pin an alternative candidate on an item and remember the choice."""
        item = self.store.get_item(action_id, item_key)
        if item is None:
            raise KeyError(f"Unknown meal item {action_id}/{item_key}")
        candidate = next(
            (c for c in item.candidates if c.external_id == external_id),
            Candidate(external_id=external_id, description=item.food_query),
        )
        food = await self.resolver.choose(item.food_query, candidate)
        if food is None:
            return False
        self.store.replace_all(
            choose_candidate(self.store.all(), action_id, item_key, candidate, food)
        )
        return True

    def reset(self) -> None:
        """Forget every action and the transcript."""
        self.store.clear()
        self.transcript.clear()

    async def voice_turn(self, text: str) -> PlanReady:
        """Plan a spoken turn and wait briefly for food matches."""
        outcome = await self.submit_turn(text)
        if outcome.decision is None:
            return PlanReady(
                message=outcome.message, apply="none", summary="", has_actions=False
            )
        pending = self.store.pending()
        matches_ready = True
        if pending and outcome.decision.apply != "none":
            matches_ready = await self.wait_for_matches()
        return PlanReady(
            message=outcome.message,
            apply=outcome.decision.apply,
            summary=describe_actions(self.store.pending(), self.clock()),
            has_actions=bool(pending),
            matches_ready=matches_ready,
        )

    async def voice_apply(self) -> ApplyFinished:
        """Commit pending actions for the voice loop."""
        try:
            report = await self.apply()
        except ApplyPreconditionError as exc:
            return ApplyFinished(ok=False, message=exc.message)
        except ApplyInProgressError:
            return ApplyFinished(ok=False, message=APPLY_BUSY_MESSAGE)
        if report.ok:
            return ApplyFinished(ok=True, message=report.receipt)
        return ApplyFinished(ok=False, message=report.error or "Something went wrong.")

    async def close(self) -> None:
        """Stop background resolution."""
        await self.pool.close()
