"""Tests for container wiring."""

import asyncio

from health_assistant.containers import build_container
from health_assistant.domain.voice import SubmitRequested, VoiceState
from tests.conftest import (
    FakeSpeechCapture,
    FakeSynthesizer,
    meal_item_payload,
    meal_proposal,
    plan_payload,
)


def test_build_container_creates_services(settings) -> None:
    container = build_container(settings)

    assert container.resolver.overrides is not None
    assert container.resolver.overrides.user_id == "user-1"
    assert container.planner_service.model == "gpt-5.2"
    assert container.consent_service.max_words == 6
    assert container.voice_config.silence_check_seconds == 1.25
    asyncio.run(container.close_resources())


def test_new_conversation_uses_settings(container) -> None:
    container.settings.history_limit = 4
    container.settings.match_wait_policy = "all"

    conversation = container.new_conversation()

    assert conversation.history_limit == 4
    assert conversation.match_wait_policy == "all"
    assert conversation.store.all() == []
    assert conversation is not container.new_conversation()


def test_voice_controller_drives_a_conversation(
    container, planner_client, entry_stores
) -> None:
    planner_client.payloads.append(
        plan_payload([meal_proposal([meal_item_payload("eggs")])])
    )
    conversation = container.new_conversation()
    conversation.match_poll_seconds = 0.01
    synthesizer = FakeSynthesizer()
    controller = container.new_voice_controller(
        FakeSpeechCapture(), synthesizer, conversation
    )

    async def run() -> VoiceState:
        controller.listen()
        controller.transcript("I had eggs", is_final=True)
        controller.post(SubmitRequested())
        await controller.drain()
        controller.transcript("yes", is_final=True)
        state = await controller.drain()
        await controller.close()
        await conversation.close()
        return state

    state = asyncio.run(run())

    assert controller.config is container.voice_config
    assert controller.consent is container.consent_service
    assert state.phase == "idle"
    assert synthesizer.spoken == [
        "Log breakfast: eggs. Say yes to confirm, or no to cancel.",
        "Done.",
    ]
    assert entry_stores.meal.calls[0][0] == "create"
