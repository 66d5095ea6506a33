"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from health_assistant.adapters.fdc_client import HttpxFdcClient
from health_assistant.adapters.openai_intent_client import OpenAIIntentClient
from health_assistant.adapters.openai_planner_client import OpenAIPlannerClient
from health_assistant.adapters.supabase_entry_stores import build_entry_stores
from health_assistant.adapters.supabase_override_repository import (
    SupabaseFoodOverrideRepository,
)
from health_assistant.config import Settings
from health_assistant.domain.voice import VoiceConfig
from health_assistant.services.apply import ApplyEngine
from health_assistant.services.cache import InMemoryCache
from health_assistant.services.consent import ConsentService
from health_assistant.services.conversation import ConversationService
from health_assistant.services.nutrition import NutritionService
from health_assistant.services.overrides import FoodOverrideService
from health_assistant.services.planner import PlannerService
from health_assistant.services.resolver import CandidateResolver
from health_assistant.services.voice import (
    SpeechCapture,
    SpeechSynthesizer,
    VoiceController,
)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    nutrition_service: NutritionService
    resolver: CandidateResolver
    planner_service: PlannerService
    consent_service: ConsentService
    apply_engine: ApplyEngine
    voice_config: VoiceConfig
    close_resources: Callable[[], Awaitable[None]]

    def new_conversation(self) -> ConversationService:
        """Create a conversation sharing the container's services."""
        return ConversationService(
            planner=self.planner_service,
            resolver=self.resolver,
            apply_engine=self.apply_engine,
            history_limit=self.settings.history_limit,
            resolve_workers=self.settings.resolve_workers,
            match_wait_seconds=self.settings.match_wait_seconds,
            match_wait_policy=self.settings.match_wait_policy,
        )

    def new_voice_controller(
        self,
        capture: SpeechCapture,
        synthesizer: SpeechSynthesizer,
        conversation: ConversationService | None = None,
    ) -> VoiceController:
        """Create a voice loop driving conversation (a fresh one by default)."""
        return VoiceController(
            capture=capture,
            synthesizer=synthesizer,
            turns=conversation or self.new_conversation(),
            consent=self.consent_service,
            config=self.voice_config,
        )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    cache = InMemoryCache()
    fdc_client = HttpxFdcClient.create(
        api_key=resolved_settings.fdc_api_key,
        base_url=resolved_settings.fdc_base_url,
    )
    nutrition_service = NutritionService(fdc_client=fdc_client, cache=cache)
    override_service = FoodOverrideService(
        repository=SupabaseFoodOverrideRepository(supabase_client),
        cache=cache,
        user_id=resolved_settings.assistant_user_id,
    )
    resolver = CandidateResolver(
        nutrition_service=nutrition_service,
        overrides=override_service,
        search_limit=resolved_settings.search_limit,
        detail_prefetch=resolved_settings.detail_prefetch,
    )
    planner_client = OpenAIPlannerClient.create(resolved_settings.openai_api_key)
    planner_service = PlannerService(
        client=planner_client,
        model=resolved_settings.openai_planner_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    intent_client = OpenAIIntentClient.create(
        api_key=resolved_settings.openai_api_key,
        model=resolved_settings.openai_intent_model,
    )
    consent_service = ConsentService(
        classifier=intent_client, max_words=resolved_settings.consent_max_words
    )
    apply_engine = ApplyEngine(
        stores=build_entry_stores(
            supabase_client, resolved_settings.assistant_user_id
        )
    )
    voice_config = VoiceConfig(
        silence_check_seconds=resolved_settings.silence_check_seconds,
        silence_min_seconds=resolved_settings.silence_min_seconds,
        consent_max_words=resolved_settings.consent_max_words,
    )

    async def close_resources() -> None:
        await fdc_client.close()
        await planner_client.close()
        await intent_client.close()

    return AppContainer(
        settings=resolved_settings,
        nutrition_service=nutrition_service,
        resolver=resolver,
        planner_service=planner_service,
        consent_service=consent_service,
        apply_engine=apply_engine,
        voice_config=voice_config,
        close_resources=close_resources,
    )
