"""Voice interaction state machine and its asyncio driver."""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field, replace
from typing import Protocol

from health_assistant.domain.voice import (
    CANCELLED_PHRASE,
    CONSENT_PROMPT,
    CONSENT_RETRY_PHRASE,
    DONE_PHRASE,
    UNRESOLVED_MATCH_PHRASE,
    AfterSpeech,
    ApplyFinished,
    CancelPlayback,
    CapturePurpose,
    ClassifyConsent,
    ConsentClassified,
    ConsentIntent,
    ListenRequested,
    PlanReady,
    PlaybackFinished,
    Reset,
    RunApply,
    ScheduleSilenceCheck,
    SilenceElapsed,
    Speak,
    SpeechStarted,
    StartCapture,
    StopCapture,
    SubmitRequested,
    SubmitTranscript,
    TranscriptReceived,
    VoiceConfig,
    VoiceEffect,
    VoiceEvent,
    VoiceState,
)
from health_assistant.services.consent import (
    ConsentService,
    classify_tier_one,
    needs_tier_two,
)

_logger = logging.getLogger(__name__)

Transition = tuple[VoiceState, list[VoiceEffect]]


def _clear_buffers(state: VoiceState) -> VoiceState:
    return replace(
        state, transcript_final="", transcript_interim="", last_transcript_at=None
    )


def _capture(state: VoiceState, purpose: CapturePurpose) -> Transition:
    phase = "awaiting_consent" if purpose == "consent" else "dictating"
    return (
        replace(
            _clear_buffers(state), phase=phase, purpose=purpose, after_speech="idle"
        ),
        [StartCapture(purpose)],
    )


def _speak(
    state: VoiceState, text: str, after: AfterSpeech, effects: list[VoiceEffect]
) -> Transition:
    return (
        replace(_clear_buffers(state), phase="speaking", after_speech=after),
        [*effects, Speak(text)],
    )


def _after_reply(state: VoiceState) -> AfterSpeech:
    return "listen" if state.hands_free else "idle"


def _begin_apply(state: VoiceState, effects: list[VoiceEffect]) -> Transition:
    cleared = replace(
        _clear_buffers(state),
        consent_pending=False,
        pending_summary=None,
        after_speech="idle",
    )
    if state.apply_active:
        _logger.info("Apply already running; ignoring confirmation")
        return replace(cleared, phase="idle"), effects
    return (
        replace(cleared, phase="applying", apply_active=True),
        [*effects, RunApply()],
    )


def _consent_prompt(state: VoiceState) -> str:
    return f"{state.pending_summary or ''} {CONSENT_PROMPT}".strip()


def _resolve_consent(
    state: VoiceState, intent: ConsentIntent, text: str, effects: list[VoiceEffect]
) -> Transition:
    if intent == "confirm":
        return _begin_apply(state, effects)
    if intent == "cancel":
        cancelled = replace(state, consent_pending=False, pending_summary=None)
        return _speak(cancelled, CANCELLED_PHRASE, _after_reply(state), effects)
    if intent == "repeat":
        return _speak(state, _consent_prompt(state), "consent", effects)
    routed = replace(
        _clear_buffers(state),
        phase="idle",
        consent_pending=False,
        pending_summary=None,
        purpose="dictation",
    )
    return routed, [*effects, SubmitTranscript(text)]


def _consent_reply(state: VoiceState, text: str, config: VoiceConfig) -> Transition:
    effects: list[VoiceEffect] = [StopCapture()]
    tier_one = classify_tier_one(text)
    if tier_one is not None:
        return _resolve_consent(state, tier_one, text, effects)
    if needs_tier_two(text, config.consent_max_words):
        waiting = replace(_clear_buffers(state), phase="idle")
        return waiting, [*effects, ClassifyConsent(text)]
    return _resolve_consent(state, "new_instruction", text, effects)


def _submit(state: VoiceState, text: str, config: VoiceConfig) -> Transition:
    if state.purpose == "consent":
        return _consent_reply(state, text, config)
    planning = replace(_clear_buffers(state), phase="idle")
    return planning, [StopCapture(), SubmitTranscript(text)]


def _on_listen(
    state: VoiceState, event: ListenRequested, config: VoiceConfig
) -> Transition:
    if state.phase == "applying":
        return replace(state, hands_free=event.hands_free), []
    if state.is_capturing:
        return replace(state, hands_free=event.hands_free), []
    effects: list[VoiceEffect] = []
    if state.phase == "speaking":
        effects.append(CancelPlayback())
    purpose: CapturePurpose = "consent" if state.consent_pending else "dictation"
    captured, start = _capture(replace(state, hands_free=event.hands_free), purpose)
    return captured, [*effects, *start]


def _on_transcript(
    state: VoiceState, event: TranscriptReceived, config: VoiceConfig
) -> Transition:
    if not state.is_capturing:
        return state, []
    text = event.text.strip()
    if event.is_final:
        final = f"{state.transcript_final} {text}".strip()
        updated = replace(
            state,
            transcript_final=final,
            transcript_interim="",
            last_transcript_at=event.at,
        )
    else:
        updated = replace(state, transcript_interim=text, last_transcript_at=event.at)
    if state.phase == "awaiting_consent" and event.is_final and updated.buffer:
        return _consent_reply(updated, updated.buffer, config)
    if state.hands_free or state.purpose == "consent":
        return updated, [ScheduleSilenceCheck(config.silence_check_seconds)]
    return updated, []


def _on_silence(
    state: VoiceState, event: SilenceElapsed, config: VoiceConfig
) -> Transition:
    if not state.is_capturing or state.last_transcript_at is None:
        return state, []
    if event.at - state.last_transcript_at < config.silence_min_seconds:
        return state, []
    text = state.buffer
    if not text:
        return state, []
    return _submit(state, text, config)


def _on_submit_requested(
    state: VoiceState, event: SubmitRequested, config: VoiceConfig
) -> Transition:
    text = state.buffer
    if not state.is_capturing or not text:
        return state, []
    return _submit(state, text, config)


def _on_speech_started(
    state: VoiceState, event: SpeechStarted, config: VoiceConfig
) -> Transition:
    if state.phase != "speaking":
        return state, []
    # An interrupted auto-apply summary falls back to asking for consent.
    consent = state.consent_pending or state.after_speech in ("consent", "apply")
    purpose: CapturePurpose = "consent" if consent else "dictation"
    interrupted = replace(
        _clear_buffers(state),
        phase="dictating",
        purpose=purpose,
        consent_pending=consent,
        after_speech="idle",
    )
    return interrupted, [CancelPlayback(), StartCapture(purpose)]


def _on_playback_finished(
    state: VoiceState, event: PlaybackFinished, config: VoiceConfig
) -> Transition:
    if state.phase != "speaking":
        return state, []
    if state.after_speech == "consent":
        return _capture(replace(state, consent_pending=True), "consent")
    if state.after_speech == "apply":
        return _begin_apply(state, [])
    if state.after_speech == "listen" and state.hands_free:
        return _capture(state, "dictation")
    return replace(state, phase="idle", after_speech="idle", purpose="dictation"), []


def _on_plan_ready(
    state: VoiceState, event: PlanReady, config: VoiceConfig
) -> Transition:
    effects: list[VoiceEffect] = [StopCapture()] if state.is_capturing else []
    if state.phase == "speaking":
        effects.append(CancelPlayback())
    settled = replace(state, purpose="dictation", consent_pending=False)
    if not event.has_actions or event.apply == "none":
        return _speak(
            replace(settled, pending_summary=None),
            event.message,
            _after_reply(state),
            effects,
        )
    if not event.matches_ready:
        return _speak(
            replace(settled, pending_summary=None),
            UNRESOLVED_MATCH_PHRASE,
            "idle",
            effects,
        )
    summary = event.summary or event.message
    if event.apply == "auto":
        return _speak(
            replace(settled, pending_summary=summary), summary, "apply", effects
        )
    asking = replace(settled, pending_summary=summary, consent_pending=True)
    return _speak(asking, _consent_prompt(asking), "consent", effects)


def _on_consent_classified(
    state: VoiceState, event: ConsentClassified, config: VoiceConfig
) -> Transition:
    if not state.consent_pending:
        return state, []
    if event.intent is None:
        return _speak(state, CONSENT_RETRY_PHRASE, "consent", [])
    return _resolve_consent(state, event.intent, event.text, [])


def _on_apply_finished(
    state: VoiceState, event: ApplyFinished, config: VoiceConfig
) -> Transition:
    finished = replace(
        state, apply_active=False, consent_pending=False, pending_summary=None
    )
    phrase = DONE_PHRASE if event.ok else event.message
    effects: list[VoiceEffect] = [StopCapture()] if state.is_capturing else []
    return _speak(finished, phrase, _after_reply(state), effects)


def _on_reset(state: VoiceState, event: Reset, config: VoiceConfig) -> Transition:
    effects: list[VoiceEffect] = [StopCapture(), CancelPlayback()]
    return VoiceState(apply_active=state.apply_active), effects


_HANDLERS: dict[type, Callable[[VoiceState, VoiceEvent, VoiceConfig], Transition]] = {
    ListenRequested: _on_listen,
    TranscriptReceived: _on_transcript,
    SilenceElapsed: _on_silence,
    SubmitRequested: _on_submit_requested,
    SpeechStarted: _on_speech_started,
    PlaybackFinished: _on_playback_finished,
    PlanReady: _on_plan_ready,
    ConsentClassified: _on_consent_classified,
    ApplyFinished: _on_apply_finished,
    Reset: _on_reset,
}


def transition(
    state: VoiceState, event: VoiceEvent, config: VoiceConfig | None = None
) -> Transition:
    """Return the next state and the effects to perform for event."""
    handler = _HANDLERS[type(event)]
    return handler(state, event, config or VoiceConfig())


class SpeechCapture(Protocol):
    """Speech recognizer; transcripts are pushed back into the controller."""

    async def start(self, purpose: CapturePurpose) -> None:
        """Begin capturing speech."""

    async def stop(self) -> None:
        """Stop capturing speech."""


class SpeechSynthesizer(Protocol):
    """Text-to-speech output."""

    async def speak(self, text: str) -> None:
        """Speak text, returning when playback completes."""

    async def cancel(self) -> None:
        """Stop any playback; calling it twice is harmless."""


class VoiceTurns(Protocol):
    """Conversation operations the voice loop drives."""

    async def voice_turn(self, text: str) -> PlanReady:
        """Plan a spoken turn and report what to say."""

    async def voice_apply(self) -> ApplyFinished:
        """Commit pending actions and report the outcome."""


@dataclass
class VoiceController:
    """Consumes voice events and performs the resulting effects."""

    capture: SpeechCapture
    synthesizer: SpeechSynthesizer
    turns: VoiceTurns
    consent: ConsentService
    config: VoiceConfig = field(default_factory=VoiceConfig)
    clock: Callable[[], float] = time.monotonic
    state: VoiceState = field(default_factory=VoiceState)
    _events: asyncio.Queue[VoiceEvent] = field(default_factory=asyncio.Queue)
    _playback: asyncio.Task[None] | None = None
    _silence: asyncio.Task[None] | None = None
    _tasks: set[asyncio.Task[None]] = field(default_factory=set)

    def post(self, event: VoiceEvent) -> None:
        """Queue an inbound event."""
        self._events.put_nowait(event)

    def listen(self, *, hands_free: bool = False) -> None:
        self.post(ListenRequested(hands_free=hands_free))

    def transcript(self, text: str, *, is_final: bool) -> None:
        self.post(TranscriptReceived(text=text, is_final=is_final, at=self.clock()))

    def speech_started(self) -> None:
        self.post(SpeechStarted(at=self.clock()))

    def reset(self) -> None:
        self.post(Reset())

    async def run(self) -> None:
        """Process events until cancelled."""
        while True:
            event = await self._events.get()
            await self.handle(event)

    async def drain(self) -> VoiceState:
        """Process queued events until no event or background task remains."""
        while True:
            while not self._events.empty():
                await self.handle(self._events.get_nowait())
            pending = {task for task in self._tasks if not task.done()}
            if not pending:
                if self._events.empty():
                    return self.state
                continue
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

    async def handle(self, event: VoiceEvent) -> VoiceState:
        """Apply one event and perform its effects."""
        previous = self.state.phase
        self.state, effects = transition(self.state, event, self.config)
        if self.state.phase != previous:
            _logger.debug(
                "Voice phase %s -> %s on %s",
                previous,
                self.state.phase,
                type(event).__name__,
            )
        for effect in effects:
            await self._perform(effect)
        return self.state

    async def close(self) -> None:
        """Cancel timers, playback and in-flight work."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.synthesizer.cancel()
        await self.capture.stop()

    async def _perform(self, effect: VoiceEffect) -> None:  # noqa: PLR0911
        if isinstance(effect, StartCapture):
            await self.capture.start(effect.purpose)
            return
        if isinstance(effect, StopCapture):
            self._cancel_silence()
            await self.capture.stop()
            return
        if isinstance(effect, CancelPlayback):
            await self._cancel_playback()
            return
        if isinstance(effect, Speak):
            await self._cancel_playback()
            self._playback = self._spawn(self._play(effect.text))
            return
        if isinstance(effect, ScheduleSilenceCheck):
            self._cancel_silence()
            self._silence = self._spawn(self._silence_check(effect.delay))
            return
        if isinstance(effect, SubmitTranscript):
            self._spawn(self._plan(effect.text))
            return
        if isinstance(effect, ClassifyConsent):
            self._spawn(self._classify(effect.text))
            return
        if isinstance(effect, RunApply):
            self._spawn(self._apply())

    def _spawn(self, coro: Coroutine[object, object, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _cancel_playback(self) -> None:
        playback, self._playback = self._playback, None
        if playback is not None and not playback.done():
            playback.cancel()
        await self.synthesizer.cancel()

    def _cancel_silence(self) -> None:
        silence, self._silence = self._silence, None
        if silence is not None and not silence.done():
            silence.cancel()

    async def _play(self, text: str) -> None:
        await self.synthesizer.speak(text)
        self.post(PlaybackFinished())

    async def _silence_check(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self.post(SilenceElapsed(at=self.clock()))

    async def _plan(self, text: str) -> None:
        self.post(await self.turns.voice_turn(text))

    async def _classify(self, text: str) -> None:
        try:
            intent = await self.consent.classify(text)
        except Exception:
            _logger.exception("Consent classification failed")
            intent = None
        self.post(ConsentClassified(text=text, intent=intent))

    async def _apply(self) -> None:
        self.post(await self.turns.voice_apply())
