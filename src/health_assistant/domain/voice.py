"""Voice session state, inbound events and outbound effects."""

from dataclasses import dataclass
from typing import Literal

VoicePhase = Literal["idle", "dictating", "speaking", "awaiting_consent", "applying"]
CapturePurpose = Literal["dictation", "consent"]
AfterSpeech = Literal["idle", "listen", "consent", "apply"]
ConsentIntent = Literal["confirm", "cancel", "repeat", "new_instruction"]

CONSENT_PROMPT = "Say yes to confirm, or no to cancel."
CANCELLED_PHRASE = "Okay. I won't add anything."
DONE_PHRASE = "Done."
UNRESOLVED_MATCH_PHRASE = (
    "I need you to confirm a food match on screen before I can log this."
)
CONSENT_RETRY_PHRASE = "Sorry, say yes to confirm or no to cancel."


@dataclass(frozen=True)
class VoiceConfig:
    """Timing and consent thresholds for the voice loop."""

    silence_check_seconds: float = 1.25
    silence_min_seconds: float = 1.0
    consent_max_words: int = 6


@dataclass(frozen=True)
class VoiceState:
    """Immutable voice session context."""

    phase: VoicePhase = "idle"
    hands_free: bool = False
    purpose: CapturePurpose = "dictation"
    transcript_final: str = ""
    transcript_interim: str = ""
    last_transcript_at: float | None = None
    apply_active: bool = False
    after_speech: AfterSpeech = "idle"
    pending_summary: str | None = None
    consent_pending: bool = False

    @property
    def buffer(self) -> str:
        """Return final and interim transcript text joined."""
        return " ".join(
            part
            for part in (self.transcript_final.strip(), self.transcript_interim.strip())
            if part
        )

    @property
    def is_capturing(self) -> bool:
        """Return True while speech capture should be running."""
        return self.phase in ("dictating", "awaiting_consent")


# Inbound events


@dataclass(frozen=True)
class ListenRequested:
    """User asked to start listening."""

    hands_free: bool = False


@dataclass(frozen=True)
class TranscriptReceived:
    """Speech recognizer produced text."""

    text: str
    is_final: bool
    at: float


@dataclass(frozen=True)
class SilenceElapsed:
    """A scheduled silence check fired."""

    at: float


@dataclass(frozen=True)
class SubmitRequested:
    """User explicitly submitted the current buffer."""


@dataclass(frozen=True)
class SpeechStarted:
    """User voice activity detected."""

    at: float


@dataclass(frozen=True)
class PlaybackFinished:
    """Speech synthesis completed or was cancelled."""


@dataclass(frozen=True)
class PlanReady:
    """Planner turn finished and actions were reconciled."""

    message: str
    apply: Literal["none", "confirm", "auto"]
    summary: str
    has_actions: bool
    matches_ready: bool = True


@dataclass(frozen=True)
class ConsentClassified:
    """Tier-two consent classification finished; intent None means failure."""

    text: str
    intent: ConsentIntent | None


@dataclass(frozen=True)
class ApplyFinished:
    """Apply engine completed the batch."""

    ok: bool
    message: str


@dataclass(frozen=True)
class Reset:
    """Abandon the current voice interaction."""


VoiceEvent = (
    ListenRequested
    | TranscriptReceived
    | SilenceElapsed
    | SubmitRequested
    | SpeechStarted
    | PlaybackFinished
    | PlanReady
    | ConsentClassified
    | ApplyFinished
    | Reset
)


# Outbound effects


@dataclass(frozen=True)
class StartCapture:
    purpose: CapturePurpose


@dataclass(frozen=True)
class StopCapture:
    pass


@dataclass(frozen=True)
class CancelPlayback:
    pass


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class ScheduleSilenceCheck:
    delay: float


@dataclass(frozen=True)
class SubmitTranscript:
    text: str


@dataclass(frozen=True)
class ClassifyConsent:
    text: str


@dataclass(frozen=True)
class RunApply:
    pass


VoiceEffect = (
    StartCapture
    | StopCapture
    | CancelPlayback
    | Speak
    | ScheduleSilenceCheck
    | SubmitTranscript
    | ClassifyConsent
    | RunApply
)
